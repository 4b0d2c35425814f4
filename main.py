import math
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId
from fastapi import Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
from config import settings
from database import get_db
from errors import AppError, ConflictError, ErrorKind, NotFoundError, STATUS_BY_KIND
from log import get_logger
from schemas import ROLES, SESSION_STATUSES, SESSIONS, USERS, VISIBILITIES
from validation import (
    is_object_id,
    normalize_session_data,
    normalize_user_data,
    to_object_id,
    validate_session_data,
    validate_user_data,
)

logger = get_logger("planning-poker-api")


@asynccontextmanager
async def lifespan(application: FastAPI):
    yield
    database.close()


# App and CORS
app = FastAPI(title="Planning Poker API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = req_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = req_id
    return response


# Error envelopes

def error_response(kind: ErrorKind, message: str) -> JSONResponse:
    return JSONResponse(status_code=STATUS_BY_KIND[kind], content={"error": message})


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.kind == ErrorKind.STORE:
        logger.error("Store error on %s %s: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s error on %s %s: %s", exc.kind.value, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("Malformed request on %s: %s", request.url.path, exc.errors())
    return error_response(ErrorKind.VALIDATION, "Invalid request body: expected a JSON object")


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    logger.warning("Duplicate key on %s: %s", request.url.path, exc)
    return error_response(ErrorKind.CONFLICT, "Duplicate value for a unique field")


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Store failure on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(ErrorKind.STORE, str(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(ErrorKind.STORE, str(exc) or exc.__class__.__name__)


# Helpers

def sanitize(value: Any) -> Any:
    """Make a stored document JSON-ready: ``_id`` becomes ``id``, ObjectIds and dates become strings."""
    if isinstance(value, dict):
        d = {k: sanitize(v) for k, v in value.items() if k != "_id"}
        if "_id" in value:
            d = {"id": str(value["_id"]), **d}
        return d
    if isinstance(value, list):
        return [sanitize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    # Passwords never leave the API, hashed or not.
    return sanitize({k: v for k, v in doc.items() if k != "password"})


def _positive_int(raw: Optional[str], default: int) -> int:
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        return default
    return value if value >= 1 else default


def page_params(page: Optional[str], limit: Optional[str]) -> Tuple[int, int, int]:
    page_no = _positive_int(page, 1)
    size = min(_positive_int(limit, settings.DEFAULT_PAGE_SIZE), settings.MAX_PAGE_SIZE)
    return page_no, size, (page_no - 1) * size


def pagination(total: int, page: int, limit: int) -> Dict[str, int]:
    return {"total": total, "page": page, "limit": limit, "pages": math.ceil(total / limit)}


# User Routes
@app.post("/api/users")
def create_user(payload: Any = Body(None), db: Database = Depends(get_db)):
    validate_user_data(payload)
    user_doc = normalize_user_data(payload)
    logger.info("Creating user %s", user_doc["email"])
    if db[USERS].find_one({"email": user_doc["email"]}):
        raise ConflictError("Email already registered")
    try:
        res = db[USERS].insert_one(user_doc)
    except DuplicateKeyError as exc:
        raise ConflictError("Email already registered") from exc
    user_doc["_id"] = res.inserted_id
    return public_user(user_doc)


@app.get("/api/users")
def list_users(
    role: Optional[str] = None,
    isActive: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    db: Database = Depends(get_db),
):
    q: Dict[str, Any] = {}
    if role and role in ROLES:
        q["roles"] = role
    if isActive is not None:
        q["isActive"] = isActive == "true"
    page_no, size, skip = page_params(page, limit)

    total = db[USERS].count_documents(q)
    cursor = db[USERS].find(q).sort([("createdAt", DESCENDING)]).skip(skip).limit(size)
    users = [public_user(u) for u in cursor]
    return {"users": users, "pagination": pagination(total, page_no, size)}


@app.get("/api/users/{user_id}")
def get_user(user_id: str, db: Database = Depends(get_db)):
    user = db[USERS].find_one({"_id": to_object_id(user_id)})
    if not user:
        raise NotFoundError(f"User not found: {user_id}")
    return public_user(user)


# Session Routes
@app.post("/api/sessions")
def create_session(payload: Any = Body(None), db: Database = Depends(get_db)):
    validate_session_data(payload)
    session_doc = normalize_session_data(payload)
    logger.info(
        "Creating session %r with %d user stories",
        session_doc["name"], len(session_doc["userStories"]),
    )
    res = db[SESSIONS].insert_one(session_doc)
    session_doc["_id"] = res.inserted_id
    return sanitize(session_doc)


@app.get("/api/sessions")
def list_sessions(
    facilitator: Optional[str] = None,
    status: Optional[str] = None,
    visibility: Optional[str] = None,
    accessCode: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    db: Database = Depends(get_db),
):
    q: Dict[str, Any] = {}
    if facilitator and is_object_id(facilitator):
        q["facilitator"] = ObjectId(facilitator)
    if status and status in SESSION_STATUSES:
        q["status"] = status
    if visibility and visibility in VISIBILITIES:
        q["visibility"] = visibility
    if accessCode:
        q["accessCode"] = accessCode
    page_no, size, skip = page_params(page, limit)

    total = db[SESSIONS].count_documents(q)
    # participants stay raw ids; nothing is joined from users
    cursor = db[SESSIONS].find(q).sort([("startDate", DESCENDING)]).skip(skip).limit(size)
    sessions = [sanitize(s) for s in cursor]
    return {"sessions": sessions, "pagination": pagination(total, page_no, size)}


@app.get("/api/sessions/{session_id}")
def get_session(session_id: str, db: Database = Depends(get_db)):
    session = db[SESSIONS].find_one({"_id": to_object_id(session_id)})
    if not session:
        raise NotFoundError(f"Session not found: {session_id}")
    return sanitize(session)


# Utility endpoints
@app.get("/health")
def health():
    return {"status": "ok", "service": settings.SERVICE_NAME}


@app.get("/health/ready")
def readiness():
    try:
        get_db().command("ping")
    except (AppError, PyMongoError) as exc:
        logger.warning("Readiness check failed: %s", exc)
        return JSONResponse(status_code=503, content={"status": "unavailable", "database": "unreachable"})
    return {"status": "ready", "database": "connected"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
