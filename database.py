"""
MongoDB connection shared by every request in the process.

The first ``connect()`` builds the client, pings the server and creates the
indexes; concurrent first callers wait on the same lock and reuse that one
attempt. A failed attempt caches nothing, so the next call tries again.
"""
import threading
from typing import Optional

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import settings
from errors import StoreError
from log import get_logger
from schemas import SESSIONS, USERS

logger = get_logger(__name__)

_lock = threading.Lock()
_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[USERS].create_index([("isActive", ASCENDING)])
    db[SESSIONS].create_index([("name", ASCENDING)])
    db[SESSIONS].create_index([("status", ASCENDING)])
    db[SESSIONS].create_index([("facilitator", ASCENDING)])
    db[SESSIONS].create_index([("userStories.title", ASCENDING)])
    db[SESSIONS].create_index([("accessCode", ASCENDING)], sparse=True)


def _open() -> Database:
    if not settings.MONGODB_URI:
        raise StoreError("MONGODB_URI environment variable is not set")

    client = MongoClient(
        settings.MONGODB_URI,
        tz_aware=True,
        maxPoolSize=settings.MONGODB_MAX_POOL_SIZE,
        serverSelectionTimeoutMS=settings.MONGODB_TIMEOUT_MS,
    )
    try:
        client.admin.command("ping")
        db = client.get_default_database(default=settings.MONGODB_DB)
        ensure_indexes(db)
    except PyMongoError as exc:
        client.close()
        raise StoreError(f"Could not connect to MongoDB: {exc}") from exc

    global _client
    _client = client
    return db


def connect() -> Database:
    """Return the cached database handle, connecting on first use."""
    global _db
    db = _db
    if db is not None:
        return db
    with _lock:
        db = _db
        if db is None:
            try:
                db = _open()
            except StoreError:
                logger.exception("MongoDB connection failed")
                raise
            _db = db
            logger.info("Connected to MongoDB database %s", db.name)
    return db


def get_db() -> Database:
    """FastAPI dependency."""
    return connect()


def close() -> None:
    global _client, _db
    with _lock:
        if _client is not None:
            _client.close()
            logger.info("MongoDB client closed")
        _client = None
        _db = None
