"""
Request payload checks and conversion to storable documents.

``validate_*`` run their checks in a fixed order and raise ``ValidationError``
at the first failure. ``normalize_*`` assume a validated payload and return
the document to insert: dates parsed, ids converted to ObjectId, defaults and
timestamps filled in. Referenced user ids are checked for shape only, never
looked up.
"""
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pydantic
from bson import ObjectId
from passlib.context import CryptContext
from pydantic import TypeAdapter

from errors import ValidationError
from schemas import (
    ESTIMATION_TYPES,
    ROLES,
    SESSION_STATUSES,
    STORY_PRIORITIES,
    STORY_STATUSES,
    VISIBILITIES,
    Session,
    User,
)

EMAIL_RE = re.compile(r"^[\w\-.]+@([\w-]+\.)+[\w-]{2,4}$")
MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
_datetime_adapter = TypeAdapter(datetime)


# Helpers

def is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def is_object_id(value: Any) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value)


def to_object_id(value: str) -> ObjectId:
    if not is_object_id(value):
        raise ValidationError(f"Invalid id: {value}")
    return ObjectId(value)


def parse_date(value: Any) -> Optional[datetime]:
    """ISO-8601 string or epoch number to an aware UTC datetime; None if unparseable."""
    if value is None or isinstance(value, bool) or value == "":
        return None
    try:
        parsed = _datetime_adapter.validate_python(value)
    except pydantic.ValidationError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _is_estimate(value: Any) -> bool:
    return _is_number(value) or isinstance(value, str)


def _requested_roles(data: Dict[str, Any]) -> List[Any]:
    if "roles" in data and data["roles"] is not None:
        roles = data["roles"]
        return roles if isinstance(roles, list) else [roles]
    if "role" in data and data["role"] is not None:
        return [data["role"]]
    return ["participant"]


def _first_error(exc: pydantic.ValidationError) -> str:
    err = exc.errors()[0]
    field = ".".join(str(part) for part in err.get("loc", ())) or "payload"
    return f"Invalid {field}: {err.get('msg', 'bad value')}"


# Users

def validate_user_data(data: Any) -> None:
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    if is_blank(data.get("firstName")):
        raise ValidationError("First name is required")

    email = data.get("email")
    if is_blank(email) or not EMAIL_RE.match(email.strip()):
        raise ValidationError("Invalid email address")

    password = data.get("password")
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if "\x00" in password:
        raise ValidationError("Invalid password: NUL characters are not allowed")

    roles = _requested_roles(data)
    if not roles:
        raise ValidationError("Invalid role: at least one role is required")
    for role in roles:
        if role not in ROLES:
            raise ValidationError(f"Invalid role: {role}")

    if is_blank(data.get("lastName")):
        raise ValidationError("Last name is required")

    if data.get("dateOfBirth") in (None, ""):
        raise ValidationError("Date of birth is required")
    if parse_date(data["dateOfBirth"]) is None:
        raise ValidationError("Invalid date of birth")

    if "isActive" in data and not isinstance(data["isActive"], bool):
        raise ValidationError("Invalid isActive flag")


def normalize_user_data(data: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    # dict.fromkeys drops repeated roles and keeps their order
    roles = list(dict.fromkeys(_requested_roles(data)))
    try:
        user = User(
            first_name=data["firstName"].strip(),
            last_name=data["lastName"].strip(),
            date_of_birth=parse_date(data["dateOfBirth"]),
            registration_date=now,
            email=data["email"].strip().lower(),
            password=pwd_context.hash(data["password"]),
            roles=roles,
            is_active=data.get("isActive", True),
            created_at=now,
            updated_at=now,
        )
    except pydantic.ValidationError as exc:
        raise ValidationError(_first_error(exc)) from exc
    return user.model_dump(by_alias=True)


# Sessions

def _validate_story(story: Any, index: int) -> None:
    if not isinstance(story, dict):
        raise ValidationError(f"Invalid user story at index {index}")
    if is_blank(story.get("title")):
        raise ValidationError(f"User story at index {index} requires a title")
    if is_blank(story.get("description")):
        raise ValidationError(f"User story at index {index} requires a description")

    title = story["title"]
    if story.get("priority") and story["priority"] not in STORY_PRIORITIES:
        raise ValidationError(f"Invalid priority for user story: {title}")
    if story.get("status") and story["status"] not in STORY_STATUSES:
        raise ValidationError(f"Invalid status for user story: {title}")
    if story.get("finalEstimation") is not None and not _is_estimate(story["finalEstimation"]):
        raise ValidationError(f"Invalid final estimation for user story: {title}")

    votes = story.get("votes")
    if votes is None:
        return
    if not isinstance(votes, list):
        raise ValidationError(f"Invalid votes for user story: {title}")
    for vote in votes:
        if not isinstance(vote, dict) or not is_object_id(vote.get("userId")):
            voter = vote.get("userId") if isinstance(vote, dict) else vote
            raise ValidationError(f"Invalid voter ID in user story {title}: {voter}")
        if vote.get("value") is None:
            raise ValidationError(f"Vote value is required in user story: {title}")
        if not _is_estimate(vote["value"]):
            raise ValidationError(f"Invalid vote value in user story: {title}")
        if vote.get("timestamp") is not None and parse_date(vote["timestamp"]) is None:
            raise ValidationError(f"Invalid vote timestamp in user story: {title}")


def validate_session_data(data: Any) -> None:
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    if is_blank(data.get("name")):
        raise ValidationError("Session name is required")

    if parse_date(data.get("startDate")) is None:
        raise ValidationError("Valid start date is required")

    if data.get("endDate") not in (None, "") and parse_date(data["endDate"]) is None:
        raise ValidationError("Invalid end date format")

    duration = data.get("duration")
    if not _is_number(duration) or not duration >= 1:
        raise ValidationError("Duration is required and must be at least 1 minute")

    if not is_object_id(data.get("facilitator")):
        raise ValidationError("Valid facilitator ID is required")

    participants = data.get("participants")
    if participants is not None:
        if not isinstance(participants, list):
            raise ValidationError("Invalid participants: must be a list")
        for participant in participants:
            if not is_object_id(participant):
                raise ValidationError(f"Invalid participant ID: {participant}")

    if data.get("estimationType") not in ESTIMATION_TYPES:
        raise ValidationError("Invalid estimation type")

    custom_values = data.get("customEstimationValues")
    if data["estimationType"] == "custom" and (not isinstance(custom_values, list) or not custom_values):
        raise ValidationError("Custom estimation type requires valid estimation values (required)")
    if custom_values is not None and (
        not isinstance(custom_values, list) or not all(_is_estimate(v) for v in custom_values)
    ):
        raise ValidationError("Invalid custom estimation values")

    if data.get("status") is not None and data["status"] not in SESSION_STATUSES:
        raise ValidationError("Invalid session status")
    if data.get("visibility") is not None and data["visibility"] not in VISIBILITIES:
        raise ValidationError("Invalid visibility")
    if data.get("accessCode") is not None and not isinstance(data["accessCode"], str):
        raise ValidationError("Invalid access code")

    stories = data.get("userStories")
    if stories is None:
        return
    if not isinstance(stories, list):
        raise ValidationError("Invalid user stories: must be a list")
    for index, story in enumerate(stories):
        _validate_story(story, index)


def _normalize_story(story: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    votes = [
        {
            "user_id": to_object_id(vote["userId"]),
            "value": vote["value"],
            "timestamp": parse_date(vote.get("timestamp")) or now,
        }
        for vote in story.get("votes") or []
    ]
    return {
        "title": story["title"].strip(),
        "description": story["description"],
        "priority": story.get("priority") or "medium",
        "status": story.get("status") or "pending",
        "votes": votes,
        "final_estimation": story.get("finalEstimation"),
        "created_at": now,
        "updated_at": now,
    }


def normalize_session_data(data: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    fields: Dict[str, Any] = {
        "name": data["name"].strip(),
        "start_date": parse_date(data["startDate"]),
        "end_date": parse_date(data.get("endDate")),
        "duration": data["duration"],
        "facilitator": to_object_id(data["facilitator"]),
        "participants": [to_object_id(p) for p in data.get("participants") or []],
        "estimation_type": data["estimationType"],
        "custom_estimation_values": data.get("customEstimationValues") or [],
        "access_code": data.get("accessCode"),
        "user_stories": [_normalize_story(s, now) for s in data.get("userStories") or []],
        "created_at": now,
        "updated_at": now,
    }
    if data.get("status") is not None:
        fields["status"] = data["status"]
    if data.get("visibility") is not None:
        fields["visibility"] = data["visibility"]
    try:
        session = Session(**fields)
    except pydantic.ValidationError as exc:
        raise ValidationError(_first_error(exc)) from exc
    return session.to_document()
