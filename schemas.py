"""
Database Schemas for the Planning Poker API

MongoDB documents are described below with Pydantic models. Python attributes
are snake_case; documents and JSON use the camelCase aliases
(``model_dump(by_alias=True)``).

Collections:
- users: accounts with roles (admin, facilitator, participant)
- sessions: estimation meetings, each embedding its user stories and votes

User stories and votes have no collection of their own; they only exist
inside their session document.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional, Union

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

USERS = "users"
SESSIONS = "sessions"

ROLES = ("admin", "facilitator", "participant")
SESSION_STATUSES = ("scheduled", "active", "completed")
VISIBILITIES = ("private", "public")
ESTIMATION_TYPES = ("fibonacci", "tshirt", "custom")
STORY_PRIORITIES = ("high", "medium", "low")
STORY_STATUSES = ("pending", "voting", "completed")

Role = Literal["admin", "facilitator", "participant"]
SessionStatus = Literal["scheduled", "active", "completed"]
Visibility = Literal["private", "public"]
EstimationType = Literal["fibonacci", "tshirt", "custom"]
StoryPriority = Literal["high", "medium", "low"]
StoryStatus = Literal["pending", "voting", "completed"]

# Fibonacci points are numbers, T-shirt sizes are labels.
Estimate = Union[int, float, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )


class User(Document):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    date_of_birth: datetime
    registration_date: datetime = Field(default_factory=utcnow)
    email: EmailStr
    password: str = Field(..., description="BCrypt hash of password")
    token: Optional[str] = None
    roles: List[Role] = Field(default_factory=lambda: ["participant"])
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Vote(Document):
    user_id: ObjectId = Field(..., description="Reference to users._id (the voter)")
    value: Estimate
    timestamp: datetime = Field(default_factory=utcnow)


class UserStory(Document):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    priority: StoryPriority = "medium"
    status: StoryStatus = "pending"
    votes: List[Vote] = Field(default_factory=list)
    final_estimation: Optional[Estimate] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Session(Document):
    name: str = Field(..., min_length=1)
    start_date: datetime
    end_date: Optional[datetime] = None
    duration: Union[int, float] = Field(..., description="Minutes, at least 1")
    status: SessionStatus = "scheduled"
    facilitator: ObjectId = Field(..., description="Reference to users._id")
    participants: List[ObjectId] = Field(default_factory=list)
    estimation_type: EstimationType = "fibonacci"
    custom_estimation_values: List[Estimate] = Field(default_factory=list)
    visibility: Visibility = "private"
    access_code: Optional[str] = None
    user_stories: List[UserStory] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_document(self) -> dict:
        doc = self.model_dump(by_alias=True)
        # Sparse index on accessCode: leave the field out rather than store null.
        if doc.get("accessCode") is None:
            doc.pop("accessCode", None)
        if doc.get("endDate") is None:
            doc.pop("endDate", None)
        return doc
