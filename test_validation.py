"""Validation order and normalization of raw payloads."""
from datetime import datetime, timezone

import pytest
from bson import ObjectId

from errors import ErrorKind, ValidationError
from validation import (
    normalize_session_data,
    normalize_user_data,
    parse_date,
    pwd_context,
    to_object_id,
    validate_session_data,
    validate_user_data,
)

FACILITATOR = str(ObjectId())
VOTER = str(ObjectId())
NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)

USER = {
    "firstName": " Grace ",
    "lastName": " Hopper ",
    "dateOfBirth": "1986-12-09",
    "email": " Grace@Navy.MIL ",
    "password": "cobol42",
}

SESSION = {
    "name": " Refinement ",
    "startDate": "2026-11-01T10:00:00+02:00",
    "duration": 45,
    "facilitator": FACILITATOR,
    "participants": [VOTER],
    "estimationType": "tshirt",
    "userStories": [
        {"title": " Search ", "description": "Find things", "votes": [{"userId": VOTER, "value": "M"}]},
    ],
}


def _message(fn, data):
    with pytest.raises(ValidationError) as exc_info:
        fn(data)
    assert exc_info.value.kind == ErrorKind.VALIDATION
    assert exc_info.value.status_code == 400
    return exc_info.value.message


class TestParseDate:
    def test_iso_with_offset_becomes_utc(self):
        assert parse_date("2026-11-01T10:00:00+02:00") == datetime(2026, 11, 1, 8, tzinfo=timezone.utc)

    def test_naive_is_taken_as_utc(self):
        assert parse_date("2026-11-01T10:00:00").tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, "", "tomorrow", True, {"a": 1}])
    def test_unparseable(self, value):
        assert parse_date(value) is None


class TestObjectIds:
    def test_valid(self):
        assert to_object_id(VOTER) == ObjectId(VOTER)

    @pytest.mark.parametrize("value", ["", "123", "zzzzzzzzzzzzzzzzzzzzzzzz", 42])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            to_object_id(value)


class TestValidateUser:
    def test_valid_payload_passes(self):
        assert validate_user_data(dict(USER)) is None

    @pytest.mark.parametrize("overrides, message", [
        ({"firstName": None}, "First name is required"),
        ({"email": "grace@"}, "Invalid email address"),
        ({"password": 123456}, "Password must be at least 6 characters long"),
        ({"role": "guest"}, "Invalid role: guest"),
        ({"roles": []}, "Invalid role: at least one role is required"),
        ({"lastName": ""}, "Last name is required"),
        ({"dateOfBirth": None}, "Date of birth is required"),
        ({"dateOfBirth": "09/12/1986 maybe"}, "Invalid date of birth"),
        ({"isActive": "yes"}, "Invalid isActive flag"),
        ({"password": "cobol\x0042"}, "Invalid password: NUL characters are not allowed"),
    ])
    def test_rejects(self, overrides, message):
        assert _message(validate_user_data, {**USER, **overrides}) == message

    def test_checks_run_in_order(self):
        bad = {**USER, "email": "x", "password": "1", "lastName": ""}
        assert _message(validate_user_data, bad) == "Invalid email address"

    def test_not_a_dict(self):
        assert _message(validate_user_data, "grace") == "Request body must be a JSON object"


class TestNormalizeUser:
    def test_shapes_document(self):
        doc = normalize_user_data({**USER, "roles": ["admin", "admin", "facilitator"]}, now=NOW)
        assert doc["firstName"] == "Grace"
        assert doc["lastName"] == "Hopper"
        assert doc["email"] == "grace@navy.mil"
        assert doc["roles"] == ["admin", "facilitator"]
        assert doc["isActive"] is True
        assert doc["token"] is None
        assert doc["dateOfBirth"] == datetime(1986, 12, 9, tzinfo=timezone.utc)
        assert doc["createdAt"] == doc["updatedAt"] == doc["registrationDate"] == NOW

    def test_password_is_hashed(self):
        doc = normalize_user_data(dict(USER), now=NOW)
        assert doc["password"] != "cobol42"
        assert pwd_context.verify("cobol42", doc["password"])


class TestValidateSession:
    def test_valid_payload_passes(self):
        assert validate_session_data(dict(SESSION)) is None

    @pytest.mark.parametrize("overrides, message", [
        ({"duration": None}, "Duration is required and must be at least 1 minute"),
        ({"duration": "30"}, "Duration is required and must be at least 1 minute"),
        ({"duration": True}, "Duration is required and must be at least 1 minute"),
        ({"duration": float("inf")}, "Duration is required and must be at least 1 minute"),
        ({"duration": float("nan")}, "Duration is required and must be at least 1 minute"),
        ({"customEstimationValues": [1, float("-inf")]}, "Invalid custom estimation values"),
        ({"userStories": [{"title": "A", "description": "d", "finalEstimation": float("inf")}]},
         "Invalid final estimation for user story: A"),
        ({"userStories": [{"title": "A", "description": "d", "votes": [{"userId": VOTER, "value": float("nan")}]}]},
         "Invalid vote value in user story: A"),
        ({"participants": VOTER}, "Invalid participants: must be a list"),
        ({"participants": [VOTER, 7]}, "Invalid participant ID: 7"),
        ({"estimationType": None}, "Invalid estimation type"),
        ({"estimationType": "custom"}, "Custom estimation type requires valid estimation values (required)"),
        ({"customEstimationValues": [1, None]}, "Invalid custom estimation values"),
        ({"accessCode": 1234}, "Invalid access code"),
        ({"userStories": {"title": "x"}}, "Invalid user stories: must be a list"),
        ({"userStories": ["x"]}, "Invalid user story at index 0"),
        ({"userStories": [{"title": "A", "description": " "}]}, "User story at index 0 requires a description"),
        ({"userStories": [{"title": "A", "description": "d", "status": "done"}]}, "Invalid status for user story: A"),
        ({"userStories": [{"title": "A", "description": "d", "votes": {}}]}, "Invalid votes for user story: A"),
        ({"userStories": [{"title": "A", "description": "d", "votes": [{"userId": VOTER}]}]},
         "Vote value is required in user story: A"),
        ({"userStories": [{"title": "A", "description": "d", "votes": [{"userId": VOTER, "value": [1]}]}]},
         "Invalid vote value in user story: A"),
        ({"userStories": [{"title": "A", "description": "d",
                           "votes": [{"userId": VOTER, "value": 1, "timestamp": "soon"}]}]},
         "Invalid vote timestamp in user story: A"),
    ])
    def test_rejects(self, overrides, message):
        assert _message(validate_session_data, {**SESSION, **overrides}) == message

    def test_missing_participants_allowed(self):
        data = dict(SESSION)
        del data["participants"]
        assert validate_session_data(data) is None


class TestNormalizeSession:
    def test_shapes_document(self):
        doc = normalize_session_data(dict(SESSION), now=NOW)
        assert doc["name"] == "Refinement"
        assert doc["startDate"] == datetime(2026, 11, 1, 8, tzinfo=timezone.utc)
        assert "endDate" not in doc
        assert "accessCode" not in doc
        assert doc["status"] == "scheduled"
        assert doc["visibility"] == "private"
        assert doc["facilitator"] == ObjectId(FACILITATOR)
        assert doc["participants"] == [ObjectId(VOTER)]

        story = doc["userStories"][0]
        assert story["title"] == "Search"
        assert story["priority"] == "medium"
        assert story["status"] == "pending"
        assert story["finalEstimation"] is None
        assert story["votes"] == [{"userId": ObjectId(VOTER), "value": "M", "timestamp": NOW}]

    def test_keeps_given_vote_timestamp(self):
        stories = [{"title": "A", "description": "d",
                    "votes": [{"userId": VOTER, "value": 8, "timestamp": "2026-10-01T00:00:00Z"}]}]
        doc = normalize_session_data({**SESSION, "userStories": stories}, now=NOW)
        assert doc["userStories"][0]["votes"][0]["timestamp"] == datetime(2026, 10, 1, tzinfo=timezone.utc)

    def test_explicit_status_and_visibility(self):
        doc = normalize_session_data({**SESSION, "status": "active", "visibility": "public"}, now=NOW)
        assert doc["status"] == "active"
        assert doc["visibility"] == "public"
