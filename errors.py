"""
Error kinds and their HTTP mapping.

Every failure leaves the API as ``{"error": message}``; the status code comes
from ``STATUS_BY_KIND`` and never from the message text.
"""
from enum import Enum
from typing import Dict


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    STORE = "store"


STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.STORE: 500,
}


class AppError(Exception):
    kind: ErrorKind = ErrorKind.STORE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def to_response(self) -> Dict[str, str]:
        return {"error": self.message}


class ValidationError(AppError):
    """Bad or missing input field; the client can correct it."""
    kind = ErrorKind.VALIDATION


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(AppError):
    kind = ErrorKind.CONFLICT


class StoreError(AppError):
    """Connection or persistence failure."""
    kind = ErrorKind.STORE
