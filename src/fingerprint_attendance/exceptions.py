"""
Domain Exceptions
=================
Errors raised by the enrollment, attendance and reporting services.

The HTTP layer maps them to status codes:
- NotFoundError -> 404
- ConflictError -> 409
- StorageError  -> 503
"""

from typing import Optional


class AttendanceError(Exception):
    """Base exception for the attendance backend."""


class NotFoundError(AttendanceError):
    """A referenced student or pending registration does not exist."""

    def __init__(self, entity: str, identifier: str, message: Optional[str] = None):
        self.entity = entity
        self.identifier = identifier
        super().__init__(message or f"{entity} not found: {identifier}")


class ConflictError(AttendanceError):
    """A uniqueness rule was violated (duplicate matric or fingerprint ID)."""

    def __init__(self, field: str, value: str, message: Optional[str] = None):
        self.field = field
        self.value = value
        super().__init__(message or f"Duplicate {field}: {value}")


class StorageError(AttendanceError):
    """The underlying database failed."""
