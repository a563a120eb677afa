"""
Typed errors raised by CRUD operations.

Every failure the engine can detect on its own belongs to one of four
kinds. Callers can branch on the exception class or on ``error.kind``.
Driver errors from the database are not wrapped and propagate as-is.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Categories of engine failures."""
    MISSING_ARGUMENT = "missing_argument"
    UNSUPPORTED_OPERATION = "unsupported_operation"
    CONCURRENCY_VIOLATION = "concurrency_violation"
    INTEGRITY_VIOLATION = "integrity_violation"


class CrudError(Exception):
    """Base exception for CRUD engine failures."""

    kind: ErrorKind

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class MissingArgumentError(CrudError):
    """A required request value (model name, id list, primary key) is absent."""
    kind = ErrorKind.MISSING_ARGUMENT


class UnsupportedOperationError(CrudError):
    """The request asks for something the engine refuses to do."""
    kind = ErrorKind.UNSUPPORTED_OPERATION


class ConcurrencyViolationError(CrudError):
    """An Update/Patch did not affect exactly one row."""
    kind = ErrorKind.CONCURRENCY_VIOLATION

    def __init__(self, message: str, rows_updated: int):
        super().__init__(message)
        self.rows_updated = rows_updated


class IntegrityViolationError(CrudError):
    """A Create is missing the primary key of a non-generated key column."""
    kind = ErrorKind.INTEGRITY_VIOLATION
