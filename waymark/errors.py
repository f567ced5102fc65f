"""Error kinds reported by waymark operations."""

from __future__ import annotations

import errno
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Category of a failed operation."""

    INVALID_IDENTIFIER = "InvalidIdentifier"
    INVALID_STATE = "InvalidState"
    INVALID_STATUS = "InvalidStatus"
    INVALID_CHANGE = "InvalidChange"
    NOT_FOUND = "NotFound"
    PARSE_ERROR = "ParseError"
    PERMISSION_DENIED = "PermissionDenied"
    IO_ERROR = "IOError"
    ROLLBACK_ERROR = "RollbackError"


class WaymarkError(Exception):
    """Expected failure of a waymark operation.

    Raised inside components and converted into a failed
    :class:`~waymark.results.OperationResult` at the public boundary.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.kind = ErrorKind(kind)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def __repr__(self) -> str:
        return f"WaymarkError({self.kind.value!r}, {self.message!r})"

    @classmethod
    def from_os_error(cls, exc: OSError, **details: Any) -> "WaymarkError":
        """Map a filesystem error onto an error kind."""
        if isinstance(exc, PermissionError):
            kind = ErrorKind.PERMISSION_DENIED
        elif isinstance(exc, FileNotFoundError):
            kind = ErrorKind.NOT_FOUND
        else:
            kind = ErrorKind.IO_ERROR
        if exc.errno is not None:
            details.setdefault("originalError", errno.errorcode.get(exc.errno, str(exc.errno)))
        if exc.filename is not None:
            details.setdefault("path", str(exc.filename))
        return cls(kind, exc.strerror or str(exc), details)


def invalid_identifier(name: str, value: Any, operation: str) -> WaymarkError:
    return WaymarkError(
        ErrorKind.INVALID_IDENTIFIER,
        f"Invalid {name.replace('_', ' ')}",
        {"operation": operation, name: value, "expectedType": "string"},
    )


def require_identifier(name: str, value: Any, operation: str) -> str:
    """Return ``value`` if it is a non-empty string, raise otherwise."""
    if not value or not isinstance(value, str):
        raise invalid_identifier(name, value, operation)
    return value
