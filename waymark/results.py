"""Discriminated success/failure results returned by public operations."""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .errors import ErrorKind, WaymarkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorInfo(BaseModel):
    """Kind, message and structured details of a failed operation."""

    kind: ErrorKind
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class OperationResult(BaseModel, Generic[T]):
    """Outcome of an operation: either ``value`` or ``error`` is set."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    value: Optional[T] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def ok(cls, value: Any = None) -> "OperationResult":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: WaymarkError) -> "OperationResult":
        return cls(
            success=False,
            error=ErrorInfo(kind=error.kind, message=error.message, details=error.details),
        )

    @property
    def kind(self) -> Optional[ErrorKind]:
        """Error kind of a failed result, ``None`` on success."""
        return self.error.kind if self.error else None

    def unwrap(self) -> T:
        """Return ``value`` or raise the carried error as :class:`WaymarkError`."""
        if self.success:
            return self.value  # type: ignore[return-value]
        assert self.error is not None
        raise WaymarkError(self.error.kind, self.error.message, self.error.details)


def operation(
    name: str,
) -> Callable[[Callable[..., Awaitable[Any]]], Callable[..., Awaitable[OperationResult]]]:
    """Wrap a coroutine so expected failures are returned instead of raised.

    ``WaymarkError`` becomes a failed result as is; ``OSError`` is mapped onto
    ``PermissionDenied``/``NotFound``/``IOError``. The operation name is added
    to the error details unless an inner operation already set one.
    """

    def decorator(
        func: Callable[..., Awaitable[Any]],
    ) -> Callable[..., Awaitable[OperationResult]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> OperationResult:
            try:
                value = await func(*args, **kwargs)
            except WaymarkError as exc:
                exc.details.setdefault("operation", name)
                logger.debug(f"{name} failed with {exc.kind.value}: {exc.message}")
                return OperationResult.fail(exc)
            except OSError as exc:
                error = WaymarkError.from_os_error(exc, operation=name)
                logger.error(f"{name} failed with {error.kind.value}: {error.message}")
                return OperationResult.fail(error)
            return OperationResult.ok(value)

        return wrapper

    return decorator
