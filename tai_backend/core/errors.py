# tai_backend/core/errors.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, Callable, Generic, Optional, TypeVar

__all__ = [
    "ErrorKind",
    "ConversionError",
    "ArithmeticOverflow",
    "UnsupportedOperation",
    "InvalidArgument",
    "Result",
    "capture",
    "returns_result",
]

T = TypeVar("T")

# ───────────────────────── error kinds ─────────────────────────

class ErrorKind(str, Enum):
    OVERFLOW = "arithmetic_overflow"
    UNSUPPORTED = "unsupported_operation"
    INVALID_ARGUMENT = "invalid_argument"


class ConversionError(Exception):
    """Base of every engine failure. Carries a stable ``code`` for API payloads."""
    kind: ErrorKind = ErrorKind.INVALID_ARGUMENT

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"{self.code}: {message}")

    @property
    def code(self) -> str:
        return self.kind.value


class ArithmeticOverflow(ConversionError, OverflowError):
    """A second count left the signed 64-bit range."""
    kind = ErrorKind.OVERFLOW


class UnsupportedOperation(ConversionError):
    """Gap-unaware arithmetic requested on a scale with leap seconds."""
    kind = ErrorKind.UNSUPPORTED


class InvalidArgument(ConversionError, ValueError):
    """Mixed scales, out-of-range fields, or a query outside a table's domain."""
    kind = ErrorKind.INVALID_ARGUMENT


# ───────────────────────── explicit results ─────────────────────────

@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Either a value or a ConversionError; never both.

    Callers that prefer not to rely on exception propagation use the
    ``try_*`` functions of the engine and branch on ``ok`` / ``error.kind``.
    """
    value: Optional[T] = None
    error: Optional[ConversionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return None if self.error is None else self.error.kind

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def unwrap_or(self, default: T) -> T:
        return default if self.error is not None else self.value  # type: ignore[return-value]


def capture(fn: Callable[..., T], *args: Any, **kwargs: Any) -> Result[T]:
    """Call ``fn`` and fold a ConversionError into a Result. Other exceptions propagate."""
    try:
        return Result(value=fn(*args, **kwargs))
    except ConversionError as e:
        return Result(error=e)


def returns_result(fn: Callable[..., T]) -> Callable[..., Result[T]]:
    """Build the ``try_`` twin of an engine operation."""
    @wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Result[T]:
        return capture(fn, *args, **kwargs)
    wrapper.__name__ = f"try_{fn.__name__}"
    wrapper.__qualname__ = wrapper.__name__
    return wrapper
