# tai_backend/core/instant.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import total_ordering
from typing import Any, Dict, Final

from tai_backend.core.calendar import NANOS_PER_SECOND
from tai_backend.core.errors import InvalidArgument
from tai_backend.core.safe_math import I64_MAX, I64_MIN, safe_add, safe_negate, safe_subtract

__all__ = [
    "TimeScale",
    "TAI",
    "UTC",
    "POSIX_UTC",
    "SCALES",
    "scale_by_name",
    "Instant",
    "Duration",
    "Validity",
]

# ───────────────────────────── Time scales ─────────────────────────────

@dataclass(frozen=True)
class TimeScale:
    name: str
    supports_leap_second: bool

    def __str__(self) -> str:
        return self.name


TAI: Final = TimeScale("TAI", supports_leap_second=False)
UTC: Final = TimeScale("UTC", supports_leap_second=True)
# UTC labels counted without leap seconds (23:59:60 folds onto 23:59:59)
POSIX_UTC: Final = TimeScale("POSIX_UTC", supports_leap_second=False)

SCALES: Final[Dict[str, TimeScale]] = {s.name: s for s in (TAI, UTC, POSIX_UTC)}


def scale_by_name(name: str) -> TimeScale:
    try:
        return SCALES[str(name).strip().upper()]
    except KeyError:
        raise InvalidArgument(f"unknown time scale '{name}' (expected one of {sorted(SCALES)})") from None


class Validity(str, Enum):
    """Classification of a UTC label against the historical tables."""
    valid = "valid"
    ambiguous = "ambiguous"   # overlap: two TAI instants share the label
    invalid = "invalid"       # gap: no TAI instant carries the label


# ───────────────────────────── Instant ─────────────────────────────

def _check_nanos(nanos: int, what: str) -> None:
    if not (0 <= nanos < NANOS_PER_SECOND):
        raise InvalidArgument(f"{what} must be within [0, {NANOS_PER_SECOND}): {nanos}")


def _check_seconds(seconds: int, what: str) -> None:
    if not (I64_MIN <= seconds <= I64_MAX):
        raise InvalidArgument(f"{what} outside signed 64-bit range: {seconds}")


@total_ordering
@dataclass(frozen=True)
class Instant:
    """
    A point on one time scale: whole seconds since 1970-01-01 on that scale,
    the leap-second index within the last second of a day, and the
    nanosecond of the second.

    Instants order lexicographically on (epoch_seconds, leap_second,
    nano_of_second). Ordering instants from different scales is an error.
    """
    scale: TimeScale
    epoch_seconds: int
    leap_second: int = 0
    nano_of_second: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.scale, TimeScale):
            raise InvalidArgument(f"scale must be a TimeScale, got {type(self.scale).__name__}")
        _check_seconds(self.epoch_seconds, "epoch_seconds")
        _check_nanos(self.nano_of_second, "nano_of_second")
        if self.leap_second < 0:
            raise InvalidArgument(f"leap_second must be >= 0: {self.leap_second}")
        if self.leap_second and not self.scale.supports_leap_second:
            raise InvalidArgument(f"{self.scale} does not support leap seconds")

    @classmethod
    def of(cls, scale: TimeScale, epoch_seconds: int, nano_of_second: int = 0, leap_second: int = 0) -> "Instant":
        return cls(scale=scale, epoch_seconds=int(epoch_seconds),
                   leap_second=int(leap_second), nano_of_second=int(nano_of_second))

    def __lt__(self, other: "Instant") -> bool:
        if not isinstance(other, Instant):
            return NotImplemented
        if other.scale != self.scale:
            raise InvalidArgument(f"cannot compare instants on {self.scale} and {other.scale}")
        return (self.epoch_seconds, self.leap_second, self.nano_of_second) < (
            other.epoch_seconds, other.leap_second, other.nano_of_second)

    def is_after(self, other: "Instant") -> bool:
        return other < self

    def is_before(self, other: "Instant") -> bool:
        return self < other

    def with_scale(self, scale: TimeScale) -> "Instant":
        """Same label on another scale (no conversion applied)."""
        return Instant(scale=scale, epoch_seconds=self.epoch_seconds,
                       leap_second=self.leap_second, nano_of_second=self.nano_of_second)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scale": self.scale.name,
            "epoch_seconds": self.epoch_seconds,
            "leap_second": self.leap_second,
            "nano_of_second": self.nano_of_second,
        }


# ───────────────────────────── Duration ─────────────────────────────

@dataclass(frozen=True)
class Duration:
    """Signed span of ``seconds + nanos * 1e-9`` with nanos normalised to [0, 1e9)."""
    seconds: int
    nanos: int = 0

    def __post_init__(self) -> None:
        _check_seconds(self.seconds, "duration seconds")
        _check_nanos(self.nanos, "duration nanos")

    @classmethod
    def of_seconds(cls, seconds: int, nano_adjustment: int = 0) -> "Duration":
        """Normalise any nanosecond adjustment (positive or negative) into the span."""
        carry, nanos = divmod(int(nano_adjustment), NANOS_PER_SECOND)
        return cls(seconds=safe_add(int(seconds), carry), nanos=nanos)

    @classmethod
    def of_nanos(cls, total_nanos: int) -> "Duration":
        return cls.of_seconds(0, total_nanos)

    @property
    def is_zero(self) -> bool:
        return self.seconds == 0 and self.nanos == 0

    def total_nanos(self) -> int:
        return self.seconds * NANOS_PER_SECOND + self.nanos

    def __neg__(self) -> "Duration":
        if self.nanos == 0:
            return Duration(seconds=safe_negate(self.seconds))
        return Duration(seconds=safe_subtract(safe_negate(self.seconds), 1),
                        nanos=NANOS_PER_SECOND - self.nanos)

    def to_dict(self) -> Dict[str, Any]:
        return {"seconds": self.seconds, "nanos": self.nanos}
