# tai_backend/core/timescales.py
# -----------------------------------------------------------------------------
# UTC ⇄ TAI conversion engine (exact integer arithmetic; no floats)
#
# Public API:
#   to_tai(utc_epoch_seconds, nano_of_second, leap_second=0) -> Instant[TAI]
#   instant_to_tai(instant) / from_tai(tai, scale=UTC)
#   check_early_validity(instant) / check_validity(instant) -> Validity
#   adjust_utc_around_gaps(original, result_s, result_ns) -> Instant
#   simple_add / simple_subtract / duration_between
#   utc_add / utc_subtract (civil-second arithmetic repaired around gaps)
#   try_* twins of each operation returning Result instead of raising
#
# Guarantees:
#   • UTC < 1958-01-01: TAI and UTC coincide by convention, except that the
#     last ~2.6 ms of 1957 were skipped by the 1958 offset (they clamp too).
#   • 1958 ≤ UTC < 1972: drifting, fractional TAI−UTC from the early table;
#     labels that would land inside a non-existent TAI range clamp to the next
#     entry's start.
#   • UTC ≥ 1972: integral TAI−UTC from the leap-second table; an explicit
#     leap_second selects 23:59:60.
#   • Every second-count addition is range-checked (ArithmeticOverflow).
#   • Tables are built once per process and only read here.
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Optional
import logging

from tai_backend.core.calendar import (
    NANOS_PER_SECOND,
    START_LEAP_SECONDS,
    START_TAI,
    TAI_START_LEAP_SECONDS,
)
from tai_backend.core.early_utc import EarlyUTCTable, early_utc_table
from tai_backend.core.errors import InvalidArgument, UnsupportedOperation, returns_result
from tai_backend.core.instant import TAI, UTC, Duration, Instant, TimeScale, Validity
from tai_backend.core.leapseconds import LeapSecondTable, leap_second_table
from tai_backend.core.safe_math import (
    safe_add,
    safe_decrement,
    safe_increment,
    safe_subtract,
)
from tai_backend.utils.config import engine_settings

__all__ = [
    "START_TAI",
    "START_LEAP_SECONDS",
    "TAI_START_LEAP_SECONDS",
    "to_tai",
    "instant_to_tai",
    "from_tai",
    "check_early_validity",
    "check_validity",
    "adjust_utc_around_gaps",
    "simple_add",
    "simple_subtract",
    "duration_between",
    "utc_add",
    "utc_subtract",
    "reset_tables",
    # Result-returning twins
    "try_to_tai",
    "try_from_tai",
    "try_simple_add",
    "try_simple_subtract",
    "try_duration_between",
    "try_utc_add",
    "try_utc_subtract",
]

log = logging.getLogger(__name__)


def reset_tables() -> None:
    """Drop the cached tables and settings; the next lookup rebuilds them."""
    early_utc_table.cache_clear()
    leap_second_table.cache_clear()
    engine_settings.cache_clear()


# ───────────────────────────── UTC → TAI ─────────────────────────────

def to_tai(
    utc_epoch_seconds: int,
    nano_of_second: int = 0,
    leap_second: int = 0,
    *,
    early: Optional[EarlyUTCTable] = None,
    leaps: Optional[LeapSecondTable] = None,
) -> Instant:
    """Convert a UTC label to the TAI instant it denotes."""
    if not (0 <= nano_of_second < NANOS_PER_SECOND):
        raise InvalidArgument(f"nano_of_second must be within [0, {NANOS_PER_SECOND}): {nano_of_second}")
    if leap_second < 0:
        raise InvalidArgument(f"leap_second must be >= 0: {leap_second}")

    if utc_epoch_seconds < START_TAI:
        ts = Instant(scale=TAI, epoch_seconds=utc_epoch_seconds, nano_of_second=nano_of_second)
        first = (early or early_utc_table()).first
        if not ts < first.start_tai:
            # skipped when the 1958 offset took effect
            log.debug("clamping UTC %s.%09d to TAI start of the early table", utc_epoch_seconds, nano_of_second)
            ts = first.start_tai
        return ts
    if utc_epoch_seconds < START_LEAP_SECONDS:
        return _from_early_instant(early or early_utc_table(), utc_epoch_seconds, nano_of_second)
    return _from_modern_instant(leaps or leap_second_table(), utc_epoch_seconds, leap_second, nano_of_second)


def _from_early_instant(table: EarlyUTCTable, utc_epoch_seconds: int, nano_of_second: int) -> Instant:
    e = table.entry_from_utc(utc_epoch_seconds)
    nanos = nano_of_second + e.get_utc_delta_nanoseconds(utc_epoch_seconds, nano_of_second)
    carry, rem = divmod(nanos, NANOS_PER_SECOND)
    ts = Instant(scale=TAI, epoch_seconds=safe_add(utc_epoch_seconds, carry), nano_of_second=rem)
    nxt = table.next_entry(e)
    if nxt is not None and not ts < nxt.start_tai:
        # the source label lies within a non-existent range
        log.debug("clamping UTC %s.%09d to TAI start of entry %s", utc_epoch_seconds, nano_of_second, nxt.index)
        ts = nxt.start_tai
    return ts


def _from_modern_instant(table: LeapSecondTable, utc_epoch_seconds: int, leap_second: int, nano_of_second: int) -> Instant:
    e = table.entry_from_utc(utc_epoch_seconds)
    seconds = safe_add(utc_epoch_seconds, safe_add(e.delta_seconds, leap_second))
    return Instant(scale=TAI, epoch_seconds=seconds, nano_of_second=nano_of_second)


def instant_to_tai(
    instant: Instant,
    *,
    early: Optional[EarlyUTCTable] = None,
    leaps: Optional[LeapSecondTable] = None,
) -> Instant:
    """Instant-typed entry point; TAI instants pass through unchanged."""
    if instant.scale == TAI:
        return instant
    return to_tai(instant.epoch_seconds, instant.nano_of_second, instant.leap_second, early=early, leaps=leaps)


# ───────────────────────────── TAI → UTC ─────────────────────────────

def from_tai(
    tai: Instant,
    scale: TimeScale = UTC,
    *,
    early: Optional[EarlyUTCTable] = None,
    leaps: Optional[LeapSecondTable] = None,
) -> Instant:
    """
    UTC label of a TAI instant.

    Inserted leap seconds come back with ``leap_second=1`` on UTC and fold
    onto the preceding second on POSIX_UTC. TAI instants inside an early-era
    overlap receive the label of their second occurrence.
    """
    if tai.scale != TAI:
        raise InvalidArgument(f"from_tai expects a TAI instant, got {tai.scale}")
    if scale == TAI:
        return tai
    early = early or early_utc_table()

    if tai < early.first.start_tai:
        return tai.with_scale(scale)

    if tai.epoch_seconds < TAI_START_LEAP_SECONDS:
        t = tai.epoch_seconds * NANOS_PER_SECOND + tai.nano_of_second
        e = early.entry_from_tai(tai)
        u = e.utc_nanos_from_tai(t)
        if e.end_epoch_seconds is not None and u >= e.end_epoch_seconds * NANOS_PER_SECOND:
            nxt = early.next_entry(e)
            if nxt is not None:
                u = nxt.utc_nanos_from_tai(t)
        s, n = divmod(u, NANOS_PER_SECOND)
        return Instant(scale=scale, epoch_seconds=s, nano_of_second=n)

    leaps = leaps or leap_second_table()
    e = leaps.entry_from_tai(tai.epoch_seconds)
    utc = safe_subtract(tai.epoch_seconds, e.delta_seconds)
    end = e.end_utc_epoch_seconds
    if end is not None and utc >= end:
        leap = utc - end + 1
        return Instant(scale=scale, epoch_seconds=end - 1,
                       leap_second=leap if scale.supports_leap_second else 0,
                       nano_of_second=tai.nano_of_second)
    return Instant(scale=scale, epoch_seconds=utc, nano_of_second=tai.nano_of_second)


# ───────────────────────────── Validity ─────────────────────────────

def check_early_validity(instant: Instant, *, early: Optional[EarlyUTCTable] = None) -> Validity:
    e = (early or early_utc_table()).entry_from_utc(instant.epoch_seconds)
    # gaps/overlap occur within the last second so quickly reject other cases
    gap = e.utc_gap_nanoseconds
    if gap == 0 or e.end_epoch_seconds is None or instant.epoch_seconds < e.end_epoch_seconds - 1:
        return Validity.valid
    if instant.nano_of_second <= NANOS_PER_SECOND - abs(gap):
        return Validity.valid
    return Validity.ambiguous if gap < 0 else Validity.invalid


def check_validity(
    instant: Instant,
    *,
    early: Optional[EarlyUTCTable] = None,
    leaps: Optional[LeapSecondTable] = None,
) -> Validity:
    """Classify any label: TAI is always valid; UTC labels per era."""
    if instant.scale == TAI:
        return Validity.valid
    if instant.leap_second:
        if instant.epoch_seconds < START_LEAP_SECONDS:
            return Validity.invalid
        table = leaps or leap_second_table()
        e = table.entry_from_utc(instant.epoch_seconds)
        if e.end_utc_epoch_seconds == instant.epoch_seconds + 1 and instant.leap_second <= table.leap_seconds_at_end(e):
            return Validity.valid
        return Validity.invalid
    if instant.epoch_seconds < START_TAI:
        first = (early or early_utc_table()).first
        return Validity.valid if instant.with_scale(TAI) < first.start_tai else Validity.invalid
    if instant.epoch_seconds < START_LEAP_SECONDS:
        return check_early_validity(instant, early=early)
    return Validity.valid


# ───────────────────────────── Gap repair ─────────────────────────────

def _moves_forward(original: Instant, result_epoch_seconds: int, result_nano_of_second: int) -> bool:
    if original.epoch_seconds != result_epoch_seconds:
        return original.epoch_seconds < result_epoch_seconds
    return original.nano_of_second <= result_nano_of_second


def adjust_utc_around_gaps(
    original: Instant,
    result_epoch_seconds: int,
    result_nano_of_second: int,
    *,
    early: Optional[EarlyUTCTable] = None,
) -> Instant:
    """
    Repair the raw result of arithmetic on a UTC label that landed inside a gap.

    Forward travel (or none) moves the result to the first label after the
    gap; backward travel moves it to the last valid label before the gap,
    ``NANOS_PER_SECOND - gap`` into the final second. Labels skipped just
    before the table starts are repaired the same way.
    """
    table = early or early_utc_table()
    if table.covers(result_epoch_seconds):
        e = table.entry_from_utc(result_epoch_seconds)
        gap = e.utc_gap_nanoseconds
        if (gap > 0 and e.end_epoch_seconds is not None
                and result_epoch_seconds + 1 == e.end_epoch_seconds
                and result_nano_of_second + gap > NANOS_PER_SECOND):
            # result is within invalid interval
            if _moves_forward(original, result_epoch_seconds, result_nano_of_second):
                # advance to end of gap
                result_epoch_seconds = safe_increment(result_epoch_seconds)
                result_nano_of_second = 0
            else:
                # go back to beginning of gap
                result_nano_of_second = NANOS_PER_SECOND - gap
            log.debug("result moved out of UTC gap to %s.%09d", result_epoch_seconds, result_nano_of_second)
    else:
        first = table.first
        raw = Instant(scale=TAI, epoch_seconds=result_epoch_seconds, nano_of_second=result_nano_of_second)
        if not raw < first.start_tai:
            # skipped labels before the table's first entry
            if _moves_forward(original, result_epoch_seconds, result_nano_of_second):
                result_epoch_seconds, result_nano_of_second = first.start_epoch_seconds, 0
            else:
                last = first.start_tai.epoch_seconds * NANOS_PER_SECOND + first.start_tai.nano_of_second - 1
                result_epoch_seconds, result_nano_of_second = divmod(last, NANOS_PER_SECOND)
            log.debug("result moved out of UTC gap to %s.%09d", result_epoch_seconds, result_nano_of_second)
    return Instant(scale=original.scale, epoch_seconds=result_epoch_seconds,
                   nano_of_second=result_nano_of_second)


# ───────────────────────────── Duration arithmetic ─────────────────────────────

def simple_add(instant: Instant, duration: Duration) -> Instant:
    if instant.scale.supports_leap_second:
        raise UnsupportedOperation(f"simple_add does not support time scales with leap seconds ({instant.scale})")
    if duration.is_zero:
        return instant
    seconds = safe_add(instant.epoch_seconds, duration.seconds)
    nanos = instant.nano_of_second + duration.nanos
    if nanos >= NANOS_PER_SECOND:
        nanos -= NANOS_PER_SECOND
        seconds = safe_increment(seconds)
    return Instant(scale=instant.scale, epoch_seconds=seconds, nano_of_second=nanos)


def simple_subtract(instant: Instant, duration: Duration) -> Instant:
    if instant.scale.supports_leap_second:
        raise UnsupportedOperation(f"simple_subtract does not support time scales with leap seconds ({instant.scale})")
    if duration.is_zero:
        return instant
    seconds = safe_subtract(instant.epoch_seconds, duration.seconds)
    nanos = instant.nano_of_second - duration.nanos
    if nanos < 0:
        nanos += NANOS_PER_SECOND
        seconds = safe_decrement(seconds)
    return Instant(scale=instant.scale, epoch_seconds=seconds, nano_of_second=nanos)


def duration_between(start: Instant, end: Instant) -> Duration:
    """Label difference ``end - start``; both must be on the same scale."""
    if start.scale != end.scale:
        raise InvalidArgument(f"start and end must be on the same time scale ({start.scale} vs {end.scale})")
    secs = safe_subtract(end.epoch_seconds, start.epoch_seconds)
    nanos = end.nano_of_second - start.nano_of_second
    if nanos < 0:
        nanos += NANOS_PER_SECOND
        secs = safe_decrement(secs)
    return Duration(seconds=secs, nanos=nanos)


def utc_add(instant: Instant, duration: Duration, *, early: Optional[EarlyUTCTable] = None) -> Instant:
    """Civil-second addition on a UTC label, snapped out of any gap it lands in."""
    if not instant.scale.supports_leap_second:
        return simple_add(instant, duration)
    seconds = safe_add(instant.epoch_seconds, duration.seconds)
    nanos = instant.nano_of_second + duration.nanos
    if nanos >= NANOS_PER_SECOND:
        nanos -= NANOS_PER_SECOND
        seconds = safe_increment(seconds)
    return adjust_utc_around_gaps(instant, seconds, nanos, early=early)


def utc_subtract(instant: Instant, duration: Duration, *, early: Optional[EarlyUTCTable] = None) -> Instant:
    if not instant.scale.supports_leap_second:
        return simple_subtract(instant, duration)
    seconds = safe_subtract(instant.epoch_seconds, duration.seconds)
    nanos = instant.nano_of_second - duration.nanos
    if nanos < 0:
        nanos += NANOS_PER_SECOND
        seconds = safe_decrement(seconds)
    return adjust_utc_around_gaps(instant, seconds, nanos, early=early)


# ───────────────────────────── Result twins ─────────────────────────────

try_to_tai = returns_result(to_tai)
try_from_tai = returns_result(from_tai)
try_simple_add = returns_result(simple_add)
try_simple_subtract = returns_result(simple_subtract)
try_duration_between = returns_result(duration_between)
try_utc_add = returns_result(utc_add)
try_utc_subtract = returns_result(utc_subtract)
