# tai_backend/core/calendar.py
# -*- coding: utf-8 -*-
"""
Calendar arithmetic for the time-scale engine

Purpose
-------
Single source of truth for:
- proleptic Gregorian date → Julian Day Number / Modified Julian Day
- date → whole seconds since 1970-01-01 (no leap seconds counted)
- the epoch constants every conversion honours

Design
------
- Pure integer arithmetic, no floating point.
- Constants are computed once at import and never recomputed per call.
"""

from __future__ import annotations
from typing import Final

__all__ = [
    # functions
    "julian_day_number", "modified_julian_day", "epoch_seconds",
    "mjd_to_epoch_seconds", "epoch_seconds_to_mjd", "days_in_month",
    # constants
    "NANOS_PER_SECOND", "SECONDS_PER_DAY", "NANOS_PER_DAY", "MJD_OFFSET",
    "MJD_EPOCH", "START_TAI", "START_LEAP_SECONDS", "TAI_START_LEAP_SECONDS",
]

# ── units ────────────────────────────────────────────────────────────────────
NANOS_PER_SECOND: Final[int] = 1_000_000_000
SECONDS_PER_DAY: Final[int] = 86_400
NANOS_PER_DAY: Final[int] = SECONDS_PER_DAY * NANOS_PER_SECOND

# JDN − MJD (the half day of the astronomical JD is folded into the integer form)
MJD_OFFSET: Final[int] = 2_400_001


# ── day numbers ──────────────────────────────────────────────────────────────
def julian_day_number(year: int, month: int, day: int) -> int:
    """Julian Day Number of a proleptic Gregorian date (integer formula)."""
    a = (14 - month) // 12
    y = year + 4800 - a
    m = month + 12 * a - 3
    return day + (153 * m + 2) // 5 + 365 * y + y // 4 - y // 100 + y // 400 - 32045


def modified_julian_day(year: int, month: int, day: int) -> int:
    return julian_day_number(year, month, day) - MJD_OFFSET


def days_in_month(year: int, month: int) -> int:
    """Length of a proleptic Gregorian month."""
    if month == 2:
        leap = year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)
        return 29 if leap else 28
    return 30 if month in (4, 6, 9, 11) else 31


# ── epoch constants ──────────────────────────────────────────────────────────
MJD_EPOCH: Final[int] = modified_julian_day(1970, 1, 1)


def mjd_to_epoch_seconds(mjd: int) -> int:
    """Seconds from 1970-01-01T00:00 to 00:00 of the given MJD."""
    return SECONDS_PER_DAY * (mjd - MJD_EPOCH)


def epoch_seconds_to_mjd(seconds: int) -> int:
    """MJD of the day containing ``seconds`` (floor, so negatives work)."""
    return MJD_EPOCH + seconds // SECONDS_PER_DAY


def epoch_seconds(year: int, month: int, day: int) -> int:
    """Seconds from 1970-01-01 to midnight starting the given date (negative before 1970)."""
    return mjd_to_epoch_seconds(modified_julian_day(year, month, day))


# TAI and UTC coincide by convention before this date
START_TAI: Final[int] = epoch_seconds(1958, 1, 1)
# From here UTC seconds are SI seconds and TAI−UTC is an integer
START_LEAP_SECONDS: Final[int] = epoch_seconds(1972, 1, 1)
# Start of the leap-second era on TAI (initial TAI−UTC of 10 s)
TAI_START_LEAP_SECONDS: Final[int] = START_LEAP_SECONDS + 10
