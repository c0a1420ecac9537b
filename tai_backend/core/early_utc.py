# tai_backend/core/early_utc.py
# -----------------------------------------------------------------------------
# Pre-1972 UTC−TAI rate-change table.
#
# Between 1958 and 1972 UTC ran at an offset *rate* from TAI and was stepped
# at announced dates. Each row of the historical data gives
#
#     TAI − UTC = offset + (MJD − reference_mjd) × rate    [s, rate in s/day]
#
# valid from 00:00 UTC of its date up to the next row. The table turns those
# rows into integer-nanosecond entries over half-open UTC-second intervals,
# each carrying:
#   • delta_nanos(utc_s, nano): the drift function, exact (floor at 1 ns)
#   • utc_gap_nanoseconds: signed step at the interval end
#         > 0  gap      (UTC was advanced; the last |gap| ns of labels never existed)
#         < 0  overlap  (UTC was set back; the last |gap| ns of labels occurred twice)
#   • start_tai: the TAI instant at which the interval begins
#
# Successors are addressed by index into the table; entries never link to
# each other. The table is built once and is read-only thereafter.
# -----------------------------------------------------------------------------

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple
import logging

from tai_backend.core.calendar import (
    NANOS_PER_DAY,
    NANOS_PER_SECOND,
    START_LEAP_SECONDS,
    START_TAI,
    epoch_seconds,
    mjd_to_epoch_seconds,
)
from tai_backend.core.errors import InvalidArgument
from tai_backend.core.instant import TAI, Instant

__all__ = [
    "EarlyUTCEntry",
    "EarlyUTCTable",
    "RateRow",
    "HISTORICAL_RATE_ROWS",
    "early_utc_table",
]

log = logging.getLogger(__name__)

# (year, month, day, offset seconds, reference MJD, rate seconds/day)
# Source: BIH/USNO tai-utc.dat as carried by ERFA dat(). The 1960 row is
# extended back to 1958-01-01 (start of TAI) and the 1972 row closes the era.
_ROWS: Tuple[Tuple[int, int, int, str, int, str], ...] = (
    (1958, 1, 1, "1.4178180", 37300, "0.0012960"),
    (1961, 1, 1, "1.4228180", 37300, "0.0012960"),
    (1961, 8, 1, "1.3728180", 37300, "0.0012960"),
    (1962, 1, 1, "1.8458580", 37665, "0.0011232"),
    (1963, 11, 1, "1.9458580", 37665, "0.0011232"),
    (1964, 1, 1, "3.2401300", 38761, "0.0012960"),
    (1964, 4, 1, "3.3401300", 38761, "0.0012960"),
    (1964, 9, 1, "3.4401300", 38761, "0.0012960"),
    (1965, 1, 1, "3.5401300", 38761, "0.0012960"),
    (1965, 3, 1, "3.6401300", 38761, "0.0012960"),
    (1965, 7, 1, "3.7401300", 38761, "0.0012960"),
    (1965, 9, 1, "3.8401300", 38761, "0.0012960"),
    (1966, 1, 1, "4.3131700", 39126, "0.0025920"),
    (1968, 2, 1, "4.2131700", 39126, "0.0025920"),
    (1972, 1, 1, "10.0", 41317, "0.0"),
)


def _nanos(value: str) -> int:
    n = Decimal(value) * NANOS_PER_SECOND
    if n != n.to_integral_value():
        raise ValueError(f"value {value} is not a whole number of nanoseconds")
    return int(n)


@dataclass(frozen=True)
class RateRow:
    """One historical rate-change row, in integer units."""
    start_epoch_seconds: int
    offset_nanos: int
    reference_epoch_seconds: int
    rate_nanos_per_day: int

    @classmethod
    def from_historical(cls, year: int, month: int, day: int,
                        offset_s: str, reference_mjd: int, rate_s_per_day: str) -> "RateRow":
        return cls(
            start_epoch_seconds=epoch_seconds(year, month, day),
            offset_nanos=_nanos(offset_s),
            reference_epoch_seconds=mjd_to_epoch_seconds(reference_mjd),
            rate_nanos_per_day=_nanos(rate_s_per_day),
        )

    def delta_nanos(self, utc_epoch_seconds: int, nano_of_second: int = 0) -> int:
        """TAI − UTC in nanoseconds at the given UTC label (floor to 1 ns)."""
        since_ref = (utc_epoch_seconds - self.reference_epoch_seconds) * NANOS_PER_SECOND + nano_of_second
        return self.offset_nanos + (self.rate_nanos_per_day * since_ref) // NANOS_PER_DAY


HISTORICAL_RATE_ROWS: Tuple[RateRow, ...] = tuple(RateRow.from_historical(*r) for r in _ROWS)


@dataclass(frozen=True)
class EarlyUTCEntry:
    index: int
    start_epoch_seconds: int
    end_epoch_seconds: Optional[int]  # exclusive; None for the terminal entry
    row: RateRow
    utc_gap_nanoseconds: int
    start_tai: Instant

    def get_utc_delta_nanoseconds(self, utc_epoch_seconds: int, nano_of_second: int = 0) -> int:
        return self.row.delta_nanos(utc_epoch_seconds, nano_of_second)

    def tai_nanos(self, utc_epoch_seconds: int, nano_of_second: int = 0) -> int:
        """TAI position in ns since epoch of a UTC label, by this entry's formula."""
        return (utc_epoch_seconds * NANOS_PER_SECOND + nano_of_second
                + self.row.delta_nanos(utc_epoch_seconds, nano_of_second))

    def utc_nanos_from_tai(self, tai_nanos: int) -> int:
        """
        Largest UTC label U (ns since epoch) with U + delta(U) <= tai_nanos.

        Closed form U = (D·(T − A) + R·ref) / (D + R), then nudged so the
        floor in delta_nanos is honoured exactly.
        """
        row = self.row
        ref = row.reference_epoch_seconds * NANOS_PER_SECOND
        r = row.rate_nanos_per_day
        u = (NANOS_PER_DAY * (tai_nanos - row.offset_nanos) + r * ref) // (NANOS_PER_DAY + r)
        s, n = divmod(u, NANOS_PER_SECOND)
        while self.tai_nanos(s, n) > tai_nanos:
            u -= 1
            s, n = divmod(u, NANOS_PER_SECOND)
        while True:
            s1, n1 = divmod(u + 1, NANOS_PER_SECOND)
            if self.tai_nanos(s1, n1) > tai_nanos:
                break
            u += 1
        return u

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "start_epoch_seconds": self.start_epoch_seconds,
            "end_epoch_seconds": self.end_epoch_seconds,
            "offset_nanos": self.row.offset_nanos,
            "rate_nanos_per_day": self.row.rate_nanos_per_day,
            "utc_gap_nanoseconds": self.utc_gap_nanoseconds,
            "start_tai": self.start_tai.to_dict(),
        }


def _instant_from_tai_nanos(tai_nanos: int) -> Instant:
    s, n = divmod(tai_nanos, NANOS_PER_SECOND)
    return Instant(scale=TAI, epoch_seconds=s, nano_of_second=n)


class EarlyUTCTable:
    """Ordered, contiguous rate-change entries with O(log n) lookup."""

    def __init__(self, rows: Sequence[RateRow]):
        if not rows:
            raise ValueError("early UTC table needs at least one row")
        starts = [r.start_epoch_seconds for r in rows]
        if any(b <= a for a, b in zip(starts, starts[1:])):
            raise ValueError("rate-change rows must be strictly increasing in start")

        entries: List[EarlyUTCEntry] = []
        for i, row in enumerate(rows):
            nxt = rows[i + 1] if i + 1 < len(rows) else None
            end = nxt.start_epoch_seconds if nxt is not None else None
            gap = 0
            if nxt is not None:
                # positive when TAI−UTC drops at the boundary (UTC jumped forward)
                gap = row.delta_nanos(end) - nxt.delta_nanos(end)
            start_tai = _instant_from_tai_nanos(
                row.start_epoch_seconds * NANOS_PER_SECOND + row.delta_nanos(row.start_epoch_seconds)
            )
            entries.append(EarlyUTCEntry(
                index=i,
                start_epoch_seconds=row.start_epoch_seconds,
                end_epoch_seconds=end,
                row=row,
                utc_gap_nanoseconds=gap,
                start_tai=start_tai,
            ))
        self._entries: Tuple[EarlyUTCEntry, ...] = tuple(entries)
        self._starts: Tuple[int, ...] = tuple(starts)
        self._tai_starts: Tuple[Tuple[int, int], ...] = tuple(
            (e.start_tai.epoch_seconds, e.start_tai.nano_of_second) for e in entries
        )

    # ── lookup ──────────────────────────────────────────────────────────────
    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> Tuple[EarlyUTCEntry, ...]:
        return self._entries

    @property
    def first(self) -> EarlyUTCEntry:
        return self._entries[0]

    def covers(self, utc_epoch_seconds: int) -> bool:
        return utc_epoch_seconds >= self._starts[0]

    def entry_from_utc(self, utc_epoch_seconds: int) -> EarlyUTCEntry:
        i = bisect_right(self._starts, utc_epoch_seconds) - 1
        if i < 0:
            raise InvalidArgument(
                f"UTC second {utc_epoch_seconds} precedes the early table start {self._starts[0]}"
            )
        return self._entries[i]

    def entry_from_tai(self, tai: Instant) -> EarlyUTCEntry:
        i = bisect_right(self._tai_starts, (tai.epoch_seconds, tai.nano_of_second)) - 1
        if i < 0:
            raise InvalidArgument(
                f"TAI {tai.epoch_seconds}.{tai.nano_of_second:09d} precedes the early table start"
            )
        return self._entries[i]

    def next_entry(self, entry: EarlyUTCEntry) -> Optional[EarlyUTCEntry]:
        i = entry.index + 1
        return self._entries[i] if i < len(self._entries) else None

    def summary(self) -> dict:
        return {
            "entries": len(self._entries),
            "start_epoch_seconds": self._starts[0],
            "gaps": sum(1 for e in self._entries if e.utc_gap_nanoseconds > 0),
            "overlaps": sum(1 for e in self._entries if e.utc_gap_nanoseconds < 0),
        }


@lru_cache(maxsize=1)
def early_utc_table() -> EarlyUTCTable:
    """Process-wide historical table (built on first use)."""
    table = EarlyUTCTable(HISTORICAL_RATE_ROWS)
    if table.first.start_epoch_seconds != START_TAI:
        raise RuntimeError("early UTC table must start at 1958-01-01")
    if table.entry_from_utc(START_LEAP_SECONDS).start_epoch_seconds != START_LEAP_SECONDS:
        raise RuntimeError("early UTC table must close at 1972-01-01")
    log.info("early UTC−TAI table built: %s", table.summary())
    return table
