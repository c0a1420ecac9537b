# tai_backend/core/leapseconds.py
from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Optional, Tuple, List, Dict, Any
import json, logging, math

import erfa  # PyERFA: has dat() for TAI-UTC

from tai_backend.core.calendar import (
    MJD_EPOCH, NANOS_PER_SECOND, SECONDS_PER_DAY, START_LEAP_SECONDS, START_TAI, TAI_START_LEAP_SECONDS,
    epoch_seconds_to_mjd, mjd_to_epoch_seconds,
)
from tai_backend.core.early_utc import early_utc_table
from tai_backend.core.errors import InvalidArgument
from tai_backend.utils.config import engine_settings

log = logging.getLogger(__name__)

__all__ = [
    "LeapInfo",
    "LeapSecondEntry",
    "LeapSecondTable",
    "leap_second_table",
    "delta_at",
    "erfa_delta_at",
]

@dataclass(frozen=True)
class LeapInfo:
    delta_at: Decimal               # TAI-UTC seconds, exact
    source: str                     # "builtin", "override"
    status: str                     # "ok", "stale", "overridden"
    last_known_mjd: int             # last known change MJD in the active table
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delta_at": str(self.delta_at),
            "source": self.source,
            "status": self.status,
            "last_known_mjd": self.last_known_mjd,
            "notes": self.notes,
        }

# ---- Built-in table (matches ERFA through 2017-01-01) ----
# Format: (MJD, ΔAT seconds) effective from MJD at 00:00 UTC onward.
_BUILTIN_STEPS: List[Tuple[int, int]] = [
    (41317, 10), (41499, 11), (41683, 12), (42048, 13),
    (42413, 14), (42778, 15), (43144, 16), (43509, 17),
    (43874, 18), (44239, 19), (44786, 20), (45151, 21),
    (45516, 22), (46247, 23), (47161, 24), (47892, 25),
    (48257, 26), (48804, 27), (49169, 28), (49534, 29),
    (50083, 30), (50630, 31), (51179, 32), (53736, 33),
    (54832, 34), (56109, 35), (57204, 36), (57754, 37),  # 2017-01-01
]
_BUILTIN_VERSION = "builtin-2017-01-01"

def _integral(value: Any, what: str) -> int:
    f = float(value)
    if not math.isfinite(f) or f != int(f):
        raise ValueError(f"{what} must be integral, got {value!r}")
    return int(f)

# Optional ops override via env/JSON (see utils/config.py):
#   ASTRO_DELTA_AT_JSON=/app/data/leapseconds.json   # [{"mjd":57754,"delta_at":37}, ...]
#   ASTRO_DELTA_AT_OVERRIDE_SECS=38 + ASTRO_DELTA_AT_OVERRIDE_FROM_MJD=60350
def _load_override_table(path: Optional[str]) -> Optional[List[Tuple[int, int]]]:
    if not path:
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        steps: List[Tuple[int, int]] = []
        for row in data:
            steps.append((_integral(row["mjd"], "mjd"), _integral(row["delta_at"], "delta_at")))
        steps.sort(key=lambda t: t[0])
        return steps
    except (OSError, ValueError, KeyError, TypeError) as e:
        log.warning("ignoring leap-second override %s: %s", path, e)
        return None

# ---- Table ----

@dataclass(frozen=True)
class LeapSecondEntry:
    index: int
    start_utc_epoch_seconds: int
    end_utc_epoch_seconds: Optional[int]    # exclusive; None for the last entry
    delta_seconds: int

    @property
    def mjd(self) -> int:
        return epoch_seconds_to_mjd(self.start_utc_epoch_seconds)

    @property
    def start_tai_epoch_seconds(self) -> int:
        return self.start_utc_epoch_seconds + self.delta_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mjd": self.mjd,
            "start_utc_epoch_seconds": self.start_utc_epoch_seconds,
            "end_utc_epoch_seconds": self.end_utc_epoch_seconds,
            "delta_seconds": self.delta_seconds,
        }

class LeapSecondTable:
    """
    Integral TAI−UTC over half-open UTC-second intervals.

    Entries are contiguous, strictly increasing in start and non-decreasing in
    delta (leap seconds only accumulate), so the post-1972 UTC line has
    repeated-second insertions but never a gap.
    """

    def __init__(self, steps: List[Tuple[int, int]], source: str = "builtin", version: str = _BUILTIN_VERSION):
        if not steps:
            raise ValueError("leap-second table needs at least one step")
        starts = [mjd_to_epoch_seconds(mjd) for mjd, _ in steps]
        deltas = [d for _, d in steps]
        if any(b <= a for a, b in zip(starts, starts[1:])):
            raise ValueError("leap-second steps must be strictly increasing in MJD")
        if any(b < a for a, b in zip(deltas, deltas[1:])):
            raise ValueError("leap-second deltas must be non-decreasing")
        ends: List[Optional[int]] = list(starts[1:]) + [None]
        self._entries: Tuple[LeapSecondEntry, ...] = tuple(
            LeapSecondEntry(i, s, e, d) for i, (s, e, d) in enumerate(zip(starts, ends, deltas))
        )
        self._starts: Tuple[int, ...] = tuple(starts)
        self._tai_starts: Tuple[int, ...] = tuple(e.start_tai_epoch_seconds for e in self._entries)
        self.source = source
        self.version = version

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> Tuple[LeapSecondEntry, ...]:
        return self._entries

    @property
    def last(self) -> LeapSecondEntry:
        return self._entries[-1]

    def entry_from_utc(self, utc_epoch_seconds: int) -> LeapSecondEntry:
        i = bisect_right(self._starts, utc_epoch_seconds) - 1
        if i < 0:
            raise InvalidArgument(
                f"UTC second {utc_epoch_seconds} precedes the leap-second table start {self._starts[0]}"
            )
        return self._entries[i]

    def entry_from_tai(self, tai_epoch_seconds: int) -> LeapSecondEntry:
        i = bisect_right(self._tai_starts, tai_epoch_seconds) - 1
        if i < 0:
            raise InvalidArgument(
                f"TAI second {tai_epoch_seconds} precedes the leap-second table start {self._tai_starts[0]}"
            )
        return self._entries[i]

    def next_entry(self, entry: LeapSecondEntry) -> Optional[LeapSecondEntry]:
        i = entry.index + 1
        return self._entries[i] if i < len(self._entries) else None

    def leap_seconds_at_end(self, entry: LeapSecondEntry) -> int:
        """Seconds inserted after the last second of ``entry`` (0 at the open end)."""
        nxt = self.next_entry(entry)
        return 0 if nxt is None else nxt.delta_seconds - entry.delta_seconds

    def summary(self) -> Dict[str, Any]:
        return {
            "entries": len(self._entries),
            "source": self.source,
            "version": self.version,
            "first_mjd": self._entries[0].mjd,
            "last_mjd": self.last.mjd,
            "last_delta_seconds": self.last.delta_seconds,
        }

def _resolve_steps(settings: Dict[str, Any]) -> Tuple[List[Tuple[int, int]], str, str]:
    """
    Resolve the active (MJD, ΔAT) steps:
      1) override JSON table → source="override" (only if it reaches the builtin end)
      2) builtin steps        → source="builtin"
      then an explicit env pair appends one more step → source="override"
    """
    steps, source, version = list(_BUILTIN_STEPS), "builtin", _BUILTIN_VERSION

    override = _load_override_table(settings.get("delta_at_json"))
    if override:
        # an override may list only recent steps; older ones come from the builtin table
        merged = [s for s in _BUILTIN_STEPS if s[0] < override[0][0]] + override
        if override[-1][0] < _BUILTIN_STEPS[-1][0]:
            log.warning("leap-second override ends at MJD %s, before builtin %s; using builtin",
                        override[-1][0], _BUILTIN_STEPS[-1][0])
        elif merged[0] != _BUILTIN_STEPS[0]:
            log.warning("leap-second override must keep 1972-01-01 (MJD 41317) at 10 s; using builtin")
        else:
            try:
                LeapSecondTable(merged)
            except ValueError as e:
                log.warning("ignoring leap-second override: %s", e)
            else:
                steps, source, version = merged, "override", f"override-json-mjd-{merged[-1][0]}"

    ov_secs = settings.get("override_secs")
    ov_from = settings.get("override_from_mjd")
    if ov_secs is not None and ov_from is not None:
        try:
            pair = (_integral(ov_from, "override_from_mjd"), _integral(ov_secs, "override_secs"))
        except ValueError as e:
            log.warning("ignoring ΔAT env override: %s", e)
        else:
            if pair[0] > steps[-1][0]:
                steps.append(pair)
                source, version = "override", f"{version}+env-mjd-{pair[0]}"
            else:
                log.warning("ignoring ΔAT env override at MJD %s (not after last step %s)", pair[0], steps[-1][0])
    return steps, source, version

@lru_cache(maxsize=1)
def leap_second_table() -> LeapSecondTable:
    """Process-wide leap-second table (built on first use, read-only afterwards)."""
    steps, source, version = _resolve_steps(engine_settings())
    table = LeapSecondTable(steps, source=source, version=version)
    first = table.entries[0]
    if first.start_utc_epoch_seconds != START_LEAP_SECONDS or first.start_tai_epoch_seconds != TAI_START_LEAP_SECONDS:
        raise RuntimeError("leap-second table must start at 1972-01-01 with ΔAT = 10 s")
    log.info("leap-second table built: %s", table.summary())
    return table

# ---- ΔAT reporting ----

def delta_at(utc_epoch_seconds: int, nano_of_second: int = 0) -> LeapInfo:
    """
    Exact TAI−UTC at a UTC label, with provenance:
      • before 1958: 0 by convention
      • 1958–1971: early rate-change table (fractional, drifting)
      • from 1972: leap-second table (integral)
    Adds a 'stale' status if we're past the next possible insertion boundary
    relative to the table's last step.
    """
    table = leap_second_table()
    last_mjd = table.last.mjd
    if utc_epoch_seconds < START_TAI:
        return LeapInfo(Decimal(0), "builtin", "ok", last_mjd, notes="TAI and UTC coincide before 1958")
    if utc_epoch_seconds < START_LEAP_SECONDS:
        entry = early_utc_table().entry_from_utc(utc_epoch_seconds)
        nanos = entry.get_utc_delta_nanoseconds(utc_epoch_seconds, nano_of_second)
        return LeapInfo(Decimal(nanos).scaleb(-9), "builtin", "ok", last_mjd)

    entry = table.entry_from_utc(utc_epoch_seconds)
    if table.source == "override":
        return LeapInfo(Decimal(entry.delta_seconds), "override", "overridden", last_mjd,
                        notes=f"override table in use ({table.version})")

    # leap seconds can *only* change on Jun 30 / Dec 31; once at least one
    # such boundary has passed after the last step, the table may be stale.
    stale_days = int(engine_settings().get("stale_days", 183))
    stale = (epoch_seconds_to_mjd(utc_epoch_seconds) - last_mjd) >= stale_days
    return LeapInfo(
        Decimal(entry.delta_seconds), "builtin",
        "stale" if stale else "ok", last_mjd,
        notes=("builtin table beyond next boundary" if stale else None),
    )

def erfa_delta_at(utc_epoch_seconds: int, nano_of_second: int = 0) -> float:
    """ΔAT from ERFA dat() for cross-checking the exact tables (float seconds)."""
    mjd = MJD_EPOCH + utc_epoch_seconds // SECONDS_PER_DAY
    sod = utc_epoch_seconds % SECONDS_PER_DAY
    iy, im, iday, _ = erfa.jd2cal(2400000.5, float(mjd))
    fd = (sod + nano_of_second / NANOS_PER_SECOND) / SECONDS_PER_DAY
    return float(erfa.dat(int(iy), int(im), int(iday), fd))
