from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given, strategies as st

from tai_backend.core.calendar import START_LEAP_SECONDS, START_TAI, epoch_seconds, mjd_to_epoch_seconds
from tai_backend.core.errors import InvalidArgument
from tai_backend.core.leapseconds import (
    LeapSecondTable, delta_at, erfa_delta_at, leap_second_table,
)
from tai_backend.core.timescales import reset_tables, to_tai

END_2016 = epoch_seconds(2017, 1, 1)


def test_builtin_table_shape() -> None:
    t = leap_second_table()
    assert t.source == "builtin"
    assert len(t) == 28
    assert t.entries[0].start_utc_epoch_seconds == START_LEAP_SECONDS
    assert t.entries[0].delta_seconds == 10
    assert t.last.mjd == 57754
    assert t.last.delta_seconds == 37
    assert t.last.end_utc_epoch_seconds is None

def test_deltas_only_accumulate() -> None:
    entries = leap_second_table().entries
    for a, b in zip(entries, entries[1:]):
        assert a.end_utc_epoch_seconds == b.start_utc_epoch_seconds
        assert b.delta_seconds >= a.delta_seconds

def test_lookup() -> None:
    t = leap_second_table()
    assert t.entry_from_utc(END_2016 - 1).delta_seconds == 36
    assert t.entry_from_utc(END_2016).delta_seconds == 37
    assert t.entry_from_utc(START_LEAP_SECONDS).delta_seconds == 10
    with pytest.raises(InvalidArgument):
        t.entry_from_utc(START_LEAP_SECONDS - 1)

def test_entry_from_tai_covers_the_inserted_second() -> None:
    t = leap_second_table()
    # TAI second carrying 2016-12-31T23:59:60 still belongs to the ΔAT=36 entry
    assert t.entry_from_tai(END_2016 + 36).delta_seconds == 36
    assert t.entry_from_tai(END_2016 + 37).delta_seconds == 37
    e = t.entry_from_utc(END_2016 - 1)
    assert t.leap_seconds_at_end(e) == 1
    assert t.leap_seconds_at_end(t.last) == 0

@pytest.mark.parametrize("steps", [
    [(41317, 10), (41317, 11)],          # not increasing
    [(41317, 10), (41499, 9)],           # ΔAT decreasing
    [],
])
def test_table_invariants_are_enforced(steps) -> None:
    with pytest.raises(ValueError):
        LeapSecondTable(steps)

def test_delta_at_eras() -> None:
    assert delta_at(START_TAI - 1).delta_at == 0
    assert delta_at(epoch_seconds(1961, 1, 1)).delta_at == Decimal("1.422818")
    info = delta_at(START_LEAP_SECONDS)
    assert info.delta_at == 10
    assert info.source == "builtin"

def test_delta_at_staleness() -> None:
    assert delta_at(epoch_seconds(2017, 3, 1)).status == "ok"
    stale = delta_at(epoch_seconds(2024, 1, 1))
    assert stale.status == "stale"
    assert stale.delta_at == 37
    assert stale.last_known_mjd == 57754

def test_stale_horizon_from_env(monkeypatch) -> None:
    monkeypatch.setenv("ASTRO_LEAP_STALE_DAYS", "100000")
    reset_tables()
    assert delta_at(epoch_seconds(2024, 1, 1)).status == "ok"


# ─────────────────────────────────────────────────────────────────────────────
# Operator overrides
# ─────────────────────────────────────────────────────────────────────────────
def test_json_override_extends_builtin(tmp_path, monkeypatch) -> None:
    path = tmp_path / "leapseconds.json"
    path.write_text(json.dumps([
        {"mjd": 57754, "delta_at": 37.0},
        {"mjd": 60676, "delta_at": 38},   # hypothetical 2025-01-01 step
    ]), encoding="utf-8")
    monkeypatch.setenv("ASTRO_DELTA_AT_JSON", str(path))
    reset_tables()

    t = leap_second_table()
    assert t.source == "override"
    assert t.last.mjd == 60676
    assert t.entries[0].delta_seconds == 10  # older steps kept from builtin
    s = mjd_to_epoch_seconds(60676)
    assert to_tai(s).epoch_seconds == s + 38
    info = delta_at(s)
    assert (info.source, info.status, info.delta_at) == ("override", "overridden", 38)

@pytest.mark.parametrize("payload", [
    "not json",
    json.dumps([{"mjd": 60676}]),                          # missing delta_at
    json.dumps([{"mjd": 60676, "delta_at": 37.5}]),        # fractional
    json.dumps([{"mjd": 60676, "delta_at": 30}]),          # ΔAT would decrease
    json.dumps([{"mjd": 50000, "delta_at": 30}]),          # ends before builtin
])
def test_bad_override_falls_back_to_builtin(tmp_path, monkeypatch, caplog, payload) -> None:
    path = tmp_path / "leapseconds.json"
    path.write_text(payload, encoding="utf-8")
    monkeypatch.setenv("ASTRO_DELTA_AT_JSON", str(path))
    reset_tables()
    with caplog.at_level("WARNING"):
        t = leap_second_table()
    assert t.source == "builtin"
    assert t.last.mjd == 57754
    assert any("override" in r.getMessage() for r in caplog.records)

def test_missing_override_file_falls_back(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("ASTRO_DELTA_AT_JSON", str(tmp_path / "nope.json"))
    reset_tables()
    assert leap_second_table().source == "builtin"

def test_env_pair_appends_a_step(monkeypatch) -> None:
    monkeypatch.setenv("ASTRO_DELTA_AT_OVERRIDE_SECS", "38")
    monkeypatch.setenv("ASTRO_DELTA_AT_OVERRIDE_FROM_MJD", "60676")
    reset_tables()
    t = leap_second_table()
    assert t.source == "override"
    assert (t.last.mjd, t.last.delta_seconds) == (60676, 38)
    assert t.entry_from_utc(mjd_to_epoch_seconds(60676) - 1).delta_seconds == 37

def test_env_pair_ignored_when_not_after_last_step(monkeypatch) -> None:
    monkeypatch.setenv("ASTRO_DELTA_AT_OVERRIDE_SECS", "38")
    monkeypatch.setenv("ASTRO_DELTA_AT_OVERRIDE_FROM_MJD", "57000")
    reset_tables()
    assert leap_second_table().source == "builtin"


# ─────────────────────────────────────────────────────────────────────────────
# ERFA cross-check
# ─────────────────────────────────────────────────────────────────────────────
@given(
    d=st.dates(min_value=date(1972, 1, 1), max_value=date(2024, 12, 31)),
    sod=st.integers(min_value=0, max_value=86_399),
)
def test_builtin_matches_erfa(ensure_erfa, d: date, sod: int) -> None:
    s = epoch_seconds(d.year, d.month, d.day) + sod
    assert float(delta_at(s).delta_at) == erfa_delta_at(s)
