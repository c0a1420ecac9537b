# tests/conftest.py
from __future__ import annotations

"""
Pytest configuration for the TAI/UTC engine suite.

- Registers Hypothesis profiles for local dev and CI.
- Isolates every test from operator overrides (ASTRO_* env) and rebuilds
  the process-wide tables around it.
- Provides a synthetic early table and ERFA availability check.
"""

import os
import pytest
from hypothesis import settings, HealthCheck

from tai_backend.core.early_utc import EarlyUTCTable, RateRow
from tai_backend.core.timescales import reset_tables


# ──────────────────────────────────────────────────────────────────────────────
# Hypothesis profiles
# ──────────────────────────────────────────────────────────────────────────────
settings.register_profile(
    "dev",
    settings(
        deadline=None,           # avoid flaky timeouts on slower runners
        max_examples=60,         # fast local runs
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    ),
)
settings.register_profile(
    "ci",
    settings(
        deadline=None,
        max_examples=200,        # a bit more coverage in CI
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    ),
)

_profile = (
    "ci"
    if (os.getenv("CI") or os.getenv("GITHUB_ACTIONS"))
    else os.getenv("HYPOTHESIS_PROFILE", "dev")
)
settings.load_profile(_profile)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "slow: mark test as slow")


def pytest_report_header(config: pytest.Config) -> str:
    return f"Hypothesis profile: '{_profile}'"


# ──────────────────────────────────────────────────────────────────────────────
# Global fixtures
# ──────────────────────────────────────────────────────────────────────────────
_OVERRIDE_ENV = (
    "ASTRO_CONFIG",
    "ASTRO_DELTA_AT_JSON",
    "ASTRO_DELTA_AT_OVERRIDE_SECS",
    "ASTRO_DELTA_AT_OVERRIDE_FROM_MJD",
    "ASTRO_LEAP_STALE_DAYS",
)


@pytest.fixture(autouse=True)
def clean_engine(monkeypatch):
    """Builtin tables only, rebuilt before and after each test."""
    for name in _OVERRIDE_ENV:
        monkeypatch.delenv(name, raising=False)
    reset_tables()
    yield
    reset_tables()


@pytest.fixture
def gap_table() -> EarlyUTCTable:
    """
    Two-entry table: [1000, 2000) then [2000, ∞). TAI−UTC drops from 1.0 s
    to 0.5 s at 2000, so the last half second of 1999 never existed.
    """
    return EarlyUTCTable([
        RateRow(start_epoch_seconds=1000, offset_nanos=1_000_000_000,
                reference_epoch_seconds=1000, rate_nanos_per_day=0),
        RateRow(start_epoch_seconds=2000, offset_nanos=500_000_000,
                reference_epoch_seconds=2000, rate_nanos_per_day=0),
    ])


@pytest.fixture
def overlap_table() -> EarlyUTCTable:
    """Same boundary but TAI−UTC rises by 0.25 s: the last quarter second of 1999 repeats."""
    return EarlyUTCTable([
        RateRow(start_epoch_seconds=1000, offset_nanos=1_000_000_000,
                reference_epoch_seconds=1000, rate_nanos_per_day=0),
        RateRow(start_epoch_seconds=2000, offset_nanos=1_250_000_000,
                reference_epoch_seconds=2000, rate_nanos_per_day=0),
    ])


@pytest.fixture(scope="session")
def ensure_erfa():
    """
    Fail early if ERFA/pyERFA isn't importable or missing key functions.
    """
    import erfa  # pyERFA exposes the ERFA namespace as 'erfa'
    assert hasattr(erfa, "dat"), "ERFA.dat not available"
    assert hasattr(erfa, "cal2jd"), "ERFA.cal2jd not available"
    assert hasattr(erfa, "jd2cal"), "ERFA.jd2cal not available"
    return erfa
