import base64

import pytest

from tai_backend.main import create_app

END_2016 = 1_483_228_800

@pytest.fixture
def client():
    app = create_app()
    app.testing = True
    return app.test_client()


def test_health(client):
    for path in ("/health", "/healthz"):
        rv = client.get(path)
        assert rv.status_code == 200
        assert rv.get_json()["status"] == "ok"
    root = client.get("/").get_json()
    assert root["service"] == "tai-backend"

def test_calendar_epoch(client):
    rv = client.post("/api/calendar/epoch", json={"year": 2017, "month": 1, "day": 1})
    assert rv.status_code == 200
    data = rv.get_json()
    assert data["modified_julian_day"] == 57754
    assert data["epoch_seconds"] == END_2016

def test_to_tai(client):
    rv = client.post("/api/timescales/tai", json={"utc_seconds": END_2016 - 1, "leap_second": 1})
    assert rv.status_code == 200
    data = rv.get_json()
    assert data["tai"] == {"scale": "TAI", "epoch_seconds": 1_483_228_836, "leap_second": 0, "nano_of_second": 0}
    assert data["validity"] == "valid"
    assert data["delta_at"]["delta_at"] == "36"

def test_to_tai_reports_gap_labels(client):
    feb_1968 = -60_480_000
    rv = client.post("/api/timescales/tai", json={"utc_seconds": feb_1968 - 1, "nano": 950_000_000})
    assert rv.status_code == 200
    assert rv.get_json()["validity"] == "invalid"

def test_from_tai(client):
    rv = client.post("/api/timescales/utc", json={"tai_seconds": 1_483_228_836})
    assert rv.get_json()["utc"]["leap_second"] == 1
    rv = client.post("/api/timescales/utc", json={"tai_seconds": 1_483_228_836, "scale": "posix_utc"})
    utc = rv.get_json()["utc"]
    assert (utc["scale"], utc["epoch_seconds"], utc["leap_second"]) == ("POSIX_UTC", END_2016 - 1, 0)

def test_validity(client):
    rv = client.post("/api/timescales/validity", json={"utc_seconds": 63_071_999, "nano": 950_000_000})
    assert rv.get_json()["validity"] == "ambiguous"

def test_duration_and_add(client):
    rv = client.post("/api/timescales/duration", json={
        "start": {"seconds": 10, "nano": 200_000_000},
        "end": {"seconds": 12, "nano": 100_000_000},
    })
    assert rv.get_json()["duration"] == {"seconds": 1, "nanos": 900_000_000}

    rv = client.post("/api/timescales/add", json={
        "instant": {"seconds": 10}, "duration": {"seconds": 1, "nanos": -1},
    })
    assert rv.get_json()["instant"]["epoch_seconds"] == 10
    assert rv.get_json()["instant"]["nano_of_second"] == 999_999_999

    rv = client.post("/api/timescales/add", json={
        "scale": "UTC", "instant": {"seconds": END_2016 - 1}, "duration": {"seconds": 1},
    })
    assert rv.get_json()["instant"]["epoch_seconds"] == END_2016

def test_engine_errors_map_to_422(client):
    rv = client.post("/api/timescales/tai", json={"utc_seconds": 2 ** 63 - 5})
    assert rv.status_code == 422
    assert rv.get_json()["error"] == "arithmetic_overflow"

    rv = client.post("/api/timescales/utc", json={"tai_seconds": 0, "scale": "GPS"})
    assert rv.status_code == 422
    assert rv.get_json()["error"] == "invalid_argument"

    rv = client.post("/api/timescales/tai", json={"utc_seconds": 0, "nano": 10 ** 9})
    assert rv.status_code == 422

def test_bad_requests(client):
    assert client.post("/api/timescales/tai", json={}).status_code == 400
    assert client.post("/api/timescales/tai", json={"utc_seconds": True}).status_code == 400
    assert client.post("/api/timescales/tai", json={"utc_seconds": "abc"}).status_code == 400
    assert client.post("/api/timescales/tai", data="[1]", content_type="application/json").status_code == 400
    rv = client.post("/api/calendar/epoch", json={"year": 2000, "month": 13, "day": 1})
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "http_error"

def test_tables(client):
    data = client.get("/api/timescales/tables").get_json()
    assert data["constants"]["start_tai"] == -378_691_200
    assert data["early"]["entries"] == 15
    assert data["leap_seconds"]["last_mjd"] == 57754
    assert data["current"]["delta_at"] == "37"

def test_metrics_requires_auth(client, monkeypatch):
    assert client.get("/metrics").status_code == 401
    monkeypatch.setenv("METRICS_USER", "ops")
    monkeypatch.setenv("METRICS_PASS", "secret")
    token = base64.b64encode(b"ops:secret").decode()
    rv = client.get("/metrics", headers={"Authorization": f"Basic {token}"})
    assert rv.status_code == 200
    assert b"tai_api_requests_total" in rv.data

@pytest.mark.parametrize("ymd", [(2023, 2, 29), (2023, 2, 31), (2024, 4, 31), (2024, 1, 0)])
def test_calendar_epoch_rejects_impossible_dates(client, ymd):
    y, m, d = ymd
    rv = client.post("/api/calendar/epoch", json={"year": y, "month": m, "day": d})
    assert rv.status_code == 400

def test_calendar_epoch_accepts_leap_day(client):
    rv = client.post("/api/calendar/epoch", json={"year": 2024, "month": 2, "day": 29})
    assert rv.status_code == 200

@pytest.mark.parametrize("flag", ["false", "true", 0, 1, None])
def test_add_subtract_flag_must_be_boolean(client, flag):
    rv = client.post("/api/timescales/add", json={
        "instant": {"seconds": 10}, "duration": {"seconds": 1}, "subtract": flag,
    })
    assert rv.status_code == 400

def test_add_subtract_flag(client):
    rv = client.post("/api/timescales/add", json={
        "instant": {"seconds": 10}, "duration": {"seconds": 1}, "subtract": True,
    })
    assert rv.get_json()["instant"]["epoch_seconds"] == 9
    rv = client.post("/api/timescales/add", json={
        "instant": {"seconds": 10}, "duration": {"seconds": 1}, "subtract": False,
    })
    assert rv.get_json()["instant"]["epoch_seconds"] == 11

def test_tables_report_configured_stale_days(monkeypatch):
    monkeypatch.setenv("ASTRO_LEAP_STALE_DAYS", "42")
    app = create_app()
    data = app.test_client().get("/api/timescales/tables").get_json()
    assert data["stale_days"] == 42
