# tai_backend/main.py
from __future__ import annotations

import logging
import os
import traceback
from time import perf_counter
from typing import Any, Dict, Final, Optional

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from werkzeug.exceptions import BadRequest, HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from tai_backend.core import calendar as _cal
from tai_backend.core import timescales as _ts
from tai_backend.core.early_utc import early_utc_table
from tai_backend.core.errors import ConversionError
from tai_backend.core.instant import TAI, UTC, Duration, Instant, scale_by_name
from tai_backend.core.leapseconds import delta_at, leap_second_table
from tai_backend.utils.config import engine_settings
from tai_backend.version import VERSION

# ───────────────────────── Prometheus ─────────────────────────
MET_REQUESTS: Final = Counter("tai_api_requests_total", "API requests", ["route"])
MET_CONVERSIONS: Final = Counter("tai_conversions_total", "Engine conversions", ["op", "validity"])
MET_ERRORS: Final = Counter("tai_engine_errors_total", "Engine errors", ["kind"])
GAUGE_APP_UP: Final = Gauge("tai_app_up", "1 if app is running")
GAUGE_LEAP_LAST_MJD: Final = Gauge("tai_leap_table_last_mjd", "MJD of the last known leap-second step")
REQ_LATENCY: Final = Histogram("tai_request_seconds", "API request latency", ["route"])

# ───────────────────────── helpers: logging & errors ─────────────────────────
def _configure_logging(app: Flask) -> None:
    gerr = logging.getLogger("gunicorn.error")
    if gerr.handlers:
        app.logger.handlers = gerr.handlers
        app.logger.setLevel(gerr.level)
    else:
        logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))

def _register_errors(app: Flask) -> None:
    @app.errorhandler(ConversionError)
    def _conversion(e: ConversionError):
        MET_ERRORS.labels(kind=e.code).inc()
        app.logger.info("engine %s at %s %s: %s", e.code, request.method, request.path, e.message)
        return jsonify(ok=False, error=e.code, message=e.message, path=request.path), 422

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        app.logger.warning("HTTP %s at %s %s: %s", e.code, request.method, request.path, e.description)
        return jsonify(
            ok=False,
            error="http_error",
            code=e.code,
            name=e.name,
            message=e.description,
            path=request.path,
        ), e.code

    @app.errorhandler(Exception)
    def _any(e: Exception):
        tb = traceback.format_exc()
        app.logger.error("UNHANDLED %s at %s %s\n%s", type(e).__name__, request.method, request.path, tb)
        return jsonify(
            ok=False,
            error="internal_error",
            type=type(e).__name__,
            message=str(e),
            path=request.path,
        ), 500

# ───────────────────────── request parsing ─────────────────────────
def _body_json() -> Dict[str, Any]:
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        raise BadRequest("JSON body must be an object")
    return data

def _int_field(data: Dict[str, Any], name: str, default: Optional[int] = None) -> int:
    v = data.get(name, default)
    if v is None:
        raise BadRequest(f"'{name}' is required")
    # bool is an int subclass; JSON true/false is never a count
    if isinstance(v, bool) or not isinstance(v, (int, str)):
        raise BadRequest(f"'{name}' must be an integer")
    try:
        return int(v)
    except ValueError:
        raise BadRequest(f"'{name}' must be an integer") from None

def _instant_field(data: Dict[str, Any], name: str, scale) -> Instant:
    blob = data.get(name)
    if not isinstance(blob, dict):
        raise BadRequest(f"'{name}' must be an object with 'seconds' and optional 'nano'")
    return Instant.of(scale, _int_field(blob, "seconds"), _int_field(blob, "nano", 0), _int_field(blob, "leap_second", 0))

def _duration_field(data: Dict[str, Any], name: str) -> Duration:
    blob = data.get(name)
    if not isinstance(blob, dict):
        raise BadRequest(f"'{name}' must be an object with 'seconds' and optional 'nanos'")
    return Duration.of_seconds(_int_field(blob, "seconds"), _int_field(blob, "nanos", 0))

def _metrics_auth_ok() -> bool:
    auth = request.authorization
    user = os.getenv("METRICS_USER", "")
    pw = os.getenv("METRICS_PASS", "")
    return bool(
        auth and auth.type == "basic" and auth.username == user and auth.password == pw and user and pw
    )

# ───────────────────────── health ─────────────────────────
def _register_health(app: Flask) -> None:
    @app.route("/", methods=["GET"])
    def root():
        return jsonify(ok=True, service="tai-backend", version=VERSION, health="/health"), 200

    @app.route("/health", methods=["GET"])
    @app.route("/healthz", methods=["GET"])
    def health():
        return jsonify(ok=True, status="ok"), 200

# ───────────────────────── engine API ─────────────────────────
def _register_core_api(app: Flask) -> None:
    @app.post("/api/calendar/epoch")
    def _calendar_epoch():
        data = _body_json()
        y, m, d = (_int_field(data, k) for k in ("year", "month", "day"))
        if not 1 <= m <= 12:
            raise BadRequest("month must be 1..12")
        if not 1 <= d <= _cal.days_in_month(y, m):
            raise BadRequest(f"day must be 1..{_cal.days_in_month(y, m)} for {y:04d}-{m:02d}")
        return jsonify(
            ok=True,
            julian_day_number=_cal.julian_day_number(y, m, d),
            modified_julian_day=_cal.modified_julian_day(y, m, d),
            epoch_seconds=_cal.epoch_seconds(y, m, d),
        ), 200

    @app.post("/api/timescales/tai")
    def _to_tai():
        data = _body_json()
        utc_s = _int_field(data, "utc_seconds")
        nano = _int_field(data, "nano", 0)
        leap = _int_field(data, "leap_second", 0)
        utc = Instant.of(UTC, utc_s, nano, leap)
        validity = _ts.check_validity(utc)
        tai = _ts.to_tai(utc_s, nano, leap)
        MET_CONVERSIONS.labels(op="to_tai", validity=validity.value).inc()
        return jsonify(
            ok=True,
            tai=tai.to_dict(),
            validity=validity.value,
            delta_at=delta_at(utc_s, nano).to_dict(),
        ), 200

    @app.post("/api/timescales/utc")
    def _from_tai():
        data = _body_json()
        tai = Instant.of(TAI, _int_field(data, "tai_seconds"), _int_field(data, "nano", 0))
        scale = scale_by_name(data.get("scale", "UTC"))
        utc = _ts.from_tai(tai, scale)
        MET_CONVERSIONS.labels(op="from_tai", validity="valid").inc()
        return jsonify(ok=True, utc=utc.to_dict()), 200

    @app.post("/api/timescales/validity")
    def _validity():
        data = _body_json()
        utc = Instant.of(UTC, _int_field(data, "utc_seconds"), _int_field(data, "nano", 0),
                         _int_field(data, "leap_second", 0))
        validity = _ts.check_validity(utc)
        MET_CONVERSIONS.labels(op="validity", validity=validity.value).inc()
        return jsonify(ok=True, validity=validity.value), 200

    @app.post("/api/timescales/duration")
    def _duration():
        data = _body_json()
        scale = scale_by_name(data.get("scale", "TAI"))
        d = _ts.duration_between(_instant_field(data, "start", scale), _instant_field(data, "end", scale))
        return jsonify(ok=True, duration=d.to_dict()), 200

    @app.post("/api/timescales/add")
    def _add():
        data = _body_json()
        scale = scale_by_name(data.get("scale", "TAI"))
        t = _instant_field(data, "instant", scale)
        d = _duration_field(data, "duration")
        subtract = data.get("subtract", False)
        if not isinstance(subtract, bool):
            raise BadRequest("'subtract' must be a boolean")
        if scale.supports_leap_second:
            out = _ts.utc_subtract(t, d) if subtract else _ts.utc_add(t, d)
        else:
            out = _ts.simple_subtract(t, d) if subtract else _ts.simple_add(t, d)
        return jsonify(ok=True, instant=out.to_dict(), validity=_ts.check_validity(out).value), 200

    @app.get("/api/timescales/tables")
    def _tables():
        leaps = leap_second_table()
        early = early_utc_table()
        last = leaps.last
        return jsonify(
            ok=True,
            constants={
                "start_tai": _cal.START_TAI,
                "start_leap_seconds": _cal.START_LEAP_SECONDS,
                "tai_start_leap_seconds": _cal.TAI_START_LEAP_SECONDS,
            },
            early=dict(early.summary(), entries_detail=[e.to_dict() for e in early.entries]),
            leap_seconds=dict(leaps.summary(), entries_detail=[e.to_dict() for e in leaps.entries]),
            current=delta_at(last.start_utc_epoch_seconds).to_dict(),
            stale_days=engine_settings()["stale_days"],
        ), 200

# ───────────────────────── app factory ─────────────────────────
def create_app() -> Flask:
    app = Flask(__name__)
    app.json.sort_keys = False  # type: ignore[attr-defined]
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore

    _configure_logging(app)

    GAUGE_APP_UP.set(1.0)
    GAUGE_LEAP_LAST_MJD.set(leap_second_table().last.mjd)

    @app.before_request
    def _before():
        p = request.path or ""
        if p.startswith("/api/") or p in ("/", "/health", "/healthz"):
            MET_REQUESTS.labels(route=p).inc()
            request.environ["tai.t0"] = perf_counter()

    @app.after_request
    def _after(resp):
        t0 = request.environ.get("tai.t0")
        if t0 is not None:
            REQ_LATENCY.labels(route=request.path or "").observe(perf_counter() - t0)
        return resp

    _register_health(app)
    _register_errors(app)
    _register_core_api(app)

    # /metrics (Basic Auth)
    @app.route("/metrics", methods=["GET"])
    def metrics_endpoint():
        if not _metrics_auth_ok():
            return Response("Unauthorized", 401, {"WWW-Authenticate": 'Basic realm="metrics"'})
        GAUGE_APP_UP.set(1.0)
        data = generate_latest(REGISTRY)
        return Response(data, mimetype=CONTENT_TYPE_LATEST)

    CORS(
        app,
        resources={r"/.*": {"origins": os.environ.get("CORS_ALLOW_ORIGIN", "*")}},
        supports_credentials=False,
        methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=600,
    )

    app.logger.info(
        "App initialized; version=%s; leap_table=%s; stale_days=%s",
        VERSION, leap_second_table().summary(), engine_settings()["stale_days"],
    )
    return app

# ───────────────────────── app instance ─────────────────────────
app = create_app()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
