import os
import json
import logging
from functools import lru_cache

import yaml

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/defaults.yaml"

# Engine defaults; YAML `leapseconds:` keys and env vars override these.
_ENGINE_DEFAULTS = {
    "delta_at_json": None,
    "override_secs": None,
    "override_from_mjd": None,
    "stale_days": 183,
}

class AttrDict(dict):
    """Dict that also supports attribute access: cfg.leapseconds and cfg["leapseconds"] both work."""
    def __getattr__(self, item):
        try:
            return self[item]
        except KeyError as e:
            raise AttributeError(item) from e
    def __setattr__(self, key, value):
        self[key] = value

def _to_attr(obj):
    if isinstance(obj, dict):
        return AttrDict({k: _to_attr(v) for k, v in obj.items()})
    if isinstance(obj, list):
        return [_to_attr(x) for x in obj]
    return obj

def _env(name):
    v = os.getenv(name, "").strip()
    return v or None

def load_config(path: str):
    """
    Load YAML config from `path` (missing file → empty config) and apply env overrides:
      - ASTRO_DELTA_AT_JSON               (leap-second override table, JSON list of {mjd, delta_at})
      - ASTRO_DELTA_AT_OVERRIDE_SECS      (append one ΔAT step …)
      - ASTRO_DELTA_AT_OVERRIDE_FROM_MJD  (… effective from this MJD)
      - ASTRO_LEAP_STALE_DAYS             (days past the last step before ΔAT is reported 'stale')
    Returns an AttrDict for convenient access.
    """
    data = {}
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"config {path} must be a mapping, got {type(data).__name__}")

    leap = dict(_ENGINE_DEFAULTS)
    leap.update(data.get("leapseconds") or {})
    env_map = {
        "delta_at_json": "ASTRO_DELTA_AT_JSON",
        "override_secs": "ASTRO_DELTA_AT_OVERRIDE_SECS",
        "override_from_mjd": "ASTRO_DELTA_AT_OVERRIDE_FROM_MJD",
        "stale_days": "ASTRO_LEAP_STALE_DAYS",
    }
    for key, var in env_map.items():
        val = _env(var)
        if val is not None:
            leap[key] = val
    try:
        leap["stale_days"] = int(leap["stale_days"])
    except (TypeError, ValueError):
        raise ValueError(f"leapseconds.stale_days must be an integer, got {leap['stale_days']!r}") from None
    data["leapseconds"] = leap

    return _to_attr(data)

@lru_cache(maxsize=1)
def engine_settings():
    """Leap-second settings for the process, read once from ASTRO_CONFIG + env."""
    cfg = load_config(os.environ.get("ASTRO_CONFIG", DEFAULT_CONFIG_PATH))
    log.debug("engine settings: %s", json.dumps(cfg.leapseconds, default=str))
    return cfg.leapseconds
