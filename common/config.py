from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml


DEFAULTS: Dict[str, Any] = {
    "logging": {"level": "INFO"},
    "osrm": {
        "base_url": "http://localhost:5000",
        "profile": "cycling",
        "timeout_s": 10.0,
    },
    "elevation": {
        "zoom": 15,
        "base_url": "https://cyberjapandata.gsi.go.jp",
        "datasets": ["dem5a", "dem"],
        "http_timeout_s": 5.0,
        "fetch_timeout_s": 10.0,
        "lru_capacity": 1000,
        "refresh_threshold": 10.0,
        "decay_factor": 0.95,
        "stale_after_days": 90,
        "worker_interval_s": 1.0,
        "decay_every_ticks": 86400,
    },
    "redis": {
        "enabled": False,
        "host": "localhost",
        "port": 6379,
        "password": None,
        "ttl_days": 365,
    },
    "route_selection": {
        "detour_threshold_factor": 1.2,
        "near_threshold_ratio": 1.1,
        "near_threshold_factors": [0.1, 0.2],
        "expansion_factors": [0.5, 0.8, 1.0, 1.2, 1.5],
        "loop_factors": [0.2, 0.3, 0.4, 0.5, 0.6],
        "height_ratio": 0.5,
        "polygon_offset_ratio": 0.8,
        "distance_weight": 1.0,
        "elevation_weight": 2.0,
        "elevation_normalizer_m": 100.0,
    },
}

# env var -> (section, key, cast)
_ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "OSRM_URL": ("osrm", "base_url", str),
    "OSRM_PROFILE": ("osrm", "profile", str),
    "REDIS_HOST": ("redis", "host", str),
    "REDIS_PORT": ("redis", "port", int),
    "REDIS_PASSWORD": ("redis", "password", str),
    "ELEVATION_LRU_CAPACITY": ("elevation", "lru_capacity", int),
    "ELEVATION_REFRESH_THRESHOLD": ("elevation", "refresh_threshold", float),
    "LOG_LEVEL": ("logging", "level", str),
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: str = "config/params.yaml", env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Load YAML config merged over DEFAULTS, then apply environment overrides.

    A missing file is not an error: the defaults (plus env) are returned.
    """
    loaded: Dict[str, Any] = {}
    if Path(path).exists():
        with open(path, "r") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config root must be a mapping: {path}")

    P = _deep_merge(DEFAULTS, loaded)

    env = os.environ if env is None else env
    for var, (section, key, cast) in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        P.setdefault(section, {})[key] = cast(raw)
    return P
