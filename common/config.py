from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict[str, Any] = {
    "cache": {"root": "data/satellite_cache"},
    "acquisition": {
        "radius_m": 1000.0,
        "pixel_size": 2000,
        "jpeg_quality": 85,
        "workers": 2,
    },
    "crop": {"width": 2000, "height": 2000, "jpeg_quality": 85},
    "provider": {
        "base_url": "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/export",
        "timeout_s": 30.0,
    },
    "channel": {
        "base_url": "http://127.0.0.1:8001",
        "timeout_s": 10.0,
        "max_retries": 3,
        "retry_backoff_s": 2.0,
    },
    "logging": {"level": "INFO", "round_log_dir": "logs/satellite"},
    "server": {"host": "0.0.0.0", "port": 8000},
}

# env var -> (section, key)
_ENV_OVERRIDES = {
    "SATCACHE_ROOT": ("cache", "root"),
    "LOG_LEVEL": ("logging", "level"),
    "COMPANION_URL": ("channel", "base_url"),
    "WORLD_IMAGERY_URL": ("provider", "base_url"),
}


def _deep_merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (over or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load YAML config merged over DEFAULTS.

    Path precedence: explicit `path`, env SATCACHE_CONFIG, config/params.yaml.
    A missing file is not an error; defaults are used.
    """
    path = path or os.environ.get("SATCACHE_CONFIG") or DEFAULT_CONFIG_PATH
    P: Dict[str, Any] = {}
    if Path(path).exists():
        with open(path, "r") as f:
            P = yaml.safe_load(f) or {}
    cfg = _deep_merge(DEFAULTS, P)

    for env, (section, key) in _ENV_OVERRIDES.items():
        val = os.environ.get(env)
        if val:
            cfg.setdefault(section, {})[key] = val
    return cfg
