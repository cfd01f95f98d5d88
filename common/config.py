from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULTS: Dict[str, Any] = {
    "tiles": {
        "cache_root": "assets/images",
        "elevation_source": "opentopography",  # opentopography | arcgis_lerc
        "referer": "https://www.google.com/maps",
        "timeout_s": 30.0,
        "opentopography_api_key": None,  # falls back to env OPENTOPOGRAPHY_API_KEY
    },
    "mesh": {
        "width": None,  # None: native elevation tile size if the source has one, else 256
        "length": None,
        "height_scale": 0.1,
        "scale_factor": 0.3,
    },
    "viewer": {
        "mode": "region",  # single | region | globe
        "workers": 8,
        "start": {"lat": 38.272688, "lon": -120.234375, "zoom": 10},
        "region": {"min_zoom": 9, "max_zoom": 13},
        "single": {"min_zoom": 1, "max_zoom": 13},
        "globe": {"min_zoom": 1, "max_zoom": 13, "ring_radius": 2, "globe_radius": 6000.0},
    },
    "logging": {"level": "INFO"},
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: Optional[str] = "config/params.yaml") -> Dict[str, Any]:
    """
    Read YAML config and overlay it on DEFAULTS.
    A missing file (or path=None) yields the defaults.
    """
    if not path or not Path(path).exists():
        return copy.deepcopy(DEFAULTS)
    with open(path, "r") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return _deep_merge(DEFAULTS, loaded)
