#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Configuration loader for the site selection run.

Reads a YAML file if one is given and deep-merges it over ``DEFAULTS``.
Relative paths in the ``paths`` section resolve against the YAML file's
directory (or the working directory when running on defaults).
"""
from __future__ import annotations
import copy
from pathlib import Path
from typing import Any, Dict

import yaml

from site_selection.errors import ConfigError

DEFAULTS: Dict[str, Any] = {
    "paths": {
        "data_dir": "Data",
        "habitat": "Habitat.csv",
        "detections": "Adult_Occurrence.csv",
        "candidates": "Depth_Site_Selection.csv",
        "output_dir": "outputs",
    },
    "columns": {
        "candidates": {
            "id": "Pool.ID",
            "longitude": "Long",
            "latitude": "Lat",
            "depth": "Mean.pool.depth",
            "head": "HH",
            "max_depth": "P1..max.",
        },
        "history": {
            "id": "Site",
            "visits": ["Haul.1", "Haul.2", "Haul.3"],
        },
    },
    "autocorrelation": {
        "duplicates": "zero",
        "alternative": "greater",
    },
    "occupancy": {
        "state_covariates": ["Depth"],
        "detection_covariates": [],
        "prediction_columns": {"Depth": "Mean.pool.depth"},
        "exclude_sites": [],
        "maxiter": 500,
        "gtol": 1e-5,
        "level": 0.95,
    },
    "sampling": {
        "n_sites": 100,
        "seed": 517438,
    },
    "plots": {
        "enabled": True,
        "dpi": 300,
        "west_positive_longitude": True,
        "depth_threshold": 0.8,
        "theme": {},
    },
    "bayes": {
        "enabled": False,
        "draws": 800,
        "tune": 800,
        "chains": 2,
        "cores": 2,
        "target_accept": 0.9,
        "seed": 42,
    },
}


def deep_merge(d1: Dict[str, Any], d2: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``d2`` into ``d1`` (in place) and return ``d1``."""
    for k, v in d2.items():
        if k in d1 and isinstance(d1[k], dict) and isinstance(v, dict):
            deep_merge(d1[k], v)
        else:
            d1[k] = v
    return d1


def _resolve_paths(cfg: Dict[str, Any], root: Path) -> None:
    paths = cfg["paths"]
    data_dir = Path(paths["data_dir"])
    if not data_dir.is_absolute():
        data_dir = root / data_dir
    paths["data_dir"] = data_dir
    for key in ("habitat", "detections", "candidates"):
        p = Path(paths[key])
        paths[key] = p if p.is_absolute() else data_dir / p
    out = Path(paths["output_dir"])
    paths["output_dir"] = out if out.is_absolute() else root / out


def load_config(conf_path: Path | str | None = None) -> Dict[str, Any]:
    """
    Load the run configuration.

    Without a file the defaults are used and relative paths resolve against
    the working directory. Raises ``FileNotFoundError`` for a missing file and
    ``ConfigError`` for unknown sections or invalid values.
    """
    cfg = copy.deepcopy(DEFAULTS)
    root = Path.cwd()
    if conf_path is not None:
        conf_path = Path(conf_path)
        if not conf_path.exists():
            raise FileNotFoundError(f"config file not found: {conf_path}")
        with open(conf_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{conf_path} must contain a mapping at the top level")
        unknown = set(data) - set(DEFAULTS)
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {sorted(unknown)}")
        cfg = deep_merge(cfg, data)
        root = conf_path.resolve().parent

    n_sites = cfg["sampling"]["n_sites"]
    if not isinstance(n_sites, int) or n_sites < 0:
        raise ConfigError(f"sampling.n_sites must be a non-negative integer, got {n_sites!r}")
    if cfg["autocorrelation"]["duplicates"] not in ("zero", "reject"):
        raise ConfigError("autocorrelation.duplicates must be 'zero' or 'reject'")

    _resolve_paths(cfg, root)
    return cfg
