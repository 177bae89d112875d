#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Loading and validation of the three input tables.

- Candidate sites (one row per candidate pool): identifier, coordinates,
  mean pool depth, hydraulic head and any other habitat columns.
- Historical habitat covariates (one row per historical site).
- Historical detections (one row per historical site, one column per visit).

Columns are addressed by name only. Habitat and detections are paired on the
site key, never on row position.
"""
from __future__ import annotations
import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List

import numpy as np
import pandas as pd

from site_selection.errors import InputDataError

logger = logging.getLogger(__name__)

OPTIONAL_CANDIDATE_FIELDS = {"max_depth"}
NUMERIC_CANDIDATE_FIELDS = ("longitude", "latitude", "depth", "head", "max_depth")


def _read_table(path: Path) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input table not found: {path}")
    sep = "\t" if path.suffix.lower() in (".tsv", ".tab") else ","
    return pd.read_csv(path, sep=sep)


def require_columns(df: pd.DataFrame, columns: Iterable[str], table: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise InputDataError(f"{table}: missing required columns: {missing}")


def coerce_numeric(df: pd.DataFrame, columns: Iterable[str], table: str) -> pd.DataFrame:
    """Convert columns to float; blank cells become NaN, text values are an error."""
    df = df.copy()
    for col in columns:
        converted = pd.to_numeric(df[col], errors="coerce")
        bad = converted.isna() & df[col].notna()
        if bad.any():
            examples = df.loc[bad, col].astype(str).unique()[:5].tolist()
            raise InputDataError(f"{table}: non-numeric values in column {col!r}: {examples}")
        df[col] = converted.astype(float)
    return df


def _check_unique(df: pd.DataFrame, key: str, table: str) -> None:
    dup = df[key][df[key].duplicated()]
    if len(dup):
        raise InputDataError(f"{table}: duplicate {key!r} values: {dup.unique()[:5].tolist()}")
    if df[key].isna().any():
        raise InputDataError(f"{table}: {int(df[key].isna().sum())} rows without {key!r}")


# ---------------------------
# Candidate sites
# ---------------------------
def load_candidates(path: Path, columns: Dict[str, str]) -> pd.DataFrame:
    """Read the candidate-site table and validate its named schema."""
    df = _read_table(path)
    required = [name for field, name in columns.items() if field not in OPTIONAL_CANDIDATE_FIELDS]
    require_columns(df, required, "candidates")
    _check_unique(df, columns["id"], "candidates")

    numeric = [columns[f] for f in NUMERIC_CANDIDATE_FIELDS if f in columns and columns[f] in df.columns]
    df = coerce_numeric(df, numeric, "candidates")

    if df[columns["depth"]].isna().all():
        raise InputDataError(f"candidates: column {columns['depth']!r} has no values")

    logger.info("Loaded %d candidate sites from %s", len(df), path)
    return df


# ---------------------------
# Historical detections + habitat
# ---------------------------
def _visit_prefix(visits: List[str]) -> str:
    return re.sub(r"\d+$", "", visits[0])


def check_visit_columns(df: pd.DataFrame, visits: List[str]) -> None:
    """Every configured visit column is present and no extra visit columns exist."""
    require_columns(df, visits, "detections")
    prefix = _visit_prefix(visits)
    pattern = re.compile(re.escape(prefix) + r"\d+$")
    found = [c for c in df.columns if pattern.match(str(c))]
    extra = sorted(set(found) - set(visits))
    if extra:
        raise InputDataError(
            f"detections: expected {len(visits)} visits {visits}, found extra visit columns {extra}"
        )
    for col in visits:
        values = pd.to_numeric(df[col], errors="coerce")
        bad = ~(values.isin([0, 1]) | df[col].isna())
        if bad.any():
            raise InputDataError(
                f"detections: {col!r} must hold 0, 1 or missing; got {df.loc[bad, col].unique()[:5].tolist()}"
            )


def load_history(habitat_path: Path, detections_path: Path, columns: Dict, covariates: Iterable[str]) -> pd.DataFrame:
    """
    Join the historical habitat and detection tables on the site key.

    Every site must appear in both tables exactly once; the joined frame keeps
    the key, the visit columns and the requested covariates.
    """
    key = columns["id"]
    visits = list(columns["visits"])
    covariates = list(covariates)

    habitat = _read_table(habitat_path)
    detections = _read_table(detections_path)

    require_columns(habitat, [key] + covariates, "habitat")
    require_columns(detections, [key], "detections")
    check_visit_columns(detections, visits)
    _check_unique(habitat, key, "habitat")
    _check_unique(detections, key, "detections")

    habitat = coerce_numeric(habitat, covariates, "habitat")
    detections = coerce_numeric(detections, visits, "detections")

    only_h = set(habitat[key]) - set(detections[key])
    only_d = set(detections[key]) - set(habitat[key])
    if only_h or only_d:
        raise InputDataError(
            f"habitat and detections do not cover the same sites "
            f"(habitat only: {sorted(map(str, only_h))[:5]}, detections only: {sorted(map(str, only_d))[:5]})"
        )

    merged = detections[[key] + visits].merge(
        habitat[[key] + covariates], on=key, how="inner", validate="one_to_one"
    )
    n_det = int(np.nansum(merged[visits].to_numpy()))
    logger.info("Loaded %d historical sites (%d visits each, %d detections)", len(merged), len(visits), n_det)
    return merged
