#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Probability-weighted sampling of candidate sites without replacement.

Each draw picks one remaining site with probability proportional to its
weight, then removes it from the pool. The random source is always passed in
by the caller as a ``numpy.random.Generator``.
"""
from __future__ import annotations
import logging
from typing import Sequence

import numpy as np
import pandas as pd

from site_selection.errors import SamplingError

logger = logging.getLogger(__name__)


def check_weights(weights: Sequence[float]) -> np.ndarray:
    w = np.asarray(weights, dtype=float)
    if w.ndim != 1:
        raise SamplingError(f"weights must be one-dimensional, got shape {w.shape}")
    if not np.isfinite(w).all():
        raise SamplingError(f"{int((~np.isfinite(w)).sum())} weights are not finite")
    if (w < 0).any():
        raise SamplingError(f"{int((w < 0).sum())} weights are negative")
    return w


def weighted_sample(ids: Sequence, weights: Sequence[float], k: int,
                    rng: np.random.Generator) -> np.ndarray:
    """
    Draw ``k`` unique ids by successive weighted draws without replacement.

    Zero-weight ids are never drawn, so ``k`` may not exceed the number of
    positive weights. Returns the ids in draw order.
    """
    ids = np.asarray(ids)
    w = check_weights(weights)
    if ids.ndim != 1 or len(ids) != len(w):
        raise SamplingError(f"{len(ids)} ids for {len(w)} weights")
    if pd.Series(ids).duplicated().any():
        raise SamplingError("site identifiers must be unique")
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)):
        raise SamplingError(f"sample size must be an integer, got {k!r}")
    if k < 0:
        raise SamplingError(f"sample size must be non-negative, got {k}")
    if k > len(ids):
        raise SamplingError(f"cannot draw {k} sites from a pool of {len(ids)}")
    if k == 0:
        return ids[:0]

    n_pos = int(np.count_nonzero(w))
    if k > n_pos:
        raise SamplingError(f"cannot draw {k} sites: only {n_pos} have a positive weight")

    idx = rng.choice(len(ids), size=k, replace=False, p=w / w.sum())
    return ids[idx]


def select_sites(candidates: pd.DataFrame, weight_column: str, k: int,
                 rng: np.random.Generator, id_column: str) -> pd.DataFrame:
    """Sample ``k`` candidate rows weighted by ``weight_column``, returned in draw order."""
    for col in (id_column, weight_column):
        if col not in candidates.columns:
            raise SamplingError(f"candidates have no column {col!r}")

    chosen = weighted_sample(candidates[id_column].to_numpy(), candidates[weight_column].to_numpy(), k, rng)
    order = pd.DataFrame({id_column: chosen, "draw_order": np.arange(1, len(chosen) + 1)})
    selected = order.merge(candidates, on=id_column, how="left", validate="one_to_one")

    logger.info("Selected %d of %d candidate sites (mean %s %.3f vs %.3f overall)",
                len(selected), len(candidates), weight_column,
                selected[weight_column].mean() if len(selected) else float("nan"),
                candidates[weight_column].mean())
    return selected
