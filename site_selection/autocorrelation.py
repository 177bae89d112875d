#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Global Moran's I for a site covariate with inverse-distance weights.

The weight matrix is 1/d between distinct sites and 0 on the diagonal.
Weights are row-standardised before computing the statistic, and the variance
uses the randomisation assumption (sample kurtosis), so the p-value is a
normal approximation:

    I    = (n / S0) * (y' W y) / (y' y)
    E[I] = -1 / (n - 1)

Sites sharing coordinates have distance 0 and no defined inverse distance;
they get weight 0 (``duplicates="zero"``) or are rejected (``"reject"``).
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats
from scipy.spatial.distance import pdist, squareform

from site_selection.errors import DegenerateDataError, InputDataError, InsufficientDataError

logger = logging.getLogger(__name__)

ALTERNATIVES = ("greater", "less", "two.sided")


@dataclass(frozen=True)
class MoranResult:
    observed: float
    expected: float
    variance: float
    sd: float
    z: float
    p_value: float
    n: int
    alternative: str

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def complete_cases(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """Drop rows with a missing value in any of ``columns``."""
    columns = list(columns)
    out = df.dropna(subset=columns).copy()
    dropped = len(df) - len(out)
    if dropped:
        logger.info("Dropped %d of %d rows with missing %s", dropped, len(df), columns)
    return out


def distance_matrix(x: Sequence[float], y: Sequence[float]) -> np.ndarray:
    """N x N Euclidean distances between (x, y) pairs."""
    coords = np.column_stack([np.asarray(x, dtype=float), np.asarray(y, dtype=float)])
    if len(coords) < 2:
        raise InsufficientDataError(f"insufficient data: need at least 2 located sites, got {len(coords)}")
    if not np.isfinite(coords).all():
        raise InputDataError("coordinates must be finite; drop incomplete rows first")
    return squareform(pdist(coords, metric="euclidean"))


def inverse_distance_weights(dist: np.ndarray, duplicates: str = "zero",
                             labels: Optional[Sequence] = None) -> np.ndarray:
    """
    Inverse-distance weight matrix with a zero diagonal.

    Off-diagonal zero distances (coincident sites) get weight 0 when
    ``duplicates="zero"`` and raise ``InputDataError`` when ``"reject"``.
    """
    d = np.asarray(dist, dtype=float)
    if d.ndim != 2 or d.shape[0] != d.shape[1]:
        raise InputDataError(f"distance matrix must be square, got shape {d.shape}")
    n = d.shape[0]
    if n < 2:
        raise InsufficientDataError(f"insufficient data: need at least 2 sites, got {n}")
    if duplicates not in ("zero", "reject"):
        raise ValueError(f"duplicates must be 'zero' or 'reject', got {duplicates!r}")

    off_diag = ~np.eye(n, dtype=bool)
    coincident = off_diag & (d == 0)
    if coincident.any():
        pairs = np.argwhere(np.triu(coincident))
        if labels is not None:
            shown = [(labels[i], labels[j]) for i, j in pairs[:5]]
        else:
            shown = [(int(i), int(j)) for i, j in pairs[:5]]
        if duplicates == "reject":
            raise InputDataError(f"{len(pairs)} site pairs share coordinates, e.g. {shown}")
        logger.warning("%d site pairs share coordinates, given weight 0: %s", len(pairs), shown)

    w = np.zeros_like(d)
    keep = off_diag & (d > 0)
    w[keep] = 1.0 / d[keep]
    return w


def morans_i(values: Sequence[float], weights: np.ndarray, alternative: str = "greater") -> MoranResult:
    """Moran's I with randomisation variance and a normal-approximation p-value."""
    if alternative not in ALTERNATIVES:
        raise ValueError(f"alternative must be one of {ALTERNATIVES}, got {alternative!r}")

    x = np.asarray(values, dtype=float)
    W = np.asarray(weights, dtype=float)
    n = x.size
    if n < 2:
        raise InsufficientDataError(f"insufficient data: need at least 2 complete rows, got {n}")
    if W.shape != (n, n):
        raise InputDataError(f"weights shape {W.shape} does not match {n} values")
    if not np.isfinite(x).all():
        raise InputDataError("covariate values must be finite")
    if not np.isfinite(W).all() or (W < 0).any():
        raise InputDataError("weights must be finite and non-negative")
    if n < 4:
        raise InsufficientDataError(f"insufficient data: Moran's I variance needs at least 4 sites, got {n}")

    rowsum = W.sum(axis=1)
    rowsum[rowsum == 0] = 1.0
    W = W / rowsum[:, None]
    s0 = W.sum()
    if s0 == 0:
        raise DegenerateDataError("all spatial weights are zero")

    y = x - x.mean()
    v = float(np.sum(y ** 2))
    if v == 0:
        raise DegenerateDataError("covariate is constant; Moran's I is undefined")

    observed = (n / s0) * float(y @ W @ y) / v
    expected = -1.0 / (n - 1)

    s1 = 0.5 * np.sum((W + W.T) ** 2)
    s2 = np.sum((W.sum(axis=1) + W.sum(axis=0)) ** 2)
    k = (np.sum(y ** 4) / n) / (v / n) ** 2
    num = (n * ((n ** 2 - 3 * n + 3) * s1 - n * s2 + 3 * s0 ** 2)
           - k * (n * (n - 1) * s1 - 2 * n * s2 + 6 * s0 ** 2))
    variance = num / ((n - 1) * (n - 2) * (n - 3) * s0 ** 2) - 1.0 / (n - 1) ** 2
    if not np.isfinite(variance) or variance <= 0:
        raise DegenerateDataError(f"Moran's I variance is not positive ({variance})")

    sd = float(np.sqrt(variance))
    z = (observed - expected) / sd
    if alternative == "greater":
        p = stats.norm.sf(z)
    elif alternative == "less":
        p = stats.norm.cdf(z)
    else:
        p = 2 * stats.norm.sf(abs(z))

    return MoranResult(
        observed=float(observed), expected=float(expected), variance=float(variance),
        sd=sd, z=float(z), p_value=float(p), n=int(n), alternative=alternative,
    )


def check_spatial_autocorrelation(candidates: pd.DataFrame, columns: Dict[str, str],
                                  duplicates: str = "zero", alternative: str = "greater") -> MoranResult:
    """Moran's I of candidate depth over longitude/latitude inverse distances."""
    lon, lat, depth = columns["longitude"], columns["latitude"], columns["depth"]
    located = complete_cases(candidates, [columns["id"], lon, lat, depth])
    if len(located) < 2:
        raise InsufficientDataError(
            f"insufficient data: {len(located)} candidate sites with coordinates and {depth!r}"
        )

    dist = distance_matrix(located[lon], located[lat])
    w = inverse_distance_weights(dist, duplicates=duplicates, labels=located[columns["id"]].tolist())
    res = morans_i(located[depth], w, alternative=alternative)
    logger.info(
        "Moran's I for %s: observed=%.4f expected=%.4f sd=%.4f p=%.4g (n=%d, %s)",
        depth, res.observed, res.expected, res.sd, res.p_value, res.n, alternative,
    )
    return res
