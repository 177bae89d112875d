#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Single-season occupancy model (imperfect detection) fitted by maximum likelihood.

Occupancy psi: logit(psi_i) = X_i beta   (site covariates, e.g. depth)
Detection  p:  logit(p_i)   = V_i alpha  (intercept only by default)

The latent occupancy state is integrated out, so the likelihood of site i
with v_i conducted visits and d_i detections is

    d_i >  0:  psi_i * p_i^d_i * (1 - p_i)^(v_i - d_i)
    d_i == 0:  (1 - psi_i) + psi_i * (1 - p_i)^v_i

Missed visits (NaN) do not count towards v_i. The negative log-likelihood is
minimised with BFGS using its analytic gradient; standard errors come from
the inverse of a finite-difference Hessian at the optimum.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from scipy.optimize import minimize
from scipy.special import expit

from site_selection.errors import ConvergenceError, DegenerateDataError, InputDataError

logger = logging.getLogger(__name__)

INTERCEPT = "(Intercept)"


# ---------------------------
# Detection histories + site covariates
# ---------------------------
@dataclass
class OccupancyData:
    """Detection matrix ``y`` (sites x visits, NaN = missed visit) with site covariates."""

    y: np.ndarray
    site_covs: pd.DataFrame
    visit_columns: Tuple[str, ...] = ()

    def __post_init__(self):
        self.y = np.asarray(self.y, dtype=float)
        if self.y.ndim != 2:
            raise InputDataError(f"detection matrix must be 2-D, got shape {self.y.shape}")
        if len(self.site_covs) != self.y.shape[0]:
            raise InputDataError(
                f"{len(self.site_covs)} covariate rows for {self.y.shape[0]} detection histories"
            )
        finite = self.y[~np.isnan(self.y)]
        if not np.isin(finite, (0.0, 1.0)).all():
            raise InputDataError("detections must be 0, 1 or missing")

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, visit_columns: Sequence[str],
                   site_covariates: Iterable[str], id_column: str,
                   n_visits: Optional[int] = None) -> "OccupancyData":
        """
        Build occupancy data from a one-row-per-site table.

        Sites with no conducted visit or a missing covariate are dropped with
        a warning; an all-missing covariate or no detections at all is an error.
        """
        visit_columns = list(visit_columns)
        site_covariates = list(site_covariates)
        if n_visits is not None and len(visit_columns) != n_visits:
            raise InputDataError(f"expected {n_visits} visit columns, got {len(visit_columns)}")
        missing = [c for c in [id_column] + visit_columns + site_covariates if c not in frame.columns]
        if missing:
            raise InputDataError(f"missing required columns: {missing}")

        df = frame.copy()
        for col in site_covariates:
            if df[col].isna().all():
                raise DegenerateDataError(f"site covariate {col!r} has no values")
            if not pd.api.types.is_numeric_dtype(df[col]):
                raise InputDataError(f"site covariate {col!r} must be numeric")

        no_visits = df[visit_columns].isna().all(axis=1)
        if no_visits.any():
            logger.warning("Dropping %d sites without any conducted visit: %s",
                           int(no_visits.sum()), df.loc[no_visits, id_column].tolist())
        no_covs = df[site_covariates].isna().any(axis=1) & ~no_visits
        if no_covs.any():
            logger.warning("Dropping %d sites with missing site covariates: %s",
                           int(no_covs.sum()), df.loc[no_covs, id_column].tolist())
        df = df[~(no_visits | no_covs)]

        covs = df.set_index(id_column)[site_covariates].astype(float)
        data = cls(y=df[visit_columns].to_numpy(dtype=float), site_covs=covs,
                   visit_columns=tuple(visit_columns))
        data.check_detections()
        return data

    @property
    def n_sites(self) -> int:
        return self.y.shape[0]

    @property
    def n_visits(self) -> int:
        return self.y.shape[1]

    @property
    def site_ids(self) -> List:
        return list(self.site_covs.index)

    def naive_occupancy(self) -> float:
        """Fraction of sites with at least one detection."""
        return float(np.mean(np.nansum(self.y, axis=1) > 0))

    def check_detections(self) -> None:
        if self.n_sites == 0:
            raise DegenerateDataError("no sites left to fit")
        if np.nansum(self.y) == 0:
            raise DegenerateDataError("no detections in the historical data; occupancy is not estimable")

    def exclude(self, site_ids: Iterable) -> "OccupancyData":
        """Return a copy without the given sites (matched on the site key)."""
        site_ids = list(site_ids)
        if not site_ids:
            return self
        known = set(self.site_covs.index)
        unknown = [s for s in site_ids if s not in known]
        if unknown:
            raise InputDataError(f"cannot exclude unknown sites: {unknown}")
        keep = ~self.site_covs.index.isin(site_ids)
        logger.info("Excluding %d historical sites before fitting: %s", len(site_ids), site_ids)
        return OccupancyData(y=self.y[keep], site_covs=self.site_covs[keep],
                             visit_columns=self.visit_columns)


def design_matrix(covs: pd.DataFrame, names: Sequence[str]) -> np.ndarray:
    """Intercept column followed by the named covariates."""
    names = list(names)
    missing = [n for n in names if n not in covs.columns]
    if missing:
        raise InputDataError(f"missing covariates: {missing}")
    values = covs[names].to_numpy(dtype=float)
    return np.column_stack([np.ones(len(covs)), values])


# ---------------------------
# Likelihood
# ---------------------------
class _Likelihood:
    """Negative log-likelihood and gradient for fixed data."""

    def __init__(self, y: np.ndarray, X: np.ndarray, V: np.ndarray):
        observed = ~np.isnan(y)
        self.n_vis = observed.sum(axis=1).astype(float)
        self.det = np.nansum(y, axis=1)
        self.zero = self.det == 0
        self.X = X
        self.V = V
        self.nb = X.shape[1]

    def _terms(self, theta):
        beta, alpha = theta[:self.nb], theta[self.nb:]
        eta = self.X @ beta
        zeta = self.V @ alpha
        log_psi = -np.logaddexp(0.0, -eta)
        log_1mpsi = -np.logaddexp(0.0, eta)
        log_p = -np.logaddexp(0.0, -zeta)
        log_q = -np.logaddexp(0.0, zeta)
        ll_pos = log_psi + self.det * log_p + (self.n_vis - self.det) * log_q
        ll_zero = np.logaddexp(log_1mpsi, log_psi + self.n_vis * log_q)
        ll = np.where(self.zero, ll_zero, ll_pos)
        # posterior probability that the site is occupied
        w = np.where(self.zero, np.exp(log_psi + self.n_vis * log_q - ll_zero), 1.0)
        return eta, zeta, ll, w

    def nll(self, theta):
        return -float(np.sum(self._terms(theta)[2]))

    def grad(self, theta):
        eta, zeta, _, w = self._terms(theta)
        g_beta = self.X.T @ (w - expit(eta))
        g_alpha = self.V.T @ (self.det - self.n_vis * expit(zeta) * w)
        return -np.concatenate([g_beta, g_alpha])


def numeric_hessian(grad, x: np.ndarray, rel_step: float = 1e-5) -> np.ndarray:
    """Central-difference Jacobian of ``grad`` at ``x``, symmetrised."""
    x = np.asarray(x, dtype=float)
    k = x.size
    h = rel_step * np.maximum(1.0, np.abs(x))
    H = np.empty((k, k))
    for i in range(k):
        e = np.zeros(k)
        e[i] = h[i]
        H[:, i] = (grad(x + e) - grad(x - e)) / (2 * h[i])
    return 0.5 * (H + H.T)


# ---------------------------
# Fitted model
# ---------------------------
def _coef_table(names, est, se) -> pd.DataFrame:
    z = est / se
    return pd.DataFrame(
        {"Estimate": est, "SE": se, "z": z, "P(>|z|)": 2 * stats.norm.sf(np.abs(z))},
        index=pd.Index(names, name="term"),
    )


@dataclass
class OccupancyFit:
    state_covariates: Tuple[str, ...]
    detection_covariates: Tuple[str, ...]
    coef: np.ndarray
    vcov: np.ndarray
    nll: float
    n_sites: int
    n_iter: int
    message: str = ""
    site_ids: List = field(default_factory=list)

    @property
    def n_state(self) -> int:
        return len(self.state_covariates) + 1

    @property
    def state_names(self) -> List[str]:
        return [INTERCEPT] + list(self.state_covariates)

    @property
    def detection_names(self) -> List[str]:
        return [INTERCEPT] + list(self.detection_covariates)

    @property
    def se(self) -> np.ndarray:
        return np.sqrt(np.diag(self.vcov))

    @property
    def state(self) -> pd.DataFrame:
        """Occupancy (logit-scale) estimates."""
        k = self.n_state
        return _coef_table(self.state_names, self.coef[:k], self.se[:k])

    @property
    def detection(self) -> pd.DataFrame:
        """Detection (logit-scale) estimates."""
        k = self.n_state
        return _coef_table(self.detection_names, self.coef[k:], self.se[k:])

    @property
    def loglik(self) -> float:
        return -self.nll

    @property
    def aic(self) -> float:
        return 2 * self.nll + 2 * self.coef.size

    def predict(self, newdata: Optional[pd.DataFrame] = None, type: str = "state",
                level: float = 0.95) -> pd.DataFrame:
        """
        Back-transformed predictions with a confidence interval.

        The interval is built on the logit scale (estimate +/- z * SE, SE by
        the delta method) and mapped through the logistic function, so it
        always lies within [0, 1] and contains the point prediction. ``SE``
        is the delta-method standard error on the probability scale.
        """
        if type == "state":
            names, sl = list(self.state_covariates), slice(0, self.n_state)
        elif type == "det":
            names, sl = list(self.detection_covariates), slice(self.n_state, None)
        else:
            raise ValueError(f"type must be 'state' or 'det', got {type!r}")
        if not 0 < level < 1:
            raise ValueError(f"level must be in (0, 1), got {level}")

        if newdata is None:
            if names:
                raise InputDataError(f"newdata with columns {names} is required")
            newdata = pd.DataFrame(index=[0])
        X = design_matrix(newdata, names)
        if not np.isfinite(X).all():
            raise InputDataError("prediction covariates must be finite")

        beta = self.coef[sl]
        cov = self.vcov[sl, sl]
        eta = X @ beta
        se_link = np.sqrt(np.einsum("ij,jk,ik->i", X, cov, X))
        crit = stats.norm.ppf(0.5 + level / 2)

        pred = expit(eta)
        out = pd.DataFrame({
            "Predicted": pred,
            "SE": se_link * pred * (1 - pred),
            "lower": expit(eta - crit * se_link),
            "upper": expit(eta + crit * se_link),
        }, index=newdata.index)
        for n in names:
            out[n] = newdata[n]
        return out

    def detection_probability(self, level: float = 0.95) -> pd.Series:
        """Constant detection probability with its interval (intercept-only detection)."""
        if self.detection_covariates:
            raise ValueError("detection depends on covariates; use predict(newdata, type='det')")
        return self.predict(type="det", level=level).iloc[0]

    def to_dict(self) -> Dict:
        return {
            "state": self.state.reset_index().to_dict(orient="records"),
            "detection": self.detection.reset_index().to_dict(orient="records"),
            "loglik": self.loglik,
            "aic": self.aic,
            "n_sites": self.n_sites,
            "n_iter": self.n_iter,
        }


def fit_occupancy(data: OccupancyData, state_covariates: Sequence[str] = ("Depth",),
                  detection_covariates: Sequence[str] = (), start: Optional[Sequence[float]] = None,
                  maxiter: int = 500, gtol: float = 1e-5) -> OccupancyFit:
    """
    Maximum-likelihood fit of ``p ~ detection_covariates, psi ~ state_covariates``.

    Raises ``ConvergenceError`` when BFGS stops without meeting its gradient
    tolerance or when the Hessian at the optimum is not positive definite.
    """
    data.check_detections()
    state_covariates = tuple(state_covariates)
    detection_covariates = tuple(detection_covariates)
    X = design_matrix(data.site_covs, state_covariates)
    V = design_matrix(data.site_covs, detection_covariates)
    lik = _Likelihood(data.y, X, V)

    k = X.shape[1] + V.shape[1]
    x0 = np.zeros(k) if start is None else np.asarray(start, dtype=float)
    if x0.shape != (k,):
        raise InputDataError(f"start must have {k} values, got {x0.size}")

    res = minimize(lik.nll, x0, jac=lik.grad, method="BFGS",
                   options={"maxiter": maxiter, "gtol": gtol})
    if not res.success:
        raise ConvergenceError(f"occupancy fit did not converge after {res.nit} iterations: {res.message}",
                               result=res)

    H = numeric_hessian(lik.grad, res.x)
    try:
        np.linalg.cholesky(H)
    except np.linalg.LinAlgError as e:
        raise ConvergenceError("Hessian is singular or not positive definite at the optimum; "
                               "try other starting values or fewer covariates", result=res) from e
    vcov = np.linalg.inv(H)

    fit = OccupancyFit(
        state_covariates=state_covariates,
        detection_covariates=detection_covariates,
        coef=res.x.copy(),
        vcov=vcov,
        nll=float(res.fun),
        n_sites=data.n_sites,
        n_iter=int(res.nit),
        message=str(res.message),
        site_ids=data.site_ids,
    )
    logger.info("Occupancy fit converged in %d iterations (n=%d sites, logLik=%.3f, AIC=%.3f)",
                fit.n_iter, fit.n_sites, fit.loglik, fit.aic)
    return fit
