#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Bayesian cross-check of the occupancy model using PyMC.

Same structure as the maximum-likelihood fit:
  - occupancy ψ: logit(ψ) = beta0 + beta * covariates
  - detection p: intercept only

The latent occupancy state is marginalised out:
  y > 0:  log(ψ) + log Binomial(y | K, p)
  y == 0: log((1-ψ) + ψ*(1-p)^K)

Returns posterior mean and 95% HDI per parameter and for ψ at new covariate
values, so the MLE prediction curve can be compared with the posterior.
"""
from __future__ import annotations
import logging
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

import pymc as pm
import pytensor.tensor as pt
import arviz as az

from site_selection.occupancy import OccupancyData

logger = logging.getLogger(__name__)


def _standardise(x: np.ndarray, mean: np.ndarray, sd: np.ndarray) -> np.ndarray:
    return (x - mean) / (sd + 1e-9)


def fit_occupancy_bayes(data: OccupancyData, state_covariates: Sequence[str] = ("Depth",),
                        newdata: Optional[pd.DataFrame] = None, draws: int = 800, tune: int = 800,
                        chains: int = 2, cores: int = 2, target_accept: float = 0.9, seed: int = 42,
                        hdi_prob: float = 0.95) -> Dict[str, pd.DataFrame]:
    """
    Sample the posterior of ``p ~ 1, psi ~ state_covariates``.

    Covariates are standardised inside the model; reported coefficients are
    on that standardised scale. Returns ``{"params": ..., "psi": ...}``,
    where ``psi`` is empty when ``newdata`` is None.
    """
    state_covariates = list(state_covariates)
    covs = data.site_covs[state_covariates].to_numpy(dtype=float)
    mu = covs.mean(axis=0)
    sd = covs.std(axis=0)
    Z = _standardise(covs, mu, sd)

    # Observations: detections and conducted visits per site
    y = np.nansum(data.y, axis=1).astype(int)
    K = (~np.isnan(data.y)).sum(axis=1).astype(int)

    with pm.Model():

        # ---- occupancy ----
        beta0 = pm.Normal("beta0", 0, 1.5)
        beta = pm.Normal("beta", 0, 1.0, shape=len(state_covariates))
        psi = pm.Deterministic("psi", pm.math.sigmoid(beta0 + pt.dot(Z, beta)))

        # ---- detection ----
        alpha0 = pm.Normal("alpha0", 0, 1.5)
        p = pm.Deterministic("p", pm.math.sigmoid(alpha0))

        # ---- marginalised likelihood ----
        log_binom = pm.logp(pm.Binomial.dist(n=K, p=p), y)

        eps_safe = 1e-12
        logp_pos = pt.log(psi + eps_safe) + log_binom
        logp_zero = pt.log((1 - psi) + psi * pt.pow((1 - p), K) + eps_safe)

        logp = pt.switch(pt.gt(y, 0), logp_pos, logp_zero)
        pm.Potential("lik", logp.sum())

        idata = pm.sample(
            draws=draws,
            tune=tune,
            chains=chains,
            cores=cores,
            target_accept=target_accept,
            random_seed=seed,
            progressbar=False
        )

    post = idata.posterior
    beta0_post = post["beta0"].values.reshape(-1)
    beta_post = post["beta"].values.reshape(-1, len(state_covariates))
    p_post = post["p"].values.reshape(-1)

    rows = []
    named = [("beta0", beta0_post), ("p", p_post)]
    named += [(f"beta_{c}", beta_post[:, j]) for j, c in enumerate(state_covariates)]
    for name, draws_ in named:
        hdi = az.hdi(draws_, hdi_prob=hdi_prob)
        rows.append({"parameter": name, "mean": float(draws_.mean()),
                     "hdi_low": float(hdi[0]), "hdi_high": float(hdi[1])})
    params = pd.DataFrame(rows)

    psi_new = pd.DataFrame(columns=["mean_occupancy", "hdi_low", "hdi_high"] + state_covariates)
    if newdata is not None:
        Znew = _standardise(newdata[state_covariates].to_numpy(dtype=float), mu, sd)
        eta = beta0_post[:, None] + beta_post @ Znew.T  # (samples, n_new)
        psi_draws = 1.0 / (1.0 + np.exp(-eta))
        hdi = np.array([az.hdi(psi_draws[:, j], hdi_prob=hdi_prob) for j in range(psi_draws.shape[1])])
        hdi = hdi.reshape(-1, 2)
        psi_new = pd.DataFrame({
            "mean_occupancy": psi_draws.mean(axis=0),
            "hdi_low": hdi[:, 0],
            "hdi_high": hdi[:, 1],
        }, index=newdata.index)
        for c in state_covariates:
            psi_new[c] = newdata[c]

    p_row = params.set_index("parameter").loc["p"]
    logger.info("Bayesian cross-check: p=%.3f (95%% HDI %.3f-%.3f), %d sites",
                p_row["mean"], p_row["hdi_low"], p_row["hdi_high"], data.n_sites)
    return {"params": params, "psi": psi_new}
