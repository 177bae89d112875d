#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Select survey sites for the coming season.

1) Moran's I test for spatial autocorrelation of candidate pool depth
   (diagnostic only; the run continues whatever the outcome).
2) Single-season occupancy model (p ~ 1, psi ~ Depth) fitted to historical
   three-haul detection data, used to predict psi at every candidate site.
3) Probability-weighted draw of candidate sites without replacement,
   weights = predicted psi.

Usage:

  python -m site_selection --config config.yaml
  python -m site_selection --config config.yaml --n-sites 80 --seed 1 --no-plots

Outputs (in paths.output_dir):
  - selected_sites.tsv / selected_sites.gpkg
  - candidate_predictions.tsv
  - model_summary.json
  - figures/*.png
"""
from __future__ import annotations
import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from site_selection import plots
from site_selection.autocorrelation import check_spatial_autocorrelation
from site_selection.config import load_config
from site_selection.data import load_candidates, load_history
from site_selection.errors import InputDataError, SiteSelectionError
from site_selection.logging_setup import setup_logging
from site_selection.occupancy import OccupancyData, OccupancyFit, fit_occupancy
from site_selection.sampling import select_sites

logger = logging.getLogger(__name__)

PSI_COLUMN = "Psi"


def predict_candidates(fit: OccupancyFit, candidates: pd.DataFrame, prediction_columns: Dict[str, str],
                       level: float = 0.95):
    """
    Predict psi for every candidate with complete covariates.

    Returns (scored candidates with a ``Psi`` column, prediction table).
    Candidates missing a covariate cannot be scored and are dropped.
    """
    missing_map = [c for c in fit.state_covariates if c not in prediction_columns]
    if missing_map:
        raise InputDataError(f"no candidate column mapped to model covariates {missing_map}")
    source = [prediction_columns[c] for c in fit.state_covariates]
    absent = [c for c in source if c not in candidates.columns]
    if absent:
        raise InputDataError(f"candidates: missing covariate columns {absent}")

    complete = candidates[source].notna().all(axis=1)
    if not complete.all():
        logger.warning("%d candidate sites lack %s and cannot be scored", int((~complete).sum()), source)
    scored = candidates[complete].copy()

    newdata = pd.DataFrame({c: scored[prediction_columns[c]] for c in fit.state_covariates}, index=scored.index)
    pred = fit.predict(newdata, type="state", level=level)
    scored[PSI_COLUMN] = pred["Predicted"]
    return scored, pred


def _log_deep_sites(candidates: pd.DataFrame, cols: Dict[str, str], threshold: float) -> Dict[str, int]:
    counts = {}
    for field in ("depth", "max_depth"):
        col = cols.get(field)
        if col and col in candidates.columns:
            counts[col] = int((candidates[col] > threshold).sum())
            logger.info("%d candidate sites with %s > %.2f (max %.2f)", counts[col], col, threshold,
                        candidates[col].max())
    return counts


def write_outputs(out_dir: Path, selected: pd.DataFrame, scored: pd.DataFrame, pred: pd.DataFrame,
                  summary: Dict[str, Any], cand_cols: Dict[str, str], west_positive: bool) -> Dict[str, Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    paths = {
        "selected_tsv": out_dir / "selected_sites.tsv",
        "selected_gpkg": out_dir / "selected_sites.gpkg",
        "predictions": out_dir / "candidate_predictions.tsv",
        "summary": out_dir / "model_summary.json",
    }

    selected.to_csv(paths["selected_tsv"], sep="\t", index=False)

    table = scored[[cand_cols["id"]]].join(pred)
    table.to_csv(paths["predictions"], sep="\t", index=False)

    located = selected.dropna(subset=[cand_cols["longitude"], cand_cols["latitude"]])
    if len(located):
        gdf = plots.sites_to_geodataframe(located, cand_cols["longitude"], cand_cols["latitude"], west_positive)
        gdf.to_file(paths["selected_gpkg"], layer="selected_sites", driver="GPKG")
    else:
        del paths["selected_gpkg"]

    with open(paths["summary"], "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2, default=str)

    for p in paths.values():
        logger.info("Saved: %s", p)
    return paths


def make_figures(cfg: Dict[str, Any], candidates: pd.DataFrame, selected: pd.DataFrame,
                 pred: pd.DataFrame, covariate: Optional[str]) -> List[Path]:
    """Diagnostic charts; the prediction curve needs an occupancy covariate."""
    pc = cfg["plots"]
    cols = cfg["columns"]["candidates"]
    theme = plots.Theme.from_config(pc.get("theme"))
    fig_dir = Path(cfg["paths"]["output_dir"]) / "figures"
    dpi = pc["dpi"]

    saved = [
        plots.plot_depth_histogram(candidates[cols["depth"]], fig_dir / "depth_all_sites.png", theme, dpi=dpi),
        plots.plot_selected_vs_all(candidates[cols["depth"]], selected[cols["depth"]],
                                   fig_dir / "depth_selected_vs_all.png", theme, dpi=dpi),
        plots.plot_site_map(candidates, cols, fig_dir / "site_map_depth.png", theme,
                            west_positive_longitude=pc["west_positive_longitude"], dpi=dpi),
    ]
    if covariate is None:
        logger.info("Occupancy has no covariates; skipping the prediction curve")
    else:
        saved.append(plots.plot_prediction_curve(pred, covariate, fig_dir / "occupancy_vs_depth.png", theme, dpi=dpi))
    if cols.get("head") in selected.columns:
        saved.append(plots.plot_head_histogram(selected[cols["head"]], fig_dir / "head_selected.png",
                                               theme, dpi=dpi))
    return saved


def run(cfg: Dict[str, Any], make_plots: Optional[bool] = None) -> Dict[str, Any]:
    """Run the whole selection from a loaded configuration."""
    paths = cfg["paths"]
    cand_cols = cfg["columns"]["candidates"]
    hist_cols = cfg["columns"]["history"]
    occ = cfg["occupancy"]
    smp = cfg["sampling"]

    # ---------------------------
    # Load inputs
    # ---------------------------
    candidates = load_candidates(paths["candidates"], cand_cols)
    covariates = list(dict.fromkeys(list(occ["state_covariates"]) + list(occ["detection_covariates"])))
    history = load_history(paths["habitat"], paths["detections"], hist_cols, covariates)

    # ---------------------------
    # Spatial autocorrelation (diagnostic)
    # ---------------------------
    ac = cfg["autocorrelation"]
    moran = check_spatial_autocorrelation(candidates, cand_cols, duplicates=ac["duplicates"],
                                          alternative=ac["alternative"])

    # ---------------------------
    # Occupancy model
    # ---------------------------
    data = OccupancyData.from_frame(history, hist_cols["visits"], covariates, hist_cols["id"],
                                    n_visits=len(hist_cols["visits"]))
    data = data.exclude(occ["exclude_sites"])
    logger.info("Naive occupancy of %d historical sites: %.3f", data.n_sites, data.naive_occupancy())

    fit = fit_occupancy(data, state_covariates=occ["state_covariates"],
                        detection_covariates=occ["detection_covariates"],
                        maxiter=occ["maxiter"], gtol=occ["gtol"])
    logger.info("Occupancy coefficients (logit scale):\n%s", fit.state.round(4).to_string())
    logger.info("Detection coefficients (logit scale):\n%s", fit.detection.round(4).to_string())

    scored, pred = predict_candidates(fit, candidates, occ["prediction_columns"], level=occ["level"])

    # ---------------------------
    # Weighted draw
    # ---------------------------
    rng = np.random.default_rng(smp["seed"])
    selected = select_sites(scored, PSI_COLUMN, smp["n_sites"], rng, cand_cols["id"])

    deep = _log_deep_sites(candidates, cand_cols, cfg["plots"]["depth_threshold"])

    summary = {
        "moran": moran.to_dict(),
        "occupancy": fit.to_dict(),
        "excluded_sites": list(occ["exclude_sites"]),
        "n_candidates": int(len(candidates)),
        "n_scored": int(len(scored)),
        "n_selected": int(len(selected)),
        "seed": smp["seed"],
        "deep_sites": deep,
    }
    if not fit.detection_covariates:
        p_hat = fit.detection_probability(level=occ["level"])
        summary["detection_probability"] = {k: float(v) for k, v in p_hat.items()}

    outputs = write_outputs(Path(paths["output_dir"]), selected, scored, pred, summary, cand_cols,
                            cfg["plots"]["west_positive_longitude"])

    # ---------------------------
    # Figures
    # ---------------------------
    if make_plots is None:
        make_plots = cfg["plots"]["enabled"]
    figures = []
    if make_plots:
        figures = make_figures(cfg, candidates, selected, pred,
                               fit.state_covariates[0] if fit.state_covariates else None)

    # ---------------------------
    # Bayesian cross-check
    # ---------------------------
    bayes_res = None
    if cfg["bayes"]["enabled"]:
        from site_selection.bayes import fit_occupancy_bayes

        b = cfg["bayes"]
        newdata = pred[list(fit.state_covariates)]
        bayes_res = fit_occupancy_bayes(data, state_covariates=fit.state_covariates, newdata=newdata,
                                        draws=b["draws"], tune=b["tune"], chains=b["chains"],
                                        cores=b["cores"], target_accept=b["target_accept"], seed=b["seed"])
        out = Path(paths["output_dir"]) / "bayes_parameters.tsv"
        bayes_res["params"].to_csv(out, sep="\t", index=False)
        logger.info("Saved: %s", out)

    return {
        "moran": moran,
        "fit": fit,
        "candidates": scored,
        "predictions": pred,
        "selected": selected,
        "outputs": outputs,
        "figures": figures,
        "bayes": bayes_res,
    }


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Occupancy-weighted selection of survey sites")
    p.add_argument("--config", type=str, default=None, help="YAML configuration file.")
    p.add_argument("--n-sites", type=int, default=None, help="Number of sites to select (overrides config).")
    p.add_argument("--seed", type=int, default=None, help="Random seed for the weighted draw (overrides config).")
    p.add_argument("--output-dir", type=str, default=None, help="Output folder (overrides config).")
    p.add_argument("--no-plots", action="store_true", help="Skip the diagnostic charts.")
    p.add_argument("--bayes", action="store_true", help="Also run the PyMC cross-check.")
    p.add_argument("--log-level", type=str, default="INFO", help="Logging level.")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    try:
        cfg = load_config(args.config)
        if args.n_sites is not None:
            cfg["sampling"]["n_sites"] = args.n_sites
        if args.seed is not None:
            cfg["sampling"]["seed"] = args.seed
        if args.output_dir is not None:
            cfg["paths"]["output_dir"] = Path(args.output_dir)
        if args.bayes:
            cfg["bayes"]["enabled"] = True
        result = run(cfg, make_plots=False if args.no_plots else None)
    except (SiteSelectionError, FileNotFoundError) as e:
        logger.error("Site selection failed: %s", e)
        return 1
    logger.info("Selected %d sites", len(result["selected"]))
    return 0
