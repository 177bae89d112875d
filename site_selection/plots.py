#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Diagnostic charts for the site selection run.

All styling comes from an explicit ``Theme`` value applied through
``matplotlib.rc_context`` around each figure. Charts are presentation only;
nothing downstream reads them.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
import geopandas as gpd
import matplotlib.pyplot as plt
from matplotlib.ticker import FormatStrFormatter
from scipy.stats import gaussian_kde

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Theme:
    family: str = "sans-serif"
    colour: str = "black"
    axis_title_size: float = 11
    tick_size: float = 10
    legend_title_size: float = 10
    legend_text_size: float = 8
    title_size: float = 11
    bar_colour: str = "#595959"
    density_colour: str = "red"
    density_width: float = 3.0
    ribbon_colour: str = "#bfbfbf"
    map_cmap: str = "viridis"

    @classmethod
    def from_config(cls, overrides: Optional[Dict] = None) -> "Theme":
        overrides = dict(overrides or {})
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown theme settings: {sorted(unknown)}")
        return replace(cls(), **overrides)

    def rc(self) -> Dict:
        return {
            "font.family": self.family,
            "text.color": self.colour,
            "axes.labelcolor": self.colour,
            "axes.labelsize": self.axis_title_size,
            "axes.titlesize": self.title_size,
            "axes.edgecolor": self.colour,
            "axes.grid": True,
            "grid.color": "#ebebeb",
            "axes.axisbelow": True,
            "xtick.color": self.colour,
            "ytick.color": self.colour,
            "xtick.labelsize": self.tick_size,
            "ytick.labelsize": self.tick_size,
            "legend.fontsize": self.legend_text_size,
            "legend.title_fontsize": self.legend_title_size,
        }


def save_figure(fig, out_file: Path, dpi: int = 300) -> Path:
    out_file = Path(out_file)
    out_file.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_file, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    logger.info("Saved: %s", out_file)
    return out_file


# ---------------------------
# Depth distributions
# ---------------------------
def _density_histogram(ax, values, title, xlabel, theme: Theme, bins: int, ymax: Optional[float] = 4):
    values = pd.Series(values, dtype=float).dropna().to_numpy()
    ax.hist(values, bins=bins, density=True, color=theme.bar_colour, edgecolor="white")
    if len(values) > 1 and np.ptp(values) > 0:
        grid = np.linspace(values.min(), values.max(), 200)
        ax.plot(grid, gaussian_kde(values)(grid), color=theme.density_colour, lw=theme.density_width)
    ax.set_title(title, loc="left")
    ax.set_xlabel(xlabel)
    ax.set_ylabel("Density")
    if ymax is not None:
        ax.set_ylim(0, ymax)


def plot_depth_histogram(depths: Sequence[float], out_file: Path, theme: Theme,
                         title: str = "All surveyed sites", bins: int = 25, dpi: int = 300) -> Path:
    with plt.rc_context(theme.rc()):
        fig, ax = plt.subplots(figsize=(5, 4))
        _density_histogram(ax, depths, title, "Mean pool depth (m)", theme, bins)
        return save_figure(fig, out_file, dpi)


def plot_selected_vs_all(all_depths: Sequence[float], selected_depths: Sequence[float], out_file: Path,
                         theme: Theme, dpi: int = 300) -> Path:
    """All candidates (left) next to the selected sites (right)."""
    with plt.rc_context(theme.rc()):
        fig, axes = plt.subplots(1, 2, figsize=(10, 4), constrained_layout=True)
        _density_histogram(axes[0], all_depths, "All surveyed sites", "Mean pool depth (m)", theme, bins=25)
        _density_histogram(axes[1], selected_depths, "Selected sites", "Mean pool depth (m)", theme, bins=20)
        return save_figure(fig, out_file, dpi)


def plot_head_histogram(heads: Sequence[float], out_file: Path, theme: Theme,
                        bins: int = 20, dpi: int = 300) -> Path:
    values = pd.Series(heads, dtype=float).dropna()
    with plt.rc_context(theme.rc()):
        fig, ax = plt.subplots(figsize=(5, 4))
        ax.hist(values, bins=bins, color=theme.bar_colour, edgecolor="white")
        ax.set_title("Selected sites", loc="left")
        ax.set_xlabel("Hydraulic head (mm)")
        ax.set_ylabel("Frequency")
        return save_figure(fig, out_file, dpi)


# ---------------------------
# Occupancy prediction curve
# ---------------------------
def plot_prediction_curve(pred: pd.DataFrame, covariate: str, out_file: Path, theme: Theme,
                          xlim=(0.25, 1.0), dpi: int = 300) -> Path:
    """Predicted occupancy against the covariate with its confidence ribbon."""
    d = pred.sort_values(covariate)
    with plt.rc_context(theme.rc()):
        fig, ax = plt.subplots(figsize=(5, 4))
        ax.fill_between(d[covariate], d["lower"], d["upper"], color=theme.ribbon_colour, lw=0)
        ax.plot(d[covariate], d["Predicted"], color=theme.colour, lw=0.8)
        ax.set_xlabel(f"{covariate} (m)")
        ax.set_ylabel("Occupancy Probability")
        ax.set_ylim(0, 1)
        if xlim is not None:
            ax.set_xlim(*xlim)
            ax.set_xticks(np.linspace(xlim[0], xlim[1], 4))
        ax.xaxis.set_major_formatter(FormatStrFormatter("%.2f"))
        return save_figure(fig, out_file, dpi)


# ---------------------------
# Site map
# ---------------------------
def sites_to_geodataframe(sites: pd.DataFrame, lon: str, lat: str,
                          west_positive_longitude: bool = True) -> gpd.GeoDataFrame:
    """Point geometries in EPSG:4326; longitudes stored west-positive are negated."""
    x = sites[lon].astype(float)
    if west_positive_longitude:
        x = -x
    return gpd.GeoDataFrame(sites.copy(), geometry=gpd.points_from_xy(x, sites[lat].astype(float)),
                            crs="EPSG:4326")


def plot_site_map(sites: pd.DataFrame, columns: Dict[str, str], out_file: Path, theme: Theme,
                  west_positive_longitude: bool = True, dpi: int = 300) -> Path:
    """Crude map of candidate locations coloured by depth."""
    located = sites.dropna(subset=[columns["longitude"], columns["latitude"], columns["depth"]])
    gdf = sites_to_geodataframe(located, columns["longitude"], columns["latitude"], west_positive_longitude)
    with plt.rc_context(theme.rc()):
        fig, ax = plt.subplots(figsize=(7, 7))
        gdf.plot(column=columns["depth"], ax=ax, cmap=theme.map_cmap, markersize=12,
                 legend=True, legend_kwds={"label": "Depth", "shrink": 0.5})
        ax.set_xlabel("Longitude")
        ax.set_ylabel("Latitude")
        ax.set_aspect("equal")
        return save_figure(fig, out_file, dpi)
