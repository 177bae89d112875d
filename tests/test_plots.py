import numpy as np
import pandas as pd
import pytest

from site_selection.config import DEFAULTS
from site_selection.plots import (
    Theme,
    plot_depth_histogram,
    plot_prediction_curve,
    plot_site_map,
    sites_to_geodataframe,
)


def test_theme_overrides():
    theme = Theme.from_config({"axis_title_size": 14, "ribbon_colour": "grey"})
    assert theme.axis_title_size == 14
    assert theme.rc()["axes.labelsize"] == 14
    assert Theme().axis_title_size == 11


def test_theme_rejects_unknown_settings():
    with pytest.raises(ValueError):
        Theme.from_config({"font_size": 3})


def test_west_positive_longitudes_are_negated():
    df = pd.DataFrame({"Long": [79.8, 79.9], "Lat": [43.4, 43.5]})
    gdf = sites_to_geodataframe(df, "Long", "Lat")
    assert list(gdf.geometry.x) == [-79.8, -79.9]
    assert gdf.crs.to_epsg() == 4326
    east = sites_to_geodataframe(df, "Long", "Lat", west_positive_longitude=False)
    assert list(east.geometry.x) == [79.8, 79.9]


def test_figures_are_written(tmp_path, candidate_frame):
    theme = Theme()
    cols = DEFAULTS["columns"]["candidates"]
    out = plot_depth_histogram(candidate_frame["Mean.pool.depth"], tmp_path / "h.png", theme, dpi=50)
    assert out.exists()

    pred = pd.DataFrame({
        "Depth": np.linspace(0.25, 1, 10),
        "Predicted": np.linspace(0.2, 0.8, 10),
        "lower": np.linspace(0.1, 0.6, 10),
        "upper": np.linspace(0.3, 0.95, 10),
    })
    assert plot_prediction_curve(pred, "Depth", tmp_path / "curve.png", theme, dpi=50).exists()
    assert plot_site_map(candidate_frame, cols, tmp_path / "map" / "m.png", theme, dpi=50).exists()
