"""Shared fixtures: small historical and candidate tables written to tmp_path."""
from pathlib import Path

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

nan = np.nan

# 24 historical sites, shallow -> deep; detections at every depth so the
# occupancy MLE is finite.
HISTORIES = [
    [0, 0, 0], [1, 0, 0], [0, 0, 0], [0, 0, 0], [0, 1, 0], [0, 0, 0], [0, 0, nan], [1, 1, 0],
    [1, 0, 1], [0, 0, 0], [0, 1, 0], [1, 1, 0], [0, 0, 0], [1, 0, 0], [0, 1, 1], [0, 0, 0],
    [1, 1, 0], [1, 0, 1], [0, 0, 0], [1, 1, 1], [0, 1, 0], [1, 0, 0], [1, 1, 0], [0, 1, 1],
]


@pytest.fixture
def history_frame():
    depths = np.round(np.linspace(0.3, 0.9, len(HISTORIES)), 3)
    y = np.array(HISTORIES, dtype=float)
    return pd.DataFrame({
        "Site": [f"S{i:02d}" for i in range(1, len(HISTORIES) + 1)],
        "Haul.1": y[:, 0],
        "Haul.2": y[:, 1],
        "Haul.3": y[:, 2],
        "Depth": depths,
    })


@pytest.fixture
def candidate_frame():
    rng = np.random.default_rng(7)
    n = 30
    df = pd.DataFrame({
        "Pool.ID": [f"P{i:03d}" for i in range(1, n + 1)],
        "Long": 79.80 + np.linspace(0, 0.05, n) + rng.uniform(0, 0.001, n),
        "Lat": 43.40 + np.linspace(0, 0.08, n) + rng.uniform(0, 0.001, n),
        "Mean.pool.depth": np.round(np.linspace(0.25, 1.0, n), 3),
        "HH": rng.uniform(5, 60, n).round(1),
        "P1..max.": np.round(np.linspace(0.3, 1.1, n), 3),
        "Substrate": ["gravel", "sand", "cobble"] * (n // 3),
    })
    df.loc[3, ["Long", "Lat"]] = nan      # no coordinates
    df.loc[8, "Mean.pool.depth"] = nan    # no depth
    return df


@pytest.fixture
def data_dir(tmp_path, history_frame, candidate_frame) -> Path:
    d = tmp_path / "Data"
    d.mkdir()
    history_frame[["Site", "Depth"]].sample(frac=1, random_state=3).to_csv(d / "Habitat.csv", index=False)
    history_frame[["Site", "Haul.1", "Haul.2", "Haul.3"]].to_csv(d / "Adult_Occurrence.csv", index=False)
    candidate_frame.to_csv(d / "Depth_Site_Selection.csv", index=False)
    return d
