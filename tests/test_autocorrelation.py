import numpy as np
import pandas as pd
import pytest

from site_selection.autocorrelation import (
    check_spatial_autocorrelation,
    complete_cases,
    distance_matrix,
    inverse_distance_weights,
    morans_i,
)
from site_selection.config import DEFAULTS
from site_selection.errors import DegenerateDataError, InputDataError, InsufficientDataError

CAND_COLS = DEFAULTS["columns"]["candidates"]


def test_weight_matrix_symmetric_zero_diagonal_finite():
    rng = np.random.default_rng(0)
    x = rng.uniform(0, 1, 15)
    y = rng.uniform(0, 1, 15)
    x[4], y[4] = x[2], y[2]  # coincident pair
    w = inverse_distance_weights(distance_matrix(x, y))

    assert w.shape == (15, 15)
    assert np.allclose(w, w.T)
    assert np.all(np.diag(w) == 0)
    assert np.isfinite(w).all()
    assert (w >= 0).all()
    assert w[2, 4] == 0 and w[4, 2] == 0


def test_inverse_distance_values():
    d = distance_matrix([0, 3, 0], [0, 0, 4])
    w = inverse_distance_weights(d)
    assert w[0, 1] == pytest.approx(1 / 3)
    assert w[0, 2] == pytest.approx(1 / 4)
    assert w[1, 2] == pytest.approx(1 / 5)


def test_coincident_sites_can_be_rejected():
    d = distance_matrix([0, 0, 1], [0, 0, 1])
    with pytest.raises(InputDataError):
        inverse_distance_weights(d, duplicates="reject", labels=["a", "b", "c"])


def test_single_site_is_insufficient():
    with pytest.raises(InsufficientDataError):
        distance_matrix([1.0], [2.0])


def test_morans_i_matches_direct_sum():
    x = np.array([0.0, 1.0, 2.0, 3.0, 5.0])
    values = np.array([1.0, 2.0, 2.5, 4.0, 3.0])
    w = inverse_distance_weights(distance_matrix(x, np.zeros_like(x)))
    res = morans_i(values, w)

    n = len(values)
    ws = w / w.sum(axis=1, keepdims=True)
    z = values - values.mean()
    num = sum(ws[i, j] * z[i] * z[j] for i in range(n) for j in range(n))
    expected_i = (n / ws.sum()) * num / np.sum(z ** 2)

    assert res.observed == pytest.approx(expected_i)
    assert res.expected == pytest.approx(-1 / (n - 1))
    assert res.variance > 0
    assert res.sd == pytest.approx(np.sqrt(res.variance))


def test_morans_i_agrees_with_esda():
    esda_moran = pytest.importorskip("esda.moran")
    weights_mod = pytest.importorskip("libpysal.weights")

    rng = np.random.default_rng(7)
    x = rng.uniform(0, 10, 25)
    y = rng.uniform(0, 10, 25)
    values = 0.3 * x + rng.normal(0, 1, 25)
    w = inverse_distance_weights(distance_matrix(x, y))

    res = morans_i(values, w)
    ref = esda_moran.Moran(values, weights_mod.full2W(w), transformation="r", permutations=0)

    assert res.observed == pytest.approx(ref.I)
    assert res.expected == pytest.approx(ref.EI)
    assert res.variance == pytest.approx(ref.VI_rand)
    assert res.z == pytest.approx(ref.z_rand)


def test_positive_autocorrelation_detected():
    x = np.arange(20, dtype=float)
    w = inverse_distance_weights(distance_matrix(x, np.zeros(20)))
    res = morans_i(x, w, alternative="greater")
    assert res.observed > res.expected
    assert res.p_value < 0.05


def test_alternating_values_not_positive():
    x = np.arange(20, dtype=float)
    w = inverse_distance_weights(distance_matrix(x, np.zeros(20)))
    values = np.tile([0.0, 1.0], 10)
    greater = morans_i(values, w, alternative="greater")
    less = morans_i(values, w, alternative="less")
    assert greater.observed < greater.expected
    assert greater.p_value > 0.5
    assert less.p_value == pytest.approx(1 - greater.p_value)


def test_constant_covariate_is_degenerate():
    x = np.arange(6, dtype=float)
    w = inverse_distance_weights(distance_matrix(x, np.zeros(6)))
    with pytest.raises(DegenerateDataError):
        morans_i(np.ones(6), w)


def test_too_few_sites_for_variance():
    x = np.arange(3, dtype=float)
    w = inverse_distance_weights(distance_matrix(x, np.zeros(3)))
    with pytest.raises(InsufficientDataError):
        morans_i([1.0, 2.0, 3.0], w)


def test_bad_alternative():
    with pytest.raises(ValueError):
        morans_i([1, 2, 3, 4], np.ones((4, 4)) - np.eye(4), alternative="bigger")


def test_complete_cases_drops_missing():
    df = pd.DataFrame({"a": [1, None, 3], "b": [1, 2, None], "c": [None, None, None]})
    out = complete_cases(df, ["a", "b"])
    assert len(out) == 1


def test_check_on_candidates_uses_complete_rows(candidate_frame):
    res = check_spatial_autocorrelation(candidate_frame, CAND_COLS)
    assert res.n == len(candidate_frame) - 2
    assert 0 <= res.p_value <= 1
    assert res.alternative == "greater"


def test_check_needs_two_located_sites(candidate_frame):
    few = candidate_frame.copy()
    few.loc[1:, "Lat"] = np.nan
    with pytest.raises(InsufficientDataError):
        check_spatial_autocorrelation(few, CAND_COLS)
