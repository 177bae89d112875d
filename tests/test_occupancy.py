import numpy as np
import pandas as pd
import pytest
from scipy.optimize import check_grad

from site_selection.errors import ConvergenceError, DegenerateDataError, InputDataError
from site_selection.occupancy import OccupancyData, _Likelihood, design_matrix, fit_occupancy

VISITS = ["Haul.1", "Haul.2", "Haul.3"]


def make_data(frame):
    return OccupancyData.from_frame(frame, VISITS, ["Depth"], "Site", n_visits=3)


@pytest.fixture
def fitted(history_frame):
    return fit_occupancy(make_data(history_frame), state_covariates=["Depth"])


def test_three_site_scenario_converges():
    frame = pd.DataFrame({
        "Site": ["a", "b", "c"],
        "Haul.1": [1, 0, 1],
        "Haul.2": [0, 0, 1],
        "Haul.3": [0, 0, 0],
        "Depth": [0.5, 0.3, 0.7],
    })
    fit = fit_occupancy(make_data(frame))
    state = fit.state
    assert list(state.index) == ["(Intercept)", "Depth"]
    assert np.isfinite(state["Estimate"]).all()
    assert np.isfinite(state["SE"]).all()
    assert (state["SE"] > 0).all()
    assert np.isfinite(fit.detection["SE"]).all()


def test_likelihood_at_zero_parameters():
    # psi = p = 0.5 everywhere
    y = np.array([[0, 0, 0], [1, 0, np.nan], [1, 1, 1]], dtype=float)
    X = np.ones((3, 1))
    lik = _Likelihood(y, X, X)
    expected = (
        np.log(0.5 + 0.5 * 0.5 ** 3)
        + np.log(0.5 * 0.5 ** 2)
        + np.log(0.5 * 0.5 ** 3)
    )
    assert lik.nll(np.zeros(2)) == pytest.approx(-expected)


def test_gradient_matches_finite_differences(history_frame):
    data = make_data(history_frame)
    X = design_matrix(data.site_covs, ["Depth"])
    V = design_matrix(data.site_covs, [])
    lik = _Likelihood(data.y, X, V)
    for theta in ([0.0, 0.0, 0.0], [-1.2, 2.5, 0.3], [2.0, -1.0, -0.8]):
        assert check_grad(lik.nll, lik.grad, np.array(theta)) < 1e-5


def test_fit_estimates(fitted):
    assert fitted.n_sites == 24
    assert fitted.state.loc["Depth", "Estimate"] > 0
    assert fitted.aic == pytest.approx(2 * fitted.nll + 2 * 3)
    assert fitted.loglik < 0
    assert fitted.vcov.shape == (3, 3)
    assert np.allclose(fitted.vcov, fitted.vcov.T)


def test_predictions_bounded(fitted):
    newdata = pd.DataFrame({"Depth": np.concatenate([np.linspace(-5, 10, 61), [0.0, 0.25, 1.0]])})
    pred = fitted.predict(newdata)
    assert list(pred.columns[:4]) == ["Predicted", "SE", "lower", "upper"]
    assert ((pred["Predicted"] >= 0) & (pred["Predicted"] <= 1)).all()
    assert (pred["lower"] <= pred["Predicted"]).all()
    assert (pred["Predicted"] <= pred["upper"]).all()
    assert (pred["lower"] >= 0).all() and (pred["upper"] <= 1).all()
    assert (pred["Depth"] == newdata["Depth"]).all()


def test_predictions_increase_with_depth(fitted):
    pred = fitted.predict(pd.DataFrame({"Depth": [0.3, 0.6, 0.9]}))
    assert pred["Predicted"].is_monotonic_increasing


def test_wider_level_gives_wider_interval(fitted):
    nd = pd.DataFrame({"Depth": [0.5]})
    narrow = fitted.predict(nd, level=0.5).iloc[0]
    wide = fitted.predict(nd, level=0.99).iloc[0]
    assert wide["lower"] < narrow["lower"] and wide["upper"] > narrow["upper"]


def test_detection_probability(fitted):
    p = fitted.detection_probability()
    assert 0 < p["lower"] <= p["Predicted"] <= p["upper"] < 1


def test_predict_requires_covariates(fitted):
    with pytest.raises(InputDataError):
        fitted.predict(pd.DataFrame({"depth": [0.5]}))
    with pytest.raises(InputDataError):
        fitted.predict(pd.DataFrame({"Depth": [np.nan]}))
    with pytest.raises(ValueError):
        fitted.predict(pd.DataFrame({"Depth": [0.5]}), type="abundance")


def test_exclude_by_identifier(history_frame):
    data = make_data(history_frame)
    out = data.exclude(["S15"])
    assert out.n_sites == 23
    assert "S15" not in out.site_ids
    assert data.n_sites == 24
    with pytest.raises(InputDataError):
        data.exclude(["S99"])


def test_exclusion_follows_key_not_position(history_frame):
    shuffled = history_frame.sample(frac=1, random_state=1)
    a = make_data(history_frame).exclude(["S15"])
    b = make_data(shuffled).exclude(["S15"])
    fa = fit_occupancy(a)
    fb = fit_occupancy(b)
    assert np.allclose(fa.coef, fb.coef, atol=5e-3)


def test_missing_visits_and_sites_dropped(history_frame):
    frame = history_frame.copy()
    frame.loc[0, VISITS] = np.nan
    frame.loc[1, "Depth"] = np.nan
    data = make_data(frame)
    assert data.n_sites == 22
    assert data.n_visits == 3


def test_zero_detections_is_degenerate(history_frame):
    frame = history_frame.copy()
    frame[VISITS] = 0
    with pytest.raises(DegenerateDataError):
        make_data(frame)


def test_all_missing_covariate_is_degenerate(history_frame):
    frame = history_frame.copy()
    frame["Depth"] = np.nan
    with pytest.raises(DegenerateDataError):
        make_data(frame)


def test_wrong_visit_count(history_frame):
    with pytest.raises(InputDataError):
        OccupancyData.from_frame(history_frame, VISITS[:2], ["Depth"], "Site", n_visits=3)


def test_invalid_detection_values(history_frame):
    frame = history_frame.copy()
    frame.loc[2, "Haul.2"] = 2
    with pytest.raises(InputDataError):
        make_data(frame)


def test_non_convergence_is_reported(history_frame):
    with pytest.raises(ConvergenceError) as err:
        fit_occupancy(make_data(history_frame), maxiter=1)
    assert err.value.result is not None


def test_bad_start_length(history_frame):
    with pytest.raises(InputDataError):
        fit_occupancy(make_data(history_frame), start=[0.0, 0.0])


def test_start_values_reach_same_optimum(history_frame, fitted):
    refit = fit_occupancy(make_data(history_frame), start=[-0.5, 1.0, 0.2])
    assert np.allclose(refit.coef, fitted.coef, atol=5e-3)
