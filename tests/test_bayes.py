import numpy as np
import pandas as pd
import pytest

from site_selection.occupancy import OccupancyData

pytestmark = pytest.mark.slow


def test_posterior_summaries(history_frame):
    from site_selection.bayes import fit_occupancy_bayes

    data = OccupancyData.from_frame(history_frame, ["Haul.1", "Haul.2", "Haul.3"], ["Depth"], "Site")
    newdata = pd.DataFrame({"Depth": [0.3, 0.6, 0.9]})
    res = fit_occupancy_bayes(data, newdata=newdata, draws=200, tune=200, chains=1, cores=1, seed=1)

    params = res["params"].set_index("parameter")
    assert list(params.index) == ["beta0", "p", "beta_Depth"]
    assert (params["hdi_low"] <= params["mean"]).all()
    assert (params["mean"] <= params["hdi_high"]).all()
    assert 0 < params.loc["p", "mean"] < 1

    psi = res["psi"]
    assert len(psi) == 3
    assert psi["mean_occupancy"].between(0, 1).all()
    assert (psi["hdi_low"] <= psi["hdi_high"]).all()
    assert np.allclose(psi["Depth"], newdata["Depth"])
