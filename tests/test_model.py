import numpy as np
import pandas as pd
import pytest

from grouped_fitting import ConfigurationError, IncompleteParameterCoverageError, modeler

T = [0, 29, 36, 42, 56, 76, 92, 100, 108]
Y = [0, 0, 0.67, 15.11, 77.38, 99.81, 99.81, 99.81, 99.81]


def _frame() -> pd.DataFrame:
    rng = np.random.default_rng(11)
    rows = []
    for plot, trt in ((1, "a"), (2, "b"), (3, "a")):
        for t, y in zip(T, Y):
            noisy = max(0.0, y + rng.normal(0.0, 0.5)) if y > 0 else 0.0
            rows.append({"plot": plot, "trt": trt, "time": t, "canopy": noisy})
    rows.append({"plot": 3, "trt": "a", "time": 120, "canopy": np.nan})
    return pd.DataFrame(rows)


def test_modeler_fits_every_plot():
    run = modeler(
        _frame(),
        x="time",
        y="canopy",
        grp="plot",
        keep="trt",
        fn="linear_plateau",
        parameters={"t1": 40, "t2": 70, "k": 100},
    )
    assert run.fn_name == "linear_plateau"
    assert run.uids == [1, 2, 3]
    assert run[3].n == 9
    params = run.params()
    assert params["trt"].tolist() == ["a", "b", "a"]
    assert params["t1"].to_numpy() == pytest.approx(38.6, rel=0.05)

    coef = run.coef()
    assert set(coef["parameter"]) == {"t1", "t2", "k"}


def test_modeler_group_overrides_fixed_and_subset():
    init = pd.DataFrame({"uid": [2], "t1": [35.0]})
    run = modeler(
        _frame(),
        x="time",
        y="canopy",
        grp="plot",
        parameters={"t1": 40, "t2": 70},
        initial_vals=init,
        fixed_params={"k": 99.81},
        lower={"t1": 0.0},
        upper={"t2": 108.0},
        subset=[1, 2],
        solvers=["nelder-mead", "l-bfgs-b"],
    )
    assert run.uids == [1, 2]
    for rec in run.records.values():
        assert rec.fixed == {"k": 99.81}
        assert rec.free_names == ("t1", "t2")
        assert rec.upper[1] == 108.0


def test_modeler_errors():
    with pytest.raises(ConfigurationError, match="ids not found"):
        modeler(_frame(), x="time", y="canopy", grp="plot", subset=[9])
    fixed = pd.DataFrame({"uid": [1, 2], "k": [99.81, 99.81]})
    with pytest.raises(IncompleteParameterCoverageError):
        modeler(_frame(), x="time", y="canopy", grp="plot", fixed_params=fixed)
