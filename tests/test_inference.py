import dataclasses

import numpy as np
import pytest

from grouped_fitting import (
    AUC,
    Derivative,
    Formula,
    InferenceRequestError,
    ObservationGroup,
    Point,
    compute_tangent,
    delta_method,
    fit_all,
    infer,
    inverse_predict,
    predict,
)

T = np.array([0, 29, 36, 42, 56, 76, 92, 100, 108], dtype=float)
Y = np.array([0, 0, 0.67, 15.11, 77.38, 99.81, 99.81, 99.81, 99.81])


@pytest.fixture(scope="module")
def plateau_run():
    return fit_all(
        [ObservationGroup(uid=1, x=T, y=Y)],
        "linear_plateau",
        initial_values={"t1": 40.0, "t2": 70.0, "k": 100.0},
    )


@pytest.fixture(scope="module")
def line_run():
    rng = np.random.default_rng(0)
    x = np.linspace(0.0, 10.0, 25)
    groups = [
        ObservationGroup(uid=u, x=x, y=m * x + 1.0 + rng.normal(0.0, 0.2, size=x.size))
        for u, m in ((1, 2.0), (2, -0.5))
    ]
    return fit_all(groups, "linear", initial_values={"m": 0.0, "b": 0.0})


def test_end_to_end_plateau_fit(plateau_run):
    rec = plateau_run[1]
    assert rec.converged
    assert rec.params["t1"] == pytest.approx(38.6, rel=0.01)
    assert rec.params["t2"] == pytest.approx(61.0, rel=0.01)
    assert rec.params["k"] == pytest.approx(99.8, rel=0.01)
    assert rec.sse < 1.0
    assert rec.covariance() is not None

    out = predict(plateau_run, x=45.0)
    assert list(out.columns) == ["uid", "fn_name", "x_new", "predicted_value", "std_error"]
    value = out["predicted_value"].iloc[0]
    assert 0.0 < value < rec.params["k"]
    assert np.isfinite(out["std_error"].iloc[0])


def test_prediction_interval_is_wider(plateau_run):
    conf = predict(plateau_run, x=[45.0, 50.0])
    pred = predict(plateau_run, x=[45.0, 50.0], se_interval="prediction")
    assert np.all(pred["std_error"].to_numpy() > conf["std_error"].to_numpy())
    np.testing.assert_allclose(pred["predicted_value"], conf["predicted_value"])


def test_formula_uses_two_by_two_sub_covariance(plateau_run):
    rec = plateau_run[1]
    out = predict(plateau_run, formula="t2 - t1")
    assert list(out.columns) == ["uid", "fn_name", "formula", "predicted_value", "std_error"]
    value = out["predicted_value"].iloc[0]
    se = out["std_error"].iloc[0]

    assert value > 0
    assert value == pytest.approx(rec.params["t2"] - rec.params["t1"], rel=1e-9)

    cov = rec.covariance()
    i, j = rec.free_names.index("t1"), rec.free_names.index("t2")
    expected = np.sqrt(cov[i, i] + cov[j, j] - 2.0 * cov[i, j])
    assert se == pytest.approx(expected, rel=1e-4)

    u = rec.uparams()
    assert se == pytest.approx((u["t2"] - u["t1"]).std_dev, rel=1e-4)


def test_formula_with_callable_and_fixed_parameter(plateau_run):
    rec = plateau_run[1]
    out = infer(plateau_run, Formula(lambda p: p["k"] / (p["t2"] - p["t1"])))
    assert out["predicted_value"].iloc[0] == pytest.approx(
        rec.params["k"] / (rec.params["t2"] - rec.params["t1"])
    )

    fixed = fit_all(
        [ObservationGroup(uid=1, x=T, y=Y)],
        "linear_plateau",
        initial_values={"t1": 40.0, "t2": 70.0},
        fixed_params={"k": 99.81},
    )
    res = predict(fixed, formula="k * 2")
    assert res["predicted_value"].iloc[0] == pytest.approx(199.62)
    # A fixed parameter carries no uncertainty.
    assert res["std_error"].iloc[0] == pytest.approx(0.0, abs=1e-12)


def test_bad_formulas_are_rejected(plateau_run):
    with pytest.raises(InferenceRequestError, match="must match"):
        predict(plateau_run, formula="t2 - slope")
    with pytest.raises(InferenceRequestError, match="parse"):
        predict(plateau_run, formula="t2 -* (")
    with pytest.raises(InferenceRequestError, match="required"):
        predict(plateau_run, type="formula")


def test_first_derivative_of_a_line_is_the_slope(line_run):
    x = [0.5, 3.0, 9.5]
    out = predict(line_run, x=x, type="fd")
    for uid, sub in out.groupby("uid"):
        rec = line_run[uid]
        np.testing.assert_allclose(sub["predicted_value"], rec.params["m"], rtol=1e-7)
        # b does not contribute: the error is exactly the slope's standard error.
        np.testing.assert_allclose(sub["std_error"], rec.std_errors()["m"], rtol=1e-5)

    sd = predict(line_run, x=x, type="sd", uids=[1])
    np.testing.assert_allclose(sd["predicted_value"], 0.0, atol=1e-3)


def test_second_derivative_of_a_quadratic_has_closed_form_error():
    rng = np.random.default_rng(3)
    x = np.linspace(0.0, 100.0, 41)
    y = 0.02 * x**2 - 1.5 * x + 4.0 + rng.normal(0.0, 2.0, size=x.size)
    run = fit_all(
        [ObservationGroup(uid=1, x=x, y=y)],
        "quadratic",
        initial_values={"a": 0.02, "b": -1.5, "c": 4.0},
    )
    rec = run[1]
    cov = rec.covariance()
    assert cov is not None

    out = predict(run, x=[0.0, 50.0, 100.0], type="sd")
    np.testing.assert_allclose(out["predicted_value"], 2.0 * rec.params["a"], rtol=1e-4)
    # d²f/dx² = 2a, so the error is twice the standard error of a at every x.
    np.testing.assert_allclose(out["std_error"], 2.0 * np.sqrt(cov[0, 0]), rtol=1e-3)


def test_point_standard_error_matches_closed_form(line_run):
    rec = line_run[1]
    out = infer(line_run, Point(x=[2.0]), uids=[1])
    cov = rec.covariance()
    g = np.array([2.0, 1.0])
    assert out["std_error"].iloc[0] == pytest.approx(np.sqrt(g @ cov @ g), rel=1e-5)


def test_auc_is_additive_over_adjacent_intervals(plateau_run):
    whole = infer(plateau_run, AUC(0.0, 108.0, n_points=2000))["predicted_value"].iloc[0]
    left = infer(plateau_run, AUC(0.0, 50.0, n_points=1000))["predicted_value"].iloc[0]
    right = infer(plateau_run, AUC(50.0, 108.0, n_points=1000))["predicted_value"].iloc[0]
    assert left + right == pytest.approx(whole, rel=1e-4)


def test_auc_defaults_to_group_range(plateau_run):
    out = predict(plateau_run, type="auc")
    assert list(out.columns) == ["uid", "fn_name", "x_min", "x_max", "predicted_value", "std_error"]
    assert out["x_min"].iloc[0] == 0.0
    assert out["x_max"].iloc[0] == 108.0
    with pytest.raises(InferenceRequestError, match="n_points"):
        infer(plateau_run, AUC(n_points=1))
    with pytest.raises(InferenceRequestError, match="x_lo, x_hi"):
        predict(plateau_run, x=[0.0, 50.0, 100.0], type="auc")


def test_singular_hessian_degrades_gracefully(line_run):
    good = line_run[1]
    broken = dataclasses.replace(line_run[2], hessian=np.zeros((2, 2)))
    assert broken.hessian is None
    assert broken.covariance() is None

    with pytest.warns(UserWarning, match="Covariance unavailable"):
        out = predict({1: good, 2: broken}, x=[1.0, 2.0])
    assert len(out) == 4
    assert np.all(np.isfinite(out["predicted_value"]))
    se = out.set_index(["uid", "x_new"])["std_error"]
    assert np.isfinite(se.loc[1]).all()
    assert se.loc[2].isna().all()

    value, err = delta_method(broken, lambda th: th[0] + th[1])
    assert np.isfinite(value[0]) and np.isnan(err[0])


def test_out_of_range_x_drops_only_that_group():
    x1 = np.linspace(0.0, 10.0, 8)
    x2 = np.linspace(0.0, 5.0, 8)
    run = fit_all(
        [ObservationGroup(uid=1, x=x1, y=2.0 * x1), ObservationGroup(uid=2, x=x2, y=x2 + 1.0)],
        "linear",
        initial_values={"m": 1.0, "b": 0.0},
    )
    with pytest.warns(UserWarning, match="Dropped 1 group"):
        out = predict(run, x=8.0)
    assert out["uid"].tolist() == [1]
    assert "interval" in out.attrs["errors"][2]


def test_request_errors(line_run):
    with pytest.raises(InferenceRequestError, match="ids not found"):
        predict(line_run, x=1.0, uids=[99])
    with pytest.raises(InferenceRequestError, match="type must be"):
        predict(line_run, x=1.0, type="integral")
    with pytest.raises(InferenceRequestError, match="x is required"):
        predict(line_run)
    with pytest.raises(InferenceRequestError, match="order"):
        infer(line_run, Derivative(x=1.0, order=3))


def test_tangent_line_of_a_line(line_run):
    out = compute_tangent(line_run, x={1: [2.0], 2: [4.0, 6.0]})
    assert list(out.columns) == ["uid", "fn_name", "x", "y", "slope", "intercept"]
    assert len(out) == 3
    for _, row in out.iterrows():
        rec = line_run[row["uid"]]
        assert row["slope"] == pytest.approx(rec.params["m"], rel=1e-7)
        assert row["intercept"] == pytest.approx(rec.params["b"], abs=1e-6)


def test_inverse_prediction(plateau_run):
    rec = plateau_run[1]
    out = inverse_predict(plateau_run, y=50.0)
    t1, t2, k = rec.params["t1"], rec.params["t2"], rec.params["k"]
    assert out["x"].iloc[0] == pytest.approx(t1 + 50.0 / k * (t2 - t1), abs=1e-4)
    assert out["y"].iloc[0] == pytest.approx(50.0, abs=1e-3)

    with pytest.warns(UserWarning, match="Root not found"):
        miss = inverse_predict(plateau_run, y=500.0)
    assert np.isnan(miss["x"].iloc[0])
