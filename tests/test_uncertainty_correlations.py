import numpy as np
import uncertainties

from grouped_fitting import ObservationGroup, fit_all


def test_uparams_use_covariance():
    rng = np.random.default_rng(0)
    x = np.linspace(0.0, 5.0, 40)
    y = 2.0 * x - 1.0 + rng.normal(0, 0.3, size=x.size)

    run = fit_all(
        [ObservationGroup(uid="a", x=x, y=y)], "linear", initial_values={"m": 0.0, "b": 0.0}
    )
    rec = run["a"]
    assert rec.covariance() is not None

    u = rec.uparams()
    cov = np.array(uncertainties.covariance_matrix([u["m"], u["b"]]), dtype=float)
    np.testing.assert_allclose(cov, rec.covariance(), rtol=1e-6, atol=1e-12)
    # Correlated values: the slope and intercept are negatively correlated here.
    assert cov[0, 1] < 0


def test_uparams_without_covariance_carry_nan():
    x = np.array([0.0, 1.0])
    run = fit_all(
        [ObservationGroup(uid=1, x=x, y=2.0 * x)], "linear", initial_values={"m": 0.0, "b": 0.0}
    )
    rec = run[1]
    # n == p leaves no residual degrees of freedom.
    assert rec.df == 0
    assert rec.covariance() is None
    assert np.isnan(rec.uparams()["m"].std_dev)
    assert "(?)" in rec.summary()
