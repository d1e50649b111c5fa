import numpy as np
import pytest

from grouped_fitting import UnknownSolverError, get_curve, get_solver, list_solvers
from grouped_fitting.objective import Objective


def _line_objective(seed: int = 0) -> Objective:
    rng = np.random.default_rng(seed)
    x = np.linspace(0.0, 5.0, 40)
    y = 2.0 * x - 1.0 + rng.normal(0.0, 0.1, size=x.size)
    return Objective.build(get_curve("linear"), x, y)


def _unbounded(p: int):
    return np.full(p, -np.inf), np.full(p, np.inf)


@pytest.mark.parametrize("name", ["nelder-mead", "powell", "l-bfgs-b", "bfgs", "least-squares"])
def test_solvers_recover_a_line(name):
    obj = _line_objective()
    solver = get_solver(name)
    res = solver.solve(objective=obj, p0=np.array([0.0, 0.0]), bounds=_unbounded(2), control={})

    assert res.theta.shape == (2,)
    assert res.theta[0] == pytest.approx(2.0, abs=0.05)
    assert res.theta[1] == pytest.approx(-1.0, abs=0.15)
    assert res.objective_value == pytest.approx(obj.value(res.theta))

    hess = solver.hessian(objective=obj, result=res, bounds=_unbounded(2), control={})
    assert hess.shape == (2, 2)
    # SSE of a line is quadratic: H = 2 XᵀX exactly.
    X = np.column_stack([obj.x, np.ones_like(obj.x)])
    np.testing.assert_allclose(hess, 2.0 * X.T @ X, rtol=1e-3)


def test_bounded_solver_respects_box():
    obj = _line_objective()
    lo = np.array([-10.0, 0.0])
    hi = np.array([10.0, 10.0])
    res = get_solver("l-bfgs-b").solve(
        objective=obj, p0=np.array([1.0, 1.0]), bounds=(lo, hi), control={}
    )
    assert res.theta[1] == pytest.approx(0.0, abs=1e-6)
    assert np.all(res.theta >= lo) and np.all(res.theta <= hi)


def test_differential_evolution_needs_finite_bounds():
    obj = _line_objective()
    solver = get_solver("differential-evolution")
    with pytest.raises(ValueError, match="finite bounds"):
        solver.solve(objective=obj, p0=np.array([0.0, 0.0]), bounds=_unbounded(2), control={})

    res = solver.solve(
        objective=obj,
        p0=np.array([0.0, 0.0]),
        bounds=(np.array([-5.0, -5.0]), np.array([5.0, 5.0])),
        control={"maxiter": 30, "popsize": 8, "seed": 0},
    )
    assert res.theta[0] == pytest.approx(2.0, abs=0.05)


def test_maxiter_control_is_forwarded():
    obj = _line_objective()
    res = get_solver("nelder-mead").solve(
        objective=obj, p0=np.array([0.0, 0.0]), bounds=_unbounded(2), control={"maxiter": 2}
    )
    assert res.iterations <= 2
    assert not res.converged


def test_solver_registry():
    assert "least-squares" in list_solvers()
    assert "bfgs" not in list_solvers(bounds=True)
    assert get_solver("Nelder-Mead") is get_solver("nelder-mead")
    with pytest.raises(UnknownSolverError, match="Available"):
        get_solver("simplex-magic")
