import logging

import numpy as np
import pandas as pd
import pytest

from grouped_fitting import (
    ConfigurationError,
    Curve,
    FitOptions,
    IncompleteParameterCoverageError,
    ObservationGroup,
    UnknownSolverError,
    fit_all,
)
from grouped_fitting.backends.scipy_minimize import ScipyMinimizeSolver

T = np.array([0, 29, 36, 42, 56, 76, 92, 100, 108], dtype=float)
Y = np.array([0, 0, 0.67, 15.11, 77.38, 99.81, 99.81, 99.81, 99.81])
INIT = {"t1": 40.0, "t2": 70.0, "k": 100.0}


def _groups(n: int = 3):
    rng = np.random.default_rng(1)
    out = []
    for uid in range(1, n + 1):
        y = np.clip(Y + rng.normal(0.0, 0.5, size=Y.size), 0.0, None)
        out.append(ObservationGroup(uid=uid, x=T, y=y, metadata={"plot": f"p{uid}"}))
    return out


def test_fit_all_fits_every_group():
    run = fit_all(_groups(), "linear_plateau", initial_values=INIT)
    assert run.success
    assert run.uids == [1, 2, 3]
    for rec in run.records.values():
        assert rec.params["t1"] == pytest.approx(38.6, rel=0.05)
        assert rec.solver_used in ("nelder-mead", "powell", "l-bfgs-b")
    assert run[2].metadata["plot"] == "p2"


def test_missing_fixed_row_raises_before_any_solver(monkeypatch):
    calls = []
    original = ScipyMinimizeSolver.solve

    def spy(self, **kwargs):
        calls.append(self.name)
        return original(self, **kwargs)

    monkeypatch.setattr(ScipyMinimizeSolver, "solve", spy)
    fixed = pd.DataFrame({"uid": [1, 2], "k": [99.81, 99.81]})
    with pytest.raises(IncompleteParameterCoverageError) as info:
        fit_all(_groups(3), "linear_plateau", initial_values=INIT, fixed_params=fixed)
    assert info.value.missing == (3,)
    assert calls == []


def test_unknown_solver_raises_before_fitting():
    with pytest.raises(UnknownSolverError):
        fit_all(_groups(1), "linear_plateau", initial_values=INIT, solvers=["quantum"])
    with pytest.raises(ConfigurationError, match="Duplicate solvers"):
        fit_all(_groups(1), "linear_plateau", solvers=["powell", "Powell"])


def test_failing_group_does_not_abort_siblings(caplog):
    groups = _groups(2) + [ObservationGroup(uid=3, x=[1.0, 2.0], y=[1.0, 2.0])]
    with caplog.at_level(logging.WARNING, logger="grouped_fitting"):
        run = fit_all(groups, "linear_plateau", initial_values=INIT)
    assert not run.success
    assert sorted(run.records) == [1, 2]
    assert run.failures[3].error_type == "InsufficientDataError"
    assert 3 not in run
    assert "Group 3 failed" in caplog.text


@pytest.mark.parametrize("executor", ["thread", "process"])
def test_parallel_matches_sequential(executor):
    groups = _groups(4)
    seq = fit_all(groups, "linear_plateau", initial_values=INIT)
    par = fit_all(
        groups, "linear_plateau", initial_values=INIT, parallel=True, workers=2, executor=executor
    )
    assert par.uids == seq.uids
    for uid in seq.uids:
        np.testing.assert_allclose(par[uid].theta, seq[uid].theta, rtol=1e-8)
        assert par[uid].solver_used == seq[uid].solver_used


def test_process_pool_falls_back_for_unpicklable_curves():
    def local_line(x, m, b):
        return m * x + b

    groups = [
        ObservationGroup(uid=u, x=[0.0, 1.0, 2.0, 3.0], y=[u, u + 2, u + 4, u + 6])
        for u in (1, 2)
    ]
    run = fit_all(
        groups,
        Curve.from_function(local_line),
        initial_values={"m": 1.0, "b": 0.0},
        parallel=True,
        workers=2,
        executor="process",
    )
    assert run.success
    assert run[2].params["m"] == pytest.approx(2.0, abs=1e-3)


def test_progress_callback_sees_every_group():
    seen = []
    opts = FitOptions(solvers=("nelder-mead",), progress_callback=seen.append)
    groups = _groups(2) + [ObservationGroup(uid=3, x=[1.0, 2.0], y=[1.0, 2.0])]
    fit_all(groups, "linear_plateau", initial_values=INIT, options=opts)
    assert [p.done for p in seen] == [1, 2, 3]
    assert all(p.total == 3 for p in seen)
    assert [p.ok for p in seen] == [True, True, False]


def test_per_group_initial_values_and_sequence_start():
    groups = _groups(2)
    init = {1: {"t1": 40.0, "t2": 70.0, "k": 100.0}, 2: {"t1": 35.0, "t2": 65.0, "k": 95.0}}
    run = fit_all(groups, "linear_plateau", initial_values=init, solvers=["nelder-mead"])
    assert run.success

    run2 = fit_all(groups, "linear_plateau", initial_values=[40.0, 70.0, 100.0])
    assert run2.success


def test_options_validation():
    with pytest.raises(ConfigurationError, match="executor"):
        FitOptions(executor="gpu")
    with pytest.raises(ConfigurationError, match="workers"):
        FitOptions(workers=0)
    with pytest.raises(ConfigurationError):
        fit_all(_groups(1), "linear_plateau", not_an_option=True)
    opts = FitOptions(control={"maxiter": 100}, solver_control={"Powell": {"maxiter": 5}})
    assert opts.control_for("powell") == {"maxiter": 5}
    assert opts.control_for("nelder-mead") == {"maxiter": 100}


def test_hessian_error_leaves_standard_errors_missing(monkeypatch):
    def broken(self, **kwargs):
        raise ZeroDivisionError("float division by zero")

    monkeypatch.setattr(ScipyMinimizeSolver, "hessian", broken)
    run = fit_all(_groups(2), "linear_plateau", initial_values=INIT, solvers=["nelder-mead"])
    assert run.success
    for rec in run.records.values():
        assert rec.hessian is None
        assert rec.covariance() is None
        assert np.isfinite(rec.sse)


@pytest.mark.parametrize("parallel", [False, True])
def test_unexpected_group_error_is_isolated(monkeypatch, caplog, parallel):
    import grouped_fitting.scheduler as scheduler

    original = scheduler.fit_group

    def flaky(uid, *args, **kwargs):
        if uid == 2:
            raise OverflowError("math range error")
        return original(uid, *args, **kwargs)

    monkeypatch.setattr(scheduler, "fit_group", flaky)
    with caplog.at_level(logging.WARNING, logger="grouped_fitting"):
        run = fit_all(
            _groups(3), "linear_plateau", initial_values=INIT, parallel=parallel, executor="thread"
        )
    assert sorted(run.records) == [1, 3]
    assert run.failures[2].error_type == "OverflowError"
    assert "math range error" in run.failures[2].message
    assert "Group 2 failed" in caplog.text
