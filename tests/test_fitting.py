import numpy as np
import pytest

from grouped_fitting import (
    AllSolversFailedError,
    Curve,
    FitAttempt,
    InsufficientDataError,
    fit,
    get_curve,
    select_best,
)
from grouped_fitting.fitting import fit_group

T = np.array([0, 29, 36, 42, 56, 76, 92, 100, 108], dtype=float)
Y = np.array([0, 0, 0.67, 15.11, 77.38, 99.81, 99.81, 99.81, 99.81])


def _attempt(solver, value, error=None):
    return FitAttempt(solver=solver, estimates={"a": 1.0}, objective_value=value, error=error)


def test_select_best_prefers_lowest_and_first_on_ties():
    attempts = [_attempt("a", 2.0), _attempt("b", 1.0), _attempt("c", 1.0)]
    assert select_best(attempts) == 1


def test_select_best_skips_failed_and_non_finite():
    attempts = [
        _attempt("a", float("nan")),
        _attempt("b", float("inf")),
        FitAttempt.failure("c", "boom"),
        _attempt("d", 0.5, error="non-finite parameter estimates"),
        _attempt("e", 3.0),
    ]
    assert select_best(attempts) == 4
    assert select_best(attempts[:4]) is None
    assert select_best([]) is None


def test_fit_runs_every_solver_and_selection_holds():
    attempts = fit(
        "linear_plateau",
        T,
        Y,
        {"t1": 40.0, "t2": 70.0, "k": 100.0},
        solvers=("nelder-mead", "powell", "l-bfgs-b"),
    )
    assert [a.solver for a in attempts] == ["nelder-mead", "powell", "l-bfgs-b"]
    best = attempts[select_best(attempts)]
    for a in attempts:
        if a.ok:
            assert best.objective_value <= a.objective_value


def test_fit_group_builds_record_with_fixed_parameters_excluded():
    curve = get_curve("linear_plateau")
    outcome = fit_group(
        uid=1,
        curve=curve,
        x=T,
        y=Y,
        p0=np.array([40.0, 70.0]),
        fixed_params={"k": 99.81},
        bounds=(np.full(2, -np.inf), np.full(2, np.inf)),
        solvers=("nelder-mead", "powell"),
    )
    assert outcome.ok
    rec = outcome.unwrap()
    assert rec.free_names == ("t1", "t2")
    assert rec.fixed == {"k": 99.81}
    assert rec.p == 2
    assert len(outcome.attempts) == 2

    # Re-evaluating at estimates + fixed values reproduces the reported SSE.
    yhat = curve(T, **rec.estimates, **rec.fixed)
    assert float(np.sum((Y - yhat) ** 2)) == pytest.approx(rec.sse, rel=1e-9, abs=1e-12)


def test_fit_group_reports_insufficient_data():
    outcome = fit_group(
        uid="tiny",
        curve=get_curve("linear_plateau"),
        x=np.array([1.0, 2.0]),
        y=np.array([1.0, 2.0]),
        p0=np.array([0.0, 5.0, 2.0]),
        fixed_params={},
        bounds=(np.full(3, -np.inf), np.full(3, np.inf)),
        solvers=("nelder-mead",),
    )
    assert not outcome.ok
    assert outcome.error_type == "InsufficientDataError"
    assert outcome.attempts == ()
    with pytest.raises(InsufficientDataError):
        outcome.unwrap()


def test_fit_group_reports_all_solvers_failed():
    def broken(x, a):
        return np.full_like(x, np.nan) * a

    outcome = fit_group(
        uid=7,
        curve=Curve.from_function(broken),
        x=np.linspace(0.0, 1.0, 5),
        y=np.linspace(0.0, 1.0, 5),
        p0=np.array([1.0]),
        fixed_params={},
        bounds=(np.array([-np.inf]), np.array([np.inf])),
        solvers=("nelder-mead", "powell"),
    )
    assert not outcome.ok
    assert outcome.error_type == "AllSolversFailedError"
    assert len(outcome.attempts) == 2
    assert all(not a.ok for a in outcome.attempts)
    with pytest.raises(AllSolversFailedError) as info:
        outcome.unwrap()
    assert len(info.value.attempts) == 2


def test_failing_solver_does_not_stop_siblings():
    # Unbounded differential evolution raises; Nelder-Mead still runs.
    attempts = fit(
        "linear",
        np.array([0.0, 1.0, 2.0, 3.0]),
        np.array([1.0, 3.0, 5.0, 7.0]),
        {"m": 0.0, "b": 0.0},
        solvers=("differential-evolution", "nelder-mead"),
    )
    assert attempts[0].error is not None and "finite bounds" in attempts[0].error
    assert attempts[1].ok
    assert select_best(attempts) == 1
