"""Multi-solver fitting of one group.

Each configured solver is tried independently from the same start point.
Every try yields a FitAttempt (success or failure); ``select_best`` picks
the lowest finite objective, ties going to the earliest listed solver.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .backends import get_solver
from .backends.common import SolverResult
from .config import DEFAULT_SOLVERS
from .errors import AllSolversFailedError, GroupFitError, InsufficientDataError
from .inputs import bounds_for_free, initial_vector
from .objective import Objective
from .record import FitRecord
from .registry import Curve, CurveLike, get_curve
from .util import FrozenMap

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FitAttempt:
    """Outcome of one solver on one group: success-with-value or failure-with-reason."""

    solver: str
    estimates: Mapping[str, float] = field(default_factory=dict)
    objective_value: float = float("nan")
    converged: bool = False
    iterations: int = 0
    n_evals: int = 0
    elapsed: float = 0.0
    message: str = ""
    error: Optional[str] = None

    @classmethod
    def success(
        cls,
        solver: str,
        free_names: Sequence[str],
        result: SolverResult,
        elapsed: float = 0.0,
    ) -> "FitAttempt":
        error = None
        if not np.isfinite(result.objective_value):
            error = f"non-finite objective value {result.objective_value!r}"
        elif not np.all(np.isfinite(result.theta)):
            error = "non-finite parameter estimates"
        return cls(
            solver=solver,
            estimates=FrozenMap(zip(free_names, (float(v) for v in result.theta))),
            objective_value=float(result.objective_value),
            converged=bool(result.converged),
            iterations=int(result.iterations),
            n_evals=int(result.n_evals),
            elapsed=float(elapsed),
            message=result.message,
            error=error,
        )

    @classmethod
    def failure(cls, solver: str, reason: str, elapsed: float = 0.0) -> "FitAttempt":
        return cls(solver=solver, error=str(reason), elapsed=float(elapsed))

    @property
    def ok(self) -> bool:
        return self.error is None and bool(np.isfinite(self.objective_value))

    def theta(self) -> np.ndarray:
        return np.array(list(self.estimates.values()), dtype=float)


def select_best(attempts: Sequence[FitAttempt]) -> Optional[int]:
    """Index of the winning attempt, or None when no attempt is usable.

    Lowest objective wins; ties keep the earliest attempt.
    """
    best: Optional[int] = None
    for i, attempt in enumerate(attempts):
        if not attempt.ok:
            continue
        if best is None or attempt.objective_value < attempts[best].objective_value:
            best = i
    return best


def _control_for(
    solver: str,
    control: Optional[Mapping[str, Any]],
    solver_control: Optional[Mapping[str, Mapping[str, Any]]],
) -> dict:
    out = dict(control or {})
    if solver_control:
        out.update(solver_control.get(solver, {}))
    return out


def _run_attempts(
    objective: Objective,
    p0: np.ndarray,
    bounds: Tuple[np.ndarray, np.ndarray],
    solvers: Sequence[str],
    control: Optional[Mapping[str, Any]],
    solver_control: Optional[Mapping[str, Mapping[str, Any]]],
    uid: Any = None,
) -> List[Tuple[FitAttempt, Optional[SolverResult]]]:
    out: List[Tuple[FitAttempt, Optional[SolverResult]]] = []
    for name in solvers:
        solver = get_solver(name)
        ctl = _control_for(name, control, solver_control)
        t0 = time.perf_counter()
        try:
            result = solver.solve(
                objective=objective, p0=np.array(p0, dtype=float), bounds=bounds, control=ctl
            )
        except Exception as exc:  # a failing solver must not stop its siblings
            attempt = FitAttempt.failure(
                name, f"{type(exc).__name__}: {exc}", time.perf_counter() - t0
            )
            out.append((attempt, None))
        else:
            attempt = FitAttempt.success(
                name, objective.free_names, result, time.perf_counter() - t0
            )
            out.append((attempt, result))
        logger.debug(
            "group=%r solver=%s objective=%s converged=%s iterations=%d error=%s",
            uid,
            name,
            attempt.objective_value,
            attempt.converged,
            attempt.iterations,
            attempt.error,
        )
    return out


def fit(
    curve: CurveLike,
    x: Any,
    y: Any,
    initial_free: Any,
    fixed_params: Optional[Mapping[str, float]] = None,
    solvers: Sequence[str] = DEFAULT_SOLVERS,
    lower: Any = None,
    upper: Any = None,
    control: Optional[Mapping[str, Any]] = None,
    *,
    solver_control: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> List[FitAttempt]:
    """Run every solver on one group's data and return the attempt log."""
    curve = get_curve(curve)
    objective = Objective.build(curve, x, y, fixed_params)
    p0 = initial_vector(curve, objective.free_names, initial_free)
    bounds = bounds_for_free(curve, objective.free_names, lower, upper)
    pairs = _run_attempts(objective, p0, bounds, solvers, control, solver_control)
    return [a for a, _ in pairs]


@dataclass(frozen=True)
class GroupOutcome:
    """Record on success, or the per-group error on failure, plus the attempt log."""

    uid: Any
    record: Optional[FitRecord]
    attempts: Tuple[FitAttempt, ...] = ()
    error_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.record is not None

    def unwrap(self) -> FitRecord:
        """Return the record or raise the group's error."""
        if self.record is not None:
            return self.record
        if self.error_type == InsufficientDataError.__name__:
            raise InsufficientDataError(self.error or "")
        raise AllSolversFailedError(self.error or "", attempts=self.attempts)


def fit_group(
    uid: Any,
    curve: Curve,
    x: np.ndarray,
    y: np.ndarray,
    p0: np.ndarray,
    fixed_params: Mapping[str, float],
    bounds: Tuple[np.ndarray, np.ndarray],
    solvers: Sequence[str],
    control: Optional[Mapping[str, Any]] = None,
    solver_control: Optional[Mapping[str, Mapping[str, Any]]] = None,
    *,
    hessian: bool = True,
    metadata: Optional[Mapping[str, Any]] = None,
) -> GroupOutcome:
    """Fit one group.

    Per-group errors (InsufficientDataError, AllSolversFailedError) are
    returned inside the outcome instead of raised, so a batch keeps going.
    """
    attempts: List[FitAttempt] = []
    try:
        record = _fit_group_record(
            uid,
            curve,
            x,
            y,
            p0,
            fixed_params,
            bounds,
            solvers,
            control,
            solver_control,
            hessian=hessian,
            metadata=metadata,
            attempts_out=attempts,
        )
    except GroupFitError as exc:
        return GroupOutcome(
            uid=uid,
            record=None,
            attempts=tuple(attempts),
            error_type=type(exc).__name__,
            error=str(exc),
        )
    return GroupOutcome(uid=uid, record=record, attempts=tuple(attempts))


def _fit_group_record(
    uid: Any,
    curve: Curve,
    x: np.ndarray,
    y: np.ndarray,
    p0: np.ndarray,
    fixed_params: Mapping[str, float],
    bounds: Tuple[np.ndarray, np.ndarray],
    solvers: Sequence[str],
    control: Optional[Mapping[str, Any]],
    solver_control: Optional[Mapping[str, Mapping[str, Any]]],
    *,
    hessian: bool,
    metadata: Optional[Mapping[str, Any]],
    attempts_out: List[FitAttempt],
) -> FitRecord:
    t0 = time.perf_counter()
    objective = Objective.build(curve, x, y, fixed_params)
    n = int(objective.y.size)
    p = len(objective.free_names)
    if n < p:
        raise InsufficientDataError(
            f"Group {uid!r} has {n} observations but {p} free parameters."
        )

    pairs = _run_attempts(objective, p0, bounds, solvers, control, solver_control, uid)
    attempts_out.extend(a for a, _ in pairs)
    best = select_best(attempts_out)
    if best is None:
        reasons = "; ".join(f"{a.solver}: {a.error}" for a in attempts_out)
        raise AllSolversFailedError(
            f"All solvers failed for group {uid!r} ({reasons}).", attempts=attempts_out
        )

    # Only the winning solver is asked for a Hessian.
    winner, result = pairs[best]
    hess = None
    if hessian and result is not None:
        solver = get_solver(winner.solver)
        try:
            hess = solver.hessian(
                objective=objective,
                result=result,
                bounds=bounds,
                control=_control_for(winner.solver, control, solver_control),
            )
        except Exception as exc:  # standard errors stay missing
            logger.debug("group=%r Hessian estimation failed: %s", uid, exc)
            hess = None

    return FitRecord(
        uid=uid,
        curve=curve,
        estimates=winner.estimates,
        fixed=objective.partition.fixed,
        n=n,
        sse=winner.objective_value,
        hessian=hess,
        solver_used=winner.solver,
        converged=winner.converged,
        iterations=winner.iterations,
        x=objective.x,
        y=objective.y,
        lower=bounds[0],
        upper=bounds[1],
        metadata=metadata or {},
        elapsed=time.perf_counter() - t0,
    )
