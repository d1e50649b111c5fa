"""Fit every group independently, sequentially or on a worker pool."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from tqdm.auto import tqdm

from .backends import get_solver
from .config import FitOptions, GroupProgress
from .data import GroupsLike, as_groups
from .errors import ConfigurationError
from .fitting import GroupOutcome, fit_group
from .inputs import ParameterSpec, bounds_for_free, initial_vector, parameter_spec
from .objective import partition_parameters
from .registry import Curve, CurveLike, get_curve
from .run import GroupFailure, Run

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupTask:
    """Everything one worker needs to fit one group."""

    uid: Any
    curve: Curve
    x: np.ndarray
    y: np.ndarray
    p0: np.ndarray
    fixed: Mapping[str, float]
    bounds: Tuple[np.ndarray, np.ndarray]
    solvers: Tuple[str, ...]
    control: Mapping[str, Any]
    solver_control: Mapping[str, Mapping[str, Any]]
    hessian: bool
    metadata: Mapping[str, Any]


def run_task(task: GroupTask) -> GroupOutcome:
    """Module-level so process pools can pickle it."""
    return fit_group(
        task.uid,
        task.curve,
        task.x,
        task.y,
        task.p0,
        task.fixed,
        task.bounds,
        task.solvers,
        dict(task.control),
        {k: dict(v) for k, v in task.solver_control.items()},
        hessian=task.hessian,
        metadata=task.metadata,
    )


def _bounds_pair(bounds: Any) -> Tuple[Any, Any]:
    if bounds is None:
        return None, None
    if isinstance(bounds, Mapping):
        return bounds.get("lower"), bounds.get("upper")
    try:
        lower, upper = bounds
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            "bounds must be a (lower, upper) pair or a mapping with 'lower'/'upper'."
        ) from exc
    return lower, upper


def prepare_tasks(
    groups: GroupsLike,
    curve: CurveLike,
    initial_values: Any = None,
    fixed_params: Any = None,
    bounds: Any = None,
    options: Optional[FitOptions] = None,
) -> List[GroupTask]:
    """Validate the whole configuration and build one task per group.

    Raises ConfigurationError (or a subclass) before anything is fitted.
    """
    options = options or FitOptions()
    curve = get_curve(curve)
    for name in options.solvers:
        get_solver(name)

    group_list = as_groups(groups)
    if not group_list:
        raise ConfigurationError("No groups to fit.")
    uids = [g.uid for g in group_list]

    init_spec: ParameterSpec = parameter_spec(
        initial_values, label="initial values", allow_sequence=True
    )
    fixed_spec: ParameterSpec = parameter_spec(fixed_params, label="fixed parameters")
    fixed_spec.check_coverage(uids)
    init_spec.check_coverage(uids)

    lower, upper = _bounds_pair(bounds)
    solver_control = {k: dict(v) for k, v in options.solver_control.items()}

    tasks: List[GroupTask] = []
    for g in group_list:
        partition = partition_parameters(curve, fixed_spec.for_group(g.uid))
        p0 = initial_vector(curve, partition.free, init_spec.for_group(g.uid), uid=g.uid)
        lo, hi = bounds_for_free(curve, partition.free, lower, upper)
        tasks.append(
            GroupTask(
                uid=g.uid,
                curve=curve,
                x=g.x,
                y=g.y,
                p0=p0,
                fixed=partition.fixed,
                bounds=(lo, hi),
                solvers=tuple(options.solvers),
                control=dict(options.control),
                solver_control=solver_control,
                hessian=options.hessian,
                metadata=dict(g.metadata),
            )
        )
    return tasks


def _is_pickle_error(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return "pickl" in msg or "can't get attribute" in msg


class _Progress:
    """tqdm bar plus user callback, both driven from the scheduling thread."""

    def __init__(self, total: int, options: FitOptions, desc: str) -> None:
        self.total = total
        self.done = 0
        self.callback: Optional[Callable[[GroupProgress], None]] = options.progress_callback
        self.bar = tqdm(total=total, desc=desc, disable=not options.progress, leave=False)

    def update(self, outcome: GroupOutcome) -> None:
        self.done += 1
        self.bar.update(1)
        if self.callback is not None:
            self.callback(
                GroupProgress(uid=outcome.uid, ok=outcome.ok, done=self.done, total=self.total)
            )

    def close(self) -> None:
        self.bar.close()


def _failed_outcome(task: GroupTask, exc: BaseException) -> GroupOutcome:
    logger.debug("group=%r raised outside the solvers", task.uid, exc_info=exc)
    return GroupOutcome(uid=task.uid, record=None, error_type=type(exc).__name__, error=str(exc))


def _run_sequential(tasks: Sequence[GroupTask], progress: _Progress) -> Dict[Any, GroupOutcome]:
    out: Dict[Any, GroupOutcome] = {}
    for task in tasks:
        try:
            outcome = run_task(task)
        except Exception as e:
            outcome = _failed_outcome(task, e)
        out[task.uid] = outcome
        progress.update(outcome)
    return out


def _run_pool(
    tasks: Sequence[GroupTask], options: FitOptions, progress: _Progress
) -> Dict[Any, GroupOutcome]:
    n_workers = min(options.n_workers(), len(tasks))
    pool_cls = ProcessPoolExecutor if options.executor == "process" else ThreadPoolExecutor
    logger.debug("Using %d %s workers for %d groups", n_workers, options.executor, len(tasks))

    out: Dict[Any, GroupOutcome] = {}
    pickle_error = False
    try:
        with pool_cls(max_workers=n_workers) as executor:
            futures = {executor.submit(run_task, task): task for task in tasks}
            for future in as_completed(futures):
                task = futures[future]
                try:
                    outcome = future.result()
                except Exception as e:
                    if _is_pickle_error(e):
                        pickle_error = True
                        logger.warning(
                            "Pickle error on group %r, falling back to sequential: %s",
                            task.uid,
                            e,
                        )
                        for f in futures:
                            f.cancel()
                        break
                    outcome = _failed_outcome(task, e)
                out[task.uid] = outcome
                progress.update(outcome)
    except Exception as e:
        if not _is_pickle_error(e):
            raise
        pickle_error = True
        logger.warning("Worker pool pickle error, falling back to sequential: %s", e)

    if pickle_error:
        remaining = [t for t in tasks if t.uid not in out]
        out.update(_run_sequential(remaining, progress))
    return out


def fit_all(
    groups: GroupsLike,
    curve: CurveLike,
    initial_values: Any = None,
    fixed_params: Any = None,
    solvers: Optional[Sequence[str]] = None,
    bounds: Any = None,
    options: Optional[FitOptions] = None,
    **option_overrides: Any,
) -> Run:
    """Fit every group and return the batch result.

    Parameters
    ----------
    groups:
        ObservationGroups (sequence or uid mapping), or a mapping uid -> (x, y).
    curve:
        Registered curve name or Curve.
    initial_values, fixed_params:
        Global mapping, per-uid mapping of mappings, or DataFrame with a
        ``uid`` column. Initial values may also be a sequence aligned to the
        free parameters.
    solvers:
        Overrides ``options.solvers``.
    bounds:
        ``(lower, upper)``; each side None, a scalar, a mapping or a sequence
        aligned to the free parameters.
    options:
        FitOptions; keyword overrides (``parallel=True``, ``workers=4``...)
        are applied on top.

    Configuration errors are raised before any group is fitted. Groups that
    fail are listed in ``Run.failures`` and omitted from ``Run.records``.
    """
    options = options or FitOptions()
    if solvers is not None:
        option_overrides["solvers"] = tuple(solvers)
    if option_overrides:
        try:
            options = options.replace(**option_overrides)
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc

    curve = get_curve(curve)
    tasks = prepare_tasks(groups, curve, initial_values, fixed_params, bounds, options)
    return _execute(tasks, curve, options)


def _execute(tasks: Sequence[GroupTask], curve: Curve, options: FitOptions) -> Run:
    mode = "parallel" if options.parallel and len(tasks) > 1 else "sequential"
    logger.info(
        "Fitting %d groups with curve %s, solvers %s (%s)",
        len(tasks),
        curve.name,
        ", ".join(options.solvers),
        mode,
    )

    t0 = time.perf_counter()
    progress = _Progress(len(tasks), options, desc=f"fitting {curve.name}")
    try:
        if mode == "parallel":
            outcomes = _run_pool(tasks, options, progress)
        else:
            outcomes = _run_sequential(tasks, progress)
    finally:
        progress.close()
    elapsed = time.perf_counter() - t0

    records = {}
    failures = {}
    attempts = {}
    for task in tasks:
        outcome = outcomes[task.uid]
        attempts[task.uid] = outcome.attempts
        if outcome.ok:
            records[task.uid] = outcome.record
        else:
            logger.warning(
                "Group %r failed (%s): %s", task.uid, outcome.error_type, outcome.error
            )
            failures[task.uid] = GroupFailure(
                uid=task.uid,
                error_type=outcome.error_type or "",
                message=outcome.error or "",
                attempts=outcome.attempts,
            )

    logger.info(
        "Fitted %d/%d groups in %.2fs", len(records), len(tasks), elapsed
    )
    return Run(
        curve=curve,
        records=records,
        failures=failures,
        attempts=attempts,
        options=options,
        elapsed=elapsed,
    )


def refit(
    run: Run,
    solvers: Optional[Sequence[str]] = None,
    options: Optional[FitOptions] = None,
    **option_overrides: Any,
) -> Run:
    """Refit each fitted group of ``run`` from its current estimates.

    Data, fixed values and bounds are taken from the records. Groups that
    failed in ``run`` are carried over unchanged. Returns a new Run.
    """
    options = options or run.options
    if solvers is not None:
        option_overrides["solvers"] = tuple(solvers)
    if option_overrides:
        try:
            options = options.replace(**option_overrides)
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc
    for name in options.solvers:
        get_solver(name)

    solver_control = {k: dict(v) for k, v in options.solver_control.items()}
    tasks = [
        GroupTask(
            uid=rec.uid,
            curve=rec.curve,
            x=rec.x,
            y=rec.y,
            p0=rec.theta,
            fixed=rec.fixed,
            bounds=(rec.lower, rec.upper),
            solvers=tuple(options.solvers),
            control=dict(options.control),
            solver_control=solver_control,
            hessian=options.hessian,
            metadata=dict(rec.metadata),
        )
        for rec in (run.records[u] for u in run.uids)
    ]
    new = _execute(tasks, run.curve, options)

    improved = sum(
        1
        for uid, rec in new.records.items()
        if uid in run.records and rec.sse < run.records[uid].sse
    )
    logger.info("Update improved fit in %d/%d groups", improved, len(tasks))

    failures = dict(run.failures)
    failures.update(new.failures)
    attempts = dict(run.attempts)
    attempts.update(new.attempts)
    return Run(
        curve=new.curve,
        records=new.records,
        failures=failures,
        attempts=attempts,
        options=options,
        elapsed=new.elapsed,
    )
