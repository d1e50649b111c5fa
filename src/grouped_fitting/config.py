"""Explicit option structs threaded through fitting and inference calls."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Optional, Tuple

import numpy as np

from .errors import ConfigurationError
from .util import FrozenMap

DEFAULT_SOLVERS: Tuple[str, ...] = ("nelder-mead", "powell", "l-bfgs-b")

EXECUTORS = ("process", "thread")


def default_workers() -> int:
    """Half the available CPUs, at least one."""
    return max(1, (os.cpu_count() or 2) // 2)


@dataclass(frozen=True)
class GroupProgress:
    """Payload handed to a progress callback once per finished group."""

    uid: Any
    ok: bool
    done: int
    total: int


@dataclass(frozen=True)
class FitOptions:
    """Options for one batch fit.

    solvers:
        Solver ids tried independently per group, in order. Ties in the
        objective go to the earliest listed solver.
    control:
        Mapping forwarded to every solver (e.g. ``{"maxiter": 500}``).
    solver_control:
        Per-solver overrides, merged over ``control``.
    hessian:
        Estimate a Hessian for the winning attempt (needed for standard errors).
    parallel / workers / executor:
        Worker-pool mode. ``executor`` is ``"process"`` or ``"thread"``.
    progress:
        Show a tqdm progress bar over groups.
    progress_callback:
        Called in the scheduling thread with a GroupProgress after each group.
    """

    solvers: Tuple[str, ...] = DEFAULT_SOLVERS
    control: Mapping[str, Any] = field(default_factory=dict)
    solver_control: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    hessian: bool = True
    parallel: bool = False
    workers: Optional[int] = None
    executor: str = "process"
    progress: bool = False
    progress_callback: Optional[Callable[[GroupProgress], None]] = None

    def __post_init__(self) -> None:
        solvers = self.solvers
        if isinstance(solvers, str):
            solvers = (solvers,)
        solvers = tuple(str(s).lower() for s in solvers)
        if not solvers:
            raise ConfigurationError("At least one solver must be configured.")
        if len(set(solvers)) != len(solvers):
            raise ConfigurationError(f"Duplicate solvers in {solvers!r}.")
        object.__setattr__(self, "solvers", solvers)

        if not isinstance(self.control, Mapping):
            raise ConfigurationError("control must be a mapping.")
        object.__setattr__(self, "control", FrozenMap(dict(self.control)))

        if not isinstance(self.solver_control, Mapping):
            raise ConfigurationError("solver_control must be a mapping of mappings.")
        per_solver = {}
        for name, ctl in self.solver_control.items():
            if not isinstance(ctl, Mapping):
                raise ConfigurationError(
                    f"solver_control[{name!r}] must be a mapping, got {type(ctl).__name__}."
                )
            per_solver[str(name).lower()] = FrozenMap(dict(ctl))
        object.__setattr__(self, "solver_control", FrozenMap(per_solver))

        if self.workers is not None:
            if isinstance(self.workers, bool) or int(self.workers) != self.workers:
                raise ConfigurationError("workers must be an integer.")
            if int(self.workers) < 1:
                raise ConfigurationError("workers must be >= 1.")
            object.__setattr__(self, "workers", int(self.workers))

        if self.executor not in EXECUTORS:
            raise ConfigurationError(
                f"Unknown executor {self.executor!r}. Available: {EXECUTORS}"
            )
        if self.progress_callback is not None and not callable(self.progress_callback):
            raise ConfigurationError("progress_callback must be callable.")

    def control_for(self, solver: str) -> dict:
        """Merged control mapping for one solver."""
        out = dict(self.control)
        out.update(self.solver_control.get(solver, {}))
        return out

    def n_workers(self) -> int:
        return self.workers if self.workers is not None else default_workers()

    def replace(self, **changes: Any) -> "FitOptions":
        return replace(self, **changes)


@dataclass(frozen=True)
class NumericPolicy:
    """Step-size and node policy for numerical differentiation and integration.

    One policy is used for a whole call so repeated calls are reproducible.

    Richardson extrapolation starts from ``h = d*|x| + eps`` (the ``eps`` term
    only when ``|x| < zero_tol``), evaluates ``r`` central differences with the
    step shrunk by ``v`` each time, and extrapolates.
    """

    eps: float = 1e-4
    d: float = 1e-4
    zero_tol: float = float(np.sqrt(np.finfo(float).eps / 7e-7))
    r: int = 4
    v: float = 2.0
    n_points: int = 1000
    hessian_step: float = 1e-4

    def __post_init__(self) -> None:
        if self.r < 1:
            raise ConfigurationError("Richardson order r must be >= 1.")
        if self.v <= 1.0:
            raise ConfigurationError("Richardson reduction factor v must be > 1.")
        if self.eps <= 0.0 or self.d < 0.0:
            raise ConfigurationError("eps must be > 0 and d must be >= 0.")
        if int(self.n_points) < 2:
            raise ConfigurationError("n_points must be >= 2.")

    def initial_step(self, x: Any) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        ax = np.abs(x)
        return self.d * ax + self.eps * (ax < self.zero_tol)


DEFAULT_NUMERIC_POLICY = NumericPolicy()
