from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

import numpy as np

from ..objective import Objective


@dataclass(frozen=True)
class SolverResult:
    """Normalized result returned by any solver."""

    theta: np.ndarray  # free parameters, shape (P,)
    objective_value: float
    converged: bool = True
    iterations: int = 0
    n_evals: int = 0
    message: str = ""
    stats: Dict[str, Any] = field(default_factory=dict)


class Solver(Protocol):
    """Solver protocol: minimise one group's objective from one start point."""

    name: str
    supports_bounds: bool

    def solve(
        self,
        *,
        objective: Objective,
        p0: np.ndarray,
        bounds: Tuple[np.ndarray, np.ndarray],
        control: Mapping[str, Any],
    ) -> SolverResult: ...

    def hessian(
        self,
        *,
        objective: Objective,
        result: SolverResult,
        bounds: Tuple[np.ndarray, np.ndarray],
        control: Mapping[str, Any],
    ) -> Optional[np.ndarray]: ...


def scipy_bounds(bounds: Tuple[np.ndarray, np.ndarray]) -> list:
    """(lo, hi) arrays -> list of (lo|None, hi|None) tuples."""
    lo, hi = bounds
    out = []
    for lo_i, hi_i in zip(np.asarray(lo, dtype=float), np.asarray(hi, dtype=float)):
        out.append(
            (
                None if not np.isfinite(lo_i) else float(lo_i),
                None if not np.isfinite(hi_i) else float(hi_i),
            )
        )
    return out


def has_finite_bounds(bounds: Tuple[np.ndarray, np.ndarray]) -> bool:
    lo, hi = bounds
    return bool(np.any(np.isfinite(lo)) or np.any(np.isfinite(hi)))
