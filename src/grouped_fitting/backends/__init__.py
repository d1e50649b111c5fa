"""Solver implementations + registry."""

from __future__ import annotations

from typing import Dict, Tuple

from ..errors import UnknownSolverError
from .common import Solver, SolverResult
from .scipy_differential_evolution import ScipyDifferentialEvolutionSolver
from .scipy_least_squares import ScipyLeastSquaresSolver
from .scipy_minimize import ScipyMinimizeSolver

_SOLVERS: Dict[str, Solver] = {
    "nelder-mead": ScipyMinimizeSolver("Nelder-Mead"),
    "powell": ScipyMinimizeSolver("Powell"),
    "l-bfgs-b": ScipyMinimizeSolver("L-BFGS-B"),
    "bfgs": ScipyMinimizeSolver("BFGS"),
    "cg": ScipyMinimizeSolver("CG"),
    "tnc": ScipyMinimizeSolver("TNC"),
    "slsqp": ScipyMinimizeSolver("SLSQP"),
    "trust-constr": ScipyMinimizeSolver("trust-constr"),
    "least-squares": ScipyLeastSquaresSolver(),
    "differential-evolution": ScipyDifferentialEvolutionSolver(),
}


def get_solver(name: str) -> Solver:
    """Return a solver implementation by name."""
    try:
        return _SOLVERS[str(name).lower()]
    except KeyError as e:
        raise UnknownSolverError(
            f"Unknown solver {name!r}. Available: {tuple(_SOLVERS.keys())}"
        ) from e


def list_solvers(bounds: bool = False) -> Tuple[str, ...]:
    """Registered solver names; ``bounds=True`` keeps only bound-aware ones."""
    if bounds:
        return tuple(k for k, s in _SOLVERS.items() if s.supports_bounds)
    return tuple(_SOLVERS.keys())


AVAILABLE_SOLVERS = tuple(_SOLVERS.keys())

__all__ = [
    "AVAILABLE_SOLVERS",
    "Solver",
    "SolverResult",
    "get_solver",
    "list_solvers",
]
