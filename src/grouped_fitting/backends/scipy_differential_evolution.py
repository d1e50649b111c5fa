from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np
from scipy.optimize import differential_evolution

from ..numdiff import numdiff_hessian
from ..objective import Objective
from .common import SolverResult


class ScipyDifferentialEvolutionSolver:
    """Global search with scipy.optimize.differential_evolution.

    Notes:
    - Requires finite bounds for *all* free parameters; without them the
      attempt fails and the remaining solvers still run.
    - The initial point seeds the population (``x0``).

    Control keys (subset of scipy.optimize.differential_evolution):
    - maxiter (int, default: 50)
    - popsize (int, default: 15)
    - tol (float, default: 0.01)
    - strategy (str, default: "best1bin")
    - mutation, recombination, seed, polish, init, atol, updating
    """

    name = "differential-evolution"
    supports_bounds = True

    def solve(
        self,
        *,
        objective: Objective,
        p0: np.ndarray,
        bounds: Tuple[np.ndarray, np.ndarray],
        control: Mapping[str, Any],
    ) -> SolverResult:
        lo, hi = bounds
        lo = np.asarray(lo, dtype=float).reshape((-1,))
        hi = np.asarray(hi, dtype=float).reshape((-1,))

        de_bounds = []
        for j in range(lo.shape[0]):
            lo_j = float(lo[j])
            hi_j = float(hi[j])
            if not (np.isfinite(lo_j) and np.isfinite(hi_j)):
                raise ValueError(
                    "differential-evolution requires finite bounds for all free parameters."
                )
            if hi_j <= lo_j:
                raise ValueError("Invalid bounds: require upper > lower for all parameters.")
            de_bounds.append((lo_j, hi_j))

        de_kwargs: Dict[str, Any] = {}
        de_kwargs["maxiter"] = int(control.get("maxiter", 50))
        de_kwargs["popsize"] = int(control.get("popsize", 15))
        de_kwargs["tol"] = float(control.get("tol", 0.01))
        de_kwargs["strategy"] = str(control.get("strategy", "best1bin"))

        for k in (
            "mutation",
            "recombination",
            "seed",
            "polish",
            "init",
            "atol",
            "updating",
        ):
            if k in control:
                de_kwargs[k] = control[k]

        p0 = np.clip(np.asarray(p0, dtype=float), lo, hi)
        res = differential_evolution(
            lambda v: objective.value(np.asarray(v, dtype=float)),
            de_bounds,
            x0=p0,
            **de_kwargs,
        )

        return SolverResult(
            theta=np.asarray(res.x, dtype=float).reshape(-1),
            objective_value=float(res.fun),
            converged=bool(res.success),
            iterations=int(getattr(res, "nit", 0) or 0),
            n_evals=int(getattr(res, "nfev", 0) or 0),
            message=str(res.message),
            stats={"backend": "scipy.differential_evolution"},
        )

    def hessian(
        self,
        *,
        objective: Objective,
        result: SolverResult,
        bounds: Tuple[np.ndarray, np.ndarray],
        control: Mapping[str, Any],
    ) -> Optional[np.ndarray]:
        lo, hi = bounds
        return numdiff_hessian(
            objective.value,
            result.theta,
            lower=lo,
            upper=hi,
            step=control.get("hessian_step", None),
        )
