from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np
from scipy.optimize import minimize

from ..numdiff import numdiff_hessian
from ..objective import Objective
from .common import SolverResult, has_finite_bounds, scipy_bounds

logger = logging.getLogger(__name__)

# scipy.optimize.minimize methods that honour box bounds.
BOUNDED_METHODS = ("Nelder-Mead", "Powell", "L-BFGS-B", "TNC", "SLSQP", "trust-constr")


class ScipyMinimizeSolver:
    """One ``scipy.optimize.minimize`` method exposed as a solver.

    Control keys:
    - maxiter: iteration cap (forwarded into ``options``)
    - tol: forwarded as ``minimize(tol=...)``
    - options: dict forwarded to scipy.optimize.minimize
    - hessian_step: relative step for the numeric Hessian (default: 1e-4)
    """

    def __init__(self, method: str, name: Optional[str] = None) -> None:
        self.method = method
        self.name = name or method.lower()
        self.supports_bounds = method in BOUNDED_METHODS

    def solve(
        self,
        *,
        objective: Objective,
        p0: np.ndarray,
        bounds: Tuple[np.ndarray, np.ndarray],
        control: Mapping[str, Any],
    ) -> SolverResult:
        scipy_opts: Dict[str, Any] = dict(control.get("options", None) or {})
        if "maxiter" in control:
            scipy_opts["maxiter"] = int(control["maxiter"])
        tol = control.get("tol", None)

        use_bounds = None
        if self.supports_bounds:
            use_bounds = scipy_bounds(bounds)
        elif has_finite_bounds(bounds):
            logger.debug("Solver %s ignores bounds.", self.name)

        res = minimize(
            lambda v: objective.value(np.asarray(v, dtype=float)),
            np.asarray(p0, dtype=float),
            method=self.method,
            bounds=use_bounds,
            tol=None if tol is None else float(tol),
            options=scipy_opts,
        )

        return SolverResult(
            theta=np.asarray(res.x, dtype=float).reshape(-1),
            objective_value=float(res.fun),
            converged=bool(res.success),
            iterations=int(getattr(res, "nit", 0) or 0),
            n_evals=int(getattr(res, "nfev", 0) or 0),
            message=str(getattr(res, "message", "")),
            stats={"backend": "scipy.minimize", "method": self.method},
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
        if not self.supports_bounds:
            lo = hi = None
        return numdiff_hessian(
            objective.value,
            result.theta,
            lower=lo,
            upper=hi,
            step=control.get("hessian_step", None),
        )
