from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np
from scipy.optimize import least_squares

from ..objective import Objective
from .common import SolverResult


class ScipyLeastSquaresSolver:
    """Trust-region least squares on the residual vector.

    The Hessian of the SSE is the Gauss-Newton approximation ``2 JᵀJ`` built
    from the residual Jacobian scipy returns at the optimum.

    Control keys: method, maxiter (-> max_nfev), ftol, xtol, gtol, x_scale, diff_step.
    """

    name = "least-squares"
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
        kwargs: Dict[str, Any] = {"method": str(control.get("method", "trf"))}
        if "maxiter" in control:
            kwargs["max_nfev"] = int(control["maxiter"])
        for k in ("max_nfev", "ftol", "xtol", "gtol", "x_scale", "diff_step"):
            if k in control:
                kwargs[k] = control[k]

        p0 = np.asarray(p0, dtype=float)
        res = least_squares(
            lambda v: objective.residuals(np.asarray(v, dtype=float)),
            p0,
            bounds=(np.asarray(lo, dtype=float), np.asarray(hi, dtype=float)),
            **kwargs,
        )
        r = np.asarray(res.fun, dtype=float)
        return SolverResult(
            theta=np.asarray(res.x, dtype=float).reshape(-1),
            objective_value=float(np.sum(r * r)),
            converged=bool(res.success),
            iterations=int(getattr(res, "njev", 0) or 0),
            n_evals=int(getattr(res, "nfev", 0) or 0),
            message=str(res.message),
            stats={"backend": "scipy.least_squares", "jac": np.asarray(res.jac, dtype=float)},
        )

    def hessian(
        self,
        *,
        objective: Objective,
        result: SolverResult,
        bounds: Tuple[np.ndarray, np.ndarray],
        control: Mapping[str, Any],
    ) -> Optional[np.ndarray]:
        jac = result.stats.get("jac", None)
        if jac is None:
            return None
        jac = np.asarray(jac, dtype=float)
        return 2.0 * (jac.T @ jac)
