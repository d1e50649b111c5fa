from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np
import uncertainties

from .registry import Curve
from .util import FrozenMap, readonly, uncertainty_to_string

logger = logging.getLogger(__name__)


def normalize_hessian(hessian: Optional[Any], p: int) -> Optional[np.ndarray]:
    """Return a read-only symmetric p×p Hessian, or None when unusable.

    A missing, non-finite, wrongly shaped or numerically singular Hessian are
    all reported the same way: as unavailable.
    """
    if hessian is None:
        return None
    h = np.asarray(hessian, dtype=float)
    if h.shape != (p, p) or not np.all(np.isfinite(h)):
        logger.debug("Discarding Hessian with shape %s or non-finite entries.", h.shape)
        return None
    h = 0.5 * (h + h.T)
    cond = np.linalg.cond(h)
    if not np.isfinite(cond) or cond * np.finfo(float).eps >= 1.0:
        logger.debug("Discarding singular Hessian (condition number %.3g).", cond)
        return None
    return readonly(h)


@dataclass(frozen=True)
class FitRecord:
    """The fitted model of one group. Never mutated once created."""

    uid: Any
    curve: Curve
    estimates: Mapping[str, float]
    fixed: Mapping[str, float]
    n: int
    sse: float
    hessian: Optional[np.ndarray]
    solver_used: str
    converged: bool
    iterations: int
    x: np.ndarray
    y: np.ndarray
    lower: Optional[np.ndarray] = None
    upper: Optional[np.ndarray] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    elapsed: float = 0.0

    def __post_init__(self) -> None:
        names = [n for n in self.curve.param_names if n in self.estimates]
        extra = [n for n in self.estimates if n not in self.curve.param_names]
        if extra:
            raise ValueError(f"Estimates for unknown parameters {extra}.")
        object.__setattr__(
            self, "estimates", FrozenMap((n, float(self.estimates[n])) for n in names)
        )
        object.__setattr__(
            self,
            "fixed",
            FrozenMap(
                (n, float(self.fixed[n])) for n in self.curve.param_names if n in self.fixed
            ),
        )
        object.__setattr__(self, "metadata", FrozenMap(self.metadata or {}))
        object.__setattr__(self, "x", readonly(self.x))
        object.__setattr__(self, "y", readonly(self.y))
        p = len(names)
        lo = np.full(p, -np.inf) if self.lower is None else self.lower
        hi = np.full(p, np.inf) if self.upper is None else self.upper
        object.__setattr__(self, "lower", readonly(lo))
        object.__setattr__(self, "upper", readonly(hi))
        object.__setattr__(self, "hessian", normalize_hessian(self.hessian, p))
        object.__setattr__(self, "n", int(self.n))
        object.__setattr__(self, "sse", float(self.sse))

    # ---- bookkeeping -------------------------------------------------------

    @property
    def fn_name(self) -> str:
        return self.curve.name

    @property
    def param_names(self) -> Tuple[str, ...]:
        return tuple(self.curve.param_names)

    @property
    def free_names(self) -> Tuple[str, ...]:
        return tuple(self.estimates.keys())

    @property
    def p(self) -> int:
        return len(self.estimates)

    @property
    def df(self) -> int:
        """Residual degrees of freedom n - p."""
        return self.n - self.p

    @property
    def theta(self) -> np.ndarray:
        """Free-parameter estimates in curve order."""
        return np.array([self.estimates[n] for n in self.free_names], dtype=float)

    @property
    def params(self) -> Dict[str, float]:
        """All parameter values (estimated and fixed) in curve order."""
        out = {}
        for name in self.curve.param_names:
            out[name] = self.estimates[name] if name in self.estimates else self.fixed[name]
        return out

    @property
    def domain(self) -> Tuple[float, float]:
        return (float(np.min(self.x)), float(np.max(self.x)))

    @property
    def residual_variance(self) -> float:
        """σ̂² = SSE / (n - p); NaN without residual degrees of freedom."""
        if self.df <= 0:
            return float("nan")
        return self.sse / self.df

    # ---- evaluation ----------------------------------------------------------

    def full_params(self, theta: Optional[np.ndarray] = None) -> Dict[str, float]:
        """Complete parameter mapping with the free values replaced by ``theta``."""
        out = self.params
        if theta is not None:
            theta = np.asarray(theta, dtype=float).reshape(-1)
            for j, name in enumerate(self.free_names):
                out[name] = float(theta[j])
        return out

    def evaluate(self, x: Any, theta: Optional[np.ndarray] = None) -> np.ndarray:
        """Curve value at x, at the estimates or at free-parameter vector ``theta``."""
        return self.curve.eval(x, self.full_params(theta))

    def fitted(self) -> np.ndarray:
        return np.broadcast_to(self.evaluate(self.x), self.y.shape).copy()

    def residuals(self) -> np.ndarray:
        return self.y - self.fitted()

    # ---- uncertainty -----------------------------------------------------------

    def covariance(self) -> Optional[np.ndarray]:
        """Σ = 2·σ̂²·H⁻¹ over the free parameters, or None when unavailable."""
        if self.hessian is None or self.df <= 0:
            return None
        try:
            inv = np.linalg.inv(self.hessian)
        except np.linalg.LinAlgError:
            return None
        cov = 2.0 * self.residual_variance * inv
        if not np.all(np.isfinite(cov)):
            return None
        return cov

    def std_errors(self) -> Dict[str, float]:
        """Standard error per free parameter; NaN when unavailable."""
        cov = self.covariance()
        if cov is None:
            return {name: float("nan") for name in self.free_names}
        diag = np.diag(cov)
        with np.errstate(invalid="ignore"):
            se = np.where(diag >= 0.0, np.sqrt(np.abs(diag)), np.nan)
        return {name: float(se[j]) for j, name in enumerate(self.free_names)}

    def uparams(self) -> Dict[str, Any]:
        """Free parameters as correlated ``uncertainties`` values.

        Without a covariance each value carries a NaN standard deviation.
        """
        cov = self.covariance()
        if cov is None or np.any(np.diag(cov) < 0.0):
            return {
                n: uncertainties.ufloat(v, float("nan"), n)
                for n, v in self.estimates.items()
            }
        vals = uncertainties.correlated_values(self.theta, cov, tags=list(self.free_names))
        return dict(zip(self.free_names, vals))

    def summary(self, digits: int = 4) -> str:
        """Return a compact text summary."""
        lines = [
            f"uid={self.uid!r} fn={self.fn_name} solver={self.solver_used} "
            f"converged={self.converged} n={self.n} p={self.p} sse={self.sse:.{digits}g}"
        ]
        se = self.std_errors()
        for name, value in self.estimates.items():
            lines.append(f"  {name} = {uncertainty_to_string(value, se[name], 'auto')}")
        for name, value in self.fixed.items():
            lines.append(f"  {name} = {value:.{digits}g} (fixed)")
        return "\n".join(lines)
