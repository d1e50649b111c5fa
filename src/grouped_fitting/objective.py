"""Sum-of-squares objective over the free parameters of a curve."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import numpy as np

from .errors import CurveSignatureError
from .registry import Curve
from .util import FrozenMap, safe_float


@dataclass(frozen=True)
class ParameterPartition:
    """Every curve parameter classified once as free or fixed."""

    param_names: Tuple[str, ...]
    free: Tuple[str, ...]
    fixed: Mapping[str, float]

    def full_vector(self, theta_free: np.ndarray) -> np.ndarray:
        """Concatenate free values and fixed constants in curve parameter order."""
        theta_free = np.asarray(theta_free, dtype=float).reshape(-1)
        out = np.empty(len(self.param_names), dtype=float)
        j = 0
        for i, name in enumerate(self.param_names):
            if name in self.fixed:
                out[i] = self.fixed[name]
            else:
                out[i] = theta_free[j]
                j += 1
        return out

    def full_mapping(self, theta_free: np.ndarray) -> Dict[str, float]:
        return dict(zip(self.param_names, self.full_vector(theta_free).tolist()))


def partition_parameters(
    curve: Curve, fixed_params: Optional[Mapping[str, Any]] = None
) -> ParameterPartition:
    """Split the curve parameters into free and fixed.

    Raises CurveSignatureError when a fixed name is not a curve parameter or
    when every parameter would be fixed.
    """
    fixed_params = dict(fixed_params or {})
    unknown = [n for n in fixed_params if n not in curve.param_names]
    if unknown:
        raise CurveSignatureError(
            f"Fixed parameters {unknown} are not parameters of curve {curve.name!r} "
            f"{curve.param_names}."
        )
    free = tuple(n for n in curve.param_names if n not in fixed_params)
    if not free:
        raise CurveSignatureError(
            f"All parameters of curve {curve.name!r} are fixed; at least one must be free."
        )
    fixed: Dict[str, float] = {}
    for name in curve.param_names:
        if name not in fixed_params:
            continue
        try:
            fixed[name] = safe_float(fixed_params[name])
        except (TypeError, ValueError) as exc:
            raise CurveSignatureError(
                f"Fixed value for {name!r} must be numeric, got {fixed_params[name]!r}."
            ) from exc
    return ParameterPartition(
        param_names=tuple(curve.param_names), free=free, fixed=FrozenMap(fixed)
    )


def build_residuals(
    curve: Curve, fixed_params: Optional[Mapping[str, Any]] = None
) -> Callable[[np.ndarray, np.ndarray, np.ndarray], np.ndarray]:
    """Return residuals(free_vector, x, y) -> y - f(x, theta)."""
    partition = partition_parameters(curve, fixed_params)

    def residuals(theta_free: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return Objective.bind(curve, partition, x, y).residuals(theta_free)

    return residuals


def build_loss(
    curve: Curve, fixed_params: Optional[Mapping[str, Any]] = None
) -> Callable[[np.ndarray, np.ndarray, np.ndarray], float]:
    """Return loss(free_vector, x, y) -> sum of squared residuals.

    Non-finite evaluations map to +inf so solvers move away from them.
    """
    partition = partition_parameters(curve, fixed_params)

    def loss(theta_free: np.ndarray, x: np.ndarray, y: np.ndarray) -> float:
        return Objective.bind(curve, partition, x, y).value(theta_free)

    return loss


@dataclass(frozen=True)
class Objective:
    """A loss bound to one group's data, as handed to a solver."""

    curve: Curve
    partition: ParameterPartition
    x: np.ndarray
    y: np.ndarray

    @classmethod
    def build(
        cls,
        curve: Curve,
        x: Any,
        y: Any,
        fixed_params: Optional[Mapping[str, Any]] = None,
    ) -> "Objective":
        return cls.bind(curve, partition_parameters(curve, fixed_params), x, y)

    @classmethod
    def bind(cls, curve: Curve, partition: ParameterPartition, x: Any, y: Any) -> "Objective":
        return cls(
            curve=curve,
            partition=partition,
            x=np.asarray(x, dtype=float),
            y=np.asarray(y, dtype=float),
        )

    @property
    def free_names(self) -> Tuple[str, ...]:
        return self.partition.free

    def residuals(self, theta_free: np.ndarray) -> np.ndarray:
        yhat = self.curve.eval_vector(self.x, self.partition.full_vector(theta_free))
        return self.y - np.broadcast_to(yhat, self.y.shape)

    def value(self, theta_free: np.ndarray) -> float:
        r = self.residuals(np.asarray(theta_free, dtype=float))
        value = float(np.sum(r * r))
        if not np.isfinite(value):
            return float("inf")
        return value
