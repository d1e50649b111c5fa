"""Named curve registry.

A curve is a pure, x-vectorised function ``f(x, p1, ..., pk)``. Its parameter
names are read from the signature once, at registration, and the entry is
read-only afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple, Union

import numpy as np

from .errors import UnknownCurveError
from .util import FrozenMap, infer_param_defaults, infer_param_names


@dataclass(frozen=True)
class Curve:
    name: str
    func: Callable[..., Any]
    param_names: Tuple[str, ...]
    defaults: Mapping[str, float] = field(default_factory=dict)
    doc: str = ""

    @classmethod
    def from_function(
        cls, func: Callable[..., Any], *, name: Optional[str] = None
    ) -> "Curve":
        names = infer_param_names(func)
        defaults = infer_param_defaults(func)
        doc = (func.__doc__ or "").strip().splitlines()
        return cls(
            name=str(name or func.__name__),
            func=func,
            param_names=names,
            defaults=FrozenMap(defaults),
            doc=doc[0] if doc else "",
        )

    def __call__(self, x: Any, **params: float) -> np.ndarray:
        return self.eval(x, params)

    def eval(self, x: Any, params: Mapping[str, float]) -> np.ndarray:
        """Evaluate at x with a complete parameter mapping."""
        missing = [n for n in self.param_names if n not in params]
        if missing:
            raise KeyError(f"Missing parameters for curve {self.name!r}: {missing}")
        args = [float(params[n]) for n in self.param_names]
        x = np.asarray(x, dtype=float)
        return np.asarray(self.func(x, *args), dtype=float)

    def eval_vector(self, x: Any, theta: np.ndarray) -> np.ndarray:
        """Evaluate with parameters given positionally in ``param_names`` order."""
        x = np.asarray(x, dtype=float)
        return np.asarray(self.func(x, *[float(v) for v in theta]), dtype=float)

    def __repr__(self) -> str:
        return f"Curve({self.name!r}, params={self.param_names})"


CurveLike = Union[str, Curve]


class CurveRegistry:
    """Map of curve name to Curve. Names are unique and entries immutable."""

    def __init__(self) -> None:
        self._curves: Dict[str, Curve] = {}

    def register(
        self,
        func: Optional[Callable[..., Any]] = None,
        *,
        name: Optional[str] = None,
    ) -> Any:
        """Register ``func`` under ``name`` (default: its __name__).

        Usable directly or as a decorator (``@registry.register(name="...")``).
        Returns the function unchanged so decorated functions stay plain.
        """

        def _add(f: Callable[..., Any]) -> Callable[..., Any]:
            curve = Curve.from_function(f, name=name)
            if curve.name in self._curves:
                raise ValueError(f"Curve {curve.name!r} is already registered.")
            self._curves[curve.name] = curve
            return f

        if func is None:
            return _add
        return _add(func)

    def get(self, curve: CurveLike) -> Curve:
        if isinstance(curve, Curve):
            return curve
        try:
            return self._curves[str(curve)]
        except KeyError as e:
            raise UnknownCurveError(
                f"Unknown curve {curve!r}. Available: {tuple(self._curves.keys())}"
            ) from e

    def names(self) -> Tuple[str, ...]:
        return tuple(self._curves.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._curves

    def __iter__(self) -> Iterator[Curve]:
        return iter(tuple(self._curves.values()))

    def __len__(self) -> int:
        return len(self._curves)


DEFAULT_REGISTRY = CurveRegistry()


def register_curve(func: Optional[Callable[..., Any]] = None, *, name: Optional[str] = None) -> Any:
    """Register a curve in the default registry."""
    return DEFAULT_REGISTRY.register(func, name=name)


def get_curve(curve: CurveLike) -> Curve:
    """Resolve a curve name (or pass a Curve through)."""
    return DEFAULT_REGISTRY.get(curve)


def list_curves() -> Tuple[str, ...]:
    return DEFAULT_REGISTRY.names()
