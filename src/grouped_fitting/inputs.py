"""Normalization of parameter tables and bounds.

Initial values and fixed parameters come either global (one mapping shared
by all groups) or per group (one row per uid). Everything here runs before
any solver is started so configuration problems surface immediately.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import ConfigurationError, CurveSignatureError, IncompleteParameterCoverageError
from .registry import Curve
from .util import FrozenMap


@dataclass(frozen=True)
class ParameterSpec:
    """Global or per-group parameter values.

    ``values`` is a name -> value mapping (global), or a positional sequence
    aligned to the free parameters (global, initial values only). ``per_group``
    maps uid -> name -> value.
    """

    label: str
    values: Optional[Any] = None
    per_group: Optional[Mapping[Any, Mapping[str, float]]] = None

    @property
    def is_per_group(self) -> bool:
        return self.per_group is not None

    @property
    def is_empty(self) -> bool:
        return self.values is None and self.per_group is None

    def missing(self, uids: Iterable[Any]) -> List[Any]:
        """Requested uids without a row in a per-group table."""
        if self.per_group is None:
            return []
        return [u for u in uids if u not in self.per_group]

    def check_coverage(self, uids: Iterable[Any]) -> None:
        missing = self.missing(uids)
        if missing:
            raise IncompleteParameterCoverageError(
                f"{self.label} has no row for group(s) {missing}.", missing=missing
            )

    def for_group(self, uid: Any) -> Optional[Any]:
        if self.per_group is not None:
            return self.per_group.get(uid)
        return self.values


def parameter_spec(spec: Any, *, label: str, allow_sequence: bool = False) -> ParameterSpec:
    """Build a ParameterSpec from a mapping, a DataFrame or a sequence.

    - ``None`` -> empty
    - ``{"t1": 40, "k": 100}`` -> global
    - ``{uid: {"t1": 40}, ...}`` -> per group
    - DataFrame with a ``uid`` column -> per group (missing cells are skipped)
    - DataFrame without ``uid`` and a single row -> global
    - sequence of numbers -> global, positional (only when ``allow_sequence``)
    """
    if spec is None:
        return ParameterSpec(label=label)
    if isinstance(spec, ParameterSpec):
        return spec

    if isinstance(spec, pd.DataFrame):
        if "uid" in spec.columns:
            if spec["uid"].duplicated().any():
                dup = spec.loc[spec["uid"].duplicated(), "uid"].tolist()
                raise ConfigurationError(f"{label} has duplicate uid rows: {dup}.")
            per: Dict[Any, Mapping[str, float]] = {}
            cols = [c for c in spec.columns if c != "uid"]
            if not cols:
                raise ConfigurationError(f"{label} must contain at least one parameter column.")
            for _, row in spec.iterrows():
                uid = row["uid"]
                uid = uid.item() if isinstance(uid, np.generic) else uid
                per[uid] = FrozenMap(
                    _numeric_mapping({c: row[c] for c in cols if pd.notna(row[c])}, label)
                )
            return ParameterSpec(label=label, per_group=FrozenMap(per))
        if len(spec) != 1:
            raise ConfigurationError(
                f"{label} given as a table must have a 'uid' column or exactly one row."
            )
        row = spec.iloc[0]
        return ParameterSpec(
            label=label,
            values=FrozenMap(
                _numeric_mapping({c: row[c] for c in spec.columns if pd.notna(row[c])}, label)
            ),
        )

    if isinstance(spec, Mapping):
        if spec and all(isinstance(v, Mapping) for v in spec.values()):
            per = {uid: FrozenMap(_numeric_mapping(v, label)) for uid, v in spec.items()}
            return ParameterSpec(label=label, per_group=FrozenMap(per))
        if any(isinstance(v, Mapping) for v in spec.values()):
            raise ConfigurationError(
                f"{label} mixes global values and per-group rows."
            )
        return ParameterSpec(label=label, values=FrozenMap(_numeric_mapping(spec, label)))

    if allow_sequence and isinstance(spec, (list, tuple, np.ndarray)):
        try:
            arr = np.asarray(spec, dtype=float).reshape(-1)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"{label} must be numeric.") from exc
        return ParameterSpec(label=label, values=tuple(arr.tolist()))

    raise ConfigurationError(
        f"{label} must be a mapping or a DataFrame, got {type(spec).__name__}."
    )


def _numeric_mapping(values: Mapping[str, Any], label: str) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for name, v in values.items():
        try:
            out[str(name)] = float(v)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"{label}: value for {name!r} must be numeric, got {v!r}."
            ) from exc
    return out


def merge_specs(base: ParameterSpec, override: ParameterSpec, uids: Sequence[Any]) -> ParameterSpec:
    """Per-group values from ``override`` layered over global ``base`` values."""
    if override.is_empty:
        return base
    if base.is_empty or not isinstance(base.values, Mapping):
        return override
    if not override.is_per_group:
        merged = dict(base.values)
        merged.update(override.values)
        return ParameterSpec(label=override.label, values=FrozenMap(merged))
    per: Dict[Any, Mapping[str, float]] = {}
    for uid in uids:
        row = dict(base.values)
        row.update(override.per_group.get(uid, {}))
        per[uid] = FrozenMap(row)
    return ParameterSpec(label=override.label, per_group=FrozenMap(per))


def initial_vector(
    curve: Curve,
    free_names: Sequence[str],
    initial: Optional[Any],
    *,
    uid: Any = None,
) -> np.ndarray:
    """Starting point aligned to ``free_names``.

    Names of fixed parameters in a mapping are ignored. Free parameters missing
    from the mapping fall back to the curve's signature defaults.
    """
    where = "" if uid is None else f" for group {uid!r}"
    if initial is None:
        initial = {}
    if isinstance(initial, Mapping):
        unknown = [n for n in initial if n not in curve.param_names]
        if unknown:
            raise CurveSignatureError(
                f"Initial values{where} name unknown parameters {unknown}; "
                f"curve {curve.name!r} has {curve.param_names}."
            )
        values = []
        missing = []
        for name in free_names:
            if name in initial:
                values.append(float(initial[name]))
            elif name in curve.defaults:
                values.append(float(curve.defaults[name]))
            else:
                missing.append(name)
        if missing:
            raise ConfigurationError(
                f"Initial values{where} missing for free parameters {missing}."
            )
        p0 = np.asarray(values, dtype=float)
    else:
        p0 = np.asarray(initial, dtype=float).reshape(-1)
        if p0.shape[0] != len(free_names):
            raise ConfigurationError(
                f"Initial values{where} have {p0.shape[0]} entries but there are "
                f"{len(free_names)} free parameters {tuple(free_names)}."
            )
    if not np.all(np.isfinite(p0)):
        raise ConfigurationError(f"Initial values{where} must be finite.")
    return p0


def bounds_for_free(
    curve: Curve,
    free_names: Sequence[str],
    lower: Any = None,
    upper: Any = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Return (lo, hi) arrays aligned to ``free_names``.

    Each side may be None (unbounded), a scalar (applied to all free
    parameters), a mapping name -> value, or a sequence aligned to the free
    parameter order.
    """
    lo = _bound_side(curve, free_names, lower, -np.inf, "lower")
    hi = _bound_side(curve, free_names, upper, np.inf, "upper")
    bad = [n for n, a, b in zip(free_names, lo, hi) if a > b]
    if bad:
        raise ConfigurationError(f"Lower bound exceeds upper bound for {bad}.")
    return lo, hi


def _bound_side(
    curve: Curve, free_names: Sequence[str], spec: Any, default: float, label: str
) -> np.ndarray:
    npar = len(free_names)
    if spec is None:
        return np.full(npar, default, dtype=float)
    if isinstance(spec, Mapping):
        unknown = [n for n in spec if n not in curve.param_names]
        if unknown:
            raise ConfigurationError(
                f"{label} bounds name unknown parameters {unknown}."
            )
        out = np.full(npar, default, dtype=float)
        for j, name in enumerate(free_names):
            if name in spec:
                out[j] = _as_bound(spec[name], label)
        return out
    if isinstance(spec, (int, float, np.integer, np.floating)) and not isinstance(spec, bool):
        return np.full(npar, _as_bound(spec, label), dtype=float)
    if isinstance(spec, (str, bytes)):
        raise ConfigurationError(f"{label} bounds must be numeric, got {spec!r}.")
    try:
        arr = np.asarray(spec, dtype=float).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{label} bounds must be numeric.") from exc
    if arr.shape[0] != npar:
        raise ConfigurationError(
            f"{label} bounds have {arr.shape[0]} entries but there are {npar} free "
            f"parameters {tuple(free_names)}."
        )
    if np.any(np.isnan(arr)):
        raise ConfigurationError(f"{label} bounds must not be NaN.")
    return arr


def _as_bound(value: Any, label: str) -> float:
    if isinstance(value, (str, bytes, bool)):
        raise ConfigurationError(f"{label} bounds must be numeric, got {value!r}.")
    try:
        out = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{label} bounds must be numeric, got {value!r}.") from exc
    if np.isnan(out):
        raise ConfigurationError(f"{label} bounds must not be NaN.")
    return out
