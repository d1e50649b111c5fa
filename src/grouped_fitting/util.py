from __future__ import annotations

import inspect
import math
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterable, List, Tuple

import numpy as np


def infer_param_names(func: Callable[..., Any]) -> Tuple[str, ...]:
    """Infer parameter names from a curve signature.

    Conventions:
    - first arg is the independent variable (x)
    - remaining positional/keyword parameters are curve parameters

    Restriction: no *args/**kwargs in curve functions.
    """
    sig = inspect.signature(func)
    params = list(sig.parameters.values())

    if len(params) < 2:
        raise TypeError("Curve function must have at least (x, p1, ...).")

    bad_kinds = {inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD}
    for p in params:
        if p.kind in bad_kinds:
            raise TypeError("*args/**kwargs are not supported in curve functions.")

    names = [p.name for p in params[1:]]
    if len(set(names)) != len(names):
        raise TypeError("Duplicate parameter names in function signature.")
    return tuple(names)


def infer_param_defaults(func: Callable[..., Any]) -> Dict[str, float]:
    """Numeric signature defaults of the curve parameters (weak initial guesses)."""
    sig = inspect.signature(func)
    out: Dict[str, float] = {}
    for p in list(sig.parameters.values())[1:]:
        if p.default is inspect.Parameter.empty:
            continue
        if isinstance(p.default, (int, float, np.integer, np.floating)) and not isinstance(
            p.default, bool
        ):
            out[p.name] = float(p.default)
    return out


def safe_float(x: Any) -> float:
    """Convert numpy scalar / 0-d array to python float."""
    if isinstance(x, np.ndarray) and x.shape == ():
        return float(x.item())
    return float(x)


def readonly(arr: np.ndarray) -> np.ndarray:
    """Return a read-only copy of arr."""
    out = np.array(arr, dtype=float, copy=True)
    out.setflags(write=False)
    return out


def sorted_uids(uids: Iterable[Any]) -> List[Any]:
    """Sort group ids when they are mutually comparable, else keep input order."""
    uids = list(uids)
    try:
        return sorted(uids)
    except TypeError:
        return uids


def uncertainty_to_string(
    x: float, err: float, precision: int | str | None = 1
) -> str:
    """Format a value with uncertainty as a compact string.

    Returns the shortest string representation of x +/- err as either
    x.xx(ee)e+xx or xxx.xx(ee). Use precision="auto" to follow the
    common 1-or-2 significant-digit rule for the uncertainty.
    """
    auto = precision is None or (
        isinstance(precision, str) and precision.lower() == "auto"
    )
    x = float(x)
    err = float(err)

    if math.isnan(x):
        return "NaN"
    if math.isnan(err):
        return f"{x:.6g}(?)"
    if math.isinf(x) or math.isinf(err):
        return "inf"

    err = abs(err)
    if err == 0.0:
        if auto:
            precision = 1
        precision = max(1, int(precision))  # type: ignore[arg-type]
        return f"{x:.{precision}g}(0)"

    err_exp = int(math.floor(math.log10(err)))
    if auto:
        leading = int(err / (10 ** err_exp) + 1e-12)
        precision = 2 if leading == 1 else 1
    precision = max(1, int(precision))  # type: ignore[arg-type]

    if x == 0.0 or abs(x) < err:
        x_exp = err_exp
    else:
        x_exp = int(math.floor(math.log10(abs(x))))

    un_exp = err_exp - precision + 1
    un_int = round(err * 10 ** (-un_exp))

    no_exp = un_exp
    no_int = round(x * 10 ** (-no_exp))

    fieldw = x_exp - no_exp
    fmt = f"%.{fieldw}f"
    result1 = (fmt + "(%.0f)e%d") % (no_int * 10 ** (-fieldw), un_int, x_exp)

    fieldw = max(0, -no_exp)
    fmt = f"%.{fieldw}f"
    result2 = (fmt + "(%.0f)") % (no_int * 10 ** no_exp, un_int * 10 ** max(0, un_exp))

    return result2 if len(result2) <= len(result1) else result1


class FrozenMap(Mapping):
    """Read-only, picklable mapping used for immutable record fields."""

    __slots__ = ("_data",)

    def __init__(self, data: Any = (), **kwargs: Any) -> None:
        object.__setattr__(self, "_data", dict(data, **kwargs))

    def __getitem__(self, key: Any) -> Any:
        return self._data[key]

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("FrozenMap is read-only.")

    def __reduce__(self):
        return (FrozenMap, (dict(self._data),))

    def __repr__(self) -> str:
        return f"FrozenMap({self._data!r})"
