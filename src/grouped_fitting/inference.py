"""Delta-method inference on fitted records.

Every functional g(θ) of the free parameters gets a value and a standard
error sqrt(J Σ Jᵀ), where J is a numerical Jacobian of g at the estimates and
Σ the record's covariance. Without a covariance the value is still returned
and the standard error is NaN.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import sympy
from scipy.optimize import brentq

from .config import DEFAULT_NUMERIC_POLICY, NumericPolicy
from .errors import InferenceRequestError
from .numdiff import numeric_jacobian, richardson_derivative, trapezoid_auc
from .record import FitRecord
from .util import sorted_uids

SE_INTERVALS = ("confidence", "prediction")


# ---- functional requests ------------------------------------------------------


@dataclass(frozen=True)
class Point:
    """Curve value at x."""

    x: Any
    se_interval: str = "confidence"


@dataclass(frozen=True)
class Derivative:
    """First or second derivative of the curve with respect to x."""

    x: Any
    order: int = 1


@dataclass(frozen=True)
class AUC:
    """Trapezoidal area under the curve; the group's x range when unset."""

    x_lo: Optional[float] = None
    x_hi: Optional[float] = None
    n_points: Optional[int] = None


@dataclass(frozen=True)
class Formula:
    """Scalar expression of the parameters, as text (``"t2 - t1"``) or a callable.

    A callable receives a mapping of every parameter value.
    """

    expr: Union[str, Callable[[Mapping[str, float]], float]]


Request = Union[Point, Derivative, AUC, Formula]


# ---- delta method ---------------------------------------------------------------


def delta_method(
    record: FitRecord,
    g: Callable[[np.ndarray], Any],
    names: Optional[Sequence[str]] = None,
    policy: Optional[NumericPolicy] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Value and standard error of g at the estimates.

    ``g`` takes the vector of the free parameters listed in ``names`` (default:
    all free parameters, in curve order); only the matching sub-covariance is
    used. Returns 1D arrays (values, std_errors).
    """
    names = tuple(record.free_names if names is None else names)
    idx = [record.free_names.index(n) for n in names]
    theta = np.array([record.estimates[n] for n in names], dtype=float)

    value = np.atleast_1d(np.asarray(g(theta), dtype=float)).reshape(-1)
    se = np.full(value.shape, np.nan)

    cov = record.covariance()
    if cov is None:
        return value, se
    if not names:
        return value, np.zeros(value.shape)

    jac = numeric_jacobian(g, theta, policy=policy)
    return value, _propagate(jac, cov[np.ix_(idx, idx)])


def _propagate(jac: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """sqrt(diag(J Σ Jᵀ)); NaN where the variance is not finite."""
    with np.errstate(invalid="ignore", over="ignore"):
        var = np.einsum("ij,jk,ik->i", jac, cov, jac)
        return np.where(np.isfinite(var) & (var >= 0.0), np.sqrt(np.abs(var)), np.nan)


def _check_domain(record: FitRecord, x: np.ndarray) -> None:
    lo, hi = record.domain
    if x.size == 0:
        raise InferenceRequestError("x must contain at least one value.")
    if not np.all(np.isfinite(x)):
        raise InferenceRequestError("x must be finite.")
    if np.any(x < lo) or np.any(x > hi):
        raise InferenceRequestError(
            f"x needs to be in the interval <{lo:g}, {hi:g}> for group {record.uid!r}."
        )


def _as_x(x: Any) -> np.ndarray:
    if x is None:
        raise InferenceRequestError("x is required for this prediction.")
    try:
        return np.asarray(x, dtype=float).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise InferenceRequestError("x must be numeric.") from exc


def point_estimate(
    record: FitRecord,
    x: Any,
    se_interval: str = "confidence",
    policy: Optional[NumericPolicy] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Curve value at x with a confidence or prediction standard error."""
    if se_interval not in SE_INTERVALS:
        raise InferenceRequestError(
            f"se_interval must be one of {SE_INTERVALS}, got {se_interval!r}."
        )
    x = _as_x(x)
    _check_domain(record, x)

    def g(theta: np.ndarray) -> np.ndarray:
        return np.broadcast_to(record.evaluate(x, theta), x.shape)

    value, se = delta_method(record, g, policy=policy)
    if se_interval == "prediction":
        se = np.sqrt(record.residual_variance + se**2)
    return value, se


def derivative_estimate(
    record: FitRecord,
    x: Any,
    order: int = 1,
    policy: Optional[NumericPolicy] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """d/dx (order 1) or d²/dx² (order 2) of the fitted curve at x."""
    if order not in (1, 2):
        raise InferenceRequestError(f"order must be 1 or 2, got {order!r}.")
    x = _as_x(x)
    _check_domain(record, x)
    theta = record.theta

    def curve_at(t: np.ndarray) -> np.ndarray:
        return np.broadcast_to(record.evaluate(t, theta), np.shape(t))

    value = np.asarray(richardson_derivative(curve_at, x, order=order, policy=policy))
    cov = record.covariance()
    if cov is None:
        return value, np.full(value.shape, np.nan)
    if not record.free_names:
        return value, np.zeros(value.shape)

    # The x stencil is linear in f, so it is applied to the parameter
    # Jacobians of f at the stencil nodes rather than differentiated again.
    def jacobian_at(t: np.ndarray) -> np.ndarray:
        return numeric_jacobian(
            lambda th: np.broadcast_to(record.evaluate(t, th), np.shape(t)),
            theta,
            policy=policy,
        )

    jac = richardson_derivative(jacobian_at, x, order=order, policy=policy)
    return value, _propagate(jac, cov)


def auc_interval(
    record: FitRecord, x_lo: Optional[float], x_hi: Optional[float]
) -> Tuple[float, float]:
    lo, hi = record.domain
    lo = lo if x_lo is None else float(x_lo)
    hi = hi if x_hi is None else float(x_hi)
    if not (np.isfinite(lo) and np.isfinite(hi)) or lo >= hi:
        raise InferenceRequestError(
            f"AUC interval must satisfy x_lo < x_hi, got <{lo:g}, {hi:g}>."
        )
    return lo, hi


def auc_estimate(
    record: FitRecord,
    x_lo: Optional[float] = None,
    x_hi: Optional[float] = None,
    n_points: Optional[int] = None,
    policy: Optional[NumericPolicy] = None,
) -> Tuple[float, float]:
    """Trapezoidal AUC over [x_lo, x_hi] with n_points equally spaced nodes."""
    policy = policy or DEFAULT_NUMERIC_POLICY
    n_points = policy.n_points if n_points is None else n_points
    if isinstance(n_points, bool) or int(n_points) != n_points or int(n_points) < 2:
        raise InferenceRequestError(f"n_points must be an integer >= 2, got {n_points!r}.")
    lo, hi = auc_interval(record, x_lo, x_hi)

    def g(theta: np.ndarray) -> float:
        return trapezoid_auc(lambda t: record.evaluate(t, theta), lo, hi, int(n_points))

    value, se = delta_method(record, g, policy=policy)
    return float(value[0]), float(se[0])


@dataclass(frozen=True)
class CompiledFormula:
    text: str
    names: Tuple[str, ...]
    func: Callable[..., Any]
    takes_mapping: bool = False


def compile_formula(expr: Any, param_names: Sequence[str]) -> CompiledFormula:
    """Parse a formula once against the curve parameter names.

    Text is parsed with sympy, binding every parameter name as a symbol.
    Raises InferenceRequestError for syntax errors or unknown names.
    """
    if isinstance(expr, Formula):
        expr = expr.expr
    if callable(expr):
        return CompiledFormula(
            text=getattr(expr, "__name__", repr(expr)),
            names=tuple(param_names),
            func=expr,
            takes_mapping=True,
        )
    if not isinstance(expr, str) or not expr.strip():
        raise InferenceRequestError("formula must be a non-empty string or a callable.")

    symbols = {n: sympy.Symbol(n) for n in param_names}
    try:
        parsed = sympy.sympify(expr, locals=symbols)
    except (sympy.SympifyError, SyntaxError, TypeError, AttributeError) as exc:
        raise InferenceRequestError(f"Could not parse formula {expr!r}: {exc}") from exc
    if not isinstance(parsed, sympy.Expr):
        raise InferenceRequestError(f"Formula {expr!r} is not a scalar expression.")

    used = {s.name for s in parsed.free_symbols}
    unknown = sorted(used - set(param_names))
    if unknown:
        raise InferenceRequestError(
            f"Parameters in formula must match those in model; unknown {unknown}, "
            f"available {tuple(param_names)}."
        )
    if not used:
        raise InferenceRequestError(f"Formula {expr!r} does not reference any parameter.")
    names = tuple(n for n in param_names if n in used)
    func = sympy.lambdify([symbols[n] for n in names], parsed, modules="numpy")
    return CompiledFormula(text=expr.strip(), names=names, func=func)


def formula_estimate(
    record: FitRecord,
    formula: Any,
    policy: Optional[NumericPolicy] = None,
) -> Tuple[float, float]:
    """Value and standard error of a scalar formula of the parameters.

    Fixed parameters enter as constants; only the free parameters appearing
    in the formula contribute to the standard error.
    """
    compiled = formula if isinstance(formula, CompiledFormula) else compile_formula(
        formula, record.param_names
    )
    free = tuple(n for n in compiled.names if n in record.estimates)
    base = record.params

    def values_for(theta: np.ndarray) -> Dict[str, float]:
        vals = dict(base)
        for j, name in enumerate(free):
            vals[name] = float(theta[j])
        return vals

    if compiled.takes_mapping:

        def g(theta: np.ndarray) -> float:
            return float(compiled.func(values_for(theta)))

    else:

        def g(theta: np.ndarray) -> float:
            vals = values_for(theta)
            return float(compiled.func(*[vals[n] for n in compiled.names]))

    try:
        value, se = delta_method(record, g, names=free, policy=policy)
    except (TypeError, KeyError, ValueError, ZeroDivisionError) as exc:
        raise InferenceRequestError(
            f"Could not evaluate formula {compiled.text!r}: {exc}"
        ) from exc
    return float(value[0]), float(se[0])


# ---- batch API ------------------------------------------------------------------


def as_record_map(records: Any) -> Dict[Any, FitRecord]:
    """Accept a Run, a mapping uid -> FitRecord, a sequence of records or one record."""
    if isinstance(records, FitRecord):
        return {records.uid: records}
    recs = getattr(records, "records", records)
    if isinstance(recs, Mapping):
        return dict(recs)
    out: Dict[Any, FitRecord] = {}
    for rec in recs:
        out[rec.uid] = rec
    return out


def select_records(records: Any, uids: Optional[Iterable[Any]] = None) -> List[FitRecord]:
    """Records for ``uids`` (default: all, sorted by uid).

    Raises InferenceRequestError when a uid has no record.
    """
    rec_map = as_record_map(records)
    if uids is None:
        return [rec_map[u] for u in sorted_uids(rec_map)]
    if isinstance(uids, (str, bytes)) or not isinstance(uids, Iterable):
        uids = [uids]
    uids = list(uids)
    missing = [u for u in uids if u not in rec_map]
    if missing:
        raise InferenceRequestError(f"ids not found in fitted records: {missing}.")
    return [rec_map[u] for u in uids]


def _metadata_frame(df: pd.DataFrame, recs: Sequence[FitRecord]) -> pd.DataFrame:
    keys: List[str] = []
    for rec in recs:
        for k in rec.metadata:
            if k not in keys and k not in df.columns:
                keys.append(k)
    if not keys or df.empty:
        return df
    meta = pd.DataFrame(
        [{"uid": rec.uid, **{k: rec.metadata.get(k) for k in keys}} for rec in recs]
    )
    out = df.merge(meta, on="uid", how="left")
    front = ["uid", "fn_name", *keys]
    return out[front + [c for c in out.columns if c not in front]]


def _validate_request(request: Request) -> None:
    """Reject requests that are malformed for every group alike."""
    if isinstance(request, Point) and request.se_interval not in SE_INTERVALS:
        raise InferenceRequestError(
            f"se_interval must be one of {SE_INTERVALS}, got {request.se_interval!r}."
        )
    if isinstance(request, Derivative) and request.order not in (1, 2):
        raise InferenceRequestError(f"order must be 1 or 2, got {request.order!r}.")
    if isinstance(request, AUC) and request.n_points is not None:
        n = request.n_points
        if isinstance(n, bool) or int(n) != n or int(n) < 2:
            raise InferenceRequestError(f"n_points must be an integer >= 2, got {n!r}.")


def infer(
    records: Any,
    request: Request,
    uids: Optional[Iterable[Any]] = None,
    *,
    policy: Optional[NumericPolicy] = None,
    metadata: bool = False,
) -> pd.DataFrame:
    """Evaluate one functional request over many records.

    A request that is invalid for a single group (e.g. x outside its
    observed range) drops that group's rows with a warning; the messages are
    kept in ``DataFrame.attrs["errors"]``. Unknown uids and malformed formulas
    reject the whole call.
    """
    policy = policy or DEFAULT_NUMERIC_POLICY
    _validate_request(request)
    recs = select_records(records, uids)

    compiled: Optional[CompiledFormula] = None
    if isinstance(request, Formula):
        if recs:
            compiled = compile_formula(request.expr, recs[0].param_names)
        columns = ["uid", "fn_name", "formula", "predicted_value", "std_error"]
    elif isinstance(request, AUC):
        columns = ["uid", "fn_name", "x_min", "x_max", "predicted_value", "std_error"]
    elif isinstance(request, (Point, Derivative)):
        columns = ["uid", "fn_name", "x_new", "predicted_value", "std_error"]
    else:
        raise InferenceRequestError(f"Unknown request type {type(request).__name__}.")

    rows: List[Dict[str, Any]] = []
    errors: Dict[Any, str] = {}
    no_se: List[Any] = []
    for rec in recs:
        try:
            new_rows = _rows_for(rec, request, compiled, policy)
        except InferenceRequestError as exc:
            errors[rec.uid] = str(exc)
            continue
        if rec.covariance() is None:
            no_se.append(rec.uid)
        rows.extend(new_rows)

    if errors:
        warnings.warn(
            f"Dropped {len(errors)} group(s) from the result: "
            + "; ".join(f"{u!r}: {m}" for u, m in errors.items()),
            UserWarning,
            stacklevel=2,
        )
    if no_se:
        warnings.warn(
            f"Covariance unavailable for group(s) {no_se}; std_error is missing.",
            UserWarning,
            stacklevel=2,
        )

    df = pd.DataFrame(rows, columns=columns)
    if metadata:
        df = _metadata_frame(df, recs)
    df.attrs["errors"] = errors
    return df


def _rows_for(
    rec: FitRecord,
    request: Request,
    compiled: Optional[CompiledFormula],
    policy: NumericPolicy,
) -> List[Dict[str, Any]]:
    base = {"uid": rec.uid, "fn_name": rec.fn_name}
    if isinstance(request, Point):
        x = _as_x(request.x)
        value, se = point_estimate(rec, x, request.se_interval, policy=policy)
        return [
            {**base, "x_new": float(xi), "predicted_value": float(v), "std_error": float(s)}
            for xi, v, s in zip(x, value, se)
        ]
    if isinstance(request, Derivative):
        x = _as_x(request.x)
        value, se = derivative_estimate(rec, x, request.order, policy=policy)
        return [
            {**base, "x_new": float(xi), "predicted_value": float(v), "std_error": float(s)}
            for xi, v, s in zip(x, value, se)
        ]
    if isinstance(request, AUC):
        lo, hi = auc_interval(rec, request.x_lo, request.x_hi)
        value, se = auc_estimate(rec, lo, hi, request.n_points, policy=policy)
        return [{**base, "x_min": lo, "x_max": hi, "predicted_value": value, "std_error": se}]
    value, se = formula_estimate(rec, compiled, policy=policy)
    return [{**base, "formula": compiled.text, "predicted_value": value, "std_error": se}]


PREDICTION_TYPES = ("point", "fd", "sd", "auc", "formula")


def predict(
    records: Any,
    x: Any = None,
    uids: Optional[Iterable[Any]] = None,
    type: str = "point",
    se_interval: str = "confidence",
    n_points: Optional[int] = None,
    formula: Any = None,
    metadata: bool = False,
    policy: Optional[NumericPolicy] = None,
) -> pd.DataFrame:
    """Predictions with delta-method standard errors.

    type:
        ``"point"`` curve value, ``"fd"``/``"sd"`` first/second derivative,
        ``"auc"`` area under the curve over ``x = (x_lo, x_hi)`` (group range
        when omitted), ``"formula"`` a function of the parameters. Passing
        ``formula`` implies ``type="formula"``.
    """
    if formula is not None:
        type = "formula"
    if type not in PREDICTION_TYPES:
        raise InferenceRequestError(
            f"type must be one of {PREDICTION_TYPES}, got {type!r}."
        )

    request: Request
    if type == "point":
        request = Point(x=_as_x(x), se_interval=se_interval)
    elif type in ("fd", "sd"):
        request = Derivative(x=_as_x(x), order=1 if type == "fd" else 2)
    elif type == "auc":
        if x is None:
            request = AUC(n_points=n_points)
        else:
            bounds = _as_x(x)
            if bounds.size != 2:
                raise InferenceRequestError("x must hold (x_lo, x_hi) for AUC.")
            request = AUC(x_lo=float(bounds[0]), x_hi=float(bounds[1]), n_points=n_points)
    else:
        if formula is None:
            raise InferenceRequestError("formula is required for this type of prediction.")
        request = Formula(formula)
    return infer(records, request, uids, policy=policy, metadata=metadata)


# ---- tangent and inverse prediction --------------------------------------------


def _x_for_group(x: Any, uid: Any) -> np.ndarray:
    if isinstance(x, pd.DataFrame):
        if not {"uid", "x"}.issubset(x.columns):
            raise InferenceRequestError("x table must have 'uid' and 'x' columns.")
        vals = x.loc[x["uid"] == uid, "x"].to_numpy(dtype=float)
        if vals.size == 0:
            raise InferenceRequestError(f"uid {uid!r} not found in x table.")
        return vals
    if isinstance(x, Mapping):
        if uid not in x:
            raise InferenceRequestError(f"uid {uid!r} not found in x mapping.")
        return _as_x(x[uid])
    return _as_x(x)


def compute_tangent(
    records: Any,
    x: Any,
    uids: Optional[Iterable[Any]] = None,
    policy: Optional[NumericPolicy] = None,
) -> pd.DataFrame:
    """Tangent line of each fitted curve at x: y, slope and intercept.

    ``x`` is shared by all groups, or per group as a mapping uid -> x or a
    DataFrame with ``uid`` and ``x`` columns.
    """
    if x is None:
        raise InferenceRequestError("x is required for the tangent line.")
    rows = []
    for rec in select_records(records, uids):
        xs = _x_for_group(x, rec.uid)
        y = np.broadcast_to(rec.evaluate(xs), xs.shape)

        def f(t: np.ndarray, rec: FitRecord = rec) -> np.ndarray:
            return np.broadcast_to(rec.evaluate(t), np.shape(t))

        slope = richardson_derivative(f, xs, order=1, policy=policy)
        for xi, yi, si in zip(xs, y, slope):
            rows.append(
                {
                    "uid": rec.uid,
                    "fn_name": rec.fn_name,
                    "x": float(xi),
                    "y": float(yi),
                    "slope": float(si),
                    "intercept": float(yi - si * xi),
                }
            )
    return pd.DataFrame(rows, columns=["uid", "fn_name", "x", "y", "slope", "intercept"])


def inverse_predict(
    records: Any,
    y: float,
    uids: Optional[Iterable[Any]] = None,
    interval: Optional[Tuple[float, float]] = None,
    tol: float = 1e-6,
) -> pd.DataFrame:
    """x at which each fitted curve reaches ``y`` (Brent's method).

    Searches ``interval`` (default: each group's observed x range). Groups
    without a sign change of f(x) - y get NaN and a warning.
    """
    try:
        y = float(y)
    except (TypeError, ValueError) as exc:
        raise InferenceRequestError("y must be a single number.") from exc

    rows = []
    for rec in select_records(records, uids):
        lo, hi = rec.domain if interval is None else (float(interval[0]), float(interval[1]))

        def root_fun(t: float, rec: FitRecord = rec) -> float:
            return float(np.asarray(rec.evaluate(t)).reshape(-1)[0]) - y

        try:
            root = brentq(root_fun, lo, hi, xtol=tol)
        except ValueError as exc:
            warnings.warn(
                f"Root not found for group {rec.uid!r}: {exc}", UserWarning, stacklevel=2
            )
            root = float("nan")
        y_at = float("nan") if np.isnan(root) else root_fun(root) + y
        rows.append(
            {
                "uid": rec.uid,
                "fn_name": rec.fn_name,
                "lower": lo,
                "upper": hi,
                "y": y_at,
                "x": float(root),
            }
        )
    return pd.DataFrame(rows, columns=["uid", "fn_name", "lower", "upper", "y", "x"])
