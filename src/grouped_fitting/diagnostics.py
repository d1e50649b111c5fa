"""Per-observation diagnostics: fitted values, residuals, leverage and influence."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

import numpy as np
import pandas as pd

from .config import DEFAULT_NUMERIC_POLICY, NumericPolicy
from .inference import _metadata_frame, select_records
from .numdiff import numeric_jacobian
from .record import FitRecord

logger = logging.getLogger(__name__)

AUGMENT_COLUMNS = [
    "uid",
    "fn_name",
    "x",
    "y",
    ".fitted",
    ".resid",
    ".hat",
    ".cooksd",
    ".std.resid",
    ".stud.resid",
]


def leverage(record: FitRecord, *, policy: Optional[NumericPolicy] = None) -> np.ndarray:
    """Diagonal of J (JᵀJ)⁻¹ Jᵀ, J the Jacobian of the fitted values.

    Returns NaN everywhere when JᵀJ cannot be inverted.
    """
    policy = policy or DEFAULT_NUMERIC_POLICY

    def fitted_at(theta: np.ndarray) -> np.ndarray:
        return np.broadcast_to(record.evaluate(record.x, theta), record.y.shape)

    jac = numeric_jacobian(fitted_at, record.theta, policy=policy)
    if not np.all(np.isfinite(jac)):
        return np.full(record.n, np.nan)
    try:
        jtj_inv = np.linalg.inv(jac.T @ jac)
    except np.linalg.LinAlgError:
        logger.debug("Singular JᵀJ for group %r; leverage unavailable", record.uid)
        return np.full(record.n, np.nan)
    return np.einsum("ij,jk,ik->i", jac, jtj_inv, jac)


def _finite_or_nan(a: np.ndarray) -> np.ndarray:
    a = np.asarray(a, dtype=float)
    return np.where(np.isfinite(a), a, np.nan)


def influence_frame(record: FitRecord, *, policy: Optional[NumericPolicy] = None) -> pd.DataFrame:
    fitted = record.fitted()
    resid = record.y - fitted
    sigma = np.sqrt(record.residual_variance)
    hat = leverage(record, policy=policy)
    with np.errstate(divide="ignore", invalid="ignore"):
        std_resid = resid / sigma
        stud_resid = resid / (sigma * np.sqrt(1.0 - hat))
        cooksd = (resid**2 / (record.p * sigma**2)) * (hat / (1.0 - hat) ** 2)
    return pd.DataFrame(
        {
            "uid": [record.uid] * record.n,
            "fn_name": record.fn_name,
            "x": record.x,
            "y": record.y,
            ".fitted": fitted,
            ".resid": resid,
            ".hat": hat,
            ".cooksd": _finite_or_nan(cooksd),
            ".std.resid": _finite_or_nan(std_resid),
            ".stud.resid": _finite_or_nan(stud_resid),
        },
        columns=AUGMENT_COLUMNS,
    )


def augment(
    records: Any,
    uids: Optional[Iterable[Any]] = None,
    *,
    metadata: bool = True,
    policy: Optional[NumericPolicy] = None,
) -> pd.DataFrame:
    """Observation-level table with leverage, Cook's distance and scaled residuals."""
    recs = select_records(records, uids)
    frames = [influence_frame(rec, policy=policy) for rec in recs]
    if not frames:
        return pd.DataFrame(columns=AUGMENT_COLUMNS)
    out = pd.concat(frames, ignore_index=True)
    if metadata:
        out = _metadata_frame(out, recs)
    return out
