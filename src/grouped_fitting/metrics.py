"""Goodness-of-fit metrics per group."""

from __future__ import annotations

from typing import Any, Iterable, Optional

import numpy as np
import pandas as pd

from .inference import select_records


def sse(y: np.ndarray, yhat: np.ndarray) -> float:
    return float(np.sum((np.asarray(y) - np.asarray(yhat)) ** 2))


def mae(y: np.ndarray, yhat: np.ndarray) -> float:
    return float(np.mean(np.abs(np.asarray(y) - np.asarray(yhat))))


def mse(y: np.ndarray, yhat: np.ndarray) -> float:
    return float(np.mean((np.asarray(y) - np.asarray(yhat)) ** 2))


def rmse(y: np.ndarray, yhat: np.ndarray) -> float:
    return float(np.sqrt(mse(y, yhat)))


def r_squared(y: np.ndarray, yhat: np.ndarray) -> float:
    """1 - RSS/TSS; NaN when y is constant."""
    y = np.asarray(y, dtype=float)
    tss = float(np.sum((y - np.mean(y)) ** 2))
    if tss == 0.0:
        return float("nan")
    return 1.0 - sse(y, yhat) / tss


def goodness_of_fit(records: Any, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
    """SSE, MAE, MSE, RMSE and R² per fitted group."""
    rows = []
    for rec in select_records(records, uids):
        yhat = rec.fitted()
        rows.append(
            {
                "uid": rec.uid,
                "fn_name": rec.fn_name,
                "n": rec.n,
                "sse": sse(rec.y, yhat),
                "mae": mae(rec.y, yhat),
                "mse": mse(rec.y, yhat),
                "rmse": rmse(rec.y, yhat),
                "r2": r_squared(rec.y, yhat),
            }
        )
    return pd.DataFrame(
        rows, columns=["uid", "fn_name", "n", "sse", "mae", "mse", "rmse", "r2"]
    )
