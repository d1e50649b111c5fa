"""Coefficient tables: estimates, standard errors, t tests, covariances, intervals."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from .inference import select_records


def coef_table(records: Any, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
    """One row per (uid, free parameter) with a Student t test of zero."""
    rows = []
    for rec in select_records(records, uids):
        se = rec.std_errors()
        for name, value in rec.estimates.items():
            s = se[name]
            t_value = value / s if np.isfinite(s) and s > 0 else float("nan")
            p_value = (
                float(2.0 * stats.t.sf(abs(t_value), rec.df))
                if np.isfinite(t_value) and rec.df > 0
                else float("nan")
            )
            rows.append(
                {
                    "uid": rec.uid,
                    "fn_name": rec.fn_name,
                    "parameter": name,
                    "estimate": value,
                    "std_error": s,
                    "t_value": t_value,
                    "p_value": p_value,
                }
            )
    return pd.DataFrame(
        rows,
        columns=["uid", "fn_name", "parameter", "estimate", "std_error", "t_value", "p_value"],
    )


def vcov_tables(
    records: Any, uids: Optional[Iterable[Any]] = None
) -> Dict[Any, Optional[pd.DataFrame]]:
    """uid -> free-parameter covariance as a labelled DataFrame (None if unavailable)."""
    out: Dict[Any, Optional[pd.DataFrame]] = {}
    for rec in select_records(records, uids):
        cov = rec.covariance()
        names = list(rec.free_names)
        out[rec.uid] = None if cov is None else pd.DataFrame(cov, index=names, columns=names)
    return out


def confint_table(
    records: Any,
    level: float = 0.95,
    params: Optional[Sequence[str]] = None,
    uids: Optional[Iterable[Any]] = None,
) -> pd.DataFrame:
    """t-based confidence intervals for the free parameters."""
    level = float(level)
    if not 0.0 < level < 1.0:
        raise ValueError(f"level must be in (0, 1), got {level!r}.")
    coefs = coef_table(records, uids)
    if params is not None:
        params = [params] if isinstance(params, str) else list(params)
        unknown = sorted(set(params) - set(coefs["parameter"]))
        if unknown:
            raise ValueError(f"Unknown parameters {unknown}.")
        coefs = coefs[coefs["parameter"].isin(params)]

    dfs = {rec.uid: rec.df for rec in select_records(records, uids)}
    q = np.array(
        [
            stats.t.ppf(1.0 - (1.0 - level) / 2.0, dfs[u]) if dfs[u] > 0 else np.nan
            for u in coefs["uid"]
        ],
        dtype=float,
    )
    out = coefs[["uid", "fn_name", "parameter", "estimate", "std_error"]].copy()
    out["lower"] = out["estimate"].to_numpy() - q * out["std_error"].to_numpy()
    out["upper"] = out["estimate"].to_numpy() + q * out["std_error"].to_numpy()
    return out.reset_index(drop=True)
