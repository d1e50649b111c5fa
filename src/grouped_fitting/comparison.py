"""Likelihood-based model comparison: log-likelihood, AIC, BIC and F tests."""

from __future__ import annotations

from typing import Any, Iterable, Optional

import numpy as np
import pandas as pd
from scipy import stats

from .errors import ConfigurationError
from .inference import select_records


def gaussian_loglik(sse: float, n: int) -> float:
    """Profile Gaussian log-likelihood of a least-squares fit."""
    if n <= 0 or not sse > 0.0:
        return float("nan")
    return 0.5 * (-n * (np.log(2.0 * np.pi) + 1.0 - np.log(n) + np.log(sse)))


def loglik(records: Any, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
    """Columns uid, loglik, df (= p + 1 for the error variance), nobs, p."""
    rows = [
        {
            "uid": rec.uid,
            "loglik": gaussian_loglik(rec.sse, rec.n),
            "df": rec.p + 1,
            "nobs": rec.n,
            "p": rec.p,
        }
        for rec in select_records(records, uids)
    ]
    return pd.DataFrame(rows, columns=["uid", "loglik", "df", "nobs", "p"])


def aic(records: Any, k: float = 2.0, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
    out = loglik(records, uids)
    out["aic"] = k * out["df"] - 2.0 * out["loglik"]
    return out


def bic(records: Any, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
    out = loglik(records, uids)
    out["bic"] = np.log(out["nobs"].astype(float)) * out["df"] - 2.0 * out["loglik"]
    return out


def _significance(p_value: float) -> str:
    if not np.isfinite(p_value):
        return ""
    if p_value < 0.001:
        return "***"
    if p_value < 0.01:
        return "**"
    if p_value < 0.05:
        return "*"
    return "ns"


def anova(reduced: Any, full: Any, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
    """Extra sum-of-squares F test of a reduced fit against a fuller one, per group.

    Both fits must cover the same groups with identical data, and the reduced
    fit must have fewer free parameters in every group.
    """
    red = {rec.uid: rec for rec in select_records(reduced, uids)}
    ful = {rec.uid: rec for rec in select_records(full, uids)}
    if set(red) != set(ful):
        raise ConfigurationError("The fits do not cover the same groups.")

    rows = []
    for uid, rf in ful.items():
        rr = red[uid]
        if rr.x.shape != rf.x.shape or not (
            np.array_equal(rr.x, rf.x) and np.array_equal(rr.y, rf.y)
        ):
            raise ConfigurationError(f"The fits for group {uid!r} use different data.")
        if rr.p >= rf.p:
            raise ConfigurationError(
                f"The reduced fit must have fewer parameters than the full fit (group {uid!r})."
            )
        df1 = rf.p - rr.p
        df2 = rf.n - rf.p
        if df2 > 0 and rf.sse > 0.0:
            f_stat = ((rr.sse - rf.sse) / df1) / (rf.sse / df2)
            p_value = float(stats.f.sf(f_stat, df1, df2))
        else:
            f_stat = float("nan")
            p_value = float("nan")
        rows.append(
            {
                "uid": uid,
                "rss_reduced": rr.sse,
                "rss_full": rf.sse,
                "n": rf.n,
                "df1": df1,
                "df2": df2,
                "F": f_stat,
                "p_value": p_value,
                "signif": _significance(p_value),
            }
        )
    return pd.DataFrame(
        rows,
        columns=["uid", "rss_reduced", "rss_full", "n", "df1", "df2", "F", "p_value", "signif"],
    )
