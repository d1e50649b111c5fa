from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .config import FitOptions, NumericPolicy
from .record import FitRecord
from .registry import Curve
from .util import FrozenMap, sorted_uids


@dataclass(frozen=True)
class GroupFailure:
    """A group that produced no record, with the reason and the attempt log."""

    uid: Any
    error_type: str
    message: str
    attempts: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class Run:
    """Result of fitting one curve to many groups.

    Behaves like a read-only mapping uid -> FitRecord over the groups that
    were fitted; failed groups are listed in ``failures``.
    """

    curve: Curve
    records: Mapping[Any, FitRecord]
    failures: Mapping[Any, GroupFailure] = field(default_factory=dict)
    attempts: Mapping[Any, Tuple[Any, ...]] = field(default_factory=dict)
    options: FitOptions = field(default_factory=FitOptions)
    elapsed: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "records", FrozenMap(self.records))
        object.__setattr__(self, "failures", FrozenMap(self.failures))
        object.__setattr__(
            self, "attempts", FrozenMap((k, tuple(v)) for k, v in self.attempts.items())
        )

    # ---- mapping sugar ---------------------------------------------------------

    def __getitem__(self, uid: Any) -> FitRecord:
        return self.records[uid]

    def __contains__(self, uid: object) -> bool:
        return uid in self.records

    def __iter__(self) -> Iterator[Any]:
        return iter(self.uids)

    def __len__(self) -> int:
        return len(self.records)

    @property
    def uids(self) -> List[Any]:
        """Fitted group ids, sorted."""
        return sorted_uids(self.records)

    @property
    def fn_name(self) -> str:
        return self.curve.name

    @property
    def success(self) -> bool:
        """True when every group was fitted."""
        return not self.failures

    # ---- tables ------------------------------------------------------------------

    def metrics(self) -> pd.DataFrame:
        """One row per (uid, solver) attempt."""
        rows = []
        for uid in sorted_uids(self.attempts):
            rec = self.records.get(uid)
            for a in self.attempts[uid]:
                rows.append(
                    {
                        "uid": uid,
                        "solver": a.solver,
                        "objective_value": a.objective_value,
                        "converged": a.converged,
                        "iterations": a.iterations,
                        "n_evals": a.n_evals,
                        "elapsed": a.elapsed,
                        "selected": rec is not None and a.solver == rec.solver_used,
                        "error": a.error,
                    }
                )
        return pd.DataFrame(
            rows,
            columns=[
                "uid",
                "solver",
                "objective_value",
                "converged",
                "iterations",
                "n_evals",
                "elapsed",
                "selected",
                "error",
            ],
        )

    def params(self, metadata: bool = True) -> pd.DataFrame:
        """One row per fitted group: parameter values and fit statistics."""
        rows = []
        for uid in self.uids:
            rec = self.records[uid]
            row: Dict[str, Any] = {"uid": uid, "fn_name": rec.fn_name}
            if metadata:
                row.update(rec.metadata)
            row.update(rec.params)
            row.update(
                {
                    "sse": rec.sse,
                    "n": rec.n,
                    "p": rec.p,
                    "solver": rec.solver_used,
                    "converged": rec.converged,
                }
            )
            rows.append(row)
        return pd.DataFrame(rows)

    def fitted(self) -> pd.DataFrame:
        """Observed data with fitted values and residuals, long format."""
        frames = []
        for uid in self.uids:
            rec = self.records[uid]
            yhat = rec.fitted()
            frames.append(
                pd.DataFrame(
                    {
                        "uid": uid,
                        "x": rec.x,
                        "y": rec.y,
                        ".fitted": yhat,
                        ".residual": rec.y - yhat,
                    }
                )
            )
        if not frames:
            return pd.DataFrame(columns=["uid", "x", "y", ".fitted", ".residual"])
        return pd.concat(frames, ignore_index=True)

    def coef(self, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
        from .coefficients import coef_table

        return coef_table(self, uids)

    def vcov(self, uids: Optional[Iterable[Any]] = None) -> Dict[Any, Optional[pd.DataFrame]]:
        from .coefficients import vcov_tables

        return vcov_tables(self, uids)

    def confint(
        self,
        level: float = 0.95,
        params: Optional[Sequence[str]] = None,
        uids: Optional[Iterable[Any]] = None,
    ) -> pd.DataFrame:
        from .coefficients import confint_table

        return confint_table(self, level=level, params=params, uids=uids)

    # ---- inference -----------------------------------------------------------------

    def predict(
        self,
        x: Any = None,
        uids: Optional[Iterable[Any]] = None,
        type: str = "point",
        se_interval: str = "confidence",
        n_points: Optional[int] = None,
        formula: Any = None,
        metadata: bool = False,
        policy: Optional[NumericPolicy] = None,
    ) -> pd.DataFrame:
        """Delta-method predictions; see ``grouped_fitting.inference.predict``."""
        from .inference import predict

        return predict(
            self,
            x=x,
            uids=uids,
            type=type,
            se_interval=se_interval,
            n_points=n_points,
            formula=formula,
            metadata=metadata,
            policy=policy,
        )

    def compute_tangent(self, x: Any, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
        from .inference import compute_tangent

        return compute_tangent(self, x, uids)

    def inverse_predict(
        self,
        y: float,
        uids: Optional[Iterable[Any]] = None,
        interval: Optional[Tuple[float, float]] = None,
        tol: float = 1e-6,
    ) -> pd.DataFrame:
        from .inference import inverse_predict

        return inverse_predict(self, y, uids=uids, interval=interval, tol=tol)

    # ---- diagnostics and comparison --------------------------------------------------

    def augment(self, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
        from .diagnostics import augment

        return augment(self, uids)

    def goodness_of_fit(self, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
        from .metrics import goodness_of_fit

        return goodness_of_fit(self, uids)

    def loglik(self, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
        from .comparison import loglik

        return loglik(self, uids)

    def aic(self, k: float = 2.0, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
        from .comparison import aic

        return aic(self, k=k, uids=uids)

    def bic(self, uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
        from .comparison import bic

        return bic(self, uids)

    def anova(self, full: "Run", uids: Optional[Iterable[Any]] = None) -> pd.DataFrame:
        """F test of this (reduced) run against a run with more parameters."""
        from .comparison import anova

        return anova(self, full, uids)

    # ---- derived runs ---------------------------------------------------------------

    def subset(self, uids: Iterable[Any]) -> "Run":
        """A run restricted to ``uids`` (fitted or failed)."""
        if isinstance(uids, (str, bytes)) or not isinstance(uids, Iterable):
            uids = [uids]
        keep = list(uids)
        unknown = [u for u in keep if u not in self.records and u not in self.failures]
        if unknown:
            raise KeyError(f"ids not found in run: {unknown}")
        return Run(
            curve=self.curve,
            records={u: self.records[u] for u in keep if u in self.records},
            failures={u: self.failures[u] for u in keep if u in self.failures},
            attempts={u: self.attempts[u] for u in keep if u in self.attempts},
            options=self.options,
            elapsed=self.elapsed,
        )

    @classmethod
    def concat(cls, *runs: "Run") -> "Run":
        """Combine runs of the same curve over disjoint groups."""
        if not runs:
            raise ValueError("concat() needs at least one run.")
        names = {r.curve.name for r in runs}
        if len(names) != 1:
            raise ValueError(f"Cannot combine runs of different curves: {sorted(names)}.")
        records: Dict[Any, FitRecord] = {}
        failures: Dict[Any, GroupFailure] = {}
        attempts: Dict[Any, Tuple[Any, ...]] = {}
        for r in runs:
            overlap = (set(r.records) | set(r.failures)) & (set(records) | set(failures))
            if overlap:
                raise ValueError(f"Duplicate group ids across runs: {sorted_uids(overlap)}.")
            records.update(r.records)
            failures.update(r.failures)
            attempts.update(r.attempts)
        return cls(
            curve=runs[0].curve,
            records=records,
            failures=failures,
            attempts=attempts,
            options=runs[0].options,
            elapsed=float(sum(r.elapsed for r in runs)),
        )

    def update(
        self,
        solvers: Optional[Sequence[str]] = None,
        options: Optional[FitOptions] = None,
        **overrides: Any,
    ) -> "Run":
        """Refit every fitted group starting from its current estimates."""
        from .scheduler import refit

        return refit(self, solvers=solvers, options=options, **overrides)

    def summary(self, digits: int = 4) -> str:
        """Return a compact text summary."""
        lines = [
            f"Run: curve={self.fn_name} groups={len(self.records) + len(self.failures)} "
            f"fitted={len(self.records)} failed={len(self.failures)} "
            f"elapsed={self.elapsed:.2f}s"
        ]
        for uid in self.uids:
            lines.append(self.records[uid].summary(digits=digits))
        for uid in sorted_uids(self.failures):
            f = self.failures[uid]
            lines.append(f"uid={uid!r} FAILED ({f.error_type}): {f.message}")
        return "\n".join(lines)
