from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .errors import ConfigurationError
from .util import FrozenMap, readonly


@dataclass(frozen=True)
class ObservationGroup:
    """One group's (x, y) series plus retained metadata.

    ``y`` must be free of missing values; ``groups_from_frame`` drops rows
    with missing ``y`` before building groups.
    """

    uid: Any
    x: np.ndarray
    y: np.ndarray
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        try:
            x = np.asarray(self.x, dtype=float).reshape(-1)
            y = np.asarray(self.y, dtype=float).reshape(-1)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Group {self.uid!r}: x and y must be numeric."
            ) from exc
        if x.shape != y.shape:
            raise ConfigurationError(
                f"Group {self.uid!r}: x has {x.size} values but y has {y.size}."
            )
        if np.any(np.isnan(y)):
            raise ConfigurationError(f"Group {self.uid!r}: y contains missing values.")
        if not np.all(np.isfinite(x)):
            raise ConfigurationError(f"Group {self.uid!r}: x must be finite.")
        object.__setattr__(self, "x", readonly(x))
        object.__setattr__(self, "y", readonly(y))
        object.__setattr__(self, "metadata", FrozenMap(self.metadata or {}))

    @staticmethod
    def from_arrays(
        uid: Any, x: Any, y: Any, meta: Optional[Mapping[str, Any]] = None
    ) -> "ObservationGroup":
        """Create a group, dropping pairs whose y is missing."""
        x = np.asarray(x, dtype=float).reshape(-1)
        y = np.asarray(y, dtype=float).reshape(-1)
        if x.shape == y.shape:
            keep = ~np.isnan(y)
            x, y = x[keep], y[keep]
        return ObservationGroup(uid=uid, x=x, y=y, metadata=dict(meta or {}))

    @property
    def n(self) -> int:
        return int(self.y.size)

    @property
    def domain(self) -> tuple:
        """Observed (min x, max x)."""
        return (float(np.min(self.x)), float(np.max(self.x)))


GroupsLike = Union[
    Sequence[ObservationGroup],
    Mapping[Any, ObservationGroup],
    Mapping[Any, Sequence[Any]],
]


def as_groups(groups: GroupsLike) -> List[ObservationGroup]:
    """Normalize the accepted group containers into a list of ObservationGroup.

    Accepts a sequence of groups, a mapping uid -> group, or a mapping
    uid -> (x, y). Duplicate uids are a configuration error.
    """
    out: List[ObservationGroup] = []
    if isinstance(groups, ObservationGroup):
        out = [groups]
    elif isinstance(groups, Mapping):
        for uid, g in groups.items():
            if isinstance(g, ObservationGroup):
                if g.uid != uid:
                    g = replace(g, uid=uid)
                out.append(g)
            else:
                try:
                    x, y = g
                except (TypeError, ValueError) as exc:
                    raise ConfigurationError(
                        f"Group {uid!r} must be an ObservationGroup or an (x, y) pair."
                    ) from exc
                out.append(ObservationGroup.from_arrays(uid, x, y))
    else:
        for g in groups:
            if not isinstance(g, ObservationGroup):
                raise ConfigurationError(
                    f"Expected ObservationGroup, got {type(g).__name__}."
                )
            out.append(g)

    seen = set()
    for g in out:
        if g.uid in seen:
            raise ConfigurationError(f"Duplicate group id {g.uid!r}.")
        seen.add(g.uid)
    return out


def groups_from_frame(
    data: pd.DataFrame,
    x: str,
    y: str,
    grp: Union[str, Sequence[str], None] = None,
    keep: Union[str, Sequence[str], None] = None,
) -> List[ObservationGroup]:
    """Split a long table into observation groups.

    Rows with missing ``y`` are dropped. Without ``grp`` all rows form one
    group with uid 1. A single ``grp`` column supplies the uids directly;
    several columns are combined into one uid per distinct combination
    (numbered 1..G in order of appearance). ``grp`` and ``keep`` columns are
    retained as metadata (first value per group).
    """
    if not isinstance(data, pd.DataFrame):
        raise ConfigurationError("data must be a pandas DataFrame.")
    grp_cols = _as_columns(grp)
    keep_cols = _as_columns(keep)
    for col in [x, y, *grp_cols, *keep_cols]:
        if col not in data.columns:
            raise ConfigurationError(f"Column {col!r} not found in data.")
    for col in (x, y):
        if not pd.api.types.is_numeric_dtype(data[col]):
            raise ConfigurationError(f"Column {col!r} must be numeric.")

    df = data.loc[data[y].notna()]
    if df.empty:
        raise ConfigurationError(f"No rows with non-missing {y!r}.")

    if len(grp_cols) == 1:
        codes = df[grp_cols[0]]
    elif grp_cols:
        codes = df.groupby(grp_cols, sort=False).ngroup() + 1
    else:
        codes = pd.Series(1, index=df.index)

    out: List[ObservationGroup] = []
    meta_cols = list(dict.fromkeys([*grp_cols, *keep_cols]))
    for uid, sub in df.groupby(codes, sort=True):
        meta: Dict[str, Any] = {}
        for col in meta_cols:
            meta[col] = sub[col].iloc[0]
        out.append(
            ObservationGroup(
                uid=uid.item() if isinstance(uid, np.generic) else uid,
                x=sub[x].to_numpy(dtype=float),
                y=sub[y].to_numpy(dtype=float),
                metadata=meta,
            )
        )
    return out


def _as_columns(cols: Union[str, Iterable[str], None]) -> List[str]:
    if cols is None:
        return []
    if isinstance(cols, str):
        return [cols]
    return list(cols)
