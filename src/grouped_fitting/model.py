"""Fit a curve to every group of a long table in one call."""

from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence, Union

import pandas as pd

from .config import FitOptions
from .data import groups_from_frame
from .errors import ConfigurationError
from .inputs import merge_specs, parameter_spec
from .registry import CurveLike
from .run import Run
from .scheduler import fit_all


def modeler(
    data: pd.DataFrame,
    x: str,
    y: str,
    grp: Union[str, Sequence[str], None] = None,
    keep: Union[str, Sequence[str], None] = None,
    fn: CurveLike = "linear_plateau",
    parameters: Any = None,
    lower: Any = None,
    upper: Any = None,
    initial_vals: Any = None,
    fixed_params: Any = None,
    subset: Optional[Iterable[Any]] = None,
    options: Optional[FitOptions] = None,
    **option_overrides: Any,
) -> Run:
    """Group ``data`` by ``grp`` and fit ``fn`` to every group.

    ``parameters`` holds initial values shared by all groups; ``initial_vals``
    (per-uid mapping or DataFrame with a ``uid`` column) overrides them group
    by group. Missing initial values fall back to the curve's defaults.
    ``subset`` restricts fitting to the listed uids.

    >>> run = modeler(df, x="time", y="canopy", grp="plot", fn="linear_plateau")
    >>> run.coef()
    """
    groups = groups_from_frame(data, x=x, y=y, grp=grp, keep=keep)
    if subset is not None:
        if isinstance(subset, (str, bytes)) or not isinstance(subset, Iterable):
            subset = [subset]
        wanted = list(subset)
        known = {g.uid for g in groups}
        unknown = [u for u in wanted if u not in known]
        if unknown:
            raise ConfigurationError(f"ids not found in data: {unknown}.")
        groups = [g for g in groups if g.uid in wanted]

    uids = [g.uid for g in groups]
    initial = merge_specs(
        parameter_spec(parameters, label="parameters"),
        parameter_spec(initial_vals, label="initial_vals"),
        uids,
    )
    return fit_all(
        groups,
        fn,
        initial_values=None if initial.is_empty else initial,
        fixed_params=fixed_params,
        bounds=(lower, upper),
        options=options,
        **option_overrides,
    )
