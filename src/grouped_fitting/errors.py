"""Exception hierarchy.

Configuration errors are raised before any fitting starts. Group fit errors
are captured per group and never abort a batch. Inference request errors
reject a single request.
"""

from __future__ import annotations

from typing import Any, Sequence


class GroupedFittingError(Exception):
    """Base class for all errors raised by grouped_fitting."""


class ConfigurationError(GroupedFittingError, ValueError):
    """Invalid call configuration, detected before any solver runs."""


class UnknownCurveError(ConfigurationError, KeyError):
    """A curve name that is not present in the registry."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class UnknownSolverError(ConfigurationError, KeyError):
    """A solver id that is not present in the solver registry."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class CurveSignatureError(ConfigurationError):
    """Parameter names that do not match the curve signature."""


class IncompleteParameterCoverageError(ConfigurationError):
    """A per-group parameter table lacks rows for requested groups."""

    def __init__(self, message: str, missing: Sequence[Any] = ()) -> None:
        super().__init__(message)
        self.missing = tuple(missing)


class GroupFitError(GroupedFittingError):
    """A single group could not be fitted."""


class InsufficientDataError(GroupFitError):
    """Fewer observations than free parameters."""


class AllSolversFailedError(GroupFitError):
    """Every configured solver failed or returned a non-finite objective."""

    def __init__(self, message: str, attempts: Sequence[Any] = ()) -> None:
        super().__init__(message)
        self.attempts = tuple(attempts)


class InferenceRequestError(GroupedFittingError, ValueError):
    """A functional request that cannot be evaluated as asked."""
