"""grouped_fitting public API."""
import logging

from . import models
from .backends import AVAILABLE_SOLVERS, get_solver, list_solvers
from .comparison import aic, anova, bic, loglik
from .config import DEFAULT_NUMERIC_POLICY, FitOptions, GroupProgress, NumericPolicy
from .data import ObservationGroup, groups_from_frame
from .diagnostics import augment
from .errors import (
    AllSolversFailedError,
    ConfigurationError,
    CurveSignatureError,
    GroupedFittingError,
    GroupFitError,
    IncompleteParameterCoverageError,
    InferenceRequestError,
    InsufficientDataError,
    UnknownCurveError,
    UnknownSolverError,
)
from .fitting import FitAttempt, fit, select_best
from .inference import (
    AUC,
    Derivative,
    Formula,
    Point,
    compute_tangent,
    delta_method,
    infer,
    inverse_predict,
    predict,
)
from .metrics import goodness_of_fit
from .model import modeler
from .record import FitRecord
from .registry import Curve, CurveRegistry, get_curve, list_curves, register_curve
from .run import GroupFailure, Run
from .scheduler import fit_all, refit

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "AUC",
    "AVAILABLE_SOLVERS",
    "AllSolversFailedError",
    "ConfigurationError",
    "Curve",
    "CurveRegistry",
    "CurveSignatureError",
    "DEFAULT_NUMERIC_POLICY",
    "Derivative",
    "FitAttempt",
    "FitOptions",
    "FitRecord",
    "Formula",
    "GroupFailure",
    "GroupFitError",
    "GroupProgress",
    "GroupedFittingError",
    "IncompleteParameterCoverageError",
    "InferenceRequestError",
    "InsufficientDataError",
    "NumericPolicy",
    "ObservationGroup",
    "Point",
    "Run",
    "UnknownCurveError",
    "UnknownSolverError",
    "aic",
    "anova",
    "augment",
    "bic",
    "compute_tangent",
    "delta_method",
    "fit",
    "fit_all",
    "get_curve",
    "get_solver",
    "goodness_of_fit",
    "groups_from_frame",
    "infer",
    "inverse_predict",
    "list_curves",
    "list_solvers",
    "loglik",
    "models",
    "modeler",
    "predict",
    "refit",
    "register_curve",
    "select_best",
]
