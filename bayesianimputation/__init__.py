"""
Bayesian Imputation - Post-Estimation for Bayesian Joint Models.

This package provides the post-estimation tooling for joint models fitted
by MCMC, in which every incomplete variable has its own conditional model
(generalized linear, cumulative logit, multinomial logit, parametric
survival or proportional hazards model). Given the MCMC sample and a
description of the outcome models, it computes posterior summaries,
coefficient tables, credible intervals, predictions, fitted values and
residuals.

The main class is `BayesianJointModel`, which wraps a `FittedModel`.

Example
-------
>>> from bayesianimputation import BayesianJointModel, ModelSpec
>>>
>>> jm = BayesianJointModel.from_inference_data(
...     idata,
...     outcomes=[ModelSpec("y", "glm", "y ~ x + C(group)", family="gaussian")],
...     data=df,
...     coef_index={"y": [("beta[1]", "Intercept"), ("beta[2]", "C(group)[T.b]"),
...                       ("beta[3]", "x")]},
... )
>>>
>>> # Posterior summary
>>> print(jm.summary().outcomes["y"].coefficients)
>>>
>>> # Predictions with 95% credible intervals
>>> grid = jm.prediction_grid("x", length=50)
>>> jm.predict("y", new_data=grid, type="response").with_data(grid)
"""

from importlib.metadata import PackageNotFoundError, version

# Version
try:
    __version__ = version("bayesianimputation")
except PackageNotFoundError:
    __version__ = "0.1.0"

# Main class
from .estimators import BayesianJointModel

# Exceptions
from .exceptions import (
    BayesianImputationError,
    ColumnMismatchError,
    EmptySampleError,
    InvalidChainIndexError,
    ModelNotImplementedError,
    UnknownVariableError,
    UnsupportedCombinationError,
    UnsupportedModelTypeError,
    UnsupportedRequestTypeError,
)

# Families
from .families import LinkFunctions, get_link_functions, supported_combinations

# Models and predictions
from .models import (
    DEFAULT_QUANTILES,
    CoefficientSpec,
    FittedModel,
    ModelSpec,
    ModelType,
    PredictionResult,
    fitted_values,
    linear_predictor,
    ordinal_probabilities,
    predict,
)

# Plotting functions
from .plots import plot_forest, plot_residuals, plot_trace

# Posterior sample
from .posterior import (
    ParameterGroup,
    ParameterName,
    ParameterRole,
    PosteriorSample,
    PosteriorSlice,
    slice_posterior,
)
from .residuals import compute_residuals, residuals

# Summaries
from .summary import (
    ModelSummary,
    OutcomeSummary,
    coef,
    confint,
    family,
    parameter_summary,
    parameters,
    summarize,
)

# Utility functions
from .utils import (
    DesignMatrix,
    as_numeric_outcome,
    build_design_matrix,
    missing_info,
    prediction_grid,
)

__all__ = [
    # Version
    "__version__",
    # Main class
    "BayesianJointModel",
    # Exceptions
    "BayesianImputationError",
    "ColumnMismatchError",
    "EmptySampleError",
    "InvalidChainIndexError",
    "ModelNotImplementedError",
    "UnknownVariableError",
    "UnsupportedCombinationError",
    "UnsupportedModelTypeError",
    "UnsupportedRequestTypeError",
    # Families
    "LinkFunctions",
    "get_link_functions",
    "supported_combinations",
    # Models and predictions
    "DEFAULT_QUANTILES",
    "CoefficientSpec",
    "FittedModel",
    "ModelSpec",
    "ModelType",
    "PredictionResult",
    "fitted_values",
    "linear_predictor",
    "ordinal_probabilities",
    "predict",
    # Plotting functions
    "plot_forest",
    "plot_residuals",
    "plot_trace",
    # Posterior sample
    "ParameterGroup",
    "ParameterName",
    "ParameterRole",
    "PosteriorSample",
    "PosteriorSlice",
    "slice_posterior",
    # Residuals
    "compute_residuals",
    "residuals",
    # Summaries
    "ModelSummary",
    "OutcomeSummary",
    "coef",
    "confint",
    "family",
    "parameter_summary",
    "parameters",
    "summarize",
    # Utility functions
    "DesignMatrix",
    "as_numeric_outcome",
    "build_design_matrix",
    "missing_info",
    "prediction_grid",
]
