"""Custom exceptions for the bayesianimputation package."""


class BayesianImputationError(Exception):
    """Base class for exceptions in the bayesianimputation package."""


class EmptySampleError(BayesianImputationError, ValueError):
    """Raised when a selection of the MCMC sample contains no draws or no parameters."""


class InvalidChainIndexError(BayesianImputationError, ValueError):
    """Raised when a chain index to exclude does not exist in the sample."""


class UnknownVariableError(BayesianImputationError, ValueError):
    """Raised when a formula refers to a variable that is in none of the data sets."""


class ColumnMismatchError(BayesianImputationError, ValueError):
    """Raised when design matrix columns and posterior coefficients cannot be aligned."""


class UnsupportedCombinationError(BayesianImputationError, ValueError):
    """Raised when a family / link / residual type combination is not available."""


class UnsupportedModelTypeError(BayesianImputationError, ValueError):
    """Raised for a model type that is not known to the package."""


class UnsupportedRequestTypeError(BayesianImputationError, ValueError):
    """Raised when a prediction or residual type is not valid for a model type."""


class ModelNotImplementedError(BayesianImputationError, NotImplementedError):
    """Raised when an operation is not (yet) available for a model type."""
