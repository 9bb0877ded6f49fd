"""
Residuals of generalized linear outcome models.

Residuals are computed from the posterior mean of the fitted values on the
response scale. Three types are available:

- ``"response"``: y - mu
- ``"working"``: (y - mu) / (d mu / d eta), evaluated at eta = link(mu)
- ``"pearson"``: (y - mu) / sqrt(V(mu))

Binary and other categorical outcomes are coded by the position of their
level before differencing (first level -> 0, second level -> 1).
"""

from __future__ import annotations

import warnings
from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd

from .exceptions import (
    ModelNotImplementedError,
    UnknownVariableError,
    UnsupportedRequestTypeError,
)
from .families import get_link_functions
from .models import FittedModel, ModelType, outcome_linear_predictor
from .posterior import ParameterGroup, slice_posterior
from .utils import as_numeric_outcome

RESIDUAL_TYPES = ("working", "pearson", "response")


def compute_residuals(
    model_type: ModelType | str,
    family: str | None,
    link: str | None,
    fitted: np.ndarray | pd.Series,
    observed: np.ndarray | pd.Series,
    type: str = "working",
) -> np.ndarray:
    """
    Compute residuals from fitted and observed values.

    Parameters
    ----------
    model_type : ModelType or str
        Model type of the outcome. Only generalized linear models are
        supported.
    family : str
        Distribution family.
    link : str, optional
        Link function. Default is the family's default link.
    fitted : array-like
        Fitted values on the response scale.
    observed : array-like
        Observed outcome. Categorical values are converted with
        `as_numeric_outcome`.
    type : str, optional
        "working", "pearson" or "response". Default is "working".

    Returns
    -------
    np.ndarray

    Raises
    ------
    UnsupportedRequestTypeError
        If `type` is not a known residual type.
    ModelNotImplementedError
        For ordinal, multinomial, survival and joint models.
    UnsupportedCombinationError
        If the family does not define the function the residual type needs
        (e.g. Pearson residuals for the beta family).
    """
    if type not in RESIDUAL_TYPES:
        raise UnsupportedRequestTypeError(
            f"Residual type '{type}' is not available. Allowed types: {list(RESIDUAL_TYPES)}"
        )

    model_type = ModelType.from_tag(model_type)
    if model_type is not ModelType.GLM:
        raise ModelNotImplementedError(
            f"Residuals are not available for {model_type.value} models."
        )

    funcs = get_link_functions(family, link)
    if isinstance(observed, pd.Series):
        y = as_numeric_outcome(observed)
    else:
        y = np.asarray(observed, dtype=np.float64)
    mu = np.asarray(fitted, dtype=np.float64)

    if type == "response":
        return y - mu
    if type == "working":
        mu_eta = funcs.require("mu_eta")
        return (y - mu) / mu_eta(funcs.link(mu))

    variance = funcs.require("variance")
    return (y - mu) / np.sqrt(variance(mu))


def _outcome_residuals(
    model: FittedModel,
    outcome: str,
    type: str,
    start: int | None,
    end: int | None,
    thin: int | None,
    exclude_chains: Iterable[int] | None,
) -> pd.Series:
    spec = model.spec(outcome)
    if spec.model_type is not ModelType.GLM:
        raise ModelNotImplementedError(
            f"Residuals are not available for {spec.model_type.value} models "
            f"(outcome '{outcome}')."
        )

    mcmc = slice_posterior(
        model.posterior,
        start=start,
        end=end,
        thin=thin,
        exclude_chains=exclude_chains,
        subset=ParameterGroup(outcomes=(outcome,)),
    )
    eta, index = outcome_linear_predictor(model, spec, mcmc, warn=False)
    funcs = get_link_functions(spec.family, spec.link)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        fitted = np.nanmean(funcs.inverse_link(eta), axis=0)

    res = compute_residuals(
        spec.model_type, spec.family, spec.link, fitted, model.data[outcome], type
    )
    return pd.Series(res, index=index, name=outcome)


def _residual_types(model: FittedModel, type: str | Mapping[str, str]) -> dict[str, str]:
    """Residual type per outcome; outcomes not named in a mapping use "working"."""
    if isinstance(type, str):
        return dict.fromkeys(model.outcomes, type)

    unknown = [name for name in type if name not in model.outcomes]
    if unknown:
        raise UnknownVariableError(
            f"Residual types were given for {unknown}, which are not outcomes of the "
            f"model. Outcomes: {list(model.outcomes)}"
        )
    types = dict.fromkeys(model.outcomes, "working")
    types.update(type)
    return types


def residuals(
    model: FittedModel,
    type: str | Mapping[str, str] = "working",
    outcome: str | Sequence[str] | None = None,
    start: int | None = None,
    end: int | None = None,
    thin: int | None = None,
    exclude_chains: Iterable[int] | None = None,
) -> pd.Series | dict[str, pd.Series]:
    """
    Residuals of the outcome models for the data the model was fitted on.

    Parameters
    ----------
    model : FittedModel
        The fitted joint model.
    type : str or mapping, optional
        "working", "pearson" or "response", used for every outcome, or a
        mapping from outcome to residual type. Outcomes missing from the
        mapping get working residuals. Default is "working".
    outcome : str or sequence of str, optional
        Outcome(s). Default is all outcomes.
    start, end, thin, exclude_chains : optional
        Selection of the MCMC sample (see `slice_posterior`).

    Returns
    -------
    pd.Series or dict[str, pd.Series]
        Residuals of a single outcome, or a dictionary keyed by outcome.

    Raises
    ------
    UnknownVariableError
        If a key of the `type` mapping is not an outcome of the model.

    Examples
    --------
    >>> res = residuals(model, type="pearson", outcome="y")
    >>> res = residuals(model, type={"y": "pearson", "b": "response"})
    """
    types = _residual_types(model, type)
    names = [outcome] if isinstance(outcome, str) else list(outcome or model.outcomes)
    result = {
        name: _outcome_residuals(
            model, name, types.get(name, "working"), start, end, thin, exclude_chains
        )
        for name in names
    }
    return result[outcome] if isinstance(outcome, str) else result
