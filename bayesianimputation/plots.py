"""
Plotting utilities for Bayesian joint models.

This module provides a residuals-vs-fitted diagnostic plot for generalized
linear outcome models and ArviZ-based MCMC diagnostics (trace and forest
plots) over a selection of the MCMC sample.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

import arviz as az
import matplotlib.pyplot as plt
import numpy as np

from .exceptions import ModelNotImplementedError
from .models import ModelType, fitted_values
from .posterior import slice_posterior
from .residuals import residuals

if TYPE_CHECKING:
    from matplotlib.axes import Axes
    from matplotlib.figure import Figure

    from .estimators import BayesianJointModel
    from .models import FittedModel


def _fitted_model(model: BayesianJointModel | FittedModel) -> FittedModel:
    return getattr(model, "model", model)


def plot_residuals(
    model: BayesianJointModel | FittedModel,
    outcome: str | None = None,
    type: str = "working",
    ax: Axes | None = None,
    figsize: tuple[float, float] | None = None,
    **kwargs: Any,
) -> tuple[Figure, Axes]:
    """
    Plot residuals against fitted values.

    Parameters
    ----------
    model : BayesianJointModel or FittedModel
        The fitted joint model.
    outcome : str, optional
        Outcome to plot. Required if the model has more than one outcome.
    type : str, optional
        Residual type: "working", "pearson" or "response". Default is
        "working".
    ax : Axes, optional
        Axes to draw on. Default creates a new figure.
    figsize : tuple[float, float], optional
        Figure size.
    **kwargs
        Additional arguments passed to ax.scatter.

    Returns
    -------
    tuple[Figure, Axes]
        Matplotlib Figure and Axes objects.

    Raises
    ------
    ValueError
        If the model has several outcomes and none is selected.
    ModelNotImplementedError
        If the outcome is not modelled with a generalized linear model.
    """
    fitted_model = _fitted_model(model)
    if outcome is None:
        if len(fitted_model.outcomes) != 1:
            raise ValueError(
                "The model has several outcomes; select one with the 'outcome' argument."
            )
        outcome = next(iter(fitted_model.outcomes))

    spec = fitted_model.spec(outcome)
    if spec.model_type is not ModelType.GLM:
        raise ModelNotImplementedError(
            f"Residual plots are not available for {spec.model_type.value} models."
        )

    fit = fitted_values(fitted_model, outcome)
    res = residuals(fitted_model, type=type, outcome=outcome)

    if ax is None:
        fig, ax = plt.subplots(figsize=figsize or (8, 6))
    else:
        fig = ax.figure

    kwargs.setdefault("alpha", 0.6)
    ax.scatter(np.asarray(fit), np.asarray(res), **kwargs)
    ax.axhline(y=0, color="red", linestyle="--", alpha=0.5)
    ax.set_xlabel("Fitted values")
    ax.set_ylabel(f"{type.capitalize()} residuals")
    ax.set_title(f"Residuals vs fitted: {outcome}")

    return fig, ax


def plot_trace(
    model: BayesianJointModel | FittedModel,
    var_names: list[str] | None = None,
    start: int | None = None,
    end: int | None = None,
    thin: int | None = None,
    exclude_chains: Iterable[int] | None = None,
    compact: bool = True,
    figsize: tuple[float, float] | None = None,
    **kwargs: Any,
) -> tuple[Figure, Axes]:
    """
    Create trace plots for model parameters.

    Parameters
    ----------
    model : BayesianJointModel or FittedModel
        The fitted joint model.
    var_names : list[str], optional
        Parameter names to plot. If None, plots all parameters.
    start, end, thin, exclude_chains : optional
        Selection of the MCMC sample (see `slice_posterior`).
    compact : bool, optional
        Passed to az.plot_trace. Default is True.
    figsize : tuple[float, float], optional
        Figure size as (width, height).
    **kwargs
        Additional arguments passed to az.plot_trace.

    Returns
    -------
    tuple[Figure, Axes]
        Matplotlib Figure and Axes objects.
    """
    mcmc = slice_posterior(
        _fitted_model(model).posterior, start, end, thin, exclude_chains, subset=var_names
    )
    axes = az.plot_trace(
        mcmc.to_inference_data(), compact=compact, figsize=figsize, **kwargs
    )

    fig = plt.gcf()
    fig.tight_layout()

    return fig, axes


def plot_forest(
    model: BayesianJointModel | FittedModel,
    var_names: list[str] | None = None,
    start: int | None = None,
    end: int | None = None,
    thin: int | None = None,
    exclude_chains: Iterable[int] | None = None,
    combined: bool = True,
    hdi_prob: float = 0.94,
    figsize: tuple[float, float] | None = None,
    **kwargs: Any,
) -> tuple[Figure, Axes]:
    """
    Create a forest plot of point estimates and credible intervals.

    Parameters
    ----------
    model : BayesianJointModel or FittedModel
        The fitted joint model.
    var_names : list[str], optional
        Parameter names to plot. If None, plots all parameters.
    start, end, thin, exclude_chains : optional
        Selection of the MCMC sample (see `slice_posterior`).
    combined : bool, optional
        If True, combines chains. Default is True.
    hdi_prob : float, optional
        Probability mass for HDI. Default is 0.94.
    figsize : tuple[float, float], optional
        Figure size.
    **kwargs
        Additional arguments passed to az.plot_forest.

    Returns
    -------
    tuple[Figure, Axes]
        Matplotlib Figure and Axes objects.
    """
    mcmc = slice_posterior(
        _fitted_model(model).posterior, start, end, thin, exclude_chains, subset=var_names
    )
    axes = az.plot_forest(
        mcmc.to_inference_data(),
        combined=combined,
        hdi_prob=hdi_prob,
        figsize=figsize,
        **kwargs,
    )
    fig = plt.gcf()

    return fig, axes
