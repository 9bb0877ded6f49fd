"""
Posterior summaries of fitted joint models.

The statistics reported for every parameter are the posterior mean and
standard deviation, posterior quantiles, the tail probability
2 * min(P(theta > 0), P(theta < 0)), and, if more than one chain is used,
the Gelman-Rubin criterion (rank-normalized R-hat) and the Monte Carlo
error of the mean relative to the posterior SD.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import arviz as az
import numpy as np
import pandas as pd

from .models import DEFAULT_QUANTILES, FittedModel, ModelType, quantile_label
from .posterior import ParameterName, ParameterRole, PosteriorSlice, slice_posterior
from .utils import as_numeric_outcome


@dataclass
class OutcomeSummary:
    """
    Summary of the parameters of one outcome model.

    Every table has one row per parameter and the columns "Mean", "SD",
    quantile columns (e.g. "2.5%"), "tail-prob.", "GR-crit" and "MCE/SD".
    Tables that do not apply to the model are None.
    """

    outcome: str
    model_type: ModelType
    family: str | None = None
    coefficients: pd.DataFrame | None = None
    sigma: pd.DataFrame | None = None
    intercepts: pd.DataFrame | None = None
    random_covariance: pd.DataFrame | None = None
    shape: pd.DataFrame | None = None
    other: pd.DataFrame | None = None
    events: int | None = None
    assoc_type: tuple[str, ...] = ()

    def tables(self) -> dict[str, pd.DataFrame]:
        """All non-empty tables, keyed by name."""
        names = ["coefficients", "sigma", "intercepts", "random_covariance", "shape", "other"]
        return {n: getattr(self, n) for n in names if getattr(self, n) is not None}


@dataclass
class ModelSummary:
    """
    Summary of a fitted joint model.

    Attributes
    ----------
    outcomes : dict[str, OutcomeSummary]
        Per-outcome summaries.
    other : pd.DataFrame or None
        Parameters that belong to no outcome.
    start, end, thin : int
        Iterations and thinning the summary is based on.
    n_chains : int
        Number of chains used.
    draws_per_chain : int
        Sample size per chain.
    group_sizes : dict[str, int]
        Number of groups per grouping variable.
    """

    outcomes: dict[str, OutcomeSummary]
    other: pd.DataFrame | None
    start: int
    end: int
    thin: int
    n_chains: int
    draws_per_chain: int
    group_sizes: dict[str, int] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        """Coefficient tables of all outcomes stacked, indexed by (outcome, term)."""
        tables = {
            name: s.coefficients for name, s in self.outcomes.items() if s.coefficients is not None
        }
        if not tables:
            return pd.DataFrame()
        return pd.concat(tables, names=["outcome", "term"])

    def __repr__(self) -> str:
        lines = [
            f"ModelSummary(outcomes={list(self.outcomes)})",
            f"  iterations {self.start} to {self.end}, thin = {self.thin}",
            f"  {self.n_chains} chain(s), {self.draws_per_chain} draws per chain",
        ]
        for name, size in self.group_sizes.items():
            lines.append(f"  {size} groups in '{name}'")
        return "\n".join(lines)


def tail_probability(draws: np.ndarray) -> np.ndarray:
    """
    Posterior tail probability 2 * min(P(theta > 0), P(theta < 0)).

    Parameters
    ----------
    draws : np.ndarray
        Array of shape (n_draws, n_parameters).

    Returns
    -------
    np.ndarray
        One value per parameter.
    """
    return 2.0 * np.minimum((draws > 0).mean(axis=0), (draws < 0).mean(axis=0))


def parameter_statistics(
    mcmc: PosteriorSlice,
    quantiles: Sequence[float] = DEFAULT_QUANTILES,
) -> pd.DataFrame:
    """
    Summary statistics for every parameter of a posterior slice.

    Parameters
    ----------
    mcmc : PosteriorSlice
        Selected MCMC sample.
    quantiles : sequence of float, optional
        Probability levels of the reported quantiles. Default is
        (0.025, 0.975).

    Returns
    -------
    pd.DataFrame
        Indexed by raw parameter name, with columns "Mean", "SD", quantile
        labels, "tail-prob.", "GR-crit" and "MCE/SD". The last two are NaN
        when only one chain is used.
    """
    draws = mcmc.matrix
    stats = pd.DataFrame(index=pd.Index(mcmc.names, name="parameter"))
    stats["Mean"] = draws.mean(axis=0)
    stats["SD"] = draws.std(axis=0, ddof=1)
    for q in quantiles:
        stats[quantile_label(q)] = np.quantile(draws, q, axis=0)
    stats["tail-prob."] = tail_probability(draws)

    gr_crit = np.full(mcmc.n_parameters, np.nan)
    mcse = np.full(mcmc.n_parameters, np.nan)
    if mcmc.n_chains > 1:
        for j in range(mcmc.n_parameters):
            chains = mcmc.values[:, :, j]
            gr_crit[j] = az.rhat(chains)
            mcse[j] = az.mcse(chains, method="mean")
    stats["GR-crit"] = gr_crit
    with np.errstate(divide="ignore", invalid="ignore"):
        stats["MCE/SD"] = mcse / stats["SD"].to_numpy()
    return stats


def _rows(stats: pd.DataFrame, parameters: Sequence[ParameterName], labels=None):
    if not parameters:
        return None
    table = stats.loc[[p.raw for p in parameters]].copy()
    if labels is not None:
        table.index = pd.Index(labels)
    return table


def _without_tail(table: pd.DataFrame | None, rows=None) -> pd.DataFrame | None:
    """Blank out the tail probability of variance-type parameters."""
    if table is not None:
        if rows is None:
            table["tail-prob."] = np.nan
        else:
            table.loc[rows, "tail-prob."] = np.nan
    return table


def _intercept_labels(model: FittedModel, outcome: str, n: int) -> list[str]:
    spec = model.spec(outcome)
    levels = model.outcome_levels(outcome)
    sign = ">" if spec.reverse else "<="
    if len(levels) == n + 1:
        return [f"{outcome} {sign} {level}" for level in levels[:-1]]
    return [f"{outcome} {sign} {k}" for k in range(1, n + 1)]


def _coefficient_label(coef) -> str:
    if coef.category is None:
        return coef.varname
    return f"{coef.category}: {coef.varname}"


def _event_count(model: FittedModel, outcome: str) -> int | None:
    spec = model.spec(outcome)
    if spec.event_var is None or spec.event_var not in model.data.columns:
        return None
    return int((as_numeric_outcome(model.data[spec.event_var]) > 0).sum())


def _summarize_outcome(
    model: FittedModel, outcome: str, mcmc: PosteriorSlice, stats: pd.DataFrame
) -> OutcomeSummary:
    spec = model.spec(outcome)
    own = [p for p in mcmc.parameters if p.outcome == outcome]
    used: set[str] = set()

    def take(role: ParameterRole) -> list[ParameterName]:
        found = sorted((p for p in own if p.role is role), key=lambda p: p.index)
        used.update(p.raw for p in found)
        return found

    present = {p.raw for p in own}
    coefs = [c for c in model.coefficients(outcome) if c.parameter in present]
    used.update(c.parameter for c in coefs)
    coefficients = None
    if coefs:
        coefficients = stats.loc[[c.parameter for c in coefs]].copy()
        coefficients.index = pd.Index([_coefficient_label(c) for c in coefs])

    summary = OutcomeSummary(
        outcome=outcome,
        model_type=spec.model_type,
        family=spec.family,
        coefficients=coefficients,
        assoc_type=spec.assoc_type if spec.model_type is ModelType.JM else (),
    )

    if spec.family in ("gaussian", "Gamma", "lognorm"):
        summary.sigma = _without_tail(_rows(stats, take(ParameterRole.SIGMA)))

    if spec.model_type is ModelType.CLM:
        intercepts = take(ParameterRole.INTERCEPT)
        summary.intercepts = _rows(
            stats, intercepts, _intercept_labels(model, outcome, len(intercepts))
        )

    covariance = take(ParameterRole.RANDOM_COVARIANCE)
    if covariance:
        diagonal = [p.raw for p in covariance if len(set(p.index)) == 1]
        summary.random_covariance = _without_tail(_rows(stats, covariance), diagonal)

    if spec.model_type is ModelType.SURVREG:
        summary.shape = _without_tail(_rows(stats, take(ParameterRole.SHAPE)))

    if spec.model_type in (ModelType.SURVREG, ModelType.COXPH, ModelType.JM):
        summary.events = _event_count(model, outcome)

    summary.other = _rows(stats, [p for p in own if p.raw not in used])
    return summary


def summarize(
    model: FittedModel,
    start: int | None = None,
    end: int | None = None,
    thin: int | None = None,
    quantiles: Sequence[float] = DEFAULT_QUANTILES,
    subset: Any = None,
    exclude_chains: Iterable[int] | None = None,
    outcome: str | Sequence[str] | None = None,
) -> ModelSummary:
    """
    Summarize the posterior distribution of a fitted joint model.

    Parameters
    ----------
    model : FittedModel
        The fitted joint model.
    start, end, thin : int, optional
        Iterations of the MCMC sample to use.
    quantiles : sequence of float, optional
        Probability levels of the reported quantiles. Default is
        (0.025, 0.975).
    subset : optional
        Parameter selection (see `slice_posterior`). Default is all
        parameters.
    exclude_chains : iterable of int, optional
        0-based indices of chains to leave out.
    outcome : str or sequence of str, optional
        Outcome(s) to summarize. Default is all outcomes.

    Returns
    -------
    ModelSummary

    Examples
    --------
    >>> res = summarize(model, start=501)
    >>> res.outcomes["y"].coefficients
    """
    mcmc = slice_posterior(
        model.posterior,
        start=start,
        end=end,
        thin=thin,
        exclude_chains=exclude_chains,
        subset=subset,
    )
    stats = parameter_statistics(mcmc, quantiles)

    if outcome is None:
        names = list(model.outcomes)
    else:
        names = [outcome] if isinstance(outcome, str) else list(outcome)

    outcomes = {name: _summarize_outcome(model, name, mcmc, stats) for name in names}
    unassigned = [p for p in mcmc.parameters if p.outcome not in model.outcomes]

    group_sizes = {}
    if model.id_var is not None and model.id_var in model.data.columns:
        group_sizes[model.id_var] = int(model.data[model.id_var].nunique())

    return ModelSummary(
        outcomes=outcomes,
        other=_rows(stats, unassigned),
        start=mcmc.start,
        end=mcmc.end,
        thin=mcmc.thin,
        n_chains=mcmc.n_chains,
        draws_per_chain=mcmc.draws_per_chain,
        group_sizes=group_sizes,
    )


def _outcome_draws(model: FittedModel, outcome: str, mcmc: PosteriorSlice) -> pd.DataFrame:
    """Draws of the ordinal intercepts and regression coefficients of an outcome."""
    spec = model.spec(outcome)
    columns, labels = [], []
    if spec.model_type is ModelType.CLM:
        intercepts = mcmc.find(outcome, ParameterRole.INTERCEPT)
        columns += [p.raw for p in intercepts]
        labels += _intercept_labels(model, outcome, len(intercepts))

    present = set(mcmc.names)
    coefs = [c for c in model.coefficients(outcome) if c.parameter in present]
    columns += [c.parameter for c in coefs]
    labels += [_coefficient_label(c) for c in coefs]
    return pd.DataFrame(mcmc.get(columns), columns=labels)


def coef(
    model: FittedModel,
    start: int | None = None,
    end: int | None = None,
    thin: int | None = None,
    subset: Any = None,
    exclude_chains: Iterable[int] | None = None,
) -> dict[str, pd.Series]:
    """
    Posterior means of the regression coefficients (and ordinal intercepts).

    Returns
    -------
    dict[str, pd.Series]
        One Series per outcome, indexed by term.
    """
    mcmc = slice_posterior(
        model.posterior, start, end, thin, exclude_chains, subset=subset
    )
    return {name: _outcome_draws(model, name, mcmc).mean() for name in model.outcomes}


def confint(
    model: FittedModel,
    level: float = 0.95,
    quantiles: Sequence[float] | None = None,
    start: int | None = None,
    end: int | None = None,
    thin: int | None = None,
    subset: Any = None,
    exclude_chains: Iterable[int] | None = None,
) -> dict[str, pd.DataFrame]:
    """
    Posterior credible intervals of the regression coefficients.

    Parameters
    ----------
    model : FittedModel
        The fitted joint model.
    level : float, optional
        Probability mass of the equal-tailed interval. Default is 0.95.
    quantiles : sequence of float, optional
        Explicit probability levels; override `level`.
    start, end, thin, subset, exclude_chains : optional
        Selection of the MCMC sample (see `slice_posterior`).

    Returns
    -------
    dict[str, pd.DataFrame]
        One DataFrame per outcome, indexed by term, with one column per
        quantile (e.g. "2.5%" and "97.5%").
    """
    if quantiles is None:
        quantiles = ((1 - level) / 2, 1 - (1 - level) / 2)

    mcmc = slice_posterior(
        model.posterior, start, end, thin, exclude_chains, subset=subset
    )
    result = {}
    for name in model.outcomes:
        draws = _outcome_draws(model, name, mcmc)
        result[name] = pd.DataFrame(
            np.quantile(draws.to_numpy(), list(quantiles), axis=0).T,
            index=draws.columns,
            columns=[quantile_label(q) for q in quantiles],
        )
    return result


def parameter_summary(
    model: FittedModel,
    var_names: list[str] | None = None,
    filter_vars: str | None = None,
    hdi_prob: float = 0.94,
    start: int | None = None,
    end: int | None = None,
    thin: int | None = None,
    exclude_chains: Iterable[int] | None = None,
) -> pd.DataFrame:
    """
    ArviZ summary table of the selected MCMC sample.

    Parameters
    ----------
    var_names : list[str], optional
        Parameter names to include. If None, includes all.
    filter_vars : str, optional
        Passed to `az.summary` ("like" or "regex" matching of `var_names`).
    hdi_prob : float, optional
        Probability mass for HDI. Default is 0.94.

    Returns
    -------
    pd.DataFrame
    """
    mcmc = slice_posterior(model.posterior, start, end, thin, exclude_chains)
    return az.summary(
        mcmc.to_inference_data(),
        var_names=var_names,
        filter_vars=filter_vars,
        hdi_prob=hdi_prob,
    )


def parameters(model: FittedModel) -> pd.DataFrame:
    """
    Table of the parameters in the MCMC sample.

    Regression coefficients come first, in the order of the coefficient
    index, followed by all other parameters in the order of the sample.

    Parameters
    ----------
    model : FittedModel
        The fitted joint model. The sample may have no iterations.

    Returns
    -------
    pd.DataFrame
        Columns "outcome", "parameter", "varname" and "category". "varname"
        is the design matrix column a coefficient multiplies; it and
        "category" are missing for parameters that are not coefficients.
    """
    monitored = set(model.posterior.names)
    rows = [
        (outcome, c.parameter, c.varname, c.category)
        for outcome, coefs in model.coef_index.items()
        for c in coefs
        if c.parameter in monitored
    ]
    listed = {row[1] for row in rows}
    rows += [
        (p.outcome, p.raw, None, None)
        for p in model.posterior.parameters
        if p.raw not in listed
    ]
    return pd.DataFrame(rows, columns=["outcome", "parameter", "varname", "category"])


def family(model: FittedModel, outcome: str | None = None) -> str | None | dict[str, str | None]:
    """Distribution family of an outcome, or of all outcomes if `outcome` is None."""
    if outcome is not None:
        return model.spec(outcome).family
    return {name: spec.family for name, spec in model.outcomes.items()}
