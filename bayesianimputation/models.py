"""
Model specifications and posterior predictions for joint models.

A fitted joint model consists of one conditional model per outcome (a
generalized linear model, a cumulative logit model for ordinal outcomes, a
multinomial logit model, a parametric (Weibull) survival model, a
proportional hazards model or a joint longitudinal-survival model). This
module describes these models, computes linear predictors from the MCMC
sample, and turns them into predictions with credible intervals.
"""

from __future__ import annotations

import ast
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Sequence

import numpy as np
import pandas as pd
from scipy import special

from .exceptions import (
    ColumnMismatchError,
    ModelNotImplementedError,
    UnknownVariableError,
    UnsupportedModelTypeError,
    UnsupportedRequestTypeError,
)
from .families import canonical_family, default_link, get_link_functions
from .posterior import (
    ParameterGroup,
    ParameterRole,
    PosteriorSample,
    PosteriorSlice,
    slice_posterior,
)
from .survival import (
    baseline_hazard_knots,
    bspline_basis,
    integrate_hazard,
    locf_positions,
    quadrature_nodes,
)
from .utils import (
    DesignMatrix,
    as_numeric_outcome,
    build_design_matrix,
    category_levels,
    split_formula,
)

DEFAULT_QUANTILES = (0.025, 0.975)


class ModelType(str, Enum):
    """Type of the conditional model of an outcome."""

    GLM = "glm"
    CLM = "clm"
    MLOGIT = "mlogit"
    SURVREG = "survreg"
    COXPH = "coxph"
    JM = "JM"

    @classmethod
    def from_tag(cls, tag: ModelType | str) -> ModelType:
        """
        Convert a model type tag to a `ModelType`.

        Mixed model tags (``glmm``, ``clmm``, ``mlogitmm``) and family
        qualified tags such as ``glm_gaussian_identity`` are mapped to the
        corresponding model type.

        Raises
        ------
        UnsupportedModelTypeError
            If the tag is not a known model type.
        """
        if isinstance(tag, cls):
            return tag
        key = str(tag).split("_", 1)[0]
        key = _MODEL_TYPE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise UnsupportedModelTypeError(
                f"Model type '{tag}' is not supported. Known model types: "
                f"{[m.value for m in cls]}"
            ) from None


_MODEL_TYPE_ALIASES = {
    "glmm": "glm",
    "lm": "glm",
    "lme": "glm",
    "clmm": "clm",
    "mlogitmm": "mlogit",
    "jm": "JM",
}


def survival_variables(formula: str) -> tuple[str | None, str | None]:
    """
    Time and event variable of a survival formula.

    Parameters
    ----------
    formula : str
        Formula with a left-hand side of the form ``Surv(time, status)``.

    Returns
    -------
    tuple
        (time variable, event variable); None where not available.
    """
    lhs, _ = split_formula(formula)
    if lhs is None:
        return None, None

    node = ast.parse(lhs, mode="eval").body
    if isinstance(node, ast.Name):
        return node.id, None
    if isinstance(node, ast.Call):
        names = [a.id if isinstance(a, ast.Name) else None for a in node.args]
        names += [None, None]
        return names[0], names[1]
    return None, None


@dataclass(frozen=True)
class ModelSpec:
    """
    Specification of the conditional model of one outcome.

    Parameters
    ----------
    outcome : str
        Name of the outcome variable.
    model_type : ModelType or str
        Type of model (see `ModelType.from_tag` for accepted tags).
    formula : str
        Model formula of the fixed effects, e.g. ``"y ~ x1 + C(group)"`` or
        ``"Surv(time, status) ~ x"``.
    family : str, optional
        Distribution family of generalized linear models. Default is
        "gaussian" for generalized linear models.
    link : str, optional
        Link function. Default is the family's default link.
    reverse : bool, optional
        For ordinal outcomes: if True the cumulative logits model
        P(y > k) instead of P(y <= k). Default is False.
    df_basehaz : int, optional
        Number of B-spline basis functions of the log baseline hazard
        (proportional hazards models). Default is 6.
    assoc_type : tuple of str, optional
        Association types of joint models.
    level : str, optional
        Grouping level of the outcome. Default is "lvlone".
    hierarchical : bool, optional
        Whether the model has random effects. Default is False.
    levels : sequence, optional
        Category labels of categorical outcomes. Default is the levels in
        the reference data.
    time_var, event_var : str, optional
        Time and event variable of survival outcomes. Default is taken from
        the ``Surv(time, event)`` term of the formula.
    """

    outcome: str
    model_type: ModelType | str
    formula: str
    family: str | None = None
    link: str | None = None
    reverse: bool = False
    df_basehaz: int = 6
    assoc_type: tuple[str, ...] = ()
    level: str = "lvlone"
    hierarchical: bool = False
    levels: tuple | None = None
    time_var: str | None = None
    event_var: str | None = None

    def __post_init__(self) -> None:
        model_type = ModelType.from_tag(self.model_type)
        object.__setattr__(self, "model_type", model_type)

        if model_type is ModelType.GLM:
            family = canonical_family(self.family or "gaussian")
            object.__setattr__(self, "family", family)
            if self.link is None:
                object.__setattr__(self, "link", default_link(family))

        if model_type in (ModelType.SURVREG, ModelType.COXPH, ModelType.JM):
            time_var, event_var = survival_variables(self.formula)
            if self.time_var is None:
                object.__setattr__(self, "time_var", time_var)
            if self.event_var is None:
                object.__setattr__(self, "event_var", event_var)

        if self.levels is not None:
            object.__setattr__(self, "levels", tuple(self.levels))
        object.__setattr__(self, "assoc_type", tuple(self.assoc_type))


@dataclass(frozen=True)
class CoefficientSpec:
    """
    A regression coefficient of an outcome model.

    Attributes
    ----------
    parameter : str
        Name of the parameter in the posterior sample, e.g. ``"beta[3]"``.
    varname : str
        Name of the design matrix column the coefficient multiplies.
    category : optional
        For non-proportional odds effects the (1-based) cumulative split the
        coefficient belongs to; for multinomial models the outcome category.
        None for coefficients shared by all categories.
    """

    parameter: str
    varname: str
    category: Any = None


@dataclass(frozen=True)
class FittedModel:
    """
    A fitted joint model.

    Parameters
    ----------
    outcomes : mapping or sequence of ModelSpec
        Outcome models, in the order they were specified.
    posterior : PosteriorSample
        MCMC sample of all parameters.
    data : pd.DataFrame
        The data the model was fitted on.
    coef_index : mapping
        Outcome -> sequence of `CoefficientSpec` (or (parameter, varname[,
        category]) tuples).
    scaling : mapping, optional
        Covariate -> (center, scale) used to standardize covariates when
        fitting. Missing entries mean no scaling.
    group_levels : mapping, optional
        Grouping level -> rank, with rank 1 for the finest level. Default is
        ``{"lvlone": 1}``.
    column_levels : mapping, optional
        Design column -> grouping level of the covariate. Columns not listed
        are at the level of the outcome.
    id_var : str, optional
        Subject identifier linking rows of different levels.
    time_var : str, optional
        Measurement time of longitudinal rows.
    """

    outcomes: Mapping[str, ModelSpec]
    posterior: PosteriorSample
    data: pd.DataFrame
    coef_index: Mapping[str, Sequence[CoefficientSpec]] = field(default_factory=dict)
    scaling: Mapping[str, tuple[float, float]] = field(default_factory=dict)
    group_levels: Mapping[str, int] = field(default_factory=lambda: {"lvlone": 1})
    column_levels: Mapping[str, str] = field(default_factory=dict)
    id_var: str | None = None
    time_var: str | None = None

    def __post_init__(self) -> None:
        outcomes = self.outcomes
        if not isinstance(outcomes, Mapping):
            outcomes = {spec.outcome: spec for spec in outcomes}
        object.__setattr__(self, "outcomes", dict(outcomes))

        coef_index = {
            outcome: [
                c if isinstance(c, CoefficientSpec) else CoefficientSpec(*c) for c in coefs
            ]
            for outcome, coefs in self.coef_index.items()
        }
        object.__setattr__(self, "coef_index", coef_index)

        outcome_of = {
            c.parameter: outcome for outcome, coefs in coef_index.items() for c in coefs
        }
        object.__setattr__(
            self, "posterior", self.posterior.relabel(list(self.outcomes), outcome_of)
        )

    def spec(self, outcome: str) -> ModelSpec:
        """Model specification of an outcome."""
        if outcome not in self.outcomes:
            raise UnknownVariableError(
                f"'{outcome}' is not an outcome of the model. Outcomes: {list(self.outcomes)}"
            )
        return self.outcomes[outcome]

    def coefficients(self, outcome: str) -> list[CoefficientSpec]:
        """Regression coefficients of an outcome (empty if it has none)."""
        return list(self.coef_index.get(outcome, []))

    def level_rank(self, level: str) -> int:
        if level not in self.group_levels:
            raise UnknownVariableError(
                f"Unknown grouping level '{level}'. Levels: {list(self.group_levels)}"
            )
        return self.group_levels[level]

    def outcome_levels(self, outcome: str) -> list:
        """Category labels of a categorical outcome."""
        spec = self.spec(outcome)
        if spec.levels is not None:
            return list(spec.levels)
        return category_levels(self.data[outcome])


def _scaling_for(column: str, scaling: Mapping[str, Any] | None) -> tuple[float, float]:
    entry = (scaling or {}).get(column)
    if entry is None:
        return 0.0, 1.0
    center, scale = entry
    center = 0.0 if center is None or pd.isna(center) else float(center)
    scale = 1.0 if scale is None or pd.isna(scale) else float(scale)
    return center, scale


def linear_predictor(
    coefficients: pd.DataFrame,
    design: DesignMatrix | pd.DataFrame,
    scaling: Mapping[str, tuple[float, float]] | None = None,
) -> np.ndarray:
    """
    Compute the linear predictor for every posterior draw.

    Design columns are matched to coefficients by name. Columns with
    scaling parameters are centered and scaled, ``(x - center) / scale``,
    before they are multiplied with the coefficients.

    Parameters
    ----------
    coefficients : pd.DataFrame
        Posterior draws, one column per coefficient named like the design
        column it belongs to. Shape (n_draws, n_coefficients).
    design : DesignMatrix or pd.DataFrame
        Design matrix, shape (n_obs, n_terms).
    scaling : mapping, optional
        Column -> (center, scale).

    Returns
    -------
    np.ndarray
        Array of shape (n_draws, n_obs).

    Raises
    ------
    ColumnMismatchError
        If a design column has no matching coefficient.
    """
    frame = design.to_frame() if isinstance(design, DesignMatrix) else design
    columns = list(frame.columns)

    unmatched = [c for c in columns if c not in coefficients.columns]
    if unmatched:
        raise ColumnMismatchError(
            f"Design matrix columns {unmatched} have no corresponding coefficient. "
            f"Available coefficients: {list(coefficients.columns)}"
        )

    X = frame.to_numpy(dtype=np.float64, copy=True)
    for j, column in enumerate(columns):
        center, scale = _scaling_for(column, scaling)
        if center != 0.0 or scale != 1.0:
            X[:, j] = (X[:, j] - center) / scale

    beta = coefficients[columns].to_numpy(dtype=np.float64)
    return beta @ X.T


def quantile_label(q: float) -> str:
    return f"{q * 100:g}%"


def _summarize_draws(
    draws: np.ndarray,
    quantiles: Sequence[float] | None,
) -> tuple[np.ndarray, np.ndarray | None]:
    """Posterior mean and quantiles over the first axis (NaN entries ignored)."""
    with warnings.catch_warnings():
        # all-NaN columns belong to rows with missing covariates
        warnings.simplefilter("ignore", category=RuntimeWarning)
        fit = np.nanmean(draws, axis=0)
        bands = None
        if quantiles:
            bands = np.moveaxis(np.nanquantile(draws, list(quantiles), axis=0), 0, -1)
    return fit, bands


@dataclass
class PredictionResult:
    """
    Posterior prediction for one outcome.

    Attributes
    ----------
    outcome : str
        The outcome the prediction is for.
    type : str
        The (resolved) prediction type, e.g. "response" or "prob".
    fit : pd.Series or pd.DataFrame
        Posterior mean per observation; a DataFrame with one column per
        category (or cumulative split) for categorical outcomes, a
        categorical Series for type "class".
    quantiles : pd.DataFrame or None
        Posterior quantiles, with columns labelled like "2.5%" (MultiIndex
        columns (category, level) for categorical outcomes).
    """

    outcome: str
    type: str
    fit: pd.Series | pd.DataFrame
    quantiles: pd.DataFrame | None = None

    def to_frame(self) -> pd.DataFrame:
        """Fit and quantiles as one DataFrame."""
        if isinstance(self.fit, pd.Series):
            frame = self.fit.to_frame("fit")
            if self.quantiles is not None:
                frame = pd.concat([frame, self.quantiles], axis=1)
            return frame

        fit = self.fit.copy()
        fit.columns = pd.MultiIndex.from_tuples([(c, "fit") for c in fit.columns])
        if self.quantiles is None:
            return fit
        frame = pd.concat([fit, self.quantiles], axis=1)
        order = [(c, stat) for c in self.fit.columns for stat in ["fit", *self.quantile_levels]]
        return frame[order]

    @property
    def quantile_levels(self) -> list[str]:
        if self.quantiles is None:
            return []
        if isinstance(self.quantiles.columns, pd.MultiIndex):
            return list(dict.fromkeys(self.quantiles.columns.get_level_values(1)))
        return list(self.quantiles.columns)

    def with_data(self, new_data: pd.DataFrame) -> pd.DataFrame | dict[Any, pd.DataFrame]:
        """
        Attach the prediction to the data it was made for.

        Returns
        -------
        pd.DataFrame or dict
            The data with "fit" and quantile columns added; for categorical
            outcomes a dictionary with one such DataFrame per category.
        """
        if isinstance(self.fit, pd.Series):
            return pd.concat([new_data, self.to_frame().set_axis(new_data.index)], axis=1)

        frame = self.to_frame().set_axis(new_data.index)
        return {
            category: pd.concat([new_data, frame[category]], axis=1)
            for category in self.fit.columns
        }


def _make_result(
    outcome: str,
    type: str,
    draws: np.ndarray,
    quantiles: Sequence[float] | None,
    index: pd.Index,
    categories: Sequence | None = None,
    round_fit: bool = False,
) -> PredictionResult:
    """Summarize (draws, obs) or (draws, obs, categories) arrays into a result."""
    fit, bands = _summarize_draws(draws, quantiles)
    if round_fit:
        fit = np.round(fit)
    labels = [quantile_label(q) for q in quantiles] if quantiles else []

    if categories is None:
        fit_out = pd.Series(fit, index=index, name=outcome)
        q_out = None if bands is None else pd.DataFrame(bands, index=index, columns=labels)
        return PredictionResult(outcome=outcome, type=type, fit=fit_out, quantiles=q_out)

    fit_out = pd.DataFrame(fit, index=index, columns=list(categories))
    q_out = None
    if bands is not None:
        # bands: (obs, categories, quantiles)
        q_out = pd.DataFrame(
            bands.reshape(len(index), -1),
            index=index,
            columns=pd.MultiIndex.from_product([list(categories), labels]),
        )
    return PredictionResult(outcome=outcome, type=type, fit=fit_out, quantiles=q_out)


def _class_result(
    outcome: str,
    probabilities: np.ndarray,
    levels: Sequence,
    index: pd.Index,
) -> PredictionResult:
    """Most likely category per observation from (draws, obs, categories) probabilities."""
    mean, _ = _summarize_draws(probabilities, None)
    invalid = np.isnan(mean).any(axis=1)
    filled = np.where(np.isnan(mean), -np.inf, mean)
    best = filled.max(axis=1, keepdims=True)
    ties = (filled == best).sum(axis=1) > 1

    codes = filled.argmax(axis=1)
    codes[invalid | ties] = -1
    fit = pd.Series(
        pd.Categorical.from_codes(codes, categories=list(levels)), index=index, name=outcome
    )
    return PredictionResult(outcome=outcome, type="class", fit=fit, quantiles=None)


def _coefficient_draws(
    model: FittedModel,
    mcmc: PosteriorSlice,
    coefficients: Sequence[CoefficientSpec],
) -> pd.DataFrame:
    """Draws of the given coefficients, with columns named by design column."""
    values = mcmc.get([c.parameter for c in coefficients])
    return pd.DataFrame(values, columns=[c.varname for c in coefficients])


# ---------------------------------------------------------------------------
# Predictors per model type
# ---------------------------------------------------------------------------


def outcome_linear_predictor(
    model: FittedModel,
    spec: ModelSpec,
    mcmc: PosteriorSlice,
    new_data: pd.DataFrame | None = None,
    warn: bool = True,
) -> tuple[np.ndarray, pd.Index]:
    """
    Linear predictor draws of a generalized linear or parametric survival outcome.

    Returns
    -------
    tuple
        (array of shape (n_draws, n_obs), row index of the data)
    """
    design = build_design_matrix(spec.formula, model.data, new_data, warn_missing=warn)
    coefs = _coefficient_draws(model, mcmc, model.coefficients(spec.outcome))
    return linear_predictor(coefs, design, model.scaling), design.index


def _predict_glm(model, spec, mcmc, new_data, type, quantiles, warn) -> PredictionResult:
    eta, index = outcome_linear_predictor(model, spec, mcmc, new_data, warn)

    if type == "response":
        funcs = get_link_functions(spec.family, spec.link)
        return _make_result(
            spec.outcome,
            type,
            funcs.inverse_link(eta),
            quantiles,
            index,
            round_fit=funcs.family == "poisson",
        )
    return _make_result(spec.outcome, type, eta, quantiles, index)


def _nonprop_groups(
    coefficients: Sequence[CoefficientSpec], n_splits: int
) -> list[list[CoefficientSpec]]:
    """Non-proportional odds coefficients grouped by cumulative split."""
    nonprop = [c for c in coefficients if c.category is not None]
    if not nonprop:
        return []
    categories = list(dict.fromkeys(c.category for c in nonprop))
    if len(categories) != n_splits:
        raise ColumnMismatchError(
            f"Found non-proportional odds coefficients for {len(categories)} cumulative "
            f"splits, but the outcome has {n_splits} splits."
        )
    categories = sorted(categories, key=lambda c: (str(type(c)), c))
    return [[c for c in nonprop if c.category == cat] for cat in categories]


def _cumulative_logits(model, spec, mcmc, new_data, warn) -> tuple[np.ndarray, pd.Index]:
    """Cumulative logits of an ordinal outcome, shape (draws, obs, K - 1)."""
    levels = model.outcome_levels(spec.outcome)
    n_splits = len(levels) - 1

    design = build_design_matrix(
        spec.formula, model.data, new_data, intercept=False, warn_missing=warn
    )
    coefficients = model.coefficients(spec.outcome)
    shared = [c for c in coefficients if c.category is None]
    groups = _nonprop_groups(coefficients, n_splits)

    covered = {c.varname for c in coefficients}
    unmatched = [c for c in design.columns if c not in covered]
    if unmatched:
        raise ColumnMismatchError(
            f"Design matrix columns {unmatched} of '{spec.outcome}' have no "
            "corresponding coefficient."
        )

    intercepts = mcmc.find(spec.outcome, ParameterRole.INTERCEPT)
    if len(intercepts) != n_splits:
        raise ColumnMismatchError(
            f"The ordinal outcome '{spec.outcome}' has {len(levels)} categories and "
            f"needs {n_splits} intercepts, but the sample has {len(intercepts)}."
        )
    gamma = mcmc.get([p.raw for p in intercepts])

    shared_names = [c.varname for c in shared]
    eta = linear_predictor(
        _coefficient_draws(model, mcmc, shared),
        design.select([c for c in design.columns if c in shared_names]),
        model.scaling,
    )
    lp = gamma[:, np.newaxis, :] + eta[:, :, np.newaxis]

    for k, group in enumerate(groups):
        names = [c.varname for c in group]
        lp[:, :, k] += linear_predictor(
            _coefficient_draws(model, mcmc, group),
            design.select([c for c in design.columns if c in names]),
            model.scaling,
        )
    return lp, design.index


def ordinal_probabilities(lp: np.ndarray, reverse: bool = False) -> np.ndarray:
    """
    Category probabilities from cumulative logits.

    Parameters
    ----------
    lp : np.ndarray
        Cumulative logits of shape (..., K - 1): logit P(y <= k), or
        logit P(y > k) if `reverse`.
    reverse : bool, optional
        Direction of the cumulative logits. Default is False.

    Returns
    -------
    np.ndarray
        Probabilities of shape (..., K), each in [0, 1] and summing to 1.
    """
    cumulative = np.clip(special.expit(lp), 0.0, 1.0)
    if reverse:
        cumulative = 1.0 - np.minimum.accumulate(cumulative, axis=-1)
    else:
        cumulative = np.maximum.accumulate(cumulative, axis=-1)

    shape = cumulative.shape[:-1] + (1,)
    padded = np.concatenate([np.zeros(shape), cumulative, np.ones(shape)], axis=-1)
    return np.diff(padded, axis=-1)


def _predict_clm(model, spec, mcmc, new_data, type, quantiles, warn) -> PredictionResult:
    levels = model.outcome_levels(spec.outcome)
    lp, index = _cumulative_logits(model, spec, mcmc, new_data, warn)

    if type == "lp":
        sign = ">" if spec.reverse else "<="
        splits = [f"{spec.outcome} {sign} {level}" for level in levels[:-1]]
        return _make_result(spec.outcome, type, lp, quantiles, index, categories=splits)

    probs = ordinal_probabilities(lp, reverse=spec.reverse)
    if type == "class":
        return _class_result(spec.outcome, probs, levels, index)
    return _make_result(spec.outcome, type, probs, quantiles, index, categories=levels)


def _multinomial_logits(model, spec, mcmc, new_data, warn) -> tuple[np.ndarray, pd.Index]:
    """Linear predictors of the non-baseline categories, shape (draws, obs, K - 1)."""
    levels = model.outcome_levels(spec.outcome)
    design = build_design_matrix(spec.formula, model.data, new_data, warn_missing=warn)
    coefficients = model.coefficients(spec.outcome)

    by_category: dict[str, list[CoefficientSpec]] = {}
    for c in coefficients:
        by_category.setdefault(str(c.category), []).append(c)

    expected = [str(level) for level in levels[1:]]
    if sorted(by_category) != sorted(expected):
        raise ColumnMismatchError(
            f"Coefficients of the multinomial outcome '{spec.outcome}' are given for "
            f"categories {sorted(by_category)}, expected {expected}."
        )

    etas = [
        linear_predictor(
            _coefficient_draws(model, mcmc, by_category[category]), design, model.scaling
        )
        for category in expected
    ]
    return np.stack(etas, axis=-1), design.index


def _predict_mlogit(model, spec, mcmc, new_data, type, quantiles, warn) -> PredictionResult:
    levels = model.outcome_levels(spec.outcome)
    eta, index = _multinomial_logits(model, spec, mcmc, new_data, warn)

    if type == "lp":
        return _make_result(spec.outcome, type, eta, quantiles, index, categories=levels[1:])

    baseline = np.zeros(eta.shape[:-1] + (1,))
    probs = np.clip(special.softmax(np.concatenate([baseline, eta], axis=-1), axis=-1), 0, 1)
    if type == "class":
        return _class_result(spec.outcome, probs, levels, index)
    return _make_result(spec.outcome, type, probs, quantiles, index, categories=levels)


def _predict_survreg(model, spec, mcmc, new_data, type, quantiles, warn) -> PredictionResult:
    eta, index = outcome_linear_predictor(model, spec, mcmc, new_data, warn)

    # log-time model: exp maps the linear predictor to the time scale
    values = np.exp(eta) if type == "response" else eta
    return _make_result(spec.outcome, type, values, quantiles, index)


def _require_variables(spec: ModelSpec, data: pd.DataFrame, variables: Iterable[str]) -> None:
    missing = [v for v in variables if v not in data.columns]
    if missing:
        raise UnknownVariableError(
            f"Predicting '{spec.outcome}' requires the variable(s) {missing}, "
            "which are not in the data."
        )


def _split_by_level(
    model: FittedModel, spec: ModelSpec, columns: Sequence[str]
) -> tuple[list[str], list[str]]:
    """Split design columns into same-or-coarser and finer level columns."""
    rank = model.level_rank(spec.level)
    same, finer = [], []
    for column in columns:
        level = model.column_levels.get(column, spec.level)
        (finer if model.level_rank(level) < rank else same).append(column)
    return same, finer


def _finer_level_predictor(
    model: FittedModel,
    spec: ModelSpec,
    new_data: pd.DataFrame,
    coefs: pd.DataFrame,
    columns: Sequence[str],
    nodes: np.ndarray,
) -> np.ndarray:
    """Linear predictor of finer-level covariates at the quadrature nodes."""
    if model.id_var is None or model.time_var is None:
        raise UnknownVariableError(
            f"Evaluating time-varying covariates of '{spec.outcome}' requires the "
            "id_var and time_var of the model."
        )
    _require_variables(spec, new_data, [model.id_var, model.time_var])

    n_obs, n_nodes = nodes.shape
    query_ids = np.repeat(new_data[model.id_var].to_numpy(), n_nodes)
    positions = locf_positions(
        new_data[model.id_var], new_data[model.time_var], query_ids, nodes.ravel()
    )

    node_data = new_data.iloc[np.maximum(positions, 0)].reset_index(drop=True)
    design = build_design_matrix(
        spec.formula, model.data, node_data, intercept=False, warn_missing=False
    ).select(columns)
    eta = linear_predictor(coefs[list(columns)], design, model.scaling)
    eta[:, positions < 0] = np.nan
    return eta.reshape(eta.shape[0], n_obs, n_nodes)


def _predict_coxph(model, spec, mcmc, new_data, type, quantiles, warn) -> PredictionResult:
    data = model.data
    new_data = data if new_data is None else new_data
    if spec.time_var is None or spec.event_var is None:
        raise UnknownVariableError(
            f"The proportional hazards model of '{spec.outcome}' needs a formula of the "
            "form 'Surv(time, event) ~ ...' or explicit time_var and event_var."
        )
    _require_variables(spec, data, [spec.time_var, spec.event_var])
    _require_variables(spec, new_data, [spec.time_var])

    design = build_design_matrix(
        spec.formula, data, new_data, intercept=False, warn_missing=warn
    )
    coefs = _coefficient_draws(model, mcmc, model.coefficients(spec.outcome))
    same, finer = _split_by_level(model, spec, design.columns)

    eta_surv = linear_predictor(coefs, design.select(same), model.scaling)

    event = as_numeric_outcome(data[spec.event_var]) > 0
    times_ref = data[spec.time_var].to_numpy(dtype=np.float64)
    knots = baseline_hazard_knots(times_ref, times_ref[event], spec.df_basehaz)

    bh_params = mcmc.find(spec.outcome, ParameterRole.BASELINE_HAZARD)
    n_basis = len(knots) - 4
    if len(bh_params) != n_basis:
        raise ColumnMismatchError(
            f"The baseline hazard of '{spec.outcome}' has {n_basis} basis functions, "
            f"but the sample has {len(bh_params)} baseline hazard coefficients."
        )
    bh = mcmc.get([p.raw for p in bh_params])

    times = pd.to_numeric(new_data[spec.time_var], errors="coerce").to_numpy(dtype=np.float64)
    missing_time = np.isnan(times)

    if type in ("lp", "risk"):
        eta_long = (
            linear_predictor(coefs, design.select(finer), model.scaling) if finer else 0.0
        )
        lp = bh @ bspline_basis(times, knots).T + eta_surv + eta_long
        lp[:, missing_time] = np.nan
        values = lp if type == "lp" else np.exp(lp)
        return _make_result(spec.outcome, type, values, quantiles, design.index)

    nodes = quadrature_nodes(np.where(missing_time, 0.0, times))
    n_obs, n_nodes = nodes.shape
    log_h0 = (bh @ bspline_basis(nodes.ravel(), knots).T).reshape(-1, n_obs, n_nodes)
    if finer:
        log_h0 = log_h0 + _finer_level_predictor(
            model, spec, new_data, coefs, finer, nodes
        )

    expected = np.exp(eta_surv) * integrate_hazard(times, np.exp(log_h0))
    expected[:, missing_time] = np.nan
    values = expected if type == "expected" else np.exp(-expected)
    return _make_result(spec.outcome, type, values, quantiles, design.index)


def _predict_jm(model, spec, mcmc, new_data, type, quantiles, warn) -> PredictionResult:
    raise ModelNotImplementedError(
        f"Prediction is not available for joint models (outcome '{spec.outcome}', "
        f"model type {spec.model_type.value})."
    )


_PREDICTORS: dict[ModelType, Callable[..., PredictionResult]] = {
    ModelType.GLM: _predict_glm,
    ModelType.CLM: _predict_clm,
    ModelType.MLOGIT: _predict_mlogit,
    ModelType.SURVREG: _predict_survreg,
    ModelType.COXPH: _predict_coxph,
    ModelType.JM: _predict_jm,
}

ALLOWED_TYPES: dict[ModelType, tuple[str, ...]] = {
    ModelType.GLM: ("link", "response", "lp"),
    ModelType.CLM: ("prob", "lp", "class", "response"),
    ModelType.MLOGIT: ("prob", "lp", "class", "response"),
    ModelType.SURVREG: ("response", "link", "lp", "linear"),
    ModelType.COXPH: ("lp", "risk", "expected", "survival"),
    ModelType.JM: (),
}

_TYPE_ALIASES: dict[ModelType, dict[str, str]] = {
    ModelType.GLM: {"lp": "link"},
    ModelType.CLM: {"response": "class"},
    ModelType.MLOGIT: {"response": "class"},
    ModelType.SURVREG: {"link": "lp", "linear": "lp"},
}

FITTED_TYPES: dict[ModelType, str] = {
    ModelType.GLM: "response",
    ModelType.CLM: "prob",
    ModelType.MLOGIT: "prob",
    ModelType.SURVREG: "response",
    ModelType.COXPH: "lp",
}


def resolve_prediction_type(model_type: ModelType | str, type: str) -> str:
    """
    Validate a prediction type for a model type and resolve aliases.

    Raises
    ------
    ModelNotImplementedError
        For joint models, which do not support prediction.
    UnsupportedRequestTypeError
        If the type is not allowed for the model type.
    """
    model_type = ModelType.from_tag(model_type)
    if model_type is ModelType.JM:
        raise ModelNotImplementedError("Prediction is not available for joint models (JM).")

    allowed = ALLOWED_TYPES[model_type]
    if type not in allowed:
        raise UnsupportedRequestTypeError(
            f"Prediction type '{type}' is not available for {model_type.value} models. "
            f"Allowed types: {list(allowed)}"
        )
    return _TYPE_ALIASES.get(model_type, {}).get(type, type)


def _selected_outcomes(model: FittedModel, outcome: str | Iterable[str] | None) -> list[str]:
    if outcome is None:
        return list(model.outcomes)
    if isinstance(outcome, str):
        return [outcome]
    return list(outcome)


def predict_outcome(
    model: FittedModel,
    outcome: str,
    new_data: pd.DataFrame | None = None,
    type: str = "lp",
    quantiles: Sequence[float] | None = DEFAULT_QUANTILES,
    start: int | None = None,
    end: int | None = None,
    thin: int | None = None,
    exclude_chains: Iterable[int] | None = None,
    warn: bool = True,
) -> PredictionResult:
    """Predict a single outcome; see `predict` for the parameters."""
    spec = model.spec(outcome)
    resolved = resolve_prediction_type(spec.model_type, type)

    if spec.hierarchical and warn:
        warnings.warn(
            f"Prediction for '{outcome}' is based on the fixed effects only; "
            "random effects are set to zero.",
            UserWarning,
        )

    mcmc = slice_posterior(
        model.posterior,
        start=start,
        end=end,
        thin=thin,
        exclude_chains=exclude_chains,
        subset=ParameterGroup(outcomes=(outcome,)),
    )
    predictor = _PREDICTORS[spec.model_type]
    return predictor(model, spec, mcmc, new_data, resolved, quantiles, warn)


def predict(
    model: FittedModel,
    outcome: str | Sequence[str] | None = None,
    new_data: pd.DataFrame | None = None,
    type: str = "lp",
    quantiles: Sequence[float] | None = DEFAULT_QUANTILES,
    start: int | None = None,
    end: int | None = None,
    thin: int | None = None,
    exclude_chains: Iterable[int] | None = None,
    warn: bool = True,
) -> PredictionResult | dict[str, PredictionResult]:
    """
    Posterior predictions for one or more outcomes.

    Parameters
    ----------
    model : FittedModel
        The fitted joint model.
    outcome : str or sequence of str, optional
        Outcome(s) to predict. Default is all outcomes.
    new_data : pd.DataFrame, optional
        Data to predict for. Default is the data the model was fitted on.
    type : str, optional
        Scale of the prediction. Allowed values depend on the model type:
        "link", "response" or "lp" (generalized linear models); "prob",
        "lp", "class" or "response" (ordinal and multinomial models);
        "response", "link", "lp" or "linear" (parametric survival models);
        "lp", "risk", "expected" or "survival" (proportional hazards
        models). Default is "lp".
    quantiles : sequence of float, optional
        Probability levels of the credible interval. Default is
        (0.025, 0.975). None skips the quantiles.
    start, end, thin : int, optional
        Iterations of the MCMC sample to use.
    exclude_chains : iterable of int, optional
        0-based indices of chains to leave out.
    warn : bool, optional
        Emit warnings for missing covariates and hierarchical outcomes.
        Default is True.

    Returns
    -------
    PredictionResult or dict[str, PredictionResult]
        A single result if `outcome` is a string, otherwise a dictionary
        keyed by outcome.

    Raises
    ------
    UnsupportedRequestTypeError
        If `type` is not valid for the model type of an outcome.
    ModelNotImplementedError
        For joint longitudinal-survival outcomes.

    Examples
    --------
    >>> res = predict(model, "y", new_data=grid, type="response")
    >>> res.with_data(grid)
    """
    kwargs = dict(
        new_data=new_data,
        type=type,
        quantiles=quantiles,
        start=start,
        end=end,
        thin=thin,
        exclude_chains=exclude_chains,
        warn=warn,
    )
    if isinstance(outcome, str):
        return predict_outcome(model, outcome, **kwargs)
    return {name: predict_outcome(model, name, **kwargs) for name in _selected_outcomes(model, outcome)}


def fitted_values(
    model: FittedModel,
    outcome: str | Sequence[str] | None = None,
    start: int | None = None,
    end: int | None = None,
    thin: int | None = None,
    exclude_chains: Iterable[int] | None = None,
) -> pd.Series | pd.DataFrame | dict[str, pd.Series | pd.DataFrame]:
    """
    Posterior mean fitted values for the data the model was fitted on.

    The scale depends on the model type: the response scale for generalized
    linear and parametric survival models, category probabilities for
    ordinal and multinomial models, and the linear predictor (log hazard)
    for proportional hazards models.

    Returns
    -------
    pd.Series, pd.DataFrame or dict
        Fitted values of a single outcome, or a dictionary keyed by outcome.
    """
    def _fitted(name: str) -> pd.Series | pd.DataFrame:
        spec = model.spec(name)
        if spec.model_type not in FITTED_TYPES:
            raise ModelNotImplementedError(
                f"Fitted values are not available for {spec.model_type.value} models "
                f"(outcome '{name}')."
            )
        return predict_outcome(
            model,
            name,
            type=FITTED_TYPES[spec.model_type],
            quantiles=None,
            start=start,
            end=end,
            thin=thin,
            exclude_chains=exclude_chains,
            warn=False,
        ).fit

    if isinstance(outcome, str):
        return _fitted(outcome)
    return {name: _fitted(name) for name in _selected_outcomes(model, outcome)}
