"""
High-level results class for fitted Bayesian joint models.

`BayesianJointModel` wraps a `FittedModel` and exposes the post-estimation
functions of the package (summaries, coefficients, credible intervals,
predictions, fitted values and residuals) as methods.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

import arviz as az
import pandas as pd

from .exceptions import EmptySampleError
from .models import (
    DEFAULT_QUANTILES,
    CoefficientSpec,
    FittedModel,
    ModelSpec,
    PredictionResult,
    fitted_values,
    predict,
)
from .posterior import PosteriorSample
from .residuals import residuals
from .summary import (
    ModelSummary,
    coef,
    confint,
    family,
    parameter_summary,
    parameters,
    summarize,
)
from .utils import missing_info, prediction_grid

if TYPE_CHECKING:
    import xarray as xr


class BayesianJointModel:
    """
    Post-estimation interface for a fitted Bayesian joint model.

    The model consists of one conditional model per outcome, fitted jointly
    by MCMC. This class does not fit models; it takes the MCMC sample and
    the model description produced by the fitting routine.

    Parameters
    ----------
    model : FittedModel
        The fitted joint model.

    Attributes
    ----------
    model : FittedModel
        The wrapped model.

    Examples
    --------
    >>> jm = BayesianJointModel.from_inference_data(
    ...     idata,
    ...     outcomes=[ModelSpec("y", "glm", "y ~ x + C(g)")],
    ...     data=df,
    ...     coef_index={"y": [("beta[1]", "Intercept"), ("beta[2]", "x"),
    ...                       ("beta[3]", "C(g)[T.b]")]},
    ... )
    >>> jm.summary()
    >>> jm.predict("y", new_data=jm.prediction_grid("x"), type="response")
    """

    def __init__(self, model: FittedModel) -> None:
        self.model = model

    @classmethod
    def from_inference_data(
        cls,
        idata: az.InferenceData | xr.Dataset,
        outcomes: Mapping[str, ModelSpec] | Sequence[ModelSpec],
        data: pd.DataFrame,
        coef_index: Mapping[str, Sequence[CoefficientSpec | tuple]] | None = None,
        scaling: Mapping[str, tuple[float, float]] | None = None,
        var_names: Sequence[str] | None = None,
        **kwargs: Any,
    ) -> BayesianJointModel:
        """
        Create the model from an ArviZ InferenceData object.

        Parameters
        ----------
        idata : az.InferenceData or xr.Dataset
            MCMC sample in the ``posterior`` group.
        outcomes : mapping or sequence of ModelSpec
            Outcome models.
        data : pd.DataFrame
            The data the model was fitted on.
        coef_index : mapping, optional
            Outcome -> regression coefficients.
        scaling : mapping, optional
            Covariate -> (center, scale).
        var_names : sequence of str, optional
            Posterior variables to use. Default is all.
        **kwargs
            Further `FittedModel` fields (group_levels, column_levels,
            id_var, time_var).

        Returns
        -------
        BayesianJointModel
        """
        posterior = PosteriorSample.from_inference_data(idata, var_names=var_names)
        model = FittedModel(
            outcomes=outcomes,
            posterior=posterior,
            data=data,
            coef_index=coef_index or {},
            scaling=scaling or {},
            **kwargs,
        )
        return cls(model)

    @property
    def outcomes(self) -> list[str]:
        return list(self.model.outcomes)

    @property
    def idata(self) -> az.InferenceData:
        """The MCMC sample as ArviZ InferenceData."""
        return self.model.posterior.to_inference_data()

    def summary(
        self,
        start: int | None = None,
        end: int | None = None,
        thin: int | None = None,
        quantiles: Sequence[float] = DEFAULT_QUANTILES,
        subset: Any = None,
        exclude_chains: Iterable[int] | None = None,
        outcome: str | Sequence[str] | None = None,
    ) -> ModelSummary:
        """Posterior summary of the model; see `summarize`."""
        self._check_has_sample()
        return summarize(
            self.model,
            start=start,
            end=end,
            thin=thin,
            quantiles=quantiles,
            subset=subset,
            exclude_chains=exclude_chains,
            outcome=outcome,
        )

    def coef(self, **kwargs: Any) -> dict[str, pd.Series]:
        """Posterior means of the regression coefficients; see `coef`."""
        self._check_has_sample()
        return coef(self.model, **kwargs)

    def confint(self, level: float = 0.95, **kwargs: Any) -> dict[str, pd.DataFrame]:
        """Credible intervals of the regression coefficients; see `confint`."""
        self._check_has_sample()
        return confint(self.model, level=level, **kwargs)

    def predict(
        self,
        outcome: str | Sequence[str] | None = None,
        new_data: pd.DataFrame | None = None,
        type: str = "lp",
        quantiles: Sequence[float] | None = DEFAULT_QUANTILES,
        **kwargs: Any,
    ) -> PredictionResult | dict[str, PredictionResult]:
        """
        Posterior predictions; see `predict`.

        Parameters
        ----------
        outcome : str or sequence of str, optional
            Outcome(s) to predict. Default is all outcomes.
        new_data : pd.DataFrame, optional
            Data to predict for. Default is the data the model was fitted on.
        type : str, optional
            Scale of the prediction. Default is "lp".
        quantiles : sequence of float, optional
            Probability levels of the credible interval.
        **kwargs
            start, end, thin, exclude_chains and warn.
        """
        self._check_has_sample()
        return predict(
            self.model,
            outcome=outcome,
            new_data=new_data,
            type=type,
            quantiles=quantiles,
            **kwargs,
        )

    def fitted_values(
        self, outcome: str | Sequence[str] | None = None, **kwargs: Any
    ) -> pd.Series | pd.DataFrame | dict[str, pd.Series | pd.DataFrame]:
        """Fitted values for the data the model was fitted on; see `fitted_values`."""
        self._check_has_sample()
        return fitted_values(self.model, outcome=outcome, **kwargs)

    def residuals(
        self,
        type: str | Mapping[str, str] = "working",
        outcome: str | Sequence[str] | None = None,
        **kwargs: Any,
    ) -> pd.Series | dict[str, pd.Series]:
        """Residuals of generalized linear outcome models; see `residuals`."""
        self._check_has_sample()
        return residuals(self.model, type=type, outcome=outcome, **kwargs)

    def parameter_summary(
        self,
        var_names: list[str] | None = None,
        filter_vars: str | None = None,
        hdi_prob: float = 0.94,
        **kwargs: Any,
    ) -> pd.DataFrame:
        """
        Get ArviZ summary statistics for model parameters.

        Parameters
        ----------
        var_names : list[str], optional
            Parameter names to include. If None, includes all.
        filter_vars : str, optional
            "like" or "regex" matching of `var_names`.
        hdi_prob : float, optional
            Probability mass for HDI. Default is 0.94.

        Returns
        -------
        pd.DataFrame
            Parameter summary table.
        """
        self._check_has_sample()
        return parameter_summary(
            self.model,
            var_names=var_names,
            filter_vars=filter_vars,
            hdi_prob=hdi_prob,
            **kwargs,
        )

    def parameters(self) -> pd.DataFrame:
        """Outcome, name, design column and category of every monitored parameter."""
        return parameters(self.model)

    def family(self, outcome: str | None = None) -> str | None | dict[str, str | None]:
        """Distribution family of an outcome (all outcomes if None)."""
        return family(self.model, outcome)

    def prediction_grid(
        self,
        vary: str | Sequence[str],
        length: int = 100,
        outcome: str | Sequence[str] | None = None,
        **values: Any,
    ) -> pd.DataFrame:
        """
        Data for prediction in which `vary` varies and all other covariates are
        at reference values; see `prediction_grid`.
        """
        if outcome is None:
            names = self.outcomes
        else:
            names = [outcome] if isinstance(outcome, str) else list(outcome)
        formulas = [self.model.spec(name).formula for name in names]
        return prediction_grid(self.model.data, formulas, vary, length=length, **values)

    def missing_info(self, variables: Sequence[str] | None = None) -> dict[str, pd.DataFrame]:
        """Number and proportion of missing values and complete cases."""
        return missing_info(self.model.data, variables=variables, id_var=self.model.id_var)

    def _check_has_sample(self) -> None:
        """Check that the model has an MCMC sample."""
        if self.model.posterior.n_iterations == 0:
            raise EmptySampleError(
                "There is no MCMC sample. The model must be fitted with iterations."
            )

    def __repr__(self) -> str:
        posterior = self.model.posterior
        return (
            f"BayesianJointModel(\n"
            f"    outcomes={self.outcomes},\n"
            f"    chains={posterior.n_chains},\n"
            f"    iterations={posterior.start}:{posterior.end},\n"
            f"    thin={posterior.thin}\n"
            f")"
        )
