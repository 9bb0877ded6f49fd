"""Tests for linear predictors and per-model-type predictions."""

from dataclasses import replace

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from bayesianimputation.exceptions import (
    ColumnMismatchError,
    ModelNotImplementedError,
    UnknownVariableError,
    UnsupportedModelTypeError,
    UnsupportedRequestTypeError,
)
from bayesianimputation.models import (
    _PREDICTORS,
    ALLOWED_TYPES,
    CoefficientSpec,
    FittedModel,
    ModelSpec,
    ModelType,
    fitted_values,
    linear_predictor,
    ordinal_probabilities,
    predict,
    resolve_prediction_type,
    survival_variables,
)
from bayesianimputation.utils import build_design_matrix


class TestModelType:
    """Tests for model type tags and dispatch."""

    @pytest.mark.parametrize(
        "tag, expected",
        [
            ("glm", ModelType.GLM),
            ("glmm", ModelType.GLM),
            ("glm_binomial_logit", ModelType.GLM),
            ("glmm_gaussian_identity", ModelType.GLM),
            ("clmm", ModelType.CLM),
            ("mlogitmm", ModelType.MLOGIT),
            ("survreg", ModelType.SURVREG),
            ("coxph", ModelType.COXPH),
            ("JM", ModelType.JM),
        ],
    )
    def test_from_tag(self, tag, expected):
        assert ModelType.from_tag(tag) is expected

    def test_unknown_tag_raises(self):
        with pytest.raises(UnsupportedModelTypeError, match="lmer"):
            ModelType.from_tag("lmer")

    def test_every_model_type_is_dispatched(self):
        assert set(_PREDICTORS) == set(ModelType)
        assert set(ALLOWED_TYPES) == set(ModelType)

    @pytest.mark.parametrize(
        "model_type, type, expected",
        [
            ("glm", "lp", "link"),
            ("glm", "response", "response"),
            ("clm", "response", "class"),
            ("mlogit", "prob", "prob"),
            ("survreg", "linear", "lp"),
            ("survreg", "link", "lp"),
            ("coxph", "survival", "survival"),
        ],
    )
    def test_type_aliases(self, model_type, type, expected):
        assert resolve_prediction_type(model_type, type) == expected

    @pytest.mark.parametrize(
        "model_type, type",
        [("glm", "prob"), ("clm", "link"), ("survreg", "risk"), ("coxph", "response")],
    )
    def test_type_not_allowed(self, model_type, type):
        with pytest.raises(UnsupportedRequestTypeError, match=model_type):
            resolve_prediction_type(model_type, type)

    def test_joint_model_not_implemented(self):
        with pytest.raises(ModelNotImplementedError):
            resolve_prediction_type("JM", "lp")


class TestModelSpec:
    """Tests for model specifications."""

    def test_glm_defaults(self):
        spec = ModelSpec("y", "glm", "y ~ x")
        assert spec.family == "gaussian"
        assert spec.link == "identity"

    def test_family_alias_and_default_link(self):
        spec = ModelSpec("y", "glmm", "y ~ x", family="gamma")
        assert spec.model_type is ModelType.GLM
        assert spec.family == "Gamma"
        assert spec.link == "inverse"

    def test_survival_variables(self):
        assert survival_variables("Surv(time, status) ~ x") == ("time", "status")
        spec = ModelSpec("Surv_time_status", "coxph", "Surv(time, status) ~ x")
        assert (spec.time_var, spec.event_var) == ("time", "status")


class TestLinearPredictor:
    """Tests for linear_predictor."""

    @pytest.fixture
    def design(self):
        return pd.DataFrame({"Intercept": [1.0, 1.0, 1.0], "x": [1.0, 3.0, 5.0]})

    def test_values(self, design):
        coefs = pd.DataFrame({"x": [2.0, 0.0], "Intercept": [1.0, -1.0]})
        eta = linear_predictor(coefs, design)
        np.testing.assert_allclose(eta, [[3.0, 7.0, 11.0], [-1.0, -1.0, -1.0]])

    def test_linear_in_coefficients(self, design, rng):
        coefs = pd.DataFrame(rng.normal(size=(4, 2)), columns=["Intercept", "x"])
        eta = linear_predictor(coefs, design)
        np.testing.assert_allclose(linear_predictor(coefs * 3.5, design), eta * 3.5)

    def test_scaling(self, design):
        coefs = pd.DataFrame({"Intercept": [0.0], "x": [1.0]})
        eta = linear_predictor(coefs, design, scaling={"x": (1.0, 2.0)})
        np.testing.assert_allclose(eta, [[0.0, 1.0, 2.0]])

    def test_missing_scale_entries(self, design):
        coefs = pd.DataFrame({"Intercept": [0.0], "x": [1.0]})
        eta = linear_predictor(coefs, design, scaling={"x": (np.nan, None)})
        np.testing.assert_allclose(eta, [[1.0, 3.0, 5.0]])

    def test_unmatched_column_raises(self, design):
        coefs = pd.DataFrame({"Intercept": [0.0]})
        with pytest.raises(ColumnMismatchError, match="x"):
            linear_predictor(coefs, design)

    def test_accepts_design_matrix(self, glm_data):
        X = build_design_matrix("y ~ x", glm_data)
        coefs = pd.DataFrame({"Intercept": [1.0], "x": [0.0]})
        np.testing.assert_allclose(linear_predictor(coefs, X), np.ones((1, len(glm_data))))


class TestPredictGLM:
    """Tests for predictions of generalized linear models."""

    def test_intercept_only(self, glm_data, sample_factory):
        model = FittedModel(
            outcomes=[ModelSpec("y", "glm", "y ~ 1")],
            posterior=sample_factory({"beta[1]": 2.0}, n_chains=1, n_iter=100),
            data=glm_data,
            coef_index={"y": [("beta[1]", "Intercept")]},
        )
        res = predict(model, "y", type="lp")
        np.testing.assert_allclose(res.fit, 2.0)
        np.testing.assert_allclose(res.quantiles["2.5%"], 2.0)
        np.testing.assert_allclose(res.quantiles["97.5%"], 2.0)

    def test_centered_covariate(self, glm_data, sample_factory):
        model = FittedModel(
            outcomes=[ModelSpec("y", "glm", "y ~ x")],
            posterior=sample_factory({"beta[1]": 2.0, "beta[2]": 1.0}),
            data=glm_data,
            coef_index={"y": [("beta[1]", "Intercept"), ("beta[2]", "x")]},
            scaling={"x": (2.0, 1.0)},
        )
        new = pd.DataFrame({"x": [2.0, 3.0]})
        res = predict(model, "y", new_data=new)
        np.testing.assert_allclose(res.fit, [2.0, 3.0])

    def test_response_equals_link_for_identity(self, glm_model):
        link = predict(glm_model, "y", type="link")
        response = predict(glm_model, "y", type="response")
        np.testing.assert_allclose(link.fit, response.fit)

    def test_fit_values(self, glm_model, glm_data):
        res = predict(glm_model, "y", type="response")
        expected = 1.0 + 0.5 * glm_data["x"] - 1.0 * (glm_data["g"] == "b")
        np.testing.assert_allclose(res.fit, expected)
        assert res.type == "response"
        assert list(res.quantiles.columns) == ["2.5%", "97.5%"]

    def test_custom_quantiles(self, glm_model):
        res = predict(glm_model, "y", quantiles=[0.1, 0.5, 0.9])
        assert list(res.quantiles.columns) == ["10%", "50%", "90%"]

    def test_no_quantiles(self, glm_model):
        assert predict(glm_model, "y", quantiles=None).quantiles is None

    def test_missing_covariates_give_nan(self, glm_model):
        new = pd.DataFrame({"x": [1.0, np.nan], "g": ["a", "b"]})
        with pytest.warns(UserWarning, match="missing"):
            res = predict(glm_model, "y", new_data=new)
        assert res.fit.iloc[0] == pytest.approx(1.5)
        assert np.isnan(res.fit.iloc[1])
        assert res.quantiles.iloc[1].isna().all()

    def test_poisson_response_is_count(self, glm_data, sample_factory):
        model = FittedModel(
            outcomes=[ModelSpec("y", "glm", "y ~ x", family="poisson")],
            posterior=sample_factory({"beta[1]": 0.3, "beta[2]": 0.4}, noise=0.2),
            data=glm_data,
            coef_index={"y": [("beta[1]", "Intercept"), ("beta[2]", "x")]},
        )
        fit = predict(model, "y", type="response").fit
        assert (fit >= 0).all()
        np.testing.assert_array_equal(fit, np.round(fit))

    def test_binomial_response_in_unit_interval(self, glm_data, sample_factory):
        model = FittedModel(
            outcomes=[ModelSpec("y", "glm", "y ~ x", family="binomial")],
            posterior=sample_factory({"beta[1]": -1.0, "beta[2]": 0.8}, noise=0.5),
            data=glm_data,
            coef_index={"y": [("beta[1]", "Intercept"), ("beta[2]", "x")]},
        )
        res = predict(model, "y", type="response")
        assert ((res.fit > 0) & (res.fit < 1)).all()
        assert (res.quantiles["2.5%"] <= res.fit).all()

    def test_hierarchical_warns(self, glm_data, sample_factory):
        model = FittedModel(
            outcomes=[ModelSpec("y", "glmm", "y ~ 1", hierarchical=True)],
            posterior=sample_factory({"beta[1]": 0.0}),
            data=glm_data,
            coef_index={"y": [("beta[1]", "Intercept")]},
        )
        with pytest.warns(UserWarning, match="fixed effects"):
            predict(model, "y")

    def test_type_not_allowed(self, glm_model):
        with pytest.raises(UnsupportedRequestTypeError):
            predict(glm_model, "y", type="prob")

    def test_subset_of_chains(self, glm_data, sample_factory):
        values = np.array([[1.0], [3.0]]) * np.ones((2, 50))
        model = FittedModel(
            outcomes=[ModelSpec("y", "glm", "y ~ 1")],
            posterior=sample_factory({"beta[1]": values}),
            data=glm_data,
            coef_index={"y": [("beta[1]", "Intercept")]},
        )
        np.testing.assert_allclose(predict(model, "y").fit, 2.0)
        np.testing.assert_allclose(predict(model, "y", exclude_chains=[0]).fit, 3.0)

    def test_result_frames(self, glm_model):
        new = pd.DataFrame({"x": [1.0, 2.0], "g": ["a", "a"]})
        res = predict(glm_model, "y", new_data=new, type="response")
        combined = res.with_data(new)
        assert list(combined.columns) == ["x", "g", "fit", "2.5%", "97.5%"]
        np.testing.assert_allclose(combined["fit"], [1.5, 2.0])

    def test_all_outcomes(self, glm_model):
        res = predict(glm_model)
        assert list(res) == ["y"]

    def test_fitted_values(self, glm_model, glm_data):
        fit = fitted_values(glm_model, "y")
        assert isinstance(fit, pd.Series)
        assert len(fit) == len(glm_data)


@pytest.fixture
def ordinal_model(ordinal_data, sample_factory):
    """Ordinal outcome with intercepts 0 and 1 and a zero effect of x."""
    return FittedModel(
        outcomes=[ModelSpec("y", "clm", "y ~ x")],
        posterior=sample_factory({"gamma_y[1]": 0.0, "gamma_y[2]": 1.0, "beta[1]": 0.0}),
        data=ordinal_data,
        coef_index={"y": [("beta[1]", "x")]},
    )


class TestPredictOrdinal:
    """Tests for predictions of cumulative logit models."""

    def test_category_probabilities(self, ordinal_model):
        res = predict(ordinal_model, "y", type="prob")
        assert list(res.fit.columns) == ["low", "mid", "high"]
        expected = [0.5, expit(1.0) - 0.5, 1 - expit(1.0)]
        np.testing.assert_allclose(res.fit.to_numpy(), np.tile(expected, (6, 1)))
        np.testing.assert_allclose(res.fit.sum(axis=1), 1.0)

    def test_quantile_columns(self, ordinal_model):
        res = predict(ordinal_model, "y", type="prob")
        assert res.quantiles.columns.nlevels == 2
        assert ("mid", "97.5%") in res.quantiles.columns

    def test_cumulative_logits(self, ordinal_model):
        res = predict(ordinal_model, "y", type="lp")
        assert list(res.fit.columns) == ["y <= low", "y <= mid"]
        np.testing.assert_allclose(res.fit["y <= mid"], 1.0)

    def test_class(self, ordinal_model):
        res = predict(ordinal_model, "y", type="class")
        assert (res.fit == "low").all()
        assert res.quantiles is None
        assert predict(ordinal_model, "y", type="response").type == "class"

    def test_reversed(self, ordinal_data, sample_factory):
        model = FittedModel(
            outcomes=[ModelSpec("y", "clm", "y ~ x", reverse=True)],
            posterior=sample_factory({"gamma_y[1]": 1.0, "gamma_y[2]": 0.0, "beta[1]": 0.0}),
            data=ordinal_data,
            coef_index={"y": [("beta[1]", "x")]},
        )
        res = predict(model, "y", type="prob")
        expected = [1 - expit(1.0), expit(1.0) - 0.5, 0.5]
        np.testing.assert_allclose(res.fit.iloc[0], expected)
        assert list(predict(model, "y", type="lp").fit.columns) == ["y > low", "y > mid"]

    def test_probabilities_valid_for_noisy_intercepts(self, ordinal_data, sample_factory):
        model = FittedModel(
            outcomes=[ModelSpec("y", "clm", "y ~ x")],
            posterior=sample_factory(
                {"gamma_y[1]": 0.0, "gamma_y[2]": 0.1, "beta[1]": 0.3}, noise=1.0
            ),
            data=ordinal_data,
            coef_index={"y": [("beta[1]", "x")]},
        )
        res = predict(model, "y", type="prob")
        assert ((res.fit >= 0) & (res.fit <= 1)).all().all()
        np.testing.assert_allclose(res.fit.sum(axis=1), 1.0)

    def test_ordinal_probabilities_monotone_fix(self):
        lp = np.array([[1.0, 0.0]])  # non-monotone cumulative curve
        probs = ordinal_probabilities(lp)
        assert (probs >= 0).all()
        np.testing.assert_allclose(probs.sum(axis=-1), 1.0)

    def test_non_proportional_odds(self, ordinal_data, sample_factory):
        data = ordinal_data.assign(z=np.arange(6.0))
        model = FittedModel(
            outcomes=[ModelSpec("y", "clm", "y ~ x + z")],
            posterior=sample_factory(
                {
                    "gamma_y[1]": 0.0,
                    "gamma_y[2]": 1.0,
                    "beta[1]": 0.0,
                    "beta[2]": 0.0,
                    "beta[3]": 0.5,
                }
            ),
            data=data,
            coef_index={
                "y": [
                    CoefficientSpec("beta[1]", "x"),
                    CoefficientSpec("beta[2]", "z", category=1),
                    CoefficientSpec("beta[3]", "z", category=2),
                ]
            },
        )
        lp = predict(model, "y", type="lp").fit
        np.testing.assert_allclose(lp["y <= low"], 0.0)
        np.testing.assert_allclose(lp["y <= mid"], 1.0 + 0.5 * data["z"])

    def test_non_proportional_split_count_checked(self, ordinal_data, sample_factory):
        data = ordinal_data.assign(z=np.arange(6.0))
        model = FittedModel(
            outcomes=[ModelSpec("y", "clm", "y ~ x + z")],
            posterior=sample_factory(
                {"gamma_y[1]": 0.0, "gamma_y[2]": 1.0, "beta[1]": 0.0, "beta[2]": 0.0}
            ),
            data=data,
            coef_index={
                "y": [CoefficientSpec("beta[1]", "x"), CoefficientSpec("beta[2]", "z", category=1)]
            },
        )
        with pytest.raises(ColumnMismatchError, match="splits"):
            predict(model, "y", type="prob")

    def test_wrong_number_of_intercepts(self, ordinal_data, sample_factory):
        model = FittedModel(
            outcomes=[ModelSpec("y", "clm", "y ~ x")],
            posterior=sample_factory({"gamma_y[1]": 0.0, "beta[1]": 0.0}),
            data=ordinal_data,
            coef_index={"y": [("beta[1]", "x")]},
        )
        with pytest.raises(ColumnMismatchError, match="intercepts"):
            predict(model, "y", type="prob")


@pytest.fixture
def mlogit_data():
    """Data with a 3-category nominal outcome."""
    return pd.DataFrame(
        {
            "y": pd.Categorical(["a", "b", "c", "a", "c", "b"]),
            "x": [0.0, 1.0, 2.0, 3.0, 4.0, 5.0],
        }
    )


def _mlogit_model(data, posterior):
    return FittedModel(
        outcomes=[ModelSpec("y", "mlogit", "y ~ x")],
        posterior=posterior,
        data=data,
        coef_index={
            "y": [
                CoefficientSpec("beta[1]", "Intercept", "b"),
                CoefficientSpec("beta[2]", "x", "b"),
                CoefficientSpec("beta[3]", "Intercept", "c"),
                CoefficientSpec("beta[4]", "x", "c"),
            ]
        },
    )


class TestPredictMultinomial:
    """Tests for predictions of multinomial logit models."""

    def test_probabilities_sum_to_one(self, mlogit_data, sample_factory):
        posterior = sample_factory(
            {"beta[1]": 0.5, "beta[2]": -0.2, "beta[3]": -0.5, "beta[4]": 0.3}, noise=0.5
        )
        res = predict(_mlogit_model(mlogit_data, posterior), "y", type="prob")
        assert list(res.fit.columns) == ["a", "b", "c"]
        np.testing.assert_allclose(res.fit.sum(axis=1), 1.0)

    def test_softmax_values(self, mlogit_data, sample_factory):
        posterior = sample_factory(
            {"beta[1]": np.log(2.0), "beta[2]": 0.0, "beta[3]": 0.0, "beta[4]": 0.0}
        )
        res = predict(_mlogit_model(mlogit_data, posterior), "y", type="prob")
        np.testing.assert_allclose(res.fit.iloc[0], [0.25, 0.5, 0.25])
        assert (predict(_mlogit_model(mlogit_data, posterior), "y", type="class").fit == "b").all()

    def test_ties_give_undefined_class(self, mlogit_data, sample_factory):
        posterior = sample_factory({"beta[1]": 0.0, "beta[2]": 0.0, "beta[3]": 0.0, "beta[4]": 0.0})
        res = predict(_mlogit_model(mlogit_data, posterior), "y", type="class")
        assert res.fit.isna().all()

    def test_linear_predictors(self, mlogit_data, sample_factory):
        posterior = sample_factory({"beta[1]": 1.0, "beta[2]": 0.0, "beta[3]": 0.0, "beta[4]": 2.0})
        res = predict(_mlogit_model(mlogit_data, posterior), "y", type="lp")
        assert list(res.fit.columns) == ["b", "c"]
        np.testing.assert_allclose(res.fit["c"], 2.0 * mlogit_data["x"])

    def test_categories_checked(self, mlogit_data, sample_factory):
        model = FittedModel(
            outcomes=[ModelSpec("y", "mlogit", "y ~ x")],
            posterior=sample_factory({"beta[1]": 0.0, "beta[2]": 0.0}),
            data=mlogit_data,
            coef_index={
                "y": [CoefficientSpec("beta[1]", "Intercept", "b"), CoefficientSpec("beta[2]", "x", "b")]
            },
        )
        with pytest.raises(ColumnMismatchError):
            predict(model, "y", type="prob")


class TestPredictSurvreg:
    """Tests for predictions of parametric survival models."""

    def test_response_scale_is_exponential(self, sample_factory):
        data = pd.DataFrame({"time": [1.0, 2.0, 3.0], "status": [1, 0, 1], "x": [0.0, 1.0, 2.0]})
        model = FittedModel(
            outcomes=[ModelSpec("Surv_time_status", "survreg", "Surv(time, status) ~ x")],
            posterior=sample_factory({"beta[1]": 0.5, "beta[2]": 0.25, "shape_Surv_time_status": 1.2}),
            data=data,
            coef_index={"Surv_time_status": [("beta[1]", "Intercept"), ("beta[2]", "x")]},
        )
        response = predict(model, "Surv_time_status", type="response")
        lp = predict(model, "Surv_time_status", type="linear")
        np.testing.assert_allclose(lp.fit, [0.5, 0.75, 1.0])
        np.testing.assert_allclose(response.fit, np.exp([0.5, 0.75, 1.0]))
        assert lp.type == "lp"


class TestPredictJointModel:
    """Tests for joint longitudinal-survival models."""

    def test_not_implemented(self, glm_data, sample_factory):
        model = FittedModel(
            outcomes=[ModelSpec("Surv_time_status", "JM", "Surv(time, status) ~ x")],
            posterior=sample_factory({"beta[1]": 0.0}),
            data=glm_data,
            coef_index={"Surv_time_status": [("beta[1]", "x")]},
        )
        with pytest.raises(ModelNotImplementedError, match="JM"):
            predict(model, "Surv_time_status", type="lp")


def _bh(value, n=6):
    return {f"beta_Bh0_Surv_time_status[{k}]": value for k in range(1, n + 1)}


@pytest.fixture
def surv_data():
    """Survival data with one row per subject."""
    return pd.DataFrame(
        {
            "time": [1.0, 2.0, 3.0, 4.0, 5.0],
            "status": [1, 0, 1, 1, 0],
            "x": [0.0, 1.0, 0.0, 1.0, 0.0],
        }
    )


def _coxph_model(data, posterior, **kwargs):
    return FittedModel(
        outcomes=[ModelSpec("Surv_time_status", "coxph", "Surv(time, status) ~ x", **kwargs)],
        posterior=posterior,
        data=data,
        coef_index={"Surv_time_status": [("beta[1]", "x")]},
    )


class TestPredictCoxph:
    """Tests for predictions of proportional hazards models."""

    def test_zero_baseline_hazard(self, surv_data, sample_factory):
        model = _coxph_model(surv_data, sample_factory({**_bh(0.0), "beta[1]": 0.0}))
        lp = predict(model, "Surv_time_status", type="lp")
        risk = predict(model, "Surv_time_status", type="risk")
        np.testing.assert_allclose(lp.fit, 0.0)
        np.testing.assert_allclose(risk.fit, 1.0)

    def test_constant_baseline_at_boundary_times(self, surv_data, sample_factory):
        model = _coxph_model(surv_data, sample_factory({**_bh(np.log(0.5)), "beta[1]": 0.0}))
        new = pd.DataFrame({"time": [1.0, 5.0], "status": 0, "x": 0.0})
        lp = predict(model, "Surv_time_status", new_data=new, type="lp")
        np.testing.assert_allclose(lp.fit, np.log(0.5), rtol=1e-10)

    def test_missing_time_column_raises(self, surv_data, sample_factory):
        model = _coxph_model(surv_data, sample_factory({**_bh(0.0), "beta[1]": 0.0}))
        new = pd.DataFrame({"x": [1.0]})
        for type in ("lp", "survival"):
            with pytest.raises(UnknownVariableError, match="time"):
                predict(model, "Surv_time_status", new_data=new, type=type)

    def test_missing_id_column_for_time_varying_covariate(self, sample_factory):
        data = pd.DataFrame(
            {
                "id": [1, 1, 2],
                "visit": [0.0, 1.0, 0.0],
                "x": [1.0, 0.0, 0.0],
                "time": [3.0, 3.0, 2.0],
                "status": [1, 1, 0],
            }
        )
        model = FittedModel(
            outcomes=[
                ModelSpec(
                    "Surv_time_status",
                    "coxph",
                    "Surv(time, status) ~ x",
                    level="id",
                    df_basehaz=4,
                )
            ],
            posterior=sample_factory({**_bh(0.0, n=4), "beta[1]": 0.0}),
            data=data,
            coef_index={"Surv_time_status": [("beta[1]", "x")]},
            group_levels={"lvlone": 1, "id": 2},
            column_levels={"x": "lvlone"},
            id_var="id",
            time_var="visit",
        )
        new = data.drop(columns="id")
        with pytest.raises(UnknownVariableError, match="id"):
            predict(model, "Surv_time_status", new_data=new, type="expected")

        undeclared = replace(model, id_var=None)
        with pytest.raises(UnknownVariableError, match="id_var"):
            predict(undeclared, "Surv_time_status", type="expected")

    def test_unit_hazard_integrates_to_time(self, surv_data, sample_factory):
        model = _coxph_model(surv_data, sample_factory({**_bh(0.0), "beta[1]": 0.0}))
        expected = predict(model, "Surv_time_status", type="expected")
        survival = predict(model, "Surv_time_status", type="survival")
        np.testing.assert_allclose(expected.fit, surv_data["time"], rtol=1e-10)
        np.testing.assert_allclose(survival.fit, np.exp(-surv_data["time"]), rtol=1e-10)

    def test_constant_log_hazard(self, surv_data, sample_factory):
        model = _coxph_model(surv_data, sample_factory({**_bh(np.log(0.5)), "beta[1]": 0.0}))
        expected = predict(model, "Surv_time_status", type="expected")
        np.testing.assert_allclose(expected.fit, 0.5 * surv_data["time"], rtol=1e-8)

    def test_covariate_effect(self, surv_data, sample_factory):
        model = _coxph_model(surv_data, sample_factory({**_bh(0.0), "beta[1]": np.log(3.0)}))
        expected = predict(model, "Surv_time_status", type="expected")
        factor = np.where(surv_data["x"] == 1.0, 3.0, 1.0)
        np.testing.assert_allclose(expected.fit, factor * surv_data["time"], rtol=1e-10)

    def test_survival_at_time_zero(self, surv_data, sample_factory):
        model = _coxph_model(surv_data, sample_factory({**_bh(0.3), "beta[1]": 0.2}, noise=0.1))
        new = pd.DataFrame({"time": [0.0], "status": [0], "x": [1.0]})
        survival = predict(model, "Surv_time_status", new_data=new, type="survival")
        np.testing.assert_allclose(survival.fit, 1.0)

    def test_survival_decreases(self, surv_data, sample_factory):
        model = _coxph_model(surv_data, sample_factory({**_bh(0.3), "beta[1]": 0.2}, noise=0.1))
        new = pd.DataFrame({"time": [0.5, 1.5, 2.5, 4.5], "status": 0, "x": 1.0})
        fit = predict(model, "Surv_time_status", new_data=new, type="survival").fit
        assert (np.diff(fit) < 0).all()
        assert ((fit > 0) & (fit <= 1)).all()

    def test_missing_time_gives_nan(self, surv_data, sample_factory):
        model = _coxph_model(surv_data, sample_factory({**_bh(0.0), "beta[1]": 0.0}))
        new = pd.DataFrame({"time": [1.0, np.nan], "status": 0, "x": 0.0})
        fit = predict(model, "Surv_time_status", new_data=new, type="survival").fit
        assert fit.iloc[0] == pytest.approx(np.exp(-1.0))
        assert np.isnan(fit.iloc[1])

    def test_wrong_number_of_baseline_parameters(self, surv_data, sample_factory):
        model = _coxph_model(
            surv_data, sample_factory({**_bh(0.0), "beta[1]": 0.0}), df_basehaz=7
        )
        with pytest.raises(ColumnMismatchError, match="baseline hazard"):
            predict(model, "Surv_time_status", type="lp")

    def test_time_varying_covariate(self, sample_factory):
        data = pd.DataFrame(
            {
                "id": [1, 1, 1, 2, 2],
                "visit": [0.0, 1.0, 2.0, 0.0, 1.5],
                "x": [1.0, 1.0, 1.0, 0.0, 0.0],
                "time": [3.0, 3.0, 3.0, 2.0, 2.0],
                "status": [1, 1, 1, 0, 0],
            }
        )
        model = FittedModel(
            outcomes=[
                ModelSpec(
                    "Surv_time_status",
                    "coxph",
                    "Surv(time, status) ~ x",
                    level="id",
                    df_basehaz=4,
                )
            ],
            posterior=sample_factory({**_bh(0.0, n=4), "beta[1]": np.log(2.0)}),
            data=data,
            coef_index={"Surv_time_status": [("beta[1]", "x")]},
            group_levels={"lvlone": 1, "id": 2},
            column_levels={"x": "lvlone"},
            id_var="id",
            time_var="visit",
        )
        expected = predict(model, "Surv_time_status", type="expected").fit
        np.testing.assert_allclose(expected.iloc[:3], 6.0, rtol=1e-10)
        np.testing.assert_allclose(expected.iloc[3:], 2.0, rtol=1e-10)

    def test_fitted_values_are_linear_predictor(self, surv_data, sample_factory):
        model = _coxph_model(surv_data, sample_factory({**_bh(0.0), "beta[1]": 1.0}))
        np.testing.assert_allclose(fitted_values(model, "Surv_time_status"), surv_data["x"])
