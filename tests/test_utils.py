"""Tests for utility functions."""

import warnings

import numpy as np
import pandas as pd
import pytest

from bayesianimputation.exceptions import ColumnMismatchError, UnknownVariableError
from bayesianimputation.utils import (
    as_numeric_outcome,
    build_design_matrix,
    category_levels,
    formula_variables,
    missing_info,
    prediction_grid,
    split_formula,
)


@pytest.fixture
def reference_data():
    """Reference data with a continuous and a categorical covariate."""
    return pd.DataFrame(
        {
            "y": [1.0, 2.0, 3.0, 4.0, 5.0, 6.0],
            "x": [0.0, 1.0, 2.0, 3.0, 4.0, 5.0],
            "g": pd.Categorical(["a", "b", "c", "a", "b", "c"]),
            "s": ["u", "v", "u", "v", "u", "v"],
        }
    )


class TestFormulaVariables:
    """Tests for formula parsing helpers."""

    def test_split_formula(self):
        assert split_formula("y ~ x + z") == ("y", "x + z")
        assert split_formula("x + z") == (None, "x + z")

    def test_variables(self):
        variables = formula_variables("y ~ x + C(g) + np.log(z) + I(w ** 2)")
        assert set(variables) == {"x", "g", "z", "w"}

    def test_interactions(self):
        assert set(formula_variables("y ~ x * C(g)")) == {"x", "g"}

    def test_quoted_names(self):
        assert formula_variables('y ~ Q("my var")') == ["my var"]

    def test_include_response(self):
        variables = formula_variables("Surv(time, status) ~ x", include_response=True)
        assert variables == ["time", "status", "x"]


class TestBuildDesignMatrix:
    """Tests for build_design_matrix."""

    def test_columns(self, reference_data):
        X = build_design_matrix("y ~ x + C(g)", reference_data)
        assert set(X.columns) == {"Intercept", "C(g)[T.b]", "C(g)[T.c]", "x"}
        assert X.values.shape == (6, 4)
        assert not X.missing_rows.any()

    def test_without_intercept(self, reference_data):
        X = build_design_matrix("y ~ x", reference_data, intercept=False)
        assert X.columns == ("x",)

    def test_levels_come_from_reference_data(self, reference_data):
        new = pd.DataFrame({"x": [1.0, 2.0], "g": ["c", "c"]})
        X = build_design_matrix("y ~ x + C(g)", reference_data, new)
        frame = X.to_frame()
        assert set(frame.columns) == {"Intercept", "C(g)[T.b]", "C(g)[T.c]", "x"}
        np.testing.assert_array_equal(frame["C(g)[T.c]"], [1.0, 1.0])
        np.testing.assert_array_equal(frame["C(g)[T.b]"], [0.0, 0.0])

    def test_string_covariate(self, reference_data):
        new = pd.DataFrame({"s": ["v"]})
        X = build_design_matrix("y ~ C(s)", reference_data, new).to_frame()
        assert X.loc[0, "C(s)[T.v]"] == 1.0

    def test_no_scaling_applied(self, reference_data):
        new = pd.DataFrame({"x": [10.0]})
        X = build_design_matrix("y ~ x", reference_data, new)
        assert X.to_frame().loc[0, "x"] == 10.0

    def test_missing_rows_are_nan(self, reference_data):
        new = pd.DataFrame({"x": [1.0, np.nan, 3.0], "g": ["a", "b", None]})
        with pytest.warns(UserWarning, match="missing values"):
            X = build_design_matrix("y ~ x + C(g)", reference_data, new)

        np.testing.assert_array_equal(X.missing_rows, [False, True, True])
        assert np.isnan(X.values[1]).all()
        assert np.isnan(X.values[2]).all()
        assert not np.isnan(X.values[0]).any()
        assert list(X.index) == [0, 1, 2]

    def test_unseen_level_is_missing(self, reference_data):
        new = pd.DataFrame({"x": [1.0], "g": ["z"]})
        with pytest.warns(UserWarning):
            X = build_design_matrix("y ~ x + C(g)", reference_data, new)
        assert X.missing_rows[0]

    def test_unseen_string_level_is_missing(self, reference_data):
        new = pd.DataFrame({"x": [1.0, 2.0], "s": ["u", "w"]})
        with pytest.warns(UserWarning, match="missing values"):
            X = build_design_matrix("y ~ x + s", reference_data, new)
        np.testing.assert_array_equal(X.missing_rows, [False, True])
        assert X.to_frame().loc[0, "s[T.v]"] == 0.0
        assert np.isnan(X.values[1]).all()

    def test_no_warning_when_disabled(self, reference_data):
        new = pd.DataFrame({"x": [np.nan]})
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            X = build_design_matrix("y ~ x", reference_data, new, warn_missing=False)
        assert np.isnan(X.values).all()

    def test_row_index_follows_new_data(self, reference_data):
        new = pd.DataFrame({"x": [1.0, 2.0]}, index=["p", "q"])
        X = build_design_matrix("y ~ x", reference_data, new)
        assert list(X.to_frame().index) == ["p", "q"]

    def test_unknown_variable_raises(self, reference_data):
        with pytest.raises(UnknownVariableError, match="w"):
            build_design_matrix("y ~ x + w", reference_data)

    def test_variable_only_in_new_data(self, reference_data):
        new = pd.DataFrame({"x": [1.0], "w": [2.0]})
        X = build_design_matrix("y ~ x + w", reference_data, new)
        assert X.to_frame().loc[0, "w"] == 2.0

    def test_select_and_drop(self, reference_data):
        X = build_design_matrix("y ~ x + C(g)", reference_data)
        assert X.select(["x", "Intercept"]).columns == ("x", "Intercept")
        assert "x" not in X.drop(["x"]).columns
        with pytest.raises(ColumnMismatchError):
            X.select(["nope"])


class TestPredictionGrid:
    """Tests for prediction_grid."""

    def test_continuous_variable_varies(self, reference_data):
        grid = prediction_grid(reference_data, "y ~ x + C(g)", vary="x", length=5)
        assert len(grid) == 5
        np.testing.assert_allclose(grid["x"], np.linspace(0, 5, 5))
        assert (grid["g"] == "a").all()
        assert (grid["y"] == reference_data["y"].median()).all()

    def test_categorical_variable_varies(self, reference_data):
        grid = prediction_grid(reference_data, "y ~ x + C(g)", vary="g")
        assert list(grid["g"]) == ["a", "b", "c"]
        assert (grid["x"] == 2.5).all()
        assert isinstance(grid["g"].dtype, pd.CategoricalDtype)

    def test_explicit_values(self, reference_data):
        grid = prediction_grid(reference_data, "y ~ x + C(g)", vary="x", x=[1.0, 2.0], g="b")
        assert list(grid["x"]) == [1.0, 2.0]
        assert (grid["g"] == "b").all()

    def test_several_formulas(self, reference_data):
        grid = prediction_grid(reference_data, ["y ~ x", "x ~ C(s)"], vary="s")
        assert set(grid.columns) == {"y", "x", "s"}
        assert len(grid) == 2

    def test_unknown_variable_raises(self, reference_data):
        with pytest.raises(UnknownVariableError):
            prediction_grid(reference_data, "y ~ x", vary="g")


class TestMissingInfo:
    """Tests for missing_info."""

    def test_counts(self):
        df = pd.DataFrame({"a": [1.0, np.nan, 3.0, np.nan], "b": [1, 2, 3, 4]})
        info = missing_info(df)

        assert info["missing"].loc["a", "# NA"] == 2
        assert info["missing"].loc["a", "% NA"] == 50.0
        assert list(info["missing"].index) == ["b", "a"]
        assert info["complete_cases"].loc["lvlone", "#"] == 2

    def test_group_level(self):
        df = pd.DataFrame({"id": [1, 1, 2, 2], "a": [np.nan, 1.0, 2.0, 3.0]})
        info = missing_info(df, variables=["a"], id_var="id")
        assert info["complete_cases"].loc["id", "#"] == 1
        assert info["complete_cases"].loc["id", "%"] == 50.0


class TestNumericOutcome:
    """Tests for as_numeric_outcome and category_levels."""

    def test_categorical_first_level_is_zero(self):
        y = pd.Series(pd.Categorical(["yes", "no", None, "yes"], categories=["no", "yes"]))
        result = as_numeric_outcome(y)
        np.testing.assert_array_equal(result[[0, 1, 3]], [1.0, 0.0, 1.0])
        assert np.isnan(result[2])

    def test_strings_use_sorted_levels(self):
        result = as_numeric_outcome(pd.Series(["b", "a", "b"]))
        np.testing.assert_array_equal(result, [1.0, 0.0, 1.0])

    def test_booleans(self):
        result = as_numeric_outcome(pd.Series([True, False]))
        np.testing.assert_array_equal(result, [1.0, 0.0])

    def test_category_levels(self):
        assert category_levels(pd.Series(["b", "a", None, "b"])) == ["a", "b"]
        cat = pd.Series(pd.Categorical(["x"], categories=["y", "x"]))
        assert category_levels(cat) == ["y", "x"]
