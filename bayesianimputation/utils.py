"""
Utility functions for building design matrices and prediction data.

This module converts model formulas and data frames into numeric design
matrices (via patsy), constructs data for prediction, summarizes missing
values, and coerces categorical outcomes to numbers.
"""

from __future__ import annotations

import ast
import warnings
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
import pandas as pd
import patsy

from .exceptions import ColumnMismatchError, UnknownVariableError

# Names patsy provides in the formula namespace; they are never data columns.
_PATSY_NAMES = frozenset(
    {
        "C", "I", "Q", "Treatment", "Sum", "Poly", "Helmert", "Diff",
        "center", "standardize", "scale", "bs", "cr", "cc", "te", "np",
        "True", "False", "None",
    }
)


@dataclass(frozen=True)
class DesignMatrix:
    """
    Numeric design matrix for a set of observations.

    Attributes
    ----------
    values : np.ndarray
        Array of shape (n_obs, n_terms). Rows of observations with missing
        covariate values are all NaN.
    columns : tuple[str, ...]
        Column names as generated by patsy (e.g. "Intercept", "x",
        "C(group)[T.b]").
    index : pd.Index
        Row labels, taken from the data the matrix was built for.
    missing_rows : np.ndarray
        Boolean mask of rows with missing covariate values.
    """

    values: np.ndarray
    columns: tuple[str, ...]
    index: pd.Index
    missing_rows: np.ndarray

    @property
    def n_obs(self) -> int:
        return self.values.shape[0]

    @property
    def n_terms(self) -> int:
        return self.values.shape[1]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.values, columns=list(self.columns), index=self.index)

    def select(self, columns: Sequence[str]) -> DesignMatrix:
        """Return the design matrix restricted to `columns`, in that order."""
        position = {c: j for j, c in enumerate(self.columns)}
        missing = [c for c in columns if c not in position]
        if missing:
            raise ColumnMismatchError(f"Columns {missing} are not part of the design matrix")
        return DesignMatrix(
            values=self.values[:, [position[c] for c in columns]],
            columns=tuple(columns),
            index=self.index,
            missing_rows=self.missing_rows,
        )

    def drop(self, columns: Sequence[str]) -> DesignMatrix:
        """Return the design matrix without `columns` (absent names are ignored)."""
        return self.select([c for c in self.columns if c not in set(columns)])


def split_formula(formula: str) -> tuple[str | None, str]:
    """Split a formula into its left-hand (or None) and right-hand side."""
    if "~" in formula:
        lhs, rhs = formula.split("~", 1)
        return (lhs.strip() or None), rhs.strip()
    return None, formula.strip()


def _code_variables(code: str) -> list[str]:
    """Names of data variables referenced in a (Python) factor expression."""
    tree = ast.parse(code.strip(), mode="eval")

    excluded = set()
    quoted = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
            excluded.add(id(node.func))
            if node.func.id == "Q" and node.args and isinstance(node.args[0], ast.Constant):
                quoted.append(str(node.args[0].value))
        elif isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
            excluded.add(id(node.value))

    variables = []
    for node in ast.walk(tree):
        if (
            isinstance(node, ast.Name)
            and id(node) not in excluded
            and node.id not in _PATSY_NAMES
            and node.id not in variables
        ):
            variables.append(node.id)
    return variables + [q for q in quoted if q not in variables]


def formula_variables(formula: str, include_response: bool = False) -> list[str]:
    """
    Names of the data variables used in a formula.

    Parameters
    ----------
    formula : str
        Patsy-style formula, e.g. ``"y ~ x1 + C(group) + np.log(x2)"``.
    include_response : bool, optional
        Also return the variables of the left-hand side (e.g. ``time`` and
        ``status`` in ``"Surv(time, status) ~ x"``). Default is False.

    Returns
    -------
    list[str]
        Variable names in order of appearance.
    """
    lhs, rhs = split_formula(formula)

    variables = []
    if include_response and lhs is not None:
        variables.extend(_code_variables(lhs))

    desc = patsy.ModelDesc.from_formula(rhs)
    for term in desc.rhs_termlist:
        for factor in term.factors:
            for name in _code_variables(factor.code):
                if name not in variables:
                    variables.append(name)
    return variables


def category_levels(values: pd.Series) -> list:
    """Levels of a categorical variable (categories, or sorted observed values)."""
    if isinstance(values.dtype, pd.CategoricalDtype):
        return list(values.cat.categories)
    return sorted(values.dropna().unique().tolist())


def _is_categorical(values: pd.Series) -> bool:
    return (
        isinstance(values.dtype, pd.CategoricalDtype)
        or pd.api.types.is_bool_dtype(values)
        or not pd.api.types.is_numeric_dtype(values)
    )


def _reference_frame(
    reference_data: pd.DataFrame,
    new_data: pd.DataFrame,
    variables: Sequence[str],
) -> pd.DataFrame:
    """Reference data, completed with numeric variables only present in `new_data`."""
    frame = reference_data.copy()
    for var in variables:
        if var in frame.columns:
            continue
        column = new_data[var]
        if _is_categorical(column):
            raise UnknownVariableError(
                f"The categorical variable '{var}' is not part of the reference data, "
                "so its levels cannot be determined."
            )
        frame[var] = float(column.median()) if column.notna().any() else 0.0
    return frame


def _align_to_reference(
    new_data: pd.DataFrame,
    reference: pd.DataFrame,
    variables: Sequence[str],
) -> pd.DataFrame:
    """Coerce the variables in `new_data` to the types used in the reference data."""
    frame = new_data.copy()
    for var in variables:
        if var not in frame.columns:
            frame[var] = np.nan
            continue

        ref = reference[var]
        column = frame[var]
        if isinstance(ref.dtype, pd.CategoricalDtype):
            frame[var] = pd.Categorical(
                column, categories=ref.cat.categories, ordered=ref.cat.ordered
            )
        elif _is_categorical(ref):
            # unseen values become missing
            frame[var] = pd.Categorical(column, categories=category_levels(ref))
        elif pd.api.types.is_numeric_dtype(ref) and not pd.api.types.is_bool_dtype(ref):
            if not pd.api.types.is_numeric_dtype(column):
                frame[var] = pd.to_numeric(column, errors="coerce")
    return frame


def _fill_missing(
    frame: pd.DataFrame,
    reference: pd.DataFrame,
    variables: Sequence[str],
) -> pd.DataFrame:
    """Replace missing values with a valid reference value so patsy keeps the rows."""
    for var in variables:
        column = frame[var]
        if not column.isna().any():
            continue
        observed = reference[var].dropna()
        fill = observed.iloc[0] if len(observed) > 0 else 0.0
        if isinstance(column.dtype, pd.CategoricalDtype) or (
            pd.api.types.is_numeric_dtype(column) and not pd.api.types.is_bool_dtype(column)
        ):
            frame[var] = column.fillna(fill)
        else:
            frame[var] = column.astype(object).where(column.notna(), fill)
    return frame


def build_design_matrix(
    formula: str,
    reference_data: pd.DataFrame,
    new_data: pd.DataFrame | None = None,
    intercept: bool = True,
    warn_missing: bool = True,
) -> DesignMatrix:
    """
    Build the design matrix of a formula for (new) data.

    The design (factor levels and contrasts) is always set up on
    `reference_data`, so the coding of categorical variables is the same for
    every `new_data`. Covariates are used on their original scale; centering
    and scaling are applied by `linear_predictor`.

    Parameters
    ----------
    formula : str
        Patsy-style model formula. The left-hand side, if any, is ignored.
    reference_data : pd.DataFrame
        The data the model was fitted on.
    new_data : pd.DataFrame, optional
        Data to build the matrix for. Default is `reference_data`.
    intercept : bool, optional
        If False, the "Intercept" column is removed. Default is True.
    warn_missing : bool, optional
        Warn when rows have missing covariate values. Default is True.

    Returns
    -------
    DesignMatrix
        One row per row of `new_data`; rows with missing covariates are NaN.

    Raises
    ------
    UnknownVariableError
        If the formula uses a variable that is in neither data frame.

    Examples
    --------
    >>> X = build_design_matrix("y ~ x + C(g)", data, new_data=newdf)
    >>> X.columns
    ('Intercept', 'C(g)[T.b]', 'x')
    """
    _, rhs = split_formula(formula)
    if new_data is None:
        new_data = reference_data

    variables = formula_variables(rhs)
    unknown = [
        v for v in variables if v not in reference_data.columns and v not in new_data.columns
    ]
    if unknown:
        raise UnknownVariableError(
            f"Variable(s) {unknown} used in the formula '{formula}' are neither in "
            "the reference data nor in the new data."
        )

    reference = _reference_frame(reference_data, new_data, variables)
    design_info = patsy.dmatrix(rhs, reference, return_type="dataframe").design_info

    frame = _align_to_reference(new_data, reference, variables)
    missing = (
        frame[variables].isna().any(axis=1).to_numpy()
        if variables
        else np.zeros(len(frame), dtype=bool)
    )
    frame = _fill_missing(frame, reference, variables)

    (matrix,) = patsy.build_design_matrices(
        [design_info], frame, NA_action="raise", return_type="dataframe"
    )
    values = matrix.to_numpy(dtype=np.float64, copy=True)
    values[missing, :] = np.nan

    if warn_missing and missing.any():
        warnings.warn(
            f"{int(missing.sum())} row(s) of the data have missing values in the "
            f"covariates of '{formula}'. Predicted values for these rows are NaN.",
            UserWarning,
        )

    design = DesignMatrix(
        values=values,
        columns=tuple(design_info.column_names),
        index=new_data.index,
        missing_rows=missing,
    )
    if not intercept:
        design = design.drop(["Intercept"])
    return design


def prediction_grid(
    reference_data: pd.DataFrame,
    formulas: str | Sequence[str],
    vary: str | Sequence[str],
    length: int = 100,
    **values: Any,
) -> pd.DataFrame:
    """
    Create a data frame for prediction in which selected variables vary.

    All variables used in `formulas` that are not varied are set to a
    reference value: the median for continuous variables and the first level
    for categorical variables.

    Parameters
    ----------
    reference_data : pd.DataFrame
        The data the model was fitted on.
    formulas : str or sequence of str
        Model formula(s). Variables on both sides are included.
    vary : str or sequence of str
        Variable(s) that should vary. Continuous variables take `length`
        evenly spaced values between their observed minimum and maximum,
        categorical variables all observed levels.
    length : int, optional
        Number of values for varying continuous variables. Default is 100.
    **values
        Explicit values for any variable, overriding the defaults.

    Returns
    -------
    pd.DataFrame
        All combinations of the variable values.

    Raises
    ------
    UnknownVariableError
        If a varying variable is not used in the formulas.

    Examples
    --------
    >>> grid = prediction_grid(data, "y ~ C1 + C2 + B1", vary="C2", length=50)
    >>> len(grid)
    50
    """
    if isinstance(formulas, str):
        formulas = [formulas]
    if isinstance(vary, str):
        vary = [vary]

    variables: list[str] = []
    for formula in formulas:
        for var in formula_variables(formula, include_response=True):
            if var not in variables:
                variables.append(var)

    unknown = [v for v in vary if v not in variables]
    if unknown:
        raise UnknownVariableError(f"{unknown} was not used in the model formula.")

    grid: dict[str, list] = {}
    for var in variables:
        if var not in reference_data.columns:
            raise UnknownVariableError(f"Variable '{var}' is not part of the data.")
        column = reference_data[var]

        if var in values:
            grid[var] = list(np.atleast_1d(values[var]))
        elif _is_categorical(column):
            levels = category_levels(column)
            grid[var] = levels if var in vary else levels[:1]
        elif var in vary:
            grid[var] = list(np.linspace(column.min(), column.max(), length))
        else:
            grid[var] = [column.median()]

    frame = pd.MultiIndex.from_product(list(grid.values()), names=list(grid)).to_frame(
        index=False
    )
    for var in variables:
        column = reference_data[var]
        if isinstance(column.dtype, pd.CategoricalDtype):
            frame[var] = pd.Categorical(
                frame[var], categories=column.cat.categories, ordered=column.cat.ordered
            )
    return frame


def missing_info(
    data: pd.DataFrame,
    variables: Sequence[str] | None = None,
    id_var: str | None = None,
) -> dict[str, pd.DataFrame]:
    """
    Summarize the missing values in the data.

    Parameters
    ----------
    data : pd.DataFrame
        The data.
    variables : sequence of str, optional
        Variables to include. Default is all columns.
    id_var : str, optional
        Grouping variable. If given, complete cases are also counted per
        group (using the first row of each group).

    Returns
    -------
    dict[str, pd.DataFrame]
        ``"complete_cases"``: number (``#``) and percentage (``%``) of
        complete cases per level; ``"missing"``: number (``# NA``) and
        percentage (``% NA``) of missing values per variable, sorted by the
        number of missing values.
    """
    if variables is None:
        variables = list(data.columns)
    subset = data[list(variables)]

    complete = subset.notna().all(axis=1)
    rows = {"lvlone": complete}
    if id_var is not None:
        rows[id_var] = complete[~data[id_var].duplicated()]

    complete_cases = pd.DataFrame(
        {
            "#": [int(cc.sum()) for cc in rows.values()],
            "%": [float(cc.mean() * 100) for cc in rows.values()],
        },
        index=list(rows),
    )

    missing = pd.DataFrame(
        {
            "# NA": subset.isna().sum(),
            "% NA": subset.isna().mean() * 100,
        }
    ).sort_values("# NA", kind="stable")

    return {"complete_cases": complete_cases, "missing": missing}


def as_numeric_outcome(values: pd.Series) -> np.ndarray:
    """
    Convert an outcome to numbers for computing residuals.

    Categorical outcomes are coded by the position of their level, so the
    first level becomes 0 and, for a binary outcome, the second level 1.
    Booleans become 0/1; numeric outcomes are returned as floats. Missing
    values become NaN.

    Parameters
    ----------
    values : pd.Series
        Observed outcome.

    Returns
    -------
    np.ndarray
    """
    if isinstance(values.dtype, pd.CategoricalDtype):
        codes = values.cat.codes.to_numpy().astype(np.float64)
        codes[codes < 0] = np.nan
        return codes
    if pd.api.types.is_bool_dtype(values) or pd.api.types.is_numeric_dtype(values):
        return values.astype(np.float64).to_numpy()

    levels = category_levels(values)
    codes = values.map({level: float(i) for i, level in enumerate(levels)})
    return codes.astype(np.float64).to_numpy()
