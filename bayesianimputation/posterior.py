"""
Access to the MCMC sample of a fitted joint model.

This module provides the containers for a multi-chain posterior sample and
the accessor used by every post-estimation function to select a window of
iterations (burn-in, end point, thinning), drop chains and subset parameters.

Parameter names follow the JAGS conventions used by the fitting routine
(e.g. ``beta[3]``, ``gamma_y[1]``, ``beta_Bh0_time[2]``, ``D_y_id[1,2]``).
They are parsed once, when the sample is ingested, into `ParameterName`
objects so that predictions can look up parameters by outcome and role
instead of matching name patterns.
"""

from __future__ import annotations

import re
import warnings
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

import arviz as az
import numpy as np
import pandas as pd
import xarray as xr

from .exceptions import ColumnMismatchError, EmptySampleError, InvalidChainIndexError

if TYPE_CHECKING:
    from collections.abc import Collection


class ParameterRole(str, Enum):
    """Role of a parameter in the joint model."""

    COEFFICIENT = "coefficient"
    INTERCEPT = "intercept"
    BASELINE_HAZARD = "baseline_hazard"
    SIGMA = "sigma"
    PRECISION = "precision"
    SHAPE = "shape"
    RANDOM_COVARIANCE = "random_covariance"
    OTHER = "other"


# Longer prefixes first: "beta_Bh0_" must win over plain coefficients.
_PREFIX_ROLES = (
    ("beta_Bh0_", ParameterRole.BASELINE_HAZARD),
    ("gamma_", ParameterRole.INTERCEPT),
    ("sigma_", ParameterRole.SIGMA),
    ("tau_", ParameterRole.PRECISION),
    ("shape_", ParameterRole.SHAPE),
    ("D_", ParameterRole.RANDOM_COVARIANCE),
)
_COEFFICIENT_BASES = ("beta", "alpha")
_NAME_PATTERN = re.compile(r"^(?P<base>[^\[\]]+?)(?:\[(?P<index>[0-9,\s]+)\])?$")


def _match_outcome(rest: str, outcomes: Collection[str], allow_suffix: bool) -> str:
    """Find the outcome a name suffix refers to (longest match wins)."""
    for outcome in sorted(outcomes, key=len, reverse=True):
        if rest == outcome or (allow_suffix and rest.startswith(outcome + "_")):
            return outcome
    return rest


@dataclass(frozen=True)
class ParameterName:
    """
    Structured name of a parameter in the posterior sample.

    Attributes
    ----------
    raw : str
        The name as stored in the sample, e.g. ``"gamma_y[2]"``.
    role : ParameterRole
        What the parameter is (regression coefficient, ordinal intercept, ...).
    outcome : str or None
        The outcome the parameter belongs to. Regression coefficients
        (``beta[k]``) carry no outcome in their name; it is assigned from the
        coefficient index of the fitted model.
    index : tuple[int, ...]
        The (1-based) index inside the square brackets, empty for scalars.
    """

    raw: str
    role: ParameterRole
    outcome: str | None = None
    index: tuple[int, ...] = ()

    @classmethod
    def parse(cls, raw: str, outcomes: Collection[str] = ()) -> ParameterName:
        """
        Parse a JAGS-style parameter name.

        Parameters
        ----------
        raw : str
            Parameter name.
        outcomes : collection of str, optional
            Known outcome names, used to split names such as ``D_y_id[1,1]``
            into outcome (``y``) and grouping level.

        Returns
        -------
        ParameterName
        """
        match = _NAME_PATTERN.match(raw)
        if match is None:
            return cls(raw=raw, role=ParameterRole.OTHER)

        base = match.group("base")
        index = ()
        if match.group("index"):
            index = tuple(int(i) for i in match.group("index").split(","))

        if base in _COEFFICIENT_BASES:
            return cls(raw=raw, role=ParameterRole.COEFFICIENT, index=index)

        for prefix, role in _PREFIX_ROLES:
            if base.startswith(prefix) and len(base) > len(prefix):
                outcome = _match_outcome(
                    base[len(prefix):],
                    outcomes,
                    allow_suffix=role is ParameterRole.RANDOM_COVARIANCE,
                )
                return cls(raw=raw, role=role, outcome=outcome, index=index)

        return cls(raw=raw, role=ParameterRole.OTHER, index=index)


def parse_parameter_names(
    names: Iterable[str],
    outcomes: Collection[str] = (),
    outcome_of: Mapping[str, str] | None = None,
) -> tuple[ParameterName, ...]:
    """
    Parse a sequence of parameter names.

    Parameters
    ----------
    names : iterable of str
        Raw parameter names.
    outcomes : collection of str, optional
        Known outcome names.
    outcome_of : mapping, optional
        Explicit parameter name -> outcome assignments (used for regression
        coefficients, whose names do not mention the outcome).

    Returns
    -------
    tuple[ParameterName, ...]
    """
    outcome_of = outcome_of or {}
    parsed = []
    for name in names:
        parameter = ParameterName.parse(name, outcomes)
        if name in outcome_of:
            parameter = replace(parameter, outcome=outcome_of[name])
        parsed.append(parameter)
    return tuple(parsed)


@dataclass(frozen=True)
class ParameterGroup:
    """
    A named selection of parameters.

    A parameter is selected if its raw name is listed in `names`, or if it
    matches every given criterion among `outcomes` and `roles`.

    Examples
    --------
    >>> ParameterGroup(outcomes=("y",), roles=(ParameterRole.COEFFICIENT,))
    """

    outcomes: tuple[str, ...] | None = None
    roles: tuple[ParameterRole, ...] | None = None
    names: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if isinstance(self.outcomes, str):
            object.__setattr__(self, "outcomes", (self.outcomes,))
        if isinstance(self.roles, (str, ParameterRole)):
            object.__setattr__(self, "roles", (ParameterRole(self.roles),))
        elif self.roles is not None:
            object.__setattr__(self, "roles", tuple(ParameterRole(r) for r in self.roles))
        object.__setattr__(self, "names", tuple(self.names))

    def matches(self, parameter: ParameterName) -> bool:
        """Return True if `parameter` belongs to this group."""
        if parameter.raw in self.names:
            return True
        if self.outcomes is None and self.roles is None:
            return False
        if self.outcomes is not None and parameter.outcome not in self.outcomes:
            return False
        if self.roles is not None and parameter.role not in self.roles:
            return False
        return True


class _ParameterLookup:
    """Shared parameter lookup for samples and slices."""

    values: np.ndarray
    parameters: tuple[ParameterName, ...]

    @property
    def names(self) -> list[str]:
        """Raw parameter names, in column order."""
        return [p.raw for p in self.parameters]

    @property
    def n_parameters(self) -> int:
        return len(self.parameters)

    def find(
        self,
        outcome: str | None = None,
        role: ParameterRole | str | None = None,
    ) -> list[ParameterName]:
        """
        Find parameters by outcome and/or role, ordered by their index.

        Parameters
        ----------
        outcome : str, optional
            Outcome the parameters belong to.
        role : ParameterRole or str, optional
            Role of the parameters.

        Returns
        -------
        list[ParameterName]
        """
        role = ParameterRole(role) if role is not None else None
        found = [
            p
            for p in self.parameters
            if (outcome is None or p.outcome == outcome)
            and (role is None or p.role is role)
        ]
        return sorted(found, key=lambda p: p.index)

    def to_inference_data(self) -> az.InferenceData:
        """
        Convert to an ArviZ InferenceData object (one variable per parameter).

        Returns
        -------
        az.InferenceData
            InferenceData with a ``posterior`` group.
        """
        return az.from_dict(
            posterior={p.raw: self.values[:, :, j] for j, p in enumerate(self.parameters)}
        )


@dataclass(frozen=True)
class PosteriorSample(_ParameterLookup):
    """
    Multi-chain MCMC sample.

    Parameters
    ----------
    values : np.ndarray
        Array of shape (n_chains, n_iterations, n_parameters). A 2D array is
        treated as a single chain.
    parameters : tuple[ParameterName, ...]
        Structured parameter names, one per column.
    start : int, optional
        Iteration number of the first stored draw. Default is 1.
    thin : int, optional
        Thinning interval the sample was stored with. Default is 1.
    """

    values: np.ndarray
    parameters: tuple[ParameterName, ...]
    start: int = 1
    thin: int = 1

    def __post_init__(self) -> None:
        values = np.asarray(self.values, dtype=np.float64)
        if values.ndim == 2:
            values = values[np.newaxis]
        if values.ndim != 3:
            raise ValueError(
                "Posterior sample must have shape (chains, iterations, parameters), "
                f"got an array with {values.ndim} dimensions"
            )

        parameters = tuple(
            p if isinstance(p, ParameterName) else ParameterName.parse(p)
            for p in self.parameters
        )
        if values.shape[2] != len(parameters):
            raise ValueError(
                f"Posterior sample has {values.shape[2]} columns but "
                f"{len(parameters)} parameter names"
            )
        raw = [p.raw for p in parameters]
        if len(set(raw)) != len(raw):
            raise ValueError("Parameter names in the posterior sample must be unique")
        if self.thin < 1:
            raise ValueError(f"Thinning interval must be positive, got {self.thin}")

        object.__setattr__(self, "values", values)
        object.__setattr__(self, "parameters", parameters)

    @classmethod
    def from_arrays(
        cls,
        chains: np.ndarray | Sequence[np.ndarray | pd.DataFrame],
        names: Sequence[str] | None = None,
        start: int = 1,
        thin: int = 1,
        outcomes: Collection[str] = (),
        outcome_of: Mapping[str, str] | None = None,
    ) -> PosteriorSample:
        """
        Build a sample from per-chain arrays or data frames.

        Parameters
        ----------
        chains : array or sequence of arrays / DataFrames
            Either a 3D array (chains, iterations, parameters) or one 2D
            (iterations, parameters) block per chain. DataFrames provide the
            parameter names through their columns.
        names : sequence of str, optional
            Parameter names. Required unless DataFrames are passed.
        start, thin : int, optional
            Iteration number of the first draw and stored thinning interval.
        outcomes : collection of str, optional
            Known outcome names (see `ParameterName.parse`).
        outcome_of : mapping, optional
            Parameter name -> outcome assignments for regression coefficients.

        Returns
        -------
        PosteriorSample
        """
        if isinstance(chains, np.ndarray):
            values = chains
        else:
            chains = list(chains)
            if names is None and chains and isinstance(chains[0], pd.DataFrame):
                names = list(chains[0].columns)
            values = np.stack([np.asarray(c, dtype=np.float64) for c in chains])

        if names is None:
            raise ValueError("Parameter names are required when passing plain arrays")

        return cls(
            values=values,
            parameters=parse_parameter_names(names, outcomes, outcome_of),
            start=start,
            thin=thin,
        )

    @classmethod
    def from_inference_data(
        cls,
        idata: az.InferenceData | xr.Dataset,
        var_names: Sequence[str] | None = None,
        outcomes: Collection[str] = (),
        outcome_of: Mapping[str, str] | None = None,
    ) -> PosteriorSample:
        """
        Build a sample from the posterior group of an ArviZ InferenceData.

        Variables with extra dimensions are flattened (C order) into one
        column per element named ``var[i,j]`` with 1-based indices.

        Parameters
        ----------
        idata : az.InferenceData or xr.Dataset
            InferenceData with a ``posterior`` group, or the posterior dataset.
        var_names : sequence of str, optional
            Variables to include. Default is all variables.
        outcomes, outcome_of : optional
            See `from_arrays`.

        Returns
        -------
        PosteriorSample
        """
        posterior = idata.posterior if hasattr(idata, "posterior") else idata
        if var_names is None:
            var_names = list(posterior.data_vars)

        blocks = []
        names = []
        for var in var_names:
            da = posterior[var]
            extra = [d for d in da.dims if d not in ("chain", "draw")]
            da = da.transpose("chain", "draw", *extra)
            shape = tuple(da.sizes[d] for d in extra)
            blocks.append(da.values.reshape(da.sizes["chain"], da.sizes["draw"], -1))
            if not extra:
                names.append(str(var))
            else:
                names.extend(
                    f"{var}[{','.join(str(i + 1) for i in idx)}]"
                    for idx in np.ndindex(*shape)
                )

        draws = np.asarray(posterior["draw"].values)
        start, thin = 1, 1
        if np.issubdtype(draws.dtype, np.number) and len(draws) > 0:
            # ArviZ counts draws from 0
            start = int(draws[0]) + 1
            steps = np.unique(np.diff(draws))
            if len(steps) == 1 and steps[0] > 0:
                thin = int(steps[0])

        return cls.from_arrays(
            np.concatenate(blocks, axis=2),
            names=names,
            start=start,
            thin=thin,
            outcomes=outcomes,
            outcome_of=outcome_of,
        )

    def relabel(
        self,
        outcomes: Collection[str] = (),
        outcome_of: Mapping[str, str] | None = None,
    ) -> PosteriorSample:
        """Return a copy whose parameter names are re-parsed with outcome information."""
        return replace(
            self, parameters=parse_parameter_names(self.names, outcomes, outcome_of)
        )

    @property
    def n_chains(self) -> int:
        return self.values.shape[0]

    @property
    def n_iterations(self) -> int:
        return self.values.shape[1]

    @property
    def end(self) -> int:
        """Iteration number of the last stored draw."""
        return self.start + (self.n_iterations - 1) * self.thin

    @property
    def iterations(self) -> np.ndarray:
        """Iteration numbers of the stored draws."""
        return self.start + self.thin * np.arange(self.n_iterations)


@dataclass(frozen=True)
class PosteriorSlice(_ParameterLookup):
    """
    A selection of a `PosteriorSample`.

    Attributes
    ----------
    values : np.ndarray
        Retained draws, shape (n_chains, draws_per_chain, n_parameters).
    parameters : tuple[ParameterName, ...]
        Selected parameters.
    chains : tuple[int, ...]
        Indices of the retained chains in the original sample.
    start, end, thin : int
        Iteration window and thinning that were applied.
    """

    values: np.ndarray
    parameters: tuple[ParameterName, ...]
    chains: tuple[int, ...]
    start: int
    end: int
    thin: int

    @property
    def n_chains(self) -> int:
        return self.values.shape[0]

    @property
    def draws_per_chain(self) -> int:
        return self.values.shape[1]

    @property
    def n_draws(self) -> int:
        """Total number of retained draws (all chains)."""
        return self.values.shape[0] * self.values.shape[1]

    @property
    def matrix(self) -> np.ndarray:
        """Draws of all chains stacked into an (n_draws, n_parameters) matrix."""
        return self.values.reshape(-1, self.n_parameters)

    def to_frame(self) -> pd.DataFrame:
        """Stacked draws as a DataFrame with one column per parameter."""
        return pd.DataFrame(self.matrix, columns=self.names)

    def get(self, names: Sequence[str]) -> np.ndarray:
        """
        Stacked draws of the given parameters.

        Parameters
        ----------
        names : sequence of str
            Raw parameter names.

        Returns
        -------
        np.ndarray
            Array of shape (n_draws, len(names)).

        Raises
        ------
        ColumnMismatchError
            If any name is not part of the slice.
        """
        position = {name: j for j, name in enumerate(self.names)}
        missing = [n for n in names if n not in position]
        if missing:
            raise ColumnMismatchError(
                f"Parameters {missing} are not part of the selected MCMC sample"
            )
        return self.matrix[:, [position[n] for n in names]]


def _valid_thin(thin: int | None, stored_thin: int) -> int:
    """Round a requested thinning interval to a multiple of the stored one."""
    if thin is None:
        return stored_thin

    valid = max(stored_thin, int(round(thin / stored_thin)) * stored_thin)
    if valid != thin:
        warnings.warn(
            f"Thinning interval {thin} is not a multiple of the thinning of the "
            f"stored sample ({stored_thin}); using thin = {valid} instead.",
            UserWarning,
        )
    return valid


def _retained_chains(n_chains: int, exclude_chains: Iterable[int] | None) -> list[int]:
    exclude = set()
    for idx in exclude_chains if exclude_chains is not None else ():
        if not 0 <= int(idx) < n_chains:
            raise InvalidChainIndexError(
                f"Chain index {idx} does not exist; the sample has {n_chains} "
                f"chains (valid indices 0 to {n_chains - 1})"
            )
        exclude.add(int(idx))

    chains = [c for c in range(n_chains) if c not in exclude]
    if not chains:
        raise EmptySampleError("All chains of the MCMC sample were excluded")
    return chains


def _select_columns(
    parameters: Sequence[ParameterName],
    subset: str | ParameterGroup | Sequence[str | ParameterGroup] | None,
) -> list[int]:
    if subset is None:
        return list(range(len(parameters)))
    if isinstance(subset, (str, ParameterGroup)):
        subset = [subset]

    position = {p.raw: j for j, p in enumerate(parameters)}
    names = [s for s in subset if isinstance(s, str)]
    groups = [s for s in subset if isinstance(s, ParameterGroup)]

    missing = [n for n in names if n not in position]
    if missing:
        raise ColumnMismatchError(
            f"Parameters {missing} are not part of the MCMC sample"
        )

    selected = [position[n] for n in names]
    for j, parameter in enumerate(parameters):
        if j not in selected and any(g.matches(parameter) for g in groups):
            selected.append(j)
    return selected


def slice_posterior(
    sample: PosteriorSample,
    start: int | None = None,
    end: int | None = None,
    thin: int | None = None,
    exclude_chains: Iterable[int] | None = None,
    subset: Any = None,
    require_columns: bool = True,
) -> PosteriorSlice:
    """
    Select iterations, chains and parameters from a posterior sample.

    Parameters
    ----------
    sample : PosteriorSample
        The full MCMC sample.
    start : int, optional
        First iteration to keep. Clipped to the stored range and moved up to
        the next stored iteration. Default is the first stored iteration.
    end : int, optional
        Last iteration to keep, clipped to the stored range.
    thin : int, optional
        Keep every `thin`-th iteration. Must be a multiple of the stored
        thinning interval; other values are rounded to the nearest valid one
        with a warning.
    exclude_chains : iterable of int, optional
        0-based indices of chains to drop.
    subset : optional
        Parameter selection: a name, a list of names, a `ParameterGroup`, or
        a list mixing names and groups (the union is selected).
    require_columns : bool, optional
        Raise if the selection contains no parameters. Default is True.

    Returns
    -------
    PosteriorSlice

    Raises
    ------
    EmptySampleError
        If no draws (or, with `require_columns`, no parameters) are selected.
    InvalidChainIndexError
        If a chain index in `exclude_chains` is out of range.
    ColumnMismatchError
        If a parameter named in `subset` is not in the sample.

    Examples
    --------
    >>> mcmc = slice_posterior(sample, start=501, thin=5, exclude_chains=[2])
    >>> mcmc.matrix.shape
    """
    if sample.n_iterations == 0:
        raise EmptySampleError("There is no MCMC sample. The model must be fitted with iterations.")

    iterations = sample.iterations
    first, last = int(iterations[0]), int(iterations[-1])

    start = first if start is None else max(int(start), first)
    end = last if end is None else min(int(end), last)

    offset = (start - first) % sample.thin
    if offset:
        start += sample.thin - offset

    if start > end:
        raise EmptySampleError(
            f"No iterations between start = {start} and end = {end} "
            f"(the sample covers iterations {first} to {last})"
        )

    thin = _valid_thin(thin, sample.thin)
    keep = np.flatnonzero(
        (iterations >= start) & (iterations <= end) & ((iterations - start) % thin == 0)
    )

    chains = _retained_chains(sample.n_chains, exclude_chains)
    columns = _select_columns(sample.parameters, subset)
    if require_columns and not columns:
        raise EmptySampleError("The selected subset of the MCMC sample has no parameters")

    values = sample.values[np.ix_(chains, keep, columns)]

    return PosteriorSlice(
        values=values,
        parameters=tuple(sample.parameters[j] for j in columns),
        chains=tuple(chains),
        start=start,
        end=end,
        thin=thin,
    )
