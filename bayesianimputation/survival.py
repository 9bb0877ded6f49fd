"""
Numerical building blocks for proportional hazards predictions.

The log baseline hazard of a proportional hazards outcome is a cubic
B-spline in time. The cumulative hazard is obtained by integrating the
hazard over [0, t] with the 15-point Gauss-Kronrod rule, using the
substitution s = t / 2 * (x + 1) that maps the rule's nodes from [-1, 1] to
[0, t]. Time-varying (longitudinal) covariates are evaluated at the
quadrature nodes by carrying the last observation forward.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
from scipy.interpolate import BSpline

# 15-point Kronrod extension of the 7-point Gauss-Legendre rule on [-1, 1]
_GK_NODES = np.array(
    [
        -0.991455371120813,
        -0.949107912342759,
        -0.864864423359769,
        -0.741531185599394,
        -0.586087235467691,
        -0.405845151377397,
        -0.207784955007898,
        0.000000000000000,
        0.207784955007898,
        0.405845151377397,
        0.586087235467691,
        0.741531185599394,
        0.864864423359769,
        0.949107912342759,
        0.991455371120813,
    ]
)
_GK_WEIGHTS = np.array(
    [
        0.022935322010529,
        0.063092092629979,
        0.104790010322250,
        0.140653259715525,
        0.169004726639267,
        0.190350578064785,
        0.204432940075298,
        0.209482141084728,
        0.204432940075298,
        0.190350578064785,
        0.169004726639267,
        0.140653259715525,
        0.104790010322250,
        0.063092092629979,
        0.022935322010529,
    ]
)

SPLINE_ORDER = 4


def gauss_kronrod() -> tuple[np.ndarray, np.ndarray]:
    """Nodes and weights of the 15-point Gauss-Kronrod rule on [-1, 1]."""
    return _GK_NODES.copy(), _GK_WEIGHTS.copy()


def quadrature_nodes(times: np.ndarray) -> np.ndarray:
    """
    Quadrature nodes on [0, t] for each time t.

    Parameters
    ----------
    times : np.ndarray
        Upper integration limits, shape (n,).

    Returns
    -------
    np.ndarray
        Array of shape (n, 15).
    """
    times = np.asarray(times, dtype=np.float64)
    return np.outer(times / 2.0, _GK_NODES + 1.0)


def integrate_hazard(times: np.ndarray, hazard: np.ndarray) -> np.ndarray:
    """
    Integrate a hazard evaluated at the quadrature nodes.

    Parameters
    ----------
    times : np.ndarray
        Upper integration limits, shape (n,).
    hazard : np.ndarray
        Hazard at the nodes returned by `quadrature_nodes`, shape
        (..., n, 15).

    Returns
    -------
    np.ndarray
        Cumulative hazard of shape (..., n). Zero for t = 0.
    """
    times = np.asarray(times, dtype=np.float64)
    return times / 2.0 * (hazard @ _GK_WEIGHTS)


def baseline_hazard_knots(
    times: np.ndarray,
    event_times: np.ndarray,
    df_basehaz: int = 6,
) -> np.ndarray:
    """
    Knot sequence of the B-spline for the log baseline hazard.

    The boundary knots span the observed times and all quadrature nodes
    that can occur for them, and are repeated `SPLINE_ORDER` times.
    ``df_basehaz - 4`` interior knots are placed at evenly spaced quantiles
    of the event times (of all times when there are too few events).

    Parameters
    ----------
    times : np.ndarray
        Observed (event or censoring) times of the reference data.
    event_times : np.ndarray
        Times of the observed events.
    df_basehaz : int, optional
        Number of B-spline basis functions. Default is 6.

    Returns
    -------
    np.ndarray
        Sorted knot sequence with ``df_basehaz + 4`` knots (fewer if
        interior knots coincide with the boundary).

    Raises
    ------
    ValueError
        If `df_basehaz` is smaller than the spline order or there are no
        observed times.
    """
    if df_basehaz < SPLINE_ORDER:
        raise ValueError(
            f"df_basehaz must be at least {SPLINE_ORDER} for a cubic spline, got {df_basehaz}"
        )

    times = np.asarray(times, dtype=np.float64)
    times = times[~np.isnan(times)]
    event_times = np.asarray(event_times, dtype=np.float64)
    event_times = event_times[~np.isnan(event_times)]
    if times.size == 0:
        raise ValueError("Cannot place baseline hazard knots without observed times")

    n_interior = df_basehaz - SPLINE_ORDER
    source = event_times if event_times.size > n_interior else times
    probs = np.linspace(0.0, 1.0, n_interior + 2)[1:-1]
    interior = np.quantile(source, probs) if n_interior > 0 else np.empty(0)

    boundary = np.concatenate([times, quadrature_nodes(times).ravel()])
    lower, upper = boundary.min(), boundary.max()
    interior = interior[(interior > lower) & (interior < upper)]

    return np.sort(np.concatenate([np.repeat([lower, upper], SPLINE_ORDER), interior]))


def bspline_basis(x: np.ndarray, knots: np.ndarray) -> np.ndarray:
    """
    Evaluate the cubic B-spline basis functions.

    Values outside the boundary knots get a zero basis row.

    Parameters
    ----------
    x : np.ndarray
        Evaluation points, shape (n,).
    knots : np.ndarray
        Knot sequence from `baseline_hazard_knots`.

    Returns
    -------
    np.ndarray
        Basis matrix of shape (n, len(knots) - 4).
    """
    x = np.asarray(x, dtype=np.float64)
    n_basis = len(knots) - SPLINE_ORDER
    spline = BSpline(knots, np.eye(n_basis), SPLINE_ORDER - 1, extrapolate=False)
    return np.nan_to_num(spline(x), nan=0.0)


def locf_positions(
    ids: pd.Series | np.ndarray,
    times: pd.Series | np.ndarray,
    query_ids: pd.Series | np.ndarray,
    query_times: np.ndarray,
) -> np.ndarray:
    """
    Positions of the last observation at or before each query time.

    For every (id, time) query the row of the same id with the latest time
    not after the query time is returned; queries before the first
    measurement of an id use that first measurement.

    Parameters
    ----------
    ids, times : array-like
        Id and measurement time of the longitudinal rows.
    query_ids, query_times : array-like
        Id and time of each query.

    Returns
    -------
    np.ndarray
        Integer positions into the longitudinal rows, -1 where the id has no
        rows with a known time.
    """
    codes, uniques = pd.factorize(pd.Series(ids), use_na_sentinel=True)
    query_codes = uniques.get_indexer(pd.Series(query_ids))
    times = np.asarray(times, dtype=np.float64)
    query_times = np.asarray(query_times, dtype=np.float64)

    valid = (codes >= 0) & ~np.isnan(times)
    rows = np.flatnonzero(valid)
    order = rows[np.lexsort((times[rows], codes[rows]))]
    sorted_codes = codes[order]
    sorted_times = times[order]

    positions = np.full(len(query_codes), -1, dtype=np.int64)
    for code in np.unique(query_codes[query_codes >= 0]):
        group = np.flatnonzero(sorted_codes == code)
        if group.size == 0:
            continue
        selected = query_codes == code
        idx = np.searchsorted(sorted_times[group], query_times[selected], side="right") - 1
        positions[selected] = order[group[np.clip(idx, 0, group.size - 1)]]
    return positions
