"""
Family and link functions for generalized linear outcome models.

Each supported (family, link) pair maps to a `LinkFunctions` record with the
link function, its inverse, the derivative of the inverse link and the
variance function. Families that do not define one of these functions (the
beta family has neither a variance function nor a derivative here) leave it
as None, and asking for it raises an `UnsupportedCombinationError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import numpy as np
from scipy import special, stats

from .exceptions import UnsupportedCombinationError

ArrayFunction = Callable[[np.ndarray], np.ndarray]


@dataclass(frozen=True)
class LinkFunctions:
    """
    Transformations between the response and the linear predictor scale.

    Attributes
    ----------
    family : str
        Canonical family name.
    link_name : str
        Name of the link function.
    link : callable
        Response scale -> linear predictor scale.
    inverse_link : callable
        Linear predictor scale -> response scale.
    mu_eta : callable or None
        Derivative of the inverse link with respect to the linear predictor.
    variance : callable or None
        Variance of the response as a function of its mean.
    """

    family: str
    link_name: str
    link: ArrayFunction
    inverse_link: ArrayFunction
    mu_eta: ArrayFunction | None = None
    variance: ArrayFunction | None = None

    def require(self, name: str) -> ArrayFunction:
        """
        Return the function `name`, raising if the family does not define it.

        Raises
        ------
        UnsupportedCombinationError
            If the function is not available for this family and link.
        """
        func = getattr(self, name)
        if func is None:
            raise UnsupportedCombinationError(
                f"The function '{name}' is not available for the {self.family} "
                f"family with {self.link_name} link."
            )
        return func


# link name -> (link, inverse link, derivative of the inverse link)
_LINKS: dict[str, tuple[ArrayFunction, ArrayFunction, ArrayFunction]] = {
    "identity": (
        lambda mu: np.asarray(mu, dtype=np.float64),
        lambda eta: np.asarray(eta, dtype=np.float64),
        lambda eta: np.ones_like(np.asarray(eta, dtype=np.float64)),
    ),
    "log": (np.log, np.exp, np.exp),
    "inverse": (
        lambda mu: 1.0 / np.asarray(mu, dtype=np.float64),
        lambda eta: 1.0 / np.asarray(eta, dtype=np.float64),
        lambda eta: -1.0 / np.asarray(eta, dtype=np.float64) ** 2,
    ),
    "logit": (
        special.logit,
        special.expit,
        lambda eta: special.expit(eta) * (1.0 - special.expit(eta)),
    ),
    "probit": (stats.norm.ppf, stats.norm.cdf, stats.norm.pdf),
    "cloglog": (
        lambda mu: np.log(-np.log1p(-np.asarray(mu, dtype=np.float64))),
        lambda eta: -np.expm1(-np.exp(eta)),
        lambda eta: np.exp(eta - np.exp(eta)),
    ),
    "sqrt": (
        np.sqrt,
        np.square,
        lambda eta: 2.0 * np.asarray(eta, dtype=np.float64),
    ),
}

# family -> (variance function, supported links)
_FAMILIES: dict[str, tuple[ArrayFunction | None, tuple[str, ...]]] = {
    "gaussian": (
        lambda mu: np.ones_like(np.asarray(mu, dtype=np.float64)),
        ("identity", "log", "inverse"),
    ),
    "binomial": (
        lambda mu: np.asarray(mu, dtype=np.float64) * (1.0 - np.asarray(mu, dtype=np.float64)),
        ("logit", "probit", "cloglog", "log"),
    ),
    "Gamma": (
        lambda mu: np.asarray(mu, dtype=np.float64) ** 2,
        ("inverse", "identity", "log"),
    ),
    "poisson": (
        lambda mu: np.asarray(mu, dtype=np.float64),
        ("log", "identity", "sqrt"),
    ),
    "beta": (None, ("logit",)),
}

_FAMILY_ALIASES = {
    "gaussian": "gaussian",
    "normal": "gaussian",
    "binomial": "binomial",
    "logistic": "binomial",
    "gamma": "Gamma",
    "poisson": "poisson",
    "lognorm": "lognorm",
    "lognormal": "lognorm",
    "beta": "beta",
}

_DEFAULT_LINKS = {
    "gaussian": "identity",
    "binomial": "logit",
    "Gamma": "inverse",
    "poisson": "log",
    "lognorm": "identity",
    "beta": "logit",
}


def canonical_family(family: str) -> str:
    """
    Map a family name or alias to its canonical name.

    Raises
    ------
    UnsupportedCombinationError
        If the family is unknown.
    """
    key = family.lower() if isinstance(family, str) else family
    if key not in _FAMILY_ALIASES:
        raise UnsupportedCombinationError(
            f"Unknown family '{family}'. Supported families: "
            f"{sorted(set(_FAMILY_ALIASES.values()))}"
        )
    return _FAMILY_ALIASES[key]


def default_link(family: str) -> str:
    """Get the default link function for a family."""
    return _DEFAULT_LINKS[canonical_family(family)]


def get_link_functions(family: str, link: str | None = None) -> LinkFunctions:
    """
    Look up the link and variance functions for a family.

    Log-normal outcomes are modelled as gaussian on the log scale, so
    ``lognorm`` returns the gaussian family with log link whatever link is
    recorded for it.

    Parameters
    ----------
    family : str
        Family name, e.g. "gaussian", "binomial", "Gamma", "poisson",
        "lognorm" or "beta" (case-insensitive, common aliases accepted).
    link : str, optional
        Link function. Default is the family's default link.

    Returns
    -------
    LinkFunctions

    Raises
    ------
    UnsupportedCombinationError
        If the family or the (family, link) combination is not supported.

    Examples
    --------
    >>> funcs = get_link_functions("poisson")
    >>> funcs.inverse_link(np.log(3.0))
    3.0
    """
    name = canonical_family(family)
    if link is None:
        link = _DEFAULT_LINKS[name]

    if name == "lognorm":
        if link not in ("identity", "log"):
            raise UnsupportedCombinationError(
                f"The lognorm family is not available with {link} link."
            )
        gaussian = get_link_functions("gaussian", "log")
        return LinkFunctions(
            family="lognorm",
            link_name="log",
            link=gaussian.link,
            inverse_link=gaussian.inverse_link,
            mu_eta=gaussian.mu_eta,
            variance=gaussian.variance,
        )

    variance, links = _FAMILIES[name]
    if link not in links:
        raise UnsupportedCombinationError(
            f"The {name} family is not available with {link} link. "
            f"Supported links: {list(links)}"
        )

    linkfun, linkinv, mu_eta = _LINKS[link]
    return LinkFunctions(
        family=name,
        link_name=link,
        link=linkfun,
        inverse_link=linkinv,
        # the beta family only provides the link and its inverse
        mu_eta=None if name == "beta" else mu_eta,
        variance=variance,
    )


def supported_combinations() -> list[tuple[str, str]]:
    """List all supported (family, link) pairs."""
    pairs = [(family, link) for family, (_, links) in _FAMILIES.items() for link in links]
    pairs.append(("lognorm", "identity"))
    return pairs
