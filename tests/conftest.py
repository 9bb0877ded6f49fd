"""Pytest configuration and shared fixtures."""

import numpy as np
import pandas as pd
import pytest

from bayesianimputation.models import FittedModel, ModelSpec
from bayesianimputation.posterior import PosteriorSample


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests (large posterior samples)",
    )


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slow: mark test as slow (large posterior samples)")


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is provided."""
    if config.getoption("--run-slow"):
        # Run all tests
        return

    skip_slow = pytest.mark.skip(reason="need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


def make_sample(values, n_chains=2, n_iter=50, start=1, thin=1, noise=0.0, seed=0):
    """
    Build a posterior sample from per-parameter values.

    `values` maps parameter name -> constant (or array broadcastable to
    (n_chains, n_iter)). Optional normal noise is added to every draw.
    """
    rng = np.random.default_rng(seed)
    names = list(values)
    arr = np.empty((n_chains, n_iter, len(names)))
    for j, name in enumerate(names):
        arr[:, :, j] = np.broadcast_to(values[name], (n_chains, n_iter))
    if noise:
        arr = arr + rng.normal(scale=noise, size=arr.shape)
    return PosteriorSample.from_arrays(arr, names=names, start=start, thin=thin)


@pytest.fixture
def sample_factory():
    """Factory for posterior samples with known values (see `make_sample`)."""
    return make_sample


@pytest.fixture
def rng():
    """Random number generator with a fixed seed."""
    return np.random.default_rng(42)


@pytest.fixture
def glm_data(rng):
    """Data with a continuous outcome, a continuous and a binary covariate."""
    n = 20
    return pd.DataFrame(
        {
            "y": rng.normal(size=n),
            "x": np.linspace(0.0, 4.0, n),
            "g": pd.Categorical(np.where(np.arange(n) % 2 == 0, "a", "b")),
        }
    )


@pytest.fixture
def glm_model(glm_data):
    """Gaussian outcome y ~ x + C(g) with constant coefficients 1, 0.5 and -1."""
    posterior = make_sample(
        {"beta[1]": 1.0, "beta[2]": -1.0, "beta[3]": 0.5, "sigma_y": 0.8}, noise=0.0
    )
    return FittedModel(
        outcomes=[ModelSpec("y", "glm", "y ~ x + C(g)", family="gaussian")],
        posterior=posterior,
        data=glm_data,
        coef_index={
            "y": [("beta[1]", "Intercept"), ("beta[2]", "C(g)[T.b]"), ("beta[3]", "x")]
        },
    )


@pytest.fixture
def ordinal_data():
    """Data with a 3-category ordinal outcome."""
    return pd.DataFrame(
        {
            "y": pd.Categorical(
                ["low", "mid", "high", "low", "high", "mid"],
                categories=["low", "mid", "high"],
                ordered=True,
            ),
            "x": [0.5, 1.0, 1.5, 2.0, 2.5, 3.0],
        }
    )
