"""
Pytest configuration and shared fixtures for SciGibbs tests.

This file provides:
- Global random seed management for reproducibility
- Model descriptions and data used across test modules
"""

import numpy as np
import pytest

import scigibbs as sg


NORMAL_NORMAL = """
model {
  theta ~ dnorm(2.3, 1 / 0.5^2)
  x ~ dnorm(theta, 1 / 0.8^2)
}
"""

DIRICHLET_MIXTURE = """
model {
  p[1:3] ~ ddirch(alpha[])
  for (i in 1:N) {
    z[i] ~ dcat(p[])
    y[i] ~ dnorm(mu[z[i]], 1)
  }
}
"""

LINEAR_REGRESSION = """
model {
  for (i in 1:N) {
    mu[i] <- b0 + b1 * x[i]
    y[i] ~ dnorm(mu[i], tau)
  }
  b0 ~ dnorm(0, 0.001)
  b1 ~ dnorm(0, 0.001)
  tau ~ dgamma(0.01, 0.01)
}
"""


@pytest.fixture(scope="session", autouse=True)
def set_random_seeds():
    """Seed the global generators once per session so that runs without an
    explicit seed are reproducible.
    """
    np.random.seed(42)
    sg.manual_seed(42)

    yield


@pytest.fixture
def normal_normal_expected():
    """Closed-form posterior mean and standard deviation of the Normal-Normal
    model.
    """
    prior_tau, data_tau = 1 / 0.5**2, 1 / 0.8**2
    mean = (2.3 * prior_tau + 3.1 * data_tau) / (prior_tau + data_tau)
    return mean, 1 / np.sqrt(prior_tau + data_tau)


@pytest.fixture
def normal_normal_model():
    return sg.Model(NORMAL_NORMAL, data={"x": 3.1})


@pytest.fixture
def mixture_data():
    return {
        "N": 9,
        "alpha": [1.0, 1.0, 1.0],
        "mu": [0.0, 10.0, 20.0],
        "y": [0.1, -0.4, 0.8, 9.7, 10.2, 10.5, 19.6, 20.3, 19.9],
    }


@pytest.fixture
def mixture_model(mixture_data):
    return sg.Model(DIRICHLET_MIXTURE, data=mixture_data)


@pytest.fixture
def regression_data():
    x = np.linspace(-2, 2, 20)
    rng = np.random.default_rng(0)
    return {"N": 20, "x": x, "y": 1.0 + 2.0 * x + rng.normal(0, 0.5, size=20)}


@pytest.fixture
def regression_model(regression_data):
    return sg.Model(LINEAR_REGRESSION, data=regression_data)
