"""
Unit tests for kernel selection
"""

import pytest

from scigibbs import Model, build
from scigibbs.exceptions import UnsupportedDistributionError
from scigibbs.model.sampling.classifier import classify

from tests.conftest import DIRICHLET_MIXTURE, LINEAR_REGRESSION, NORMAL_NORMAL


class TestAutomaticSelection:
    """Test the kernel chosen for each model structure."""

    def test_normal_normal(self):
        assert Model(NORMAL_NORMAL, {"x": 3.1}).kernels == {"theta": "conjugate_normal"}

    def test_linear_regression(self, regression_model):
        assert regression_model.kernels == {
            "b0": "conjugate_normal",
            "b1": "conjugate_normal",
            "tau": "conjugate_gamma",
        }

    def test_mixture(self, mixture_model):
        kernels = mixture_model.kernels
        assert kernels["p"] == "conjugate_dirichlet"
        assert all(kernels[f"z[{i}]"] == "enumeration" for i in range(1, 10))

    def test_beta_bernoulli(self):
        model = Model(
            "p ~ dbeta(1, 1)\nfor (i in 1:3) { y[i] ~ dbern(p) }", {"y": [1, 0, 1]}
        )
        assert model.kernels == {"p": "conjugate_beta"}

    def test_non_linear_mean(self):
        model = Model("theta ~ dnorm(0, 1)\ny ~ dnorm(exp(theta), 1)", {"y": 1.0})
        assert model.kernels == {"theta": "metropolis"}

    def test_node_in_precision(self):
        model = Model("theta ~ dnorm(1, 1)\ny ~ dnorm(0, theta^2)", {"y": 1.0})
        assert model.kernels == {"theta": "metropolis"}

    def test_squared_precision_is_not_gamma_conjugate(self):
        model = Model("tau ~ dgamma(1, 1)\ny ~ dnorm(0, tau * tau)", {"y": 1.0})
        assert model.kernels == {"tau": "metropolis"}

    def test_wide_uniform_is_not_beta_conjugate(self):
        model = Model("p ~ dunif(0, 2)\ny ~ dnorm(p, 1)", {"y": 1.0})
        assert model.kernels == {"p": "metropolis"}

    def test_dirichlet_with_normal_child(self):
        model = Model(
            "p ~ ddirch(alpha[])\ny ~ dnorm(p[1], 1)",
            {"alpha": [1.0, 1.0, 1.0], "y": 0.3},
        )
        assert model.kernels == {"p": "metropolis_simplex"}

    def test_discrete_with_infinite_support(self):
        assert Model("k ~ dpois(3)").kernels == {"k": "metropolis"}

    def test_finite_discrete(self):
        model = Model("b ~ dbern(0.3)\nn ~ dbin(0.5, 4)")
        assert model.kernels == {"b": "enumeration", "n": "enumeration"}

    def test_constrained_nodes_are_not_sampled(self):
        model = Model("p1 ~ dbeta(1, 1)\np2 <- 1 - p1")
        assert model.kernels == {"p1": "conjugate_beta"}
        assert model["p2"].kind == "deterministic"


class TestOverrides:
    """Test forcing kernels on nodes."""

    def test_slice_override(self):
        model = Model(
            "sigma ~ dunif(0, 10)\ny ~ dnorm(0, 1 / sigma^2)",
            {"y": 1.0},
            kernel_overrides={"sigma": "slice"},
        )
        assert model.kernels == {"sigma": "slice"}

    def test_override_by_variable_name(self):
        model = Model(
            "for (i in 1:3) { b[i] ~ dnorm(0, 1) }",
            kernel_overrides={"b": "metropolis"},
        )
        assert set(model.kernels.values()) == {"metropolis"}

    def test_unknown_kernel(self):
        with pytest.raises(UnsupportedDistributionError, match="Unknown kernel"):
            build(NORMAL_NORMAL, {"x": 3.1}, kernel_overrides={"theta": "hmc"})

    def test_inapplicable_kernel(self):
        with pytest.raises(UnsupportedDistributionError, match="cannot update"):
            build(
                "p ~ ddirch(alpha[])",
                {"alpha": [1.0, 1.0]},
                kernel_overrides={"p": "slice"},
            )

    def test_conjugacy_cannot_be_forced(self):
        with pytest.raises(UnsupportedDistributionError):
            build(
                "theta ~ dnorm(0, 1)\ny ~ dnorm(exp(theta), 1)",
                {"y": 1.0},
                kernel_overrides={"theta": "conjugate_normal"},
            )

    def test_slice_rejects_discrete(self):
        with pytest.raises(UnsupportedDistributionError):
            build("k ~ dpois(3)", kernel_overrides={"k": "slice"})

    def test_classify_observed_node(self):
        graph = build(NORMAL_NORMAL, {"x": 3.1})
        with pytest.raises(ValueError):
            classify(graph["x"], graph)

    def test_classify_returns_fresh_kernel(self, mixture_data):
        graph = build(DIRICHLET_MIXTURE, mixture_data)
        kernel = classify(graph["p"], graph)
        assert kernel.kind == "conjugate_dirichlet"
        assert kernel is not graph["p"].kernel

    def test_regression_override_is_honored(self, regression_data):
        graph = build(
            LINEAR_REGRESSION, regression_data, kernel_overrides={"tau": "slice"}
        )
        assert graph["tau"].kernel.kind == "slice"
        assert graph["b0"].kernel.kind == "conjugate_normal"
