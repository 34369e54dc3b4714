"""
Unit tests for the update kernels
"""

import numpy as np
import pytest

from scigibbs import build, defaults
from scigibbs.model.sampling import chains
from scigibbs.model.sampling.kernels import (
    KERNELS,
    AdaptiveState,
    ConjugateBeta,
    ConjugateDirichlet,
    ConjugateGamma,
    ConjugateNormal,
    FiniteEnumeration,
    Kernel,
)

from tests.conftest import DIRICHLET_MIXTURE, LINEAR_REGRESSION, NORMAL_NORMAL


class RecordingGenerator:
    """Stands in for a numpy Generator and records the distribution parameters
    requested by conjugate kernels. Each draw returns the distribution's mean.
    """

    def __init__(self):
        self.calls = []

    def normal(self, loc, scale):
        self.calls.append(("normal", loc, scale))
        return loc

    def gamma(self, shape, scale):
        self.calls.append(("gamma", shape, scale))
        return shape * scale

    def beta(self, a, b):
        self.calls.append(("beta", a, b))
        return a / (a + b)

    def dirichlet(self, alpha):
        self.calls.append(("dirichlet", np.array(alpha)))
        return np.asarray(alpha) / np.sum(alpha)

    def choice(self, n, p):
        self.calls.append(("choice", n, np.array(p)))
        return 0


def make_state(graph, values):
    state = chains.ChainState(graph, np.random.default_rng(0))
    for name, value in values.items():
        state.set_value(name, value)
    return state


class TestConjugateNormal:
    """Test the Normal-Normal update against closed forms."""

    def test_normal_normal_closed_form(self, normal_normal_expected):
        graph = build(NORMAL_NORMAL, {"x": 3.1})
        state = make_state(graph, {"theta": 0.0})
        rng = RecordingGenerator()

        value = ConjugateNormal().update(graph["theta"], state, graph, rng)

        expected_mean, expected_sd = normal_normal_expected
        (call,) = rng.calls
        assert call[0] == "normal"
        assert call[1] == pytest.approx(expected_mean, rel=1e-12)
        assert call[2] == pytest.approx(expected_sd, rel=1e-12)
        assert isinstance(value, float)

    def test_update_ignores_current_value(self):
        graph = build(NORMAL_NORMAL, {"x": 3.1})
        first, second = RecordingGenerator(), RecordingGenerator()
        kernel = ConjugateNormal()
        kernel.update(graph["theta"], make_state(graph, {"theta": -5.0}), graph, first)
        kernel.update(graph["theta"], make_state(graph, {"theta": 5.0}), graph, second)
        assert first.calls == second.calls

    def test_regression_slope(self, regression_data):
        graph = build(LINEAR_REGRESSION, regression_data)
        state = make_state(graph, {"b0": 0.5, "b1": 1.5, "tau": 2.0})
        rng = RecordingGenerator()

        ConjugateNormal().update(graph["b1"], state, graph, rng)

        x, y = regression_data["x"], regression_data["y"]
        precision = 0.001 + 2.0 * np.sum(x**2)
        mean = 2.0 * np.sum(x * (y - 0.5)) / precision
        (call,) = rng.calls
        assert call[1] == pytest.approx(mean, rel=1e-10)
        assert call[2] == pytest.approx(1 / np.sqrt(precision), rel=1e-10)

    def test_matches_posterior_by_sampling(self, normal_normal_expected):
        graph = build(NORMAL_NORMAL, {"x": 3.1})
        state = make_state(graph, {"theta": 0.0})
        rng = np.random.default_rng(1)
        kernel = ConjugateNormal()

        draws = np.array(
            [kernel.update(graph["theta"], state, graph, rng) for _ in range(20000)]
        )

        expected_mean, expected_sd = normal_normal_expected
        assert draws.mean() == pytest.approx(expected_mean, abs=0.015)
        assert draws.std() == pytest.approx(expected_sd, rel=0.05)


class TestOtherConjugateKernels:
    """Test the remaining conjugate updates against their sufficient statistics."""

    def test_gamma_precision(self, regression_data):
        graph = build(LINEAR_REGRESSION, regression_data)
        state = make_state(graph, {"b0": 0.5, "b1": 1.5, "tau": 2.0})
        rng = RecordingGenerator()

        ConjugateGamma().update(graph["tau"], state, graph, rng)

        x, y = regression_data["x"], regression_data["y"]
        shape = 0.01 + len(y) / 2
        rate = 0.01 + np.sum((y - 0.5 - 1.5 * x) ** 2) / 2
        (call,) = rng.calls
        assert call[0] == "gamma"
        assert call[1] == pytest.approx(shape)
        assert call[2] == pytest.approx(1 / rate, rel=1e-10)

    def test_gamma_poisson(self):
        graph = build(
            "lambda0 ~ dgamma(2, 1)\nfor (i in 1:3) { k[i] ~ dpois(2 * lambda0) }",
            {"k": [3, 5, 4]},
        )
        assert graph["lambda0"].kernel.kind == "conjugate_gamma"
        rng = RecordingGenerator()
        ConjugateGamma().update(
            graph["lambda0"], make_state(graph, {"lambda0": 1.0}), graph, rng
        )
        (call,) = rng.calls
        assert call[1] == pytest.approx(2 + 12)
        assert call[2] == pytest.approx(1 / (1 + 3 * 2))

    def test_beta_bernoulli_and_binomial(self):
        graph = build(
            """
            p ~ dbeta(2, 3)
            for (i in 1:5) { y[i] ~ dbern(p) }
            k ~ dbin(p, 10)
            """,
            {"y": [1, 0, 1, 1, 0], "k": 7},
        )
        rng = RecordingGenerator()
        ConjugateBeta().update(graph["p"], make_state(graph, {"p": 0.5}), graph, rng)
        (call,) = rng.calls
        assert call[1:] == (pytest.approx(2 + 3 + 7), pytest.approx(3 + 2 + 3))

    def test_uniform_prior_as_beta(self):
        graph = build("p ~ dunif(0, 1)\ny ~ dbin(p, 4)", {"y": 1})
        assert graph["p"].kernel.kind == "conjugate_beta"
        rng = RecordingGenerator()
        ConjugateBeta().update(graph["p"], make_state(graph, {"p": 0.5}), graph, rng)
        (call,) = rng.calls
        assert call[1:] == (pytest.approx(2.0), pytest.approx(4.0))

    def test_dirichlet_categorical(self, mixture_data):
        graph = build(DIRICHLET_MIXTURE, mixture_data)
        allocations = [1, 1, 1, 2, 2, 2, 3, 3, 1]
        values = {f"z[{i + 1}]": z for i, z in enumerate(allocations)}
        values["p"] = np.array([0.2, 0.3, 0.5])
        rng = RecordingGenerator()

        value = ConjugateDirichlet().update(
            graph["p"], make_state(graph, values), graph, rng
        )

        (call,) = rng.calls
        np.testing.assert_allclose(call[1], [1 + 4, 1 + 3, 1 + 2])
        assert value.sum() == 1.0

    def test_enumeration_probabilities(self, mixture_data):
        graph = build(DIRICHLET_MIXTURE, {**mixture_data, "y": [5.0] * 9})
        weights = np.array([0.2, 0.3, 0.5])
        values = {f"z[{i}]": 1 for i in range(1, 10)}
        values["p"] = weights
        rng = RecordingGenerator()

        value = FiniteEnumeration().update(
            graph["z[1]"], make_state(graph, values), graph, rng
        )

        log_probs = np.log(weights) - 0.5 * (5.0 - np.array([0.0, 10.0, 20.0])) ** 2
        expected = np.exp(log_probs - log_probs.max())
        expected /= expected.sum()
        (call,) = rng.calls
        assert call[1] == 3
        np.testing.assert_allclose(call[2], expected, atol=1e-12)
        assert value == 1


class TestLogConditional:
    """Test the unnormalized full conditional shared by all kernels."""

    def test_outside_prior_support(self, regression_data):
        graph = build(LINEAR_REGRESSION, regression_data)
        state = make_state(graph, {"b0": 0.5, "b1": 1.5, "tau": 2.0})
        assert Kernel.log_conditional(graph["tau"], -1.0, state, graph) == -np.inf

    def test_sums_prior_and_children(self):
        graph = build(NORMAL_NORMAL, {"x": 3.1})
        state = make_state(graph, {"theta": 0.0})
        tau0, tau1 = 1 / 0.5**2, 1 / 0.8**2

        def normal_logpdf(value, mean, tau):
            return 0.5 * np.log(tau / (2 * np.pi)) - 0.5 * tau * (value - mean) ** 2

        expected = normal_logpdf(2.0, 2.3, tau0) + normal_logpdf(3.1, 2.0, tau1)
        assert Kernel.log_conditional(
            graph["theta"], 2.0, state, graph
        ) == pytest.approx(expected)


class TestAdaptiveState:
    """Test step-size adaptation toward the target acceptance window."""

    def _fill_batch(self, adaptive, n_accepted):
        for i in range(defaults.DEFAULT_ADAPT_BATCH):
            adaptive.record(i < n_accepted, adapting=True)

    def test_shrinks_when_rejecting(self):
        adaptive = AdaptiveState(scale=1.0)
        self._fill_batch(adaptive, 0)
        assert adaptive.scale < 1.0

    def test_grows_when_accepting(self):
        adaptive = AdaptiveState(scale=1.0)
        self._fill_batch(adaptive, defaults.DEFAULT_ADAPT_BATCH)
        assert adaptive.scale > 1.0

    def test_unchanged_inside_window(self):
        adaptive = AdaptiveState(scale=1.0)
        self._fill_batch(adaptive, int(0.3 * defaults.DEFAULT_ADAPT_BATCH))
        assert adaptive.scale == 1.0

    def test_inverse_scale(self):
        # Larger concentrations give smaller moves
        adaptive = AdaptiveState(scale=100.0, adapt_sign=-1.0)
        self._fill_batch(adaptive, defaults.DEFAULT_ADAPT_BATCH)
        assert adaptive.scale < 100.0
        adaptive = AdaptiveState(scale=100.0, adapt_sign=-1.0)
        self._fill_batch(adaptive, 0)
        assert adaptive.scale > 100.0

    def test_frozen_after_warm_up(self):
        adaptive = AdaptiveState(scale=1.0)
        assert np.isnan(adaptive.acceptance_rate)
        for i in range(200):
            adaptive.record(i % 4 == 0, adapting=False)
        assert adaptive.scale == 1.0
        assert adaptive.n_proposed == 200
        assert adaptive.acceptance_rate == pytest.approx(0.25)


class TestSamplingKernels:
    """Test the Metropolis-type and slice kernels by sampling known targets."""

    def test_metropolis_reaches_target_acceptance(self):
        graph = build("theta ~ dnorm(0, 1)", kernel_overrides={"theta": "metropolis"})
        results = chains.run(
            graph,
            n_chains=1,
            n_iterations=6000,
            burn_in=2000,
            seed=3,
            backend="serial",
        )
        rate = results.acceptance_rates[0]["theta"]
        assert 0.15 <= rate <= 0.5
        draws = results.traces["theta"].ravel()
        assert draws.mean() == pytest.approx(0.0, abs=0.15)
        assert draws.std() == pytest.approx(1.0, rel=0.15)

    def test_metropolis_discrete(self):
        graph = build("k ~ dpois(4)")
        assert graph["k"].kernel.kind == "metropolis"
        results = chains.run(
            graph,
            n_chains=1,
            n_iterations=6000,
            burn_in=1000,
            seed=4,
            backend="serial",
        )
        draws = results.traces["k"].ravel()
        assert np.all(draws == np.rint(draws))
        assert np.all(draws >= 0)
        assert draws.mean() == pytest.approx(4.0, abs=0.4)

    def test_slice(self):
        graph = build("theta ~ dnorm(0, 1)", kernel_overrides={"theta": "slice"})
        assert graph["theta"].kernel.kind == "slice"
        results = chains.run(
            graph,
            n_chains=1,
            n_iterations=5000,
            burn_in=500,
            seed=5,
            backend="serial",
        )
        draws = results.traces["theta"].ravel()
        assert draws.mean() == pytest.approx(0.0, abs=0.1)
        assert draws.std() == pytest.approx(1.0, rel=0.1)
        assert results.acceptance_rates[0] == {}

    def test_metropolis_simplex(self):
        graph = build(
            "p ~ ddirch(alpha[])",
            {"alpha": [2.0, 3.0, 5.0]},
            kernel_overrides={"p": "metropolis_simplex"},
        )
        results = chains.run(
            graph,
            n_chains=1,
            n_iterations=6000,
            burn_in=2000,
            seed=6,
            backend="serial",
        )
        draws = results.traces["p"][0]
        assert draws.shape == (4000, 3)
        assert np.all(np.abs(draws.sum(axis=1) - 1.0) <= 1e-12)
        np.testing.assert_allclose(draws.mean(axis=0), [0.2, 0.3, 0.5], atol=0.05)

    def test_registry(self):
        assert set(KERNELS) == {
            "conjugate_normal",
            "conjugate_gamma",
            "conjugate_beta",
            "conjugate_dirichlet",
            "enumeration",
            "metropolis",
            "metropolis_simplex",
            "slice",
        }
