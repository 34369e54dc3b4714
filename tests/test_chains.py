"""
Unit tests for the chain orchestrator
"""

import threading
import time

import numpy as np
import pytest

from scigibbs import build
from scigibbs.exceptions import (
    ChainFailureWarning,
    DimensionMismatchError,
    InvalidParameterError,
    SamplingDivergedError,
    UnknownSymbolError,
)
from scigibbs.model.sampling import chains

from tests.conftest import DIRICHLET_MIXTURE, LINEAR_REGRESSION, NORMAL_NORMAL

# The precision of y drops to zero once theta reaches 50, which only a chain
# started there can do
FRAGILE = """
theta ~ dnorm(0, 1)
y ~ dnorm(0, 1 - step(theta - 50))
"""


class CountdownEvent:
    """Event that reports itself set after a fixed number of checks."""

    def __init__(self, n_checks):
        self.remaining = n_checks

    def is_set(self):
        self.remaining -= 1
        return self.remaining < 0

    def set(self):
        self.remaining = 0


@pytest.fixture
def regression_graph(regression_data):
    return build(LINEAR_REGRESSION, regression_data)


class TestChainState:
    """Test value lookups and the deterministic cache."""

    @pytest.fixture
    def state(self, regression_graph):
        state = chains.ChainState(regression_graph, np.random.default_rng(0))
        for name, value in {"b0": 1.0, "b1": 2.0, "tau": 1.0}.items():
            state.set_value(name, value)
        return state

    @pytest.fixture
    def evaluations(self, regression_graph, monkeypatch):
        """Count evaluations of ``mu[1]``."""
        node = regression_graph["mu[1]"]
        calls = []
        evaluate = node.value

        def counting(lookup):
            calls.append(lookup)
            return evaluate(lookup)

        monkeypatch.setattr(node, "value", counting)
        return calls

    def test_deterministic_is_cached(self, state, evaluations, regression_data):
        expected = 1.0 + 2.0 * regression_data["x"][0]
        assert state.value("mu[1]") == pytest.approx(expected)
        assert state.value("mu[1]") == pytest.approx(expected)
        assert len(evaluations) == 1

    def test_update_invalidates_cache(self, state, evaluations):
        state.value("mu[1]")
        state.set_value("b1", 0.0)
        assert state.value("mu[1]") == pytest.approx(1.0)
        assert len(evaluations) == 2

    def test_overrides_bypass_cache(self, state, evaluations, regression_data):
        expected = 1.0 + 2.0 * regression_data["x"][0]
        assert state.value("mu[1]") == pytest.approx(expected)
        assert state.value("mu[1]", {"b1": 0.0}) == pytest.approx(1.0)
        assert state.lookup({"b0": 3.0})("mu[1]") == pytest.approx(expected + 2.0)
        assert state.value("mu[1]") == pytest.approx(expected)
        assert len(evaluations) == 3

    def test_override_lookups_are_not_stored(self, state, evaluations):
        state.value("mu[1]", {"b1": 0.0})
        assert state.value("mu[1]") != pytest.approx(1.0)
        assert len(evaluations) == 2

    def test_fixed_values(self, state, regression_data):
        assert state.value("y[1]") == pytest.approx(regression_data["y"][0])
        assert state.value("N") == 20
        assert state.value("tau", {"tau": 4.0}) == 4.0


class TestReproducibility:
    """Test that seeded runs are bit-identical."""

    def test_same_seed_same_draws(self, regression_graph):
        first = chains.run(
            regression_graph, 2, 300, 100, seed=11, backend="serial"
        ).traces
        second = chains.run(
            regression_graph, 2, 300, 100, seed=11, backend="serial"
        ).traces
        assert first.keys() == second.keys()
        for name in first:
            assert np.array_equal(first[name], second[name])

    def test_different_seeds_differ(self, regression_graph):
        first = chains.run(regression_graph, 2, 300, 100, seed=11, backend="serial")
        second = chains.run(regression_graph, 2, 300, 100, seed=12, backend="serial")
        assert not np.array_equal(first.traces["b0"], second.traces["b0"])

    def test_chains_are_independent(self, regression_graph):
        traces = chains.run(
            regression_graph, 3, 300, 100, seed=11, backend="serial"
        ).traces["b1"]
        assert not np.array_equal(traces[0], traces[1])
        assert not np.array_equal(traces[1], traces[2])

    @pytest.mark.parametrize("backend", ["thread", "process"])
    def test_backends_agree(self, regression_graph, backend):
        serial = chains.run(regression_graph, 3, 200, 50, seed=5, backend="serial")
        parallel = chains.run(regression_graph, 3, 200, 50, seed=5, backend=backend)
        assert parallel.chain_ids == [0, 1, 2]
        for name, values in serial.traces.items():
            assert np.array_equal(values, parallel.traces[name])

    def test_worker_count_does_not_matter(self, regression_graph):
        one = chains.run(
            regression_graph, 3, 200, 50, seed=5, backend="thread", n_workers=1
        )
        many = chains.run(regression_graph, 3, 200, 50, seed=5, backend="thread")
        assert np.array_equal(one.traces["tau"], many.traces["tau"])

    def test_global_seed(self, regression_graph):
        import scigibbs as sg  # pylint: disable=import-outside-toplevel

        sg.manual_seed(3)
        first = chains.run(regression_graph, 1, 100, 10, backend="serial")
        sg.manual_seed(3)
        second = chains.run(regression_graph, 1, 100, 10, backend="serial")
        assert np.array_equal(first.traces["b0"], second.traces["b0"])


class TestRetainedDraws:
    """Test burn-in, thinning, and monitors."""

    def test_burn_in_and_thinning(self, regression_graph):
        results = chains.run(regression_graph, 2, 110, 10, 5, seed=0, backend="serial")
        assert results.n_draws == 20
        assert results.traces["b0"].shape == (2, 20)

    def test_default_monitors(self, regression_graph):
        results = chains.run(regression_graph, 1, 20, 10, seed=0, backend="serial")
        assert set(results.var_names) == {"b0", "b1", "tau", "mu"}
        assert results.traces["mu"].shape == (1, 10, 20)

    def test_monitors_by_variable_and_element(self, regression_graph):
        results = chains.run(
            regression_graph,
            1,
            20,
            10,
            seed=0,
            monitors=["b1", "mu[2]"],
            backend="serial",
        )
        assert set(results.var_names) == {"b1", "mu[2]"}

    def test_deterministic_matches_parents(self, regression_graph, regression_data):
        results = chains.run(regression_graph, 1, 50, 10, seed=0, backend="serial")
        traces = results.traces
        expected = (
            traces["b0"][..., None] + traces["b1"][..., None] * regression_data["x"]
        )
        np.testing.assert_allclose(traces["mu"], expected)

    @pytest.mark.parametrize("prior", ["dbeta(2, 2)", "dunif(0, 1)"])
    def test_constraint_holds_exactly(self, prior):
        graph = build(
            f"""
            p1 ~ {prior}
            p2 <- 1 - p1
            for (i in 1:4) {{ y[i] ~ dbern(p1) }}
            """,
            {"y": [1, 1, 0, 1]},
        )
        results = chains.run(graph, 2, 2000, 500, seed=8, backend="serial")
        traces = results.traces
        assert np.all(traces["p1"] + traces["p2"] == 1.0)

    def test_unknown_monitor(self, regression_graph):
        with pytest.raises(UnknownSymbolError):
            chains.run(regression_graph, 1, 20, 10, seed=0, monitors=["sigma"])

    def test_missing_data_is_imputed(self):
        graph = build(
            """
            mu ~ dnorm(0, 0.01)
            for (i in 1:4) { y[i] ~ dnorm(mu, 1) }
            """,
            {"y": [1.0, 2.0, np.nan, 3.0]},
        )
        results = chains.run(graph, 1, 500, 100, seed=2, backend="serial")
        assert set(results.var_names) == {"mu", "y[3]"}
        assert results.traces["y[3]"].shape == (1, 400)


class TestInitialValues:
    """Test explicit initial values."""

    def test_shared_inits(self, regression_graph):
        results = chains.run(
            regression_graph,
            2,
            2,
            1,
            init_policy={"b0": 0.0, "b1": 0.0, "tau": 1.0},
            seed=0,
            backend="serial",
        )
        assert results.n_draws == 1

    def test_init_for_observed_node(self, regression_graph):
        with pytest.raises(UnknownSymbolError):
            chains.run(
                regression_graph, 1, 20, 10, init_policy={"y[1]": 0.0}, seed=0
            )

    def test_init_for_unknown_node(self, regression_graph):
        with pytest.raises(UnknownSymbolError):
            chains.run(
                regression_graph, 1, 20, 10, init_policy={"sigma": 1.0}, seed=0
            )

    def test_init_outside_support(self, regression_graph):
        with pytest.raises(InvalidParameterError):
            chains.run(
                regression_graph,
                1,
                20,
                10,
                init_policy={"tau": -1.0},
                seed=0,
                backend="serial",
            )

    def test_init_with_wrong_shape(self, mixture_data):
        graph = build(DIRICHLET_MIXTURE, mixture_data)
        with pytest.raises(DimensionMismatchError):
            chains.run(
                graph,
                1,
                20,
                10,
                init_policy={"p": [0.5, 0.5]},
                seed=0,
                backend="serial",
            )

    def test_expand_variable_inits(self):
        graph = build(
            "for (i in 1:3) { b[i] ~ dnorm(0, 1) }\ny ~ dnorm(b[2], 1)",
            {"y": 0.5},
        )
        expanded = chains.expand_inits(graph, {"b": [1.0, 2.0, 3.0]})
        assert expanded == {"b[1]": 1.0, "b[2]": 2.0, "b[3]": 3.0}

    def test_per_chain_inits_length(self, regression_graph):
        with pytest.raises(ValueError):
            chains.run(
                regression_graph, 2, 20, 10, init_policy=[{"b0": 0.0}], seed=0
            )


class TestRunConfig:
    """Test validation of run configurations."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"n_chains": 0},
            {"n_iterations": 0},
            {"n_iterations": 10, "burn_in": 10},
            {"burn_in": -1},
            {"thin": 0},
            {"backend": "gpu"},
            {"n_workers": 0},
            {"inits": "random"},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            chains.RunConfig(**kwargs)

    def test_auto_backend(self):
        assert chains.RunConfig(n_chains=1).resolved_backend == "serial"
        assert chains.RunConfig(n_chains=2).resolved_backend == "process"
        assert chains.RunConfig(n_chains=2, backend="thread").resolved_backend == (
            "thread"
        )

    def test_n_retained(self):
        config = chains.RunConfig(n_iterations=1000, burn_in=100, thin=3)
        assert config.n_retained == 300

    def test_chain_inits(self):
        inits = {"b0": 1.0}
        assert chains.RunConfig(n_chains=2, inits=inits).chain_inits == [inits, inits]
        assert chains.RunConfig(n_chains=2, inits="prior").chain_inits == [None, None]


class TestCancellation:
    """Test cooperative cancellation between sweeps."""

    def test_run_chain_stops_between_sweeps(self, regression_graph):
        result = chains.run_chain(
            regression_graph,
            chain=0,
            rng=np.random.default_rng(0),
            inits=None,
            n_iterations=100,
            burn_in=10,
            thin=1,
            monitors=["b0", "tau"],
            cancel_event=CountdownEvent(30),
        )
        assert result.cancelled
        assert result.completed == 30
        assert result.n_retained == 20
        assert result.error is None

    def test_partial_traces_truncated_to_shortest(self, regression_graph):
        orchestrator = chains.ChainOrchestrator(
            regression_graph,
            chains.RunConfig(n_chains=2, n_iterations=100, burn_in=10, seed=0),
        )
        partial = [
            chains.run_chain(
                regression_graph,
                chain,
                rng,
                None,
                100,
                10,
                1,
                orchestrator.monitors,
                CountdownEvent(n_checks),
            )
            for chain, rng, n_checks in zip(
                (0, 1), [np.random.default_rng(i) for i in range(2)], (40, 60)
            )
        ]
        results = orchestrator._collect(partial)  # pylint: disable=protected-access
        assert results.cancelled
        assert results.n_draws == 30
        assert results.traces["b0"].shape == (2, 30)

    def test_cancel_from_another_thread(self, regression_graph):
        orchestrator = chains.ChainOrchestrator(
            regression_graph,
            chains.RunConfig(
                n_chains=2, n_iterations=10**7, burn_in=0, seed=0, backend="thread"
            ),
        )
        outcome = {}
        runner = threading.Thread(
            target=lambda: outcome.setdefault("results", orchestrator.run())
        )
        runner.start()
        time.sleep(1.0)
        orchestrator.cancel()
        runner.join(timeout=60)

        assert not runner.is_alive()
        results = outcome["results"]
        assert orchestrator.cancelled
        assert results.cancelled
        assert results.n_draws < 10**7


class TestFailures:
    """Test per-chain failures and fatal divergence."""

    def test_failing_chain_is_reported(self):
        graph = build(FRAGILE, {"y": 0.3})
        assert graph["theta"].kernel.kind == "metropolis"

        with pytest.warns(ChainFailureWarning, match="Chain 0"):
            results = chains.run(
                graph,
                3,
                200,
                50,
                init_policy=[{"theta": 100.0}, {"theta": 0.0}, {"theta": 0.0}],
                seed=1,
                backend="serial",
            )

        assert results.chain_ids == [1, 2]
        assert list(results.failed_chains) == [0]
        error = results.failed_chains[0]
        assert isinstance(error, InvalidParameterError)
        assert error.node == "y"
        assert error.parameter == "tau"
        assert results.traces["theta"].shape == (2, 150)

    def test_every_chain_failing(self):
        graph = build(FRAGILE, {"y": 0.3})
        with pytest.raises(InvalidParameterError):
            chains.run(
                graph,
                2,
                200,
                50,
                init_policy={"theta": 100.0},
                seed=1,
                backend="serial",
            )

    @pytest.mark.parametrize("backend", ["serial", "thread", "process"])
    def test_divergence_is_fatal(self, backend):
        graph = build(NORMAL_NORMAL, {"x": np.inf})
        with pytest.raises(SamplingDivergedError) as excinfo:
            chains.run(graph, 2, 100, 10, seed=0, backend=backend)
        error = excinfo.value
        assert error.node == "theta"
        assert error.iteration == 1
        assert error.chain in (0, 1)
        assert "iteration 1" in str(error)
