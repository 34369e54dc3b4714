"""
Unit tests for compiling model descriptions into graphs
"""

import pickle

import numpy as np
import pytest

from scigibbs import build
from scigibbs.exceptions import (
    CyclicDependencyError,
    DimensionMismatchError,
    ModelSyntaxError,
    UnknownSymbolError,
    UnsupportedDistributionError,
)

from tests.conftest import DIRICHLET_MIXTURE, LINEAR_REGRESSION, NORMAL_NORMAL


class TestTopologicalOrder:
    """Test that every node follows its parents."""

    @pytest.mark.parametrize(
        "description,data",
        [
            (NORMAL_NORMAL, {"x": 3.1}),
            (
                LINEAR_REGRESSION,
                {"N": 3, "x": [1.0, 2.0, 3.0], "y": [1.1, 2.2, 2.9]},
            ),
            (
                DIRICHLET_MIXTURE,
                {"N": 2, "alpha": [1, 1, 1], "mu": [0, 5, 10], "y": [0.2, 9.8]},
            ),
        ],
    )
    def test_parents_precede_children(self, description, data):
        graph = build(description, data)
        position = {name: i for i, name in enumerate(graph.topological_order)}
        assert set(position) == set(graph.nodes)
        for node in graph:
            for parent in node.parents:
                assert position[parent.name] < position[node.name]

    def test_sampling_order_is_topological(self, regression_data):
        graph = build(LINEAR_REGRESSION, regression_data)
        assert set(graph.sampling_order) == {"b0", "b1", "tau"}
        order = list(graph.topological_order)
        indices = [order.index(name) for name in graph.sampling_order]
        assert indices == sorted(indices)

    def test_ties_follow_declaration_order(self):
        graph = build("b ~ dnorm(0, 1)\na ~ dnorm(0, 1)\nc ~ dnorm(0, 1)")
        assert graph.sampling_order == ("b", "a", "c")

    def test_stochastic_cycle(self):
        with pytest.raises(CyclicDependencyError) as excinfo:
            build("a ~ dnorm(b, 1)\nb ~ dnorm(a, 1)")
        assert set(excinfo.value.cycle) == {"a", "b"}

    def test_deterministic_cycle(self):
        with pytest.raises(CyclicDependencyError) as excinfo:
            build("a <- b + 1\nb <- 2 * a\nc ~ dnorm(a, 1)")
        assert {"a", "b"} <= set(excinfo.value.cycle)

    def test_self_reference(self):
        with pytest.raises(CyclicDependencyError):
            build("a ~ dnorm(a, 1)")


class TestBuildErrors:
    """Test the errors raised for malformed models."""

    def test_unknown_symbol(self):
        with pytest.raises(UnknownSymbolError, match="mu0"):
            build("theta ~ dnorm(mu0, 1)")

    def test_unknown_function(self):
        with pytest.raises(UnknownSymbolError, match="frobnicate"):
            build("theta ~ dnorm(frobnicate(1), 1)")

    def test_undefined_element(self):
        with pytest.raises(UnknownSymbolError):
            build(
                """
                for (i in 1:2) { b[i] ~ dnorm(0, 1) }
                y ~ dnorm(b[3], 1)
                """
            )

    def test_unknown_family(self):
        with pytest.raises(UnsupportedDistributionError):
            build("theta ~ dfoo(0, 1)")

    def test_wrong_number_of_arguments(self):
        with pytest.raises(ModelSyntaxError, match="takes 2 arguments"):
            build("theta ~ dnorm(0)")

    def test_duplicate_definition(self):
        with pytest.raises(ModelSyntaxError, match="more than once"):
            build("theta ~ dnorm(0, 1)\ntheta ~ dnorm(1, 1)")

    def test_deterministic_bound_to_data(self):
        with pytest.raises(ModelSyntaxError):
            build("eta <- 2", {"eta": 2.0})

    def test_loop_length_disagrees_with_data(self):
        with pytest.raises(DimensionMismatchError):
            build(
                "for (i in 1:N) { y[i] ~ dnorm(0, 1) }",
                {"N": 4, "y": [1.0, 2.0, 3.0, 4.0, 5.0]},
            )

    def test_covariate_longer_than_loop(self):
        with pytest.raises(DimensionMismatchError, match="'x' has 25 entries"):
            build(
                LINEAR_REGRESSION,
                {"N": 20, "x": np.linspace(0, 1, 25), "y": np.zeros(20)},
            )

    def test_group_index_longer_than_loop(self):
        with pytest.raises(DimensionMismatchError, match="'g' has 5 entries"):
            build(
                """
                for (j in 1:2) { mu[j] ~ dnorm(0, 1) }
                for (i in 1:N) { y[i] ~ dnorm(mu[g[i]], 1) }
                """,
                {"N": 3, "g": [1, 2, 1, 2, 1], "y": [0.1, 0.2, 0.3]},
            )

    def test_data_covered_by_widest_loop(self):
        graph = build(
            """
            for (i in 1:2) { a[i] ~ dnorm(x[i], 1) }
            for (i in 1:4) { b[i] ~ dnorm(x[i], 1) }
            """,
            {"x": [0.0, 1.0, 2.0, 3.0]},
        )
        assert len(graph.parameters) == 6

    def test_declared_range_disagrees_with_parameters(self):
        with pytest.raises(DimensionMismatchError):
            build("p[1:3] ~ ddirch(alpha[])", {"alpha": [1.0, 1.0, 1.0, 1.0]})

    def test_vector_parameter_given_scalar(self):
        with pytest.raises(DimensionMismatchError):
            build("p ~ ddirch(1)")

    def test_data_index_out_of_range(self):
        with pytest.raises(DimensionMismatchError):
            build("theta ~ dnorm(m[4], 1)", {"m": [0.0, 1.0, 2.0]})

    def test_non_numeric_data(self):
        with pytest.raises(TypeError):
            build(NORMAL_NORMAL, {"x": "three"})

    def test_distribution_outside_relation(self):
        with pytest.raises(ModelSyntaxError):
            build("eta <- dnorm(0, 1)")


class TestGraphStructure:
    """Test the compiled graph."""

    def test_node_kinds(self, regression_data):
        graph = build(LINEAR_REGRESSION, regression_data)
        assert [node.name for node in graph.parameters] == list(graph.sampling_order)
        assert len(graph.observables) == 20
        assert len(graph.deterministics) == 20
        assert {node.name for node in graph.constants} == {"N", "x"}

    def test_observed_values(self):
        graph = build(NORMAL_NORMAL, {"x": 3.1})
        assert graph["x"].kind == "observed"
        assert graph["x"].observed_value == pytest.approx(3.1)
        assert graph["theta"].kind == "stochastic"
        assert graph["theta"].observed_value is None

    def test_missing_data_becomes_latent(self):
        graph = build(
            """
            mu ~ dnorm(0, 0.01)
            for (i in 1:3) { y[i] ~ dnorm(mu, 1) }
            """,
            {"y": [1.0, np.nan, 2.0]},
        )
        assert graph.sampling_order == ("mu", "y[2]")
        assert graph["y[1]"].kind == "observed"
        assert graph["y[3]"].kind == "observed"

    def test_partially_observed_vector(self):
        with pytest.raises(UnsupportedDistributionError):
            build("p ~ ddirch(alpha[])", {"alpha": [1.0, 1.0], "p": [0.5, np.nan]})

    def test_variable_layouts(self):
        graph = build(
            "for (i in 1:2) { for (j in 1:3) { b[i, j] ~ dnorm(0, 1) } }"
        )
        layout = graph.variables["b"]
        assert layout.index_shape == (2, 3)
        assert layout.node_names[:4] == ("b[1,1]", "b[1,2]", "b[1,3]", "b[2,1]")

    def test_expand_names(self, regression_data):
        graph = build(LINEAR_REGRESSION, regression_data)
        assert graph.expand_names("b0") == ["b0"]
        assert graph.expand_names(["mu", "b0"])[:2] == ["mu[1]", "mu[2]"]
        assert len(graph.expand_names("mu")) == 20
        with pytest.raises(UnknownSymbolError):
            graph.expand_names("sigma")

    def test_unknown_node_lookup(self):
        graph = build(NORMAL_NORMAL, {"x": 3.1})
        assert "theta" in graph
        assert "sigma" not in graph
        with pytest.raises(UnknownSymbolError):
            graph["sigma"]  # pylint: disable=pointless-statement

    def test_stochastic_children_through_deterministics(self, regression_data):
        graph = build(LINEAR_REGRESSION, regression_data)
        children = graph.stochastic_children("b1")
        assert children == tuple(f"y[{i}]" for i in range(1, 21))
        assert graph.depends_on("mu[1]", "b1")
        assert not graph.depends_on("mu[1]", "tau")

    def test_vector_shapes(self, mixture_data):
        graph = build(DIRICHLET_MIXTURE, mixture_data)
        assert graph["p"].shape == (3,)
        assert graph["z[1]"].shape == ()

    def test_kernels_cached(self, regression_data):
        graph = build(LINEAR_REGRESSION, regression_data)
        for name in graph.sampling_order:
            assert graph[name].kernel is not None

    def test_graph_pickles(self, regression_data):
        graph = build(LINEAR_REGRESSION, regression_data)
        restored = pickle.loads(pickle.dumps(graph))
        assert restored.topological_order == graph.topological_order
        assert restored["b0"].kernel.kind == graph["b0"].kernel.kind

    def test_str_lists_relations(self):
        graph = build(NORMAL_NORMAL, {"x": 3.1})
        text = str(graph)
        assert text.splitlines()[0].startswith("theta ~ dnorm(")
        assert text.splitlines()[1].startswith("x ~ dnorm(theta")
