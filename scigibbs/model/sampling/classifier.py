# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Selection of an update kernel for each latent stochastic node.

:py:func:`classify` inspects a node's family and the structure of its stochastic
children and returns the most efficient applicable kernel. Rules are tried in
order and the first match wins:

    1. :py:class:`~scigibbs.model.sampling.kernels.ConjugateNormal`
    2. :py:class:`~scigibbs.model.sampling.kernels.ConjugateGamma`
    3. :py:class:`~scigibbs.model.sampling.kernels.ConjugateBeta`
    4. :py:class:`~scigibbs.model.sampling.kernels.ConjugateDirichlet`
    5. :py:class:`~scigibbs.model.sampling.kernels.FiniteEnumeration`
    6. :py:class:`~scigibbs.model.sampling.kernels.MetropolisSimplex`
    7. :py:class:`~scigibbs.model.sampling.kernels.MetropolisAdaptive`

The slice sampler is never chosen automatically; it is only used when requested
through an override.
"""

from __future__ import annotations

from typing import Callable, Optional, TYPE_CHECKING

from scigibbs.exceptions import UnsupportedDistributionError
from scigibbs.model.components.expressions import Literal, NodeRef
from scigibbs.model.sampling import kernels

if TYPE_CHECKING:
    from scigibbs import custom_types
    from scigibbs.model.components.parameters import Parameter
    from scigibbs.model.graph import Graph


def _is_node(expression, node: "Parameter") -> bool:
    return isinstance(expression, NodeRef) and expression.name == node.name


def _children(node: "Parameter", graph: "Graph") -> list["Parameter"]:
    return [graph[name] for name in graph.stochastic_children(node.name)]


def _only_in(child, paramname: str, node: "Parameter", graph: "Graph") -> bool:
    """Whether ``node`` enters none of the child's parameters except ``paramname``."""
    return not any(
        expression.depends_on(node.name, graph)
        for name, expression in child.expressions.items()
        if name != paramname
    )


def conjugate_normal_applies(node: "Parameter", graph: "Graph") -> bool:
    """Normal prior; every child Normal with a mean linear in the node and a
    precision independent of it.
    """
    if node.FAMILY != "dnorm":
        return False
    return all(
        child.FAMILY == "dnorm"
        and child["mu"].linear_in(node.name, graph)
        and _only_in(child, "mu", node, graph)
        for child in _children(node, graph)
    )


def conjugate_gamma_applies(node: "Parameter", graph: "Graph") -> bool:
    """Gamma prior; the node enters every child only as ``k * node`` in a precision
    or rate.
    """
    if node.FAMILY != "dgamma":
        return False
    for child in _children(node, graph):
        paramname = kernels.ConjugateGamma.CHILD_PARAMETERS.get(child.FAMILY)
        if paramname is None:
            return False
        if not (
            child[paramname].proportional_in(node.name, graph)
            and _only_in(child, paramname, node, graph)
        ):
            return False
    return True


def conjugate_beta_applies(node: "Parameter", graph: "Graph") -> bool:
    """Beta or standard-Uniform prior; every child Bernoulli or Binomial with the
    node itself as its probability.
    """
    if node.FAMILY == "dunif":
        bounds = (node["lower"], node["upper"])
        if not (
            all(isinstance(bound, Literal) for bound in bounds)
            and bounds[0].value == 0
            and bounds[1].value == 1
        ):
            return False
    elif node.FAMILY != "dbeta":
        return False
    return all(
        child.FAMILY in {"dbern", "dbin"}
        and _is_node(child["p"], node)
        and _only_in(child, "p", node, graph)
        for child in _children(node, graph)
    )


def conjugate_dirichlet_applies(node: "Parameter", graph: "Graph") -> bool:
    """Dirichlet prior; every child Categorical or Multinomial with the node itself
    as its weights.
    """
    if node.FAMILY != "ddirch":
        return False
    return all(
        child.FAMILY in {"dcat", "dmulti"}
        and _is_node(child["p"], node)
        and _only_in(child, "p", node, graph)
        for child in _children(node, graph)
    )


def enumeration_applies(node: "Parameter", graph: "Graph") -> bool:
    """Discrete families with finite support."""
    return node.FAMILY in {"dbern", "dcat", "dbin"}


def metropolis_simplex_applies(node: "Parameter", graph: "Graph") -> bool:
    """Simplex-valued nodes."""
    return node.IS_SIMPLEX


def metropolis_applies(node: "Parameter", graph: "Graph") -> bool:
    """Any scalar node."""
    return not node.IS_MULTIVARIATE


def slice_applies(node: "Parameter", graph: "Graph") -> bool:
    """Scalar continuous nodes."""
    return not (node.IS_MULTIVARIATE or node.IS_DISCRETE)


RULES: tuple[tuple[str, Callable[["Parameter", "Graph"], bool]], ...] = (
    ("conjugate_normal", conjugate_normal_applies),
    ("conjugate_gamma", conjugate_gamma_applies),
    ("conjugate_beta", conjugate_beta_applies),
    ("conjugate_dirichlet", conjugate_dirichlet_applies),
    ("enumeration", enumeration_applies),
    ("metropolis_simplex", metropolis_simplex_applies),
    ("metropolis", metropolis_applies),
)
"""Automatic selection rules, in order of preference."""

_CONDITIONS: dict[str, Callable[["Parameter", "Graph"], bool]] = {
    **dict(RULES),
    "slice": slice_applies,
}


def classify(
    node: "Parameter",
    graph: "Graph",
    override: Optional["custom_types.KernelName"] = None,
) -> kernels.Kernel:
    """Choose the update kernel for a latent stochastic node.

    :param node: The node to classify
    :type node: Parameter
    :param graph: The graph the node belongs to. Stochastic children must already
        be linked.
    :type graph: Graph
    :param override: Name of a kernel to force instead of the automatic choice.
        Defaults to None.
    :type override: Optional[custom_types.KernelName]

    :returns: A kernel instance for the node
    :rtype: kernels.Kernel

    :raises UnsupportedDistributionError: If no kernel can update the node, if
        ``override`` names no kernel, or if the forced kernel's conditions do not
        hold for the node
    """
    if node.kind != "stochastic":
        raise ValueError(
            f"Only latent stochastic nodes are sampled; '{node.name}' is {node.kind}"
        )

    if override is not None:
        if override not in _CONDITIONS:
            raise UnsupportedDistributionError(
                f"Unknown kernel '{override}' requested for '{node.name}'. Available "
                f"kernels are: {', '.join(sorted(_CONDITIONS))}"
            )
        if not _CONDITIONS[override](node, graph):
            raise UnsupportedDistributionError(
                f"Kernel '{override}' cannot update '{node.name}' ({node.FAMILY})"
            )
        return kernels.KERNELS[override]()

    for name, applies in RULES:
        if applies(node, graph):
            return kernels.KERNELS[name]()

    raise UnsupportedDistributionError(
        f"No sampler is available for latent node '{node.name}' ({node.FAMILY})"
    )
