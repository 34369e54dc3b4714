# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Abstract base class for the nodes of a SciGibbs model graph.

This module defines the foundational abstract class shared by every node in a
compiled model: stochastic parameters, observed data, deterministic
transformations, and data constants. Users typically do not interact with this
module directly; the graph builder creates concrete nodes from the classes in
:py:mod:`scigibbs.model.components.parameters`,
:py:mod:`scigibbs.model.components.transformed_parameters`, and
:py:mod:`scigibbs.model.components.constants`.

Core Abstractions:

    - **Component Hierarchy**: Parent-child relationships between nodes, induced
      by the references inside each node's expressions
    - **Shape Handling**: Static shapes inferred from parameter expressions
    - **Tree Traversal**: Walking the dependency graph toward parents or children

Nodes are built in two steps. Every declared target is first created as a shell
holding its name, so that references between nodes can be resolved regardless of
declaration order. The builder then attaches the resolved expressions with
:py:meth:`AbstractModelComponent.set_expressions`, which records the parent-child
links.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Mapping, Optional, TYPE_CHECKING

import numpy as np

from typeguard import typeguard_ignore

from scigibbs import utils

if TYPE_CHECKING:
    from scigibbs import custom_types
    from scigibbs.model.components.expressions import Expression


class AbstractModelComponent(ABC):
    """Abstract base class for all SciGibbs model graph nodes.

    :param name: Unique name of the node within its graph (e.g., ``theta``,
        ``y[3]``)
    :type name: str
    :param shape: Shape of the node's value. Defaults to scalar ().
    :type shape: tuple[int, ...]

    :cvar KIND: Kind of the node. Subclasses may refine this per instance.

    The class provides core functionality for:

    - Holding the named parameter expressions that define the node
    - Recording parents and children once expressions are attached
    - Shape validation
    - Tree traversal for model analysis
    """

    KIND: "custom_types.NodeKind" = "stochastic"
    """Kind of the node."""

    def __init__(self, name: str, *, shape: tuple[int, ...] = ()):
        self._name = name
        self._shape: tuple[int, ...] = tuple(int(dim) for dim in shape)
        self._expressions: dict[str, Expression] = {}
        self._parents: dict[str, AbstractModelComponent] = {}
        self._children: list[AbstractModelComponent] = []

    def set_expressions(
        self,
        expressions: Mapping[str, "Expression"],
        nodes: Mapping[str, "AbstractModelComponent"],
    ) -> None:
        """Attach the resolved expressions defining this node and link it to the
        nodes they reference.

        :param expressions: Parameter name to expression mapping
        :type expressions: Mapping[str, Expression]
        :param nodes: All nodes in the graph under construction, by name
        :type nodes: Mapping[str, AbstractModelComponent]

        :raises AssertionError: If expressions were already attached
        """
        assert not self._expressions and not self._parents, "Expressions already set"
        self._expressions = dict(expressions)

        # Parents are every node referenced by any expression, in first-reference
        # order
        for expression in self._expressions.values():
            for parent_name in sorted(expression.references()):
                if parent_name not in self._parents:
                    self._parents[parent_name] = nodes[parent_name]

        # Link parent and child
        for parent in self._parents.values():
            parent._record_child(self)  # pylint: disable=protected-access

    def _record_child(self, child: "AbstractModelComponent") -> None:
        """Record a child component in the dependency graph.

        :raises AssertionError: If child is already recorded
        """
        assert child not in self._children, "Child already recorded"
        self._children.append(child)

    def infer_shape(self, shape_of: Callable[[str], tuple[int, ...]]) -> None:
        """Infer the node's shape from its expressions. The base implementation
        keeps the shape given at construction. Called in topological order so that
        the shapes of all parents are already known.
        """

    @typeguard_ignore
    def evaluate_expressions(
        self, lookup: "custom_types.ValueLookup"
    ) -> dict[str, "custom_types.SampleType"]:
        """Evaluate every parameter expression against a value lookup.

        :param lookup: Function mapping node names to current values
        :type lookup: custom_types.ValueLookup

        :returns: Parameter name to value mapping
        :rtype: dict[str, custom_types.SampleType]
        """
        return {
            paramname: expression.evaluate(lookup)
            for paramname, expression in self._expressions.items()
        }

    @abstractmethod
    def draw(
        self, lookup: "custom_types.ValueLookup", rng: np.random.Generator
    ) -> "custom_types.SampleType":
        """Draw a value for this node given the current values of its parents.

        :param lookup: Function mapping node names to current values
        :type lookup: custom_types.ValueLookup
        :param rng: Random number generator to draw with
        :type rng: np.random.Generator

        :returns: A value for the node
        :rtype: custom_types.SampleType
        """

    @abstractmethod
    def __str__(self) -> str:
        """Return the declaration of the node in model-description syntax."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"

    def __contains__(self, key: str) -> bool:
        """Check if the node has a parameter expression with the given name."""
        return key in self._expressions

    def __getitem__(self, key: str) -> "Expression":
        """Access parameter expressions by name."""
        return self._expressions[key]

    @property
    def name(self) -> str:
        """Unique name of the node within its graph."""
        return self._name

    @property
    def base_name(self) -> str:
        """Name of the variable this node belongs to (``b0`` for ``b0[3]``)."""
        return utils.split_element_name(self._name)[0]

    @property
    def element_index(self) -> Optional[tuple[int, ...]]:
        """1-based index of the node within its variable, or None for whole
        variables.
        """
        return utils.split_element_name(self._name)[1]

    @property
    def kind(self) -> "custom_types.NodeKind":
        """Kind of the node."""
        return self.KIND

    @property
    def shape(self) -> tuple[int, ...]:
        """Shape of the node's value."""
        return self._shape

    @property
    def ndim(self) -> int:
        """Number of dimensions of the node's value."""
        return len(self._shape)

    @property
    def expressions(self) -> dict[str, "Expression"]:
        """Parameter name to expression mapping defining the node."""
        return self._expressions.copy()

    @property
    def parents(self) -> list["AbstractModelComponent"]:
        """Nodes referenced by this node's expressions."""
        return list(self._parents.values())

    @property
    def children(self) -> list["AbstractModelComponent"]:
        """Nodes whose expressions reference this node."""
        return self._children.copy()
