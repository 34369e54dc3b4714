# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Typed expression trees used for node parameters and deterministic nodes.

Every right-hand side in a model description (the arguments of a distribution
and the body of a deterministic relation) is resolved by the graph builder into a
tree of the classes defined here:

    - :py:class:`Literal`: a numeric constant or a loop variable's value
    - :py:class:`DataRef`: a value taken from the data bindings
    - :py:class:`NodeRef`: a reference to another node in the graph
    - :py:class:`Vector`: an ordered collection of expressions (e.g., ``b0[]``)
    - :py:class:`Index`: a lookup into an array-valued expression whose index is
      only known at sampling time (e.g., ``mu[z[i]]``)
    - :py:class:`BinaryOp` and :py:class:`UnaryOp`: arithmetic
    - :py:class:`Call`: application of an :py:mod:`scigibbs.operations` function

Expressions are immutable. They are evaluated against a lookup function that maps
node names to current values, which lets the same tree be evaluated against any
chain's state and against temporary candidate values.

Besides evaluation, expressions answer the structural questions asked by the node
classifier: which nodes they depend on, and whether they are linear in (or
proportional to) a given node.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Literal as LiteralType, Optional, TYPE_CHECKING

import numpy as np

from scigibbs import operations
from scigibbs.exceptions import InvalidParameterError

if TYPE_CHECKING:
    from scigibbs import custom_types
    from scigibbs.model.graph import Graph

_BINARY_FUNCS: dict[str, Callable] = {
    "+": np.add,
    "-": np.subtract,
    "*": np.multiply,
    "/": np.true_divide,
    "^": np.power,
}

# Binary operators are printed with the same precedence as they are parsed
_PRECEDENCE: dict[str, int] = {"+": 1, "-": 1, "*": 2, "/": 2, "^": 4}


def _scalarize(value):
    """Return Python/NumPy scalars for 0-dimensional arrays."""
    if isinstance(value, np.ndarray) and value.ndim == 0:
        return value.item()
    return value


class Expression(ABC):
    """Abstract base class of all expression tree nodes."""

    @abstractmethod
    def evaluate(self, lookup: "custom_types.ValueLookup") -> "custom_types.SampleType":
        """Evaluate the expression.

        :param lookup: Function mapping a node name to its current value
        :type lookup: custom_types.ValueLookup

        :returns: The value of the expression
        :rtype: custom_types.SampleType
        """

    @abstractmethod
    def references(self) -> frozenset[str]:
        """Names of the graph nodes directly referenced by this expression."""

    @abstractmethod
    def shape(
        self, shape_of: Callable[[str], tuple[int, ...]]
    ) -> tuple[int, ...]:
        """Static shape of the expression's value.

        :param shape_of: Function mapping a node name to the node's shape
        :type shape_of: Callable[[str], tuple[int, ...]]
        """

    @abstractmethod
    def linear_in(self, target: str, graph: "Graph") -> bool:
        """Whether the expression is an affine function of node ``target``.

        Deterministic nodes are looked through, so ``mu[i] <- b0 + b1 * x[i]`` is
        linear in ``b0`` and in ``b1``. Expressions that do not depend on
        ``target`` at all are trivially linear.
        """

    def depends_on(self, target: str, graph: "Graph") -> bool:
        """Whether the value of the expression changes with node ``target``,
        looking through deterministic nodes.
        """
        return any(
            name == target or graph.depends_on(name, target)
            for name in self.references()
        )

    def proportional_in(self, target: str, graph: "Graph") -> bool:
        """Whether the expression is of the form ``k * target`` with ``k``
        independent of ``target``. Used to detect conjugate Gamma updates.
        """
        return False

    @abstractmethod
    def __str__(self) -> str: ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self})"


class Literal(Expression):
    """A numeric constant."""

    def __init__(self, value: "custom_types.SampleType"):
        value = np.asarray(value)
        self.value = value.item() if value.ndim == 0 else value

    def evaluate(self, lookup):
        return self.value

    def references(self) -> frozenset[str]:
        return frozenset()

    def shape(self, shape_of):
        return tuple(int(dim) for dim in np.shape(self.value))

    def linear_in(self, target, graph):
        return True

    def __str__(self) -> str:
        if np.ndim(self.value) == 0:
            return f"{self.value:g}" if isinstance(self.value, float) else str(
                self.value
            )
        return np.array2string(np.asarray(self.value), separator=", ")


class DataRef(Literal):
    """A value taken from the data bindings.

    :param node_name: Name of the data node the value comes from
    :type node_name: str
    :param value: The (possibly indexed) data value
    :type value: custom_types.SampleType
    :param label: Text used when printing. Defaults to ``node_name``.
    :type label: Optional[str]
    """

    def __init__(
        self,
        node_name: str,
        value: "custom_types.SampleType",
        label: Optional[str] = None,
    ):
        super().__init__(value)
        self.node_name = node_name
        self.label = label or node_name

    def references(self) -> frozenset[str]:
        return frozenset((self.node_name,))

    def __str__(self) -> str:
        return self.label


class NodeRef(Expression):
    """A reference to another node in the graph by name."""

    def __init__(self, name: str):
        self.name = name

    def evaluate(self, lookup):
        return lookup(self.name)

    def references(self) -> frozenset[str]:
        return frozenset((self.name,))

    def shape(self, shape_of):
        return shape_of(self.name)

    def linear_in(self, target, graph):
        if self.name == target:
            return True
        node = graph[self.name]
        if node.kind == "deterministic":
            return node.expression.linear_in(target, graph)
        return True

    def proportional_in(self, target, graph):
        if self.name == target:
            return True
        node = graph[self.name]
        if node.kind == "deterministic":
            return node.expression.proportional_in(target, graph)
        return False

    def __str__(self) -> str:
        return self.name


class Vector(Expression):
    """An ordered collection of expressions evaluated into a 1-D array. Produced
    for whole-array references such as ``b0[]`` or ranges such as ``b0[2:4]``.
    """

    def __init__(self, items: tuple[Expression, ...], label: Optional[str] = None):
        self.items = tuple(items)
        self.label = label

    def evaluate(self, lookup):
        return np.asarray([item.evaluate(lookup) for item in self.items])

    def references(self) -> frozenset[str]:
        return frozenset().union(*(item.references() for item in self.items))

    def shape(self, shape_of):
        inner = {item.shape(shape_of) for item in self.items}
        if len(inner) > 1:
            raise ValueError(f"Elements of {self} have inconsistent shapes")
        return (len(self.items),) + (inner.pop() if inner else ())

    def linear_in(self, target, graph):
        return all(item.linear_in(target, graph) for item in self.items)

    def __str__(self) -> str:
        if self.label is not None:
            return self.label
        return "c(" + ", ".join(str(item) for item in self.items) + ")"


class Index(Expression):
    """Lookup into an array-valued expression with indices only known at sampling
    time (e.g., ``mu[z[i]]``). Indices are 1-based.
    """

    def __init__(self, base: Expression, indices: tuple[Expression, ...]):
        self.base = base
        self.indices = tuple(indices)

    def evaluate(self, lookup):
        base = np.asarray(self.base.evaluate(lookup))
        position = []
        for dim, index in enumerate(self.indices):
            raw = index.evaluate(lookup)
            value = int(np.rint(raw))
            if value != raw or not 1 <= value <= base.shape[dim]:
                raise InvalidParameterError(
                    f"Index {raw} into '{self.base}' is outside 1..{base.shape[dim]}",
                    parameter=str(index),
                    value=raw,
                )
            position.append(value - 1)
        return _scalarize(base[tuple(position)])

    def references(self) -> frozenset[str]:
        return self.base.references().union(
            *(index.references() for index in self.indices)
        )

    def shape(self, shape_of):
        return self.base.shape(shape_of)[len(self.indices) :]

    def linear_in(self, target, graph):
        if any(index.depends_on(target, graph) for index in self.indices):
            return False
        return self.base.linear_in(target, graph)

    def __str__(self) -> str:
        return f"{self.base}[{', '.join(str(index) for index in self.indices)}]"


class BinaryOp(Expression):
    """Arithmetic between two expressions: ``+``, ``-``, ``*``, ``/`` or ``^``."""

    def __init__(
        self,
        operator: LiteralType["+", "-", "*", "/", "^"],
        left: Expression,
        right: Expression,
    ):
        self.operator = operator
        self.left = left
        self.right = right

    def evaluate(self, lookup):
        left = self.left.evaluate(lookup)
        right = self.right.evaluate(lookup)
        if self.operator == "^":
            left = np.asarray(left, dtype=float)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            return _scalarize(_BINARY_FUNCS[self.operator](left, right))

    def references(self) -> frozenset[str]:
        return self.left.references() | self.right.references()

    def shape(self, shape_of):
        return np.broadcast_shapes(
            self.left.shape(shape_of), self.right.shape(shape_of)
        )

    def linear_in(self, target, graph):
        left_dep = self.left.depends_on(target, graph)
        right_dep = self.right.depends_on(target, graph)
        if not (left_dep or right_dep):
            return True
        if self.operator in {"+", "-"}:
            return self.left.linear_in(target, graph) and self.right.linear_in(
                target, graph
            )
        if self.operator == "*":
            if left_dep and right_dep:
                return False
            return self.left.linear_in(target, graph) and self.right.linear_in(
                target, graph
            )
        if self.operator == "/":
            return not right_dep and self.left.linear_in(target, graph)
        return False

    def proportional_in(self, target, graph):
        if self.operator == "*":
            if not self.right.depends_on(target, graph):
                return self.left.proportional_in(target, graph)
            if not self.left.depends_on(target, graph):
                return self.right.proportional_in(target, graph)
            return False
        if self.operator == "/":
            return not self.right.depends_on(
                target, graph
            ) and self.left.proportional_in(target, graph)
        return False

    def _wrap(self, child: Expression, right_side: bool) -> str:
        text = str(child)
        if isinstance(child, BinaryOp):
            mine = _PRECEDENCE[self.operator]
            theirs = _PRECEDENCE[child.operator]
            if theirs < mine or (right_side and theirs == mine):
                return f"({text})"
        return text

    def __str__(self) -> str:
        return (
            f"{self._wrap(self.left, False)} {self.operator} "
            f"{self._wrap(self.right, True)}"
        )


class UnaryOp(Expression):
    """Negation of an expression."""

    def __init__(self, operand: Expression):
        self.operand = operand

    def evaluate(self, lookup):
        return _scalarize(np.negative(self.operand.evaluate(lookup)))

    def references(self) -> frozenset[str]:
        return self.operand.references()

    def shape(self, shape_of):
        return self.operand.shape(shape_of)

    def linear_in(self, target, graph):
        return self.operand.linear_in(target, graph)

    def __str__(self) -> str:
        if isinstance(self.operand, BinaryOp):
            return f"-({self.operand})"
        return f"-{self.operand}"


class Call(Expression):
    """Application of a registered :py:class:`~scigibbs.operations.Operation`.

    Only the operation's name is stored so that expression trees stay picklable.
    """

    def __init__(self, function: str, args: tuple[Expression, ...]):
        self.function = function
        self.args = tuple(args)

    @property
    def operation(self) -> operations.Operation:
        """The operation applied by this call."""
        return operations.get_operation(self.function)

    def evaluate(self, lookup):
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            return self.operation(*(arg.evaluate(lookup) for arg in self.args))

    def references(self) -> frozenset[str]:
        return frozenset().union(*(arg.references() for arg in self.args))

    def shape(self, shape_of):
        return self.operation.output_shape(*(arg.shape(shape_of) for arg in self.args))

    def linear_in(self, target, graph):
        dependent = [arg.depends_on(target, graph) for arg in self.args]
        if not any(dependent):
            return True
        linearity = self.operation.linearity
        if linearity == "all":
            return all(arg.linear_in(target, graph) for arg in self.args)
        if linearity == "product":
            return sum(dependent) == 1 and all(
                arg.linear_in(target, graph) for arg in self.args
            )
        return False

    def __str__(self) -> str:
        return f"{self.function}({', '.join(str(arg) for arg in self.args)})"
