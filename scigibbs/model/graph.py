# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Compilation of model descriptions into immutable dependency graphs.

This module holds the Model Graph Builder. :py:func:`build` parses a model
description, expands its loops against the data bindings, resolves every name to a
node, a data binding, or a loop variable, links parents and children, orders the
nodes topologically, checks shapes, and finally caches an update kernel on every
latent stochastic node.

The resulting :py:class:`Graph` is never modified after construction. It is shared
read-only by every chain and is picklable so that chains can run in worker
processes. Any failure during construction raises a subclass of
:py:class:`~scigibbs.exceptions.GraphBuildError`; no partial graph is returned.

Example:
    >>> graph = build(
    ...     '''
    ...     model {
    ...       theta ~ dnorm(2.3, 1 / 0.5^2)
    ...       x ~ dnorm(theta, 1 / 0.8^2)
    ...     }
    ...     ''',
    ...     {"x": 3.1},
    ... )
    >>> graph.sampling_order
    ('theta',)
"""

from __future__ import annotations

import itertools

from typing import Iterator, NamedTuple, Optional, TYPE_CHECKING, Union

import numpy as np

from typeguard import typeguard_ignore

from scigibbs import operations, utils
from scigibbs.exceptions import (
    CyclicDependencyError,
    DimensionMismatchError,
    ModelSyntaxError,
    UnknownSymbolError,
    UnsupportedDistributionError,
)
from scigibbs.model.components import expressions
from scigibbs.model.components.abstract_model_component import AbstractModelComponent
from scigibbs.model.components.constants import Constant
from scigibbs.model.components.parameters import FAMILIES, Parameter, get_family
from scigibbs.model.components.transformed_parameters import Deterministic
from scigibbs.model.language import parser
from scigibbs.model.sampling import classifier

if TYPE_CHECKING:
    from scigibbs import custom_types


class VariableLayout(NamedTuple):
    """How the nodes of one variable are arranged.

    :ivar name: Base name of the variable
    :ivar node_names: Names of the variable's nodes in C order
    :ivar index_shape: Shape of the element grid for array variables whose every
        element is declared, or None for whole-variable nodes and incomplete grids
    """

    name: str
    node_names: tuple[str, ...]
    index_shape: Optional[tuple[int, ...]]


class Graph:
    """An immutable, topologically ordered model graph.

    Instances are created by :py:func:`build`; they should not be instantiated
    directly.

    :param nodes: Every node in the graph, keyed by name
    :type nodes: dict[str, AbstractModelComponent]
    :param topological_order: Node names ordered so that parents precede children
    :type topological_order: tuple[str, ...]
    :param variables: Layout of every declared variable, keyed by base name
    :type variables: dict[str, VariableLayout]
    :param description: The model description the graph was compiled from
    :type description: str
    """

    def __init__(
        self,
        nodes: dict[str, AbstractModelComponent],
        topological_order: tuple[str, ...],
        variables: dict[str, VariableLayout],
        description: str = "",
    ):
        self._nodes = dict(nodes)
        self._topological_order = tuple(topological_order)
        self._variables = dict(variables)
        self.description = description
        self._sampling_order = tuple(
            name
            for name in self._topological_order
            if self._nodes[name].kind == "stochastic"
        )

        # Everything a deterministic node's value depends on, looking through other
        # deterministic nodes
        self._dependencies: dict[str, frozenset[str]] = {}
        for name in self._topological_order:
            node = self._nodes[name]
            if node.kind != "deterministic":
                self._dependencies[name] = frozenset()
                continue
            dependencies = set()
            for parent in node.parents:
                dependencies.add(parent.name)
                dependencies.update(self._dependencies[parent.name])
            self._dependencies[name] = frozenset(dependencies)

        # Stochastic nodes whose densities involve each node
        position = {name: i for i, name in enumerate(self._topological_order)}
        self._stochastic_children: dict[str, tuple[str, ...]] = {}
        for name, node in self._nodes.items():
            found: set[str] = set()
            stack = list(node.children)
            while stack:
                child = stack.pop()
                if isinstance(child, Parameter):
                    found.add(child.name)
                elif child.name not in found:
                    found.add(child.name)
                    stack.extend(child.children)
            self._stochastic_children[name] = tuple(
                sorted(
                    (n for n in found if isinstance(self._nodes[n], Parameter)),
                    key=position.__getitem__,
                )
            )
            if isinstance(node, Parameter):
                node.markov_children = self._stochastic_children[name]

    @typeguard_ignore
    def depends_on(self, name: str, target: str) -> bool:
        """Whether the value of node ``name`` changes with node ``target``. Only
        deterministic nodes depend on other nodes in this sense; the values of
        stochastic nodes are state, not functions of their parents.
        """
        return target in self._dependencies[name]

    @typeguard_ignore
    def stochastic_children(self, name: str) -> tuple[str, ...]:
        """Stochastic nodes (latent or observed) whose parameters depend on node
        ``name`` directly or through deterministic nodes, in topological order.
        """
        return self._stochastic_children[name]

    def expand_names(self, names: Union[str, list[str], tuple[str, ...]]) -> list[str]:
        """Expand node names and base variable names into node names.

        :param names: Node names (``b0[2]``) or variable names (``b0``)
        :type names: Union[str, list[str], tuple[str, ...]]

        :returns: Node names, without duplicates, in the order given
        :rtype: list[str]

        :raises UnknownSymbolError: If a name matches no node or variable
        """
        if isinstance(names, str):
            names = [names]

        expanded: list[str] = []
        for name in names:
            if name in self._nodes and not isinstance(self._nodes[name], Constant):
                candidates = [name]
            elif name in self._variables:
                candidates = list(self._variables[name].node_names)
            else:
                raise UnknownSymbolError(f"'{name}' is not a node of the model")
            expanded.extend(c for c in candidates if c not in expanded)

        return expanded

    @typeguard_ignore
    def __getitem__(self, name: str) -> AbstractModelComponent:
        try:
            return self._nodes[name]
        except KeyError as error:
            raise UnknownSymbolError(f"'{name}' is not a node of the model") from error

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    def __iter__(self) -> Iterator[AbstractModelComponent]:
        """Iterate over nodes in topological order."""
        return (self._nodes[name] for name in self._topological_order)

    def __len__(self) -> int:
        return len(self._nodes)

    def __str__(self) -> str:
        return "\n".join(
            str(node) for node in self if not isinstance(node, Constant)
        )

    @property
    def nodes(self) -> dict[str, AbstractModelComponent]:
        """Every node in the graph, keyed by name."""
        return self._nodes.copy()

    @property
    def topological_order(self) -> tuple[str, ...]:
        """Node names ordered so that every parent precedes its children."""
        return self._topological_order

    @property
    def sampling_order(self) -> tuple[str, ...]:
        """Names of the latent stochastic nodes, in topological order. A sweep
        updates each of these exactly once, in this order.
        """
        return self._sampling_order

    @property
    def parameters(self) -> list[Parameter]:
        """Latent stochastic nodes."""
        return [node for node in self if node.kind == "stochastic"]

    @property
    def observables(self) -> list[Parameter]:
        """Stochastic nodes fixed by data."""
        return [node for node in self if node.kind == "observed"]

    @property
    def deterministics(self) -> list[Deterministic]:
        """Deterministic nodes."""
        return [node for node in self if node.kind == "deterministic"]

    @property
    def constants(self) -> list[Constant]:
        """Data nodes."""
        return [node for node in self if node.kind == "data"]

    @property
    def variables(self) -> dict[str, VariableLayout]:
        """Layout of every declared variable, keyed by base name."""
        return self._variables.copy()


class _Declaration(NamedTuple):
    """One relation after loop expansion."""

    name: str
    base: str
    index: Optional[tuple[int, ...]]
    declared_shape: Optional[tuple[int, ...]]
    relation: str
    rhs: parser.ExpressionSyntax
    env: dict[str, int]
    loops: dict[str, tuple[int, int]]
    line: int
    column: int


class _GraphBuilder:
    """Single-use helper carrying the state of one :py:func:`build` call."""

    def __init__(
        self,
        description: str,
        data_bindings: Optional["custom_types.DataBindings"],
        kernel_overrides: Optional[dict[str, "custom_types.KernelName"]],
    ):
        self.description = description
        self.statements = parser.parse(description)
        self.data: dict[str, np.ndarray] = {}
        for key, value in (data_bindings or {}).items():
            array = np.asarray(value)
            if array.dtype == object or not (
                np.issubdtype(array.dtype, np.number)
                or np.issubdtype(array.dtype, np.bool_)
            ):
                raise TypeError(f"Data bound to '{key}' must be numeric")
            self.data[key] = array
        self.kernel_overrides = dict(kernel_overrides or {})

        self.declarations: dict[str, _Declaration] = {}
        self.elements: dict[str, dict[tuple[int, ...], str]] = {}
        self.wholes: set[str] = set()
        self.nodes: dict[str, AbstractModelComponent] = {}

        # Ranges of the loops enclosing the relation being resolved, and the loop
        # ranges that index each data axis directly, keyed by (base, axis)
        self._loops: dict[str, tuple[int, int]] = {}
        self._data_loop_ranges: dict[tuple[str, int], set[tuple[int, int, int]]] = {}

    def build(self) -> Graph:
        """Run every build step and return the frozen graph."""
        self._collect(self.statements, {}, {})
        self._check_data_coverage()
        self._create_shells()
        self._attach_expressions()
        self._check_data_loop_extents()
        order = self._topological_sort()
        self._infer_shapes(order)
        graph = Graph(self.nodes, order, self._variable_layouts(), self.description)
        self._classify(graph)
        return graph

    # Loop expansion
    def _collect(
        self,
        statements: tuple[parser.Statement, ...],
        env: dict[str, int],
        loops: dict[str, tuple[int, int]],
    ):
        for statement in statements:
            if isinstance(statement, parser.ForLoop):
                self._expand_loop(statement, env, loops)
            else:
                self._declare(statement, env, loops)

    def _expand_loop(
        self,
        loop: parser.ForLoop,
        env: dict[str, int],
        loops: dict[str, tuple[int, int]],
    ):
        if loop.variable in self.data:
            raise ModelSyntaxError(
                f"Loop variable '{loop.variable}' shadows a data binding",
                loop.line,
                loop.column,
            )
        start = self._static_int(loop.start, env, "Loop bounds")
        end = self._static_int(loop.end, env, "Loop bounds")
        loops = {**loops, loop.variable: (start, end)}
        for value in range(start, end + 1):
            self._collect(loop.body, {**env, loop.variable: value}, loops)

    def _declare(
        self,
        relation: parser.Relation,
        env: dict[str, int],
        loops: dict[str, tuple[int, int]],
    ):
        target = relation.target
        base = target.name
        index = None
        declared_shape = None

        if isinstance(target, parser.Subscript):
            kinds = {
                "range"
                if isinstance(item, (parser.Range, parser.FullRange))
                else "scalar"
                for item in target.indices
            }
            if kinds == {"scalar"}:
                index = tuple(
                    self._static_int(item, env, "Target indices")
                    for item in target.indices
                )
            elif len(target.indices) == 1:
                item = target.indices[0]
                if isinstance(item, parser.Range):
                    start = self._static_int(item.start, env, "Target ranges")
                    end = self._static_int(item.end, env, "Target ranges")
                    if start != 1:
                        raise ModelSyntaxError(
                            f"Vector target '{base}' must start at index 1",
                            relation.line,
                            relation.column,
                        )
                    declared_shape = (end - start + 1,)
            else:
                raise ModelSyntaxError(
                    f"Target '{base}' mixes element indices and ranges, which is "
                    "not supported",
                    relation.line,
                    relation.column,
                )

        name = base if index is None else utils.element_name(base, index)
        if name in self.declarations:
            raise ModelSyntaxError(
                f"'{name}' is defined more than once", relation.line, relation.column
            )
        if base in env:
            raise ModelSyntaxError(
                f"Cannot assign to loop variable '{base}'",
                relation.line,
                relation.column,
            )
        if (index is None and base in self.elements) or (
            index is not None and base in self.wholes
        ):
            raise ModelSyntaxError(
                f"'{base}' is declared both as a whole and element by element",
                relation.line,
                relation.column,
            )
        if index is not None:
            existing = self.elements.setdefault(base, {})
            if existing and len(next(iter(existing))) != len(index):
                raise ModelSyntaxError(
                    f"Elements of '{base}' are declared with different numbers of "
                    "indices",
                    relation.line,
                    relation.column,
                )
            existing[index] = name
        else:
            self.wholes.add(base)

        self.declarations[name] = _Declaration(
            name,
            base,
            index,
            declared_shape,
            relation.relation,
            relation.rhs,
            dict(env),
            loops,
            relation.line,
            relation.column,
        )

    def _check_data_coverage(self):
        """Arrays of data bound to element-wise stochastic variables must have
        exactly one element per declared index.
        """
        for base, elements in self.elements.items():
            if base not in self.data:
                continue
            array = self.data[base]
            index_ndim = len(next(iter(elements)))
            if array.ndim != index_ndim:
                raise DimensionMismatchError(
                    f"'{base}' is indexed with {index_ndim} indices but its data has "
                    f"{array.ndim} dimensions"
                )
            declared = set(elements)
            expected = {
                tuple(i + 1 for i in index) for index in np.ndindex(*array.shape)
            }
            if declared != expected:
                extent = tuple(
                    max(index[d] for index in declared) for d in range(index_ndim)
                )
                raise DimensionMismatchError(
                    f"Data bound to '{base}' has shape {array.shape} but the model "
                    f"declares elements up to {extent} ({len(declared)} elements "
                    f"declared, {len(expected)} supplied)"
                )

    # Node creation
    def _create_shells(self):
        for declaration in self.declarations.values():
            if declaration.relation == "<-":
                if declaration.base in self.data:
                    raise ModelSyntaxError(
                        f"Deterministic node '{declaration.name}' cannot also be "
                        "bound to data",
                        declaration.line,
                        declaration.column,
                    )
                self.nodes[declaration.name] = Deterministic(declaration.name)
                continue

            family = get_family(declaration.rhs.name)
            if len(declaration.rhs.args) != len(family.PARAM_NAMES):
                raise ModelSyntaxError(
                    f"{family.FAMILY} takes {len(family.PARAM_NAMES)} arguments "
                    f"({', '.join(family.PARAM_NAMES)}); got "
                    f"{len(declaration.rhs.args)}",
                    declaration.rhs.line,
                    declaration.rhs.column,
                )

            self.nodes[declaration.name] = family(
                declaration.name,
                observed_value=self._observed_value(declaration),
                declared_shape=declaration.declared_shape,
            )

    def _observed_value(self, declaration: _Declaration):
        if declaration.base not in self.data:
            return None
        array = self.data[declaration.base]

        # Element of an array variable; NaN marks a missing (latent) element
        if declaration.index is not None:
            value = array[tuple(i - 1 for i in declaration.index)]
            return None if np.isnan(value) else value

        # Whole variable
        missing = np.isnan(array.astype(float))
        if np.all(missing):
            return None
        if np.any(missing):
            raise UnsupportedDistributionError(
                f"'{declaration.name}' is partially observed; multivariate nodes must "
                "be fully observed or fully missing"
            )
        return array

    def _attach_expressions(self):
        for declaration in self.declarations.values():
            node = self.nodes[declaration.name]
            self._loops = declaration.loops
            if isinstance(node, Deterministic):
                resolved = {"value": self._resolve(declaration.rhs, declaration.env)}
            else:
                resolved = {
                    paramname: self._resolve(arg, declaration.env)
                    for paramname, arg in zip(node.PARAM_NAMES, declaration.rhs.args)
                }
            node.set_expressions(resolved, self.nodes)
        self._loops = {}

    def _check_data_loop_extents(self):
        """Data axes indexed directly by a loop variable must be covered exactly by
        the widest such loop starting at 1.

        :raises DimensionMismatchError: If a data array is longer than the loops
            that index it
        """
        for (base, axis), ranges in self._data_loop_ranges.items():
            extent = self.data[base].shape[axis]
            covering = [(end, line) for start, end, line in ranges if start == 1]
            if not covering:
                continue
            end, line = max(covering)
            if end != extent:
                raise DimensionMismatchError(
                    f"'{base}' has {extent} entries along axis {axis + 1} but is "
                    f"indexed by a loop over 1..{end} on line {line}"
                )

    # Name resolution
    def _constant(self, base: str) -> Constant:
        if base not in self.nodes:
            self.nodes[base] = Constant(base, self.data[base])
        return self.nodes[base]

    def _resolve(
        self, syntax: parser.ExpressionSyntax, env: dict[str, int]
    ) -> expressions.Expression:
        if isinstance(syntax, parser.Number):
            return expressions.Literal(syntax.value)

        if isinstance(syntax, parser.Name):
            return self._resolve_name(syntax, env)

        if isinstance(syntax, parser.Subscript):
            return self._resolve_subscript(syntax, env)

        if isinstance(syntax, parser.BinaryExpression):
            return expressions.BinaryOp(
                syntax.operator,
                self._resolve(syntax.left, env),
                self._resolve(syntax.right, env),
            )

        if isinstance(syntax, parser.Negation):
            return expressions.UnaryOp(self._resolve(syntax.operand, env))

        if isinstance(syntax, parser.FunctionCall):
            if syntax.name in FAMILIES:
                raise ModelSyntaxError(
                    f"Distribution '{syntax.name}' can only appear on the right of '~'",
                    syntax.line,
                    syntax.column,
                )
            operation = operations.get_operation(syntax.name, syntax.line)
            if len(syntax.args) != operation.n_args:
                raise ModelSyntaxError(
                    f"Function '{syntax.name}' takes {operation.n_args} argument(s); "
                    f"got {len(syntax.args)}",
                    syntax.line,
                    syntax.column,
                )
            return expressions.Call(
                syntax.name, tuple(self._resolve(arg, env) for arg in syntax.args)
            )

        raise TypeError(f"Unknown syntax element {syntax!r}")

    def _resolve_name(
        self, syntax: parser.Name, env: dict[str, int]
    ) -> expressions.Expression:
        name = syntax.name
        if name in env:
            return expressions.Literal(env[name])
        if name in self.wholes:
            return expressions.NodeRef(name)
        if name in self.elements:
            return self._element_vector(name, None, syntax)
        if name in self.data:
            return expressions.DataRef(name, self._constant(name).value)
        raise UnknownSymbolError(
            f"Unknown symbol '{name}' on line {syntax.line}, column {syntax.column}"
        )

    def _element_vector(
        self,
        base: str,
        bounds: Optional[tuple[int, int]],
        syntax: Union[parser.Name, parser.Subscript],
    ) -> expressions.Vector:
        """All (or a range of) the element nodes of a 1-dimensional variable."""
        elements = self.elements[base]
        if len(next(iter(elements))) != 1:
            raise ModelSyntaxError(
                f"Whole-array references are only supported for 1-dimensional "
                f"variables; '{base}' has {len(next(iter(elements)))} indices",
                syntax.line,
                syntax.column,
            )
        start, end = bounds or (1, max(index[0] for index in elements))
        items = []
        for i in range(start, end + 1):
            if (i,) not in elements:
                raise UnknownSymbolError(
                    f"'{utils.element_name(base, (i,))}' is referenced on line "
                    f"{syntax.line} but never defined"
                )
            items.append(expressions.NodeRef(elements[(i,)]))
        label = f"{base}[]" if bounds is None else f"{base}[{start}:{end}]"
        return expressions.Vector(tuple(items), label=label)

    def _resolve_subscript(
        self, syntax: parser.Subscript, env: dict[str, int]
    ) -> expressions.Expression:
        base = syntax.name
        if base in env:
            raise ModelSyntaxError(
                f"Loop variable '{base}' cannot be indexed", syntax.line, syntax.column
            )
        if not (base in self.elements or base in self.wholes or base in self.data):
            raise UnknownSymbolError(
                f"Unknown symbol '{base}' on line {syntax.line}, column {syntax.column}"
            )

        # Classify each index as a static integer, a static range, or a dynamic
        # expression
        indices: list[Union[int, tuple[int, int], None, expressions.Expression]] = []
        for item in syntax.indices:
            if isinstance(item, parser.FullRange):
                indices.append(None)
            elif isinstance(item, parser.Range):
                indices.append(
                    (
                        self._static_int(item.start, env, "Index ranges"),
                        self._static_int(item.end, env, "Index ranges"),
                    )
                )
            else:
                resolved = self._resolve(item, env)
                indices.append(
                    self._static_int_value(resolved, item)
                    if self._is_static(resolved)
                    else resolved
                )
        dynamic = any(isinstance(i, expressions.Expression) for i in indices)
        label = f"{base}[{', '.join(self._index_label(i) for i in indices)}]"

        # Variables declared element by element
        if base in self.elements:
            if dynamic:
                if len(indices) != 1:
                    raise ModelSyntaxError(
                        "Indices that depend on nodes are only supported for "
                        f"1-dimensional variables ('{base}')",
                        syntax.line,
                        syntax.column,
                    )
                return expressions.Index(
                    self._element_vector(base, None, syntax), (indices[0],)
                )
            if all(isinstance(i, int) for i in indices):
                name = utils.element_name(base, tuple(indices))
                if tuple(indices) not in self.elements[base]:
                    raise UnknownSymbolError(
                        f"'{name}' is referenced on line {syntax.line} but never "
                        "defined"
                    )
                return expressions.NodeRef(name)
            if len(indices) == 1:
                return self._element_vector(base, indices[0], syntax)
            raise ModelSyntaxError(
                f"Slices of multi-dimensional variable '{base}' are not supported",
                syntax.line,
                syntax.column,
            )

        # Whole-variable nodes (e.g., a Dirichlet-distributed vector)
        if base in self.wholes:
            node_ref = expressions.NodeRef(base)
            if all(i is None for i in indices):
                return node_ref
            if any(isinstance(i, tuple) for i in indices):
                if len(indices) != 1:
                    raise ModelSyntaxError(
                        f"Slices of multi-dimensional node '{base}' are not supported",
                        syntax.line,
                        syntax.column,
                    )
                start, end = indices[0]
                return expressions.Vector(
                    tuple(
                        expressions.Index(node_ref, (expressions.Literal(k),))
                        for k in range(start, end + 1)
                    ),
                    label=label,
                )
            if any(i is None for i in indices):
                raise ModelSyntaxError(
                    f"Partial slices of node '{base}' are not supported",
                    syntax.line,
                    syntax.column,
                )
            return expressions.Index(
                node_ref,
                tuple(
                    i if dynamic and isinstance(i, expressions.Expression)
                    else expressions.Literal(i)
                    for i in indices
                ),
            )

        # Data bindings
        array = self._constant(base).value
        if np.ndim(array) != len(indices):
            raise DimensionMismatchError(
                f"'{base}' has {np.ndim(array)} dimensions but is indexed with "
                f"{len(indices)} indices on line {syntax.line}"
            )
        for axis, item in enumerate(syntax.indices):
            if isinstance(item, parser.Name) and item.name in self._loops:
                start, end = self._loops[item.name]
                self._data_loop_ranges.setdefault((base, axis), set()).add(
                    (start, end, syntax.line)
                )
        if dynamic:
            if any(i is None or isinstance(i, tuple) for i in indices):
                raise ModelSyntaxError(
                    "Indices that depend on nodes cannot be mixed with slices",
                    syntax.line,
                    syntax.column,
                )
            return expressions.Index(
                expressions.DataRef(base, array),
                tuple(
                    (
                        i
                        if isinstance(i, expressions.Expression)
                        else expressions.Literal(i)
                    )
                    for i in indices
                ),
            )
        selection = []
        for dim, index in enumerate(indices):
            extent = np.shape(array)[dim]
            if index is None:
                selection.append(slice(None))
                continue
            start, end = index if isinstance(index, tuple) else (index, index)
            if start < 1 or end > extent or start > end:
                raise DimensionMismatchError(
                    f"Index {self._index_label(index)} is outside the extent "
                    f"1..{extent} of '{base}' on line {syntax.line}"
                )
            selection.append(
                index - 1 if isinstance(index, int) else slice(start - 1, end)
            )
        return expressions.DataRef(base, np.asarray(array)[tuple(selection)], label)

    @staticmethod
    def _index_label(index) -> str:
        if index is None:
            return ""
        if isinstance(index, tuple):
            return f"{index[0]}:{index[1]}"
        return str(index)

    # Static evaluation
    def _is_static(self, expression: expressions.Expression) -> bool:
        """Whether an expression depends only on data and literals."""
        return all(
            isinstance(self.nodes.get(name), Constant)
            for name in expression.references()
        )

    def _static_int_value(self, expression: expressions.Expression, syntax) -> int:
        value = expression.evaluate(self._no_nodes)
        if np.ndim(value) != 0 or value != np.rint(value):
            raise ModelSyntaxError(
                f"Index '{expression}' must evaluate to a single integer; got {value}",
                getattr(syntax, "line", None),
                getattr(syntax, "column", None),
            )
        return int(value)

    def _static_int(
        self, syntax: parser.ExpressionSyntax, env: dict[str, int], what: str
    ) -> int:
        resolved = self._resolve(syntax, env)
        if not self._is_static(resolved):
            raise ModelSyntaxError(
                f"{what} must be computable from data; '{resolved}' depends on "
                "model nodes",
                getattr(syntax, "line", None),
                getattr(syntax, "column", None),
            )
        return self._static_int_value(resolved, syntax)

    @staticmethod
    def _no_nodes(name: str):
        raise UnknownSymbolError(f"'{name}' has no value at build time")

    # Ordering, shapes, and classification
    def _topological_sort(self) -> tuple[str, ...]:
        """Kahn's algorithm, breaking ties by declaration order."""
        rank = {
            name: i
            for i, name in enumerate(
                itertools.chain(
                    (n for n in self.nodes if n not in self.declarations),
                    self.declarations,
                )
            )
        }
        n_parents = {name: len(node.parents) for name, node in self.nodes.items()}
        ready = sorted(
            (n for n, count in n_parents.items() if count == 0), key=rank.get
        )
        order = []
        while ready:
            name = ready.pop(0)
            order.append(name)
            released = []
            for child in self.nodes[name].children:
                n_parents[child.name] -= 1
                if n_parents[child.name] == 0:
                    released.append(child.name)
            ready = sorted(ready + released, key=rank.get)

        if len(order) != len(self.nodes):
            cycle = tuple(
                sorted((n for n in self.nodes if n not in set(order)), key=rank.get)
            )
            raise CyclicDependencyError(
                f"The model contains a cyclic dependency among: {', '.join(cycle)}",
                cycle=cycle,
            )
        return tuple(order)

    def _infer_shapes(self, order: tuple[str, ...]):
        def shape_of(name: str) -> tuple[int, ...]:
            return self.nodes[name].shape

        for name in order:
            try:
                self.nodes[name].infer_shape(shape_of)
            except ValueError as error:
                raise DimensionMismatchError(
                    f"Incompatible shapes in the definition of '{name}': {error}"
                ) from error

    def _variable_layouts(self) -> dict[str, VariableLayout]:
        layouts = {base: VariableLayout(base, (base,), None) for base in self.wholes}
        for base, elements in self.elements.items():
            ordered = sorted(elements)
            extent = tuple(
                max(index[d] for index in ordered) for d in range(len(ordered[0]))
            )
            complete = len(ordered) == int(np.prod(extent)) and all(
                min(index[d] for index in ordered) == 1 for d in range(len(extent))
            )
            layouts[base] = VariableLayout(
                base,
                tuple(elements[index] for index in ordered),
                extent if complete else None,
            )
        return layouts

    def _classify(self, graph: Graph):
        overrides = {}
        for key, kernel_name in self.kernel_overrides.items():
            for name in graph.expand_names(key):
                overrides[name] = kernel_name
        for name in graph.sampling_order:
            node = graph[name]
            node.kernel = classifier.classify(node, graph, overrides.get(name))


def build(
    description: str,
    data_bindings: Optional["custom_types.DataBindings"] = None,
    kernel_overrides: Optional[dict[str, "custom_types.KernelName"]] = None,
) -> Graph:
    """Compile a model description and its data into an immutable graph.

    :param description: Plain-text model description
    :type description: str
    :param data_bindings: Observed data keyed by identifier. ``NaN`` entries in an
        array bound to a stochastic variable mark missing elements, which are
        sampled. Defaults to None.
    :type data_bindings: Optional[custom_types.DataBindings]
    :param kernel_overrides: Node or variable names mapped to the kernel that must
        update them (e.g., ``{"sigma": "slice"}``). Defaults to None.
    :type kernel_overrides: Optional[dict[str, custom_types.KernelName]]

    :returns: The compiled graph, with a kernel cached on every latent node
    :rtype: Graph

    :raises ModelSyntaxError: If the description is malformed
    :raises UnknownSymbolError: If a name cannot be resolved
    :raises CyclicDependencyError: If the nodes depend on each other cyclically
    :raises DimensionMismatchError: If declared ranges disagree with data
    :raises UnsupportedDistributionError: If a family is unknown or a node cannot
        be given a kernel
    """
    return _GraphBuilder(description, data_bindings, kernel_overrides).build()
