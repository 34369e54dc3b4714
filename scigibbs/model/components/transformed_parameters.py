# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Deterministic nodes of SciGibbs models.

A deterministic relation (``mu[i] <- b0 + b1 * x[i]``) defines a node whose value
is a fixed function of its parents. Deterministic nodes are never sampled and are
never cached: every read re-evaluates the defining expression against the current
state of the chain, so their value can never be stale with respect to their
parents.

Constrained quantities are expressed the same way. For example, the complement of
a probability (``p2 <- 1 - p1``) is recomputed from ``p1`` whenever it is read, so
``p1 + p2 == 1`` holds exactly after every sweep.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from scigibbs.model.components import abstract_model_component

if TYPE_CHECKING:
    from scigibbs.model.components.expressions import Expression


class Deterministic(abstract_model_component.AbstractModelComponent):
    """A node computed from its parents by an expression.

    :param name: Unique name of the node
    :type name: str
    """

    KIND = "deterministic"

    def infer_shape(self, shape_of):
        self._shape = tuple(int(dim) for dim in self.expression.shape(shape_of))

    def value(self, lookup):
        """Evaluate the node against a value lookup."""
        return self.expression.evaluate(lookup)

    def draw(self, lookup, rng):
        """Deterministic nodes "draw" their value by evaluation."""
        return self.value(lookup)

    def __str__(self) -> str:
        return f"{self.name} <- {self.expression}"

    @property
    def expression(self) -> "Expression":
        """Expression defining the node."""
        return self._expressions["value"]

