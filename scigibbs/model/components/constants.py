# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Constant value components for SciGibbs models.

This module provides the Constant class for representing data bindings inside a
model graph. A data binding referenced from an expression (a covariate such as
``x`` in ``mu[i] <- b0 + b1 * x[i]``, or a size such as ``N``) becomes a
Constant node. Constants are never sampled; they exist in the graph so that every
dependency of a node, including those on data, is visible as an edge.

Data bound to the *target* of a stochastic relation is not a Constant: such
elements become observed stochastic nodes that contribute likelihood terms (see
:py:mod:`scigibbs.model.components.parameters`).

**Basic Usage:**

.. code-block:: python

    import numpy as np
    import scigibbs as sg

    model = sg.Model(
        "for (i in 1:N) { y[i] ~ dnorm(b * x[i], 1) }\\n b ~ dnorm(0, 0.01)",
        data={"N": 3, "x": np.array([1.0, 2.0, 3.0]), "y": [1.1, 2.3, 2.8]},
    )
    model.constants  # {'N': Constant(N), 'x': Constant(x)}
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt

from typeguard import typeguard_ignore

from scigibbs.model.components import abstract_model_component

if TYPE_CHECKING:
    from scigibbs import custom_types


class Constant(abstract_model_component.AbstractModelComponent):
    """Represents a data binding in a SciGibbs model graph.

    :param name: Name of the binding in the model description
    :type name: str
    :param value: Bound value. Converted to a NumPy array.
    :type value: Union[int, float, Sequence, npt.NDArray]

    Constants have no parents. Their value is shared read-only by every chain.
    """

    KIND = "data"

    def __init__(self, name: str, value: npt.ArrayLike):
        value = np.array(value)
        value.setflags(write=False)
        super().__init__(name, shape=value.shape)
        self._value = value

    def draw(self, lookup, rng):
        """Constants always "draw" their bound value."""
        return self.value

    def __str__(self) -> str:
        if self._value.ndim == 0:
            return f"{self.name} = {self._value.item()}"
        return f"{self.name} = data{list(self.shape)}"

    @property
    @typeguard_ignore
    def value(self) -> "custom_types.SampleType":
        """The bound value. Scalars are returned as Python/NumPy scalars."""
        if self._value.ndim == 0:
            return self._value.item()
        return self._value
