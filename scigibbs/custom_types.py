# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Custom type definitions for SciGibbs models.

This module provides type aliases and unions for the values, nodes, and results
that flow through the package. They are used for type checking and documentation
purposes.

All imports are conditional on TYPE_CHECKING to avoid circular imports while
maintaining proper type hints for development and documentation tools.
"""

from typing import Callable, Literal, Mapping, Sequence, TYPE_CHECKING, Union

# Everything in this file is only imported if TYPE_CHECKING is True.
if TYPE_CHECKING:

    import numpy as np
    import numpy.typing as npt

    from scigibbs.model.components import constants, parameters
    from scigibbs.model.components import transformed_parameters

# Scalar types
Integer = Union[int, "np.integer"]
"""Type alias for integer values.

Accepts both Python's built-in int and NumPy integer types.

:type: Union[int, np.integer]
"""

Float = Union[float, "np.floating"]
"""Type alias for floating-point values.

Accepts both Python's built-in float and NumPy floating-point types.

:type: Union[float, np.floating]
"""

# Value types
SampleType = Union[int, float, "np.integer", "np.floating", "npt.NDArray"]
"""Type alias for the value held by a node: a scalar or an array.

:type: Union[int, float, np.integer, np.floating, npt.NDArray]
"""

DataBindings = Mapping[str, Union[int, float, Sequence, "npt.NDArray"]]
"""Type alias for the observed data supplied alongside a model description. Keys
are identifiers used in the description.

:type: Mapping[str, Union[int, float, Sequence, npt.NDArray]]
"""

InitValues = Mapping[str, Union[int, float, Sequence, "npt.NDArray"]]
"""Type alias for explicit initial values of one chain, keyed by node name or base
variable name.

:type: Mapping[str, Union[int, float, Sequence, npt.NDArray]]
"""

InitPolicy = Union[None, Literal["prior"], InitValues, Sequence[InitValues]]
"""Type alias for the initialization policy accepted by the chain orchestrator.

:type: Union[None, Literal["prior"], InitValues, Sequence[InitValues]]
"""

IndexTuple = tuple[int, ...]
"""Type alias for a concrete, 1-based element index of an array variable.

:type: tuple[int, ...]
"""

# Node types
NodeKind = Literal["stochastic", "observed", "deterministic", "data"]
"""Type alias for the kind of a graph node.

:type: Literal["stochastic", "observed", "deterministic", "data"]
"""

NodeType = Union[
    "parameters.Parameter",
    "transformed_parameters.Deterministic",
    "constants.Constant",
]
"""Composite type of every node that can appear in a model graph.

:type: Union[parameters.Parameter, transformed_parameters.Deterministic,
    constants.Constant]
"""

ValueLookup = Callable[[str], SampleType]
"""Type alias for a function mapping a node name to its current value.

:type: Callable[[str], SampleType]
"""

KernelName = Literal[
    "conjugate_normal",
    "conjugate_gamma",
    "conjugate_beta",
    "conjugate_dirichlet",
    "enumeration",
    "metropolis",
    "metropolis_simplex",
    "slice",
]
"""Type alias for the names of the update kernels.

:type: Literal[...]
"""

Backend = Literal["auto", "serial", "thread", "process"]
"""Type alias for the chain execution backends.

:type: Literal["auto", "serial", "thread", "process"]
"""
