# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Utility functions for the SciGibbs package.

This module provides various utility functions that support the core
functionality of SciGibbs, including:

    - Lazy importing mechanisms to avoid circular imports
    - Mathematical utility functions for numerical stability
    - Naming helpers for array-element nodes
    - Random number generator construction for independent chains

Users will not typically need to interact with this module directly--it is designed
to be used internally by SciGibbs.
"""

from __future__ import annotations

import importlib.util
import re
import sys

from typing import Optional, TYPE_CHECKING

import numpy as np
import numpy.typing as npt

if TYPE_CHECKING:
    from scigibbs import custom_types

_ELEMENT_NAME_PATTERN = re.compile(r"^(?P<base>[^\[\]]+)\[(?P<index>[0-9, ]+)\]$")


def lazy_import(name: str):
    """Import a module only when it is first needed.

    This function implements lazy module importing to improve package import
    performance by deferring module loading until actual use.

    :param name: The fully qualified module name to import
    :type name: str

    :returns: The imported module
    :rtype: module

    :raises ImportError: If the specified module cannot be found

    .. note::
        If the module is already imported, returns the cached version
        from sys.modules for efficiency.
    """
    # Check if the module is already imported
    if name in sys.modules:
        return sys.modules[name]

    # If not, import it lazily (modified from here:
    # https://docs.python.org/3/library/importlib.html#implementing-lazy-imports)
    spec = importlib.util.find_spec(name)
    if spec is None:
        raise ImportError(f"Module '{name}' not found.")

    # Create the module with a lazy loader
    spec.loader = importlib.util.LazyLoader(spec.loader)
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    spec.loader.exec_module(module)
    return module


def stable_sigmoid(exponent: npt.ArrayLike) -> npt.NDArray[np.floating]:
    r"""Compute sigmoid function in a numerically stable way.

    :param exponent: Input values for sigmoid computation
    :type exponent: npt.ArrayLike

    :returns: Sigmoid values with the same shape as input
    :rtype: npt.NDArray[np.floating]

    The function uses the identity:

    .. math::

        \sigma(x) =
        \begin{cases}
            \frac{1}{1 + e^{-x}} & \text{if } x \geq 0 \\
            \frac{e^{x}}{1 + e^{x}} & \text{if } x < 0
        \end{cases}
    """
    exponent = np.asarray(exponent, dtype=float)

    # Empty array to store the results
    sigma_exponent = np.full_like(exponent, np.nan)

    # Different approach for positive and negative values
    mask = exponent >= 0
    sigma_exponent[mask] = 1 / (1 + np.exp(-exponent[mask]))
    neg_calc = np.exp(exponent[~mask])
    sigma_exponent[~mask] = neg_calc / (1 + neg_calc)

    return sigma_exponent


def close_simplex(values: npt.ArrayLike) -> npt.NDArray[np.floating]:
    """Renormalize a vector of non-negative weights onto the simplex so that the
    last component is exactly one minus the sum of the others.

    :param values: Non-negative weights. Need not be normalized.
    :type values: npt.ArrayLike

    :returns: The closed simplex
    :rtype: npt.NDArray[np.floating]
    """
    values = np.asarray(values, dtype=float)
    closed = values / values.sum()
    closed[-1] = 1.0 - closed[:-1].sum()
    return closed


def element_name(base: str, index: "custom_types.IndexTuple") -> str:
    """Build the node name of one element of an array variable.

    Example:
        >>> element_name("b0", (3,))
        'b0[3]'
        >>> element_name("x", (2, 1))
        'x[2,1]'
    """
    return f"{base}[{','.join(str(i) for i in index)}]"


def split_element_name(name: str) -> tuple[str, Optional[tuple[int, ...]]]:
    """Inverse of :py:func:`element_name`. Names without an index return ``None``
    as their index.
    """
    match = _ELEMENT_NAME_PATTERN.match(name)
    if match is None:
        return name, None
    return match.group("base"), tuple(
        int(i) for i in match.group("index").split(",")
    )


def spawn_generators(
    seed: Optional["custom_types.Integer"], n: "custom_types.Integer"
) -> list[np.random.Generator]:
    """Build ``n`` statistically independent random number generators from a
    single root seed.

    :param seed: Root seed. If None, one is drawn from the global
        :py:data:`scigibbs.RNG`.
    :type seed: Optional[custom_types.Integer]
    :param n: Number of generators to build
    :type n: custom_types.Integer

    :returns: One generator per chain
    :rtype: list[np.random.Generator]
    """
    # pylint: disable=import-outside-toplevel
    import scigibbs

    if seed is None:
        seed = int(scigibbs.RNG.integers(0, 2**63 - 1))

    return [
        np.random.Generator(np.random.PCG64(child))
        for child in np.random.SeedSequence(int(seed)).spawn(int(n))
    ]
