# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Deterministic functions available inside model descriptions.

This module is the access point to every function that may be called from a model
description (e.g., ``mu[i] <- ilogit(b0 + b1 * x[i])``). Each function is wrapped
in an :py:class:`Operation`, which records its arity, how it transforms the shapes
of its arguments, and how it propagates linearity. The latter is used by the node
classifier to decide whether a Normal node can be updated by its conjugate kernel.

Operations are looked up by name at evaluation time, so expression trees that
reference them remain picklable.
"""

from __future__ import annotations

from typing import Callable, Literal, Optional, TYPE_CHECKING

import numpy as np
import numpy.typing as npt

from scipy import special

from scigibbs import utils
from scigibbs.exceptions import UnknownSymbolError

if TYPE_CHECKING:
    from scigibbs import custom_types


class Operation:
    """A named deterministic function usable within model expressions.

    :param name: Name of the function in model descriptions
    :type name: str
    :param func: Function operating on NumPy values
    :type func: Callable[..., npt.NDArray]
    :param n_args: Number of arguments the function takes
    :type n_args: int
    :param reduces: Whether the function reduces its arguments to a scalar.
        Defaults to False, in which case arguments are broadcast together.
    :type reduces: bool
    :param linearity: How the function propagates linearity in a node. "none"
        means the result is only linear if no argument depends on the node; "all"
        means the result is linear whenever every argument is; "product" means the
        result is linear when one argument is independent of the node and the
        other is linear in it. Defaults to "none".
    :type linearity: Literal["none", "all", "product"]
    """

    def __init__(
        self,
        name: str,
        func: Callable[..., npt.NDArray],
        n_args: int,
        reduces: bool = False,
        linearity: Literal["none", "all", "product"] = "none",
    ):
        self.name = name
        self.func = func
        self.n_args = n_args
        self.reduces = reduces
        self.linearity = linearity

    def __call__(self, *args: "custom_types.SampleType") -> "custom_types.SampleType":
        result = self.func(*args)
        if isinstance(result, np.ndarray) and result.ndim == 0:
            return result.item()
        return result

    def output_shape(self, *arg_shapes: tuple[int, ...]) -> tuple[int, ...]:
        """Shape of the result given the shapes of the arguments.

        :raises ValueError: If argument shapes cannot be broadcast together
        """
        if self.reduces:
            return ()
        return np.broadcast_shapes(*arg_shapes)

    def __repr__(self) -> str:
        return f"Operation({self.name})"


def _pow(base, exponent):
    return np.power(np.asarray(base, dtype=float), exponent)


def _ilogit(x):
    return utils.stable_sigmoid(x)


def _logit(p):
    return special.logit(p)


def _icloglog(x):
    return -np.expm1(-np.exp(x))


def _cloglog(p):
    return np.log(-np.log1p(-np.asarray(p, dtype=float)))


def _phi(x):
    return special.ndtr(x)


def _sum(x):
    return np.sum(x)


def _mean(x):
    return np.mean(x)


def _sd(x):
    return np.std(x, ddof=1)


def _inprod(x, y):
    return np.sum(np.multiply(x, y))


def _step(x):
    return (np.asarray(x) >= 0).astype(float)


def _equals(x, y):
    return (np.asarray(x) == np.asarray(y)).astype(float)


def _trunc(x):
    return np.trunc(x)


def build_operation(
    name: str,
    func: Callable[..., npt.NDArray],
    n_args: int = 1,
    reduces: bool = False,
    linearity: Literal["none", "all", "product"] = "none",
) -> Operation:
    """Create an :py:class:`Operation` and register it under ``name``.

    :returns: The registered operation
    :rtype: Operation
    """
    operation = Operation(
        name, func, n_args=n_args, reduces=reduces, linearity=linearity
    )
    OPERATIONS[name] = operation
    return operation


def get_operation(name: str, line: Optional[int] = None) -> Operation:
    """Look up a registered operation by name.

    :raises UnknownSymbolError: If no operation is registered under ``name``
    """
    try:
        return OPERATIONS[name]
    except KeyError as error:
        location = "" if line is None else f" on line {line}"
        raise UnknownSymbolError(
            f"Unknown function '{name}'{location}. Available functions are: "
            f"{', '.join(sorted(OPERATIONS))}"
        ) from error


OPERATIONS: dict[str, Operation] = {}
"""Registry of every operation, keyed by the name used in model descriptions."""

# Elementwise
abs_ = build_operation("abs", np.abs)
exp = build_operation("exp", np.exp)
expm1 = build_operation("expm1", np.expm1)
log = build_operation("log", np.log)
log1p = build_operation("log1p", np.log1p)
sqrt = build_operation("sqrt", np.sqrt)
pow_ = build_operation("pow", _pow, n_args=2)
ilogit = build_operation("ilogit", _ilogit)
logit = build_operation("logit", _logit)
icloglog = build_operation("icloglog", _icloglog)
cloglog = build_operation("cloglog", _cloglog)
phi = build_operation("phi", _phi)
round_ = build_operation("round", np.round)
trunc = build_operation("trunc", _trunc)
step = build_operation("step", _step)
equals = build_operation("equals", _equals, n_args=2)
min_ = build_operation("min", np.minimum, n_args=2)
max_ = build_operation("max", np.maximum, n_args=2)

# Reductions
sum_ = build_operation("sum", _sum, reduces=True, linearity="all")
mean = build_operation("mean", _mean, reduces=True, linearity="all")
sd = build_operation("sd", _sd, reduces=True)
inprod = build_operation("inprod", _inprod, n_args=2, reduces=True, linearity="product")
