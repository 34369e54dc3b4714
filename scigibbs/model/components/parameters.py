# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Parameter classes for the stochastic nodes of SciGibbs models.

This module provides one class per distribution family that may appear on the
right of a ``~`` relation. Each class knows how to validate its parameters,
evaluate log densities, draw values, and describe its support. Families are
registered under their BUGS names by :py:class:`ParameterMeta` and looked up by
the graph builder with :py:func:`get_family`.

All Normal-type families are parametrized by precision, ``tau = 1 / variance``.

The following distributions are currently supported in SciGibbs:

Continuous Univariate
^^^^^^^^^^^^^^^^^^^^^
- :py:class:`~scigibbs.model.components.parameters.Normal` (``dnorm``)
- :py:class:`~scigibbs.model.components.parameters.LogNormal` (``dlnorm``)
- :py:class:`~scigibbs.model.components.parameters.StudentT` (``dt``)
- :py:class:`~scigibbs.model.components.parameters.Uniform` (``dunif``)
- :py:class:`~scigibbs.model.components.parameters.Beta` (``dbeta``)
- :py:class:`~scigibbs.model.components.parameters.Gamma` (``dgamma``)
- :py:class:`~scigibbs.model.components.parameters.Exponential` (``dexp``)

Continuous Multivariate
^^^^^^^^^^^^^^^^^^^^^^^
- :py:class:`~scigibbs.model.components.parameters.Dirichlet` (``ddirch``)

Discrete Univariate
^^^^^^^^^^^^^^^^^^^
- :py:class:`~scigibbs.model.components.parameters.Bernoulli` (``dbern``)
- :py:class:`~scigibbs.model.components.parameters.Binomial` (``dbin``)
- :py:class:`~scigibbs.model.components.parameters.Poisson` (``dpois``)
- :py:class:`~scigibbs.model.components.parameters.Categorical` (``dcat``)

Discrete Multivariate
^^^^^^^^^^^^^^^^^^^^^
- :py:class:`~scigibbs.model.components.parameters.Multinomial` (``dmulti``)
"""

from __future__ import annotations

from abc import ABCMeta
from typing import Callable, Optional, TYPE_CHECKING

import numpy as np
import numpy.typing as npt

from scipy import special, stats
from typeguard import typeguard_ignore

from scigibbs import utils
from scigibbs.exceptions import (
    DimensionMismatchError,
    InvalidParameterError,
    UnsupportedDistributionError,
)
from scigibbs.model.components import abstract_model_component

if TYPE_CHECKING:
    from scigibbs import custom_types
    from scigibbs.model.sampling.kernels import Kernel

# pylint: disable=too-many-lines

_LOG_2PI = np.log(2 * np.pi)

FAMILIES: dict[str, type["Parameter"]] = {}
"""Registry of distribution families keyed by their names (and aliases) in model
descriptions.
"""


def _inverse_sqrt_transform(x: npt.ArrayLike) -> "custom_types.SampleType":
    """Precision to standard deviation. Defined at module level to keep classes
    picklable.
    """
    return 1 / np.sqrt(x)


def _inverse_transform(x: npt.ArrayLike) -> "custom_types.SampleType":
    """Rate to scale."""
    return 1 / np.asarray(x, dtype=float)


def _exp_transform(x: npt.ArrayLike) -> "custom_types.SampleType":
    """Log-scale location to scale."""
    return np.exp(x)


class ParameterMeta(ABCMeta):
    """Metaclass registering every concrete Parameter subclass in
    :py:data:`FAMILIES` under its ``FAMILY`` name and ``ALIASES``.

    :raises ValueError: If two classes claim the same family name
    """

    def __init__(cls, name, bases, attrs):
        super().__init__(name, bases, attrs)

        if not attrs.get("FAMILY"):
            return

        for family in (attrs["FAMILY"],) + tuple(attrs.get("ALIASES", ())):
            if family in FAMILIES:
                raise ValueError(f"Distribution family '{family}' is already defined")
            FAMILIES[family] = cls


def get_family(name: str) -> type["Parameter"]:
    """Look up a distribution family by name.

    :param name: Family name as written in the model description (e.g., "dnorm")
    :type name: str

    :returns: The Parameter subclass implementing the family
    :rtype: type[Parameter]

    :raises UnsupportedDistributionError: If no family is registered under ``name``
    """
    try:
        return FAMILIES[name]
    except KeyError as error:
        raise UnsupportedDistributionError(
            f"Unsupported distribution '{name}'. Supported distributions are: "
            f"{', '.join(sorted(FAMILIES))}"
        ) from error


class Parameter(
    abstract_model_component.AbstractModelComponent, metaclass=ParameterMeta
):
    """Base class for all stochastic nodes in SciGibbs models.

    :param name: Unique name of the node
    :type name: str
    :param observed_value: Value fixed by data, or None for a latent node.
        Defaults to None.
    :type observed_value: Optional[custom_types.SampleType]
    :param declared_shape: Shape given by the target of the relation (e.g., ``(3,)``
        for ``p[1:3]``), or None if not declared. Defaults to None.
    :type declared_shape: Optional[tuple[int, ...]]

    :cvar FAMILY: Name of the family in model descriptions
    :cvar ALIASES: Alternative names of the family
    :cvar PARAM_NAMES: Names of the distribution's parameters, in positional order
    :cvar POSITIVE_PARAMS: Parameters that must be strictly positive
    :cvar PROBABILITY_PARAMS: Parameters that must lie in [0, 1]
    :cvar WEIGHT_PARAMS: Vector parameters of non-negative weights, normalized
        before use
    :cvar COUNT_PARAMS: Parameters that must be non-negative integers
    :cvar VECTOR_PARAMS: Parameters that must be 1-dimensional
    :cvar LOWER_BOUND: Lower bound of the support, or None
    :cvar UPPER_BOUND: Upper bound of the support, or None
    :cvar LOWER_INCLUSIVE: Whether the lower bound belongs to the support
    :cvar IS_SIMPLEX: Whether values lie on the probability simplex
    :cvar IS_DISCRETE: Whether values are integers
    :cvar IS_MULTIVARIATE: Whether values are vectors
    :cvar SCIPY_DIST: Corresponding SciPy distribution
    :cvar BUGS_TO_SCIPY_NAMES: Parameter name mapping for the SciPy interface
    :cvar BUGS_TO_SCIPY_TRANSFORMS: Parameter transforms converting between the
        BUGS and SciPy parametrizations
    """

    FAMILY: str = ""
    """Name of the family in model descriptions (e.g., "dnorm")."""

    ALIASES: tuple[str, ...] = ()
    """Alternative names of the family."""

    PARAM_NAMES: tuple[str, ...] = ()
    """Names of the distribution's parameters in positional order."""

    POSITIVE_PARAMS: set[str] = set()
    """Parameters that must be strictly positive."""

    PROBABILITY_PARAMS: set[str] = set()
    """Parameters that must lie in [0, 1]."""

    WEIGHT_PARAMS: set[str] = set()
    """Vector parameters of non-negative weights with a positive sum."""

    COUNT_PARAMS: set[str] = set()
    """Parameters that must be non-negative integers."""

    VECTOR_PARAMS: set[str] = set()
    """Parameters that must be 1-dimensional."""

    LOWER_BOUND: Optional[float] = None
    """Lower bound of the support."""

    UPPER_BOUND: Optional[float] = None
    """Upper bound of the support."""

    LOWER_INCLUSIVE: bool = True
    """Whether the lower bound belongs to the support."""

    IS_SIMPLEX: bool = False
    """Whether values lie on the probability simplex."""

    IS_DISCRETE: bool = False
    """Whether values are integers."""

    IS_MULTIVARIATE: bool = False
    """Whether values are vectors."""

    SCIPY_DIST: Optional[stats.rv_continuous | stats.rv_discrete] = None
    """Corresponding SciPy distribution (e.g., `scipy.stats.norm`)."""

    BUGS_TO_SCIPY_NAMES: dict[str, str] = {}
    """Maps BUGS parameter names to SciPy parameter names."""

    BUGS_TO_SCIPY_TRANSFORMS: dict[str, Callable[[npt.ArrayLike], npt.NDArray]] = {}
    """Transforms converting parameters from the BUGS parametrization to SciPy's."""

    def __init__(
        self,
        name: str,
        *,
        observed_value: Optional["custom_types.SampleType"] = None,
        declared_shape: Optional[tuple[int, ...]] = None,
    ):
        super().__init__(name, shape=declared_shape or ())
        self._declared_shape = declared_shape
        self._observed_value = (
            None if observed_value is None else self._coerce(observed_value)
        )

        # Set by the graph builder once the graph is complete
        self.kernel: Optional["Kernel"] = None
        self.markov_children: tuple[str, ...] = ()

    def _coerce(self, value: "custom_types.SampleType") -> "custom_types.SampleType":
        """Convert a value to the node's native representation: Python scalars for
        univariate families, arrays for multivariate ones.
        """
        value = np.asarray(value, dtype=float)
        if value.ndim == 0:
            return int(value) if self.IS_DISCRETE and value == np.rint(value) else (
                float(value)
            )
        if self.IS_DISCRETE and np.all(value == np.rint(value)):
            return value.astype(np.int64)
        return value

    def infer_shape(self, shape_of):
        """Infer the node's shape from its parameters.

        :raises DimensionMismatchError: If the parameter shapes are inconsistent
            with the family, with the declared target range, or with observed data
        """
        param_shapes = {
            paramname: expression.shape(shape_of)
            for paramname, expression in self._expressions.items()
        }
        for paramname, shape in param_shapes.items():
            expected_ndim = 1 if paramname in self.VECTOR_PARAMS else 0
            if len(shape) != expected_ndim:
                raise DimensionMismatchError(
                    f"Parameter '{paramname}' of '{self.name}' must be "
                    f"{'a vector' if expected_ndim else 'a scalar'}; got shape {shape}"
                )

        shape = self._shape_from_params(param_shapes)
        if self._declared_shape is not None and self._declared_shape != shape:
            raise DimensionMismatchError(
                f"'{self.name}' is declared with shape {self._declared_shape} but its "
                f"parameters imply shape {shape}"
            )
        if self._observed_value is not None and np.shape(self._observed_value) != shape:
            raise DimensionMismatchError(
                f"Data bound to '{self.name}' has shape "
                f"{np.shape(self._observed_value)} but the node has shape {shape}"
            )
        self._shape = shape

    def _shape_from_params(
        self, param_shapes: dict[str, tuple[int, ...]]
    ) -> tuple[int, ...]:
        """Shape of the node's value given the shapes of its parameters."""
        return ()

    @typeguard_ignore
    def validate_parameters(self, params: dict[str, "custom_types.SampleType"]) -> None:
        """Check that every parameter lies within its valid domain.

        :param params: Parameter name to value mapping
        :type params: dict[str, custom_types.SampleType]

        :raises InvalidParameterError: If any parameter is outside its domain. A
            non-positive variance or precision is never silently turned into NaN.
        """
        for paramname, value in params.items():
            array = np.asarray(value, dtype=float)

            def fail(requirement: str):
                raise InvalidParameterError(
                    f"Parameter '{paramname}' of '{self.name}' ({self.FAMILY}) "
                    f"{requirement}; got {value}",
                    node=self.name,
                    parameter=paramname,
                    value=value,
                )

            if not np.all(np.isfinite(array)):
                fail("must be finite")
            if paramname in self.POSITIVE_PARAMS and not np.all(array > 0):
                fail("must be positive")
            if paramname in self.PROBABILITY_PARAMS and not np.all(
                (array >= 0) & (array <= 1)
            ):
                fail("must lie in [0, 1]")
            if paramname in self.WEIGHT_PARAMS and (
                np.any(array < 0) or array.sum() <= 0
            ):
                fail("must be non-negative with a positive sum")
            if paramname in self.COUNT_PARAMS and not np.all(
                (array >= 0) & (array == np.rint(array))
            ):
                fail("must be a non-negative integer")

    def scipy_kwargs(
        self, params: dict[str, "custom_types.SampleType"]
    ) -> dict[str, "custom_types.SampleType"]:
        """Convert BUGS-parametrized values to keyword arguments for
        :py:attr:`SCIPY_DIST`.
        """
        return {
            self.BUGS_TO_SCIPY_NAMES[name]: self.BUGS_TO_SCIPY_TRANSFORMS.get(
                name, np.asarray
            )(value)
            for name, value in params.items()
        }

    @typeguard_ignore
    def in_support(
        self,
        value: "custom_types.SampleType",
        params: dict[str, "custom_types.SampleType"],
    ) -> bool:
        """Whether ``value`` lies in the support of the distribution with the given
        parameters. Non-finite values never do.
        """
        array = np.asarray(value, dtype=float)
        if array.shape != self.shape or not np.all(np.isfinite(array)):
            return False
        if self.IS_DISCRETE and not np.all(array == np.rint(array)):
            return False
        if self.LOWER_BOUND is not None:
            if self.LOWER_INCLUSIVE and not np.all(array >= self.LOWER_BOUND):
                return False
            if not self.LOWER_INCLUSIVE and not np.all(array > self.LOWER_BOUND):
                return False
        if self.UPPER_BOUND is not None and not np.all(array <= self.UPPER_BOUND):
            return False
        return True

    def _log_density(
        self,
        value: "custom_types.SampleType",
        params: dict[str, "custom_types.SampleType"],
    ) -> "custom_types.SampleType":
        """Log density of a value known to be in the support. The default evaluates
        the SciPy distribution.
        """
        kwargs = self.scipy_kwargs(params)
        if self.IS_DISCRETE:
            return self.SCIPY_DIST.logpmf(value, **kwargs)
        return self.SCIPY_DIST.logpdf(value, **kwargs)

    @typeguard_ignore
    def log_prob(
        self,
        value: "custom_types.SampleType",
        params: dict[str, "custom_types.SampleType"],
    ) -> float:
        """Log probability (density or mass) of ``value``.

        :param value: Value to evaluate
        :type value: custom_types.SampleType
        :param params: Parameter name to value mapping
        :type params: dict[str, custom_types.SampleType]

        :returns: The log probability, or ``-inf`` outside the support
        :rtype: float

        :raises InvalidParameterError: If any parameter is outside its domain
        """
        self.validate_parameters(params)
        if not self.in_support(value, params):
            return -np.inf
        with np.errstate(divide="ignore", invalid="ignore"):
            log_prob = float(np.sum(self._log_density(value, params)))
        return -np.inf if np.isnan(log_prob) else log_prob

    @typeguard_ignore
    def log_density(
        self,
        lookup: "custom_types.ValueLookup",
        value: Optional["custom_types.SampleType"] = None,
    ) -> float:
        """Log probability of the node's current value (or of ``value``) given the
        current values of its parents.
        """
        if value is None:
            value = lookup(self.name)
        return self.log_prob(value, self.evaluate_expressions(lookup))

    def draw_value(
        self, params: dict[str, "custom_types.SampleType"], rng: np.random.Generator
    ) -> "custom_types.SampleType":
        """Draw a value from the distribution with the given parameters.

        :raises InvalidParameterError: If any parameter is outside its domain
        """
        self.validate_parameters(params)
        return self._coerce(
            self.SCIPY_DIST.rvs(**self.scipy_kwargs(params), random_state=rng)
        )

    def draw(self, lookup, rng):
        return self.draw_value(self.evaluate_expressions(lookup), rng)

    def typical_value(
        self, params: dict[str, "custom_types.SampleType"]
    ) -> "custom_types.SampleType":
        """A value in the support used when random initialization fails. Defaults to
        the mean of the distribution.
        """
        self.validate_parameters(params)
        mean = self.SCIPY_DIST.mean(**self.scipy_kwargs(params))
        if self.IS_DISCRETE:
            mean = np.floor(mean)
        return self._coerce(mean)

    def support_values(
        self, params: dict[str, "custom_types.SampleType"]
    ) -> Optional[npt.NDArray]:
        """All values in the support, for families whose support is finite. None
        otherwise.
        """
        return None

    def __str__(self) -> str:
        args = ", ".join(str(self._expressions[name]) for name in self.PARAM_NAMES)
        return f"{self.name} ~ {self.FAMILY}({args})"

    @property
    def kind(self) -> "custom_types.NodeKind":
        return "stochastic" if self._observed_value is None else "observed"

    @property
    def observed_value(self) -> Optional["custom_types.SampleType"]:
        """Value fixed by data, or None for latent nodes."""
        return self._observed_value


class ContinuousDistribution(Parameter):
    """Base class for parameters represented by continuous distributions."""


class DiscreteDistribution(Parameter):
    """Base class for parameters represented by discrete distributions."""

    IS_DISCRETE = True
    LOWER_BOUND = 0


class Normal(ContinuousDistribution):
    r"""Normal distribution parametrized by mean and precision (``dnorm``).

    :param mu: Mean
    :param tau: Precision, the reciprocal of the variance

    Mathematical Definition:
        .. math::
            P(x | \mu, \tau) = \sqrt{\frac{\tau}{2\pi}}
            \exp\left(-\frac{\tau (x-\mu)^2}{2}\right)
    """

    FAMILY = "dnorm"
    PARAM_NAMES = ("mu", "tau")
    POSITIVE_PARAMS = {"tau"}
    SCIPY_DIST = stats.norm
    BUGS_TO_SCIPY_NAMES = {"mu": "loc", "tau": "scale"}
    BUGS_TO_SCIPY_TRANSFORMS = {"tau": _inverse_sqrt_transform}

    def _log_density(self, value, params):
        tau = params["tau"]
        return 0.5 * (np.log(tau) - _LOG_2PI) - 0.5 * tau * (value - params["mu"]) ** 2

    def typical_value(self, params):
        self.validate_parameters(params)
        return float(params["mu"])


class LogNormal(ContinuousDistribution):
    r"""Log-normal distribution (``dlnorm``). The log of the variable is Normal with
    mean ``mu`` and precision ``tau``.

    Mathematical Definition:
        .. math::
            P(x | \mu, \tau) = \frac{1}{x}\sqrt{\frac{\tau}{2\pi}}
            \exp\left(-\frac{\tau (\log x-\mu)^2}{2}\right)
    """

    FAMILY = "dlnorm"
    PARAM_NAMES = ("mu", "tau")
    POSITIVE_PARAMS = {"tau"}
    LOWER_BOUND = 0.0
    LOWER_INCLUSIVE = False
    SCIPY_DIST = stats.lognorm
    BUGS_TO_SCIPY_NAMES = {"mu": "scale", "tau": "s"}
    BUGS_TO_SCIPY_TRANSFORMS = {"mu": _exp_transform, "tau": _inverse_sqrt_transform}

    def _log_density(self, value, params):
        tau = params["tau"]
        log_value = np.log(value)
        return (
            0.5 * (np.log(tau) - _LOG_2PI)
            - log_value
            - 0.5 * tau * (log_value - params["mu"]) ** 2
        )


class StudentT(ContinuousDistribution):
    """Student-t distribution with location ``mu``, precision ``tau`` and ``k``
    degrees of freedom (``dt``).
    """

    FAMILY = "dt"
    PARAM_NAMES = ("mu", "tau", "k")
    POSITIVE_PARAMS = {"tau", "k"}
    SCIPY_DIST = stats.t
    BUGS_TO_SCIPY_NAMES = {"mu": "loc", "tau": "scale", "k": "df"}
    BUGS_TO_SCIPY_TRANSFORMS = {"tau": _inverse_sqrt_transform}

    def typical_value(self, params):
        self.validate_parameters(params)
        return float(params["mu"])


class Uniform(ContinuousDistribution):
    """Continuous uniform distribution on ``[lower, upper]`` (``dunif``)."""

    FAMILY = "dunif"
    PARAM_NAMES = ("lower", "upper")
    SCIPY_DIST = stats.uniform

    def validate_parameters(self, params):
        super().validate_parameters(params)
        if not params["lower"] < params["upper"]:
            raise InvalidParameterError(
                f"Lower bound of '{self.name}' must be below its upper bound; got "
                f"{params['lower']} and {params['upper']}",
                node=self.name,
                parameter="lower",
                value=params["lower"],
            )

    def scipy_kwargs(self, params):
        return {"loc": params["lower"], "scale": params["upper"] - params["lower"]}

    def in_support(self, value, params):
        return super().in_support(value, params) and bool(
            params["lower"] <= value <= params["upper"]
        )

    def _log_density(self, value, params):
        return -np.log(params["upper"] - params["lower"])


class Beta(ContinuousDistribution):
    r"""Beta distribution (``dbeta``).

    Mathematical Definition:
        .. math::
            P(x | a, b) = \frac{x^{a-1}(1-x)^{b-1}}{B(a, b)}
    """

    FAMILY = "dbeta"
    PARAM_NAMES = ("a", "b")
    POSITIVE_PARAMS = {"a", "b"}
    LOWER_BOUND = 0.0
    UPPER_BOUND = 1.0
    SCIPY_DIST = stats.beta
    BUGS_TO_SCIPY_NAMES = {"a": "a", "b": "b"}

    def _log_density(self, value, params):
        a, b = params["a"], params["b"]
        return (
            special.xlogy(a - 1, value)
            + special.xlog1py(b - 1, -value)
            - special.betaln(a, b)
        )


class Gamma(ContinuousDistribution):
    r"""Gamma distribution parametrized by shape and rate (``dgamma``).

    Mathematical Definition:
        .. math::
            P(x | r, \lambda) = \frac{\lambda^r x^{r-1} e^{-\lambda x}}{\Gamma(r)}
    """

    FAMILY = "dgamma"
    PARAM_NAMES = ("shape", "rate")
    POSITIVE_PARAMS = {"shape", "rate"}
    LOWER_BOUND = 0.0
    LOWER_INCLUSIVE = False
    SCIPY_DIST = stats.gamma
    BUGS_TO_SCIPY_NAMES = {"shape": "a", "rate": "scale"}
    BUGS_TO_SCIPY_TRANSFORMS = {"rate": _inverse_transform}

    def _log_density(self, value, params):
        shape, rate = params["shape"], params["rate"]
        return (
            shape * np.log(rate)
            - special.gammaln(shape)
            + (shape - 1) * np.log(value)
            - rate * value
        )


class Exponential(ContinuousDistribution):
    """Exponential distribution parametrized by rate (``dexp``)."""

    FAMILY = "dexp"
    PARAM_NAMES = ("rate",)
    POSITIVE_PARAMS = {"rate"}
    LOWER_BOUND = 0.0
    SCIPY_DIST = stats.expon
    BUGS_TO_SCIPY_NAMES = {"rate": "scale"}
    BUGS_TO_SCIPY_TRANSFORMS = {"rate": _inverse_transform}

    def _log_density(self, value, params):
        return np.log(params["rate"]) - params["rate"] * value


class Dirichlet(ContinuousDistribution):
    r"""Dirichlet distribution over the probability simplex (``ddirch``).

    :param alpha: Vector of positive concentrations. Its length sets the length
        of the node.

    Mathematical Definition:
        .. math::
            P(\mathbf{x} | \boldsymbol{\alpha}) =
            \frac{\Gamma(\sum_k \alpha_k)}{\prod_k \Gamma(\alpha_k)}
            \prod_k x_k^{\alpha_k - 1}

    Draws are closed so that the last component equals one minus the sum of the
    others.
    """

    FAMILY = "ddirch"
    ALIASES = ("ddirich",)
    PARAM_NAMES = ("alpha",)
    POSITIVE_PARAMS = {"alpha"}
    VECTOR_PARAMS = {"alpha"}
    LOWER_BOUND = 0.0
    UPPER_BOUND = 1.0
    IS_SIMPLEX = True
    IS_MULTIVARIATE = True
    SCIPY_DIST = stats.dirichlet
    BUGS_TO_SCIPY_NAMES = {"alpha": "alpha"}

    SIMPLEX_TOLERANCE: float = 1e-8
    """Maximum allowed deviation of the sum of a value from 1."""

    def _shape_from_params(self, param_shapes):
        return param_shapes["alpha"]

    def in_support(self, value, params):
        return (
            super().in_support(value, params)
            and abs(float(np.sum(value)) - 1.0) <= self.SIMPLEX_TOLERANCE
        )

    def _log_density(self, value, params):
        alpha = np.asarray(params["alpha"], dtype=float)
        return (
            special.gammaln(alpha.sum())
            - special.gammaln(alpha).sum()
            + special.xlogy(alpha - 1, value).sum()
        )

    def draw_value(self, params, rng):
        self.validate_parameters(params)
        alpha = np.asarray(params["alpha"], dtype=float)
        return utils.close_simplex(rng.dirichlet(alpha))

    def typical_value(self, params):
        self.validate_parameters(params)
        return utils.close_simplex(params["alpha"])


class Bernoulli(DiscreteDistribution):
    """Bernoulli distribution with success probability ``p`` (``dbern``)."""

    FAMILY = "dbern"
    PARAM_NAMES = ("p",)
    PROBABILITY_PARAMS = {"p"}
    UPPER_BOUND = 1
    SCIPY_DIST = stats.bernoulli
    BUGS_TO_SCIPY_NAMES = {"p": "p"}

    def _log_density(self, value, params):
        p = params["p"]
        return special.xlogy(value, p) + special.xlog1py(1 - value, -p)

    def support_values(self, params):
        return np.array([0, 1])


class Binomial(DiscreteDistribution):
    """Binomial distribution with success probability ``p`` and ``n`` trials
    (``dbin``).
    """

    FAMILY = "dbin"
    PARAM_NAMES = ("p", "n")
    PROBABILITY_PARAMS = {"p"}
    COUNT_PARAMS = {"n"}
    SCIPY_DIST = stats.binom
    BUGS_TO_SCIPY_NAMES = {"p": "p", "n": "n"}

    def in_support(self, value, params):
        return super().in_support(value, params) and bool(value <= params["n"])

    def _log_density(self, value, params):
        n, p = params["n"], params["p"]
        return (
            special.gammaln(n + 1)
            - special.gammaln(value + 1)
            - special.gammaln(n - value + 1)
            + special.xlogy(value, p)
            + special.xlog1py(n - value, -p)
        )

    def support_values(self, params):
        return np.arange(int(params["n"]) + 1)


class Poisson(DiscreteDistribution):
    """Poisson distribution with mean ``lambda`` (``dpois``)."""

    FAMILY = "dpois"
    PARAM_NAMES = ("lambda",)
    POSITIVE_PARAMS = {"lambda"}
    SCIPY_DIST = stats.poisson
    BUGS_TO_SCIPY_NAMES = {"lambda": "mu"}

    def _log_density(self, value, params):
        rate = params["lambda"]
        return value * np.log(rate) - rate - special.gammaln(value + 1)


class Categorical(DiscreteDistribution):
    """Categorical distribution over ``1..K`` with weights ``p`` (``dcat``). The
    weights are normalized before use.
    """

    FAMILY = "dcat"
    PARAM_NAMES = ("p",)
    WEIGHT_PARAMS = {"p"}
    VECTOR_PARAMS = {"p"}
    LOWER_BOUND = 1

    def in_support(self, value, params):
        return super().in_support(value, params) and bool(
            value <= len(params["p"])
        )

    def _log_density(self, value, params):
        weights = np.asarray(params["p"], dtype=float)
        return np.log(weights[int(value) - 1]) - np.log(weights.sum())

    def draw_value(self, params, rng):
        self.validate_parameters(params)
        weights = np.asarray(params["p"], dtype=float)
        return int(rng.choice(len(weights), p=weights / weights.sum())) + 1

    def typical_value(self, params):
        self.validate_parameters(params)
        return int(np.argmax(params["p"])) + 1

    def support_values(self, params):
        return np.arange(1, len(params["p"]) + 1)


class Multinomial(DiscreteDistribution):
    """Multinomial distribution of ``n`` draws over categories weighted by ``p``
    (``dmulti``).
    """

    FAMILY = "dmulti"
    PARAM_NAMES = ("p", "n")
    WEIGHT_PARAMS = {"p"}
    COUNT_PARAMS = {"n"}
    VECTOR_PARAMS = {"p"}
    IS_MULTIVARIATE = True
    SCIPY_DIST = stats.multinomial

    def _shape_from_params(self, param_shapes):
        return param_shapes["p"]

    def scipy_kwargs(self, params):
        weights = np.asarray(params["p"], dtype=float)
        return {"n": int(params["n"]), "p": weights / weights.sum()}

    def in_support(self, value, params):
        return super().in_support(value, params) and bool(
            np.sum(value) == params["n"]
        )

    def draw_value(self, params, rng):
        self.validate_parameters(params)
        kwargs = self.scipy_kwargs(params)
        return rng.multinomial(kwargs["n"], kwargs["p"]).astype(np.int64)

    def typical_value(self, params):
        draw = np.floor(self.SCIPY_DIST.mean(**self.scipy_kwargs(params)))
        draw[np.argmax(params["p"])] += int(params["n"]) - draw.sum()
        return draw.astype(np.int64)
