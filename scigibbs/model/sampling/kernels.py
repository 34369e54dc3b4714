# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Update kernels for latent stochastic nodes.

Every latent node of a compiled graph carries one kernel, selected by
:py:func:`scigibbs.model.sampling.classifier.classify`. A kernel draws a new
value for its node from (or targeting) the node's full conditional distribution:
the node's prior times the likelihood of its stochastic children.

Kernels are stateless and shared by every chain. Anything that changes while a
chain runs (the chain's values, its random number generator, and the step sizes
and acceptance counters of Metropolis-type kernels) lives in the chain state
(:py:class:`scigibbs.model.sampling.chains.ChainState`) that is passed to
:py:meth:`Kernel.update`.

Available kernels:

    - :py:class:`ConjugateNormal`: Normal prior, Normal children with means linear
      in the node
    - :py:class:`ConjugateGamma`: Gamma prior on a precision or rate
    - :py:class:`ConjugateBeta`: Beta (or standard Uniform) prior, Bernoulli or
      Binomial children
    - :py:class:`ConjugateDirichlet`: Dirichlet prior, Categorical or Multinomial
      children
    - :py:class:`FiniteEnumeration`: exact full conditional over a finite support
    - :py:class:`MetropolisAdaptive`: random-walk Metropolis with a step size
      adapted during warm-up
    - :py:class:`MetropolisSimplex`: Metropolis-Hastings with a Dirichlet proposal
      for simplex-valued nodes
    - :py:class:`Slice`: univariate stepping-out slice sampler
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

import numpy as np

from scipy import special
from typeguard import typeguard_ignore

from scigibbs import defaults, utils

if TYPE_CHECKING:
    from scigibbs import custom_types
    from scigibbs.model.components.parameters import Parameter
    from scigibbs.model.graph import Graph
    from scigibbs.model.sampling.chains import ChainState


@dataclass
class AdaptiveState:
    """Per-chain, per-node state of a Metropolis-type kernel.

    :ivar scale: Current proposal scale (a step size, or a Dirichlet concentration)
    :ivar adapt_sign: +1 if a larger scale gives larger moves, -1 if it gives
        smaller ones
    :ivar n_proposed: Proposals made after warm-up
    :ivar n_accepted: Proposals accepted after warm-up
    :ivar batch_proposed: Proposals made in the current warm-up batch
    :ivar batch_accepted: Proposals accepted in the current warm-up batch
    """

    scale: float
    adapt_sign: float = 1.0
    n_proposed: int = 0
    n_accepted: int = 0
    batch_proposed: int = 0
    batch_accepted: int = 0

    @typeguard_ignore
    def record(self, accepted: bool, adapting: bool) -> None:
        """Record the outcome of one proposal. While ``adapting``, the scale is
        adjusted after every batch of :py:data:`~scigibbs.defaults.DEFAULT_ADAPT_BATCH`
        proposals whose acceptance rate falls outside
        :py:data:`~scigibbs.defaults.DEFAULT_TARGET_ACCEPT`.
        """
        if not adapting:
            self.n_proposed += 1
            self.n_accepted += int(accepted)
            return

        self.batch_proposed += 1
        self.batch_accepted += int(accepted)
        if self.batch_proposed < defaults.DEFAULT_ADAPT_BATCH:
            return

        rate = self.batch_accepted / self.batch_proposed
        low, high = defaults.DEFAULT_TARGET_ACCEPT
        if not low <= rate <= high:
            self.scale *= np.exp(self.adapt_sign * 2.0 * (rate - (low + high) / 2))
        self.batch_proposed = 0
        self.batch_accepted = 0

    @property
    def acceptance_rate(self) -> float:
        """Acceptance rate after warm-up, or NaN if no proposal was made."""
        if self.n_proposed == 0:
            return np.nan
        return self.n_accepted / self.n_proposed


class Kernel(ABC):
    """Base class of all update kernels."""

    kind: "custom_types.KernelName"
    """Name under which the kernel is selected and reported."""

    @abstractmethod
    def update(
        self,
        node: "Parameter",
        state: "ChainState",
        graph: "Graph",
        rng: np.random.Generator,
    ) -> "custom_types.SampleType":
        """Draw a new value for ``node``.

        :param node: The latent node to update
        :type node: Parameter
        :param state: State of the chain being advanced
        :type state: ChainState
        :param graph: The compiled graph
        :type graph: Graph
        :param rng: The chain's random number generator
        :type rng: np.random.Generator

        :returns: The new value of the node. Metropolis-type kernels return the
            current value when a proposal is rejected.
        :rtype: custom_types.SampleType

        :raises InvalidParameterError: If any parameter evaluated during the update
            falls outside its domain
        """

    def new_state(self) -> Optional[AdaptiveState]:
        """Create the per-chain state of this kernel for one node, or None if the
        kernel keeps none.
        """
        return None

    @staticmethod
    @typeguard_ignore
    def log_conditional(
        node: "Parameter",
        value: "custom_types.SampleType",
        state: "ChainState",
        graph: "Graph",
    ) -> float:
        """Unnormalized log full conditional of ``node`` at ``value``: its log prior
        plus the log likelihood of each of its stochastic children. Values outside
        the prior support return ``-inf`` without evaluating the children.
        """
        lookup = state.lookup({node.name: value})
        log_prob = node.log_density(lookup, value)
        for child_name in node.markov_children:
            if log_prob == -np.inf:
                break
            log_prob += graph[child_name].log_density(lookup)
        return log_prob

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class ConjugateNormal(Kernel):
    r"""Gibbs update of a Normal node whose children are Normal with means linear
    in the node and precisions independent of it.

    The intercept ``a`` and slope ``b`` of each child's mean are found by evaluating
    the mean with the node set to 0 and to 1. The posterior is then Normal with

    .. math::
        \tau = \tau_0 + \sum_c \tau_c b_c^2, \qquad
        \mu = \frac{\tau_0 \mu_0 + \sum_c \tau_c b_c (y_c - a_c)}{\tau}
    """

    kind = "conjugate_normal"

    def update(self, node, state, graph, rng):
        params = node.evaluate_expressions(state.lookup())
        node.validate_parameters(params)
        precision = float(params["tau"])
        weighted_sum = float(params["tau"] * params["mu"])

        at_zero = state.lookup({node.name: 0.0})
        at_one = state.lookup({node.name: 1.0})
        for child_name in node.markov_children:
            child = graph[child_name]
            child.validate_parameters(child.evaluate_expressions(state.lookup()))
            intercept = child["mu"].evaluate(at_zero)
            slope = child["mu"].evaluate(at_one) - intercept
            child_tau = child["tau"].evaluate(at_zero)
            precision += child_tau * slope**2
            weighted_sum += child_tau * slope * (state.value(child_name) - intercept)

        return float(rng.normal(weighted_sum / precision, 1 / np.sqrt(precision)))


class ConjugateGamma(Kernel):
    """Gibbs update of a Gamma node that enters each of its children only as a
    multiple ``k * node`` of a precision or rate parameter.

    Sufficient statistics added to the prior shape and rate, per child family:

    ========== ================== ===================
    Child      Shape              Rate
    ========== ================== ===================
    dnorm      1/2                k (y - mu)^2 / 2
    dlnorm     1/2                k (log y - mu)^2 / 2
    dpois      y                  k
    dexp       1                  k y
    dgamma     s                  k y
    ========== ================== ===================
    """

    kind = "conjugate_gamma"

    #: Child family to the parameter in which the node must appear
    CHILD_PARAMETERS: dict[str, str] = {
        "dnorm": "tau",
        "dlnorm": "tau",
        "dpois": "lambda",
        "dexp": "rate",
        "dgamma": "rate",
    }

    def update(self, node, state, graph, rng):
        params = node.evaluate_expressions(state.lookup())
        node.validate_parameters(params)
        shape = float(params["shape"])
        rate = float(params["rate"])

        at_one = state.lookup({node.name: 1.0})
        for child_name in node.markov_children:
            child = graph[child_name]
            child_params = child.evaluate_expressions(state.lookup())
            child.validate_parameters(child_params)
            multiplier = child[self.CHILD_PARAMETERS[child.FAMILY]].evaluate(at_one)
            value = state.value(child_name)

            if child.FAMILY in {"dnorm", "dlnorm"}:
                centered = (np.log(value) if child.FAMILY == "dlnorm" else value) - (
                    child_params["mu"]
                )
                shape += 0.5
                rate += multiplier * centered**2 / 2
            elif child.FAMILY == "dpois":
                shape += value
                rate += multiplier
            elif child.FAMILY == "dexp":
                shape += 1.0
                rate += multiplier * value
            else:
                shape += child_params["shape"]
                rate += multiplier * value

        return float(rng.gamma(shape, 1 / rate))


class ConjugateBeta(Kernel):
    """Gibbs update of a Beta (or ``dunif(0, 1)``) node used directly as the
    probability of Bernoulli or Binomial children.
    """

    kind = "conjugate_beta"

    def update(self, node, state, graph, rng):
        params = node.evaluate_expressions(state.lookup())
        node.validate_parameters(params)
        if node.FAMILY == "dunif":
            a, b = 1.0, 1.0
        else:
            a, b = float(params["a"]), float(params["b"])

        for child_name in node.markov_children:
            child = graph[child_name]
            child_params = child.evaluate_expressions(state.lookup())
            child.validate_parameters(child_params)
            successes = state.value(child_name)
            trials = child_params["n"] if child.FAMILY == "dbin" else 1
            a += successes
            b += trials - successes

        return float(rng.beta(a, b))


class ConjugateDirichlet(Kernel):
    """Gibbs update of a Dirichlet node used directly as the weights of Categorical
    or Multinomial children. The draw is closed so that its last component is one
    minus the sum of the others.
    """

    kind = "conjugate_dirichlet"

    def update(self, node, state, graph, rng):
        params = node.evaluate_expressions(state.lookup())
        node.validate_parameters(params)
        alpha = np.array(params["alpha"], dtype=float)

        for child_name in node.markov_children:
            child = graph[child_name]
            child.validate_parameters(child.evaluate_expressions(state.lookup()))
            value = state.value(child_name)
            if child.FAMILY == "dcat":
                alpha[int(value) - 1] += 1
            else:
                alpha += np.asarray(value, dtype=float)

        return utils.close_simplex(rng.dirichlet(alpha))


class FiniteEnumeration(Kernel):
    """Exact Gibbs update of a discrete node with finite support, by evaluating the
    full conditional at every value of the support.
    """

    kind = "enumeration"

    def update(self, node, state, graph, rng):
        params = node.evaluate_expressions(state.lookup())
        node.validate_parameters(params)
        support = node.support_values(params)

        log_probs = np.array(
            [self.log_conditional(node, int(value), state, graph) for value in support]
        )
        if np.all(log_probs == -np.inf):
            return state.value(node.name)

        probs = np.exp(log_probs - log_probs.max())
        return int(support[rng.choice(len(support), p=probs / probs.sum())])


class MetropolisAdaptive(Kernel):
    """Random-walk Metropolis for scalar nodes.

    Continuous nodes propose ``x + s * z`` with ``z ~ N(0, 1)``. Discrete nodes
    propose integer steps ``x + round(s * z)``, never zero. The step size ``s`` is
    adapted during warm-up toward the target acceptance window and frozen
    afterwards.
    """

    kind = "metropolis"

    def new_state(self):
        return AdaptiveState(scale=defaults.DEFAULT_INITIAL_STEP)

    def update(self, node, state, graph, rng):
        adaptive = state.adaptive[node.name]
        current = state.value(node.name)

        draw = rng.standard_normal()
        if node.IS_DISCRETE:
            step = int(np.rint(adaptive.scale * draw))
            if step == 0:
                step = 1 if draw >= 0 else -1
            candidate = int(current) + step
        else:
            candidate = float(current + adaptive.scale * draw)

        accepted = False
        candidate_lp = self.log_conditional(node, candidate, state, graph)
        if candidate_lp > -np.inf:
            current_lp = self.log_conditional(node, current, state, graph)
            accepted = bool(
                current_lp == -np.inf
                or np.log(rng.uniform()) < candidate_lp - current_lp
            )

        adaptive.record(accepted, state.adapting)
        return candidate if accepted else current


class MetropolisSimplex(Kernel):
    """Metropolis-Hastings for simplex-valued nodes with a Dirichlet proposal
    centred on the current value, ``x' ~ Dirichlet(c * x)``. The concentration ``c``
    is adapted during warm-up; larger concentrations give smaller moves.
    """

    kind = "metropolis_simplex"

    #: Smallest Dirichlet concentration used in proposals
    MIN_ALPHA: float = 1e-8

    def new_state(self):
        return AdaptiveState(
            scale=defaults.DEFAULT_SIMPLEX_CONCENTRATION, adapt_sign=-1.0
        )

    def _log_proposal(self, to_value, from_value, concentration) -> float:
        alpha = np.maximum(concentration * from_value, self.MIN_ALPHA)
        return float(
            special.gammaln(alpha.sum())
            - special.gammaln(alpha).sum()
            + special.xlogy(alpha - 1, to_value).sum()
        )

    def update(self, node, state, graph, rng):
        adaptive = state.adaptive[node.name]
        current = np.asarray(state.value(node.name), dtype=float)
        concentration = adaptive.scale

        candidate = utils.close_simplex(
            rng.dirichlet(np.maximum(concentration * current, self.MIN_ALPHA))
        )

        accepted = False
        if np.all(candidate > 0):
            candidate_lp = self.log_conditional(node, candidate, state, graph)
            if candidate_lp > -np.inf:
                current_lp = self.log_conditional(node, current, state, graph)
                log_ratio = (
                    candidate_lp
                    - current_lp
                    + self._log_proposal(current, candidate, concentration)
                    - self._log_proposal(candidate, current, concentration)
                )
                accepted = bool(
                    current_lp == -np.inf or np.log(rng.uniform()) < log_ratio
                )

        adaptive.record(accepted, state.adapting)
        return candidate if accepted else current


class Slice(Kernel):
    """Univariate slice sampler with stepping out and shrinkage (Neal, 2003)."""

    kind = "slice"

    def __init__(
        self,
        width: float = defaults.DEFAULT_SLICE_WIDTH,
        max_steps: int = defaults.DEFAULT_SLICE_MAX_STEPS,
    ):
        self.width = width
        self.max_steps = max_steps

    def update(self, node, state, graph, rng):
        current = float(state.value(node.name))

        def log_conditional(value: float) -> float:
            return self.log_conditional(node, value, state, graph)

        threshold = log_conditional(current) - rng.exponential()

        # Step out
        left = current - self.width * rng.uniform()
        right = left + self.width
        left_steps = int(np.floor(self.max_steps * rng.uniform()))
        right_steps = self.max_steps - 1 - left_steps
        while left_steps > 0 and log_conditional(left) > threshold:
            left -= self.width
            left_steps -= 1
        while right_steps > 0 and log_conditional(right) > threshold:
            right += self.width
            right_steps -= 1

        # Shrink
        while right - left > 1e-12:
            candidate = rng.uniform(left, right)
            if log_conditional(candidate) > threshold:
                return candidate
            if candidate < current:
                left = candidate
            else:
                right = candidate
        return current

    def __repr__(self) -> str:
        return f"Slice(width={self.width}, max_steps={self.max_steps})"


KERNELS: dict[str, type[Kernel]] = {
    kernel.kind: kernel
    for kernel in (
        ConjugateNormal,
        ConjugateGamma,
        ConjugateBeta,
        ConjugateDirichlet,
        FiniteEnumeration,
        MetropolisAdaptive,
        MetropolisSimplex,
        Slice,
    )
}
"""Kernel classes keyed by their names."""
