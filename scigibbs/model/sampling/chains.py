# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Running independent Markov chains over a compiled graph.

This module holds the Chain Orchestrator. Each chain owns a
:py:class:`ChainState` (its current values, its random number generator and the
adaptive state of its Metropolis-type kernels) and advances it sweep by sweep. A
sweep updates every latent stochastic node exactly once, in topological order,
using the kernel cached on the node.

Chains can run serially, in threads, or in separate processes. They share nothing
but the read-only graph, so results are bit-identical across backends for a given
seed. Cancellation is cooperative and checked between sweeps only, so partial
traces always end on a completed sweep.

Failure handling:

    - :py:class:`~scigibbs.exceptions.InvalidParameterError` aborts only the chain
      that raised it. The chain is reported in
      :py:attr:`~scigibbs.model.results.mcmc.SampleResults.failed_chains` and a
      :py:class:`~scigibbs.exceptions.ChainFailureWarning` is issued.
    - :py:class:`~scigibbs.exceptions.SamplingDivergedError` is fatal: the other
      chains are cancelled and the error is re-raised with the node, iteration and
      chain that diverged.
    - If every chain fails, the first failure is raised.
"""

from __future__ import annotations

import functools
import multiprocessing
import threading
import warnings

from concurrent.futures import (
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
)
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, TYPE_CHECKING

import numpy as np
import numpy.typing as npt

from tqdm import tqdm
from typeguard import typeguard_ignore

from scigibbs import defaults, utils
from scigibbs.exceptions import (
    ChainFailureWarning,
    DimensionMismatchError,
    InvalidParameterError,
    SamplingDivergedError,
    UnknownSymbolError,
)
from scigibbs.model.results.mcmc import SampleResults

if TYPE_CHECKING:
    from scigibbs import custom_types
    from scigibbs.model.components.parameters import Parameter
    from scigibbs.model.graph import Graph
    from scigibbs.model.sampling.kernels import AdaptiveState


class ChainState:
    """Mutable state of one chain.

    :param graph: The compiled graph
    :type graph: Graph
    :param rng: The chain's random number generator
    :type rng: np.random.Generator
    :param chain: Index of the chain
    :type chain: int

    Only latent stochastic nodes hold values in the state. Observed nodes and data
    read their fixed values. Deterministic nodes are evaluated from their parents
    on first read and cached until a stochastic value changes through
    :py:meth:`set_value`.
    """

    def __init__(self, graph: "Graph", rng: np.random.Generator, chain: int = 0):
        self.graph = graph
        self.rng = rng
        self.chain = chain
        self.values: dict[str, "custom_types.SampleType"] = {}
        self.adapting: bool = True
        self.adaptive: dict[str, Optional["AdaptiveState"]] = {
            name: graph[name].kernel.new_state() for name in graph.sampling_order
        }
        self._deterministic_cache: dict[str, "custom_types.SampleType"] = {}

    @typeguard_ignore
    def value(
        self,
        name: str,
        overrides: Optional[Mapping[str, "custom_types.SampleType"]] = None,
    ) -> "custom_types.SampleType":
        """Current value of a node.

        Lookups with overrides bypass the deterministic cache and never fill it.

        :param name: Name of the node
        :type name: str
        :param overrides: Temporary values replacing the state's values for some
            nodes (e.g., a proposed value). Defaults to None.
        :type overrides: Optional[Mapping[str, custom_types.SampleType]]
        """
        if overrides:
            if name in overrides:
                return overrides[name]
        elif name in self._deterministic_cache:
            return self._deterministic_cache[name]

        node = self.graph[name]
        kind = node.kind
        if kind == "stochastic":
            return self.values[name]
        if kind == "observed":
            return node.observed_value
        if kind == "data":
            return node.value

        value = node.value(self.lookup(overrides))
        if not overrides:
            self._deterministic_cache[name] = value
        return value

    @typeguard_ignore
    def lookup(
        self, overrides: Optional[Mapping[str, "custom_types.SampleType"]] = None
    ) -> "custom_types.ValueLookup":
        """A function mapping node names to values, with optional overrides."""
        return functools.partial(self.value, overrides=overrides)

    def set_value(self, name: str, value: "custom_types.SampleType") -> None:
        """Store a new value for a latent node and drop cached deterministic
        values.
        """
        self.values[name] = value
        self._deterministic_cache.clear()

    def initialize(
        self, inits: Optional["custom_types.InitValues"] = None
    ) -> None:
        """Set initial values for every latent node, in topological order.

        Nodes with an explicit initial value take it. All others are drawn from
        their prior given the already-initialized nodes. A draw with zero prior
        density is redrawn up to
        :py:data:`~scigibbs.defaults.DEFAULT_INIT_ATTEMPTS` times before falling
        back to the family's typical value.

        :param inits: Initial values keyed by node or variable name. Defaults to
            None.
        :type inits: Optional[custom_types.InitValues]

        :raises UnknownSymbolError: If a name is not a latent node or variable
        :raises DimensionMismatchError: If a value has the wrong shape
        :raises InvalidParameterError: If a value lies outside the support of its
            node
        """
        explicit = expand_inits(self.graph, inits or {})
        for name in self.graph.sampling_order:
            node = self.graph[name]
            params = node.evaluate_expressions(self.lookup())
            if name in explicit:
                self.set_value(name, _checked_init(node, explicit[name], params))
                continue

            for _ in range(defaults.DEFAULT_INIT_ATTEMPTS):
                value = node.draw_value(params, self.rng)
                if node.log_prob(value, params) > -np.inf:
                    break
            else:
                value = node.typical_value(params)
            self.set_value(name, value)

    @property
    def acceptance_rates(self) -> dict[str, float]:
        """Post-warm-up acceptance rate of every Metropolis-type node."""
        return {
            name: adaptive.acceptance_rate
            for name, adaptive in self.adaptive.items()
            if adaptive is not None
        }


def expand_inits(
    graph: "Graph", inits: "custom_types.InitValues"
) -> dict[str, "custom_types.SampleType"]:
    """Map initial values keyed by node or variable name onto latent node names.
    Observed elements of partially observed variables are skipped.

    :raises UnknownSymbolError: If a name is not a latent node or variable
    :raises DimensionMismatchError: If a variable's array is too small for its
        elements
    """
    variables = graph.variables
    expanded = {}
    for key, value in inits.items():
        if key in graph and graph[key].kind == "stochastic":
            expanded[key] = value
            continue
        if key not in variables or key in graph:
            raise UnknownSymbolError(
                f"Initial value given for '{key}', which is not a latent node"
            )

        array = np.asarray(value)
        for name in variables[key].node_names:
            if graph[name].kind != "stochastic":
                continue
            index = tuple(i - 1 for i in graph[name].element_index)
            if array.ndim < len(index) or any(
                i >= dim for i, dim in zip(index, array.shape)
            ):
                raise DimensionMismatchError(
                    f"Initial value for '{key}' has shape {array.shape}, which does "
                    f"not contain '{name}'"
                )
            expanded[name] = array[index]

    return expanded


def _checked_init(
    node: "Parameter",
    value: Any,
    params: dict[str, "custom_types.SampleType"],
) -> "custom_types.SampleType":
    """Validate and coerce an explicit initial value."""
    if np.shape(value) != node.shape:
        raise DimensionMismatchError(
            f"Initial value for '{node.name}' has shape {np.shape(value)}; expected "
            f"{node.shape}"
        )
    value = node._coerce(value)  # pylint: disable=protected-access
    if node.IS_SIMPLEX and node.in_support(value, params):
        value = utils.close_simplex(value)
    if node.log_prob(value, params) == -np.inf:
        raise InvalidParameterError(
            f"Initial value {value} for '{node.name}' lies outside the support of "
            f"{node.FAMILY}",
            node=node.name,
            value=value,
        )
    return value


@typeguard_ignore
def _check_value(
    node: "Parameter",
    value: "custom_types.SampleType",
    state: ChainState,
    iteration: int,
) -> None:
    """Raise a SamplingDivergedError if a freshly sampled value is non-finite or
    outside the support of its node.
    """
    if not np.all(np.isfinite(np.asarray(value, dtype=float))):
        raise SamplingDivergedError(
            f"Sampled a non-finite value ({value})",
            node=node.name,
            iteration=iteration,
            chain=state.chain,
        )
    if not node.in_support(value, node.evaluate_expressions(state.lookup())):
        raise SamplingDivergedError(
            f"Sampled a value outside the support of {node.FAMILY} ({value})",
            node=node.name,
            iteration=iteration,
            chain=state.chain,
        )


@dataclass
class ChainResult:
    """Outcome of one chain.

    :ivar chain: Index of the chain
    :ivar traces: Retained draws per monitored node, ``(n_retained, *shape)``
    :ivar acceptance_rates: Post-warm-up acceptance rate per Metropolis-type node
    :ivar completed: Number of sweeps completed
    :ivar cancelled: Whether the chain stopped early because of a cancellation
    :ivar error: The error that aborted the chain, if any
    """

    chain: int
    traces: dict[str, npt.NDArray] = field(default_factory=dict)
    acceptance_rates: dict[str, float] = field(default_factory=dict)
    completed: int = 0
    cancelled: bool = False
    error: Optional[InvalidParameterError] = None

    @property
    def n_retained(self) -> int:
        """Number of retained draws."""
        return min((len(trace) for trace in self.traces.values()), default=0)


def run_chain(
    graph: "Graph",
    chain: int,
    rng: np.random.Generator,
    inits: Optional["custom_types.InitValues"],
    n_iterations: int,
    burn_in: int,
    thin: int,
    monitors: Sequence[str],
    cancel_event: Optional[Any] = None,
    progress_bar: bool = False,
) -> ChainResult:
    """Run a single chain to completion, cancellation, or failure.

    Defined at module level so that it can be sent to worker processes.

    :param graph: The compiled graph
    :type graph: Graph
    :param chain: Index of the chain
    :type chain: int
    :param rng: The chain's random number generator
    :type rng: np.random.Generator
    :param inits: Explicit initial values, or None to draw from the prior
    :type inits: Optional[custom_types.InitValues]
    :param n_iterations: Total number of sweeps
    :type n_iterations: int
    :param burn_in: Number of initial sweeps discarded; kernels adapt during these
    :type burn_in: int
    :param thin: Retain one sweep out of every ``thin`` after burn-in
    :type thin: int
    :param monitors: Names of the nodes to record
    :type monitors: Sequence[str]
    :param cancel_event: Event checked before every sweep. Defaults to None.
    :type cancel_event: Optional[threading.Event]
    :param progress_bar: Whether to display a progress bar. Defaults to False.
    :type progress_bar: bool

    :returns: The chain's traces and statistics. If an InvalidParameterError
        aborted the chain, it is stored in ``error``.
    :rtype: ChainResult

    :raises SamplingDivergedError: If a sampled value is non-finite or outside its
        support
    """
    result = ChainResult(chain=chain)
    recorded: dict[str, list] = {name: [] for name in monitors}
    state = ChainState(graph, rng, chain)

    try:
        state.initialize(inits)
        with tqdm(
            total=n_iterations,
            desc=f"Chain {chain}",
            position=chain,
            leave=True,
            disable=not progress_bar,
        ) as pbar:
            for iteration in range(1, n_iterations + 1):
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    break

                state.adapting = iteration <= burn_in
                for name in graph.sampling_order:
                    node = graph[name]
                    value = node.kernel.update(node, state, graph, rng)
                    _check_value(node, value, state, iteration)
                    state.set_value(name, value)

                if iteration > burn_in and (iteration - burn_in) % thin == 0:
                    for name in monitors:
                        recorded[name].append(np.array(state.value(name)))

                result.completed = iteration
                pbar.update(1)

    except InvalidParameterError as error:
        result.error = error

    result.traces = {
        name: (
            np.stack(values)
            if values
            else np.empty((0,) + graph[name].shape)
        )
        for name, values in recorded.items()
    }
    result.acceptance_rates = state.acceptance_rates
    return result


@dataclass
class RunConfig:
    """Configuration of a sampling run.

    :ivar n_chains: Number of independent chains
    :ivar n_iterations: Total sweeps per chain, burn-in included
    :ivar burn_in: Initial sweeps discarded from every chain
    :ivar thin: Retain one sweep out of every ``thin`` after burn-in
    :ivar inits: None or "prior" to draw initial values from the prior, one mapping
        shared by every chain, or one mapping per chain
    :ivar seed: Root seed for all chains. Drawn from :py:data:`scigibbs.RNG` if
        None.
    :ivar monitors: Names of the nodes or variables to record. Defaults to every
        latent stochastic and deterministic node.
    :ivar backend: "serial", "thread", "process", or "auto" (processes when there
        is more than one chain)
    :ivar n_workers: Maximum number of workers. Defaults to one per chain.
    :ivar progress_bar: Whether to display one progress bar per chain

    :raises ValueError: If the configuration is invalid
    """

    n_chains: int = defaults.DEFAULT_N_CHAINS
    n_iterations: int = defaults.DEFAULT_N_ITERATIONS
    burn_in: int = defaults.DEFAULT_BURN_IN
    thin: int = defaults.DEFAULT_THIN
    inits: "custom_types.InitPolicy" = None
    seed: Optional[int] = None
    monitors: Optional[Sequence[str]] = None
    backend: "custom_types.Backend" = defaults.DEFAULT_BACKEND
    n_workers: Optional[int] = None
    progress_bar: bool = False

    def __post_init__(self):
        if self.n_chains < 1:
            raise ValueError(f"n_chains must be at least 1; got {self.n_chains}")
        if self.n_iterations < 1:
            raise ValueError(
                f"n_iterations must be at least 1; got {self.n_iterations}"
            )
        if not 0 <= self.burn_in < self.n_iterations:
            raise ValueError(
                f"burn_in must be in [0, n_iterations); got {self.burn_in} with "
                f"n_iterations={self.n_iterations}"
            )
        if self.thin < 1:
            raise ValueError(f"thin must be at least 1; got {self.thin}")
        if self.backend not in {"auto", "serial", "thread", "process"}:
            raise ValueError(f"Unknown backend '{self.backend}'")
        if self.n_workers is not None and self.n_workers < 1:
            raise ValueError(f"n_workers must be at least 1; got {self.n_workers}")
        if isinstance(self.inits, str) and self.inits != "prior":
            raise ValueError(f"Unknown initialization policy '{self.inits}'")
        if isinstance(self.inits, Sequence) and not isinstance(self.inits, str):
            if len(self.inits) != self.n_chains:
                raise ValueError(
                    f"Got {len(self.inits)} sets of initial values for "
                    f"{self.n_chains} chains"
                )

    @property
    def chain_inits(self) -> list[Optional["custom_types.InitValues"]]:
        """Explicit initial values for each chain."""
        if self.inits is None or isinstance(self.inits, str):
            return [None] * self.n_chains
        if isinstance(self.inits, Mapping):
            return [self.inits] * self.n_chains
        return list(self.inits)

    @property
    def resolved_backend(self) -> str:
        """The backend actually used."""
        if self.backend == "auto":
            return "process" if self.n_chains > 1 else "serial"
        return self.backend

    @property
    def n_retained(self) -> int:
        """Number of draws retained by a chain that completes."""
        return (self.n_iterations - self.burn_in) // self.thin


class ChainOrchestrator:
    """Runs the chains of one sampling run and gathers their results.

    :param graph: The compiled graph
    :type graph: Graph
    :param config: Run configuration
    :type config: RunConfig

    :raises UnknownSymbolError: If a monitored name is not a node or variable

    Example:
        >>> orchestrator = ChainOrchestrator(graph, RunConfig(n_chains=3, seed=1))
        >>> results = orchestrator.run()

    :py:meth:`cancel` may be called from another thread while :py:meth:`run` is
    active.
    """

    def __init__(self, graph: "Graph", config: Optional[RunConfig] = None):
        self.graph = graph
        self.config = config or RunConfig()

        if self.config.monitors is None:
            self.monitors = [
                node.name
                for node in graph
                if node.kind in {"stochastic", "deterministic"}
            ]
        else:
            self.monitors = graph.expand_names(self.config.monitors)

        # Fail fast on bad initial values
        for inits in self.config.chain_inits:
            if inits is not None:
                expand_inits(graph, inits)

        self._cancel_requested = threading.Event()
        self._worker_event: Optional[Any] = None

    def cancel(self) -> None:
        """Ask every chain to stop after its current sweep."""
        self._cancel_requested.set()
        if self._worker_event is not None:
            self._worker_event.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._cancel_requested.is_set()

    def _submit_args(self, chain: int, rng: np.random.Generator, event: Any) -> tuple:
        return (
            self.graph,
            chain,
            rng,
            self.config.chain_inits[chain],
            self.config.n_iterations,
            self.config.burn_in,
            self.config.thin,
            self.monitors,
            event,
            self.config.progress_bar,
        )

    def _run_serial(self, rngs: list[np.random.Generator]) -> list[ChainResult]:
        results = []
        for chain, rng in enumerate(rngs):
            args = self._submit_args(chain, rng, self._cancel_requested)
            results.append(run_chain(*args))
        return results

    def _run_pool(
        self, rngs: list[np.random.Generator], event: Any, process: bool
    ) -> list[ChainResult]:
        executor_class = ProcessPoolExecutor if process else ThreadPoolExecutor
        max_workers = self.config.n_workers or self.config.n_chains

        results: dict[int, ChainResult] = {}
        fatal: Optional[SamplingDivergedError] = None
        with executor_class(max_workers=max_workers) as executor:
            futures: dict[Future, int] = {
                executor.submit(run_chain, *self._submit_args(chain, rng, event)): chain
                for chain, rng in enumerate(rngs)
            }
            for future in as_completed(futures):
                try:
                    results[futures[future]] = future.result()
                except SamplingDivergedError as error:
                    if fatal is None:
                        fatal = error
                    event.set()

        if fatal is not None:
            raise fatal
        return [results[chain] for chain in sorted(results)]

    def run(self) -> SampleResults:
        """Run every chain.

        :returns: Retained draws and run statistics
        :rtype: SampleResults

        :raises SamplingDivergedError: If any chain diverged
        :raises InvalidParameterError: If every chain failed
        """
        rngs = utils.spawn_generators(self.config.seed, self.config.n_chains)
        backend = self.config.resolved_backend

        if backend == "serial":
            results = self._run_serial(rngs)
        elif backend == "thread":
            results = self._run_pool(rngs, self._cancel_requested, process=False)
        else:
            with multiprocessing.Manager() as manager:
                self._worker_event = manager.Event()
                if self._cancel_requested.is_set():
                    self._worker_event.set()
                try:
                    results = self._run_pool(rngs, self._worker_event, process=True)
                finally:
                    self._worker_event = None

        return self._collect(results)

    def _collect(self, results: list[ChainResult]) -> SampleResults:
        """Combine chain results into a SampleResults object."""
        failed = {result.chain: result.error for result in results if result.error}
        succeeded = [result for result in results if result.error is None]
        if not succeeded:
            raise results[0].error

        for chain, error in failed.items():
            warnings.warn(
                f"Chain {chain} failed and was excluded from the results: {error}",
                ChainFailureWarning,
            )

        n_draws = min(result.n_retained for result in succeeded)
        return SampleResults(
            posterior=group_traces(self.graph, self.monitors, succeeded, n_draws),
            chain_ids=[result.chain for result in succeeded],
            failed_chains=failed,
            cancelled=self.cancelled or any(result.cancelled for result in results),
            acceptance_rates={
                result.chain: result.acceptance_rates for result in succeeded
            },
            n_iterations=self.config.n_iterations,
            burn_in=self.config.burn_in,
            thin=self.config.thin,
        )


def group_traces(
    graph: "Graph",
    monitors: Sequence[str],
    results: Sequence[ChainResult],
    n_draws: int,
) -> dict[str, npt.NDArray]:
    """Stack per-chain traces into ``(chains, draws, *shape)`` arrays, regrouping
    the elements of array variables by base name.

    An array variable is regrouped when all of its elements are monitored, its
    element grid is complete, and its elements share a shape. Other element nodes
    keep their own names (e.g., ``y[3]``).
    """
    monitored = set(monitors)
    layouts = graph.variables

    def stack(name: str) -> npt.NDArray:
        return np.stack([result.traces[name][:n_draws] for result in results])

    grouped: dict[str, npt.NDArray] = {}
    for name in monitors:
        base = graph[name].base_name
        layout = layouts.get(base)
        if (
            layout is not None
            and layout.index_shape is not None
            and monitored.issuperset(layout.node_names)
            and len({graph[n].shape for n in layout.node_names}) == 1
        ):
            if base not in grouped:
                elements = np.stack([stack(n) for n in layout.node_names], axis=2)
                grouped[base] = elements.reshape(
                    elements.shape[:2] + layout.index_shape + elements.shape[3:]
                )
            continue
        grouped[name] = stack(name)

    return grouped


def run(
    graph: "Graph",
    n_chains: int = defaults.DEFAULT_N_CHAINS,
    n_iterations: int = defaults.DEFAULT_N_ITERATIONS,
    burn_in: int = defaults.DEFAULT_BURN_IN,
    thin: int = defaults.DEFAULT_THIN,
    init_policy: "custom_types.InitPolicy" = None,
    *,
    seed: Optional[int] = None,
    monitors: Optional[Sequence[str]] = None,
    backend: "custom_types.Backend" = defaults.DEFAULT_BACKEND,
    n_workers: Optional[int] = None,
    progress_bar: bool = False,
) -> SampleResults:
    """Sample from the posterior of a compiled graph.

    :param graph: The compiled graph
    :type graph: Graph
    :param n_chains: Number of independent chains. Defaults to
        :py:data:`~scigibbs.defaults.DEFAULT_N_CHAINS`.
    :type n_chains: int
    :param n_iterations: Total sweeps per chain, burn-in included. Defaults to
        :py:data:`~scigibbs.defaults.DEFAULT_N_ITERATIONS`.
    :type n_iterations: int
    :param burn_in: Initial sweeps discarded from every chain. Defaults to
        :py:data:`~scigibbs.defaults.DEFAULT_BURN_IN`.
    :type burn_in: int
    :param thin: Retain one sweep out of every ``thin`` after burn-in. Defaults to
        :py:data:`~scigibbs.defaults.DEFAULT_THIN`.
    :type thin: int
    :param init_policy: None or "prior" to initialize from the prior, one mapping
        of initial values for all chains, or one mapping per chain. Defaults to
        None.
    :type init_policy: custom_types.InitPolicy
    :param seed: Root seed. Defaults to None.
    :type seed: Optional[int]
    :param monitors: Nodes or variables to record. Defaults to None (all latent
        stochastic and deterministic nodes).
    :type monitors: Optional[Sequence[str]]
    :param backend: Execution backend. Defaults to "auto".
    :type backend: custom_types.Backend
    :param n_workers: Maximum number of workers. Defaults to None.
    :type n_workers: Optional[int]
    :param progress_bar: Whether to display progress bars. Defaults to False.
    :type progress_bar: bool

    :returns: Retained draws and run statistics
    :rtype: SampleResults
    """
    config = RunConfig(
        n_chains=n_chains,
        n_iterations=n_iterations,
        burn_in=burn_in,
        thin=thin,
        inits=init_policy,
        seed=seed,
        monitors=monitors,
        backend=backend,
        n_workers=n_workers,
        progress_bar=progress_bar,
    )
    return ChainOrchestrator(graph, config).run()
