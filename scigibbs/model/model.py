# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""User-facing model class for SciGibbs.

A :py:class:`Model` couples a plain-text model description with its data. The
graph is compiled as soon as the model is created, so every build error surfaces
immediately, and update kernels are selected once and reused by every run.

Example:
    >>> import scigibbs as sg
    >>> model = sg.Model(
    ...     '''
    ...     model {
    ...       theta ~ dnorm(2.3, 1 / 0.5^2)
    ...       x ~ dnorm(theta, 1 / 0.8^2)
    ...     }
    ...     ''',
    ...     data={"x": 3.1},
    ... )
    >>> model.kernels
    {'theta': 'conjugate_normal'}
    >>> results = model.mcmc(n_chains=3, n_iterations=6000, burn_in=1000, seed=1)
    >>> results.summary()
"""

from __future__ import annotations

from typing import Optional, Sequence, TYPE_CHECKING, Union

import numpy as np
import numpy.typing as npt
import xarray as xr

from scigibbs import utils
from scigibbs.defaults import (
    DEFAULT_BACKEND,
    DEFAULT_BURN_IN,
    DEFAULT_N_CHAINS,
    DEFAULT_N_ITERATIONS,
    DEFAULT_THIN,
)
from scigibbs.model.components import abstract_model_component
from scigibbs.model.graph import build
from scigibbs.model.sampling import chains

if TYPE_CHECKING:
    from scigibbs import custom_types
    from scigibbs.model.components.constants import Constant
    from scigibbs.model.components.parameters import Parameter
    from scigibbs.model.components.transformed_parameters import Deterministic
    from scigibbs.model.graph import Graph
    from scigibbs.model.results.mcmc import SampleResults


class Model:
    """A compiled graphical model together with its data.

    :param description: Plain-text model description
    :type description: str
    :param data: Observed data and constants keyed by identifier. ``NaN`` entries
        mark missing observations, which are sampled. Defaults to None.
    :type data: Optional[custom_types.DataBindings]
    :param kernel_overrides: Node or variable names mapped to the kernel that must
        update them. Defaults to None.
    :type kernel_overrides: Optional[dict[str, custom_types.KernelName]]

    :raises GraphBuildError: If the description cannot be compiled with the data
    """

    def __init__(
        self,
        description: str,
        data: Optional["custom_types.DataBindings"] = None,
        kernel_overrides: Optional[dict[str, "custom_types.KernelName"]] = None,
    ):
        self.description = description
        self.data = dict(data or {})
        self.kernel_overrides = dict(kernel_overrides or {})
        self._graph = build(description, self.data, self.kernel_overrides)

    @classmethod
    def from_file(
        cls,
        path: str,
        data: Optional["custom_types.DataBindings"] = None,
        kernel_overrides: Optional[dict[str, "custom_types.KernelName"]] = None,
    ) -> "Model":
        """Build a model from a description stored in a plain-text file.

        :param path: Path to the description
        :type path: str

        See :py:class:`Model` for the remaining arguments.
        """
        with open(path, "r", encoding="utf-8") as f:
            description = f.read()
        return cls(description, data=data, kernel_overrides=kernel_overrides)

    def mcmc(
        self,
        n_chains: "custom_types.Integer" = DEFAULT_N_CHAINS,
        n_iterations: "custom_types.Integer" = DEFAULT_N_ITERATIONS,
        burn_in: "custom_types.Integer" = DEFAULT_BURN_IN,
        thin: "custom_types.Integer" = DEFAULT_THIN,
        inits: "custom_types.InitPolicy" = None,
        seed: Optional["custom_types.Integer"] = None,
        monitors: Optional[Sequence[str]] = None,
        backend: "custom_types.Backend" = DEFAULT_BACKEND,
        n_workers: Optional["custom_types.Integer"] = None,
        progress_bar: bool = True,
    ) -> "SampleResults":
        """Sample from the posterior with independent Gibbs/Metropolis chains.

        :param n_chains: Number of chains. Defaults to 4.
        :type n_chains: custom_types.Integer
        :param n_iterations: Total sweeps per chain, burn-in included. Defaults to
            2000.
        :type n_iterations: custom_types.Integer
        :param burn_in: Sweeps discarded from the start of every chain. Defaults to
            1000.
        :type burn_in: custom_types.Integer
        :param thin: Retain one sweep out of every ``thin`` after burn-in. Defaults
            to 1.
        :type thin: custom_types.Integer
        :param inits: None or "prior" to draw initial values from the prior, one
            mapping of values shared by all chains, or one mapping per chain.
            Defaults to None.
        :type inits: custom_types.InitPolicy
        :param seed: Root seed for every chain's random number generator. Drawn
            from :py:data:`scigibbs.RNG` if None.
        :type seed: Optional[custom_types.Integer]
        :param monitors: Nodes or variables to record. Defaults to None (every
            latent stochastic and deterministic node).
        :type monitors: Optional[Sequence[str]]
        :param backend: "serial", "thread", "process", or "auto". Defaults to
            "auto".
        :type backend: custom_types.Backend
        :param n_workers: Maximum number of workers. Defaults to one per chain.
        :type n_workers: Optional[custom_types.Integer]
        :param progress_bar: Whether to display one progress bar per chain.
            Defaults to True.
        :type progress_bar: bool

        :returns: Retained draws and run statistics
        :rtype: SampleResults

        :raises UnknownSymbolError: If a monitor or initial value names nothing in
            the model
        :raises SamplingDivergedError: If a chain diverges
        :raises InvalidParameterError: If every chain fails
        """
        return chains.run(
            self._graph,
            n_chains=int(n_chains),
            n_iterations=int(n_iterations),
            burn_in=int(burn_in),
            thin=int(thin),
            init_policy=inits,
            seed=None if seed is None else int(seed),
            monitors=monitors,
            backend=backend,
            n_workers=None if n_workers is None else int(n_workers),
            progress_bar=progress_bar,
        )

    def draw(
        self,
        n: "custom_types.Integer",
        *,
        as_xarray: bool = False,
        seed: Optional["custom_types.Integer"] = None,
    ) -> Union[dict[str, npt.NDArray], xr.Dataset]:
        """Draw from the prior predictive distribution of every variable.

        Every node is drawn in topological order from its distribution given its
        parents' draws. Observed nodes are drawn as well; their data is ignored.

        :param n: Number of draws
        :type n: custom_types.Integer
        :param as_xarray: Whether to return the draws as an xarray Dataset.
            Defaults to False.
        :type as_xarray: bool
        :param seed: Random seed. Defaults to None.
        :type seed: Optional[custom_types.Integer]

        :returns: Draws keyed by variable name, each with a leading draw axis.
            Array variables are grouped under their base name.
        :rtype: Union[dict[str, npt.NDArray], xr.Dataset]

        :raises InvalidParameterError: If a drawn parameter falls outside its
            valid domain

        Example:
            >>> draws = model.draw(1000, seed=0)
            >>> draws["theta"].shape
            (1000,)
        """
        rng = utils.spawn_generators(seed, 1)[0]
        names = [node.name for node in self._graph if node.kind != "data"]

        recorded: dict[str, list] = {name: [] for name in names}
        for _ in range(int(n)):
            values = {}
            for node in self._graph:
                values[node.name] = node.draw(values.__getitem__, rng)
            for name in names:
                recorded[name].append(np.array(values[name]))

        traces = {
            name: (
                np.stack(sampled)
                if sampled
                else np.empty((0,) + self._graph[name].shape)
            )
            for name, sampled in recorded.items()
        }
        grouped = chains.group_traces(
            self._graph,
            names,
            [chains.ChainResult(chain=0, traces=traces)],
            int(n),
        )
        draws = {name: values[0] for name, values in grouped.items()}

        if as_xarray:
            return xr.Dataset(
                {
                    name: (
                        ("draw",)
                        + tuple(f"{name}_dim_{i}" for i in range(values.ndim - 1)),
                        values,
                    )
                    for name, values in draws.items()
                }
            )
        return draws

    def __str__(self) -> str:
        """One line per node, in topological order."""
        return "\n".join(str(node) for node in self._graph)

    def __contains__(self, name: str) -> bool:
        """Check whether the model has a node with the given name.

        Example:
            >>> "theta" in model
            True
        """
        return name in self._graph

    def __getitem__(
        self, name: str
    ) -> abstract_model_component.AbstractModelComponent:
        """Retrieve a node by name.

        :raises UnknownSymbolError: If no node has the name
        """
        return self._graph[name]

    @property
    def graph(self) -> "Graph":
        """The compiled graph."""
        return self._graph

    @property
    def parameters(self) -> tuple["Parameter", ...]:
        """Latent stochastic nodes, in topological order."""
        return tuple(self._graph.parameters)

    @property
    def observables(self) -> tuple["Parameter", ...]:
        """Stochastic nodes bound to data."""
        return tuple(self._graph.observables)

    @property
    def transformed_parameters(self) -> tuple["Deterministic", ...]:
        """Deterministic nodes."""
        return tuple(self._graph.deterministics)

    @property
    def constants(self) -> tuple["Constant", ...]:
        """Data nodes referenced by the description."""
        return tuple(self._graph.constants)

    @property
    def kernels(self) -> dict[str, "custom_types.KernelName"]:
        """The kernel kind that updates each latent node."""
        return {
            name: self._graph[name].kernel.kind for name in self._graph.sampling_order
        }
