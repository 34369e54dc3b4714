# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Analysis interface for the draws of a Gibbs/Metropolis sampling run.

:py:class:`SampleResults` wraps an ArviZ ``InferenceData`` object whose posterior
group holds the retained draws of every monitored variable, with dimensions
``chain``, ``draw`` and ``<var>_dim_<k>``. Run metadata (the chains that failed,
whether the run was cancelled, and the run lengths) is stored in the attributes
of the posterior group and per-node acceptance rates in an ``acceptance_rates``
group, so all of it survives a round trip through NetCDF.

Convergence is assessed with the Gelman-Rubin statistic from
:py:mod:`scigibbs.model.results.diagnostics`. ArviZ's own summary statistics and
diagnostics are available through :py:meth:`SampleResults.calculate_summaries`.
"""

from __future__ import annotations

import json
import os
import warnings

from typing import (
    Any,
    Callable,
    Literal,
    Mapping,
    Optional,
    Sequence,
    TYPE_CHECKING,
    Union,
)

import arviz as az
import numpy as np
import numpy.typing as npt
import pandas as pd
import xarray as xr

from scigibbs import defaults
from scigibbs.exceptions import ConvergenceWarning, InsufficientChainsError
from scigibbs.model.results.diagnostics import (
    DiagnosticRecord,
    component_name,
    diagnose_variable,
    summarize,
)

if TYPE_CHECKING:
    from scigibbs import custom_types


class SampleResults:
    """Retained draws of a sampling run together with their diagnostics.

    Instances are normally returned by
    :py:meth:`scigibbs.model.model.Model.mcmc` or
    :py:func:`scigibbs.model.sampling.chains.run` rather than built directly.

    :param posterior: Retained draws keyed by variable name, each of shape
        ``(n_chains, n_draws, *shape)``. Ignored if ``inference_obj`` is given.
    :type posterior: Optional[Mapping[str, npt.NDArray]]
    :param chain_ids: Indices of the chains in ``posterior``, in order. Defaults
        to ``0, 1, ...``.
    :type chain_ids: Optional[Sequence[int]]
    :param failed_chains: Errors of the chains that failed, keyed by chain index
    :type failed_chains: Optional[Mapping[int, Any]]
    :param cancelled: Whether the run was cancelled before completing
    :type cancelled: bool
    :param acceptance_rates: Post-warm-up acceptance rate of every Metropolis-type
        node, keyed by chain index and then node name
    :type acceptance_rates: Optional[Mapping[int, Mapping[str, float]]]
    :param n_iterations: Number of sweeps requested per chain
    :type n_iterations: Optional[int]
    :param burn_in: Number of discarded sweeps per chain
    :type burn_in: Optional[int]
    :param thin: Thinning interval
    :type thin: Optional[int]
    :param inference_obj: A previously built ``InferenceData`` object or the path
        to one saved as NetCDF. Defaults to None.
    :type inference_obj: Optional[Union[az.InferenceData, str]]

    :raises ValueError: If neither ``posterior`` nor ``inference_obj`` is given,
        or if ``inference_obj`` has no posterior group

    Example:
        >>> results = model.mcmc(n_chains=3, seed=1)
        >>> results.traces["theta"].shape
        (3, 1000)
        >>> results.summary()
    """

    def __init__(
        self,
        posterior: Optional[Mapping[str, npt.NDArray]] = None,
        chain_ids: Optional[Sequence[int]] = None,
        failed_chains: Optional[Mapping[int, Any]] = None,
        cancelled: bool = False,
        acceptance_rates: Optional[Mapping[int, Mapping[str, float]]] = None,
        n_iterations: Optional[int] = None,
        burn_in: Optional[int] = None,
        thin: Optional[int] = None,
        inference_obj: Optional[Union[az.InferenceData, str]] = None,
    ):
        # Errors of failed chains are only kept in memory. Loaded results carry
        # their messages instead.
        self._failed_errors = dict(failed_chains or {})

        # If the inference object is a string, we assume it is a NetCDF file
        if isinstance(inference_obj, str):
            inference_obj = az.from_netcdf(filename=inference_obj, engine="h5netcdf")

        # Otherwise we build the object from the draws
        elif inference_obj is None:
            if posterior is None:
                raise ValueError("Either posterior or inference_obj must be provided")
            inference_obj = self._build_inference_obj(
                posterior=posterior,
                chain_ids=chain_ids,
                cancelled=cancelled,
                acceptance_rates=acceptance_rates or {},
                n_iterations=n_iterations,
                burn_in=burn_in,
                thin=thin,
            )

        if not isinstance(inference_obj, az.InferenceData):
            raise ValueError(
                "inference_obj must be either a string or an InferenceData object"
            )
        if "posterior" not in inference_obj.groups():
            raise ValueError("ArviZ object is missing the following groups: posterior")

        self.inference_obj = inference_obj

    def _build_inference_obj(
        self,
        posterior: Mapping[str, npt.NDArray],
        chain_ids: Optional[Sequence[int]],
        cancelled: bool,
        acceptance_rates: Mapping[int, Mapping[str, float]],
        n_iterations: Optional[int],
        burn_in: Optional[int],
        thin: Optional[int],
    ) -> az.InferenceData:
        """Assemble the InferenceData object of a fresh run."""
        draws = {name: np.asarray(values) for name, values in posterior.items()}
        n_chains = next(iter(draws.values())).shape[0] if draws else 0
        chains = np.array(
            range(n_chains) if chain_ids is None else chain_ids, dtype=np.int64
        )

        # Run metadata. NetCDF attributes cannot hold booleans, None, or mappings.
        attrs = {"cancelled": int(cancelled)}
        for attrname, value in (
            ("n_iterations", n_iterations),
            ("burn_in", burn_in),
            ("thin", thin),
        ):
            if value is not None:
                attrs[attrname] = int(value)
        if self._failed_errors:
            attrs["failed_chains"] = json.dumps(
                {str(chain): str(error) for chain, error in self._failed_errors.items()}
            )

        inference_obj = az.from_dict(posterior=draws, coords={"chain": chains})
        inference_obj.posterior.attrs.update(attrs)

        # Acceptance rates of Metropolis-type nodes, one value per chain
        node_names = sorted(
            {name for rates in acceptance_rates.values() for name in rates}
        )
        if node_names:
            rates = xr.Dataset(
                {
                    name: (
                        ("chain",),
                        np.array(
                            [
                                acceptance_rates.get(int(chain), {}).get(name, np.nan)
                                for chain in chains
                            ],
                            dtype=float,
                        ),
                    )
                    for name in node_names
                },
                coords={"chain": chains},
            )
            inference_obj.add_groups({"acceptance_rates": rates})

        return inference_obj

    def save_netcdf(self, filename: str) -> None:
        """Save the ArviZ InferenceData object to NetCDF format.

        :param filename: Path where to save the NetCDF file
        :type filename: str

        Example:
            >>> results.save_netcdf("run.nc")
            >>> # Later: reload with SampleResults.from_disk("run.nc")
        """
        self.inference_obj.to_netcdf(filename, engine="h5netcdf")

    @classmethod
    def from_disk(cls, path: str) -> "SampleResults":
        """Load results previously saved with :py:meth:`save_netcdf`.

        :param path: Path to the NetCDF file
        :type path: str

        :returns: The loaded results. Errors of failed chains are restored as
            their messages.
        :rtype: SampleResults

        :raises FileNotFoundError: If the file does not exist
        """
        # The path to the netcdf file must exist
        if not os.path.exists(path):
            raise FileNotFoundError(
                f"The file {path} does not exist. Please provide a valid path."
            )
        return cls(inference_obj=path)

    def _update_group(
        self, attrname: str, new_group: xr.Dataset, force_del: bool = False
    ) -> None:
        """Update or add a group to the ArviZ InferenceData object.

        :param attrname: Name of the group to update or create
        :type attrname: str
        :param new_group: New dataset to add or use for updating
        :type new_group: xr.Dataset
        :param force_del: Whether to force deletion before adding. Defaults to False.
        :type force_del: bool
        """
        # If the group already exists and we are not forcing a delete, we just update
        # the group.
        if hasattr(self.inference_obj, attrname) and not force_del:
            getattr(self.inference_obj, attrname).update(new_group)
            return

        # Otherwise, if we are forcing a delete, we delete the group before adding
        # the new one
        if force_del and hasattr(self.inference_obj, attrname):
            delattr(self.inference_obj, attrname)
        self.inference_obj.add_groups({attrname: new_group})

    @property
    def posterior(self) -> xr.Dataset:
        """The posterior group of the InferenceData object."""
        return self.inference_obj.posterior  # pylint: disable=no-member

    @property
    def var_names(self) -> list[str]:
        """Names of the monitored variables."""
        return [str(name) for name in self.posterior.data_vars]

    @property
    def traces(self) -> dict[str, npt.NDArray]:
        """Retained draws keyed by variable name, each of shape ``(n_chains,
        n_draws, *shape)``.
        """
        return {name: self.posterior[name].values for name in self.var_names}

    @property
    def chain_ids(self) -> list[int]:
        """Indices of the chains that contributed draws."""
        return [int(chain) for chain in self.posterior.chain.values]

    @property
    def n_draws(self) -> int:
        """Number of retained draws per chain."""
        return int(self.posterior.sizes["draw"])

    @property
    def failed_chains(self) -> dict[int, Any]:
        """Chains excluded from the results, mapped to the error that ended them."""
        if self._failed_errors:
            return dict(self._failed_errors)
        attrs = self.posterior.attrs
        if "failed_chains" not in attrs:
            return {}
        return {
            int(chain): message
            for chain, message in json.loads(attrs["failed_chains"]).items()
        }

    @property
    def cancelled(self) -> bool:
        """Whether the run was cancelled before every chain completed."""
        return bool(self.posterior.attrs.get("cancelled", 0))

    @property
    def acceptance_rates(self) -> dict[int, dict[str, float]]:
        """Post-warm-up acceptance rate of every Metropolis-type node, keyed by
        chain index and then node name.
        """
        rates = {chain: {} for chain in self.chain_ids}
        if "acceptance_rates" not in self.inference_obj.groups():
            return rates
        dataset = self.inference_obj.acceptance_rates  # pylint: disable=no-member
        for name, values in dataset.data_vars.items():
            for chain, rate in zip(dataset.chain.values, values.values):
                rates[int(chain)][str(name)] = float(rate)
        return rates

    def _resolve_var_names(self, var_names: Optional[Sequence[str]]) -> list[str]:
        if var_names is None:
            return self.var_names
        if missing := [name for name in var_names if name not in self.posterior]:
            raise KeyError(f"Unknown variables: {', '.join(missing)}")
        return list(var_names)

    def gelman_rubin(
        self,
        var_names: Optional[Sequence[str]] = None,
        r_hat_thresh: "custom_types.Float" = defaults.DEFAULT_RHAT_THRESH,
        confidence: "custom_types.Float" = defaults.DEFAULT_RHAT_CONFIDENCE,
    ) -> dict[str, DiagnosticRecord]:
        """Gelman-Rubin diagnostic of every requested variable.

        :param var_names: Variables to diagnose. Defaults to None (all variables).
        :type var_names: Optional[Sequence[str]]
        :param r_hat_thresh: Threshold above which a variable is flagged. Defaults
            to :py:data:`~scigibbs.defaults.DEFAULT_RHAT_THRESH`.
        :type r_hat_thresh: custom_types.Float
        :param confidence: Confidence level of the upper bounds. Defaults to
            :py:data:`~scigibbs.defaults.DEFAULT_RHAT_CONFIDENCE`.
        :type confidence: custom_types.Float

        :returns: One record per variable
        :rtype: dict[str, DiagnosticRecord]

        :raises InsufficientChainsError: If fewer than two chains contributed draws
        :raises KeyError: If a requested variable was not monitored

        A :py:class:`~scigibbs.exceptions.ConvergenceWarning` naming every failing
        component is issued when any point estimate exceeds ``r_hat_thresh``.
        """
        if len(self.chain_ids) < 2:
            raise InsufficientChainsError(
                "The Gelman-Rubin statistic requires at least 2 chains; got "
                f"{len(self.chain_ids)}"
            )

        records = {
            name: diagnose_variable(
                name,
                self.posterior[name].values,
                r_hat_thresh=r_hat_thresh,
                confidence=confidence,
            )
            for name in self._resolve_var_names(var_names)
        }

        if failing := [
            component
            for record in records.values()
            for component in record.failing_components
        ]:
            warnings.warn(
                f"Gelman-Rubin statistic exceeds {r_hat_thresh} for: "
                f"{', '.join(failing)}",
                ConvergenceWarning,
            )

        return records

    def summarize(
        self,
        var_names: Optional[Sequence[str]] = None,
        quantiles: Sequence[float] = defaults.DEFAULT_QUANTILES,
    ) -> pd.DataFrame:
        """Pooled posterior summaries. See
        :py:func:`~scigibbs.model.results.diagnostics.summarize`.
        """
        return summarize(
            {
                name: self.posterior[name].values
                for name in self._resolve_var_names(var_names)
            },
            quantiles=quantiles,
        )

    def summary(
        self,
        var_names: Optional[Sequence[str]] = None,
        quantiles: Sequence[float] = defaults.DEFAULT_QUANTILES,
        r_hat_thresh: "custom_types.Float" = defaults.DEFAULT_RHAT_THRESH,
    ) -> pd.DataFrame:
        """Pooled posterior summaries joined with the Gelman-Rubin point estimate
        (``r_hat``) and upper bound (``r_hat_upper``) of every component.

        With fewer than two chains the ``r_hat`` columns are NaN.
        """
        table = self.summarize(var_names=var_names, quantiles=quantiles)
        r_hat = pd.DataFrame(
            np.nan, index=table.index, columns=["r_hat", "r_hat_upper"]
        )
        if len(self.chain_ids) >= 2:
            for record in self.gelman_rubin(
                var_names=var_names, r_hat_thresh=r_hat_thresh
            ).values():
                point = np.asarray(record.point_estimate)
                upper = np.asarray(record.upper_bound)
                for index in np.ndindex(*point.shape):
                    r_hat.loc[component_name(record.name, index)] = (
                        point[index],
                        upper[index],
                    )
        return table.join(r_hat)

    def diagnose(
        self,
        r_hat_thresh: "custom_types.Float" = defaults.DEFAULT_RHAT_THRESH,
        silent: bool = False,
    ) -> tuple[dict[str, list[str]], dict[int, Any]]:
        """Check convergence and chain failures, printing a report.

        :param r_hat_thresh: Gelman-Rubin threshold. Defaults to
            :py:data:`~scigibbs.defaults.DEFAULT_RHAT_THRESH`.
        :type r_hat_thresh: custom_types.Float
        :param silent: Whether to suppress the printed report. Defaults to False.
        :type silent: bool

        :returns: The failing components of every variable that failed, and the
            failed chains with their errors
        :rtype: tuple[dict[str, list[str]], dict[int, Any]]
        """
        failed_chains = self.failed_chains
        if len(self.chain_ids) >= 2:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                records = self.gelman_rubin(r_hat_thresh=r_hat_thresh)
            failing = {
                name: record.failing_components
                for name, record in records.items()
                if not record.converged
            }
        else:
            records = {}
            failing = {}

        # If silent, return the test results now
        if silent:
            return failing, failed_chains

        header = "Sampling diagnostics summary:"
        print(header)
        print("-" * len(header))
        print(
            f"{len(self.chain_ids)} chains with {self.n_draws} retained draws each"
            + (" (cancelled before completion)." if self.cancelled else ".")
        )
        for chain, error in failed_chains.items():
            print(f"Chain {chain} failed: {error}")
        if not records:
            print("Gelman-Rubin statistic not computed: fewer than 2 chains.")
        else:
            n_components = sum(
                np.asarray(record.point_estimate).size for record in records.values()
            )
            n_failures = sum(len(components) for components in failing.values())
            print(
                f"{n_failures} of {n_components} ({n_failures / n_components:.2%}) "
                f"components have a Gelman-Rubin statistic above {r_hat_thresh}."
            )
            for components in failing.values():
                for component in components:
                    print(f"    {component}")

        return failing, failed_chains

    def calculate_summaries(
        self,
        var_names: list[str] | None = None,
        filter_vars: Literal[None, "like", "regex"] = None,
        kind: Literal["all", "stats", "diagnostics"] = "all",
        round_to: "custom_types.Integer" = 2,
        stat_focus: str = "mean",
        stat_funcs: Optional[Union[dict[str, Callable], Callable]] = None,
        extend: bool = True,
        hdi_prob: "custom_types.Float" = 0.94,
        skipna: bool = False,
    ) -> xr.Dataset:
        """Compute ArviZ summary statistics and diagnostics.

        This method wraps ArviZ's summary functionality while adding the computed
        statistics to the InferenceData object under the 'variable_summary_stats'
        group. See `az.summary` for detailed descriptions of arguments.

        :returns: Dataset containing computed summary statistics
        :rtype: xr.Dataset

        :raises ValueError: If diagnostics are requested for a single chain
        """
        # If there is only one chain, we cannot run diagnostics
        if kind != "stats" and self.posterior.sizes["chain"] <= 1:
            raise ValueError(
                "Cannot run diagnostics on a dataset run using a single chain"
            )

        summaries = az.summary(
            data=self.inference_obj,
            var_names=var_names,
            filter_vars=filter_vars,
            fmt="xarray",
            kind=kind,
            round_to=round_to,
            stat_focus=stat_focus,
            stat_funcs=stat_funcs,
            extend=extend,
            hdi_prob=hdi_prob,
            skipna=skipna,
        )
        self._update_group("variable_summary_stats", summaries, force_del=True)
        return summaries

    def to_xarray(self) -> xr.Dataset:
        """A copy of the posterior draws as an xarray Dataset."""
        return self.posterior.copy(deep=True)

    def __str__(self) -> str:
        return (
            f"SampleResults({len(self.chain_ids)} chains, {self.n_draws} draws, "
            f"variables: {', '.join(self.var_names)})"
        )
