# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

r"""Convergence diagnostics and posterior summaries for sampled traces.

The functions in this module are pure: they never modify their inputs and always
return fresh objects, so calling them repeatedly on the same traces gives
identical results.

Gelman-Rubin potential scale reduction
--------------------------------------
For :math:`n` chains of :math:`m` retained draws each, with per-chain means
:math:`\bar\theta_j` and variances :math:`s_j^2`,

.. math::
    W = \frac{1}{n}\sum_j s_j^2, \qquad
    B = m \operatorname{Var}_j(\bar\theta_j), \qquad
    \hat{V} = \frac{m-1}{m} W + \frac{B}{m}, \qquad
    \hat{R} = \sqrt{\hat{V} / W}

The upper bound follows Brooks and Gelman (1998), using the F distribution with
:math:`n - 1` and :math:`2W^2 / \widehat{\operatorname{Var}}(W)` degrees of
freedom.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence, TYPE_CHECKING, Union

import numpy as np
import numpy.typing as npt
import pandas as pd

from scipy import stats

from scigibbs import defaults, utils
from scigibbs.exceptions import InsufficientChainsError

if TYPE_CHECKING:
    from scigibbs import custom_types


@dataclass(frozen=True)
class DiagnosticRecord:
    """Gelman-Rubin diagnostic of one monitored variable.

    :ivar name: Name of the variable
    :ivar point_estimate: Potential scale reduction, per component for vector
        variables
    :ivar upper_bound: Upper confidence bound of the potential scale reduction
    :ivar threshold: Threshold the point estimate was compared against
    :ivar converged: Whether every component's point estimate is at or below the
        threshold
    """

    name: str
    point_estimate: Union[float, npt.NDArray[np.floating]]
    upper_bound: Union[float, npt.NDArray[np.floating]]
    threshold: float
    converged: bool

    @property
    def failing_components(self) -> list[str]:
        """Names of the components whose point estimate exceeds the threshold."""
        point = np.asarray(self.point_estimate)
        return [
            component_name(self.name, index)
            for index in np.ndindex(*point.shape)
            if point[index] > self.threshold
        ]


def component_name(name: str, index: tuple[int, ...]) -> str:
    """Name of one scalar component of a variable, with a 1-based index."""
    if not index:
        return name
    return utils.element_name(name, tuple(int(i) + 1 for i in index))


def _as_chain_array(
    traces: Union[npt.ArrayLike, Sequence[npt.ArrayLike]],
) -> npt.NDArray[np.floating]:
    """Stack traces into a ``(n_chains, n_draws, *shape)`` float array."""
    if isinstance(traces, np.ndarray):
        samples = traces.astype(float)
    else:
        samples = np.stack([np.asarray(trace, dtype=float) for trace in traces])
    if samples.ndim < 2:
        raise ValueError(
            "Traces must have shape (n_chains, n_draws, ...); got shape "
            f"{samples.shape}"
        )
    return samples


def gelman_rubin(
    traces: Union[npt.ArrayLike, Sequence[npt.ArrayLike]],
    confidence: float = defaults.DEFAULT_RHAT_CONFIDENCE,
) -> tuple["custom_types.SampleType", "custom_types.SampleType"]:
    """Gelman-Rubin potential scale reduction factor of one monitored variable.

    :param traces: Retained draws, as an array of shape ``(n_chains, n_draws,
        *shape)`` or as one ``(n_draws, *shape)`` array per chain
    :type traces: Union[npt.ArrayLike, Sequence[npt.ArrayLike]]
    :param confidence: Confidence level of the upper bound. Defaults to
        :py:data:`~scigibbs.defaults.DEFAULT_RHAT_CONFIDENCE`.
    :type confidence: float

    :returns: The point estimate and its upper confidence bound, as floats for
        scalar variables and as arrays of the variable's shape otherwise
    :rtype: tuple[custom_types.SampleType, custom_types.SampleType]

    :raises InsufficientChainsError: If fewer than two chains are given
    :raises ValueError: If chains hold fewer than two draws

    Components that are constant within every chain have a point estimate of 1.0
    when the chains agree and ``inf`` when they do not. The pooled variance weights
    the within-chain variance by ``(n_draws - 1) / n_draws``, so chains that vary
    but are identical to each other give ``sqrt((n_draws - 1) / n_draws)``,
    slightly below 1.

    Example:
        >>> rng = np.random.default_rng(0)
        >>> point, upper = gelman_rubin(rng.normal(size=(4, 1000)))
        >>> bool(point < 1.01)
        True
    """
    samples = _as_chain_array(traces)
    n_chains, n_draws = samples.shape[:2]
    if n_chains < 2:
        raise InsufficientChainsError(
            f"The Gelman-Rubin statistic requires at least 2 chains; got {n_chains}"
        )
    if n_draws < 2:
        raise ValueError(
            f"The Gelman-Rubin statistic requires at least 2 draws per chain; got "
            f"{n_draws}"
        )

    chain_means = samples.mean(axis=1)
    chain_variances = samples.var(axis=1, ddof=1)
    within = chain_variances.mean(axis=0)
    between = n_draws * chain_means.var(axis=0, ddof=1)
    pooled = (n_draws - 1) / n_draws * within + between / n_draws

    # Upper bound
    quantile = (1 + confidence) / 2
    with np.errstate(divide="ignore", invalid="ignore"):
        df_within = 2 * within**2 / (chain_variances.var(axis=0, ddof=1) / n_chains)
        finite_df = np.isfinite(df_within)
        f_quantile = np.where(
            finite_df,
            stats.f.ppf(quantile, n_chains - 1, np.where(finite_df, df_within, 1.0)),
            stats.chi2.ppf(quantile, n_chains - 1) / (n_chains - 1),
        )
        point = np.sqrt(pooled / within)
        upper = np.sqrt(
            (n_draws - 1) / n_draws + f_quantile * between / (n_draws * within)
        )

    # Constant chains
    constant = within == 0
    degenerate = np.where(between == 0, 1.0, np.inf)
    point = np.where(constant, degenerate, point)
    upper = np.where(constant, degenerate, upper)

    if point.ndim == 0:
        return float(point), float(upper)
    return point, upper


def diagnose_variable(
    name: str,
    traces: Union[npt.ArrayLike, Sequence[npt.ArrayLike]],
    r_hat_thresh: float = defaults.DEFAULT_RHAT_THRESH,
    confidence: float = defaults.DEFAULT_RHAT_CONFIDENCE,
) -> DiagnosticRecord:
    """Build a :py:class:`DiagnosticRecord` for one variable.

    :raises InsufficientChainsError: If fewer than two chains are given
    """
    point, upper = gelman_rubin(traces, confidence=confidence)
    return DiagnosticRecord(
        name=name,
        point_estimate=point,
        upper_bound=upper,
        threshold=r_hat_thresh,
        converged=bool(np.all(np.asarray(point) <= r_hat_thresh)),
    )


def _quantile_label(quantile: float) -> str:
    return f"{100 * quantile:g}%"


def summarize(
    trace_set: Mapping[str, npt.ArrayLike],
    quantiles: Sequence[float] = defaults.DEFAULT_QUANTILES,
) -> pd.DataFrame:
    """Posterior summaries of every variable, pooling the draws of all chains.

    :param trace_set: Traces keyed by variable name, each of shape ``(n_chains,
        n_draws, *shape)``
    :type trace_set: Mapping[str, npt.ArrayLike]
    :param quantiles: Quantiles to report. Defaults to
        :py:data:`~scigibbs.defaults.DEFAULT_QUANTILES`.
    :type quantiles: Sequence[float]

    :returns: One row per scalar component (``b0[1]``, ``b0[2]``, ...) with
        columns ``mean``, ``sd`` and one column per quantile (``2.5%``, ...)
    :rtype: pd.DataFrame

    :raises ValueError: If a quantile is outside [0, 1]
    """
    if any(not 0 <= q <= 1 for q in quantiles):
        raise ValueError(f"Quantiles must lie in [0, 1]; got {quantiles}")

    rows = {}
    for name, traces in trace_set.items():
        samples = _as_chain_array(np.asarray(traces))
        pooled = samples.reshape((-1,) + samples.shape[2:])
        for index in np.ndindex(*samples.shape[2:]):
            draws = pooled[(slice(None),) + index]
            row = {
                "mean": draws.mean() if draws.size else np.nan,
                "sd": draws.std(ddof=1) if draws.size > 1 else np.nan,
            }
            for quantile in quantiles:
                row[_quantile_label(quantile)] = (
                    np.quantile(draws, quantile) if draws.size else np.nan
                )
            rows[component_name(name, index)] = row

    columns = ["mean", "sd"] + [_quantile_label(q) for q in quantiles]
    return pd.DataFrame.from_dict(rows, orient="index", columns=columns)
