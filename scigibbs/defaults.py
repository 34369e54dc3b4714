# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Default configuration values for SciGibbs package components.

This module centralizes default values used across the package, including run
lengths for the chain orchestrator, adaptation settings for the Metropolis-type
kernels, and thresholds for convergence diagnostics.

The module is organized into logical groups covering:
    - Chain orchestration defaults
    - Kernel adaptation and slice-sampling settings
    - Initialization settings
    - Diagnostic thresholds and summary quantiles

Default values cannot be programmatically altered. This documentation serves as a
reference for users and developers to understand the standard configuration used
by SciGibbs.
"""

from typing import Literal

# Chain orchestration defaults
DEFAULT_N_CHAINS: int = 4
"""Default number of independent chains.

:type: int
"""

DEFAULT_N_ITERATIONS: int = 2000
"""Default total number of sweeps per chain, burn-in included.

:type: int
"""

DEFAULT_BURN_IN: int = 1000
"""Default number of initial sweeps discarded from every chain. Metropolis-type
kernels adapt their proposals during these sweeps only.

:type: int
"""

DEFAULT_THIN: int = 1
"""Default thinning interval. One snapshot is retained every ``thin`` sweeps after
burn-in.

:type: int
"""

DEFAULT_BACKEND: Literal["auto", "serial", "thread", "process"] = "auto"
"""Default execution backend for chains. "auto" runs chains in separate processes
when there is more than one chain and serially otherwise.

:type: str
"""

# Kernel adaptation defaults
DEFAULT_TARGET_ACCEPT: tuple[float, float] = (0.2, 0.4)
"""Acceptance-rate window that adaptive Metropolis kernels steer toward during
warm-up.

:type: tuple[float, float]
"""

DEFAULT_ADAPT_BATCH: int = 50
"""Number of proposals between successive step-size adjustments during warm-up.

:type: int
"""

DEFAULT_INITIAL_STEP: float = 1.0
"""Initial random-walk step size for adaptive Metropolis kernels.

:type: float
"""

DEFAULT_SIMPLEX_CONCENTRATION: float = 100.0
"""Initial concentration of the Dirichlet proposal used for non-conjugate simplex
nodes. Larger values give smaller moves.

:type: float
"""

DEFAULT_SLICE_WIDTH: float = 1.0
"""Initial bracket width for the stepping-out slice sampler.

:type: float
"""

DEFAULT_SLICE_MAX_STEPS: int = 50
"""Maximum number of stepping-out expansions per side for the slice sampler.

:type: int
"""

# Initialization defaults
DEFAULT_INIT_ATTEMPTS: int = 100
"""Number of prior draws attempted for an initial value before falling back to the
typical value of the distribution.

:type: int
"""

# Diagnostic defaults
DEFAULT_RHAT_THRESH: float = 1.1
"""Default threshold for the Gelman-Rubin potential scale reduction factor.

Point estimates above this threshold indicate that chains have not converged to
a common distribution.

:type: float
"""

DEFAULT_RHAT_CONFIDENCE: float = 0.95
"""Confidence level used for the upper bound of the potential scale reduction
factor.

:type: float
"""

DEFAULT_QUANTILES: tuple[float, ...] = (0.025, 0.25, 0.5, 0.75, 0.975)
"""Quantiles reported by posterior summaries.

:type: tuple[float, ...]
"""
