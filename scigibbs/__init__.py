# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
SciGibbs: Declarative graphical models sampled by Gibbs and Metropolis updates.

SciGibbs compiles a plain-text description of a directed graphical model
(stochastic relations written with ``~``, deterministic ones with ``<-``, and
repeated structure with ``for`` loops) together with observed data into an
immutable dependency graph. Latent nodes are then sampled by independent Markov
chains, each sweep updating every latent node once with a conjugate draw, an
enumeration over finite support, or an adaptive Metropolis step.

Key Features:
    - BUGS-style model descriptions with data-dependent loop bounds
    - Automatic selection of conjugate kernels where the model structure allows
    - Adaptive Metropolis proposals for everything else, including simplexes
    - Reproducible, independently seeded chains run serially, in threads, or in
      separate processes
    - Gelman-Rubin diagnostics and posterior summaries with ArviZ interoperability
    - Type-safe model construction with comprehensive type checking

Global Variables:
    RNG: Global random number generator for reproducible computations
    __version__: Package version string

Example:
    >>> import scigibbs as sg
    >>> # Set global seed for reproducibility
    >>> sg.manual_seed(42)
    >>> model = sg.Model("theta ~ dnorm(0, 1)\\nx ~ dnorm(theta, 1)", {"x": 0.5})
    >>> results = model.mcmc(n_chains=3)
"""

from typing import Optional, TYPE_CHECKING

from typeguard import install_import_hook

import numpy as np

# Define the version
__version__ = "0.1.0"

# Set up type checking
install_import_hook("scigibbs")

# Define the global random number generator
RNG: np.random.Generator
"""Global random number generator for SciGibbs.

This generator supplies the root seed of a sampling run when none is given. It can
be seeded using the manual_seed() function to ensure consistent results across
runs.

:type: np.random.Generator

Example:
    >>> import scigibbs as sg
    >>> # Use the global RNG
    >>> random_values = sg.RNG.normal(0, 1, size=10)
"""

# Get custom types if TYPE_CHECKING is True
if TYPE_CHECKING:
    from scigibbs import custom_types


def manual_seed(seed: Optional["custom_types.Integer"] = None):
    """Set the seed for the global random number generator.

    :param seed: Seed value for random number generation. If None, uses
                system entropy to generate a random seed.
    :type seed: Union[custom_types.Integer, None]

    Example:
        >>> import scigibbs as sg
        >>> # Set seed for reproducible results
        >>> sg.manual_seed(42)
        >>> # Runs without an explicit seed are now reproducible
        >>> results = model.mcmc()

    Note:
        This function modifies global state and should typically be called
        once at the beginning of a script or analysis for reproducibility.
    """
    global RNG  # pylint: disable=global-statement
    RNG = np.random.default_rng(seed)


manual_seed()  # Set the seed for the global random number generator

# Import objects that should be easily accessible from the package level
# pylint: disable=wrong-import-position
from scigibbs import utils

from scigibbs.model.graph import build
from scigibbs.model.model import Model
from scigibbs.model.results.diagnostics import gelman_rubin, summarize
from scigibbs.model.results.mcmc import SampleResults
from scigibbs.model.sampling.chains import run

parameters = utils.lazy_import("scigibbs.model.components.parameters")
results = utils.lazy_import("scigibbs.model.results")
