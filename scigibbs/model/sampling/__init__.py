# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Posterior sampling for compiled SciGibbs graphs.

The submodule is organized in three layers:

   1. :py:mod:`~scigibbs.model.sampling.kernels`, the update kernels for single
      latent nodes.
   2. :py:mod:`~scigibbs.model.sampling.classifier`, which picks the kernel for
      each latent node from the structure of the graph.
   3. :py:mod:`~scigibbs.model.sampling.chains`, which runs independent chains of
      sweeps over the graph and gathers their draws.
"""
