# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Results analysis for SciGibbs sampling runs.

This submodule provides tools for checking and summarizing the draws of a
sampling run:

   1. :py:class:`scigibbs.model.results.mcmc.SampleResults`, which holds results
      from calls to :py:meth:`scigibbs.model.model.Model.mcmc` and provides
      access to traces, diagnostics, and summaries.
   2. :py:mod:`scigibbs.model.results.diagnostics`, which provides the
      Gelman-Rubin statistic and pooled posterior summaries as pure functions.
"""
