# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Model construction and sampling for SciGibbs.

This module provides the infrastructure for compiling model descriptions into
graphs and sampling from them. The primary interface is the
:py:class:`~scigibbs.model.model.Model` class, which compiles a description with
its data on construction and exposes the sampler through
:py:meth:`~scigibbs.model.model.Model.mcmc`.

Models are compiled into graphs of nodes, which fall under three main categories:

    - :py:class:`Constants <scigibbs.model.components.constants.Constant>`,
      which hold data referenced by the description.
    - :py:class:`Parameters <scigibbs.model.components.parameters.Parameter>`,
      which represent random variables. These are either latent (i.e., sampled)
      or observed (i.e., bound to data).
    - :py:class:`Deterministic nodes
      <scigibbs.model.components.transformed_parameters.Deterministic>`, which
      are fixed functions of their parents.

A typical workflow looks like this:

    1. **Model Definition**: Write the description and build a
       :py:class:`~scigibbs.model.model.Model` with the data. Build errors are
       raised immediately.
    2. **Prior Predictive Checks**: Use
       :py:meth:`Model.draw() <scigibbs.model.model.Model.draw>` to simulate from
       the prior.
    3. **Sampling**: Run independent chains with
       :py:meth:`Model.mcmc() <scigibbs.model.model.Model.mcmc>`.
    4. **Analysis**: Check convergence and summarize the posterior with the
       returned :py:class:`~scigibbs.model.results.mcmc.SampleResults`.
"""
