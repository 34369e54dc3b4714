# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Nodes and expressions of SciGibbs model graphs.

This submodule contains the building blocks a model description is compiled into:
data constants, stochastic nodes with their distribution families, deterministic
nodes, and the expression trees that define the parameters of each.
"""
