"""Custom exception and warning classes for the SciGibbs package.

This module defines the hierarchy of exceptions raised while building a model
graph, sampling from it, and summarizing the results. All custom exceptions
inherit from :py:class:`SciGibbsError` so that every package-specific failure can
be caught with a single except clause.

Errors that carry structured context (the offending node, iteration, or chain)
expose it as attributes and remain picklable, so they survive the trip back from
chains run in worker processes.
"""

from typing import Any, Optional


class SciGibbsError(Exception):
    """Base class for all exceptions in the SciGibbs package.

    :param message: Error message describing the exception
    :type message: str

    Example:
        >>> try:
        ...     model = Model("theta ~ dfoo(0, 1)")
        ... except SciGibbsError as e:
        ...     print(f"SciGibbs error occurred: {e}")
    """


class GraphBuildError(SciGibbsError):
    """Base class for errors raised while compiling a model description into a
    graph. No partial graph is ever returned when one of these is raised.
    """


class ModelSyntaxError(GraphBuildError):
    """Raised when a model description cannot be parsed.

    :param message: Error message describing the problem
    :type message: str
    :param line: 1-based line of the offending token. Defaults to None.
    :type line: Optional[int]
    :param column: 1-based column of the offending token. Defaults to None.
    :type column: Optional[int]
    """

    def __init__(
        self, message: str, line: Optional[int] = None, column: Optional[int] = None
    ):
        self.message = message
        self.line = line
        self.column = column
        if line is not None:
            message = f"{message} (line {line}, column {column})"
        super().__init__(message)

    def __reduce__(self):
        return (type(self), (self.message, self.line, self.column))


class UnknownSymbolError(GraphBuildError):
    """Raised when a referenced name resolves to no node, data binding, loop
    variable, or function. Also raised for unknown monitor or initial-value names.
    """


class CyclicDependencyError(GraphBuildError):
    """Raised when the dependency graph contains a cycle.

    :param message: Error message describing the cycle
    :type message: str
    :param cycle: Names of the nodes that could not be ordered. Defaults to ().
    :type cycle: tuple[str, ...]
    """

    def __init__(self, message: str, cycle: tuple[str, ...] = ()):
        self.message = message
        self.cycle = tuple(cycle)
        super().__init__(message)

    def __reduce__(self):
        return (type(self), (self.message, self.cycle))


class DimensionMismatchError(GraphBuildError):
    """Raised when a declared index range disagrees with the length of bound data,
    an index falls outside a data array, or a supplied value has the wrong shape.
    """


class UnsupportedDistributionError(GraphBuildError):
    """Raised when a distribution family is unknown, or when no update kernel can
    be selected for a latent node.
    """


class InvalidParameterError(SciGibbsError):
    """Raised when a distribution parameter falls outside its valid domain (e.g.,
    a non-positive precision or a probability outside [0, 1]).

    :param message: Error message describing the problem
    :type message: str
    :param node: Name of the node whose distribution was being evaluated
    :type node: Optional[str]
    :param parameter: Name of the offending parameter
    :type parameter: Optional[str]
    :param value: The offending value
    :type value: Any
    """

    def __init__(
        self,
        message: str,
        node: Optional[str] = None,
        parameter: Optional[str] = None,
        value: Any = None,
    ):
        self.message = message
        self.node = node
        self.parameter = parameter
        self.value = value
        super().__init__(message)

    def __reduce__(self):
        return (type(self), (self.message, self.node, self.parameter, self.value))


class SamplingDivergedError(SciGibbsError):
    """Raised when a sampled value becomes non-finite or leaves the support of its
    distribution. Fatal for the whole run.

    :param message: Error message describing the divergence
    :type message: str
    :param node: Name of the node whose update diverged
    :type node: Optional[str]
    :param iteration: 1-based sweep at which the divergence happened
    :type iteration: Optional[int]
    :param chain: Index of the chain that diverged
    :type chain: Optional[int]
    """

    def __init__(
        self,
        message: str,
        node: Optional[str] = None,
        iteration: Optional[int] = None,
        chain: Optional[int] = None,
    ):
        self.message = message
        self.node = node
        self.iteration = iteration
        self.chain = chain
        super().__init__(
            f"{message} (node '{node}', iteration {iteration}, chain {chain})"
        )

    def __reduce__(self):
        return (type(self), (self.message, self.node, self.iteration, self.chain))


class InsufficientChainsError(SciGibbsError):
    """Raised when a cross-chain diagnostic is requested with fewer than two
    chains.
    """


class ConvergenceWarning(UserWarning):
    """Warning issued when a Gelman-Rubin point estimate exceeds its threshold."""


class ChainFailureWarning(UserWarning):
    """Warning issued when an individual chain fails while the others survive."""
