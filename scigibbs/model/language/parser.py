# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Recursive-descent parser for SciGibbs model descriptions.

The parser turns the token stream produced by
:py:func:`scigibbs.model.language.lexer.tokenize` into a syntax tree. The syntax
tree is purely structural: names are not resolved and loops are not expanded.
Both happen in the graph builder (:py:mod:`scigibbs.model.graph`), which turns the
syntax tree into typed expression trees over graph nodes.

Grammar (informally)::

    program      := ["model"] "{" statement* "}" | statement*
    statement    := loop | relation [";"]
    loop         := "for" "(" NAME "in" expr ":" expr ")" (block | statement)
    block        := "{" statement* "}"
    relation     := target ("~" NAME "(" args ")" | ("<-" | "=") expr)
    target       := NAME ["[" indices "]"]
    expr         := term (("+" | "-") term)*
    term         := unary (("*" | "/") unary)*
    unary        := "-" unary | power
    power        := primary ["^" unary]
    primary      := NUMBER | NAME ["(" args ")" | "[" indices "]"] | "(" expr ")"
    indices      := index ("," index)*
    index        := <empty> | expr [":" expr]
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Union

from scigibbs.exceptions import ModelSyntaxError
from scigibbs.model.language.lexer import Token, tokenize

# pylint: disable=too-few-public-methods


@dataclass(frozen=True)
class Number:
    """A numeric literal."""

    value: Union[int, float]
    line: int
    column: int


@dataclass(frozen=True)
class Name:
    """A bare identifier."""

    name: str
    line: int
    column: int


@dataclass(frozen=True)
class Range:
    """An index range ``start:end`` (both inclusive)."""

    start: "ExpressionSyntax"
    end: "ExpressionSyntax"


@dataclass(frozen=True)
class FullRange:
    """An empty index, selecting the whole dimension (``x[]`` or ``x[i, ]``)."""


@dataclass(frozen=True)
class Subscript:
    """An indexed identifier such as ``x[i, 2]`` or ``p[1:K]``."""

    name: str
    indices: tuple[Union["ExpressionSyntax", Range, FullRange], ...]
    line: int
    column: int


@dataclass(frozen=True)
class BinaryExpression:
    """An arithmetic expression between two operands."""

    operator: Literal["+", "-", "*", "/", "^"]
    left: "ExpressionSyntax"
    right: "ExpressionSyntax"


@dataclass(frozen=True)
class Negation:
    """Unary minus."""

    operand: "ExpressionSyntax"


@dataclass(frozen=True)
class FunctionCall:
    """A call to a function, or a distribution on the right of ``~``."""

    name: str
    args: tuple["ExpressionSyntax", ...]
    line: int
    column: int


ExpressionSyntax = Union[
    Number, Name, Subscript, BinaryExpression, Negation, FunctionCall
]


@dataclass(frozen=True)
class Relation:
    """A stochastic (``~``) or deterministic (``<-``) relation."""

    target: Union[Name, Subscript]
    relation: Literal["~", "<-"]
    rhs: ExpressionSyntax
    line: int
    column: int


@dataclass(frozen=True)
class ForLoop:
    """A ``for`` loop over an inclusive integer range."""

    variable: str
    start: ExpressionSyntax
    end: ExpressionSyntax
    body: tuple[Union[Relation, "ForLoop"], ...]
    line: int
    column: int


Statement = Union[Relation, ForLoop]


class Parser:
    """Recursive-descent parser over a token list.

    :param text: Model description
    :type text: str

    :raises ModelSyntaxError: If the description cannot be tokenized
    """

    def __init__(self, text: str):
        self.tokens: list[Token] = list(tokenize(text))
        self.position = 0

    # Token helpers
    @property
    def current(self) -> Token:
        """The next unconsumed token."""
        return self.tokens[self.position]

    def _check(self, value: str, type_: str = "OP") -> bool:
        return self.current.type == type_ and self.current.value == value

    def _advance(self) -> Token:
        token = self.current
        if token.type != "EOF":
            self.position += 1
        return token

    def _expect(self, value: str, type_: str = "OP") -> Token:
        if not self._check(value, type_):
            self._error(f"Expected '{value}'")
        return self._advance()

    def _expect_name(self) -> Token:
        if self.current.type != "NAME":
            self._error("Expected an identifier")
        return self._advance()

    def _error(self, message: str):
        token = self.current
        found = "end of input" if token.type == "EOF" else repr(token.value)
        raise ModelSyntaxError(
            f"{message} but found {found}", line=token.line, column=token.column
        )

    # Statements
    def parse(self) -> tuple[Statement, ...]:
        """Parse the whole description.

        :returns: The top-level statements
        :rtype: tuple[Statement, ...]

        :raises ModelSyntaxError: On malformed input
        """
        if self._check("model", "KEYWORD"):
            self._advance()
            self._expect("{")
            statements = self._parse_statements(closing="}")
            self._expect("}")
        else:
            statements = self._parse_statements(closing=None)

        if self.current.type != "EOF":
            self._error("Expected end of model")
        return statements

    def _parse_statements(self, closing: Optional[str]) -> tuple[Statement, ...]:
        statements = []
        while self.current.type != "EOF" and not (
            closing is not None and self._check(closing)
        ):
            if self._check(";"):
                self._advance()
                continue
            statements.append(self._parse_statement())
        return tuple(statements)

    def _parse_statement(self) -> Statement:
        if self._check("for", "KEYWORD"):
            return self._parse_loop()
        return self._parse_relation()

    def _parse_loop(self) -> ForLoop:
        token = self._expect("for", "KEYWORD")
        self._expect("(")
        variable = self._expect_name().value
        self._expect("in", "KEYWORD")
        start = self._parse_expression()
        self._expect(":")
        end = self._parse_expression()
        self._expect(")")

        if self._check("{"):
            self._advance()
            body = self._parse_statements(closing="}")
            self._expect("}")
        else:
            body = (self._parse_statement(),)

        return ForLoop(variable, start, end, body, token.line, token.column)

    def _parse_relation(self) -> Relation:
        token = self._expect_name()
        if self._check("["):
            target = Subscript(
                token.value, self._parse_indices(), token.line, token.column
            )
        else:
            target = Name(token.value, token.line, token.column)

        if self._check("~"):
            self._advance()
            family = self._expect_name()
            self._expect("(")
            rhs = FunctionCall(
                family.value, self._parse_args(), family.line, family.column
            )
            return Relation(target, "~", rhs, token.line, token.column)

        if self.current.type == "ASSIGN" or self._check("="):
            self._advance()
            return Relation(
                target, "<-", self._parse_expression(), token.line, token.column
            )

        self._error("Expected '~' or '<-'")

    # Expressions
    def _parse_expression(self) -> ExpressionSyntax:
        expression = self._parse_term()
        while self._check("+") or self._check("-"):
            operator = self._advance().value
            expression = BinaryExpression(operator, expression, self._parse_term())
        return expression

    def _parse_term(self) -> ExpressionSyntax:
        expression = self._parse_unary()
        while self._check("*") or self._check("/"):
            operator = self._advance().value
            expression = BinaryExpression(operator, expression, self._parse_unary())
        return expression

    def _parse_unary(self) -> ExpressionSyntax:
        if self._check("-"):
            self._advance()
            return Negation(self._parse_unary())
        return self._parse_power()

    def _parse_power(self) -> ExpressionSyntax:
        base = self._parse_primary()
        if self._check("^"):
            self._advance()
            return BinaryExpression("^", base, self._parse_unary())
        return base

    def _parse_primary(self) -> ExpressionSyntax:
        token = self.current

        if token.type == "NUMBER":
            self._advance()
            if any(char in token.value for char in ".eE"):
                return Number(float(token.value), token.line, token.column)
            return Number(int(token.value), token.line, token.column)

        if token.type == "NAME":
            self._advance()
            if self._check("("):
                self._advance()
                return FunctionCall(
                    token.value, self._parse_args(), token.line, token.column
                )
            if self._check("["):
                return Subscript(
                    token.value, self._parse_indices(), token.line, token.column
                )
            return Name(token.value, token.line, token.column)

        if self._check("("):
            self._advance()
            expression = self._parse_expression()
            self._expect(")")
            return expression

        self._error("Expected an expression")

    def _parse_args(self) -> tuple[ExpressionSyntax, ...]:
        """Parse call arguments after the opening parenthesis, consuming the
        closing one.
        """
        args = []
        if not self._check(")"):
            args.append(self._parse_expression())
            while self._check(","):
                self._advance()
                args.append(self._parse_expression())
        self._expect(")")
        return tuple(args)

    def _parse_indices(self) -> tuple[Union[ExpressionSyntax, Range, FullRange], ...]:
        self._expect("[")
        indices = [self._parse_index()]
        while self._check(","):
            self._advance()
            indices.append(self._parse_index())
        self._expect("]")
        return tuple(indices)

    def _parse_index(self) -> Union[ExpressionSyntax, Range, FullRange]:
        if self._check(",") or self._check("]"):
            return FullRange()
        start = self._parse_expression()
        if self._check(":"):
            self._advance()
            return Range(start, self._parse_expression())
        return start


def parse(text: str) -> tuple[Statement, ...]:
    """Parse a model description into its top-level statements.

    :param text: Model description
    :type text: str

    :returns: The top-level statements
    :rtype: tuple[Statement, ...]

    :raises ModelSyntaxError: On malformed input

    Example:
        >>> statements = parse("theta ~ dnorm(0, 1)")
        >>> statements[0].relation
        '~'
    """
    return Parser(text).parse()
