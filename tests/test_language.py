"""
Unit tests for tokenizing and parsing model descriptions
"""

import pytest

from scigibbs.exceptions import GraphBuildError, ModelSyntaxError
from scigibbs.model.language import parser
from scigibbs.model.language.lexer import tokenize


class TestTokenizer:
    """Test splitting descriptions into tokens."""

    def test_comments_and_whitespace_dropped(self):
        tokens = list(tokenize("theta ~ dnorm(0, 1)  # prior\n"))
        assert [token.value for token in tokens] == [
            "theta", "~", "dnorm", "(", "0", ",", "1", ")", "",
        ]
        assert tokens[-1].type == "EOF"

    def test_assignment_and_keywords(self):
        tokens = list(tokenize("for (i in 1:N) { mu[i] <- 2 }"))
        types = {token.value: token.type for token in tokens}
        assert types["for"] == "KEYWORD"
        assert types["in"] == "KEYWORD"
        assert types["<-"] == "ASSIGN"
        assert types["N"] == "NAME"

    def test_positions_are_one_based(self):
        tokens = list(tokenize("a ~ dnorm(0, 1)\n  b ~ dnorm(a, 1)"))
        b_token = next(token for token in tokens if token.value == "b")
        assert (b_token.line, b_token.column) == (2, 3)

    def test_unexpected_character(self):
        with pytest.raises(ModelSyntaxError) as excinfo:
            list(tokenize("theta ~ dnorm(0, 1) $"))
        assert excinfo.value.line == 1
        assert excinfo.value.column == 21


class TestParser:
    """Test building syntax trees."""

    def test_relations(self):
        statements = parser.parse(
            """
            theta ~ dnorm(0, 1)
            eta <- exp(theta)
            """
        )
        assert len(statements) == 2
        stochastic, deterministic = statements
        assert isinstance(stochastic, parser.Relation)
        assert stochastic.relation == "~"
        assert stochastic.target == parser.Name("theta", 2, 13)
        assert stochastic.rhs.name == "dnorm"
        assert len(stochastic.rhs.args) == 2
        assert deterministic.relation == "<-"
        assert isinstance(deterministic.rhs, parser.FunctionCall)

    def test_model_block_is_optional(self):
        bare = parser.parse("theta ~ dnorm(0, 1)")
        wrapped = parser.parse("model {\ntheta ~ dnorm(0, 1)\n}")
        assert len(bare) == len(wrapped) == 1
        assert bare[0].rhs.name == wrapped[0].rhs.name

    def test_equals_is_assignment(self):
        (statement,) = parser.parse("eta = 2 * 3")
        assert statement.relation == "<-"

    def test_operator_precedence(self):
        (statement,) = parser.parse("eta <- 1 + 2 * 3^2")
        rhs = statement.rhs
        assert rhs.operator == "+"
        assert rhs.right.operator == "*"
        assert rhs.right.right.operator == "^"

    def test_nested_loops(self):
        (loop,) = parser.parse(
            """
            for (i in 1:N) {
              for (j in 1:M) {
                y[i, j] ~ dnorm(mu[i], 1)
              }
            }
            """
        )
        assert isinstance(loop, parser.ForLoop)
        assert loop.variable == "i"
        (inner,) = loop.body
        assert isinstance(inner, parser.ForLoop)
        (relation,) = inner.body
        assert relation.target.name == "y"
        assert len(relation.target.indices) == 2

    def test_loop_without_braces(self):
        (loop,) = parser.parse("for (i in 1:3) y[i] ~ dnorm(0, 1)")
        assert len(loop.body) == 1

    def test_ranges_and_full_ranges(self):
        (statement,) = parser.parse("p[1:K] ~ ddirch(alpha[])")
        (target_index,) = statement.target.indices
        assert isinstance(target_index, parser.Range)
        (arg,) = statement.rhs.args
        assert arg.indices == (parser.FullRange(),)

    def test_missing_parenthesis_position(self):
        with pytest.raises(ModelSyntaxError) as excinfo:
            parser.parse("theta ~ dnorm(0, 1\nx ~ dnorm(theta, 1)")
        assert (excinfo.value.line, excinfo.value.column) == (2, 1)
        assert "line 2, column 1" in str(excinfo.value)

    def test_missing_relation_operator(self):
        with pytest.raises(ModelSyntaxError, match="Expected '~' or '<-'"):
            parser.parse("theta dnorm(0, 1)")

    def test_unclosed_model_block(self):
        with pytest.raises(ModelSyntaxError, match="end of input"):
            parser.parse("model {\ntheta ~ dnorm(0, 1)\n")

    def test_syntax_errors_are_build_errors(self):
        with pytest.raises(GraphBuildError):
            parser.parse("~")
