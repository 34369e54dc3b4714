# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Tokenizer for SciGibbs model descriptions."""

from __future__ import annotations

import re

from typing import Iterator, NamedTuple

from scigibbs.exceptions import ModelSyntaxError

KEYWORDS: frozenset[str] = frozenset({"model", "for", "in"})
"""Names that cannot be used as identifiers."""

_TOKEN_SPECIFICATION: tuple[tuple[str, str], ...] = (
    ("COMMENT", r"#[^\n]*"),
    ("NEWLINE", r"\n"),
    ("SKIP", r"[ \t\r]+"),
    ("NUMBER", r"(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?"),
    ("NAME", r"[A-Za-z][A-Za-z0-9_.]*"),
    ("ASSIGN", r"<-"),
    ("OP", r"[~=+\-*/^(){}\[\],:;]"),
)

_TOKEN_PATTERN = re.compile(
    "|".join(f"(?P<{name}>{pattern})" for name, pattern in _TOKEN_SPECIFICATION)
)


class Token(NamedTuple):
    """A lexical token with its 1-based position in the source."""

    type: str
    value: str
    line: int
    column: int


def tokenize(text: str) -> Iterator[Token]:
    """Split a model description into tokens.

    Comments and whitespace are dropped. ``<-`` is returned as an ``ASSIGN`` token,
    keywords as ``KEYWORD`` tokens, and single-character punctuation as ``OP``
    tokens whose value is the character. The stream ends with an ``EOF`` token.

    :param text: Model description
    :type text: str

    :raises ModelSyntaxError: On any character that starts no token
    """
    line = 1
    line_start = 0
    position = 0
    while position < len(text):
        match = _TOKEN_PATTERN.match(text, position)
        if match is None:
            raise ModelSyntaxError(
                f"Unexpected character {text[position]!r}",
                line=line,
                column=position - line_start + 1,
            )

        kind = match.lastgroup
        value = match.group()
        column = match.start() - line_start + 1
        position = match.end()

        if kind == "NEWLINE":
            line += 1
            line_start = position
            continue
        if kind in {"COMMENT", "SKIP"}:
            continue
        if kind == "NAME" and value in KEYWORDS:
            kind = "KEYWORD"

        yield Token(kind, value, line, column)

    yield Token("EOF", "", line, position - line_start + 1)
