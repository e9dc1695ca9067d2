"""Quoting of identifiers and literals for use inside SQL statements."""

from __future__ import annotations

from typing import TextIO


def _escape_identifier(name: str) -> str:
    name = name.split("\x00", 1)[0]
    return name.replace('"', '""')


def quote_identifier(name: str) -> str:
    """Quote *name* as a case-sensitive SQL identifier.

    Double quotes are doubled; the result is cut before any NUL character.
    """
    return '"' + _escape_identifier(name) + '"'


def write_quoted_identifier(name: str, stream: TextIO) -> None:
    """Write the quoted form of *name* to a text *stream*."""
    stream.write('"')
    stream.write(_escape_identifier(name))
    stream.write('"')


def quote_literal(literal: str) -> str:
    """Quote *literal* as an SQL string literal.

    Single quotes are doubled. If the text holds a backslash, backslashes are
    doubled and the literal is written in the E'' escape form, preceded by a
    space.
    """
    literal = literal.replace("'", "''")
    if "\\" in literal:
        return " E'" + literal.replace("\\", "\\\\") + "'"
    return "'" + literal + "'"