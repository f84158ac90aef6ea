"""Assemble quoted command lines from literal fragments and values.

Building a command never spawns anything: it only walks the fragments and
quotes every interpolated value for the target dialect.
"""

from __future__ import annotations

from os import PathLike, fspath
from string import Formatter
from typing import Any, Sequence

from .errors import QuotingError
from .process import BaseHandle
from .quote import Dialect, Raw, quote
from .result import ProcessResult

_formatter = Formatter()


class QuotedCommand(str):
    """A fully resolved command line, tagged with the dialect it was quoted for."""

    dialect: Dialect

    def __new__(cls, text: str, dialect: "Dialect | str" = Dialect.BASH) -> "QuotedCommand":
        obj = super().__new__(cls, text)
        obj.dialect = Dialect.parse(dialect)
        return obj

    def __repr__(self) -> str:
        return f"QuotedCommand({str.__repr__(self)}, dialect={self.dialect.value!r})"


def _substitute(value: Any, dialect: Dialect) -> str:
    if isinstance(value, Raw):
        return value.text
    if isinstance(value, BaseHandle):
        if not value.settled:
            raise QuotingError("cannot interpolate a process that has not settled")
        return quote(str(value), dialect)
    if isinstance(value, ProcessResult):
        return quote(str(value), dialect)
    if isinstance(value, (list, tuple)):
        return " ".join(_substitute(item, dialect) for item in value)
    if value is None:
        raise QuotingError("cannot interpolate None")
    if isinstance(value, PathLike):
        return quote(fspath(value), dialect)
    if isinstance(value, bytes):
        try:
            return quote(value.decode("utf-8"), dialect)
        except UnicodeDecodeError as e:
            raise QuotingError(f"bytes value is not valid UTF-8: {value!r}") from e
    return quote(str(value), dialect)


def build(fragments: Sequence[str], values: Sequence[Any], dialect: "Dialect | str" = Dialect.BASH) -> QuotedCommand:
    """Interleave literal ``fragments`` with quoted ``values``.

    ``fragments`` must hold exactly one more item than ``values``; literal
    text is copied verbatim, whitespace included.
    """
    if len(fragments) != len(values) + 1:
        raise QuotingError(
            f"expected {len(values) + 1} fragments for {len(values)} values, got {len(fragments)}"
        )
    resolved = Dialect.parse(dialect)
    parts = [fragments[0]]
    for value, fragment in zip(values, fragments[1:]):
        parts.append(_substitute(value, resolved))
        parts.append(fragment)
    return QuotedCommand("".join(parts), resolved)


def split_template(fmt: str) -> list[str]:
    """Split a ``{}`` template into literal fragments.

    ``{{`` and ``}}`` are literal braces. Named or numbered fields, format
    specs and conversions are rejected.
    """
    fragments = [""]
    for literal, field, spec, conversion in _formatter.parse(fmt):
        fragments[-1] += literal
        if field is None:
            continue
        if field != "" or spec or conversion:
            raise QuotingError(f"only bare {{}} placeholders are supported, got {{{field}}}")
        fragments.append("")
    return fragments


def template(fmt: str, *values: Any, dialect: "Dialect | str" = Dialect.BASH) -> QuotedCommand:
    """Build a command from a ``{}`` template, e.g. ``template("ls {}", path)``."""
    try:
        fragments = split_template(fmt)
    except ValueError as e:
        if isinstance(e, QuotingError):
            raise
        raise QuotingError(f"malformed template {fmt!r}: {e}") from e
    return build(fragments, values, dialect)


def command_line(program: str, *args: Any, dialect: "Dialect | str" = Dialect.BASH) -> QuotedCommand:
    """Program name inserted verbatim followed by each quoted argument."""
    if not args:
        return build([program], [], dialect)
    fragments = [program + " ", *([" "] * (len(args) - 1)), ""]
    return build(fragments, args, dialect)
