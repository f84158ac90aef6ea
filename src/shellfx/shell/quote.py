"""Shell quoting for the supported interpreter dialects.

``quote`` turns a raw token into a string that the target shell parses back
into exactly one argument equal to the input.
"""

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Iterable, Union

from .errors import QuotingError

_SAFE_BASH = re.compile(r"^[A-Za-z0-9/_.\-@:=]+$")
_SAFE_POSIX = re.compile(r"^[A-Za-z0-9/_.\-@:,+%]+$")
_POWERSHELL_QUOTES = re.compile("(['‘’‚‛])")

_ANSI_C_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
}


class Dialect(str, Enum):
    """Quoting rules of a shell interpreter."""

    BASH = "bash"
    POSIX = "posix"
    POWERSHELL = "powershell"

    @classmethod
    def parse(cls, value: "str | Dialect | None") -> "Dialect":
        if value is None:
            return cls.BASH
        if isinstance(value, Dialect):
            return value
        text = value.strip().lower()
        if text in {"bash", "zsh", "ksh"}:
            return cls.BASH
        if text in {"posix", "sh", "dash"}:
            return cls.POSIX
        if text in {"powershell", "pwsh"}:
            return cls.POWERSHELL
        raise ValueError(f"invalid shell dialect: {value}")

    @classmethod
    def for_shell(cls, shell: str) -> "Dialect":
        """Guess the dialect from an interpreter path."""
        name = PurePath(shell).name.lower()
        if name.endswith(".exe"):
            name = name[:-4]
        if name in {"bash", "zsh", "ksh", "mksh"}:
            return cls.BASH
        if name in {"pwsh", "powershell"}:
            return cls.POWERSHELL
        return cls.POSIX


@dataclass(frozen=True)
class Raw:
    """A pre-quoted fragment inserted into a command without escaping."""

    text: str

    def __str__(self) -> str:
        return self.text


Quotable = Union[str, Raw]


def _quote_bash(value: str) -> str:
    if value == "":
        return "$''"
    if _SAFE_BASH.match(value):
        return value
    return "$'" + "".join(_ANSI_C_ESCAPES.get(ch, ch) for ch in value) + "'"


def _quote_posix(value: str) -> str:
    if value == "":
        return "''"
    if _SAFE_POSIX.match(value):
        return value
    return "'" + value.replace("'", "'\"'\"'") + "'"


def _quote_powershell(value: str) -> str:
    return "'" + _POWERSHELL_QUOTES.sub(r"\1\1", value) + "'"


_QUOTERS = {
    Dialect.BASH: _quote_bash,
    Dialect.POSIX: _quote_posix,
    Dialect.POWERSHELL: _quote_powershell,
}


def quote(value: Quotable, dialect: "Dialect | str" = Dialect.BASH) -> str:
    """Quote ``value`` as a single argument for ``dialect``.

    ``Raw`` values are returned untouched. A NUL character cannot be passed
    through any shell argument vector and raises ``QuotingError``.
    """
    if isinstance(value, Raw):
        return value.text
    if not isinstance(value, str):
        raise QuotingError(f"cannot quote value of type {type(value).__name__}")
    if "\0" in value:
        raise QuotingError(f"value contains a NUL character: {value!r}")
    return _QUOTERS[Dialect.parse(dialect)](value)


def quote_all(values: Iterable[Quotable], dialect: "Dialect | str" = Dialect.BASH) -> str:
    """Quote every element and join them with single spaces."""
    return " ".join(quote(value, dialect) for value in values)
