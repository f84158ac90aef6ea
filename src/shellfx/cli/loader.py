"""Script loading and execution.

Scripts are Python source run with top-level ``await`` support. They may
come from a local file, a markdown document (Python blocks run as-is, shell
blocks run as commands) or a URL.
"""

from __future__ import annotations

import ast
import asyncio
import inspect
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import httpx

from ..shell.quote import Raw
from ..shell.shell import Shell
from ..util.log import Log

log = Log.create({"service": "cli.loader"})

DEFAULT_FETCH_TIMEOUT = 30.0

MARKDOWN_SUFFIXES = {".md", ".markdown"}
PYTHON_LANGUAGES = {"python", "py", "python3"}
SHELL_LANGUAGES = {"sh", "bash", "shell", "zsh"}

_FENCE = re.compile(r"^(?P<fence>```+|~~~+)\s*(?P<lang>[\w+-]*)")

ScriptKind = Literal["python", "markdown", "eval", "stdin", "url"]


class LoaderError(Exception):
    """A script could not be located or read."""

    def __init__(self, location: str, message: str):
        self.location = location
        super().__init__(message)


class FetchError(LoaderError):
    """A remote script could not be downloaded."""


@dataclass(frozen=True)
class Script:
    source: str
    origin: str
    kind: ScriptKind


def transform_markdown(text: str) -> str:
    """Turn a markdown document into Python source.

    Python blocks are kept, shell blocks become ``await sh.run(...)``
    statements and everything else is blanked so line numbers in
    tracebacks still point into the document.
    """
    out: List[str] = []
    block: List[str] = []
    fence: Optional[str] = None
    lang = ""

    def flush() -> None:
        if lang in PYTHON_LANGUAGES:
            out.extend(block)
        elif lang in SHELL_LANGUAGES and any(line.strip() for line in block):
            out.append(f"await sh.run({chr(10).join(block)!r})")
            out.extend([""] * (len(block) - 1))
        else:
            out.extend([""] * len(block))

    for line in text.splitlines():
        if fence is None:
            match = _FENCE.match(line)
            if match:
                fence = match.group("fence")
                lang = match.group("lang").lower()
                block = []
            out.append("")
            continue
        if line.strip() == fence:
            flush()
            out.append("")
            fence = None
            continue
        block.append(line)

    if fence is not None:
        flush()
    return "\n".join(out) + "\n"


async def fetch(url: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """Download a script, raising ``FetchError`` on transport or HTTP errors."""
    log.info("fetching script", {"url": url})
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=DEFAULT_FETCH_TIMEOUT, follow_redirects=True) as owned:
                response = await owned.get(url)
        else:
            response = await client.get(url)
    except httpx.HTTPError as e:
        raise FetchError(url, f"Can't get {url}: {e}") from e

    if response.status_code >= 400:
        raise FetchError(url, f"Can't get {url}: HTTP {response.status_code}")
    return response.text


async def load_script(location: str, *, client: Optional[httpx.AsyncClient] = None) -> Script:
    """Resolve ``location`` (path or http(s) URL) to a runnable script."""
    if location.startswith(("http://", "https://")):
        text = await fetch(location, client)
        path = httpx.URL(location).path
        if Path(path).suffix.lower() in MARKDOWN_SUFFIXES:
            return Script(transform_markdown(text), location, "markdown")
        return Script(text, location, "url")

    path = Path(location).expanduser()
    if not path.is_file():
        raise LoaderError(location, f"Can't find script {location}")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise LoaderError(location, f"Can't read script {location}: {e}") from e

    origin = str(path.resolve())
    if path.suffix.lower() in MARKDOWN_SUFFIXES:
        return Script(transform_markdown(text), origin, "markdown")
    return Script(text, origin, "python")


def build_namespace(shell: Shell, script: Script, stdin: Any = "", argv: Optional[List[str]] = None) -> Dict[str, Any]:
    """Globals a script runs with."""
    return {
        "__name__": "__main__",
        "__file__": script.origin,
        "sh": shell,
        "Raw": Raw,
        "quote": shell.quote,
        "stdin": stdin,
        "sleep": asyncio.sleep,
        "argv": list(argv or []),
    }


async def execute(script: Script, namespace: Dict[str, Any]) -> Any:
    """Run ``script`` in ``namespace`` and return the value of a trailing expression."""
    tree = ast.parse(script.source, filename=script.origin, mode="exec")
    tail: Optional[ast.Expression] = None
    if tree.body and isinstance(tree.body[-1], ast.Expr):
        tail = ast.Expression(body=tree.body.pop().value)

    flags = ast.PyCF_ALLOW_TOP_LEVEL_AWAIT
    origin = Path(script.origin)
    if script.kind in {"python", "markdown"} and origin.is_file():
        # sibling modules of the script are importable
        directory = str(origin.parent)
        if directory not in sys.path:
            sys.path.insert(0, directory)

    outcome = eval(compile(tree, script.origin, "exec", flags=flags), namespace)
    if inspect.iscoroutine(outcome):
        await outcome
    if tail is None:
        return None

    value = eval(compile(tail, script.origin, "eval", flags=flags), namespace)
    if inspect.isawaitable(value):
        value = await value
    return value
