"""Incremental forwarding of the parent's stdin to child processes.

Only one child may hold the forwarding lease at a time so chunks from the
shared source are never interleaved between consumers. A chunk that arrives
after the lease holder went away is kept for the next lease holder.
"""

from __future__ import annotations

import asyncio
import sys
import weakref
from typing import Any, Awaitable, Literal, Optional

from ..util.log import Log
from .errors import StdinBusyError

log = Log.create({"service": "shell.stdin"})

CHUNK_SIZE = 64 * 1024

LeasePolicy = Literal["serialize", "reject"]

# one forwarder per event loop; its lock and pending read belong to that loop
_defaults: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, StdinForwarder]" = weakref.WeakKeyDictionary()


class StdinForwarder:
    """Single-consumer reader of a shared input stream.

    ``source`` is an ``asyncio.StreamReader`` or a binary file object. With
    no source the process stdin is attached on first use: as a non-blocking
    pipe reader where possible, otherwise read from a worker thread.
    """

    def __init__(
        self,
        source: Any = None,
        *,
        policy: LeasePolicy = "serialize",
        chunk_size: int = CHUNK_SIZE,
    ):
        self._source = source
        self._policy = policy
        self._chunk_size = chunk_size
        self._lock = asyncio.Lock()
        self._carry: bytes | None = None
        self._pending: asyncio.Future[bytes] | None = None
        self._eof = False

    @classmethod
    def default(cls) -> "StdinForwarder":
        """Forwarder bound to ``sys.stdin`` for the running event loop."""
        loop = asyncio.get_running_loop()
        forwarder = _defaults.get(loop)
        if forwarder is None:
            forwarder = _defaults[loop] = cls()
        return forwarder

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def exhausted(self) -> bool:
        return self._eof and self._carry is None

    async def _attach_stdin(self) -> None:
        stream = sys.stdin.buffer if hasattr(sys.stdin, "buffer") else sys.stdin
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        try:
            await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), stream)
        except (ValueError, OSError, AttributeError):
            # regular files and in-memory streams cannot be watched
            self._source = stream
            return
        self._source = reader

    async def _read(self) -> bytes:
        source = self._source
        if isinstance(source, asyncio.StreamReader):
            return await source.read(self._chunk_size)
        read = getattr(source, "read1", None) or source.read
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, read, self._chunk_size)

    async def _next_chunk(self, until: Optional[asyncio.Future[Any]]) -> bytes | None:
        """Next chunk, or ``None`` if ``until`` completed first."""
        if until is not None and until.done():
            return None
        if self._carry is not None:
            chunk, self._carry = self._carry, None
            return chunk
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._read())
        if until is not None and not self._pending.done():
            await asyncio.wait({self._pending, until}, return_when=asyncio.FIRST_COMPLETED)
            if not self._pending.done():
                return None
        chunk = await self._pending
        self._pending = None
        return chunk

    async def _acquire(self) -> None:
        if self._policy == "reject" and self._lock.locked():
            raise StdinBusyError("stdin forwarding is already in use by another process")
        await self._lock.acquire()
        if self._source is None:
            await self._attach_stdin()

    async def forward(self, writer: asyncio.StreamWriter, until: Optional[Awaitable[Any]] = None) -> int:
        """Copy chunks into ``writer`` until the source ends or ``until`` completes.

        The writer is closed when the source is exhausted. Returns the
        number of bytes forwarded.
        """
        await self._acquire()
        stop = asyncio.ensure_future(until) if until is not None else None
        sent = 0
        try:
            while not self._eof:
                chunk = await self._next_chunk(stop)
                if chunk is None:
                    break
                if not chunk:
                    self._eof = True
                    break
                try:
                    writer.write(chunk)
                    await writer.drain()
                except (BrokenPipeError, ConnectionResetError):
                    self._carry = chunk
                    break
                sent += len(chunk)
            if self._eof:
                writer.close()
        finally:
            self._lock.release()
        log.debug("stdin lease released", {"bytes": sent, "eof": self._eof})
        return sent

    async def read_all(self) -> bytes:
        """Consume the rest of the source under the lease."""
        await self._acquire()
        parts: list[bytes] = []
        try:
            while not self._eof:
                chunk = await self._next_chunk(None)
                if not chunk:
                    self._eof = True
                    break
                parts.append(chunk)
        finally:
            self._lock.release()
        return b"".join(parts)
