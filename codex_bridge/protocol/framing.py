"""Newline-delimited JSON framing shared by the caller and app-server channels.

One JSON document per line, terminated by a single ``\\n``. A line that does not
parse is reported as a :class:`Frame` carrying an error and the reader keeps
going.
"""

from __future__ import annotations

import asyncio
import json
import sys
import threading
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

from codex_bridge.errors import FramingError, RuntimeClosedError

Readline = Callable[[], Awaitable[bytes]]


class WritableStream(Protocol):
    """The subset of ``asyncio.StreamWriter`` the writer relies on."""

    def write(self, data: bytes) -> None:
        ...

    async def drain(self) -> None:
        ...

    def is_closing(self) -> bool:
        ...


@dataclass(frozen=True)
class Frame:
    """One decoded line: either ``payload`` or ``error`` is meaningful."""

    raw: str
    payload: Any = None
    error: FramingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def encode_message(message: Any) -> bytes:
    text = json.dumps(message, ensure_ascii=False, separators=(",", ":"))
    return (text + "\n").encode("utf-8")


def decode_line(raw: bytes | str) -> Any:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FramingError(f"line is not valid UTF-8: {exc}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FramingError(f"invalid JSON: {exc}") from exc


async def read_frames(readline: Readline) -> AsyncIterator[Frame]:
    """Yield frames until ``readline`` returns ``b""`` (EOF)."""
    while True:
        try:
            line = await readline()
        except ValueError as exc:
            # asyncio.StreamReader raises ValueError for lines over its limit.
            yield Frame(raw="", error=FramingError(f"line exceeds reader limit: {exc}"))
            continue
        if not line:
            return
        stripped = line.strip()
        if not stripped:
            continue
        raw = stripped.decode("utf-8", errors="replace")
        try:
            payload = decode_line(stripped)
        except FramingError as exc:
            yield Frame(raw=raw, error=exc)
            continue
        yield Frame(raw=raw, payload=payload)


class JsonLineWriter:
    """Serialize messages onto a stream, one per line, without interleaving."""

    def __init__(self, stream: WritableStream, name: str = "stream") -> None:
        self._stream = stream
        self._name = name
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self._stream.is_closing()

    def close(self) -> None:
        self._closed = True

    async def write(self, message: Any) -> None:
        data = encode_message(message)
        if self.closed:
            raise RuntimeClosedError(f"{self._name} is closed")
        async with self._lock:
            if self.closed:
                raise RuntimeClosedError(f"{self._name} is closed")
            try:
                self._stream.write(data)
                await self._stream.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                self._closed = True
                raise RuntimeClosedError(f"{self._name} is closed: {exc}") from exc


class StdoutStream:
    """Adapter exposing the process stdout as a :class:`WritableStream`."""

    def __init__(self, buffer=None) -> None:
        self._buffer = buffer if buffer is not None else sys.stdout.buffer

    def write(self, data: bytes) -> None:
        self._buffer.write(data)

    async def drain(self) -> None:
        self._buffer.flush()

    def is_closing(self) -> bool:
        return bool(getattr(self._buffer, "closed", False))


class StdinLineSource:
    """Read stdin lines on a daemon thread and hand them to the event loop.

    A daemon thread keeps a blocked ``readline`` from holding up process exit.
    """

    def __init__(self, buffer=None) -> None:
        self._buffer = buffer if buffer is not None else sys.stdin.buffer
        self._queue: asyncio.Queue[bytes] | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        queue = self._queue

        def worker() -> None:
            while True:
                try:
                    line = self._buffer.readline()
                except (OSError, ValueError):
                    line = b""
                try:
                    loop.call_soon_threadsafe(queue.put_nowait, line)
                except RuntimeError:
                    # Event loop already closed.
                    return
                if not line:
                    return

        self._thread = threading.Thread(target=worker, daemon=True, name="codex-bridge-stdin")
        self._thread.start()

    async def readline(self) -> bytes:
        self.start()
        assert self._queue is not None
        return await self._queue.get()
