"""Live tailing of logical log files.

Each session owns one file handle and one asyncio task and moves through::

    OPENING -> FOLLOWING -> (ROTATED -> REOPENING -> FOLLOWING)* -> CLOSED

Events are pushed into a bounded sink. ``QueueSink`` implements the two
backpressure policies: ``block`` (the reader waits for space) and
``drop_oldest`` (the oldest queued event is discarded and counted).
"""

from __future__ import annotations

import asyncio
import bz2
import gzip
import logging
import lzma
import os
import posixpath
import re
import uuid
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

import aiofiles
from aiofiles.threadpool import wrap

from .config import EngineConfig
from .errors import (
    LogSourceError,
    NotFoundError,
    PermissionDeniedError,
    SessionNotFoundError,
    StreamInterruptedError,
    UnsupportedCompressionError,
)
from .normalize import compression_suffix, normalize

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
COMPRESSED_NOT_LIVE = "compressed, not readable live"
# Ended sessions whose final events have not been read yet.
FINISHED_RETAINED = 256


class SessionState(str, Enum):
    OPENING = "opening"
    FOLLOWING = "following"
    ROTATED = "rotated"
    REOPENING = "reopening"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """A line or status change delivered to the subscriber."""

    type: str  # "line" | "status"
    timestamp: datetime
    line: str | None = None
    parsed_fields: dict[str, str | None] | None = None
    offset: int | None = None  # byte offset just past this line in the physical file
    state: SessionState | None = None
    message: str | None = None
    error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "timestamp": self.timestamp.isoformat()}
        if self.type == "line":
            out["line"] = self.line
            out["parsedFields"] = self.parsed_fields
            out["offset"] = self.offset
        else:
            out["state"] = self.state.value if self.state else None
            out["message"] = self.message
            if self.error is not None:
                out["error"] = self.error
        return out


class StreamSink(Protocol):
    """Transport side of a session."""

    async def push(self, event: StreamEvent) -> None: ...

    def is_disconnected(self) -> bool: ...


class QueueSink:
    """Bounded in-process sink drained by ``read``."""

    def __init__(self, maxsize: int = 1000, policy: str = "drop_oldest") -> None:
        if policy not in ("block", "drop_oldest"):
            raise ValueError("policy must be 'block' or 'drop_oldest'")
        self.queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=maxsize)
        self.policy = policy
        self.dropped = 0
        self._disconnected = False

    async def push(self, event: StreamEvent) -> None:
        if self.policy == "block":
            await self.queue.put(event)
            return
        while self.queue.full():
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self.dropped += 1
        self.queue.put_nowait(event)

    def is_disconnected(self) -> bool:
        return self._disconnected

    def disconnect(self) -> None:
        self._disconnected = True

    async def read(self, max_events: int = 100, wait_seconds: float = 0.0) -> list[StreamEvent]:
        """Drain up to ``max_events``; waits up to ``wait_seconds`` for the first one."""
        out: list[StreamEvent] = []
        if self.queue.empty() and wait_seconds > 0:
            try:
                out.append(await asyncio.wait_for(self.queue.get(), timeout=wait_seconds))
            except TimeoutError:
                return out
        while len(out) < max_events:
            try:
                out.append(self.queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return out


def resolve_physical(logical_path: str) -> str:
    """The file currently backing ``logical_path``: itself, else its newest variant."""
    if os.path.isfile(logical_path):
        return logical_path
    directory = posixpath.dirname(logical_path) or "."
    try:
        names = os.listdir(directory)
    except FileNotFoundError as exc:
        raise NotFoundError(f"File not found: {logical_path}", path=logical_path) from exc
    except PermissionError as exc:
        raise PermissionDeniedError(f"Directory not readable: {directory}", path=logical_path) from exc
    variants = []
    for name in names:
        full = posixpath.join(directory, name)
        if normalize(full) == logical_path and os.path.isfile(full):
            variants.append(full)
    if not variants:
        raise NotFoundError(f"File not found: {logical_path}", path=logical_path)
    return max(variants, key=lambda p: os.stat(p).st_mtime)


@asynccontextmanager
async def _open_binary(path: str) -> AsyncIterator[Any]:
    """Open a log file for async binary reading (plain or compressed)."""
    suffix = compression_suffix(path)
    if suffix is not None:
        opener = {".gz": gzip.open, ".bz2": bz2.open, ".xz": lzma.open}[suffix]
        af = wrap(opener(path, "rb"))
        try:
            yield af
        finally:
            await af.close()
    else:
        async with aiofiles.open(path, "rb") as f:
            yield f


async def backfill_start(f: Any, size: int, max_lines: int) -> int:
    """Offset of the first of the last ``max_lines`` complete lines (0 = whole file)."""
    if max_lines <= 0 or size == 0:
        return 0
    pos = size
    newlines = 0
    while pos > 0:
        n = min(CHUNK_SIZE, pos)
        pos -= n
        await f.seek(pos)
        chunk = await f.read(n)
        for i in range(len(chunk) - 1, -1, -1):
            if chunk[i] == 0x0A:
                newlines += 1
                if newlines == max_lines + 1:
                    return pos + i + 1
    return 0


@dataclass
class TailSession:
    """One subscriber following one logical file."""

    session_id: str
    logical_path: str
    sink: StreamSink
    regex: str = ""
    read_compressed: bool = False
    max_lines: int = 0
    poll_interval: float = 0.5
    reopen_attempts: int = 10

    state: SessionState = SessionState.OPENING
    physical_path: str | None = None
    cursor_offset: int = 0
    lines_emitted: int = 0
    opened_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    _stop: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _task: asyncio.Task[None] | None = field(default=None, repr=False)
    _pattern: re.Pattern[str] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.regex:
            try:
                self._pattern = re.compile(self.regex)
            except re.error as exc:
                logger.warning("Session %s: regex does not compile (%s); parsing disabled", self.session_id, exc)

    # ------------------------------------------------------------------ lifecycle

    def start(self) -> asyncio.Task[None]:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"tail-{self.session_id}")
        return self._task

    async def close(self) -> None:
        """Stop the worker and wait until the handle is released."""
        self._stop.set()
        task = self._task
        if task is not None and not task.done():
            # A worker blocked on a full sink never sees the stop flag.
            done, _ = await asyncio.wait({task}, timeout=max(1.0, self.poll_interval * 4))
            if not done:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self.state = SessionState.CLOSED

    @property
    def stopped(self) -> bool:
        return self._stop.is_set() or self.sink.is_disconnected()

    async def _wait(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except TimeoutError:
            pass

    def to_dict(self) -> dict[str, Any]:
        out = {
            "sessionId": self.session_id,
            "logicalPath": self.logical_path,
            "physicalPath": self.physical_path,
            "state": self.state.value,
            "cursorOffset": self.cursor_offset,
            "linesEmitted": self.lines_emitted,
            "openedAt": self.opened_at.isoformat(),
        }
        dropped = getattr(self.sink, "dropped", None)
        if dropped is not None:
            out["dropped"] = dropped
        return out

    # ------------------------------------------------------------------ events

    async def _status(self, state: SessionState, message: str | None = None, error: LogSourceError | None = None) -> None:
        self.state = state
        await self.sink.push(
            StreamEvent(
                type="status",
                timestamp=datetime.now(UTC),
                state=state,
                message=message,
                error=error.to_dict() if error is not None else None,
            )
        )

    async def _line(self, raw: bytes, offset: int) -> None:
        text = raw.decode("utf-8", errors="replace").rstrip("\r")
        parsed = None
        if self._pattern is not None:
            m = self._pattern.match(text)
            parsed = m.groupdict() if m else None
        self.cursor_offset = offset
        self.lines_emitted += 1
        await self.sink.push(
            StreamEvent(
                type="line",
                timestamp=datetime.now(UTC),
                line=text,
                parsed_fields=parsed,
                offset=offset,
            )
        )

    async def _emit_lines(self, buf: bytes, base_offset: int) -> bytes:
        """Emit complete lines in ``buf`` (starting at ``base_offset``); return the partial tail."""
        start = 0
        while True:
            nl = buf.find(b"\n", start)
            if nl < 0:
                return buf[start:]
            await self._line(buf[start:nl], base_offset + nl + 1)
            start = nl + 1

    # ------------------------------------------------------------------ worker

    async def _run(self) -> None:
        try:
            try:
                path = await asyncio.to_thread(resolve_physical, self.logical_path)
            except LogSourceError as exc:
                await self._status(SessionState.CLOSED, str(exc), exc)
                return
            if compression_suffix(path) is not None and not self.read_compressed:
                err = UnsupportedCompressionError(COMPRESSED_NOT_LIVE, path=path)
                await self._status(SessionState.CLOSED, COMPRESSED_NOT_LIVE, err)
                return

            backfill = True
            while not self.stopped:
                self.physical_path = path
                next_path = await self._follow(path, backfill=backfill)
                if next_path is None:
                    break
                backfill = False
                path = next_path
        except OSError as exc:
            logger.warning("Session %s failed: %s", self.session_id, exc)
            err = StreamInterruptedError(f"Stream failed: {exc}", path=self.physical_path)
            await self._status(SessionState.CLOSED, str(err), err)
        finally:
            self.state = SessionState.CLOSED
            logger.debug("Session %s closed", self.session_id)

    async def _follow(self, path: str, *, backfill: bool) -> str | None:
        """Follow one physical file; return the next physical path after rotation, or None."""
        async with _open_binary(path) as f:
            compressed = compression_suffix(path) is not None
            if compressed:
                ino, dev = None, None
                offset = await self._backfill_compressed(f)
            else:
                st = os.fstat(f.fileno())
                ino, dev = st.st_ino, st.st_dev
                offset = 0
                if backfill:
                    offset = await backfill_start(f, st.st_size, self.max_lines)
                await f.seek(offset)
            self.cursor_offset = offset
            await self._status(SessionState.FOLLOWING, path)

            pending = b""
            while not self.stopped:
                if compressed:
                    # Archives never grow; wait for the live file to reappear.
                    if os.path.isfile(self.logical_path):
                        await self._status(SessionState.ROTATED, "live file available")
                        return await self._reopen()
                    await self._wait(self.poll_interval)
                    continue

                chunk = await f.read(CHUNK_SIZE)
                if chunk:
                    buf = pending + chunk
                    base = offset - len(pending)
                    offset += len(chunk)
                    pending = await self._emit_lines(buf, base)
                    continue

                reason = _rotation_reason(path, ino, dev, offset)
                if reason is None and path != self.logical_path and os.path.isfile(self.logical_path):
                    reason = "live file available"
                if reason is None:
                    await self._wait(self.poll_interval)
                    continue

                logger.info("Session %s: %s %s", self.session_id, path, reason)
                # Flush what the old handle still holds before switching files.
                while chunk := await f.read(CHUNK_SIZE):
                    buf = pending + chunk
                    base = offset - len(pending)
                    offset += len(chunk)
                    pending = await self._emit_lines(buf, base)
                if pending:
                    await self._line(pending, offset)
                    pending = b""
                await self._status(SessionState.ROTATED, reason)
                return await self._reopen()
        return None

    async def _backfill_compressed(self, f: Any) -> int:
        lines: deque[tuple[bytes, int]] = deque(maxlen=self.max_lines or None)
        offset = 0
        pending = b""
        while chunk := await f.read(CHUNK_SIZE):
            buf = pending + chunk
            start = 0
            while (nl := buf.find(b"\n", start)) >= 0:
                lines.append((buf[start:nl], offset + nl + 1 - len(pending)))
                start = nl + 1
            offset += len(chunk)
            pending = buf[start:]
        for raw, end in lines:
            await self._line(raw, end)
        return offset

    async def _reopen(self) -> str | None:
        await self._status(SessionState.REOPENING, self.logical_path)
        for attempt in range(1, self.reopen_attempts + 1):
            if self.stopped:
                return None
            if os.path.isfile(self.logical_path):
                self.cursor_offset = 0
                return self.logical_path
            logger.debug("Session %s: reopen attempt %d failed", self.session_id, attempt)
            await self._wait(self.poll_interval)
        err = StreamInterruptedError(
            f"File disappeared and could not be reopened: {self.logical_path}", path=self.logical_path
        )
        logger.warning("Session %s: %s", self.session_id, err)
        await self._status(SessionState.CLOSED, str(err), err)
        return None


def _rotation_reason(path: str, ino: int | None, dev: int | None, offset: int) -> str | None:
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return "disappeared"
    if st.st_ino != ino or st.st_dev != dev:
        return "replaced"
    if st.st_size < offset:
        return "truncated"
    return None


class StreamMultiplexer:
    """Registry of live tail sessions.

    A session that ends on its own (missing file, compressed-only file, a
    rotation it could not follow) leaves the live registry as soon as its
    worker finishes. Its remaining events stay readable until drained, after
    which the id is forgotten. At most ``FINISHED_RETAINED`` such sessions are
    kept; the oldest are dropped first.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        self._sessions: dict[str, tuple[TailSession, QueueSink]] = {}
        self._finished: dict[str, tuple[TailSession, QueueSink]] = {}

    def open_stream(
        self,
        logical_path: str,
        *,
        regex: str = "",
        read_compressed: bool = False,
        max_lines: int = 0,
        sink: QueueSink | None = None,
    ) -> TailSession:
        """Start a session. Must be called from a running event loop."""
        if max_lines < 0:
            raise ValueError("max_lines must be >= 0")
        sink = sink or QueueSink(self.config.stream_queue_size, self.config.stream_backpressure)
        session = TailSession(
            session_id=uuid.uuid4().hex,
            logical_path=normalize(logical_path),
            sink=sink,
            regex=regex,
            read_compressed=read_compressed,
            max_lines=max_lines,
            poll_interval=self.config.poll_interval,
            reopen_attempts=self.config.reopen_attempts,
        )
        self._sessions[session.session_id] = (session, sink)
        task = session.start()
        task.add_done_callback(lambda _t, sid=session.session_id: self._reap(sid))
        logger.info("Opened stream %s for %s", session.session_id, session.logical_path)
        return session

    def _reap(self, session_id: str) -> None:
        entry = self._sessions.pop(session_id, None)
        if entry is None:
            return
        logger.info("Stream %s ended", session_id)
        if entry[1].queue.empty():
            return
        self._finished[session_id] = entry
        while len(self._finished) > FINISHED_RETAINED:
            del self._finished[next(iter(self._finished))]

    def _entry(self, session_id: str) -> tuple[TailSession, QueueSink]:
        entry = self._sessions.get(session_id) or self._finished.get(session_id)
        if entry is None:
            raise SessionNotFoundError(f"Unknown stream session: {session_id}")
        return entry

    def get(self, session_id: str) -> TailSession:
        return self._entry(session_id)[0]

    async def read(self, session_id: str, max_events: int = 100, wait_seconds: float = 0.0) -> list[StreamEvent]:
        """Drain events; an ended session is forgotten once nothing is left to read."""
        if max_events <= 0:
            raise ValueError("max_events must be > 0")
        _, sink = self._entry(session_id)
        events = await sink.read(max_events, wait_seconds)
        if session_id in self._finished and sink.queue.empty():
            del self._finished[session_id]
        return events

    async def close_stream(self, session_id: str) -> bool:
        """Close and forget a session. Returns False when it was already gone."""
        entry = self._sessions.pop(session_id, None) or self._finished.pop(session_id, None)
        if entry is None:
            return False
        session, sink = entry
        sink.disconnect()
        await session.close()
        logger.info("Closed stream %s", session_id)
        return True

    def list_streams(self) -> list[dict[str, Any]]:
        return [s.to_dict() for s, _ in self._sessions.values()]

    async def shutdown(self) -> None:
        for session_id in list(self._sessions):
            await self.close_stream(session_id)
        self._finished.clear()
