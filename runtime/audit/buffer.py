"""Bounded audit log buffer with single-flight sync to a durable sink.

Entries are single text lines, ``[timestamp] [channel] payload\\n``, kept
oldest first under a byte cap. ``push`` and ``clear`` are synchronous and
never wait on the network; ``sync`` is the only coroutine and the only
place the buffer suspends.

While a sync is in flight, ``push`` may still append (and evict). The sync
works from a snapshot and, on success, removes only the entries it sent,
so lines pushed during the round trip stay for the next sync. Delivery is
best effort: after the last failed attempt the buffer is left as is and
the failure is logged, never raised.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from contracts.audit import AuditSink, LogEntry, SyncTransportFailure

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 255 * 1024
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 0.2  # seconds
TRUNCATE_CHUNK = 64         # characters trimmed per step


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def format_timestamp(ts: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _utf8_safe(text: str) -> str:
    # Lone surrogates cannot be encoded; keep them as \udXXX escapes.
    return text.encode("utf-8", "backslashreplace").decode("utf-8")


def _string_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _string_keys(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_string_keys(v) for v in value]
    return value


def serialize_payload(payload: Any) -> str:
    """Deterministic single-line, UTF-8 encodable text form of any payload.

    Mixed key types (``{1: "a", "b": 2}``) are sorted as strings. A payload
    that still cannot be dumped, such as a self-referencing dict, is logged
    as its ``repr``.
    """
    try:
        try:
            text = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
        except TypeError:
            text = json.dumps(
                _string_keys(payload), sort_keys=True, ensure_ascii=False, default=str
            )
    except (ValueError, RecursionError):
        text = json.dumps(repr(payload), ensure_ascii=False)
    return _utf8_safe(text)


def fit_line(prefix: str, body: str, capacity: int) -> tuple[str | None, str, bool]:
    """Build ``prefix + body + newline`` no larger than ``capacity`` bytes.

    Trims ``body`` from the end in TRUNCATE_CHUNK-character steps. Returns
    ``(line, body, truncated)``; ``line`` is None when the prefix alone does
    not fit.
    """
    line = prefix + body + "\n"
    excess = _byte_len(line) - capacity
    if excess <= 0:
        return line, body, False
    if _byte_len(prefix) + 1 > capacity:
        return None, "", True
    while excess > 0 and body:
        chunk = body[-TRUNCATE_CHUNK:]
        body = body[:-TRUNCATE_CHUNK]
        excess -= _byte_len(chunk)
    return prefix + body + "\n", body, True


@dataclass
class SyncSession:
    """One sync run: bounded attempts with exponential backoff between them."""

    sink: AuditSink
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base: float = DEFAULT_BACKOFF_BASE
    attempts: int = 0
    delays: list[float] = field(default_factory=list)
    last_error: Exception | None = None

    def delay(self, attempt: int) -> float:
        return self.backoff_base * (2 ** attempt)

    async def deliver(
        self, body: str, sleep: Callable[[float], Awaitable[Any]]
    ) -> bool:
        for attempt in range(self.max_attempts):
            self.attempts = attempt + 1
            try:
                await self.sink.write(body)
                return True
            except SyncTransportFailure as exc:
                self.last_error = exc
                logger.debug(
                    "Audit sync attempt %d/%d to %s failed: %s",
                    self.attempts, self.max_attempts, self.sink.describe(), exc,
                )
            if self.attempts < self.max_attempts:
                wait = self.delay(attempt)
                self.delays.append(wait)
                await sleep(wait)
        return False


class AuditLogBuffer:
    """Byte-capped FIFO of audit lines that owns its own sync lifecycle."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        sink: AuditSink | None = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        auto_sync: bool = True,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")
        self._capacity = capacity
        self._sink = sink
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._auto_sync = auto_sync
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep or asyncio.sleep

        self._entries: deque[LogEntry] = deque()
        self._total_bytes = 0
        self._syncing = False
        self._seq = 0
        self._tasks: set[asyncio.Task[bool]] = set()
        self._counters = {
            "pushed": 0,
            "evicted": 0,
            "truncated": 0,
            "dropped": 0,
            "sync_ok": 0,
            "sync_failed": 0,
        }

    # ── state ───────────────────────────────────────────────────────

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    @property
    def syncing(self) -> bool:
        return self._syncing

    @property
    def sink(self) -> AuditSink | None:
        return self._sink

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def tail(self, n: int = 20) -> list[LogEntry]:
        if n <= 0:
            return []
        return list(self._entries)[-n:]

    def render(self) -> str:
        """The exact body a sync would send right now."""
        return "".join(e.line for e in self._entries)

    def stats(self) -> dict[str, Any]:
        return {
            **self._counters,
            "entries": len(self._entries),
            "total_bytes": self._total_bytes,
            "capacity": self._capacity,
            "syncing": self._syncing,
        }

    # ── mutation ────────────────────────────────────────────────────

    def push(self, channel: str, payload: Any) -> LogEntry | None:
        """Append one entry, evicting the oldest ones to stay under capacity."""
        ts = self._clock()
        prefix = _utf8_safe(f"[{format_timestamp(ts)}] [{channel}] ")
        line, body, truncated = fit_line(prefix, serialize_payload(payload), self._capacity)
        if line is None:
            self._counters["dropped"] += 1
            logger.warning(
                "Dropping audit entry on channel %r: prefix exceeds capacity of %d bytes",
                channel, self._capacity,
            )
            return None
        if truncated:
            self._counters["truncated"] += 1
            logger.debug("Truncated oversized audit entry on channel %r", channel)

        size = _byte_len(line)
        while self._entries and self._total_bytes + size > self._capacity:
            evicted = self._entries.popleft()
            self._total_bytes -= evicted.byte_size
            self._counters["evicted"] += 1

        self._seq += 1
        entry = LogEntry(
            seq=self._seq,
            timestamp=ts,
            channel=channel,
            payload=body,
            line=line,
            byte_size=size,
            truncated=truncated,
        )
        self._entries.append(entry)
        self._total_bytes += size
        self._counters["pushed"] += 1

        self._schedule_sync()
        return entry

    def clear(self) -> None:
        """Drop everything locally. An in-flight sync is not affected."""
        self._entries.clear()
        self._total_bytes = 0

    # ── sync ────────────────────────────────────────────────────────

    def _schedule_sync(self) -> None:
        if not self._auto_sync or self._sink is None or self._syncing:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop in this context; the next push or an explicit
            # sync() picks the entry up.
            return
        task = loop.create_task(self.sync())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def sync(self) -> bool:
        """Write the buffered lines to the sink. Returns True on success.

        No-op when a sync is already running, the buffer is empty, or no
        sink is configured.
        """
        if self._syncing or not self._entries or self._sink is None:
            return False

        self._syncing = True
        try:
            snapshot = list(self._entries)
            session = SyncSession(
                sink=self._sink,
                max_attempts=self._max_attempts,
                backoff_base=self._backoff_base,
            )
            delivered = await session.deliver(
                "".join(e.line for e in snapshot), self._sleep
            )
            if not delivered:
                self._counters["sync_failed"] += 1
                logger.warning(
                    "Audit sync to %s failed after %d attempts, keeping %d entries: %s",
                    self._sink.describe(), session.attempts, len(self._entries),
                    session.last_error,
                )
                return False

            last_seq = snapshot[-1].seq
            removed = 0
            while self._entries and self._entries[0].seq <= last_seq:
                sent = self._entries.popleft()
                self._total_bytes -= sent.byte_size
                removed += 1
            self._counters["sync_ok"] += 1
            logger.debug("Audit sync to %s wrote %d entries", self._sink.describe(), removed)
            return True
        finally:
            self._syncing = False

    async def join(self) -> None:
        """Wait for every sync scheduled by ``push`` to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def flush(self) -> bool:
        """Best-effort flush for shutdown: settle pending syncs, then sync once.

        Returns True when nothing is left undelivered.
        """
        await self.join()
        if self._entries:
            await self.sync()
        return not self._entries
