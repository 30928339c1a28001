"""Audit log contracts.

Audited and blocked calls are recorded as single text lines in a bounded
in-memory buffer and periodically written, as one blob, to a durable sink.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class AuditChannel:
    """Channel names used by the mediator."""

    AUDIT = "policy.audit"
    BLOCK = "policy.block"


class LogEntry(BaseModel):
    """A single buffered audit line."""

    model_config = ConfigDict(frozen=True)

    seq: int
    timestamp: datetime
    channel: str
    payload: str        # serialized, possibly truncated
    line: str           # "[ts] [channel] payload\n"
    byte_size: int      # UTF-8 length of line
    truncated: bool = False


class SyncTransportFailure(Exception):
    """The remote sink could not accept a write."""


class AuditSink(ABC):
    """Durable destination for the buffer's contents."""

    @abstractmethod
    async def write(self, body: str) -> None:
        """Replace the remote object with ``body``.

        Raises SyncTransportFailure when the write was not accepted.
        """
        ...

    def describe(self) -> str:
        return type(self).__name__
