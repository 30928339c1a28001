"""Durable sinks for the audit buffer.

Both sinks do a full replace of the destination with the buffer body.
"""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urlparse

import httpx

from contracts.audit import AuditSink, SyncTransportFailure
from contracts.manifest import AuditConfig

logger = logging.getLogger(__name__)


class HttpAuditSink(AuditSink):
    """PUT the body as UTF-8 plain text to a fixed URL (WebDAV style)."""

    def __init__(
        self,
        endpoint: str,
        auth: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._timeout = timeout
        self._transport = transport
        self._headers = {"Content-Type": "text/plain; charset=utf-8"}
        if auth:
            self._headers["Authorization"] = auth

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def describe(self) -> str:
        return self._endpoint

    async def write(self, body: str) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.put(
                    self._endpoint,
                    content=body.encode("utf-8"),
                    headers=self._headers,
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise SyncTransportFailure(str(exc) or type(exc).__name__) from exc


class FileAuditSink(AuditSink):
    """Replace a local file with the body."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def describe(self) -> str:
        return str(self._path)

    async def write(self, body: str) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(body, encoding="utf-8")
        except OSError as exc:
            raise SyncTransportFailure(str(exc)) from exc


def create_sink(config: AuditConfig) -> AuditSink | None:
    """Pick a sink from the manifest's audit endpoint, or None if unset."""
    endpoint = config.endpoint
    if not endpoint:
        return None
    parsed = urlparse(endpoint)
    if parsed.scheme in ("http", "https"):
        return HttpAuditSink(endpoint, auth=config.auth, timeout=config.timeout)
    if parsed.scheme == "file":
        return FileAuditSink(parsed.path)
    if parsed.scheme and len(parsed.scheme) > 1:
        raise ValueError(f"Unsupported audit endpoint scheme: {parsed.scheme!r}")
    if config.auth:
        logger.warning("Audit auth is ignored for file endpoint %s", endpoint)
    return FileAuditSink(endpoint)
