"""GateKit FastAPI admin server.

Exposes the core contract surface (evaluate, audit push/sync/clear) to
operators and out-of-process interception layers.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from contracts.api import AuditView, EvaluateRequest, EvaluateResponse, PushRequest
from contracts.policy import CallDescriptor

from runtime.bootstrap import GateKitComponents, init_gatekit

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

# ── Module-level state (set during lifespan) ─────────────────────────

_components: GateKitComponents | None = None
_start_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialise all components on startup, flush the audit buffer on shutdown."""
    global _components, _start_time  # noqa: PLW0603

    _start_time = time.time()
    _components = init_gatekit()

    yield

    # Best effort; the sync swallows transport failures itself.
    if not await _components.buffer.flush():
        logger.warning(
            "Shutting down with %d undelivered audit entries", len(_components.buffer)
        )


app = FastAPI(title="GateKit Runtime", version=VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require() -> GateKitComponents:
    if _components is None:
        raise HTTPException(status_code=503, detail="Runtime not initialised")
    return _components


# ── Endpoints ────────────────────────────────────────────────────────


@app.get("/v1/gatekit/health")
async def health() -> dict[str, Any]:
    """Extended health-check endpoint."""
    result: dict[str, Any] = {"status": "ok", "version": VERSION}
    result["uptime_seconds"] = round(time.time() - _start_time, 1) if _start_time else 0

    if _components is not None:
        manifest = _components.manifest
        sink = _components.buffer.sink
        result["manifest"] = {
            "app": manifest.app.name,
            "app_version": manifest.app.version,
            "mode": manifest.runtime.mode.value,
            "audit_all": manifest.runtime.audit_all,
            "rules": len(manifest.policy.rules),
            "default_policy": manifest.policy.defaults.policy.value,
        }
        result["audit"] = {
            **_components.buffer.stats(),
            "sink": sink.describe() if sink is not None else None,
        }
    return result


@app.post("/v1/gatekit/evaluate")
async def evaluate(request: EvaluateRequest) -> EvaluateResponse:
    """Dry-run a call against the loaded rules. Nothing is recorded."""
    components = _require()
    satisfied = set(request.targets)
    decision = components.engine.evaluate(
        CallDescriptor(method=request.method),
        request.caller,
        satisfied.__contains__,
    )
    return EvaluateResponse(
        effect=decision.effect,
        rule=decision.rule_id,
        comment=decision.rule.comment if decision.rule is not None else "",
        groups=sorted(components.engine.registry.groups_for(request.method)),
    )


@app.get("/v1/gatekit/groups")
async def groups() -> dict[str, list[str]]:
    return _require().engine.registry.as_dict()


@app.get("/v1/gatekit/audit")
async def audit_tail(n: int = Query(100, ge=1, le=10000)) -> AuditView:
    """Most recent buffered audit lines, oldest first."""
    buffer = _require().buffer
    return AuditView(
        lines=[e.line.rstrip("\n") for e in buffer.tail(n)],
        total_bytes=buffer.total_bytes,
        capacity=buffer.capacity,
        syncing=buffer.syncing,
    )


@app.post("/v1/gatekit/audit", status_code=202)
async def audit_push(request: PushRequest) -> dict[str, Any]:
    """Append an entry; a sync is scheduled in the background."""
    entry = _require().buffer.push(request.channel, request.payload)
    if entry is None:
        raise HTTPException(status_code=413, detail="Entry prefix exceeds buffer capacity")
    return {"seq": entry.seq, "byte_size": entry.byte_size, "truncated": entry.truncated}


@app.post("/v1/gatekit/audit/sync")
async def audit_sync() -> dict[str, Any]:
    """Run a sync now and report whether it delivered."""
    buffer = _require().buffer
    synced = await buffer.sync()
    return {"synced": synced, "remaining": len(buffer)}


@app.delete("/v1/gatekit/audit")
async def audit_clear() -> dict[str, Any]:
    buffer = _require().buffer
    buffer.clear()
    return {"cleared": True}
