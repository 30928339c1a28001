"""Admin HTTP API contracts."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from contracts.policy import CallerIdentity, PolicyEffect


class EvaluateRequest(BaseModel):
    method: str
    caller: CallerIdentity = CallerIdentity()
    targets: list[str] = []  # scope tags the caller's target satisfies


class EvaluateResponse(BaseModel):
    effect: PolicyEffect
    rule: str                # rule id, or "default"
    comment: str = ""
    groups: list[str] = []


class PushRequest(BaseModel):
    channel: str
    payload: Any = None


class AuditView(BaseModel):
    lines: list[str]
    total_bytes: int
    capacity: int
    syncing: bool
