"""Manifest (gatekit.yaml) schema — Pydantic models.

The policy section is loaded once at startup and is read-only afterwards.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, field_validator

from contracts.policy import PolicyEffect, PolicyRule


# ── Top-level sections ──────────────────────────────────────────────


class AppInfo(BaseModel):
    name: str
    version: str = "0.0.1"


class EnforcementMode(str, Enum):
    STRICT = "strict"      # blocked calls raise
    LENIENT = "lenient"    # blocked calls warn and become no-ops


_MODE_ALIASES = {"debug": "strict", "production": "lenient"}


class RuntimeConfig(BaseModel):
    base_url: str = "http://127.0.0.1:8090"
    mode: EnforcementMode = EnforcementMode.STRICT
    audit_all: bool = True  # also record blocked calls
    reference: str = "/docs/gatekit-manual.md"

    @field_validator("mode", mode="before")
    @classmethod
    def _mode_alias(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return _MODE_ALIASES.get(value, value)
        return value


# ── Policy ──────────────────────────────────────────────────────────


class PolicyDefaults(BaseModel):
    policy: PolicyEffect = PolicyEffect.BLOCK


class PolicyConfig(BaseModel):
    defaults: PolicyDefaults = PolicyDefaults()
    rules: list[PolicyRule] = []
    mapping: dict[str, list[str]] | None = None  # None -> built-in groups


# ── Audit ────────────────────────────────────────────────────────────


class AuditConfig(BaseModel):
    capacity: int = 255 * 1024
    endpoint: str | None = None
    auth: str | None = None
    max_attempts: int = 3
    backoff_base: float = 0.2  # seconds
    timeout: float = 10.0

    @field_validator("capacity", "max_attempts")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value


# ── Root manifest ────────────────────────────────────────────────────


class Manifest(BaseModel):
    app: AppInfo
    runtime: RuntimeConfig = RuntimeConfig()
    policy: PolicyConfig = PolicyConfig()
    audit: AuditConfig = AuditConfig()
