"""Shared contracts — source of truth for all GateKit interfaces."""

from contracts.api import AuditView, EvaluateRequest, EvaluateResponse, PushRequest
from contracts.manifest import (
    AuditConfig,
    EnforcementMode,
    Manifest,
    PolicyConfig,
    PolicyDefaults,
    RuntimeConfig,
)
from contracts.audit import AuditChannel, AuditSink, LogEntry, SyncTransportFailure
from contracts.policy import (
    CallDescriptor,
    CallerIdentity,
    CallerMatcher,
    Decision,
    Operand,
    PolicyEffect,
    PolicyEngine,
    PolicyRule,
    PolicyViolation,
    TargetPredicate,
)

__all__ = [
    # api
    "AuditView",
    "EvaluateRequest",
    "EvaluateResponse",
    "PushRequest",
    # manifest
    "AuditConfig",
    "EnforcementMode",
    "Manifest",
    "PolicyConfig",
    "PolicyDefaults",
    "RuntimeConfig",
    # audit
    "AuditChannel",
    "AuditSink",
    "LogEntry",
    "SyncTransportFailure",
    # policy
    "CallDescriptor",
    "CallerIdentity",
    "CallerMatcher",
    "Decision",
    "Operand",
    "PolicyEffect",
    "PolicyEngine",
    "PolicyRule",
    "PolicyViolation",
    "TargetPredicate",
]
