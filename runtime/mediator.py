"""Mediation facade — evaluate, enforce, and audit each intercepted call.

The interception layer hands over the primitive name, a pre-resolved
caller identity and the real callable. The facade never inspects call
arguments; only the decision decides what happens to them.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar, Union

from contracts.audit import AuditChannel
from contracts.manifest import EnforcementMode, Manifest
from contracts.policy import (
    CallDescriptor,
    CallerIdentity,
    Decision,
    PolicyEffect,
    PolicyEngine,
    PolicyViolation,
    TargetPredicate,
)
from runtime.audit.buffer import AuditLogBuffer
from runtime.groups import MethodGroupRegistry

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

IdentitySource = Union[CallerIdentity, Callable[[], CallerIdentity]]


class Mediator:
    """Routes calls to protected primitives through the policy engine."""

    def __init__(
        self,
        engine: PolicyEngine,
        buffer: AuditLogBuffer,
        *,
        mode: EnforcementMode = EnforcementMode.STRICT,
        audit_all: bool = True,
        reference: str = "",
        registry: MethodGroupRegistry | None = None,
    ) -> None:
        self._engine = engine
        self._buffer = buffer
        self._mode = mode
        self._audit_all = audit_all
        self._reference = reference
        if registry is None:
            registry = getattr(engine, "registry", None)
        self._registry = registry if registry is not None else MethodGroupRegistry()

    @classmethod
    def from_manifest(
        cls, manifest: Manifest, engine: PolicyEngine, buffer: AuditLogBuffer
    ) -> Mediator:
        return cls(
            engine,
            buffer,
            mode=manifest.runtime.mode,
            audit_all=manifest.runtime.audit_all,
            reference=manifest.runtime.reference,
        )

    @property
    def mode(self) -> EnforcementMode:
        return self._mode

    def call(
        self,
        method: str,
        caller: CallerIdentity,
        invoke: Callable[..., Any],
        /,
        *args: Any,
        target: TargetPredicate | None = None,
        neutral: Any = None,
        **kwargs: Any,
    ) -> Any:
        """Run ``invoke(*args, **kwargs)`` if policy lets ``caller`` do so."""
        decision = self._engine.evaluate(CallDescriptor(method=method), caller, target)

        if decision.effect == PolicyEffect.FREE:
            return invoke(*args, **kwargs)

        if decision.effect == PolicyEffect.AUDIT:
            self._record(AuditChannel.AUDIT, method, caller, decision)
            return invoke(*args, **kwargs)

        if self._audit_all:
            self._record(AuditChannel.BLOCK, method, caller, decision)

        violation = PolicyViolation(
            method=method,
            caller=caller,
            rule_id=decision.rule_id,
            reference=self._reference,
        )
        if self._mode == EnforcementMode.STRICT:
            logger.info("Blocked %s for %s (%s)", method, caller.describe(), decision.rule_id)
            raise violation
        logger.warning("%s: %s [ignored]", violation.code, violation)
        return neutral

    def guard(
        self,
        method: str,
        func: F,
        identity: IdentitySource,
        *,
        target: TargetPredicate | None = None,
        neutral: Any = None,
    ) -> F:
        """Wrap ``func`` so every call goes through ``call``.

        ``identity`` is either a fixed identity token assigned when the
        wrapper is installed, or a zero-argument provider invoked per call.
        """

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            caller = identity() if callable(identity) else identity
            return self.call(
                method, caller, func, *args, target=target, neutral=neutral, **kwargs
            )

        return wrapper  # type: ignore[return-value]

    def _record(
        self,
        channel: str,
        method: str,
        caller: CallerIdentity,
        decision: Decision,
    ) -> None:
        rule = decision.rule
        self._buffer.push(
            channel,
            {
                "caller": caller.model_dump(exclude_none=True),
                "method": method,
                "groups": sorted(self._registry.groups_for(method)),
                "policy": decision.effect.value,
                "rule": decision.rule_id,
                "comment": rule.comment if rule is not None else "",
            },
        )
