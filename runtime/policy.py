"""Policy engine implementation.

Deterministic first-match-wins evaluation over caller identity. The rule
set is loaded once and is read-only afterwards, so ``evaluate`` can be
called from any number of call sites without coordination.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatchcase

from contracts.manifest import Manifest, PolicyConfig
from contracts.policy import (
    CallDescriptor,
    CallerIdentity,
    CallerMatcher,
    Decision,
    Operand,
    PolicyEffect,
    PolicyEngine,
    PolicyRule,
    TargetPredicate,
)
from runtime.groups import MethodGroupRegistry


@dataclass
class RuleTrace:
    """Why a single rule did or did not match a call."""

    index: int
    rule: PolicyRule
    matched: bool
    reasons: list[str] = field(default_factory=list)

    @property
    def rule_id(self) -> str:
        return self.rule.id or f"rules[{self.index}]"


# ── per-criterion matching helpers ──────────────────────────────────


def match_caller(matcher: CallerMatcher, caller: CallerIdentity) -> tuple[bool, str]:
    """Test one caller matcher. Unresolved identity fields never match."""
    if matcher.file_path is not None:
        pattern = matcher.file_path
        negated = pattern.startswith("!")
        if negated:
            pattern = pattern[1:]
        if caller.file_path is None:
            return False, f"filePath: {matcher.file_path!r} vs unresolved path"
        hit = fnmatchcase(caller.file_path, pattern)
        if negated:
            return not hit, (
                f"filePath: {caller.file_path!r} "
                f"{'matches' if hit else 'does not match'} excluded {pattern!r}"
            )
        return hit, (
            f"filePath: {caller.file_path!r} {'matches' if hit else 'does not match'} {pattern!r}"
        )

    if matcher.file_name is not None:
        return _match_exact("fileName", matcher.file_name, caller.file_name)

    return _match_exact("className", matcher.class_name or "", caller.class_name)


def _match_exact(label: str, expected: str, actual: str | None) -> tuple[bool, str]:
    if actual is None:
        return False, f"{label}: {expected!r} vs unresolved {label}"
    if expected == "*":
        return True, f"{label}: * (any resolved value)"
    hit = expected == actual
    return hit, f"{label}: {actual!r} {'==' if hit else '!='} {expected!r}"


def _match_methods(
    rule: PolicyRule, method: str, classification: frozenset[str]
) -> tuple[bool, str]:
    # Method and group filters are additive: either one hitting suffices.
    if rule.method is None and rule.group is None:
        return True, "method/group: not specified (always matches)"
    if rule.method is not None and method in rule.method:
        return True, f"method: {method!r} in {rule.method}"
    if rule.group is not None:
        shared = (classification - {method}).intersection(rule.group)
        if shared:
            return True, f"group: {method!r} belongs to {sorted(shared)}"
    return False, (
        f"method/group: {method!r} (classified {sorted(classification)}) not in "
        f"method={rule.method} group={rule.group}"
    )


def _match_callers(rule: PolicyRule, caller: CallerIdentity) -> tuple[bool, list[str]]:
    if not rule.caller:
        return True, ["caller: not specified (matches every caller)"]
    results = [match_caller(m, caller) for m in rule.caller]
    reasons = [reason for _, reason in results]
    hits = [hit for hit, _ in results]
    if rule.operand == Operand.OR:
        return any(hits), reasons
    return all(hits), reasons


def _match_target(
    rule: PolicyRule, target: TargetPredicate | None
) -> tuple[bool, str]:
    if not rule.target:
        return True, "target: not specified (always matches)"
    if target is None:
        return False, f"target: {rule.target} required but no target context supplied"
    missed = [tag for tag in rule.target if not target(tag)]
    if missed:
        return False, f"target: call target outside {missed}"
    return True, f"target: call target within {rule.target}"


def evaluate_rule(
    index: int,
    rule: PolicyRule,
    method: str,
    classification: frozenset[str],
    caller: CallerIdentity,
    target: TargetPredicate | None,
) -> RuleTrace:
    trace = RuleTrace(index=index, rule=rule, matched=False)

    ok, reason = _match_methods(rule, method, classification)
    trace.reasons.append(reason)
    if not ok:
        return trace

    ok, reasons = _match_callers(rule, caller)
    trace.reasons.extend(reasons)
    if not ok:
        trace.reasons.append(f"caller: operand {rule.operand.value.upper()} not satisfied")
        return trace

    ok, reason = _match_target(rule, target)
    trace.reasons.append(reason)
    trace.matched = ok
    return trace


# ── engine ──────────────────────────────────────────────────────────


class GateKitPolicyEngine(PolicyEngine):
    """Concrete policy engine driven by the manifest's policy section."""

    def __init__(self, policy: PolicyConfig | None = None) -> None:
        self._rules: tuple[PolicyRule, ...] = ()
        self._default = PolicyEffect.BLOCK
        self._registry = MethodGroupRegistry()
        self._loaded = False
        if policy is not None:
            self.load_policy(policy)

    def load_manifest(self, manifest: Manifest) -> None:
        self.load_policy(manifest.policy)

    def load_policy(self, policy: PolicyConfig) -> None:
        if self._loaded:
            raise RuntimeError("policy rules are already loaded and cannot change")
        self._rules = tuple(policy.rules)
        self._default = policy.defaults.policy
        self._registry = MethodGroupRegistry(policy.mapping)
        self._loaded = True

    @property
    def rules(self) -> tuple[PolicyRule, ...]:
        return self._rules

    @property
    def default(self) -> PolicyEffect:
        return self._default

    @property
    def registry(self) -> MethodGroupRegistry:
        return self._registry

    def evaluate(
        self,
        call: CallDescriptor,
        caller: CallerIdentity,
        target: TargetPredicate | None = None,
    ) -> Decision:
        classification = self._registry.classify(call.method)
        for index, rule in enumerate(self._rules):
            trace = evaluate_rule(index, rule, call.method, classification, caller, target)
            if trace.matched:
                return Decision(effect=rule.policy, rule=rule, rule_index=index)
        return Decision(effect=self._default)

    def explain(
        self,
        call: CallDescriptor,
        caller: CallerIdentity,
        target: TargetPredicate | None = None,
    ) -> list[RuleTrace]:
        """Trace every rule against the call, not stopping at the first match."""
        classification = self._registry.classify(call.method)
        return [
            evaluate_rule(index, rule, call.method, classification, caller, target)
            for index, rule in enumerate(self._rules)
        ]
