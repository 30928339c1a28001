"""Policy explain — human-readable output for ``gatekit check --explain``."""

from __future__ import annotations

from contracts.policy import CallDescriptor, CallerIdentity, TargetPredicate
from runtime.policy import GateKitPolicyEngine


def explain_call(
    engine: GateKitPolicyEngine,
    call: CallDescriptor,
    caller: CallerIdentity,
    target: TargetPredicate | None = None,
) -> str:
    """Walk all rules, show which matched or were skipped, then the decision."""
    groups = sorted(engine.registry.groups_for(call.method))
    lines = [
        f"Call:    {call.method}  (groups: {', '.join(groups) or 'none'})",
        f"Caller:  {caller.describe()}",
        "",
    ]

    first_match = None
    for trace in engine.explain(call, caller, target):
        if trace.matched and first_match is None:
            status = "MATCH"
            first_match = trace
        elif trace.matched:
            status = "shadowed"
        else:
            status = "skip"
        lines.append(f"  Rule {trace.rule_id!r:24s} {trace.rule.policy.value:6s} [{status}]")
        if trace.rule.comment:
            lines.append(f"      # {trace.rule.comment}")
        for reason in trace.reasons:
            lines.append(f"      {reason}")

    decision = engine.evaluate(call, caller, target)
    lines.append("")
    lines.append(f"Decision: {decision.effect.value.upper()}")
    if first_match is None:
        lines.append("Matched:  (none, default applied)")
    else:
        lines.append(f"Matched:  {decision.rule_id}")
    return "\n".join(lines)
