"""Unit tests for the policy engine."""

from __future__ import annotations

from typing import Any

import pytest
from pydantic import ValidationError

from contracts.manifest import PolicyConfig, PolicyDefaults
from contracts.policy import (
    CallDescriptor,
    CallerIdentity,
    CallerMatcher,
    Operand,
    PolicyEffect,
    PolicyRule,
)
from runtime.policy import GateKitPolicyEngine, match_caller


# ── helpers ─────────────────────────────────────────────────────────


def _engine(
    rules: list[dict[str, Any]],
    *,
    default: PolicyEffect = PolicyEffect.BLOCK,
    mapping: dict[str, list[str]] | None = None,
) -> GateKitPolicyEngine:
    return GateKitPolicyEngine(
        PolicyConfig(
            defaults=PolicyDefaults(policy=default),
            rules=[PolicyRule(**r) for r in rules],
            mapping=mapping,
        )
    )


def _call(method: str = "addEventListener") -> CallDescriptor:
    return CallDescriptor(method=method)


def _who(**fields: str) -> CallerIdentity:
    return CallerIdentity(**fields)


# ── ordering and defaults ───────────────────────────────────────────


class TestRuleOrdering:
    def test_core_free_then_catch_all_block(self) -> None:
        engine = _engine([
            {"policy": "free", "caller": [{"filePath": "core/*"}]},
            {"policy": "block", "caller": []},
        ])
        core = engine.evaluate(_call("fetch"), _who(file_path="core/init.js"))
        plugin = engine.evaluate(_call("fetch"), _who(file_path="plugins/x.js"))

        assert core.effect == PolicyEffect.FREE
        assert core.rule_index == 0
        assert plugin.effect == PolicyEffect.BLOCK
        assert plugin.rule_index == 1
        assert not plugin.is_default

    def test_first_match_wins_over_specificity(self) -> None:
        engine = _engine([
            {"policy": "audit", "caller": []},
            {"policy": "free", "caller": [{"fileName": "CBoot.js"}], "method": ["log"]},
        ])
        decision = engine.evaluate(_call("log"), _who(file_name="CBoot.js"))
        assert decision.effect == PolicyEffect.AUDIT
        assert decision.rule_id == "rules[0]"

    def test_empty_rule_set_yields_default(self) -> None:
        engine = _engine([], default=PolicyEffect.AUDIT)
        decision = engine.evaluate(_call(), _who(file_path="core/a.js"))
        assert decision.effect == PolicyEffect.AUDIT
        assert decision.is_default
        assert decision.rule_id == "default"

    def test_no_match_yields_default_block(self) -> None:
        engine = _engine([{"policy": "free", "caller": [{"filePath": "core/*"}]}])
        decision = engine.evaluate(_call(), _who(file_path="vendor/lib.js"))
        assert decision.effect == PolicyEffect.BLOCK
        assert decision.rule is None

    def test_unloaded_engine_blocks(self) -> None:
        engine = GateKitPolicyEngine()
        assert engine.evaluate(_call(), _who(file_path="core/a.js")).effect == PolicyEffect.BLOCK

    def test_rule_id_preferred_when_given(self) -> None:
        engine = _engine([{"id": "core-trusted", "policy": "free"}])
        assert engine.evaluate(_call(), _who()).rule_id == "core-trusted"

    def test_evaluate_is_pure(self) -> None:
        engine = _engine([
            {"policy": "audit", "group": ["cn"], "caller": [{"fileName": "*"}]},
        ])
        call, who = _call("warn"), _who(file_name="app.js")
        first = engine.evaluate(call, who)
        for _ in range(5):
            assert engine.evaluate(call, who) == first
        assert engine.rules[0].policy == PolicyEffect.AUDIT

    def test_rules_cannot_be_reloaded(self) -> None:
        engine = _engine([])
        with pytest.raises(RuntimeError, match="already loaded"):
            engine.load_policy(PolicyConfig())


# ── caller matchers ─────────────────────────────────────────────────


class TestCallerMatching:
    def test_negated_glob_excludes_prefix(self) -> None:
        matcher = CallerMatcher(file_path="!core/*")
        assert match_caller(matcher, _who(file_path="plugins/x.js"))[0]
        assert match_caller(matcher, _who(file_path="lib/core/x.js"))[0]
        assert not match_caller(matcher, _who(file_path="core/x.js"))[0]
        assert not match_caller(matcher, _who(file_path="core/deep/x.js"))[0]

    def test_negated_glob_as_sole_matcher_is_catch_all_minus_exclusion(self) -> None:
        engine = _engine(
            [{"policy": "block", "group": ["nt"], "caller": [{"filePath": "!core/*"}]}],
            default=PolicyEffect.FREE,
        )
        assert engine.evaluate(_call("fetch"), _who(file_path="ui/w.js")).effect == PolicyEffect.BLOCK
        assert engine.evaluate(_call("fetch"), _who(file_path="core/net.js")).effect == PolicyEffect.FREE

    def test_unresolved_path_never_matches_even_negated(self) -> None:
        for pattern in ("core/*", "!core/*"):
            hit, reason = match_caller(CallerMatcher(file_path=pattern), _who(class_name="X"))
            assert not hit
            assert "unresolved" in reason

    def test_unresolved_identity_falls_through_to_default(self) -> None:
        engine = _engine(
            [{"policy": "free", "caller": [{"fileName": "CBoot.js"}]}],
            default=PolicyEffect.BLOCK,
        )
        decision = engine.evaluate(_call(), _who(file_path="boot/CBoot.js"))
        assert decision.is_default

    def test_file_name_is_exact(self) -> None:
        matcher = CallerMatcher(file_name="CBoot.js")
        assert match_caller(matcher, _who(file_name="CBoot.js"))[0]
        assert not match_caller(matcher, _who(file_name="CBoot.jsx"))[0]

    def test_star_file_name_needs_resolved_name(self) -> None:
        matcher = CallerMatcher(file_name="*")
        assert match_caller(matcher, _who(file_name="anything.js"))[0]
        assert not match_caller(matcher, _who(file_path="a/b.js"))[0]

    def test_class_name_match_with_legacy_key(self) -> None:
        engine = _engine([{"policy": "block", "caller": [{"ClassName": "CCompInstance"}]}],
                         default=PolicyEffect.FREE)
        blocked = engine.evaluate(_call(), _who(class_name="CCompInstance"))
        other = engine.evaluate(_call(), _who(class_name="CComp"))
        assert blocked.effect == PolicyEffect.BLOCK
        assert other.effect == PolicyEffect.FREE

    def test_empty_caller_list_matches_everyone(self) -> None:
        engine = _engine([{"policy": "audit"}])
        assert engine.evaluate(_call(), _who()).effect == PolicyEffect.AUDIT

    def test_or_operand_any_matcher(self) -> None:
        engine = _engine([{
            "policy": "free",
            "operand": "||",
            "caller": [{"filePath": "core/*"}, {"fileName": "CBoot.js"}],
        }])
        assert engine.evaluate(_call(), _who(file_path="core/a.js")).effect == PolicyEffect.FREE
        assert engine.evaluate(_call(), _who(file_name="CBoot.js")).effect == PolicyEffect.FREE
        assert engine.evaluate(_call(), _who(file_path="ext/a.js")).is_default

    def test_and_operand_all_matchers(self) -> None:
        engine = _engine([{
            "policy": "free",
            "caller": [{"filePath": "core/*"}, {"className": "Kernel"}],
        }])
        assert engine.rules[0].operand == Operand.AND
        both = _who(file_path="core/k.js", class_name="Kernel")
        one = _who(file_path="core/k.js", class_name="Other")
        assert engine.evaluate(_call(), both).effect == PolicyEffect.FREE
        assert engine.evaluate(_call(), one).is_default


# ── method / group filters ──────────────────────────────────────────


class TestMethodGroupFilters:
    RULE = {
        "policy": "free",
        "group": ["ev"],
        "method": ["fetch"],
        "caller": [{"filePath": "components/*"}],
    }

    def test_method_only_hit(self) -> None:
        engine = _engine([self.RULE])
        decision = engine.evaluate(_call("fetch"), _who(file_path="components/btn.js"))
        assert decision.effect == PolicyEffect.FREE

    def test_group_only_hit(self) -> None:
        engine = _engine([self.RULE])
        decision = engine.evaluate(_call("dispatchEvent"), _who(file_path="components/btn.js"))
        assert decision.effect == PolicyEffect.FREE

    def test_neither_hits(self) -> None:
        engine = _engine([self.RULE])
        decision = engine.evaluate(_call("setTimeout"), _who(file_path="components/btn.js"))
        assert decision.is_default

    def test_no_filters_match_every_method(self) -> None:
        engine = _engine([{"policy": "audit"}])
        assert engine.evaluate(_call("not.a.known.primitive"), _who()).effect == PolicyEffect.AUDIT

    def test_custom_mapping_replaces_builtin(self) -> None:
        engine = _engine(
            [{"policy": "free", "group": ["io"]}],
            mapping={"io": ["readFile"]},
        )
        assert engine.evaluate(_call("readFile"), _who()).effect == PolicyEffect.FREE
        assert engine.evaluate(_call("fetch"), _who()).is_default
        assert "nt" not in engine.registry

    def test_unknown_group_never_matches(self) -> None:
        engine = _engine([{"policy": "free", "group": ["zz"]}])
        assert engine.evaluate(_call("fetch"), _who()).is_default

    def test_method_name_is_not_a_group(self) -> None:
        engine = _engine([{"policy": "free", "group": ["fetch"]}])
        assert engine.evaluate(_call("fetch"), _who()).is_default

    def test_call_classified_through_registry(self, monkeypatch: pytest.MonkeyPatch) -> None:
        engine = _engine([self.RULE])
        seen: list[str] = []
        original = type(engine.registry).classify

        def recording(registry, method: str) -> frozenset[str]:
            seen.append(method)
            return original(registry, method)

        monkeypatch.setattr(type(engine.registry), "classify", recording)
        engine.evaluate(_call("dispatchEvent"), _who(file_path="components/btn.js"))
        engine.explain(_call("fetch"), _who())
        assert seen == ["dispatchEvent", "fetch"]


# ── target constraint ───────────────────────────────────────────────


class TestTargetConstraint:
    RULES = [
        {
            "policy": "free",
            "group": ["ev"],
            "caller": [{"filePath": "components/*"}],
            "target": "ShadowDOM",
        },
        {"policy": "block", "group": ["ev"]},
    ]

    def test_target_satisfied(self) -> None:
        engine = _engine(self.RULES)
        decision = engine.evaluate(
            _call("addEventListener"),
            _who(file_path="components/tab.js"),
            target=lambda tag: tag == "ShadowDOM",
        )
        assert decision.effect == PolicyEffect.FREE

    def test_target_outside_scope(self) -> None:
        engine = _engine(self.RULES)
        decision = engine.evaluate(
            _call("addEventListener"),
            _who(file_path="components/tab.js"),
            target=lambda tag: False,
        )
        assert decision.effect == PolicyEffect.BLOCK
        assert decision.rule_index == 1

    def test_missing_target_context_skips_rule(self) -> None:
        engine = _engine(self.RULES)
        decision = engine.evaluate(_call("addEventListener"), _who(file_path="components/tab.js"))
        assert decision.rule_index == 1

    def test_single_target_string_is_listified(self) -> None:
        engine = _engine(self.RULES)
        assert engine.rules[0].target == ["ShadowDOM"]


# ── rule validation ─────────────────────────────────────────────────


class TestRuleValidation:
    @pytest.mark.parametrize("raw, expected", [
        ("&&", Operand.AND), ("||", Operand.OR), ("OR", Operand.OR), ("and", Operand.AND),
    ])
    def test_operand_aliases(self, raw: str, expected: Operand) -> None:
        assert PolicyRule(policy="free", operand=raw).operand == expected

    def test_unknown_operand_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PolicyRule(policy="free", operand="xor")

    def test_unknown_policy_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PolicyRule(policy="maybe")

    def test_matcher_needs_exactly_one_key(self) -> None:
        with pytest.raises(ValidationError):
            CallerMatcher()
        with pytest.raises(ValidationError):
            CallerMatcher(file_path="a/*", file_name="b.js")

    def test_rules_are_frozen(self) -> None:
        rule = PolicyRule(policy="free")
        with pytest.raises(ValidationError):
            rule.policy = PolicyEffect.BLOCK
