"""Unit tests for the manifest loader."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from contracts.manifest import EnforcementMode, Manifest
from contracts.policy import Operand, PolicyEffect
from runtime.manifest_loader import check_manifest, load_manifest


SAMPLE_MANIFEST = """\
app:
  name: test-app
  version: "0.1.0"

runtime:
  mode: production
  audit_all: true
  reference: /memory-bank/manual.md

policy:
  defaults:
    policy: block
  rules:
    - policy: free
      operand: "||"
      caller:
        - filePath: "core/*"
        - fileName: CBoot.js
      comment: Full access for core engine
    - policy: free
      operand: "&&"
      group: [ev]
      method: [addEventListener, removeEventListener]
      caller:
        - filePath: "components/*"
      target: [ShadowDOM]
    - policy: block
      caller:
        - ClassName: CCompInstance
    - policy: block
      group: [nt]
      caller:
        - filePath: "!core/*"

audit:
  capacity: 4096
  endpoint: https://audit.example.net/log.txt
  auth: Basic YWRtaW46YWRtaW4=
"""


class TestManifestLoader:
    def test_load_valid_manifest(self, tmp_path: Path) -> None:
        f = tmp_path / "gatekit.yaml"
        f.write_text(SAMPLE_MANIFEST)
        m = load_manifest(str(f))

        assert m.app.name == "test-app"
        assert m.runtime.mode == EnforcementMode.LENIENT
        assert m.policy.defaults.policy == PolicyEffect.BLOCK
        assert len(m.policy.rules) == 4
        assert m.policy.rules[0].operand == Operand.OR
        assert m.policy.rules[0].caller[1].file_name == "CBoot.js"
        assert m.policy.rules[2].caller[0].class_name == "CCompInstance"
        assert m.policy.mapping is None
        assert m.audit.capacity == 4096
        assert m.audit.max_attempts == 3

    def test_defaults(self) -> None:
        m = Manifest(app={"name": "bare"})
        assert m.runtime.mode == EnforcementMode.STRICT
        assert m.runtime.audit_all is True
        assert m.policy.rules == []
        assert m.audit.capacity == 255 * 1024
        assert m.audit.endpoint is None

    def test_file_not_found(self) -> None:
        with pytest.raises(FileNotFoundError):
            load_manifest("/nonexistent/gatekit.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        f = tmp_path / "bad.yaml"
        f.write_text("just a string")
        with pytest.raises(ValueError, match="YAML mapping"):
            load_manifest(str(f))

    def test_bad_rule_rejected(self, tmp_path: Path) -> None:
        f = tmp_path / "bad-rule.yaml"
        f.write_text("app: {name: x}\npolicy:\n  rules:\n    - policy: free\n      caller: [{}]\n")
        with pytest.raises(ValidationError):
            load_manifest(f)

    def test_non_positive_capacity_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Manifest(app={"name": "x"}, audit={"capacity": 0})


class TestCheckManifest:
    def test_unknown_group_warned(self) -> None:
        m = Manifest(
            app={"name": "x"},
            policy={"rules": [{"id": "r1", "policy": "free", "group": ["ev", "zz"]}]},
        )
        assert check_manifest(m) == ["r1: unknown group 'zz'"]

    def test_clean_manifest(self, tmp_path: Path) -> None:
        f = tmp_path / "gatekit.yaml"
        f.write_text(SAMPLE_MANIFEST)
        assert check_manifest(load_manifest(f)) == []


class TestShippedManifest:
    def test_example_manifest_is_valid(self) -> None:
        root = Path(__file__).resolve().parent.parent.parent
        m = load_manifest(root / "gatekit.yaml")
        assert [r.id for r in m.policy.rules][0] == "core-trusted"
        assert check_manifest(m) == []
