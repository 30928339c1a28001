"""Manifest loader — parse and validate gatekit.yaml."""

from __future__ import annotations

import os
from pathlib import Path

import yaml

from contracts.manifest import Manifest
from runtime.groups import MethodGroupRegistry

MANIFEST_ENV = "GATEKIT_MANIFEST"
DEFAULT_MANIFEST = "./gatekit.yaml"


def manifest_path_from_env() -> str:
    return os.environ.get(MANIFEST_ENV, DEFAULT_MANIFEST)


def load_manifest(path: str | Path) -> Manifest:
    """Load a gatekit.yaml file and return a validated Manifest."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Manifest not found: {path}")

    raw = p.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Manifest must be a YAML mapping, got {type(data).__name__}")

    return Manifest(**data)


def check_manifest(manifest: Manifest) -> list[str]:
    """Non-fatal problems in a valid manifest, as human-readable warnings."""
    registry = MethodGroupRegistry(manifest.policy.mapping)
    warnings: list[str] = []
    for index, rule in enumerate(manifest.policy.rules):
        label = rule.id or f"rules[{index}]"
        for tag in rule.group or []:
            if tag not in registry:
                warnings.append(f"{label}: unknown group '{tag}'")
        if rule.target is not None and not rule.target:
            warnings.append(f"{label}: empty target list never restricts anything")
    return warnings
