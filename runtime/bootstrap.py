"""Shared initialisation for the GateKit admin server and CLI.

Builds exactly one policy engine, one audit buffer and one mediator per
process and hands them out explicitly.
"""

from __future__ import annotations

from pathlib import Path

from contracts.manifest import Manifest
from runtime.audit.buffer import AuditLogBuffer
from runtime.audit.sink import create_sink
from runtime.manifest_loader import load_manifest, manifest_path_from_env
from runtime.mediator import Mediator
from runtime.policy import GateKitPolicyEngine


class GateKitComponents:
    """Container for initialised GateKit components."""

    def __init__(
        self,
        manifest: Manifest,
        engine: GateKitPolicyEngine,
        buffer: AuditLogBuffer,
        mediator: Mediator,
    ) -> None:
        self.manifest = manifest
        self.engine = engine
        self.buffer = buffer
        self.mediator = mediator


def create_components(manifest: Manifest, *, auto_sync: bool = True) -> GateKitComponents:
    engine = GateKitPolicyEngine()
    engine.load_manifest(manifest)

    audit = manifest.audit
    buffer = AuditLogBuffer(
        capacity=audit.capacity,
        sink=create_sink(audit),
        max_attempts=audit.max_attempts,
        backoff_base=audit.backoff_base,
        auto_sync=auto_sync,
    )

    mediator = Mediator.from_manifest(manifest, engine, buffer)
    return GateKitComponents(manifest=manifest, engine=engine, buffer=buffer, mediator=mediator)


def init_gatekit(manifest_path: str | Path | None = None) -> GateKitComponents:
    """Load the manifest and build the components.

    Uses ``GATEKIT_MANIFEST`` env var if *manifest_path* is not provided.
    """
    if manifest_path is None:
        manifest_path = manifest_path_from_env()
    return create_components(load_manifest(manifest_path))
