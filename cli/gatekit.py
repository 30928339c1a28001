"""GateKit CLI — validate manifests, check calls, push audit entries, run the server."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Ensure project root is importable when running as script
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def _load(path: str):
    from runtime.manifest_loader import load_manifest

    try:
        return load_manifest(path)
    except FileNotFoundError:
        print(f"Error: manifest not found: {path}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Error: invalid manifest: {exc}", file=sys.stderr)
        sys.exit(1)


def cmd_validate(args: argparse.Namespace) -> None:
    """Validate a gatekit.yaml manifest."""
    from runtime.manifest_loader import check_manifest

    manifest = _load(args.manifest)

    print(f"Manifest OK: {manifest.app.name} v{manifest.app.version}")
    print(f"  Mode:         {manifest.runtime.mode.value}")
    print(f"  Audit all:    {'yes' if manifest.runtime.audit_all else 'no'}")
    print(f"  Default:      {manifest.policy.defaults.policy.value}")
    print(f"  Rules:        {len(manifest.policy.rules)}")
    print(f"  Audit sink:   {manifest.audit.endpoint or '(none)'}")
    print(f"  Capacity:     {manifest.audit.capacity} bytes")

    for warning in check_manifest(manifest):
        print(f"  Warning: {warning}")


def cmd_check(args: argparse.Namespace) -> None:
    """Evaluate one call against the manifest's rules."""
    from contracts.policy import CallDescriptor, CallerIdentity
    from runtime.explain import explain_call
    from runtime.policy import GateKitPolicyEngine

    manifest = _load(args.manifest)
    engine = GateKitPolicyEngine(manifest.policy)

    call = CallDescriptor(method=args.method)
    caller = CallerIdentity(
        file_path=args.file_path,
        file_name=args.file_name,
        class_name=args.class_name,
    )
    satisfied = set(args.target or [])

    if args.explain:
        print(explain_call(engine, call, caller, satisfied.__contains__))
        return

    decision = engine.evaluate(call, caller, satisfied.__contains__)
    if args.json:
        print(json.dumps({"effect": decision.effect.value, "rule": decision.rule_id}))
    else:
        print(f"{decision.effect.value}  ({decision.rule_id})")


def cmd_groups(args: argparse.Namespace) -> None:
    """List method groups."""
    from runtime.groups import MethodGroupRegistry

    mapping = None
    if args.manifest:
        mapping = _load(args.manifest).policy.mapping
    registry = MethodGroupRegistry(mapping)
    for tag, methods in registry.as_dict().items():
        print(f"{tag:4s} {', '.join(methods)}")


def cmd_audit_push(args: argparse.Namespace) -> None:
    """Push one audit entry and sync it to the configured sink."""
    import asyncio

    from runtime.bootstrap import create_components

    components = create_components(_load(args.manifest), auto_sync=False)
    buffer = components.buffer

    try:
        payload = json.loads(args.payload)
    except json.JSONDecodeError:
        payload = args.payload

    entry = buffer.push(args.channel, payload)
    if entry is None:
        print(
            f"Error: channel prefix exceeds capacity of {buffer.capacity} bytes",
            file=sys.stderr,
        )
        sys.exit(1)
    print(entry.line, end="")
    if args.no_sync:
        return

    if buffer.sink is None:
        print("Warning: no audit endpoint configured, entry not synced", file=sys.stderr)
        return
    if not asyncio.run(buffer.flush()):
        print(f"Error: sync to {buffer.sink.describe()} failed", file=sys.stderr)
        sys.exit(1)
    print(f"Synced to {buffer.sink.describe()}")


def cmd_run(args: argparse.Namespace) -> None:
    """Start the GateKit admin server."""
    import os

    from runtime.manifest_loader import MANIFEST_ENV

    os.environ[MANIFEST_ENV] = args.manifest

    manifest = _load(args.manifest)

    print(f"Starting GateKit runtime for '{manifest.app.name}'...")
    print(f"  Manifest: {args.manifest}")
    print(f"  Host:     {args.host}")
    print(f"  Port:     {args.port}")
    print(f"  Mode:     {manifest.runtime.mode.value}")
    print()

    import uvicorn

    uvicorn.run(
        "runtime.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="gatekit",
        description="GateKit — caller-aware call mediation CLI",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    sub = parser.add_subparsers(dest="command")

    # validate
    p_val = sub.add_parser("validate", help="Validate a gatekit.yaml manifest")
    p_val.add_argument(
        "manifest", nargs="?", default="gatekit.yaml", help="Path to manifest"
    )
    p_val.set_defaults(func=cmd_validate)

    # check
    p_chk = sub.add_parser("check", help="Evaluate a call against the policy")
    p_chk.add_argument(
        "manifest", nargs="?", default="gatekit.yaml", help="Path to manifest"
    )
    p_chk.add_argument("--method", "-m", required=True, help="Primitive name")
    p_chk.add_argument("--file-path", help="Caller file path")
    p_chk.add_argument("--file-name", help="Caller file name")
    p_chk.add_argument("--class-name", help="Caller declared class")
    p_chk.add_argument(
        "--target", action="append", help="Scope tag the call target satisfies (repeatable)"
    )
    p_chk.add_argument("--explain", action="store_true", help="Show every rule's verdict")
    p_chk.add_argument("--json", action="store_true", help="Output raw JSON")
    p_chk.set_defaults(func=cmd_check)

    # groups
    p_grp = sub.add_parser("groups", help="List method groups")
    p_grp.add_argument("manifest", nargs="?", default=None, help="Path to manifest")
    p_grp.set_defaults(func=cmd_groups)

    # audit push
    p_aud = sub.add_parser("audit", help="Audit log operations")
    aud_sub = p_aud.add_subparsers(dest="audit_command", required=True)
    p_push = aud_sub.add_parser(
        "push", help="Push one entry and replace the sink contents with it"
    )
    p_push.add_argument("channel", help="Channel name, e.g. policy.audit")
    p_push.add_argument("payload", help="JSON value, or plain text if not valid JSON")
    p_push.add_argument("--manifest", default="gatekit.yaml", help="Path to manifest")
    p_push.add_argument("--no-sync", action="store_true", help="Only print the line")
    p_push.set_defaults(func=cmd_audit_push)

    # run
    p_run = sub.add_parser("run", help="Start the GateKit admin server")
    p_run.add_argument(
        "manifest", nargs="?", default="gatekit.yaml", help="Path to manifest"
    )
    p_run.add_argument("--host", default="127.0.0.1", help="Bind address")
    p_run.add_argument("--port", type=int, default=8090, help="Port")
    p_run.add_argument("--reload", action="store_true", help="Enable auto-reload")
    p_run.set_defaults(func=cmd_run)

    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
