from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

import uvicorn

from .audit import AuditColumn, score_node, security_stats
from .persistence import PersistenceManager, create_persistence_app
from .service import GuardService
from .store import FileStore


def _service() -> GuardService:
    return GuardService.create(source="cli")


def _read_value(args: argparse.Namespace) -> str:
    if args.value_file:
        return Path(args.value_file).read_text(encoding="utf-8")
    if args.value_stdin:
        return sys.stdin.read()
    return args.value


def _audit_report(path: Path) -> dict:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Audit input must be a JSON object with 'columns' and 'nodes'.")
    columns = [
        AuditColumn(id=str(item["id"]), label=str(item.get("label", item["id"])), key=str(item.get("key", item["id"])))
        for item in payload.get("columns", [])
    ]
    overrides = payload.get("overrides") or {}
    nodes = []
    for node in payload.get("nodes", []):
        result = score_node(node, columns, overrides)
        nodes.append(
            {
                "id": node.get("id") if isinstance(node, dict) else None,
                "score": result.score,
                "risk_level": result.risk_level,
                "compliance": result.compliance,
            }
        )
    return {"nodes": nodes, "stats": security_stats(item["score"] for item in nodes)}


def main() -> int:
    parser = argparse.ArgumentParser(description="Atlas Guard policy engine CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    authorize_cmd = sub.add_parser("authorize", help="Check whether the stored session may invoke a protocol")
    authorize_cmd.add_argument("protocol", help="Protocol identifier (for example view_editor)")

    compliance_cmd = sub.add_parser("compliance", help="Score a protocol for SSDLC compliance")
    compliance_cmd.add_argument("protocol", help="Protocol identifier")

    write_cmd = sub.add_parser("write", help="Write a value through the namespaced write gate")
    write_cmd.add_argument("key", help="Full storage key (must start with atlas_ or antigravity_)")
    write_cmd.add_argument("--value", default="", help="Value to store as-is")
    write_cmd.add_argument("--value-file", default=None, help="Read the value from a file")
    write_cmd.add_argument("--value-stdin", action="store_true", help="Read the value from stdin")

    read_cmd = sub.add_parser("read", help="Read a logical key with legacy-namespace fallback")
    read_cmd.add_argument("logical_key", help="Logical key (for example session or groups)")

    sub.add_parser("migrate", help="Copy legacy-only session/groups values into the current namespace")

    audit_cmd = sub.add_parser("audit", help="Score assets in a JSON file against audit columns")
    audit_cmd.add_argument("input", help="JSON file with columns, nodes, and optional overrides")

    serve_cmd = sub.add_parser("serve", help="Run the local persistence API server")
    serve_cmd.add_argument("--host", default="127.0.0.1")
    serve_cmd.add_argument("--port", type=int, default=8000)

    sync_cmd = sub.add_parser("sync", help="Cluster sync operations")
    sync_sub = sync_cmd.add_subparsers(dest="sync_command", required=True)
    sync_sub.add_parser("push", help="Push every stored key to the persistence API")
    sync_sub.add_parser("hydrate", help="Pull every key from the persistence API through the write gate")

    telemetry_cmd = sub.add_parser("telemetry", help="Telemetry operations")
    telemetry_sub = telemetry_cmd.add_subparsers(dest="telemetry_command", required=True)
    telemetry_sub.add_parser("status", help="Show telemetry status")
    telemetry_sub.add_parser("purge", help="Delete the local telemetry log")

    args = parser.parse_args()

    if args.command == "audit":
        try:
            report = _audit_report(Path(args.input))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            print(f"Audit input rejected: {exc}", file=sys.stderr)
            return 2
        print(json.dumps(report, indent=2))
        return 0

    service = _service()

    if args.command == "authorize":
        allowed = service.authorize_protocol(args.protocol)
        print(json.dumps({"protocol": args.protocol, "allowed": allowed}, indent=2))
        return 0 if allowed else 1

    if args.command == "compliance":
        result = service.validate_ssdlc_compliance(args.protocol)
        print(json.dumps({"protocol": args.protocol, **result.to_dict()}, indent=2))
        return 0

    if args.command == "write":
        ok = service.secure_write(args.key, _read_value(args))
        result = {"key": args.key, "written": ok}
        if ok and service.sync is not None:
            result["sync"] = service.sync.flush()
        print(json.dumps(result, indent=2))
        return 0 if ok else 1

    if args.command == "read":
        print(json.dumps({"logical_key": args.logical_key, "value": service.read(args.logical_key)}, indent=2))
        return 0

    if args.command == "migrate":
        print(json.dumps({"migrated": service.migrate_legacy()}, indent=2))
        return 0

    if args.command == "serve":
        server_root = (service.home / "server") if service.home else Path("server-data")
        manager = PersistenceManager(FileStore(server_root), telemetry=service.telemetry)
        app = create_persistence_app(manager)
        uvicorn.run(app, host=args.host, port=args.port, log_level="info")
        return 0

    if args.command == "sync":
        try:
            sync = service.require_sync()
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return 2
        if args.sync_command == "push":
            queued = sync.enqueue_existing()
            result = sync.flush()
            print(json.dumps({"queued": queued, **result}, indent=2))
            return 0 if not result["failed"] else 1
        if args.sync_command == "hydrate":
            ok = sync.hydrate()
            print(json.dumps({"hydrated": ok}, indent=2))
            return 0 if ok else 1

    if args.command == "telemetry":
        if service.telemetry is None:
            print("Telemetry is not configured.", file=sys.stderr)
            return 2
        if args.telemetry_command == "status":
            print(json.dumps(service.telemetry.status(), indent=2))
            return 0
        if args.telemetry_command == "purge":
            print(json.dumps({"purged": service.telemetry.purge()}, indent=2))
            return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
