from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Any

from loraprov_core.config import get_config
from loraprov_core.errors import ConfigError, WizardTransitionError
from loraprov_core.inventory.store import (
    entity_from_dict,
    import_entities,
    load_entities,
    load_registry_config,
    save_registry_config,
)
from loraprov_core.inventory.types import (
    CLUSTERS,
    ENTITY_KINDS,
    KIND_DEVICE,
    OWNER_ORGANIZATION,
    OWNER_USER,
    Entity,
    RegistryConfig,
)
from loraprov_core.logging import configure_logging
from loraprov_core.provisioning.discovery import reconcile
from loraprov_core.provisioning.plan import build_plan
from loraprov_core.provisioning.session import ProvisioningSession, SessionOptions
from loraprov_core.provisioning.types import ValidationReport
from loraprov_core.provisioning.validator import validate_connection
from loraprov_core.provisioning.wizard import STEP_COMPLETE
from ttn_adapter.client import TtnRegistryClient

SERVICE_NAME = "loraprov-cli"

RETRY_NONE = "none"
RETRY_ALL = "all"
RETRY_RETRYABLE = "retryable"

REGISTRY_APP = "local_adapter.registry_service:app"


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _registry_client() -> TtnRegistryClient:
    return TtnRegistryClient.from_config(get_config())


def _state_uri(value: str | None) -> str:
    return value or get_config().state_uri


def _load_registry_config(state_uri: str, org_id: str) -> RegistryConfig:
    config = load_registry_config(state_uri, org_id)
    if config is None:
        raise ConfigError(
            f"No registry config for org {org_id}; run 'loraprov configure' first"
        )
    return config


def _read_inventory_file(path: Path) -> list[Entity]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    items = payload.get("entities", []) if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise ValueError(f"Inventory file {path} must hold a list of entities")
    return [entity_from_dict(item) for item in items if isinstance(item, dict)]


def _load_inventory(args: argparse.Namespace, state_uri: str) -> list[Entity]:
    if args.inventory:
        entities = _read_inventory_file(Path(args.inventory))
        return [entity for entity in entities if entity.kind == args.kind]
    return load_entities(state_uri, kind=args.kind)


def _report_payload(report: ValidationReport) -> dict[str, Any]:
    return {
        "status": report.status,
        "checks": [
            {"name": check.name, "status": check.status, "message": check.message}
            for check in report.checks
        ],
    }


def cmd_configure(args: argparse.Namespace) -> int:
    state_uri = _state_uri(args.state_uri)
    existing = load_registry_config(state_uri, args.org)
    enabled = args.enabled
    if enabled is None:
        enabled = existing.enabled if existing else True
    config = RegistryConfig(
        enabled=enabled,
        cluster=args.cluster or (existing.cluster if existing else None),
        application_id=args.application_id
        or (existing.application_id if existing else None),
        credential_ref=args.credential_ref
        or (existing.credential_ref if existing else None),
        org_id=args.org,
        gateway_owner_type=args.gateway_owner_type
        or (existing.gateway_owner_type if existing else OWNER_USER),
        gateway_owner_id=args.gateway_owner_id
        or (existing.gateway_owner_id if existing else None),
        gateway_credential_ref=args.gateway_credential_ref
        or (existing.gateway_credential_ref if existing else None),
    )
    stored = save_registry_config(state_uri, config)
    _print_json(
        {
            "org_id": stored.org_id,
            "enabled": stored.enabled,
            "cluster": stored.cluster,
            "application_id": stored.application_id,
            "gateway_owner_type": stored.gateway_owner_type,
            "gateway_owner_id": stored.gateway_owner_id,
            "updated_at": stored.updated_at,
        }
    )
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    state_uri = _state_uri(args.state_uri)
    entities = _read_inventory_file(Path(args.file))
    merged = import_entities(state_uri, entities)
    _print_json({"imported": len(entities), "total": len(merged)})
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    state_uri = _state_uri(args.state_uri)
    config = _load_registry_config(state_uri, args.org)
    with _registry_client() as client:
        report = validate_connection(config, client)
    _print_json(_report_payload(report))
    return 0 if report.ok else 1


def cmd_discover(args: argparse.Namespace) -> int:
    app_config = get_config()
    state_uri = _state_uri(args.state_uri)
    config = _load_registry_config(state_uri, args.org)
    entities = _load_inventory(args, state_uri)
    with _registry_client() as client:
        result = reconcile(
            entities,
            config,
            client,
            max_workers=app_config.discovery_workers,
            timeout_s=app_config.request_timeout_s,
        )
    _print_json(
        {
            "statuses": dict(result.statuses),
            "remote_ids": dict(result.remote_ids),
            "selection": sorted(result.selection),
        }
    )
    return 0


def cmd_provision(args: argparse.Namespace) -> int:
    app_config = get_config()
    state_uri = _state_uri(args.state_uri)
    config = _load_registry_config(state_uri, args.org)
    entities = _load_inventory(args, state_uri)
    options = SessionOptions.from_config(app_config, write_run_log=not args.no_run_log)

    with _registry_client() as client:
        session = ProvisioningSession(
            entities,
            config,
            registry=client,
            tester=client,
            kind=args.kind,
            options=options,
        )
        report = session.validate()
        if not report.ok:
            _print_json({"validation": _report_payload(report)})
            return 1

        session.advance()
        if args.select:
            session.select_none()
            for local_id in args.select:
                session.toggle(local_id)
        state = session.state
        if not state.selection:
            _print_json(
                {
                    "statuses": dict(state.statuses),
                    "message": "Nothing to register",
                }
            )
            return 0

        session.advance()
        plan = build_plan(state.selected_entities(), config, kind=args.kind)
        plan_payload = {
            "kind": plan.kind,
            "target_ids": list(plan.target_ids),
            "remote_ids": dict(plan.remote_ids),
            "invalid_ids": list(plan.invalid_ids),
            "frequency_plan": plan.frequency_plan,
            "activation_mode": plan.activation_mode,
            "batched": plan.batched,
        }
        if not args.yes:
            _print_json(
                {
                    "plan": plan_payload,
                    "confirmed": False,
                    "message": "Re-run with --yes to register",
                }
            )
            return 0

        session.confirm()
        session.advance()
        summary = session.state.summary
        if summary is not None and summary.failed and args.retry_failed != RETRY_NONE:
            try:
                session.retry_failed(
                    retryable_only=args.retry_failed == RETRY_RETRYABLE
                )
            except WizardTransitionError as exc:
                print(f"Retry skipped: {exc}", file=sys.stderr)
            else:
                session.confirm()
                session.advance()

        session.advance()
        state = session.state
        summary = state.summary
        payload: dict[str, Any] = {
            "plan": plan_payload,
            "complete": state.current_step == STEP_COMPLETE,
            "summary": summary.to_dict() if summary else None,
            "run_logs": list(session.run_log_uris),
        }
    _print_json(payload)
    return 0 if summary is not None and summary.failed == 0 else 1


def _uvicorn_cmd(target: str, host: str, port: int, log_level: str) -> list[str]:
    return [
        "uvicorn",
        target,
        "--host",
        host,
        "--port",
        str(port),
        "--log-level",
        log_level,
    ]


def cmd_serve_registry(args: argparse.Namespace) -> int:
    cmd = _uvicorn_cmd(REGISTRY_APP, args.host, args.port, args.log_level)
    if args.dry_run:
        print(" ".join(cmd))
        return 0
    proc = subprocess.Popen(cmd)
    try:
        return proc.wait()
    except KeyboardInterrupt:
        proc.terminate()
        proc.wait(timeout=5)
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="loraprov")
    subparsers = parser.add_subparsers(dest="command")

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--state-uri", default=None)
        sub.add_argument("--org", required=True)

    def add_inventory(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--kind", choices=ENTITY_KINDS, default=KIND_DEVICE)
        sub.add_argument(
            "--inventory",
            default=None,
            help="Inventory JSON file (defaults to the stored inventory)",
        )

    configure_parser = subparsers.add_parser(
        "configure", help="Store the registry config for an org"
    )
    add_common(configure_parser)
    configure_parser.add_argument("--cluster", choices=CLUSTERS, default=None)
    configure_parser.add_argument("--application-id", default=None)
    configure_parser.add_argument(
        "--credential-ref",
        default=None,
        help="API key, or env:NAME to read it from the environment",
    )
    configure_parser.add_argument(
        "--gateway-owner-type",
        choices=(OWNER_USER, OWNER_ORGANIZATION),
        default=None,
    )
    configure_parser.add_argument("--gateway-owner-id", default=None)
    configure_parser.add_argument("--gateway-credential-ref", default=None)
    enable_group = configure_parser.add_mutually_exclusive_group()
    enable_group.add_argument(
        "--enable", dest="enabled", action="store_const", const=True, default=None
    )
    enable_group.add_argument(
        "--disable", dest="enabled", action="store_const", const=False
    )
    configure_parser.set_defaults(func=cmd_configure)

    import_parser = subparsers.add_parser("import", help="Import inventory entities")
    import_parser.add_argument("--state-uri", default=None)
    import_parser.add_argument("--file", required=True)
    import_parser.set_defaults(func=cmd_import)

    validate_parser = subparsers.add_parser(
        "validate", help="Check the registry connection"
    )
    add_common(validate_parser)
    validate_parser.set_defaults(func=cmd_validate)

    discover_parser = subparsers.add_parser(
        "discover", help="Report which entities are registered"
    )
    add_common(discover_parser)
    add_inventory(discover_parser)
    discover_parser.set_defaults(func=cmd_discover)

    provision_parser = subparsers.add_parser(
        "provision", help="Register unregistered entities"
    )
    add_common(provision_parser)
    add_inventory(provision_parser)
    provision_parser.add_argument(
        "--select",
        nargs="+",
        default=None,
        help="Register these local ids instead of every unregistered entity",
    )
    provision_parser.add_argument(
        "--yes", action="store_true", help="Confirm the registration plan"
    )
    provision_parser.add_argument(
        "--retry-failed",
        choices=(RETRY_NONE, RETRY_ALL, RETRY_RETRYABLE),
        default=RETRY_NONE,
    )
    provision_parser.add_argument("--no-run-log", action="store_true")
    provision_parser.set_defaults(func=cmd_provision)

    serve_parser = subparsers.add_parser(
        "serve-registry", help="Run the emulated registry locally"
    )
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8090)
    serve_parser.add_argument("--log-level", default="info")
    serve_parser.add_argument(
        "--dry-run", action="store_true", help="Print command only"
    )
    serve_parser.set_defaults(func=cmd_serve_registry)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 2
    configure_logging(
        service=SERVICE_NAME,
        env=os.getenv("ENV"),
        version=os.getenv("LORAPROV_VERSION"),
    )
    try:
        return args.func(args)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
