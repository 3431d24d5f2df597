#!/usr/bin/env python3
"""Entry point for EdgeProvision."""

from __future__ import annotations

import argparse
import logging
import sys
import uuid as uuid_lib
from pathlib import Path
from typing import Any, Callable, Mapping

# Ensure src/ is on sys.path for local imports when running as a script
ROOT_DIR = Path(__file__).resolve().parent.parent
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from edgeprov.common.run_summary import ResourceResultData, RunSummaryBuilder  # noqa: E402
from edgeprov.core.config import DEFAULT_CONFIG, load_devices, load_settings  # noqa: E402
from edgeprov.core.logging import device_context, setup_logging  # noqa: E402
from edgeprov.core.models import DeviceField  # noqa: E402
from edgeprov.core.normalize import single_element  # noqa: E402
from edgeprov.core.resource_data import ResourceData  # noqa: E402
from edgeprov.core.secrets import SecretNotFoundError, load_secrets, resolve_api_credentials  # noqa: E402
from edgeprov.core.storage import (  # noqa: E402
    list_states,
    load_local_config,
    load_state,
    remove_state,
    resolve_state_dir,
    save_state,
)
from edgeprov.netedge.client import NetworkEdgeClient  # noqa: E402
from edgeprov.netedge.device import DeviceProvisioner, plan_device  # noqa: E402

LOCAL_CONFIG_PATH = ROOT_DIR / "config" / "local.yml"


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""

    parser = argparse.ArgumentParser(
        description=(
            "Provisioning tool for network edge devices. "
            "Reconciles devices.yml with the remote provisioning API."
        ),
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=ROOT_DIR / DEFAULT_CONFIG.devices,
        help="Path to the devices inventory file (YAML)",
    )
    parser.add_argument(
        "--secrets",
        type=Path,
        default=ROOT_DIR / DEFAULT_CONFIG.secrets,
        help="Path to the secrets file (YAML)",
    )
    parser.add_argument(
        "--state-dir",
        type=Path,
        default=None,
        help="Directory where device state files are kept. Overrides config/local.yml.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting. Overrides config/local.yml logging.level.",
    )

    device_parent = argparse.ArgumentParser(add_help=False)
    device_parent.add_argument(
        "--device",
        action="append",
        dest="devices",
        metavar="LABEL",
        default=None,
        help="Only handle the given resource label (may be repeated)",
    )

    subcommands = parser.add_subparsers(dest="command", title="commands")
    subcommands.add_parser("apply", help="Create missing devices and update existing ones", parents=[device_parent])
    subcommands.add_parser(
        "plan", help="Show the changes apply would make, using stored state only", parents=[device_parent]
    )
    subcommands.add_parser("refresh", help="Read devices back and rewrite their state", parents=[device_parent])
    subcommands.add_parser("destroy", help="Delete devices that have a stored state", parents=[device_parent])

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    args.local_config = load_local_config(LOCAL_CONFIG_PATH)
    logger = setup_logging(args.local_config, cli_level=logging.DEBUG if args.debug else None)
    logger.info("EdgeProvision run started.")

    if args.command is None:
        parser.print_help()
        logger.info("EdgeProvision run finished.")
        return 0

    handlers: dict[str, Callable[[argparse.Namespace, logging.Logger], int]] = {
        "apply": _run_apply,
        "plan": _run_plan,
        "refresh": _run_refresh,
        "destroy": _run_destroy,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.error(f"Unknown command: {args.command}")
        return 2

    exit_code = handler(args, logger)
    logger.info("EdgeProvision run finished.")
    return exit_code


def _select(labels: list[str], wanted: list[str] | None, logger: logging.Logger) -> list[str]:
    if not wanted:
        return labels
    for label in wanted:
        if label not in labels:
            logger.warning("requested device not found", extra=device_context(label))
    return [label for label in labels if label in wanted]


def _load_inventory(args: argparse.Namespace, logger: logging.Logger) -> dict[str, Mapping[str, Any]] | None:
    config_path = Path(args.config)
    logger.debug("loading devices from %s", config_path)
    try:
        return load_devices(config_path, logger)
    except Exception:
        logger.exception("Failed to load devices configuration.")
        return None


def _build_provisioner(
    args: argparse.Namespace, local_config: Mapping[str, Any] | None, logger: logging.Logger
) -> DeviceProvisioner | None:
    try:
        settings = load_settings(local_config)
    except ValueError:
        logger.exception("Invalid provisioning settings in local.yml.")
        return None

    try:
        credentials = resolve_api_credentials(secrets=load_secrets(Path(args.secrets), logger))
    except SecretNotFoundError:
        logger.error("API credentials are missing; nothing can be provisioned.")
        return None

    logger.debug("api base_url=%s timeout=%s", settings.base_url, settings.request_timeout)
    client = NetworkEdgeClient(
        base_url=settings.base_url,
        client_id=credentials.client_id,
        client_secret=credentials.client_secret,
        timeout=settings.request_timeout,
    )
    return DeviceProvisioner(client, settings, logger)


def _prepare(
    args: argparse.Namespace, logger: logging.Logger
) -> tuple[Mapping[str, Any] | None, Path]:
    local_config = getattr(args, "local_config", None)
    if local_config is not None:
        logger.debug("local config loaded from %s", LOCAL_CONFIG_PATH)
    logger.debug(
        "resolving state directory cli_arg=%s local_yml_present=%s", args.state_dir, local_config is not None
    )
    return local_config, resolve_state_dir(args.state_dir, local_config, logger)


def _summary_for(command: str) -> RunSummaryBuilder:
    timestamp = _timestamp()
    return RunSummaryBuilder(run_id=f"{timestamp}_{uuid_lib.uuid4().hex[:8]}", timestamp=timestamp, command=command)


def _finish(summary: RunSummaryBuilder, state_dir: Path, logger: logging.Logger) -> int:
    try:
        summary.save(state_dir, logger)
    except OSError:
        logger.exception("Failed to save run summary.")
    logger.info(
        "run totals created=%d updated=%d deleted=%d unchanged=%d failed=%d",
        summary.created,
        summary.updated,
        summary.deleted,
        summary.unchanged,
        summary.failed,
    )
    return 1 if summary.has_failures else 0


def _uuids(snapshot: Mapping[str, Any] | None) -> tuple[str | None, str | None]:
    if not snapshot:
        return None, None
    secondary = single_element(snapshot.get(DeviceField.SECONDARY.value)) or {}
    return snapshot.get(DeviceField.UUID.value) or None, secondary.get(DeviceField.UUID.value) or None


def _run_apply(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Create or update every selected device."""

    inventory = _load_inventory(args, logger)
    if inventory is None:
        return 1
    local_config, state_dir = _prepare(args, logger)
    provisioner = _build_provisioner(args, local_config, logger)
    if provisioner is None:
        return 1

    labels = _select(sorted(inventory), args.devices, logger)
    summary = _summary_for("apply")
    summary.set_resources_total(len(labels))
    logger.info("Starting apply for %d device(s).", len(labels))

    with provisioner.client:
        for label in labels:
            summary.add_resource(_apply_device(provisioner, label, inventory[label], state_dir, logger))

    for label in _select(list_states(state_dir), args.devices, logger):
        if label not in inventory:
            logger.warning(
                "device has state but is not in devices.yml; run destroy to remove it", extra=device_context(label)
            )

    return _finish(summary, state_dir, logger)


def _apply_device(
    provisioner: DeviceProvisioner,
    label: str,
    attributes: Mapping[str, Any],
    state_dir: Path,
    logger: logging.Logger,
) -> ResourceResultData:
    log_extra = device_context(label)
    logger.info("Beginning processing for device.", extra=log_extra)
    action = "create"
    try:
        previous = load_state(state_dir, label)
        if previous and previous.get(DeviceField.UUID.value):
            previous = provisioner.read(previous[DeviceField.UUID.value], attributes, label)
            if previous is None:
                remove_state(state_dir, label, logger)
            else:
                previous = provisioner.settle(previous, attributes, label)

        if previous is None:
            def record_created(primary_id: str) -> None:
                save_state(state_dir, label, {DeviceField.UUID.value: primary_id}, logger)

            snapshot = provisioner.create(attributes, label, on_created=record_created)
            changed: list[str] = []
            drift: list[str] = []
        else:
            action = "update"
            data = ResourceData(current=attributes, previous=previous)
            plan = provisioner.plan(data)
            changed = sorted({field.value for field in plan.primary} | {field.value for field in plan.secondary})
            drift = plan.drift
            snapshot = provisioner.update(data, label)
    except Exception as exc:
        logger.exception("Apply failed for device.", extra=log_extra)
        return ResourceResultData(label=label, action=action, status="failed", error=str(exc))

    if snapshot is None:
        remove_state(state_dir, label, logger)
        logger.warning("device disappeared during apply", extra=log_extra)
        return ResourceResultData(label=label, action=action, status="missing", changed_fields=changed, drift=drift)

    save_state(state_dir, label, snapshot, logger)
    primary_id, secondary_id = _uuids(snapshot)
    logger.info("Apply completed action=%s", action, extra=device_context(label, primary_id))
    return ResourceResultData(
        label=label,
        action=action,
        status="ok",
        uuid=primary_id,
        secondary_uuid=secondary_id,
        changed_fields=changed,
        drift=drift,
    )


def _run_plan(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Log the changes apply would make without calling the API."""

    inventory = _load_inventory(args, logger)
    if inventory is None:
        return 1
    _, state_dir = _prepare(args, logger)

    labels = _select(sorted(inventory), args.devices, logger)
    failed = False
    for label in labels:
        log_extra = device_context(label)
        try:
            previous = load_state(state_dir, label)
        except ValueError:
            logger.exception("Unable to read stored state.", extra=log_extra)
            failed = True
            continue

        if not previous or not previous.get(DeviceField.UUID.value):
            logger.info("plan: create", extra=log_extra)
            continue

        plan = plan_device(ResourceData(current=inventory[label], previous=previous), logger)
        if plan.is_empty:
            logger.info("plan: no changes", extra=log_extra)
        for field, value in plan.primary.items():
            logger.info("plan: update %s -> %r", field.value, value, extra=log_extra)
        for field, value in plan.secondary.items():
            logger.info("plan: update secondary %s -> %r", field.value, value, extra=log_extra)
        for name in plan.drift:
            logger.warning("plan: '%s' changed but cannot be updated in place", name, extra=log_extra)

    for label in _select(list_states(state_dir), args.devices, logger):
        if label not in inventory:
            logger.info("plan: orphaned state, destroy would delete it", extra=device_context(label))

    return 1 if failed else 0


def _run_refresh(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Read every stored device back from the API and rewrite its state."""

    inventory = _load_inventory(args, logger) or {}
    local_config, state_dir = _prepare(args, logger)
    provisioner = _build_provisioner(args, local_config, logger)
    if provisioner is None:
        return 1

    labels = _select(list_states(state_dir), args.devices, logger)
    summary = _summary_for("refresh")
    summary.set_resources_total(len(labels))

    with provisioner.client:
        for label in labels:
            log_extra = device_context(label)
            try:
                previous = load_state(state_dir, label) or {}
                primary_id = previous.get(DeviceField.UUID.value)
                if not primary_id:
                    raise ValueError(f"state for '{label}' has no device uuid")
                snapshot = provisioner.read(primary_id, inventory.get(label), label)
            except Exception as exc:
                logger.exception("Refresh failed for device.", extra=log_extra)
                summary.add_resource(ResourceResultData(label=label, action="refresh", status="failed", error=str(exc)))
                continue

            if snapshot is None:
                remove_state(state_dir, label, logger)
                summary.add_resource(ResourceResultData(label=label, action="refresh", status="missing"))
                continue

            save_state(state_dir, label, snapshot, logger)
            primary_id, secondary_id = _uuids(snapshot)
            summary.add_resource(
                ResourceResultData(
                    label=label, action="refresh", status="ok", uuid=primary_id, secondary_uuid=secondary_id
                )
            )

    return _finish(summary, state_dir, logger)


def _run_destroy(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Delete every selected device that has a stored state."""

    local_config, state_dir = _prepare(args, logger)
    provisioner = _build_provisioner(args, local_config, logger)
    if provisioner is None:
        return 1

    labels = _select(list_states(state_dir), args.devices, logger)
    summary = _summary_for("destroy")
    summary.set_resources_total(len(labels))
    logger.info("Starting destroy for %d device(s).", len(labels))

    with provisioner.client:
        for label in labels:
            log_extra = device_context(label)
            try:
                state = load_state(state_dir, label) or {}
                primary_id, secondary_id = _uuids(state)
                provisioner.delete(state, label)
            except Exception as exc:
                logger.exception("Destroy failed for device.", extra=log_extra)
                summary.add_resource(ResourceResultData(label=label, action="delete", status="failed", error=str(exc)))
                continue

            remove_state(state_dir, label, logger)
            summary.add_resource(
                ResourceResultData(
                    label=label, action="delete", status="ok", uuid=primary_id, secondary_uuid=secondary_id
                )
            )

    return _finish(summary, state_dir, logger)


def _timestamp() -> str:
    from datetime import datetime, timezone

    return datetime.now(timezone.utc).strftime("%Y-%m-%d_%H%M%S")


if __name__ == "__main__":
    raise SystemExit(main())
