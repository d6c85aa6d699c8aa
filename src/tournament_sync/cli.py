#!/usr/bin/env python3
"""Command-line interface for tournament sync.

This module provides CLI commands for inspecting and driving the sync
engine. Uses only core/ modules.

Commands:
    sync status                 Show device, scope and pending counts
    sync upload                 Send pending local changes to the cloud
    sync download               Fetch the latest data from the cloud
    sync pending                List records not yet uploaded
    sync conflicts              Refresh and list detected conflicts
    sync resolve <choice>       Resolve the presented conflict
    sync clear-local            Delete all local data
    scope set <org> [tournament] Select the organization/tournament
    remote set <url>            Set the remote document server URL
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from tournament_sync.core.config import Config
from tournament_sync.core.conflicts import (
    LOCAL_LABEL,
    REMOTE_LABEL,
    ResolutionChoice,
    format_conflict,
)
from tournament_sync.core.database import Database
from tournament_sync.core.models import EntityKind, SyncScope
from tournament_sync.core.remote import HttpRemoteStore, InMemoryRemoteStore, RemoteStore
from tournament_sync.core.service import SyncService
from tournament_sync.core.sync_utils import OfflineError, SyncError
from tournament_sync.core.timestamp_utils import format_timestamp, to_wire
from tournament_sync.core.validation import ValidationError


def create_remote(config: Config) -> RemoteStore:
    """Create the remote store adapter from configuration."""
    url = config.get_remote_url()
    if not url:
        raise ValidationError("remote_url", "not configured (use 'remote set <url>')")
    return HttpRemoteStore(
        url,
        timeout=config.get_sync_timeout_ms() / 1000,
        poll_interval_seconds=config.get_poll_interval_seconds(),
    )


def is_remote_reachable(config: Config) -> bool:
    """Check whether the remote document server answers its health check."""
    url = config.get_remote_url()
    if not url:
        return False
    try:
        response = requests.get(f"{url}/api/health", timeout=3)
    except requests.RequestException:
        return False
    return response.status_code == 200


def get_scope(config: Config) -> SyncScope:
    """The configured organization/tournament scope."""
    organization_id = config.get_organization_id()
    if not organization_id:
        raise ValidationError("organization_id", "no scope selected (use 'scope set <org_id>')")
    return SyncScope(organization_id, config.get_active_tournament_id())


def _jsonable(record: Dict[str, Any]) -> Dict[str, Any]:
    return {k: to_wire(v) if hasattr(v, "isoformat") else v for k, v in record.items()}


def _print_notification(level: str, message: str) -> None:
    stream = sys.stderr if level == "error" else sys.stdout
    print(message, file=stream)


def _stderr_notification(level: str, message: str) -> None:
    # JSON output owns stdout
    print(message, file=sys.stderr)


def format_record(kind: EntityKind, record: Dict[str, Any], id_field: str) -> str:
    """Format one pending record as a single line."""
    action = "delete" if record.get("_deleted") else "upsert"
    updated = format_timestamp(record.get("updated_at"))
    return f"  [{action}] {kind.value} {record.get(id_field)} (modified {updated})"


def cmd_sync_status(service: SyncService, config: Config, args: argparse.Namespace) -> int:
    """Show device, scope and pending change counts.

    Args:
        service: Sync service instance
        config: Config instance
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    organization_id = config.get_organization_id()
    tournament_id = config.get_active_tournament_id()
    pending: Dict[str, int] = {}
    if organization_id:
        data = service.get_unsynced_data(SyncScope(organization_id, tournament_id))
        pending = {kind.value: len(records) for kind, records in data.items()}

    if args.format == "json":
        status = {
            "device_id": config.get_device_id_hex(),
            "device_name": config.get_device_name(),
            "organization_id": organization_id,
            "tournament_id": tournament_id,
            "remote_url": config.get_remote_url(),
            "pending": pending,
            "pending_total": sum(pending.values()),
        }
        print(json.dumps(status, indent=2))
    else:
        print(f"Device ID: {config.get_device_id_hex()}")
        print(f"Device Name: {config.get_device_name()}")
        print(f"Organization: {organization_id or '(not set)'}")
        print(f"Tournament: {tournament_id or '(not set)'}")
        print(f"Remote: {config.get_remote_url() or '(not set)'}")
        total = sum(pending.values())
        print(f"Pending Changes: {total}")
        for kind, count in pending.items():
            print(f"  - {kind}: {count}")

    return 0


def cmd_sync_upload(service: SyncService, config: Config, args: argparse.Namespace) -> int:
    """Send pending local changes to the cloud."""
    summary = asyncio.run(service.send_to_cloud(get_scope(config)))
    if args.format == "json":
        print(json.dumps(summary.to_dict(), indent=2))
    return 1 if summary.fail_count else 0


def cmd_sync_download(service: SyncService, config: Config, args: argparse.Namespace) -> int:
    """Fetch the latest data from the cloud."""
    summary = asyncio.run(service.fetch_from_cloud(get_scope(config)))
    if args.format == "json":
        output = summary.to_dict()
        output["conflicts"] = [c.to_dict() for c in service.conflicts.pending]
        print(json.dumps(output, indent=2, ensure_ascii=False, default=str))
    return 0


def cmd_sync_pending(service: SyncService, config: Config, args: argparse.Namespace) -> int:
    """List records not yet uploaded."""
    data = service.get_unsynced_data(get_scope(config))

    if args.format == "json":
        output = {
            kind.value: [_jsonable(r) for r in records] for kind, records in data.items()
        }
        print(json.dumps(output, indent=2, ensure_ascii=False, default=str))
        return 0

    if not data:
        print("No pending changes.")
        return 0
    total = sum(len(records) for records in data.values())
    print(f"Pending Changes ({total}):")
    for kind, records in data.items():
        id_field = service.entities[kind].id_field
        for record in records:
            print(format_record(kind, record, id_field))
    return 0


async def _refresh_conflicts(service: SyncService, scope: SyncScope) -> None:
    # Conflicts are detected on download; a fresh process starts with none
    await service.fetch_from_cloud(scope)


def cmd_sync_conflicts(service: SyncService, config: Config, args: argparse.Namespace) -> int:
    """Refresh from the cloud and list detected conflicts."""
    asyncio.run(_refresh_conflicts(service, get_scope(config)))
    conflicts = service.conflicts.pending

    if args.format == "json":
        print(json.dumps([c.to_dict() for c in conflicts], indent=2, ensure_ascii=False, default=str))
        return 0

    if not conflicts:
        print("No conflicts.")
        return 0
    print(f"Conflicts ({len(conflicts)}), columns: {LOCAL_LABEL} / {REMOTE_LABEL}\n")
    for conflict in conflicts:
        print(format_conflict(conflict))
    return 0


def cmd_sync_resolve(service: SyncService, config: Config, args: argparse.Namespace) -> int:
    """Resolve the presented (first) conflict.

    Returns:
        Exit code (0 for success, 1 if there was nothing to resolve)
    """
    choice_map = {
        "keep-local": ResolutionChoice.KEEP_LOCAL,
        "adopt-remote": ResolutionChoice.ADOPT_REMOTE,
    }
    asyncio.run(_refresh_conflicts(service, get_scope(config)))
    if service.conflicts.current is None:
        print("No conflicts to resolve.")
        return 1
    conflict = service.resolve_conflict(choice_map[args.choice])
    print(f"Resolved {conflict.kind.value} {conflict.entity_id} with {args.choice}")
    return 0


def cmd_sync_clear_local(service: SyncService, args: argparse.Namespace) -> int:
    """Delete all local data."""
    if not args.yes:
        print("Error: this deletes unsynced changes too; pass --yes to confirm", file=sys.stderr)
        return 1
    count = service.clear_local_data()
    print(f"Deleted {count} local records")
    return 0


def cmd_scope_set(config: Config, args: argparse.Namespace) -> int:
    """Select the organization and tournament to sync."""
    config.set_active_scope(args.organization_id, args.tournament_id)
    print(f"Scope set to {SyncScope(args.organization_id, args.tournament_id)}")
    return 0


def cmd_remote_set(config: Config, args: argparse.Namespace) -> int:
    """Set the remote document server URL."""
    config.set_remote_url(args.url)
    print(f"Remote set to {config.get_remote_url()}")
    return 0


def add_cli_subparser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add CLI subcommand and its arguments to the main parser.

    Args:
        subparsers: Subparsers action from the main argument parser
    """
    cli_parser = subparsers.add_parser(
        "cli",
        help="Command-line interface mode",
        description="Inspect and drive tournament sync from the command line",
    )

    cli_parser.add_argument(
        "--format",
        type=str,
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    cli_subparsers = cli_parser.add_subparsers(dest="cli_command", help="CLI commands")

    # sync command with subcommands
    sync_parser = cli_subparsers.add_parser(
        "sync",
        help="Sync operations (status, upload, download, conflicts)"
    )
    sync_subparsers = sync_parser.add_subparsers(dest="sync_command", help="Sync commands")

    sync_subparsers.add_parser("status", help="Show device, scope and pending counts")
    sync_subparsers.add_parser("upload", help="Send pending changes to the cloud")
    sync_subparsers.add_parser("download", help="Fetch the latest data from the cloud")
    sync_subparsers.add_parser("pending", help="List records not yet uploaded")
    sync_subparsers.add_parser("conflicts", help="Refresh and list detected conflicts")

    resolve_parser = sync_subparsers.add_parser("resolve", help="Resolve the presented conflict")
    resolve_parser.add_argument(
        "choice",
        type=str,
        choices=["keep-local", "adopt-remote"],
        help="keep-local (upload overwrites the cloud) or adopt-remote"
    )

    clear_parser = sync_subparsers.add_parser("clear-local", help="Delete all local data")
    clear_parser.add_argument("--yes", action="store_true", help="Confirm deletion")

    # scope command
    scope_parser = cli_subparsers.add_parser("scope", help="Organization/tournament selection")
    scope_subparsers = scope_parser.add_subparsers(dest="scope_command", help="Scope commands")
    scope_set_parser = scope_subparsers.add_parser("set", help="Select organization and tournament")
    scope_set_parser.add_argument("organization_id", type=str, help="Organization ID")
    scope_set_parser.add_argument(
        "tournament_id", type=str, nargs="?", default=None, help="Tournament ID (optional)"
    )

    # remote command
    remote_parser = cli_subparsers.add_parser("remote", help="Remote server settings")
    remote_subparsers = remote_parser.add_subparsers(dest="remote_command", help="Remote commands")
    remote_set_parser = remote_subparsers.add_parser("set", help="Set the remote server URL")
    remote_set_parser.add_argument("url", type=str, help="Server URL (e.g., http://host:5000)")


def _run_sync_command(
    sync_cmd: str, config: Config, db: Database, args: argparse.Namespace
) -> int:
    notify = _stderr_notification if args.format == "json" else _print_notification
    if sync_cmd in ("status", "pending", "clear-local"):
        # Local-only commands never reach the remote, so work without one
        remote = create_remote(config) if config.get_remote_url() else InMemoryRemoteStore()
        service = SyncService(db, remote, config, notify=notify)
    else:
        service = SyncService(
            db,
            create_remote(config),
            config,
            is_online=lambda: is_remote_reachable(config),
            notify=notify,
        )
    try:
        return _dispatch_sync_command(sync_cmd, service, config, args)
    finally:
        asyncio.run(service.close())


def _dispatch_sync_command(
    sync_cmd: str, service: SyncService, config: Config, args: argparse.Namespace
) -> int:
    if sync_cmd == "status":
        return cmd_sync_status(service, config, args)
    if sync_cmd == "pending":
        return cmd_sync_pending(service, config, args)
    if sync_cmd == "clear-local":
        return cmd_sync_clear_local(service, args)
    if sync_cmd == "upload":
        return cmd_sync_upload(service, config, args)
    if sync_cmd == "download":
        return cmd_sync_download(service, config, args)
    if sync_cmd == "conflicts":
        return cmd_sync_conflicts(service, config, args)
    if sync_cmd == "resolve":
        return cmd_sync_resolve(service, config, args)
    print(f"Error: Unknown sync command '{sync_cmd}'", file=sys.stderr)
    return 1


def run(config_dir: Optional[Path], args: argparse.Namespace) -> int:
    """Run CLI with given arguments.

    Args:
        config_dir: Custom configuration directory or None for default
        args: Parsed command-line arguments (should have cli_command attribute)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    # Check if CLI command was provided
    if not hasattr(args, 'cli_command') or not args.cli_command:
        print("Error: No CLI command specified. Use --help for available commands.", file=sys.stderr)
        return 1

    config = Config(config_dir=config_dir)

    try:
        if args.cli_command == "scope":
            if getattr(args, "scope_command", None) != "set":
                print("Error: No scope command specified. Use 'scope --help'.", file=sys.stderr)
                return 1
            return cmd_scope_set(config, args)
        if args.cli_command == "remote":
            if getattr(args, "remote_command", None) != "set":
                print("Error: No remote command specified. Use 'remote --help'.", file=sys.stderr)
                return 1
            return cmd_remote_set(config, args)
    except ValidationError as e:
        print(f"Error: Invalid {e.field} - {e.message}", file=sys.stderr)
        return 1

    if args.cli_command != "sync":
        print(f"Error: Unknown command '{args.cli_command}'", file=sys.stderr)
        return 1

    sync_cmd = getattr(args, 'sync_command', None)
    if not sync_cmd:
        print("Error: No sync command specified. Use 'sync --help'.", file=sys.stderr)
        return 1

    db = Database(Path(config.get("database_file")))
    try:
        return _run_sync_command(sync_cmd, config, db, args)
    except ValidationError as e:
        print(f"Error: Invalid {e.field} - {e.message}", file=sys.stderr)
        return 1
    except OfflineError:
        # The notice was already printed; nothing was touched
        return 1
    except SyncError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    finally:
        db.close()
