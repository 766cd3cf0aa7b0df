"""
Backup CLI tool for JOAP.

Operator commands that work directly against DATA_DIR, without the HTTP
service running:
- export: Write the current data as a snapshot file (no history entry)
- create: Create a manual backup in history
- list: Show backup history, newest first
- restore: Replace all live data from a file or a backup in history

Usage:
    joap-backup export --output snapshot.json
    joap-backup create
    joap-backup list --page 2 --page-size 5
    joap-backup restore --backup-id <id> --yes

Invariants:
    - restore refuses to run without --yes
    - The auto-backup timer is never started by the CLI
    - Exit code is non-zero on any failure

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripts
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

from ..config import EngineConfig
from ..gateway import GatewayResult
from ..main import Engine

logger = logging.getLogger(__name__)


class BackupCLI:
    """CLI commands over an Engine's gateway.

    Example:
        >>> cli = BackupCLI(engine, actor="ops")
        >>> await cli.create()
        0
    """

    def __init__(self, engine: Engine, actor: str = "cli") -> None:
        self.engine = engine
        self.actor = actor

    def _fail(self, result: GatewayResult) -> int:
        print(f"Error [{result.code}]: {result.error.message}", file=sys.stderr)
        for detail in result.error.details.get("errors", []) or []:
            print(f"  - {detail}", file=sys.stderr)
        return 1

    async def export(self, output: str | None) -> int:
        result = await self.engine.gateway.export_snapshot(self.actor)
        if not result.success:
            return self._fail(result)

        download = result.data
        path = Path(output or download.filename)
        path.write_bytes(download.content)
        print(f"Snapshot exported to {path} ({len(download.content)} bytes)")
        return 0

    async def create(self) -> int:
        result = await self.engine.gateway.create_manual_backup(self.actor)
        if not result.success:
            return self._fail(result)

        record = result.data
        print(f"Backup created: {record.id}")
        print(f"  File: {record.filename}")
        print(f"  Size: {record.size_bytes} bytes")
        return 0

    async def list(self, page: int, page_size: int | None) -> int:
        result = await self.engine.gateway.list_history(page=page, page_size=page_size)
        if not result.success:
            return self._fail(result)

        history = result.data
        print(f"Page {history.page} of {max(history.total_pages, 1)} ({history.total} backups)")
        for record in history.records:
            print(
                f"  {record.id}  {record.created_at.isoformat()}  {record.source.value:<6}  "
                f"{record.size_bytes:>10}  {record.created_by}  {record.filename}"
            )
        return 0

    async def restore(self, file: str | None, backup_id: str | None, confirmed: bool) -> int:
        if file:
            try:
                data = Path(file).read_bytes()
            except OSError as e:
                print(f"Error: cannot read {file}: {e}", file=sys.stderr)
                return 1
            result = await self.engine.gateway.upload_and_restore(data, confirmed, self.actor)
        else:
            result = await self.engine.gateway.restore_from_history(
                backup_id, confirmed, self.actor
            )

        if not result.success:
            if result.code == "CONFIRMATION_REQUIRED":
                print("Restore replaces ALL live data. Re-run with --yes to confirm.", file=sys.stderr)
                return 1
            return self._fail(result)

        report = result.data
        print("Restore completed successfully")
        for name, count in report.replaced.items():
            print(f"  {name}: {count}")
        if report.ignored:
            print(f"  Ignored: {', '.join(report.ignored)}")
        print(f"  Duration: {report.duration_ms}ms")
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="JOAP backup and restore tool")
    parser.add_argument("--data-dir", help="Data directory (default: $DATA_DIR)")
    parser.add_argument("--actor", default="cli", help="Name recorded in history and audit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # export command
    export_parser = subparsers.add_parser("export", help="Export current data to a file")
    export_parser.add_argument("--output", "-o", help="Output file (default: generated name)")

    # create command
    subparsers.add_parser("create", help="Create a manual backup")

    # list command
    list_parser = subparsers.add_parser("list", help="List backup history")
    list_parser.add_argument("--page", type=int, default=1, help="1-based page number")
    list_parser.add_argument("--page-size", type=int, help="Backups per page (default: 5)")

    # restore command
    restore_parser = subparsers.add_parser("restore", help="Replace all data from a backup")
    source = restore_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", "-f", help="Snapshot file to restore")
    source.add_argument("--backup-id", help="Backup id from history")
    restore_parser.add_argument("--yes", action="store_true", help="Confirm the restore")

    return parser


async def run(args: argparse.Namespace, config: EngineConfig) -> int:
    """Run one command against a fresh engine."""
    engine = Engine(config, run_scheduler=False)
    await engine.start()
    try:
        cli = BackupCLI(engine, actor=args.actor)
        if args.command == "export":
            return await cli.export(args.output)
        elif args.command == "create":
            return await cli.create()
        elif args.command == "list":
            return await cli.list(args.page, args.page_size)
        elif args.command == "restore":
            return await cli.restore(args.file, args.backup_id, args.yes)
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await engine.stop()


def main() -> None:
    """CLI entry point for backup tool."""
    args = build_parser().parse_args()

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.data_dir:
        config.storage = dataclasses.replace(config.storage, data_dir=args.data_dir)

    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()
