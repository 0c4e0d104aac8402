#!/usr/bin/env python3
"""
Migration CLI for the board-governance database.

    migrate up [--dry-run] [--force] [--target VERSION]
    migrate down [STEPS] [--dry-run] [--force]
    migrate status
    migrate create NAME
"""
import sys
import asyncio
import logging
import argparse
from typing import List, Optional
from boardops.core.migrations.migration_config import EXECUTION_MODES, MigrationSettings
from boardops.core.migrations.migration_models import MigrationStatus, RunReport, StatusEntry
from boardops.core.migrations.migration_registry import MigrationRegistry
from boardops.core.migrations.exceptions import MigrationError, MigrationNameCollisionError
from boardops.services.database.connection_manager import ConnectionManager
from boardops.services.database.migration_runner import MigrationRunner

logger = logging.getLogger("boardops.migrate")

STATUS_ICONS = {
    MigrationStatus.PENDING: "⏳",
    MigrationStatus.RUNNING: "🔄",
    MigrationStatus.APPLIED: "✅",
    MigrationStatus.FAILED: "❌",
    MigrationStatus.ROLLED_BACK: "⏪",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="migrate", description="Board governance database migration tool")
    parser.add_argument("--database-url", help="Postgres URL (default: $DATABASE_URL)")
    parser.add_argument("--migrations-dir", help="Migrations directory (default: $MIGRATIONS_DIR or database/migrations)")
    parser.add_argument("--table", dest="table_name", help="Ledger table name (default: $MIGRATIONS_TABLE or migration_ledger)")
    parser.add_argument("--mode", dest="execution_mode", choices=EXECUTION_MODES, help="Run bodies as one batch or statement by statement")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    up = subparsers.add_parser("up", help="Apply pending migrations")
    up.add_argument("--dry-run", action="store_true", help="Print the SQL without running it")
    up.add_argument("--force", action="store_true", help="Continue past failures and take over stale running rows")
    up.add_argument("--target", help="Stop after this migration version")

    down = subparsers.add_parser("down", help="Roll back the most recent migrations")
    down.add_argument("steps", nargs="?", type=int, default=1, help="Number of migrations to roll back (default: 1)")
    down.add_argument("--dry-run", action="store_true", help="Print the SQL without running it")
    down.add_argument("--force", action="store_true", help="Continue past failures")

    subparsers.add_parser("status", help="Show the state of every migration")

    create = subparsers.add_parser("create", help="Scaffold a new migration file")
    create.add_argument("name", help="Migration name, e.g. 'add vault retention policy'")

    return parser


def configure_logging(level: str = "INFO", verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else level
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s :: %(message)s'
    )


def _format_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


def print_report(report: RunReport) -> None:
    for result in report.results:
        if result.dry_run and result.sql is not None:
            print(f"-- [dry-run] {result.direction.upper()} {result.version}")
            print(result.sql or "-- (empty body)")
            print()
        elif result.success:
            print(f"✅ {result.version} ({result.direction}, {result.elapsed_ms} ms)")
        else:
            print(f"❌ {result.version} ({result.direction}): {result.error}")

    if report.message:
        print(report.message)


def print_status(entries: List[StatusEntry]) -> None:
    if not entries:
        print("📭 No migrations found")
        return

    width = max(len(e.version) for e in entries)
    print(f"   {'VERSION'.ljust(width)}  {'STATUS'.ljust(11)}  {'APPLIED AT'.ljust(19)}  NOTES")
    for entry in entries:
        notes = []
        if entry.file_missing:
            notes.append("file missing")
        if entry.drifted:
            notes.append("changed since applied")
        if entry.status == MigrationStatus.ROLLED_BACK:
            notes.append(f"rolled back {_format_time(entry.rolled_back_at)}")
        if entry.error:
            notes.append(entry.error.splitlines()[0])

        applied_at = _format_time(entry.applied_at) if entry.status == MigrationStatus.APPLIED else "-"
        print(
            f"{STATUS_ICONS[entry.status]} {entry.version.ljust(width)}  "
            f"{entry.status.value.ljust(11)}  {applied_at.ljust(19)}  {'; '.join(notes)}"
        )

    counts = {}
    for entry in entries:
        counts[entry.status.value] = counts.get(entry.status.value, 0) + 1
    print(", ".join(f"{count} {status}" for status, count in sorted(counts.items())))


def run_create(settings: MigrationSettings, name: str) -> int:
    registry = MigrationRegistry(settings.migrations_dir)
    try:
        path = registry.create_migration(name)
    except (MigrationNameCollisionError, ValueError) as e:
        print(f"❌ {e}")
        return 1

    print(f"📝 Created {path}")
    return 0


async def run_command(args: argparse.Namespace, settings: MigrationSettings) -> int:
    connection = ConnectionManager(settings.database_url)
    await connection.connect()
    try:
        runner = MigrationRunner(connection, settings)

        if args.command == "status":
            print_status(await runner.status())
            return 0

        if args.command == "up":
            report = await runner.up(dry_run=args.dry_run, force=args.force, target=args.target)
        else:
            report = await runner.down(steps=args.steps, dry_run=args.dry_run, force=args.force)

        print_report(report)
        return 0 if report.ok else 1
    finally:
        await connection.disconnect()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "down" and args.steps < 1:
        parser.error("steps must be at least 1")

    try:
        settings = MigrationSettings.from_env().with_overrides(
            database_url=args.database_url,
            migrations_dir=args.migrations_dir,
            table_name=args.table_name,
            execution_mode=args.execution_mode,
        )
    except ValueError as e:
        print(f"❌ Configuration error: {e}")
        return 0 if args.command == "status" else 1

    configure_logging(settings.log_level, args.verbose)

    if args.command == "create":
        return run_create(settings, args.name)

    try:
        return asyncio.run(run_command(args, settings))
    except (MigrationError, ValueError) as e:
        print(f"❌ {e}")
        return 0 if args.command == "status" else 1
    except Exception as e:
        logger.exception(f"Unhandled error during '{args.command}': {e}")
        return 0 if args.command == "status" else 1


if __name__ == "__main__":
    sys.exit(main())
