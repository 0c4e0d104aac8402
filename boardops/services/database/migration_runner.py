"""
Migration Runner

Orchestrates up/down batches and status reports.
"""
import logging
from typing import Dict, List, Optional
from boardops.core.migrations.migration_config import MigrationSettings
from boardops.core.migrations.migration_registry import MigrationRegistry
from boardops.core.migrations.migration_tracker import MigrationTracker
from boardops.core.migrations.migration_models import (
    ExecutionResult,
    MigrationFile,
    MigrationRecord,
    MigrationStatus,
    RunReport,
    StatusEntry,
)
from boardops.core.migrations.exceptions import MigrationNotFoundError
from boardops.services.database.connection_manager import ConnectionManager
from boardops.services.database.migration_executor import MigrationExecutor

logger = logging.getLogger("boardops.database.migrations")


class MigrationRunner:
    """
    Discovers, applies and rolls back migrations one at a time.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        settings: MigrationSettings,
        registry: Optional[MigrationRegistry] = None,
        tracker: Optional[MigrationTracker] = None,
    ):
        """
        Initialize migration runner.

        Args:
            connection: Connection manager for the target database
            settings: Runner settings
            registry: Optional registry, built from settings.migrations_dir if omitted
            tracker: Optional tracker, built from settings.table_name if omitted
        """
        self.connection = connection
        self.settings = settings
        self.registry = registry or MigrationRegistry(settings.migrations_dir)
        self.tracker = tracker or MigrationTracker(connection.database, settings.table_name)
        self.executor = MigrationExecutor(connection, self.tracker, settings)

    def _warn_on_drift(self, migrations: List[MigrationFile], records: Dict[str, MigrationRecord]) -> None:
        for migration in migrations:
            record = records.get(migration.version)
            if record and record.status == MigrationStatus.APPLIED and record.checksum_up \
                    and record.checksum_up != migration.checksum_up:
                logger.warning(
                    f"Migration {migration.version} changed on disk after it was applied "
                    f"(recorded {record.checksum_up[:12]}, file {migration.checksum_up[:12]})"
                )

    async def _locked(self, dry_run: bool, work):
        if dry_run or not self.settings.use_lock:
            return await work()

        async with self.connection.session():
            await self.tracker.acquire_lock()
            try:
                return await work()
            finally:
                await self.tracker.release_lock()

    async def up(self, dry_run: bool = False, force: bool = False, target: Optional[str] = None) -> RunReport:
        """
        Apply every pending migration in ascending version order.

        Args:
            dry_run: Report the SQL without touching the database
            force: Keep going after a failure
            target: Stop after this version

        Raises:
            MigrationNotFoundError: If target is not a discovered version
        """
        all_migrations = self.registry.discover_migrations()
        if target is not None and target not in {m.version for m in all_migrations}:
            raise MigrationNotFoundError(f"Target migration {target} not found")

        async def work() -> RunReport:
            if not dry_run:
                await self.tracker.create_tracking_table()

            records = await self.tracker.get_records()
            self._warn_on_drift(all_migrations, records)

            pending = [
                m for m in all_migrations
                if m.version not in records or records[m.version].status != MigrationStatus.APPLIED
            ]
            if target is not None:
                pending = [m for m in pending if m.version <= target]

            if not pending:
                logger.info(f"All {len(all_migrations)} migrations are already applied")
                return RunReport(message="No pending migrations")

            logger.info(f"Found {len(pending)} pending migrations out of {len(all_migrations)} total")
            report = RunReport()
            for migration in pending:
                result = await self.executor.apply(migration, dry_run=dry_run, force=force)
                report.results.append(result)
                if not result.success and not force:
                    report.halted = True
                    logger.error(f"Halting after failed migration {migration.version}")
                    break

            report.message = self._summarize(report, "applied", len(pending))
            return report

        return await self._locked(dry_run, work)

    async def down(self, steps: int = 1, dry_run: bool = False, force: bool = False) -> RunReport:
        """
        Roll back the last `steps` applied migrations, most recent first.

        Args:
            steps: Number of migrations to roll back
            dry_run: Report the SQL without touching the database
            force: Keep going after a failure
        """
        if steps < 1:
            raise ValueError("steps must be at least 1")

        async def work() -> RunReport:
            records = await self.tracker.get_last_applied(steps)
            if not records:
                return RunReport(message="No applied migrations to roll back")

            migrations = {m.version: m for m in self.registry.discover_migrations()}
            report = RunReport()
            for record in records:
                migration = migrations.get(record.version)
                if migration is None:
                    logger.error(f"Migration file for {record.version} ({record.filename}) not found")
                    result = ExecutionResult(
                        version=record.version,
                        direction="down",
                        success=False,
                        error=f"Migration file {record.filename} not found",
                        dry_run=dry_run,
                    )
                else:
                    result = await self.executor.rollback(migration, record, dry_run=dry_run)

                report.results.append(result)
                if not result.success and not force:
                    report.halted = True
                    break

            report.message = self._summarize(report, "rolled back", len(records))
            return report

        return await self._locked(dry_run, work)

    async def status(self) -> List[StatusEntry]:
        """
        Report every migration's ledger state. Read-only.
        """
        migrations = self.registry.discover_migrations()
        records = await self.tracker.get_records()

        entries = []
        for migration in migrations:
            record = records.get(migration.version)
            if record is None:
                entries.append(StatusEntry(
                    version=migration.version, filename=migration.filename, status=MigrationStatus.PENDING
                ))
                continue

            entries.append(StatusEntry(
                version=migration.version,
                filename=migration.filename,
                status=record.status,
                applied_at=record.applied_at,
                rolled_back_at=record.rolled_back_at,
                drifted=(
                    record.status == MigrationStatus.APPLIED
                    and bool(record.checksum_up)
                    and record.checksum_up != migration.checksum_up
                ),
                error=record.error or record.metadata.get("rollback_error"),
            ))

        known = {m.version for m in migrations}
        for version, record in records.items():
            if version not in known:
                entries.append(StatusEntry(
                    version=version,
                    filename=record.filename,
                    status=record.status,
                    applied_at=record.applied_at,
                    rolled_back_at=record.rolled_back_at,
                    file_missing=True,
                    error=record.error,
                ))

        entries.sort(key=lambda e: e.version)
        return entries

    @staticmethod
    def _summarize(report: RunReport, verb: str, planned: int) -> str:
        if report.results and all(r.dry_run for r in report.results):
            return f"Dry run: {len(report.succeeded)}/{planned} migrations would be {verb}"
        summary = f"{len(report.succeeded)}/{planned} migrations {verb}"
        if report.failed:
            summary += f", {len(report.failed)} failed"
        if report.halted:
            summary += " (halted)"
        return summary
