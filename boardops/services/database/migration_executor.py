"""
Migration Executor

Applies or rolls back exactly one migration and records the outcome.
"""
import time
import logging
from boardops.core.migrations.migration_config import MigrationSettings
from boardops.core.migrations.migration_models import ExecutionResult, MigrationFile, MigrationRecord
from boardops.core.migrations.migration_parser import split_statements
from boardops.core.migrations.migration_tracker import MigrationTracker
from boardops.services.database.connection_manager import ConnectionManager

logger = logging.getLogger("boardops.database.executor")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class MigrationExecutor:
    """
    Runs migration bodies against the database.
    """

    def __init__(self, connection: ConnectionManager, tracker: MigrationTracker, settings: MigrationSettings):
        self.connection = connection
        self.tracker = tracker
        self.settings = settings

    async def _execute_body(self, migration: MigrationFile, sql: str) -> None:
        if self.settings.execution_mode == "statements":
            statements = split_statements(sql)
            logger.debug(f"Migration {migration.version} split into {len(statements)} statements")
            if not statements:
                return
            await self.connection.execute_statements(
                statements,
                transactional=self.settings.transactional,
                statement_timeout_ms=self.settings.statement_timeout_ms,
            )
            return

        await self.connection.execute_script(
            sql,
            transactional=self.settings.transactional,
            statement_timeout_ms=self.settings.statement_timeout_ms,
        )

    async def apply(self, migration: MigrationFile, dry_run: bool = False, force: bool = False) -> ExecutionResult:
        """
        Apply a migration's UP body.

        Args:
            migration: Migration to apply
            dry_run: Return the SQL without touching the database
            force: Take over a row left in running state by an earlier run
        """
        if dry_run:
            logger.info(f"[dry-run] Would apply {migration.version}")
            return ExecutionResult(
                version=migration.version, direction="up", success=True, dry_run=True, sql=migration.up_sql
            )

        try:
            claimed = await self.tracker.claim(migration, force=force)
        except Exception as e:
            logger.error(f"Could not claim migration {migration.version}: {e}")
            return ExecutionResult(
                version=migration.version, direction="up", success=False, error=f"Could not claim ledger row: {e}"
            )

        if not claimed:
            return ExecutionResult(
                version=migration.version,
                direction="up",
                success=False,
                error="Migration is marked running by another runner (use --force to take it over)",
            )

        logger.info(f"▶️ Applying migration {migration.version}")
        started = time.monotonic()
        try:
            await self._execute_body(migration, migration.up_sql)
        except Exception as e:
            elapsed = _elapsed_ms(started)
            error_msg = str(e)
            logger.error(f"Migration {migration.version} failed after {elapsed} ms: {error_msg}")
            await self.tracker.mark_failed(migration, error_msg, elapsed)
            return ExecutionResult(
                version=migration.version, direction="up", success=False, elapsed_ms=elapsed, error=error_msg
            )

        elapsed = _elapsed_ms(started)
        await self.tracker.mark_applied(migration, elapsed)
        logger.info(f"✅ Migration {migration.version} applied in {elapsed} ms")
        return ExecutionResult(version=migration.version, direction="up", success=True, elapsed_ms=elapsed)

    async def rollback(self, migration: MigrationFile, record: MigrationRecord, dry_run: bool = False) -> ExecutionResult:
        """
        Roll back an applied migration with its DOWN body, run as one batch.

        A migration without a DOWN section fails without touching the ledger.
        """
        if not migration.has_down:
            logger.warning(f"Migration {migration.version} has no rollback content")
            return ExecutionResult(
                version=migration.version, direction="down", success=False, error="No rollback content", dry_run=dry_run
            )

        if dry_run:
            logger.info(f"[dry-run] Would roll back {migration.version}")
            return ExecutionResult(
                version=migration.version, direction="down", success=True, dry_run=True, sql=migration.down_sql
            )

        logger.info(f"⏪ Rolling back migration {migration.version}")
        started = time.monotonic()
        try:
            await self.connection.execute_script(
                migration.down_sql,
                transactional=self.settings.transactional,
                statement_timeout_ms=self.settings.statement_timeout_ms,
            )
        except Exception as e:
            elapsed = _elapsed_ms(started)
            error_msg = str(e)
            logger.error(f"Rollback of {migration.version} failed after {elapsed} ms: {error_msg}")
            await self.tracker.record_rollback_failure(record, error_msg)
            return ExecutionResult(
                version=migration.version, direction="down", success=False, elapsed_ms=elapsed, error=error_msg
            )

        elapsed = _elapsed_ms(started)
        await self.tracker.mark_rolled_back(migration, record, elapsed)
        logger.info(f"✅ Migration {migration.version} rolled back in {elapsed} ms")
        return ExecutionResult(version=migration.version, direction="down", success=True, elapsed_ms=elapsed)
