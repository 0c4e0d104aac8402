"""
Migration Tracker

Tracks migration outcomes in the ledger table.
"""
import os
import json
import socket
import logging
from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from databases import Database
from boardops.core.migrations.migration_models import MigrationFile, MigrationRecord, MigrationStatus
from boardops.core.migrations.migration_config import IDENTIFIER_PATTERN
from boardops.core.migrations.exceptions import MigrationLockError

logger = logging.getLogger("boardops.migrations.tracker")

RECORD_COLUMNS = (
    "version, name, filename, checksum_up, checksum_down, status, "
    "applied_at, rolled_back_at, execution_time_ms, metadata"
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _operator() -> Dict[str, Any]:
    return {"host": socket.gethostname(), "pid": os.getpid()}


class MigrationTracker:
    """
    Reads and writes the migration ledger.
    """

    def __init__(self, database: Database, table_name: str = "migration_ledger"):
        """
        Initialize migration tracker.

        Args:
            database: Database instance
            table_name: Ledger table, optionally schema-qualified
        """
        if not IDENTIFIER_PATTERN.match(table_name):
            raise ValueError(f"Invalid ledger table name: {table_name!r}")
        self.database = database
        self.table_name = table_name
        self.lock_key = f"boardops:{table_name}"

    async def create_tracking_table(self) -> None:
        """
        Create the ledger table if it doesn't exist.
        """
        index_name = f"idx_{self.table_name.replace('.', '_')}_status"
        statements = [
            f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                version TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                filename TEXT NOT NULL,
                checksum_up TEXT,
                checksum_down TEXT,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'running', 'applied', 'failed', 'rolled_back')),
                applied_at TIMESTAMPTZ,
                rolled_back_at TIMESTAMPTZ,
                execution_time_ms INTEGER,
                metadata JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            )
            """,
            f"CREATE INDEX IF NOT EXISTS {index_name} ON {self.table_name}(status)",
        ]

        try:
            for stmt in statements:
                await self.database.execute(stmt)
            logger.debug(f"Ledger table {self.table_name} created/verified")
        except Exception as e:
            logger.error(f"Failed to create ledger table {self.table_name}: {e}")
            raise

    async def table_exists(self) -> bool:
        exists = await self.database.fetch_val(
            "SELECT to_regclass(:table_name) IS NOT NULL",
            {"table_name": self.table_name},
        )
        return bool(exists)

    def _row_to_record(self, row) -> MigrationRecord:
        metadata = row["metadata"]
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        return MigrationRecord(
            version=row["version"],
            name=row["name"],
            filename=row["filename"],
            checksum_up=row["checksum_up"] or "",
            checksum_down=row["checksum_down"] or "",
            status=MigrationStatus(row["status"]),
            applied_at=row["applied_at"],
            rolled_back_at=row["rolled_back_at"],
            execution_time_ms=row["execution_time_ms"],
            metadata=metadata or {},
        )

    async def get_records(self) -> Dict[str, MigrationRecord]:
        """
        Get every ledger row keyed by version.

        Returns:
            Empty dict if the ledger table does not exist yet
        """
        if not await self.table_exists():
            logger.debug(f"Ledger table {self.table_name} does not exist yet")
            return {}

        rows = await self.database.fetch_all(
            f"SELECT {RECORD_COLUMNS} FROM {self.table_name} ORDER BY version"
        )
        return {row["version"]: self._row_to_record(row) for row in rows}

    async def get_applied_versions(self) -> Dict[str, Optional[datetime]]:
        """
        Get applied versions mapped to their applied_at timestamp.
        """
        records = await self.get_records()
        return {
            version: record.applied_at
            for version, record in records.items()
            if record.status == MigrationStatus.APPLIED
        }

    async def get_last_applied(self, steps: int) -> List[MigrationRecord]:
        """
        Get the most recently applied rows, most recent first.

        Args:
            steps: Maximum number of rows
        """
        if not await self.table_exists():
            return []

        rows = await self.database.fetch_all(
            f"""
            SELECT {RECORD_COLUMNS} FROM {self.table_name}
            WHERE status = 'applied'
            ORDER BY applied_at DESC NULLS LAST, version DESC
            LIMIT :steps
            """,
            {"steps": steps},
        )
        return [self._row_to_record(row) for row in rows]

    async def upsert(self, record: MigrationRecord) -> bool:
        """
        Insert or replace the ledger row for record.version.

        Write failures are logged and reported through the return value.

        Returns:
            True if the row was written
        """
        query = f"""
        INSERT INTO {self.table_name} ({RECORD_COLUMNS}, updated_at)
        VALUES (:version, :name, :filename, :checksum_up, :checksum_down, :status,
                :applied_at, :rolled_back_at, :execution_time_ms, CAST(:metadata AS JSONB), NOW())
        ON CONFLICT (version)
        DO UPDATE SET
            name = EXCLUDED.name,
            filename = EXCLUDED.filename,
            checksum_up = EXCLUDED.checksum_up,
            checksum_down = EXCLUDED.checksum_down,
            status = EXCLUDED.status,
            applied_at = EXCLUDED.applied_at,
            rolled_back_at = EXCLUDED.rolled_back_at,
            execution_time_ms = EXCLUDED.execution_time_ms,
            metadata = EXCLUDED.metadata,
            updated_at = NOW()
        """

        try:
            await self.database.execute(query, {
                "version": record.version,
                "name": record.name,
                "filename": record.filename,
                "checksum_up": record.checksum_up,
                "checksum_down": record.checksum_down,
                "status": record.status.value,
                "applied_at": record.applied_at,
                "rolled_back_at": record.rolled_back_at,
                "execution_time_ms": record.execution_time_ms,
                "metadata": json.dumps(record.metadata, default=str),
            })
            return True
        except Exception as e:
            logger.error(f"Failed to write ledger row for {record.version} ({record.status.value}): {e}")
            return False

    async def claim(self, migration: MigrationFile, force: bool = False) -> bool:
        """
        Mark a migration as running, unless another runner already holds it.

        The row is only taken when it is absent or not running/applied.
        With force a stale running row is taken over as well.

        Returns:
            True if this runner now owns the migration
        """
        blocked = "('applied')" if force else "('running', 'applied')"
        query = f"""
        INSERT INTO {self.table_name} AS ledger
            (version, name, filename, checksum_up, checksum_down, status, metadata, updated_at)
        VALUES (:version, :name, :filename, :checksum_up, :checksum_down, 'running', CAST(:metadata AS JSONB), NOW())
        ON CONFLICT (version)
        DO UPDATE SET
            name = EXCLUDED.name,
            filename = EXCLUDED.filename,
            checksum_up = EXCLUDED.checksum_up,
            checksum_down = EXCLUDED.checksum_down,
            status = 'running',
            metadata = EXCLUDED.metadata,
            updated_at = NOW()
        WHERE ledger.status NOT IN {blocked}
        RETURNING version
        """

        claimed = await self.database.fetch_val(query, {
            "version": migration.version,
            "name": migration.name,
            "filename": migration.filename,
            "checksum_up": migration.checksum_up,
            "checksum_down": migration.checksum_down,
            "metadata": json.dumps({"started_at": _now().isoformat(), **_operator()}),
        })

        if claimed is None:
            logger.warning(f"Migration {migration.version} is already claimed by another runner")
            return False

        logger.debug(f"Claimed migration {migration.version}")
        return True

    async def mark_applied(self, migration: MigrationFile, elapsed_ms: int) -> bool:
        """
        Record a migration as successfully applied.
        """
        record = MigrationRecord.for_migration(migration, MigrationStatus.APPLIED)
        record.applied_at = _now()
        record.execution_time_ms = elapsed_ms
        record.metadata = {"finished_at": record.applied_at.isoformat(), **_operator()}

        written = await self.upsert(record)
        if written:
            logger.info(f"Marked migration {migration.version} as applied ({elapsed_ms} ms)")
        return written

    async def mark_failed(self, migration: MigrationFile, error_message: str, elapsed_ms: Optional[int] = None) -> bool:
        """
        Record a migration as failed.

        Args:
            migration: MigrationFile
            error_message: Error message describing the failure
        """
        record = MigrationRecord.for_migration(migration, MigrationStatus.FAILED)
        record.execution_time_ms = elapsed_ms
        record.metadata = {"error": error_message, "failed_at": _now().isoformat(), **_operator()}

        written = await self.upsert(record)
        if written:
            logger.error(f"Marked migration {migration.version} as failed: {error_message}")
        return written

    async def mark_rolled_back(self, migration: MigrationFile, previous: MigrationRecord, elapsed_ms: int) -> bool:
        """
        Record a migration as rolled back, keeping its original applied_at.
        """
        record = MigrationRecord.for_migration(migration, MigrationStatus.ROLLED_BACK)
        record.applied_at = previous.applied_at
        record.rolled_back_at = _now()
        record.execution_time_ms = elapsed_ms
        record.metadata = {"rolled_back_at": record.rolled_back_at.isoformat(), **_operator()}

        written = await self.upsert(record)
        if written:
            logger.info(f"Marked migration {migration.version} as rolled back ({elapsed_ms} ms)")
        return written

    async def record_rollback_failure(self, previous: MigrationRecord, error_message: str) -> bool:
        """
        Store a rollback error on an applied row without changing its status.
        """
        record = MigrationRecord(
            version=previous.version,
            name=previous.name,
            filename=previous.filename,
            checksum_up=previous.checksum_up,
            checksum_down=previous.checksum_down,
            status=previous.status,
            applied_at=previous.applied_at,
            rolled_back_at=previous.rolled_back_at,
            execution_time_ms=previous.execution_time_ms,
            metadata={
                **previous.metadata,
                "rollback_error": error_message,
                "rollback_failed_at": _now().isoformat(),
            },
        )
        return await self.upsert(record)

    async def acquire_lock(self) -> None:
        """
        Take the session-level advisory lock for this ledger.

        Raises:
            MigrationLockError: If another session holds it
        """
        acquired = await self.database.fetch_val(
            "SELECT pg_try_advisory_lock(hashtext(:key))", {"key": self.lock_key}
        )
        if not acquired:
            raise MigrationLockError(
                f"Another migration run holds the lock for {self.table_name}; try again once it finishes"
            )
        logger.debug(f"Acquired advisory lock {self.lock_key}")

    async def release_lock(self) -> None:
        try:
            await self.database.fetch_val(
                "SELECT pg_advisory_unlock(hashtext(:key))", {"key": self.lock_key}
            )
            logger.debug(f"Released advisory lock {self.lock_key}")
        except Exception as e:
            logger.warning(f"Failed to release advisory lock {self.lock_key}: {e}")
