"""
Shared fixtures for migration tests.
"""
import copy
import pytest
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import MagicMock
from boardops.core.migrations.migration_config import MigrationSettings
from boardops.core.migrations.migration_models import MigrationFile, MigrationRecord, MigrationStatus
from boardops.core.migrations.migration_tracker import MigrationTracker
from boardops.core.migrations.exceptions import MigrationLockError


class FakeTracker(MigrationTracker):
    """
    In-memory ledger. The mark_* bookkeeping is inherited unchanged; only
    the storage calls are replaced.
    """

    def __init__(self):
        super().__init__(MagicMock(), "migration_ledger")
        self.rows: Dict[str, MigrationRecord] = {}
        self.writes = 0
        self.table_created = False
        self.locked = False
        self.lock_held_elsewhere = False
        self.fail_writes = False

    async def create_tracking_table(self) -> None:
        self.table_created = True

    async def table_exists(self) -> bool:
        return self.table_created

    async def get_records(self) -> Dict[str, MigrationRecord]:
        return {version: copy.deepcopy(record) for version, record in sorted(self.rows.items())}

    async def get_last_applied(self, steps: int) -> List[MigrationRecord]:
        applied = [r for r in self.rows.values() if r.status == MigrationStatus.APPLIED]
        applied.sort(key=lambda r: (r.applied_at, r.version), reverse=True)
        return [copy.deepcopy(r) for r in applied[:steps]]

    async def upsert(self, record: MigrationRecord) -> bool:
        if self.fail_writes:
            return False
        self.rows[record.version] = copy.deepcopy(record)
        self.writes += 1
        return True

    async def claim(self, migration: MigrationFile, force: bool = False) -> bool:
        existing = self.rows.get(migration.version)
        blocked = {MigrationStatus.APPLIED} if force else {MigrationStatus.RUNNING, MigrationStatus.APPLIED}
        if existing and existing.status in blocked:
            return False
        self.rows[migration.version] = MigrationRecord.for_migration(migration, MigrationStatus.RUNNING)
        self.writes += 1
        return True

    async def acquire_lock(self) -> None:
        if self.lock_held_elsewhere:
            raise MigrationLockError("Another migration run holds the lock")
        self.locked = True

    async def release_lock(self) -> None:
        self.locked = False

    def status_of(self, version: str) -> Optional[MigrationStatus]:
        record = self.rows.get(version)
        return record.status if record else None


class FakeConnection:
    """
    Stands in for ConnectionManager; records executed SQL and fails on demand.
    """

    def __init__(self):
        self.database = MagicMock()
        self.scripts: List[str] = []
        self.fail_on: Optional[str] = None
        self.sessions = 0
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    @asynccontextmanager
    async def session(self):
        self.sessions += 1
        yield self

    async def execute_script(self, sql, transactional=True, statement_timeout_ms=None) -> None:
        if self.fail_on and self.fail_on in sql:
            raise RuntimeError(f'syntax error at or near "{self.fail_on}"')
        self.scripts.append(sql)

    async def execute_statements(self, statements, transactional=True, statement_timeout_ms=None) -> None:
        for statement in statements:
            await self.execute_script(statement, transactional, statement_timeout_ms)


def write_migration(directory: Path, filename: str, up: str, down: Optional[str] = None, name: str = None) -> Path:
    lines = []
    if name:
        lines.append(f"-- Migration: {name}")
    lines.append("-- UP MIGRATION")
    lines.append(up)
    if down is not None:
        lines.append("-- DOWN MIGRATION")
        lines.append(down)
    lines.append("-- MIGRATION COMPLETE")
    path = directory / filename
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def migrations_dir(tmp_path):
    directory = tmp_path / "migrations"
    directory.mkdir()
    return directory


@pytest.fixture
def settings(migrations_dir):
    return MigrationSettings(database_url="postgresql://localhost/boardmates_test", migrations_dir=str(migrations_dir))


@pytest.fixture
def tracker():
    return FakeTracker()


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def make_migration(migrations_dir):
    def _make(filename: str, up: str, down: Optional[str] = None, name: str = None) -> Path:
        return write_migration(migrations_dir, filename, up, down, name)
    return _make
