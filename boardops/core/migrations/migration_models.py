"""
Migration Models

Data models for migration files, ledger rows and run outcomes.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List
from datetime import datetime


class MigrationStatus(Enum):
    """Migration execution status."""
    PENDING = "pending"
    RUNNING = "running"
    APPLIED = "applied"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class MigrationFile:
    """
    A migration file on disk, parsed into its UP and DOWN bodies.
    """
    version: str
    filename: str
    path: str
    name: str
    up_sql: str
    down_sql: str
    checksum_up: str
    checksum_down: str
    description: str = ""

    @property
    def has_down(self) -> bool:
        return bool(self.down_sql.strip())

    def __str__(self) -> str:
        return f"Migration({self.version})"

    def __repr__(self) -> str:
        return self.__str__()


@dataclass
class MigrationRecord:
    """
    A row of the migration ledger.
    """
    version: str
    name: str
    filename: str
    checksum_up: str = ""
    checksum_down: str = ""
    status: MigrationStatus = MigrationStatus.PENDING
    applied_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None
    execution_time_ms: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_migration(cls, migration: MigrationFile, status: MigrationStatus) -> "MigrationRecord":
        return cls(
            version=migration.version,
            name=migration.name,
            filename=migration.filename,
            checksum_up=migration.checksum_up,
            checksum_down=migration.checksum_down,
            status=status,
        )

    @property
    def error(self) -> Optional[str]:
        return self.metadata.get("error")


@dataclass
class ExecutionResult:
    """
    Outcome of applying or rolling back a single migration.
    """
    version: str
    direction: str
    success: bool
    elapsed_ms: int = 0
    error: Optional[str] = None
    dry_run: bool = False
    sql: Optional[str] = None


@dataclass
class RunReport:
    """
    Outcome of an up/down batch.
    """
    results: List[ExecutionResult] = field(default_factory=list)
    halted: bool = False
    message: str = ""

    @property
    def succeeded(self) -> List[ExecutionResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> List[ExecutionResult]:
        return [r for r in self.results if not r.success]

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class StatusEntry:
    """
    One line of the status report.
    """
    version: str
    filename: str
    status: MigrationStatus
    applied_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None
    drifted: bool = False
    file_missing: bool = False
    error: Optional[str] = None
