"""
Migration Settings

Loads runner configuration from the environment (.env / .env.local).
"""
import os
import re
import logging
from dataclasses import dataclass, replace
from typing import Optional
from dotenv import load_dotenv

logger = logging.getLogger("boardops.migrations.config")

EXECUTION_MODES = ("batch", "statements")

IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$')

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(name: str, value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _parse_timeout(value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() == "":
        return None
    try:
        timeout = int(value)
    except ValueError:
        raise ValueError(f"MIGRATION_STATEMENT_TIMEOUT_MS must be an integer, got {value!r}")
    if timeout <= 0:
        raise ValueError("MIGRATION_STATEMENT_TIMEOUT_MS must be positive")
    return timeout


@dataclass(frozen=True)
class MigrationSettings:
    """
    Runner configuration.

    Attributes:
        database_url: Postgres connection URL
        migrations_dir: Directory holding the .sql migration files
        table_name: Ledger table name (optionally schema-qualified)
        execution_mode: "batch" runs each body as one script, "statements" runs it statement by statement
        transactional: Wrap each body in a transaction
        statement_timeout_ms: Optional statement_timeout applied while a body runs
        use_lock: Take the advisory lock for up/down runs
        log_level: Root log level name (DEBUG, INFO, WARNING, ...)
    """
    database_url: Optional[str] = None
    migrations_dir: str = "database/migrations"
    table_name: str = "migration_ledger"
    execution_mode: str = "batch"
    transactional: bool = True
    statement_timeout_ms: Optional[int] = None
    use_lock: bool = True
    log_level: str = "INFO"

    def __post_init__(self):
        if self.execution_mode not in EXECUTION_MODES:
            raise ValueError(
                f"Execution mode must be one of {', '.join(EXECUTION_MODES)}, got {self.execution_mode!r}"
            )
        if not IDENTIFIER_PATTERN.match(self.table_name):
            raise ValueError(f"Invalid ledger table name: {self.table_name!r}")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Unknown LOG_LEVEL: {self.log_level!r}")

    @classmethod
    def from_env(cls, load_files: bool = True) -> "MigrationSettings":
        """
        Build settings from environment variables.

        Args:
            load_files: Load .env and .env.local from the working directory first
        """
        if load_files:
            load_dotenv(".env")
            load_dotenv(".env.local")

        settings = cls(
            database_url=os.getenv("DATABASE_URL"),
            migrations_dir=os.getenv("MIGRATIONS_DIR") or cls.migrations_dir,
            table_name=os.getenv("MIGRATIONS_TABLE") or cls.table_name,
            execution_mode=(os.getenv("MIGRATION_EXECUTION_MODE") or cls.execution_mode).strip().lower(),
            transactional=_parse_bool("MIGRATION_TRANSACTIONAL", os.getenv("MIGRATION_TRANSACTIONAL"), True),
            statement_timeout_ms=_parse_timeout(os.getenv("MIGRATION_STATEMENT_TIMEOUT_MS")),
            use_lock=_parse_bool("MIGRATION_USE_LOCK", os.getenv("MIGRATION_USE_LOCK"), True),
            log_level=(os.getenv("LOG_LEVEL") or cls.log_level).strip().upper(),
        )
        logger.debug(
            f"Loaded settings: dir={settings.migrations_dir} table={settings.table_name} "
            f"mode={settings.execution_mode} transactional={settings.transactional}"
        )
        return settings

    def with_overrides(self, **overrides) -> "MigrationSettings":
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values)
