"""
Database Connection Manager

Handles the database connection lifecycle and raw script execution.
"""
import logging
from contextlib import asynccontextmanager
from databases import Database
from typing import List, Optional
from boardops.core.migrations.exceptions import StatementExecutionError

logger = logging.getLogger("boardops.database.connection")


class ConnectionManager:
    """
    Manages the database connection for a migration run.
    """

    def __init__(self, database_url: Optional[str]):
        """
        Initialize connection manager.

        Args:
            database_url: Postgres connection URL
        """
        if not database_url:
            raise ValueError("DATABASE_URL must be set either with --database-url or as an environment variable")

        self.database_url = database_url
        self._database: Optional[Database] = None

    @property
    def database(self) -> Database:
        """
        Get the database instance. Creates it if it doesn't exist.
        """
        if self._database is None:
            self._database = Database(self.database_url)
        return self._database

    async def connect(self) -> None:
        """
        Establish database connection.
        """
        if not self.database.is_connected:
            await self.database.connect()
            logger.info("Database connection established")

    async def disconnect(self) -> None:
        """
        Close database connection.
        """
        if self._database and self._database.is_connected:
            await self._database.disconnect()
            logger.info("Database connection closed")

    def is_connected(self) -> bool:
        return self._database is not None and self._database.is_connected

    @asynccontextmanager
    async def session(self):
        """
        Pin one pooled connection to the current task.

        Queries issued through `database` inside the block reuse it, so
        session-level state such as advisory locks stays on one connection.
        """
        async with self.database.connection() as connection:
            yield connection

    async def execute_script(
        self,
        sql: str,
        transactional: bool = True,
        statement_timeout_ms: Optional[int] = None,
    ) -> None:
        """
        Execute a SQL body that may hold several statements.

        asyncpg runs an argument-less execute() over the simple query
        protocol, which accepts multiple statements in one round trip.

        Args:
            sql: SQL text
            transactional: Run the body inside a transaction
            statement_timeout_ms: Optional statement_timeout for the body
        """
        await self.execute_statements([sql], transactional, statement_timeout_ms)

    async def execute_statements(
        self,
        statements: List[str],
        transactional: bool = True,
        statement_timeout_ms: Optional[int] = None,
    ) -> None:
        """
        Execute statements one at a time on a single connection.

        With transactional set they share one transaction, so a failure
        undoes the statements before it.

        Raises:
            StatementExecutionError: Wrapping the driver error, with the failing statement's position
        """
        async with self.database.connection() as connection:
            raw = connection.raw_connection
            if transactional:
                async with connection.transaction():
                    if statement_timeout_ms:
                        await raw.execute(f"SET LOCAL statement_timeout = {int(statement_timeout_ms)}")
                    await self._run_each(raw, statements)
                return

            if statement_timeout_ms:
                await raw.execute(f"SET statement_timeout = {int(statement_timeout_ms)}")
            try:
                await self._run_each(raw, statements)
            finally:
                if statement_timeout_ms:
                    await raw.execute("RESET statement_timeout")

    async def _run_each(self, raw, statements: List[str]) -> None:
        total = len(statements)
        for i, statement in enumerate(statements, 1):
            try:
                await raw.execute(statement)
            except Exception as e:
                if total == 1:
                    raise
                raise StatementExecutionError(i, total, e) from e
            logger.debug(f"  Executed statement {i}/{total}")
