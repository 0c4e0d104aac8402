"""
Tests for raw script execution through the connection manager.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from boardops.core.migrations.exceptions import StatementExecutionError
from boardops.services.database.connection_manager import ConnectionManager


@pytest.fixture
def raw():
    return MagicMock(execute=AsyncMock())


@pytest.fixture
def manager(raw):
    manager = ConnectionManager("postgresql://localhost/boardmates_test")
    connection = MagicMock()
    connection.raw_connection = raw
    database = MagicMock()
    database.connection.return_value.__aenter__.return_value = connection
    manager._database = database
    manager.pinned = connection
    return manager


def test_requires_database_url():
    with pytest.raises(ValueError):
        ConnectionManager(None)


@pytest.mark.asyncio
async def test_execute_script_in_transaction(manager, raw):
    await manager.execute_script("CREATE TABLE a (id INT); CREATE TABLE b (id INT);", statement_timeout_ms=1500)

    manager.pinned.transaction.assert_called_once()
    executed = [c.args[0] for c in raw.execute.call_args_list]
    assert executed == [
        "SET LOCAL statement_timeout = 1500",
        "CREATE TABLE a (id INT); CREATE TABLE b (id INT);",
    ]


@pytest.mark.asyncio
async def test_execute_script_without_transaction_resets_timeout(manager, raw):
    raw.execute.side_effect = [None, RuntimeError("canceling statement due to statement timeout"), None]

    with pytest.raises(RuntimeError):
        await manager.execute_script("SELECT pg_sleep(10)", transactional=False, statement_timeout_ms=100)

    manager.pinned.transaction.assert_not_called()
    executed = [c.args[0] for c in raw.execute.call_args_list]
    assert executed == ["SET statement_timeout = 100", "SELECT pg_sleep(10)", "RESET statement_timeout"]


@pytest.mark.asyncio
async def test_execute_statements_reports_position(manager, raw):
    raw.execute.side_effect = [None, RuntimeError('column "email" already exists')]

    with pytest.raises(StatementExecutionError) as exc_info:
        await manager.execute_statements(["CREATE TABLE users (id UUID)", "ALTER TABLE users ADD COLUMN email TEXT"])

    assert exc_info.value.position == 2
    assert exc_info.value.total == 2
    assert "Failed to execute statement 2/2" in str(exc_info.value)
