"""
Failure handling tests.

Validates the fallback chain and the store error taxonomy.
"""

import logging
import pytest
from unittest.mock import AsyncMock
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, ProgrammingError
from finance_backend.app.core.exceptions import (
    StoreErrorKind, StoreUnavailableError, classify_store_error, raise_if_unavailable,
)
from finance_backend.app.core.reliability import AllStrategiesFailedError, FallbackChain


def schema_error(message="no such table: account_ledger_view"):
    return OperationalError("SELECT 1", {}, Exception(message))


def connection_error():
    return OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))


@pytest.mark.parametrize("error,kind", [
    (schema_error(), StoreErrorKind.SCHEMA_MISMATCH),
    (ProgrammingError("SELECT f()", {}, Exception("function update_account_balance does not exist")),
     StoreErrorKind.SCHEMA_MISMATCH),
    (IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")), StoreErrorKind.SCHEMA_MISMATCH),
    (connection_error(), StoreErrorKind.UNAVAILABLE),
    (OperationalError("SELECT 1", {}, Exception("FATAL: password authentication failed for user")),
     StoreErrorKind.UNAVAILABLE),
    (DBAPIError("SELECT 1", {}, Exception("terminated"), connection_invalidated=True), StoreErrorKind.UNAVAILABLE),
    (ConnectionResetError(), StoreErrorKind.UNAVAILABLE),
    (ValueError("not a store error"), StoreErrorKind.OTHER),
])
def test_classify_store_error(error, kind):
    assert classify_store_error(error) == kind


def test_raise_if_unavailable_only_for_connection_failures():
    raise_if_unavailable(schema_error())

    with pytest.raises(StoreUnavailableError) as excinfo:
        raise_if_unavailable(connection_error())
    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_first_strategy_serves():
    second = AsyncMock(return_value="fallback")
    chain = FallbackChain("test.chain")

    result = await chain.run([
        ("preferred", AsyncMock(return_value="primary")),
        ("fallback", second),
    ])

    assert result.value == "primary"
    assert result.strategy == "preferred"
    assert not result.degraded
    second.assert_not_called()


@pytest.mark.asyncio
async def test_falls_back_on_schema_mismatch_and_logs(caplog):
    chain = FallbackChain("test.chain")

    with caplog.at_level(logging.WARNING):
        result = await chain.run([
            ("stored_procedure", AsyncMock(side_effect=schema_error("no such function"))),
            ("direct_update", AsyncMock(return_value=42)),
        ])

    assert result.value == 42
    assert result.strategy == "direct_update"
    assert result.degraded
    assert result.attempts[0][0] == "stored_procedure"
    assert "served by fallback strategy 'direct_update'" in caplog.text


@pytest.mark.asyncio
async def test_store_unavailable_stops_the_chain():
    never = AsyncMock(return_value="unreachable")
    chain = FallbackChain("test.chain")

    with pytest.raises(StoreUnavailableError):
        await chain.run([
            ("first", AsyncMock(side_effect=connection_error())),
            ("second", never),
        ])

    never.assert_not_called()


@pytest.mark.asyncio
async def test_all_strategies_failed_reports_every_error():
    chain = FallbackChain("test.chain")

    with pytest.raises(AllStrategiesFailedError) as excinfo:
        await chain.run([
            ("a", AsyncMock(side_effect=schema_error("missing a"))),
            ("b", AsyncMock(side_effect=schema_error("missing b"))),
        ])

    assert [name for name, _ in excinfo.value.errors] == ["a", "b"]
    assert "missing b" in excinfo.value.last_error


@pytest.mark.asyncio
async def test_non_store_errors_propagate():
    chain = FallbackChain("test.chain")

    with pytest.raises(ValueError):
        await chain.run([("broken", AsyncMock(side_effect=ValueError("bug")))])


@pytest.mark.asyncio
async def test_failed_strategy_only_undoes_its_savepoint(db_session, account):
    account.description = "pending edit"

    async def missing_procedure():
        await db_session.execute(text("SELECT update_account_balance('acc-main', 1)"))

    async def read_opening_balance():
        return account.opening_balance

    result = await FallbackChain("test.chain", session=db_session).run([
        ("stored_procedure", missing_procedure),
        ("in_memory", read_opening_balance),
    ])

    assert result.strategy == "in_memory"
    assert result.value == 100
    # Objects loaded before the failed savepoint are not expired
    assert account.name == "Main Account"
    assert account.description == "pending edit"
