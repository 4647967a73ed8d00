"""
Balance read and recalculation tests.
"""

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError, ProgrammingError
from finance_backend.app.core.config import settings
from finance_backend.app.core.exceptions import ResourceNotFoundError, StoreUnavailableError
from finance_backend.app.models.account import Account
from finance_backend.app.schemas.source_records import ExpenditureCreate, IncomeCreate, TransferCreate
from finance_backend.app.services.balance_service import BalanceService
from finance_backend.app.services.ledger_sync import TransactionLogSynchronizer


def missing_function():
    return ProgrammingError("SELECT update_account_balance()", {}, Exception("function does not exist"))


async def stored_balance(db, account_id):
    await db.commit()
    return await db.scalar(select(Account.balance).where(Account.id == account_id))


@pytest.mark.asyncio
async def test_income_expenditure_and_transfer_flow(records, db_session, balance_cache, account, second_account, today):
    service = BalanceService(db_session, balance_cache)

    await records.create_income(IncomeCreate(date=today, amount=50, account_id=account.id))
    await records.create_expenditure(ExpenditureCreate(date=today, amount=30, account_id=account.id))

    assert (await service.current_balance(account.id))["balance"] == 120
    assert await stored_balance(db_session, account.id) == 120

    await records.create_transfer(TransferCreate(
        date=today, amount=20, source_account_id=account.id, destination_account_id=second_account.id,
    ))

    main = await service.current_balance(account.id)
    savings = await service.current_balance(second_account.id)
    assert main["balance"] == 100
    assert main["cached"] is False
    assert savings["balance"] == 20
    assert await stored_balance(db_session, second_account.id) == 20


@pytest.mark.asyncio
async def test_missing_account_reads_as_zero(db_session, balance_cache):
    service = BalanceService(db_session, balance_cache)

    first = await service.current_balance("no-such-account")
    second = await service.current_balance("no-such-account")

    assert first["balance"] == 0
    assert first["account_found"] is False
    assert second["cached"] is False


@pytest.mark.asyncio
async def test_balance_is_cached_until_invalidated(records, db_session, balance_cache, account, today):
    service = BalanceService(db_session, balance_cache)

    first = await service.current_balance(account.id)
    second = await service.current_balance(account.id)
    assert first["cached"] is False
    assert second["cached"] is True
    assert second["balance"] == first["balance"] == 100

    await records.create_income(IncomeCreate(date=today, amount=25, account_id=account.id))

    fresh = await service.current_balance(account.id)
    assert fresh["cached"] is False
    assert fresh["balance"] == 125


@pytest.mark.asyncio
async def test_unreadable_ledger_is_not_cached(db_session, balance_cache, account):
    for statement in ("DROP VIEW account_ledger_view", "DROP TABLE account_tx_table", "DROP TABLE account_transactions"):
        await db_session.execute(text(statement))
    await db_session.commit()
    service = BalanceService(db_session, balance_cache)

    result = await service.current_balance(account.id)

    assert result["balance"] == 100
    assert result["source"] == "none"
    assert await balance_cache.get(account.id) is None


@pytest.mark.asyncio
async def test_unavailable_store_is_raised(db_session, mocker):
    mocker.patch.object(
        BalanceService, "_get_account",
        side_effect=OperationalError("SELECT", {}, ConnectionRefusedError("connection refused")),
    )

    with pytest.raises(StoreUnavailableError):
        await BalanceService(db_session).current_balance("acc-main")


@pytest.mark.asyncio
async def test_recalculate_falls_back_to_direct_update(db_session, account):
    # SQLite has no stored procedure, so the first strategy always fails here
    result = await BalanceService(db_session).recalculate(account.id)

    assert result["success"] is True
    assert result["balance"] == 100
    assert result["persisted_via"] == "direct_update"
    assert await stored_balance(db_session, account.id) == 100


@pytest.mark.asyncio
async def test_recalculate_uses_stored_procedure_when_present(db_session, account, mocker):
    procedure = mocker.patch.object(BalanceService, "_persist_via_procedure", return_value=None)
    direct = mocker.patch.object(BalanceService, "_persist_direct", return_value=None)

    result = await BalanceService(db_session).recalculate(account.id)

    assert result["persisted_via"] == "stored_procedure"
    procedure.assert_awaited_once_with(account.id, 100)
    direct.assert_not_called()


@pytest.mark.asyncio
async def test_recalculate_reports_failure_when_nothing_persists(db_session, balance_cache, account, mocker):
    mocker.patch.object(BalanceService, "_persist_via_procedure", side_effect=missing_function())
    mocker.patch.object(
        BalanceService, "_persist_direct",
        side_effect=OperationalError("UPDATE accounts", {}, Exception("no such column: balance")),
    )
    await balance_cache.set(account.id, {"balance": 100})

    result = await BalanceService(db_session, balance_cache).recalculate(account.id)

    assert result["success"] is False
    assert result["balance"] == 100
    assert result["message"].startswith("Failed to update account balance")
    assert "no such column" in result["message"]
    assert await balance_cache.get(account.id) == {"balance": 100}


@pytest.mark.asyncio
async def test_recalculate_unknown_account(db_session):
    with pytest.raises(ResourceNotFoundError):
        await BalanceService(db_session).recalculate("no-such-account")


@pytest.mark.asyncio
async def test_recalculate_all_continues_past_failures(db_session, account, second_account, mocker):
    original = BalanceService._persist_direct

    async def flaky(self, account_id, balance):
        if account_id == account.id:
            raise OperationalError("UPDATE accounts", {}, Exception("database table is locked"))
        return await original(self, account_id, balance)

    mocker.patch.object(BalanceService, "_persist_direct", flaky)

    results = await TransactionLogSynchronizer(db_session).recalculate_all_balances()

    by_name = {r["account_name"]: r for r in results}
    assert set(by_name) == {"Main Account", "Savings"}
    assert by_name["Main Account"]["success"] is False
    assert by_name["Savings"]["success"] is True
    assert by_name["Savings"]["persisted_via"] == "direct_update"


@pytest.mark.asyncio
async def test_records_stay_usable_after_procedure_fallback(records, account, second_account, today):
    assert settings.balance_procedure_name == "update_account_balance"

    outcome = await records.create_transfer(TransferCreate(
        date=today, amount=40, source_account_id=account.id, destination_account_id=second_account.id,
    ))

    transfer = outcome["record"]
    assert [b["persisted_via"] for b in outcome["balances"]] == ["direct_update", "direct_update"]
    assert [b["balance"] for b in outcome["balances"]] == [60, 40]
    assert transfer.amount == 40
    assert transfer.created_at is not None
    assert account.name == "Main Account"
    assert second_account.opening_balance == 0
