"""
Reconciliation session tests.

Covers cleared-flag toggling across the three status stores, read priority,
batch isolation, book balance upkeep, adjustments and session completion.
"""

import pytest
from datetime import timedelta
from sqlalchemy import func, select, update
from finance_backend.app.core.exceptions import ReconciliationStateError, ResourceNotFoundError
from finance_backend.app.models.ledger_entry import AccountTransaction, AccountTxEntry, ledger_entry_id
from finance_backend.app.models.reconciliation import ReconciliationItem, TransactionReconciliation
from finance_backend.app.schemas.reconciliation import ReconciliationAdjustmentCreate
from finance_backend.app.schemas.source_records import ExpenditureCreate, IncomeCreate
from finance_backend.app.services.reconciliation import ReconciliationSessionManager


async def post_income(records, account, day, amount):
    outcome = await records.create_income(IncomeCreate(date=day, amount=amount, account_id=account.id))
    return ledger_entry_id("income_entry", outcome["record"].id)


@pytest.fixture
def manager(db_session):
    return ReconciliationSessionManager(db_session)


@pytest.fixture
async def session(manager, account, today):
    return await manager.create_session(account.id, today - timedelta(days=14), today, bank_balance=100.0)


def flags(transactions):
    return {t["id"]: t["is_reconciled"] for t in transactions}


@pytest.mark.asyncio
async def test_toggle_then_revert_one(records, manager, session, account, today):
    t1 = await post_income(records, account, today, 10)
    t2 = await post_income(records, account, today - timedelta(days=1), 20)
    t3 = await post_income(records, account, today - timedelta(days=2), 30)

    result = await manager.set_reconciled([t1, t2], session.id, True)
    assert result.success

    listed = await manager.list_transactions(account.id, session.start_date, session.end_date, session.id)
    assert flags(listed) == {t1: True, t2: True, t3: False}

    await manager.set_reconciled([t1], session.id, False)

    listed = await manager.list_transactions(account.id, session.start_date, session.end_date, session.id)
    assert flags(listed) == {t1: False, t2: True, t3: False}


@pytest.mark.asyncio
async def test_repeated_toggles_keep_one_status_record(records, db_session, manager, session, account, today):
    t1 = await post_income(records, account, today, 10)

    for reconciled in (True, True, False, True):
        await manager.set_single_reconciled(t1, session.id, reconciled)

    links = await db_session.scalar(
        select(func.count()).select_from(TransactionReconciliation)
        .where(TransactionReconciliation.transaction_id == t1)
    )
    items = await db_session.scalar(
        select(func.count()).select_from(ReconciliationItem)
        .where(ReconciliationItem.transaction_id == t1)
    )
    assert links == 1
    assert items == 1

    statuses, store = await manager.resolve_status(session.id, [t1])
    assert statuses == {t1: True}
    assert store == "transaction_reconciliations"


@pytest.mark.asyncio
async def test_unknown_transaction_does_not_block_the_batch(records, manager, session, account, today):
    ids = [await post_income(records, account, today, amount) for amount in (1, 2, 3, 4)]

    result = await manager.set_reconciled(ids + ["missing-id"], session.id, True)

    assert not result.success
    assert result.failed == [{"transaction_id": "missing-id", "error": "Transaction not found"}]
    assert result.message == "4 of 5 transaction(s) marked as reconciled"
    assert all(r.success for r in result.results if r.transaction_id != "missing-id")

    listed = await manager.list_transactions(account.id, session.start_date, session.end_date, session.id)
    assert all(t["is_reconciled"] for t in listed)


@pytest.mark.asyncio
async def test_duplicate_ids_are_written_once(records, manager, session, account, today):
    t1 = await post_income(records, account, today, 10)

    result = await manager.set_reconciled([t1, t1, t1], session.id, True)

    assert [r.transaction_id for r in result.results] == [t1]


@pytest.mark.asyncio
async def test_legacy_only_entry_uses_remaining_stores(db_session, manager, session, account, today):
    db_session.add(AccountTransaction(
        id="legacy-1", account_id=account.id, date=today, amount=15.0,
        transaction_type="income", reference_id="inc-old", reference_type="income_entry",
    ))
    await db_session.commit()

    result = await manager.set_single_reconciled("legacy-1", session.id, True)

    assert result.success
    assert result.results[0].stores == ["transaction_reconciliations", "reconciliation_items"]


@pytest.mark.asyncio
async def test_status_store_priority(records, db_session, manager, session, account, today):
    t1 = await post_income(records, account, today, 10)

    statuses, store = await manager.resolve_status(session.id, [t1])
    assert (statuses, store) == ({}, "default")

    db_session.add(ReconciliationItem(reconciliation_id=session.id, transaction_id=t1, is_cleared=True))
    await db_session.commit()
    assert await manager.resolve_status(session.id, [t1]) == ({t1: True}, "reconciliation_items")

    await db_session.execute(
        update(AccountTxEntry).where(AccountTxEntry.id == t1)
        .values(is_reconciled=False, reconciliation_id=session.id)
    )
    await db_session.commit()
    assert await manager.resolve_status(session.id, [t1]) == ({t1: False}, "account_tx_table")

    db_session.add(TransactionReconciliation(transaction_id=t1, reconciliation_id=session.id, is_reconciled=True))
    await db_session.commit()
    assert await manager.resolve_status(session.id, [t1]) == ({t1: True}, "transaction_reconciliations")


@pytest.mark.asyncio
async def test_status_is_scoped_to_the_session(records, manager, session, account, today):
    t1 = await post_income(records, account, today, 10)
    other = await manager.create_session(account.id, today - timedelta(days=14), today, bank_balance=110.0)

    await manager.set_single_reconciled(t1, session.id, True)

    listed = await manager.list_transactions(account.id, other.start_date, other.end_date, other.id)
    assert flags(listed)[t1] is False


@pytest.mark.asyncio
async def test_attached_entries_outside_the_range_are_listed(records, manager, session, account, today):
    old = await post_income(records, account, today - timedelta(days=60), 5)
    await manager.set_single_reconciled(old, session.id, True)

    listed = await manager.list_transactions(account.id, session.start_date, session.end_date, session.id)

    assert flags(listed) == {old: True}
    assert listed[0]["reconciliation_id"] == session.id


@pytest.mark.asyncio
async def test_listing_without_session_is_all_unreconciled(records, manager, account, today):
    t1 = await post_income(records, account, today, 10)

    listed = await manager.list_transactions(account.id)

    assert flags(listed) == {t1: False}
    assert listed[0]["reconciliation_id"] is None


@pytest.mark.asyncio
async def test_create_session_computes_book_balance(records, manager, account, today):
    await post_income(records, account, today - timedelta(days=3), 50)
    await post_income(records, account, today + timedelta(days=3), 999)

    created = await manager.create_session(account.id, today - timedelta(days=7), today, bank_balance=175.5)

    assert created.book_balance == 150
    assert created.difference == 25.5
    assert created.status.value == "in_progress"


@pytest.mark.asyncio
async def test_create_session_rejects_bad_input(manager, account, today):
    with pytest.raises(ReconciliationStateError):
        await manager.create_session(account.id, today, today - timedelta(days=1), bank_balance=0)

    with pytest.raises(ResourceNotFoundError):
        await manager.create_session("no-such-account", today, today, bank_balance=0)


@pytest.mark.asyncio
async def test_unknown_session(manager):
    with pytest.raises(ResourceNotFoundError):
        await manager.set_reconciled(["anything"], "no-such-session", True)

    with pytest.raises(ResourceNotFoundError):
        await manager.session_summary("no-such-session")


@pytest.mark.asyncio
async def test_complete_requires_cleared_balance(records, manager, account, today):
    income = await post_income(records, account, today - timedelta(days=2), 50)
    await records.create_expenditure(ExpenditureCreate(date=today, amount=30, account_id=account.id))
    statement = await manager.create_session(account.id, today - timedelta(days=7), today, bank_balance=150.0)

    summary = await manager.session_summary(statement.id)
    assert summary["opening_balance"] == 100
    assert summary["book_balance"] == 120
    assert summary["cleared_count"] == 0
    assert summary["uncleared_count"] == 2
    assert summary["unreconciled_difference"] == 50

    with pytest.raises(ReconciliationStateError):
        await manager.complete_session(statement.id)

    await manager.set_single_reconciled(income, statement.id, True)
    completed = await manager.complete_session(statement.id)

    assert completed["status"] == "completed"
    assert completed["cleared_balance"] == 150
    assert completed["unreconciled_difference"] == 0

    with pytest.raises(ReconciliationStateError):
        await manager.complete_session(statement.id)


@pytest.mark.asyncio
async def test_entry_of_another_account_is_refused(records, db_session, manager, session, second_account, today):
    other = await manager.create_session(second_account.id, today - timedelta(days=14), today, bank_balance=25.0)
    foreign = await post_income(records, second_account, today, 25)
    await manager.set_single_reconciled(foreign, other.id, True)

    result = await manager.set_single_reconciled(foreign, session.id, True)

    assert not result.success
    assert result.failed == [{"transaction_id": foreign, "error": "Transaction belongs to another account"}]
    assert await manager.resolve_status(other.id, [foreign]) == ({foreign: True}, "transaction_reconciliations")
    assert await db_session.scalar(
        select(AccountTxEntry.reconciliation_id).where(AccountTxEntry.id == foreign)
    ) == other.id

    summary = await manager.session_summary(session.id)
    assert summary["cleared_count"] == 0


@pytest.mark.asyncio
async def test_book_balance_follows_later_writes(records, manager, account, today):
    statement = await manager.create_session(account.id, today - timedelta(days=14), today, bank_balance=150.0)
    assert (statement.book_balance, statement.difference) == (100, 50)

    outcome = await records.create_income(IncomeCreate(date=today - timedelta(days=2), amount=50, account_id=account.id))

    refreshed = await manager.get_session(statement.id)
    assert refreshed.book_balance == 150
    assert refreshed.difference == 0

    await records.delete_income(outcome["record"].id)

    summary = await manager.session_summary(statement.id)
    assert summary["book_balance"] == 100
    assert summary["difference"] == 50


@pytest.mark.asyncio
async def test_entries_after_the_period_leave_the_book_balance(records, manager, session, account, today):
    await post_income(records, account, today + timedelta(days=3), 40)

    refreshed = await manager.get_session(session.id)
    assert refreshed.book_balance == 100
    assert refreshed.difference == 0


@pytest.mark.asyncio
async def test_completed_session_is_frozen(records, manager, session, account, today):
    await manager.complete_session(session.id)

    await post_income(records, account, today - timedelta(days=1), 70)

    summary = await manager.session_summary(session.id)
    assert summary["status"] == "completed"
    assert summary["book_balance"] == 100
    assert summary["difference"] == 0


@pytest.mark.asyncio
async def test_adjustment_balances_the_session(records, manager, account, today):
    statement = await manager.create_session(account.id, today - timedelta(days=14), today, bank_balance=130.0)

    outcome = await records.create_reconciliation_adjustment(statement.id, ReconciliationAdjustmentCreate(
        adjustment_type="income", amount=30, description="Bank interest",
    ))

    entry = outcome["record"]
    assert entry.is_reconciliation_adjustment is True
    assert entry.reconciliation_id == statement.id
    assert entry.payment_method == "reconciliation"
    assert entry.description == "[RECONCILIATION] Bank interest"
    assert entry.date == today
    assert outcome["balances"][0]["balance"] == 130
    assert outcome["reconciliation"].book_balance == 130
    assert outcome["reconciliation"].difference == 0

    summary = await manager.session_summary(statement.id)
    assert summary["cleared_count"] == 1
    assert summary["unreconciled_difference"] == 0

    completed = await manager.complete_session(statement.id)
    assert completed["status"] == "completed"


@pytest.mark.asyncio
async def test_expenditure_adjustment_can_be_deleted(records, manager, account, today):
    statement = await manager.create_session(account.id, today - timedelta(days=14), today, bank_balance=80.0)
    outcome = await records.create_reconciliation_adjustment(statement.id, ReconciliationAdjustmentCreate(
        adjustment_type="expenditure", amount=20, description="Bank charges",
    ))
    assert outcome["reconciliation"].book_balance == 80

    await records.delete_expenditure(outcome["record"].id)

    summary = await manager.session_summary(statement.id)
    assert summary["book_balance"] == 100
    assert summary["difference"] == -20
    assert summary["cleared_count"] == 0


@pytest.mark.asyncio
async def test_completed_session_cannot_be_adjusted(records, manager, session):
    await manager.complete_session(session.id)

    with pytest.raises(ReconciliationStateError):
        await records.create_reconciliation_adjustment(session.id, ReconciliationAdjustmentCreate(
            adjustment_type="income", amount=5, description="Late interest",
        ))
