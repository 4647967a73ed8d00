"""
Tests for ledger reads and their fallback order.
"""

import pytest
from datetime import date, timedelta
from sqlalchemy import text
from finance_backend.app.models.ledger_entry import AccountTransaction, AccountTxEntry
from finance_backend.app.services.ledger_reader import LedgerReader, merge_ledgers, newest_first


@pytest.fixture
async def ledger_rows(db_session, account, today):
    """One entry in both tables, one only in the old log, one only in the new table."""
    shared = dict(
        account_id=account.id, date=today, amount=50.0, transaction_type="income",
        reference_id="inc-1", reference_type="income_entry",
    )
    db_session.add_all([
        AccountTxEntry(id="shared-1", **shared),
        AccountTransaction(id="shared-1", **shared),
        AccountTransaction(
            id="legacy-1", account_id=account.id, date=today - timedelta(days=10), amount=-30.0,
            transaction_type="expenditure", reference_id="exp-1", reference_type="expenditure_entry",
        ),
        AccountTxEntry(
            id="new-1", account_id=account.id, date=today - timedelta(days=2), amount=20.0,
            transaction_type="transfer_in", reference_id="tr-1", reference_type="transfer_in",
        ),
    ])
    await db_session.commit()


async def drop(db, *statements):
    for statement in statements:
        await db.execute(text(statement))
    await db.commit()


@pytest.mark.asyncio
async def test_view_serves_union_without_duplicates(db_session, account, ledger_rows):
    result = await LedgerReader(db_session).entries_for_account(account.id)

    assert result.strategy == "union_view"
    assert not result.degraded
    assert [e["id"] for e in result.value] == ["shared-1", "new-1", "legacy-1"]


@pytest.mark.asyncio
async def test_date_range_is_inclusive(db_session, account, today, ledger_rows):
    result = await LedgerReader(db_session).entries_for_account(
        account.id, start_date=today - timedelta(days=2), end_date=today,
    )

    assert {e["id"] for e in result.value} == {"shared-1", "new-1"}


@pytest.mark.asyncio
async def test_missing_view_falls_back_to_merged_tables(db_session, account, ledger_rows):
    await drop(db_session, "DROP VIEW account_ledger_view")

    result = await LedgerReader(db_session).entries_for_account(account.id)

    assert result.strategy == "merged_tables"
    assert result.degraded
    assert [e["id"] for e in result.value] == ["shared-1", "new-1", "legacy-1"]


@pytest.mark.asyncio
async def test_single_table_fallbacks(db_session, account, ledger_rows):
    await drop(db_session, "DROP VIEW account_ledger_view", "DROP TABLE account_tx_table")

    result = await LedgerReader(db_session).entries_for_account(account.id)

    assert result.strategy == "account_transactions"
    assert {e["id"] for e in result.value} == {"shared-1", "legacy-1"}


@pytest.mark.asyncio
async def test_no_readable_source_returns_empty(db_session, account, ledger_rows):
    await drop(
        db_session,
        "DROP VIEW account_ledger_view",
        "DROP TABLE account_tx_table",
        "DROP TABLE account_transactions",
    )

    result = await LedgerReader(db_session).entries_for_account(account.id)

    assert result.value == []
    assert result.strategy == "none"
    assert [name for name, _ in result.attempts] == list(LedgerReader.STRATEGIES)


@pytest.mark.asyncio
async def test_entries_by_ids_skips_unknown(db_session, ledger_rows):
    found = await LedgerReader(db_session).entries_by_ids(["legacy-1", "new-1", "missing"])

    assert set(found) == {"legacy-1", "new-1"}
    assert found["legacy-1"]["amount"] == -30.0


@pytest.mark.asyncio
async def test_entries_by_ids_with_no_ids(db_session):
    assert await LedgerReader(db_session).entries_by_ids([]) == {}


def test_merge_prefers_primary_and_matches_on_reference_key():
    primary = [{"id": "a", "reference_id": "inc-1", "reference_type": "income_entry"}]
    secondary = [
        {"id": "a", "reference_id": "inc-1", "reference_type": "income_entry"},
        {"id": "b", "reference_id": "inc-1", "reference_type": "income_entry"},
        {"id": "c", "reference_id": None, "reference_type": None},
        {"id": "d", "reference_id": None, "reference_type": None},
    ]

    assert [e["id"] for e in merge_ledgers(primary, secondary)] == ["a", "c", "d"]


def test_newest_first_orders_by_date_then_id():
    entries = [
        {"id": "x", "date": date(2024, 1, 1)},
        {"id": "z", "date": date(2024, 2, 1)},
        {"id": "y", "date": date(2024, 2, 1)},
    ]

    assert [e["id"] for e in newest_first(entries)] == ["z", "y", "x"]
