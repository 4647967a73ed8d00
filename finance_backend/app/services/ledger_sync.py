"""
Transaction Log Synchronizer.

Keeps `account_transactions` and `account_tx_table` holding the same ledger
entries, and backfills entries for source records that have none.

Writes go through two strategies: `bulk_insert` (one batch insert) and
`row_by_row` (existence check before each insert, one savepoint per row,
per-row errors collected). Both skip rows whose id or
(reference_id, reference_type) already exists in the target table, so
repeated runs insert nothing. Each target table is committed on its own.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
from sqlalchemy import Table, and_, delete, insert, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from finance_backend.app.core.exceptions import SchemaUnavailableError, raise_if_unavailable
from finance_backend.app.core.reliability import AllStrategiesFailedError, FallbackChain
from finance_backend.app.domain.ledger.balance_calculator import signed_amount
from finance_backend.app.models.account_transfer import AccountTransfer
from finance_backend.app.models.expenditure_entry import ExpenditureEntry
from finance_backend.app.models.finance_enums import ReferenceType, TransactionType
from finance_backend.app.models.income_entry import IncomeEntry
from finance_backend.app.models.ledger_entry import (
    LEDGER_COLUMNS, LEDGER_MODELS, AccountTransaction, AccountTxEntry, ledger_entry_id,
)
from finance_backend.app.services.balance_service import BalanceService
from finance_backend.app.services.cache import BalanceCache
from finance_backend.app.services.ledger_reader import entry_key

logger = logging.getLogger(__name__)

SOURCES = ("income", "expenditure", "transfers")


@dataclass
class TableSyncResult:
    table: str
    inserted: int = 0
    skipped: int = 0
    strategy: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.strategy is not None and not self.errors


@dataclass
class SyncReport:
    source: str
    tables: List[TableSyncResult] = field(default_factory=list)

    @property
    def inserted(self) -> int:
        return sum(t.inserted for t in self.tables)

    @property
    def success(self) -> bool:
        return all(t.success for t in self.tables)

    def dict(self) -> dict:
        return {
            "source": self.source,
            "inserted": self.inserted,
            "success": self.success,
            "tables": [asdict(t) for t in self.tables],
        }


# Derivation of ledger entries from source records

def derive_income(entry: IncomeEntry) -> List[Dict[str, Any]]:
    if not entry.account_id:
        return []
    return [_ledger_row(
        ReferenceType.INCOME_ENTRY, entry.id, entry.account_id, entry.date,
        TransactionType.INCOME, entry.amount, entry.description or "Income",
    )]


def derive_expenditure(entry: ExpenditureEntry) -> List[Dict[str, Any]]:
    if not entry.account_id:
        return []
    description = entry.description or (f"Payment to {entry.recipient}" if entry.recipient else "Expenditure")
    return [_ledger_row(
        ReferenceType.EXPENDITURE_ENTRY, entry.id, entry.account_id, entry.date,
        TransactionType.EXPENDITURE, entry.amount, description,
    )]


def derive_transfer(transfer: AccountTransfer) -> List[Dict[str, Any]]:
    rows = []
    if transfer.source_account_id:
        rows.append(_ledger_row(
            ReferenceType.TRANSFER_OUT, transfer.id, transfer.source_account_id, transfer.date,
            TransactionType.TRANSFER_OUT, transfer.amount,
            transfer.description or f"Transfer to account {transfer.destination_account_id}",
        ))
    if transfer.destination_account_id:
        rows.append(_ledger_row(
            ReferenceType.TRANSFER_IN, transfer.id, transfer.destination_account_id, transfer.date,
            TransactionType.TRANSFER_IN, transfer.amount,
            transfer.description or f"Transfer from account {transfer.source_account_id}",
        ))
    return rows


def _ledger_row(reference_type, reference_id, account_id, entry_date, transaction_type, amount, description):
    return {
        "id": ledger_entry_id(reference_type.value, reference_id),
        "account_id": account_id,
        "date": entry_date,
        "amount": signed_amount(transaction_type, amount),
        "description": description,
        "transaction_type": transaction_type.value,
        "reference_id": reference_id,
        "reference_type": reference_type.value,
    }


SOURCE_DERIVERS = {
    "income": (IncomeEntry, derive_income, IncomeEntry.account_id.isnot(None)),
    "expenditure": (ExpenditureEntry, derive_expenditure, ExpenditureEntry.account_id.isnot(None)),
    "transfers": (AccountTransfer, derive_transfer, None),
}

DERIVERS_BY_MODEL = {model: deriver for model, deriver, _ in SOURCE_DERIVERS.values()}


def reference_keys(record) -> List[Tuple[str, str]]:
    """(reference_id, reference_type) pairs owned by a source record."""
    if isinstance(record, AccountTransfer):
        return [(record.id, ReferenceType.TRANSFER_OUT.value), (record.id, ReferenceType.TRANSFER_IN.value)]
    if isinstance(record, ExpenditureEntry):
        return [(record.id, ReferenceType.EXPENDITURE_ENTRY.value)]
    return [(record.id, ReferenceType.INCOME_ENTRY.value)]


class TransactionLogSynchronizer:
    """Backfill and cross-table sync of the two ledger tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # Target table inspection

    async def _existing(self, table: Table, ids: Sequence[str] = None) -> Tuple[set, set]:
        query = select(table.c.id, table.c.reference_id, table.c.reference_type)
        if ids is not None:
            query = query.where(table.c.id.in_(list(ids)))
        result = await self.db.execute(query)
        existing_ids, existing_keys = set(), set()
        for row in result:
            existing_ids.add(row.id)
            if row.reference_id is not None and row.reference_type is not None:
                existing_keys.add((row.reference_id, row.reference_type))
        return existing_ids, existing_keys

    async def _exists(self, table: Table, row: Dict[str, Any]) -> bool:
        condition = table.c.id == row["id"]
        key = entry_key(row)
        if key is not None:
            condition = or_(
                condition,
                and_(table.c.reference_id == key[0], table.c.reference_type == key[1]),
            )
        result = await self.db.execute(select(table.c.id).where(condition).limit(1))
        return result.first() is not None

    # Write strategies

    async def _bulk_insert(self, table: Table, rows: List[Dict[str, Any]], outcome: TableSyncResult) -> int:
        existing_ids, existing_keys = await self._existing(table)
        missing, seen = [], set()
        for row in rows:
            key = entry_key(row)
            if row["id"] in existing_ids or row["id"] in seen or (key is not None and key in existing_keys):
                continue
            missing.append(row)
            seen.add(row["id"])
            if key is not None:
                existing_keys.add(key)

        if missing:
            await self.db.execute(insert(table), missing)

        outcome.skipped = len(rows) - len(missing)
        return len(missing)

    async def _row_by_row(self, table: Table, rows: List[Dict[str, Any]], outcome: TableSyncResult) -> int:
        inserted = 0
        skipped = 0
        for row in rows:
            try:
                async with self.db.begin_nested():
                    if await self._exists(table, row):
                        skipped += 1
                        continue
                    await self.db.execute(insert(table).values(**row))
                inserted += 1
            except SQLAlchemyError as e:
                raise_if_unavailable(e)
                logger.warning("Row sync into %s failed for %s: %s", table.name, row["id"], e)
                outcome.errors.append(f"{row['id']}: {e}")
        outcome.skipped = skipped
        return inserted

    async def write_missing(self, table: Table, rows: List[Dict[str, Any]], chain_name: str) -> TableSyncResult:
        """Insert the rows missing from `table` through the write strategy chain."""
        outcome = TableSyncResult(table=table.name)
        if not rows:
            outcome.strategy = "noop"
            return outcome

        chain = FallbackChain(f"{chain_name}:{table.name}", session=self.db)
        try:
            result = await chain.run([
                ("bulk_insert", lambda: self._bulk_insert(table, rows, outcome)),
                ("row_by_row", lambda: self._row_by_row(table, rows, outcome)),
            ])
            await self.db.commit()
        except AllStrategiesFailedError as e:
            outcome.errors.append(str(e))
            return outcome

        outcome.inserted = result.value
        outcome.strategy = result.strategy
        if outcome.inserted:
            logger.info("%s: inserted %d row(s) into %s via %s", chain_name, outcome.inserted, table.name, result.strategy)
        return outcome

    # Operations

    async def _load_source_rows(self, source: str) -> List[Dict[str, Any]]:
        model, deriver, condition = SOURCE_DERIVERS[source]
        query = select(model)
        if condition is not None:
            query = query.where(condition)
        result = await self.db.execute(query)
        rows = []
        for record in result.scalars().all():
            rows.extend(deriver(record))
        return rows

    async def sync_source_to_ledger(self, source: str) -> SyncReport:
        """
        Backfill ledger entries for one source table.

        Args:
            source: "income", "expenditure" or "transfers"

        Returns:
            SyncReport with one result per ledger table
        """
        if source not in SOURCE_DERIVERS:
            raise ValueError(f"Unknown ledger source: {source}")

        report = SyncReport(source=source)
        try:
            async with self.db.begin_nested():
                rows = await self._load_source_rows(source)
        except SQLAlchemyError as e:
            raise_if_unavailable(e)
            logger.error("Could not read %s source records: %s", source, e)
            report.tables = [TableSyncResult(table=m.__tablename__, errors=[str(e)]) for m in LEDGER_MODELS]
            return report

        for model in LEDGER_MODELS:
            report.tables.append(await self.write_missing(model.__table__, rows, f"sync.{source}"))
        return report

    async def sync_between_log_tables(self) -> SyncReport:
        """Copy rows missing from either ledger table into the other, ids preserved."""
        report = SyncReport(source="cross_table")
        tx_table = AccountTxEntry.__table__
        log_table = AccountTransaction.__table__
        columns = lambda table: [table.c[name] for name in LEDGER_COLUMNS]  # noqa: E731

        for origin, target in ((log_table, tx_table), (tx_table, log_table)):
            try:
                async with self.db.begin_nested():
                    result = await self.db.execute(select(*columns(origin)))
                    rows = [dict(row._mapping) for row in result]
            except SQLAlchemyError as e:
                raise_if_unavailable(e)
                logger.error("Could not read %s for cross-table sync: %s", origin.name, e)
                report.tables.append(TableSyncResult(table=target.name, errors=[str(e)]))
                continue
            report.tables.append(await self.write_missing(target, rows, f"sync.{origin.name}"))
        return report

    async def sync_all(self) -> List[SyncReport]:
        """Backfill from every source, then reconcile the two tables."""
        reports = [await self.sync_source_to_ledger(source) for source in SOURCES]
        reports.append(await self.sync_between_log_tables())
        return reports

    async def derive_for_record(self, record) -> List[str]:
        """
        Write the ledger entries of one source record into both tables.

        Returns:
            Names of the tables that now hold the entries

        Raises:
            SchemaUnavailableError: if neither table accepted them
        """
        rows = DERIVERS_BY_MODEL[type(record)](record)
        if not rows:
            return []

        written = []
        for model in LEDGER_MODELS:
            outcome = await self.write_missing(model.__table__, rows, "derive")
            if outcome.success:
                written.append(outcome.table)

        if not written:
            raise SchemaUnavailableError(
                message="Ledger entries could not be written to any ledger table",
                details={"reference_id": record.id},
            )
        return written

    async def remove_for_record(self, record) -> List[str]:
        """
        Delete the ledger entries of one source record from both tables.

        Best-effort per table, each delete in its own savepoint; returns the
        tables the delete succeeded on. Pending changes in the session are
        left in place for the caller to commit.
        """
        keys = reference_keys(record)
        record_id = record.id
        removed = []
        for model in LEDGER_MODELS:
            table = model.__table__
            condition = or_(*[
                and_(table.c.reference_id == ref_id, table.c.reference_type == ref_type)
                for ref_id, ref_type in keys
            ])
            try:
                async with self.db.begin_nested():
                    await self.db.execute(delete(table).where(condition))
                removed.append(table.name)
            except SQLAlchemyError as e:
                raise_if_unavailable(e)
                logger.warning("Could not delete ledger entries of %s from %s: %s", record_id, table.name, e)
        return removed

    async def recalculate_all_balances(self, cache: Optional[BalanceCache] = None) -> List[dict]:
        """
        Recompute and persist every account balance from the ledger.

        Continues past failing accounts and reports a result per account.
        """
        return await BalanceService(self.db, cache).recalculate_all()
