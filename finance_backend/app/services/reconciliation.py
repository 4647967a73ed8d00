"""
Reconciliation Session Manager.

A session matches the ledger entries of one account over a statement period
against the bank's closing balance. The cleared flag of an entry can live in
three stores, written together and read in priority order:

1. `transaction_reconciliations` (session link table)
2. `account_tx_table` flag columns, scoped to the session
3. `reconciliation_items`

Reads take status from the first store that holds data for the session;
entries it does not mention are unreconciled.

The book balance of an in-progress session follows the ledger: it is
recomputed on every summary and after each source-record write dated on or
before the end of the statement period. Completed sessions are frozen.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from finance_backend.app.core.exceptions import (
    ReconciliationStateError, ResourceNotFoundError, raise_if_unavailable,
)
from finance_backend.app.domain.ledger.balance_calculator import calculate_balance, round_money, to_amount
from finance_backend.app.models.account import Account, new_uuid
from finance_backend.app.models.finance_enums import ReconciliationStatus
from finance_backend.app.models.ledger_entry import AccountTxEntry
from finance_backend.app.models.reconciliation import (
    BankReconciliation, ReconciliationItem, TransactionReconciliation,
)
from finance_backend.app.services.ledger_reader import LedgerReader, newest_first

logger = logging.getLogger(__name__)

StatusMap = Dict[str, bool]

UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class ItemResult:
    transaction_id: str
    success: bool = False
    stores: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class ReconcileBatchResult:
    reconciliation_id: str
    is_reconciled: bool
    results: List[ItemResult] = field(default_factory=list)

    @property
    def failed(self) -> List[dict]:
        return [
            {"transaction_id": r.transaction_id, "error": "; ".join(r.errors) or "No status store accepted the update"}
            for r in self.results if not r.success
        ]

    @property
    def success(self) -> bool:
        return bool(self.results) and all(r.success for r in self.results)

    @property
    def message(self) -> str:
        done = sum(1 for r in self.results if r.success)
        state = "reconciled" if self.is_reconciled else "unreconciled"
        if done == len(self.results):
            return f"{done} transaction(s) marked as {state}"
        return f"{done} of {len(self.results)} transaction(s) marked as {state}"

    def dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "results": [asdict(r) for r in self.results],
            "failed": self.failed,
        }


class ReconciliationSessionManager:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.reader = LedgerReader(db)

    # Sessions

    async def get_session(self, session_id: str) -> BankReconciliation:
        result = await self.db.execute(select(BankReconciliation).where(BankReconciliation.id == session_id))
        session = result.scalar_one_or_none()
        if session is None:
            raise ResourceNotFoundError("Reconciliation", session_id)
        return session

    async def _get_account(self, account_id: str) -> Account:
        result = await self.db.execute(select(Account).where(Account.id == account_id))
        account = result.scalar_one_or_none()
        if account is None:
            raise ResourceNotFoundError("Account", account_id)
        return account

    async def _balance_at(self, account: Account, as_of: date) -> float:
        ledger = await self.reader.entries_for_account(account.id, end_date=as_of)
        return calculate_balance(account, ledger.value)

    async def create_session(
        self,
        account_id: str,
        start_date: date,
        end_date: date,
        bank_balance: float,
        notes: Optional[str] = None,
    ) -> BankReconciliation:
        """
        Open a reconciliation session.

        The book balance is the calculator's balance over ledger entries up
        to `end_date`; difference = bank_balance - book_balance.
        """
        if start_date > end_date:
            raise ReconciliationStateError(
                "Statement start date must not be after end date",
                details={"start_date": str(start_date), "end_date": str(end_date)},
            )

        account = await self._get_account(account_id)
        book_balance = await self._balance_at(account, end_date)

        session = BankReconciliation(
            id=new_uuid(),
            account_id=account_id,
            start_date=start_date,
            end_date=end_date,
            bank_balance=round_money(to_amount(bank_balance)),
            book_balance=book_balance,
            difference=round_money(to_amount(bank_balance) - to_amount(book_balance)),
            status=ReconciliationStatus.IN_PROGRESS,
            notes=notes,
        )
        self.db.add(session)
        await self.db.commit()
        await self.db.refresh(session)

        logger.info(
            "Reconciliation %s opened for account %s (%s..%s), difference %s",
            session.id, account_id, start_date, end_date, session.difference,
        )
        return session

    async def refresh_book_balance(self, session: BankReconciliation, account: Optional[Account] = None) -> bool:
        """
        Recompute the book balance and difference of an in-progress session.

        Does not commit. Returns True when either value changed.
        """
        if session.status == ReconciliationStatus.COMPLETED:
            return False

        account = account or await self._get_account(session.account_id)
        book_balance = await self._balance_at(account, session.end_date)
        difference = round_money(to_amount(session.bank_balance) - to_amount(book_balance))
        if book_balance == session.book_balance and difference == session.difference:
            return False

        logger.info(
            "Reconciliation %s book balance %s -> %s", session.id, session.book_balance, book_balance
        )
        session.book_balance = book_balance
        session.difference = difference
        return True

    async def refresh_open_sessions(self, entry_date: date, *account_ids: str) -> List[BankReconciliation]:
        """
        Refresh in-progress sessions of the accounts whose period ends on or
        after `entry_date`, after a ledger write dated `entry_date`.
        """
        account_ids = [a for a in dict.fromkeys(account_ids) if a]
        if not account_ids:
            return []

        try:
            async with self.db.begin_nested():
                result = await self.db.execute(
                    select(BankReconciliation).where(
                        BankReconciliation.account_id.in_(account_ids),
                        BankReconciliation.status == ReconciliationStatus.IN_PROGRESS,
                        BankReconciliation.end_date >= entry_date,
                    )
                )
                sessions = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise_if_unavailable(e)
            logger.warning("Open reconciliations of %s could not be refreshed: %s", account_ids, e)
            return []

        changed = [s for s in sessions if await self.refresh_book_balance(s)]
        if changed:
            await self.db.commit()
        return sessions

    # Status lookup, in priority order

    async def _status_from_links(self, session_id: str, ids: Sequence[str]) -> StatusMap:
        result = await self.db.execute(
            select(TransactionReconciliation.transaction_id, TransactionReconciliation.is_reconciled)
            .where(
                TransactionReconciliation.reconciliation_id == session_id,
                TransactionReconciliation.transaction_id.in_(list(ids)),
            )
        )
        return {row.transaction_id: bool(row.is_reconciled) for row in result}

    async def _status_from_tx_flags(self, session_id: str, ids: Sequence[str]) -> StatusMap:
        result = await self.db.execute(
            select(AccountTxEntry.id, AccountTxEntry.is_reconciled)
            .where(
                AccountTxEntry.reconciliation_id == session_id,
                AccountTxEntry.id.in_(list(ids)),
            )
        )
        return {row.id: bool(row.is_reconciled) for row in result}

    async def _status_from_items(self, session_id: str, ids: Sequence[str]) -> StatusMap:
        result = await self.db.execute(
            select(ReconciliationItem.transaction_id, ReconciliationItem.is_cleared)
            .where(
                ReconciliationItem.reconciliation_id == session_id,
                ReconciliationItem.transaction_id.in_(list(ids)),
            )
        )
        return {row.transaction_id: bool(row.is_cleared) for row in result}

    def status_lookups(self) -> List[Tuple[str, Callable[[str, Sequence[str]], Awaitable[StatusMap]]]]:
        return [
            ("transaction_reconciliations", self._status_from_links),
            ("account_tx_table", self._status_from_tx_flags),
            ("reconciliation_items", self._status_from_items),
        ]

    async def resolve_status(self, session_id: str, ids: Sequence[str]) -> Tuple[StatusMap, str]:
        """
        Cleared flags for `ids` from the first store holding data for the session.

        Returns:
            (status map, name of the store that served it or "default")
        """
        if not ids:
            return {}, "default"

        for name, lookup in self.status_lookups():
            try:
                async with self.db.begin_nested():
                    statuses = await lookup(session_id, ids)
            except SQLAlchemyError as e:
                raise_if_unavailable(e)
                logger.warning("Status store %s unreadable for %s: %s", name, session_id, e)
                continue
            if statuses:
                logger.debug("Reconciliation status for %s served by %s", session_id, name)
                return statuses, name

        return {}, "default"

    async def _attached_ids(self, session_id: str) -> List[str]:
        """Ids of entries any status store links to the session."""
        ids = set()
        queries = [
            select(TransactionReconciliation.transaction_id)
            .where(TransactionReconciliation.reconciliation_id == session_id),
            select(AccountTxEntry.id).where(AccountTxEntry.reconciliation_id == session_id),
            select(ReconciliationItem.transaction_id).where(ReconciliationItem.reconciliation_id == session_id),
        ]
        for query in queries:
            try:
                async with self.db.begin_nested():
                    result = await self.db.execute(query)
                    values = result.scalars().all()
            except SQLAlchemyError as e:
                raise_if_unavailable(e)
                logger.warning("Could not read attached transactions of %s: %s", session_id, e)
                continue
            ids.update(value for value in values if value)
        return sorted(ids)

    async def list_transactions(
        self,
        account_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        session_id: Optional[str] = None,
    ) -> List[dict]:
        """
        Ledger entries of an account in range, newest first, with cleared flags.

        With a session id, entries already attached to the session but outside
        the range are included as well.
        """
        ledger = await self.reader.entries_for_account(account_id, start_date, end_date)
        entries = list(ledger.value)

        if not session_id:
            return [{**e, "is_reconciled": False, "reconciliation_id": None} for e in entries]

        in_range = {e["id"] for e in entries}
        extra_ids = [i for i in await self._attached_ids(session_id) if i not in in_range]
        if extra_ids:
            extra = await self.reader.entries_by_ids(extra_ids)
            entries.extend(e for e in extra.values() if e["account_id"] == account_id)
            entries = newest_first(entries)

        statuses, store = await self.resolve_status(session_id, [e["id"] for e in entries])
        logger.info("Listing %d transaction(s) for %s with status from %s", len(entries), session_id, store)

        return [
            {
                **e,
                "is_reconciled": statuses.get(e["id"], False),
                "reconciliation_id": session_id if e["id"] in statuses else None,
            }
            for e in entries
        ]

    # Status writes

    def _upsert_insert(self):
        dialect = self.db.get_bind().dialect.name
        return UPSERT_INSERTS.get(dialect)

    async def _write_link(self, transaction_id: str, session_id: str, reconciled: bool, now: datetime) -> bool:
        values = {
            "is_reconciled": reconciled,
            "reconciled_at": now if reconciled else None,
        }
        dialect_insert = self._upsert_insert()

        if dialect_insert is not None:
            statement = dialect_insert(TransactionReconciliation).values(
                id=new_uuid(), transaction_id=transaction_id, reconciliation_id=session_id, **values
            )
            statement = statement.on_conflict_do_update(
                index_elements=["transaction_id", "reconciliation_id"],
                set_=values,
            )
            await self.db.execute(statement)
        else:
            result = await self.db.execute(
                update(TransactionReconciliation)
                .where(
                    TransactionReconciliation.transaction_id == transaction_id,
                    TransactionReconciliation.reconciliation_id == session_id,
                )
                .values(**values)
            )
            if result.rowcount == 0:
                self.db.add(TransactionReconciliation(
                    id=new_uuid(), transaction_id=transaction_id, reconciliation_id=session_id, **values
                ))
        return True

    async def _write_tx_flag(self, transaction_id: str, session_id: str, reconciled: bool, now: datetime) -> bool:
        result = await self.db.execute(
            update(AccountTxEntry)
            .where(AccountTxEntry.id == transaction_id)
            .values(
                is_reconciled=reconciled,
                reconciled_at=now if reconciled else None,
                reconciliation_id=session_id,
            )
        )
        return result.rowcount > 0

    async def _write_item(self, entry: dict, session_id: str, reconciled: bool, now: datetime) -> bool:
        result = await self.db.execute(
            select(ReconciliationItem).where(
                ReconciliationItem.reconciliation_id == session_id,
                ReconciliationItem.transaction_id == entry["id"],
            )
        )
        item = result.scalars().first()
        if item is None:
            self.db.add(ReconciliationItem(
                id=new_uuid(),
                reconciliation_id=session_id,
                transaction_id=entry["id"],
                transaction_type=entry.get("transaction_type"),
                amount=entry.get("amount"),
                date=entry.get("date"),
                is_cleared=reconciled,
            ))
        else:
            item.is_cleared = reconciled
            item.updated_at = now
        return True

    def status_writers(self):
        return [
            ("transaction_reconciliations", lambda e, s, r, n: self._write_link(e["id"], s, r, n)),
            ("account_tx_table", lambda e, s, r, n: self._write_tx_flag(e["id"], s, r, n)),
            ("reconciliation_items", self._write_item),
        ]

    async def set_reconciled(
        self,
        transaction_ids: Sequence[str],
        session_id: str,
        reconciled: bool,
    ) -> ReconcileBatchResult:
        """
        Mark ledger entries reconciled or unreconciled in a session.

        Each entry is written to every status store best-effort, one
        savepoint and commit per store; a failing entry never undoes the
        others. An entry succeeds when at least one store accepted the write.
        Entries of another account are refused. Repeating a call leaves one
        status record per (transaction, session).

        Raises:
            ResourceNotFoundError: if the session does not exist
        """
        session = await self.get_session(session_id)
        account_id = session.account_id

        batch = ReconcileBatchResult(reconciliation_id=session_id, is_reconciled=reconciled)
        unique_ids = list(dict.fromkeys(t for t in transaction_ids if t))
        entries = await self.reader.entries_by_ids(unique_ids)

        for transaction_id in unique_ids:
            outcome = ItemResult(transaction_id=transaction_id)
            batch.results.append(outcome)

            entry = entries.get(transaction_id)
            if entry is None:
                outcome.errors.append("Transaction not found")
                logger.warning("Reconcile %s: transaction %s not found", session_id, transaction_id)
                continue

            if entry["account_id"] != account_id:
                outcome.errors.append("Transaction belongs to another account")
                logger.warning(
                    "Reconcile %s: transaction %s is on account %s, not %s",
                    session_id, transaction_id, entry["account_id"], account_id,
                )
                continue

            now = datetime.now(timezone.utc)
            for store, writer in self.status_writers():
                try:
                    async with self.db.begin_nested():
                        accepted = await writer(entry, session_id, reconciled, now)
                except SQLAlchemyError as e:
                    raise_if_unavailable(e)
                    logger.warning("Reconcile %s: store %s rejected %s: %s", session_id, store, transaction_id, e)
                    outcome.errors.append(f"{store}: {e}")
                    continue

                await self.db.commit()
                if accepted:
                    outcome.stores.append(store)

            outcome.success = bool(outcome.stores)

        logger.info("Reconcile %s: %s", session_id, batch.message)
        return batch

    async def set_single_reconciled(self, transaction_id: str, session_id: str, reconciled: bool) -> ReconcileBatchResult:
        return await self.set_reconciled([transaction_id], session_id, reconciled)

    # Session summary / completion

    async def session_summary(self, session_id: str) -> dict:
        """
        Cleared totals of a session.

        `cleared_balance` is the book balance before the statement period plus
        every cleared entry; the session balances when it equals the bank
        balance. The book balance of an in-progress session is refreshed
        from the ledger first.
        """
        session = await self.get_session(session_id)
        account = await self._get_account(session.account_id)

        if await self.refresh_book_balance(session, account):
            await self.db.commit()

        opening = await self._balance_at(account, session.start_date - timedelta(days=1))
        transactions = await self.list_transactions(
            session.account_id, session.start_date, session.end_date, session_id
        )

        cleared = [t for t in transactions if t["is_reconciled"]]
        cleared_total = sum((to_amount(t["amount"]) for t in cleared), to_amount(0))
        cleared_balance = round_money(to_amount(opening) + cleared_total)

        return {
            "reconciliation_id": session.id,
            "account_id": session.account_id,
            "start_date": session.start_date,
            "end_date": session.end_date,
            "status": session.status.value,
            "bank_balance": session.bank_balance,
            "book_balance": session.book_balance,
            "difference": session.difference,
            "opening_balance": opening,
            "cleared_total": round_money(cleared_total),
            "cleared_count": len(cleared),
            "uncleared_count": len(transactions) - len(cleared),
            "cleared_balance": cleared_balance,
            "unreconciled_difference": round_money(to_amount(session.bank_balance) - to_amount(cleared_balance)),
        }

    async def complete_session(self, session_id: str) -> dict:
        """
        Mark a session completed once the cleared balance matches the bank.

        Raises:
            ReconciliationStateError: already completed, or still out of balance
        """
        summary = await self.session_summary(session_id)
        session = await self.get_session(session_id)

        if session.status == ReconciliationStatus.COMPLETED:
            raise ReconciliationStateError("Reconciliation is already completed", details={"id": session_id})

        if summary["unreconciled_difference"] != 0:
            raise ReconciliationStateError(
                "Cleared transactions do not match the bank balance",
                details={"unreconciled_difference": summary["unreconciled_difference"]},
            )

        session.status = ReconciliationStatus.COMPLETED
        await self.db.commit()
        logger.info("Reconciliation %s completed", session_id)

        summary["status"] = ReconciliationStatus.COMPLETED.value
        return summary
