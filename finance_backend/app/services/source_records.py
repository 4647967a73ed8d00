"""
Source record write paths.

Creating a record derives its ledger entries into both ledger tables and
recalculates the affected account balances. Deleting a record removes its
ledger entries, reverses liability payments and recalculates again. Deletion
of generated entries is refused by the entry policy. Every write refreshes the
book balance of the in-progress reconciliations it falls into.
"""

import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from finance_backend.app.core.exceptions import (
    ImmutableEntryError, InsufficientBalanceError, InvalidPaymentError, InvalidTransferError,
    ReconciliationStateError, ResourceNotFoundError,
)
from finance_backend.app.domain.ledger.balance_calculator import calculate_balance, round_money, to_amount
from finance_backend.app.domain.ledger.entry_policy import (
    ADJUSTMENT_DESCRIPTION_PREFIX, ADJUSTMENT_PAYMENT_METHOD, expenditure_block_reason, income_block_reason,
)
from finance_backend.app.models.account import Account, new_uuid
from finance_backend.app.models.account_transfer import AccountTransfer
from finance_backend.app.models.expenditure_entry import ExpenditureEntry
from finance_backend.app.models.finance_enums import LiabilityStatus, ReconciliationStatus, ReferenceType
from finance_backend.app.models.income_entry import IncomeEntry
from finance_backend.app.models.ledger_entry import ledger_entry_id
from finance_backend.app.models.liability_entry import LiabilityEntry
from finance_backend.app.schemas.reconciliation import ReconciliationAdjustmentCreate
from finance_backend.app.schemas.source_records import (
    ExpenditureCreate, IncomeCreate, LiabilityCreate, LiabilityPaymentCreate, TransferCreate,
)
from finance_backend.app.services.balance_service import BalanceService
from finance_backend.app.services.cache import BalanceCache
from finance_backend.app.services.ledger_reader import LedgerReader
from finance_backend.app.services.ledger_sync import TransactionLogSynchronizer
from finance_backend.app.services.reconciliation import ReconciliationSessionManager

logger = logging.getLogger(__name__)


def liability_status(total_amount: float, amount_paid: float) -> LiabilityStatus:
    if amount_paid <= 0:
        return LiabilityStatus.UNPAID
    if amount_paid < total_amount:
        return LiabilityStatus.PARTIAL
    return LiabilityStatus.PAID


def reverse_liability_payment(liability: LiabilityEntry, amount: float) -> None:
    amount_paid = round_money(max(to_amount(0), to_amount(liability.amount_paid) - to_amount(amount)))
    liability.amount_paid = amount_paid
    liability.amount_remaining = round_money(to_amount(liability.total_amount) - to_amount(amount_paid))
    liability.status = liability_status(liability.total_amount, amount_paid)


class SourceRecordService:

    def __init__(self, db: AsyncSession, cache: Optional[BalanceCache] = None):
        self.db = db
        self.cache = cache
        self.synchronizer = TransactionLogSynchronizer(db)
        self.balances = BalanceService(db, cache)
        self.sessions = ReconciliationSessionManager(db)

    async def _require(self, model, record_id: str, name: str):
        result = await self.db.execute(select(model).where(model.id == record_id))
        record = result.scalar_one_or_none()
        if record is None:
            raise ResourceNotFoundError(name, record_id)
        return record

    async def _refresh_balances(self, *account_ids: str) -> List[Dict[str, Any]]:
        account_ids = [a for a in dict.fromkeys(account_ids) if a]
        if self.cache is not None:
            await self.cache.invalidate(*account_ids)

        results = []
        for account_id in account_ids:
            try:
                results.append(await self.balances.recalculate(account_id))
            except ResourceNotFoundError:
                logger.warning("Account %s vanished before its balance could be recalculated", account_id)
        return results

    async def _post(self, record, *account_ids: str) -> Dict[str, Any]:
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)

        tables = await self.synchronizer.derive_for_record(record)
        balances = await self._refresh_balances(*account_ids)
        await self.sessions.refresh_open_sessions(record.date, *account_ids)
        return {"record": record, "ledger_tables": tables, "balances": balances}

    # Creation

    async def create_income(self, data: IncomeCreate) -> Dict[str, Any]:
        await self._require(Account, data.account_id, "Account")
        entry = IncomeEntry(id=new_uuid(), **data.model_dump())
        outcome = await self._post(entry, entry.account_id)
        logger.info("Income %s of %s recorded on %s", entry.id, entry.amount, entry.account_id)
        return outcome

    async def create_expenditure(self, data: ExpenditureCreate) -> Dict[str, Any]:
        await self._require(Account, data.account_id, "Account")
        entry = ExpenditureEntry(id=new_uuid(), **data.model_dump())
        outcome = await self._post(entry, entry.account_id)
        logger.info("Expenditure %s of %s recorded on %s", entry.id, entry.amount, entry.account_id)
        return outcome

    async def create_transfer(self, data: TransferCreate, created_by: Optional[str] = None) -> Dict[str, Any]:
        """
        Move money between two accounts.

        Raises:
            InvalidTransferError: same account on both sides or non-positive amount
            ResourceNotFoundError: either account missing
            InsufficientBalanceError: source balance below the amount
        """
        if data.source_account_id == data.destination_account_id:
            raise InvalidTransferError("Source and destination accounts must be different")
        if data.amount <= 0:
            raise InvalidTransferError("Transfer amount must be greater than zero")

        source = await self._require(Account, data.source_account_id, "Account")
        await self._require(Account, data.destination_account_id, "Account")

        ledger = await LedgerReader(self.db).entries_for_account(source.id)
        available = calculate_balance(source, ledger.value)
        if to_amount(available) < to_amount(data.amount):
            raise InsufficientBalanceError(source.id, available, data.amount)

        transfer = AccountTransfer(id=new_uuid(), created_by=created_by, **data.model_dump())
        outcome = await self._post(transfer, transfer.source_account_id, transfer.destination_account_id)
        logger.info(
            "Transfer %s of %s from %s to %s",
            transfer.id, transfer.amount, transfer.source_account_id, transfer.destination_account_id,
        )
        return outcome

    async def create_liability(self, data: LiabilityCreate) -> Dict[str, Any]:
        """Record a liability; loans paid into an account also record the proceeds as income."""
        if data.account_id:
            await self._require(Account, data.account_id, "Account")

        liability = LiabilityEntry(
            id=new_uuid(),
            date=data.date,
            category_id=data.category_id,
            creditor_name=data.creditor_name,
            details=data.details,
            total_amount=data.total_amount,
            amount_paid=0.0,
            amount_remaining=data.total_amount,
            due_date=data.due_date,
            status=LiabilityStatus.UNPAID,
            is_loan=data.is_loan,
        )
        self.db.add(liability)
        await self.db.commit()
        await self.db.refresh(liability)

        outcome = {"record": liability, "ledger_tables": [], "balances": []}
        if data.is_loan and data.account_id:
            proceeds = IncomeEntry(
                id=new_uuid(),
                date=data.date,
                description=f"Loan from {data.creditor_name}",
                amount=data.total_amount,
                payment_method="bank_transfer",
                account_id=data.account_id,
                payment_details={"source": "liability", "liability_id": liability.id},
            )
            posted = await self._post(proceeds, data.account_id)
            outcome["ledger_tables"] = posted["ledger_tables"]
            outcome["balances"] = posted["balances"]

        return outcome

    async def record_liability_payment(self, liability_id: str, data: LiabilityPaymentCreate) -> Dict[str, Any]:
        """
        Pay down a liability.

        The payment becomes an expenditure flagged `liability_payment`.
        """
        liability = await self._require(LiabilityEntry, liability_id, "Liability")
        await self._require(Account, data.account_id, "Account")

        remaining = to_amount(liability.amount_remaining)
        if to_amount(data.amount) > remaining:
            raise InvalidPaymentError(
                "Payment exceeds the remaining amount",
                details={"amount": data.amount, "amount_remaining": liability.amount_remaining},
            )

        amount_paid = round_money(to_amount(liability.amount_paid) + to_amount(data.amount))
        liability.amount_paid = amount_paid
        liability.amount_remaining = round_money(to_amount(liability.total_amount) - to_amount(amount_paid))
        liability.status = liability_status(liability.total_amount, amount_paid)

        payment = ExpenditureEntry(
            id=new_uuid(),
            date=data.payment_date,
            category_id=data.category_id,
            description=data.description or f"Payment to {liability.creditor_name}",
            amount=data.amount,
            recipient=liability.creditor_name,
            payment_method=data.payment_method,
            account_id=data.account_id,
            liability_payment=True,
            liability_id=liability.id,
        )
        outcome = await self._post(payment, data.account_id)
        outcome["liability"] = liability
        logger.info("Liability %s paid %s, status %s", liability.id, data.amount, liability.status.value)
        return outcome

    async def create_reconciliation_adjustment(
        self, session_id: str, data: ReconciliationAdjustmentCreate
    ) -> Dict[str, Any]:
        """
        Post an adjustment entry that brings the books in line with the bank.

        The entry is income or expenditure on the session's account, dated at
        the end of the statement period, linked to the session and already
        cleared in it. The session's book balance is refreshed.

        Raises:
            ResourceNotFoundError: if the session does not exist
            ReconciliationStateError: if the session is already completed
        """
        session = await self.sessions.get_session(session_id)
        if session.status == ReconciliationStatus.COMPLETED:
            raise ReconciliationStateError(
                "Completed reconciliations cannot be adjusted", details={"id": session_id}
            )

        fields = dict(
            id=new_uuid(),
            date=session.end_date,
            category_id=data.category_id,
            description=f"{ADJUSTMENT_DESCRIPTION_PREFIX} {data.description}",
            amount=data.amount,
            payment_method=ADJUSTMENT_PAYMENT_METHOD,
            account_id=session.account_id,
            reconciliation_id=session.id,
            is_reconciliation_adjustment=True,
        )
        if data.adjustment_type == "income":
            entry, reference_type = IncomeEntry(**fields), ReferenceType.INCOME_ENTRY
        else:
            entry, reference_type = ExpenditureEntry(**fields), ReferenceType.EXPENDITURE_ENTRY

        outcome = await self._post(entry, session.account_id)
        cleared = await self.sessions.set_single_reconciled(
            ledger_entry_id(reference_type.value, entry.id), session.id, True
        )
        if not cleared.success:
            logger.warning("Adjustment %s posted but not cleared in %s: %s", entry.id, session.id, cleared.failed)

        outcome["reconciliation"] = session
        logger.info(
            "Reconciliation %s adjusted by %s %s, book balance %s",
            session.id, data.adjustment_type, entry.amount, session.book_balance,
        )
        return outcome

    # Deletion

    async def _unpost(self, record, *account_ids: str, liability: Optional[LiabilityEntry] = None) -> Dict[str, Any]:
        tables = await self.synchronizer.remove_for_record(record)

        # Reversal and record deletion commit together
        if liability is not None:
            reverse_liability_payment(liability, record.amount)
        await self.db.delete(record)
        await self.db.commit()

        balances = await self._refresh_balances(*account_ids)
        await self.sessions.refresh_open_sessions(record.date, *account_ids)
        return {"record": record, "ledger_tables": tables, "balances": balances, "liability": liability}

    async def delete_income(self, income_id: str) -> Dict[str, Any]:
        entry = await self._require(IncomeEntry, income_id, "Income entry")
        reason = income_block_reason(entry)
        if reason:
            raise ImmutableEntryError("Income entry", income_id, reason)

        outcome = await self._unpost(entry, entry.account_id)
        logger.info("Income %s deleted", income_id)
        return outcome

    async def delete_expenditure(self, expenditure_id: str) -> Dict[str, Any]:
        entry = await self._require(ExpenditureEntry, expenditure_id, "Expenditure entry")
        reason = expenditure_block_reason(entry)
        if reason:
            raise ImmutableEntryError("Expenditure entry", expenditure_id, reason)

        liability = None
        if entry.liability_payment and entry.liability_id:
            result = await self.db.execute(select(LiabilityEntry).where(LiabilityEntry.id == entry.liability_id))
            liability = result.scalar_one_or_none()

        outcome = await self._unpost(entry, entry.account_id, liability=liability)
        if liability is not None:
            logger.info("Liability %s payment reversed, status %s", liability.id, liability.status.value)
        logger.info("Expenditure %s deleted", expenditure_id)
        return outcome

    async def delete_transfer(self, transfer_id: str) -> Dict[str, Any]:
        transfer = await self._require(AccountTransfer, transfer_id, "Account transfer")
        outcome = await self._unpost(transfer, transfer.source_account_id, transfer.destination_account_id)
        logger.info("Transfer %s deleted", transfer_id)
        return outcome
