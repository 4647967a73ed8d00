"""
Finance Entry API Endpoints.

Create and delete the source records that feed the ledger: income,
expenditure, account transfers and liabilities.
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from finance_backend.app.db.session import get_db
from finance_backend.app.core.dependencies import get_balance_cache, require_writable_schema
from finance_backend.app.core.guards import require_finance_writer
from finance_backend.app.schemas.source_records import (
    ExpenditureCreate, ExpenditureResponse, IncomeCreate, IncomeResponse, LiabilityCreate,
    LiabilityPaymentCreate, LiabilityResponse, SourceRecordWriteResponse, TransferCreate, TransferResponse,
)
from finance_backend.app.services.audit import AuditAction, log_event
from finance_backend.app.services.cache import BalanceCache
from finance_backend.app.services.source_records import SourceRecordService

router = APIRouter(prefix="/finance", tags=["Finance"])


def _write_response(outcome: dict, schema, message: str) -> dict:
    response = {
        "success": True,
        "message": message,
        "record": schema.model_validate(outcome["record"]).model_dump(mode="json"),
        "ledger_tables": outcome["ledger_tables"],
        "balances": outcome["balances"],
    }
    if outcome.get("liability") is not None:
        response["record"]["liability"] = LiabilityResponse.model_validate(outcome["liability"]).model_dump(mode="json")
    return response


@router.post("/income", response_model=SourceRecordWriteResponse, status_code=status.HTTP_201_CREATED)
async def create_income(
    request: IncomeCreate,
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """Record income and post it to the account ledger."""
    outcome = await SourceRecordService(db, cache).create_income(request)
    entry = outcome["record"]

    await log_event(
        db=db,
        action=AuditAction.INCOME_CREATED,
        actor=current_user,
        entity_type="income_entry",
        entity_id=entry.id,
        metadata={"account_id": entry.account_id, "amount": entry.amount},
    )

    return _write_response(outcome, IncomeResponse, "Income recorded")


@router.delete("/income/{income_id}", response_model=SourceRecordWriteResponse)
async def delete_income(
    income_id: str = Path(..., description="Income entry ID"),
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete an income entry and its ledger entries.

    Opening-balance, loan, budget and asset-disposal income cannot be
    deleted here (409).
    """
    outcome = await SourceRecordService(db, cache).delete_income(income_id)
    entry = outcome["record"]

    await log_event(
        db=db,
        action=AuditAction.INCOME_DELETED,
        actor=current_user,
        entity_type="income_entry",
        entity_id=income_id,
        metadata={"account_id": entry.account_id, "amount": entry.amount},
    )

    return _write_response(outcome, IncomeResponse, "Income deleted")


@router.post("/expenditures", response_model=SourceRecordWriteResponse, status_code=status.HTTP_201_CREATED)
async def create_expenditure(
    request: ExpenditureCreate,
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """Record an expenditure and post it to the account ledger."""
    outcome = await SourceRecordService(db, cache).create_expenditure(request)
    entry = outcome["record"]

    await log_event(
        db=db,
        action=AuditAction.EXPENDITURE_CREATED,
        actor=current_user,
        entity_type="expenditure_entry",
        entity_id=entry.id,
        metadata={"account_id": entry.account_id, "amount": entry.amount},
    )

    return _write_response(outcome, ExpenditureResponse, "Expenditure recorded")


@router.delete("/expenditures/{expenditure_id}", response_model=SourceRecordWriteResponse)
async def delete_expenditure(
    expenditure_id: str = Path(..., description="Expenditure entry ID"),
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete an expenditure and its ledger entries.

    A liability payment is reversed on its liability first.
    """
    outcome = await SourceRecordService(db, cache).delete_expenditure(expenditure_id)
    entry = outcome["record"]

    await log_event(
        db=db,
        action=AuditAction.EXPENDITURE_DELETED,
        actor=current_user,
        entity_type="expenditure_entry",
        entity_id=expenditure_id,
        metadata={
            "account_id": entry.account_id,
            "amount": entry.amount,
            "liability_id": entry.liability_id,
        },
    )

    return _write_response(outcome, ExpenditureResponse, "Expenditure deleted")


@router.post("/transfers", response_model=SourceRecordWriteResponse, status_code=status.HTTP_201_CREATED)
async def create_transfer(
    request: TransferCreate,
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """Move money between two accounts."""
    outcome = await SourceRecordService(db, cache).create_transfer(request, created_by=current_user.get("sub"))
    transfer = outcome["record"]

    await log_event(
        db=db,
        action=AuditAction.TRANSFER_CREATED,
        actor=current_user,
        entity_type="account_transfer",
        entity_id=transfer.id,
        metadata={
            "source_account_id": transfer.source_account_id,
            "destination_account_id": transfer.destination_account_id,
            "amount": transfer.amount,
        },
    )

    return _write_response(outcome, TransferResponse, "Transfer recorded")


@router.delete("/transfers/{transfer_id}", response_model=SourceRecordWriteResponse)
async def delete_transfer(
    transfer_id: str = Path(..., description="Account transfer ID"),
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """Delete a transfer and both of its ledger entries."""
    outcome = await SourceRecordService(db, cache).delete_transfer(transfer_id)

    await log_event(
        db=db,
        action=AuditAction.TRANSFER_DELETED,
        actor=current_user,
        entity_type="account_transfer",
        entity_id=transfer_id,
    )

    return _write_response(outcome, TransferResponse, "Transfer deleted")


@router.post("/liabilities", response_model=SourceRecordWriteResponse, status_code=status.HTTP_201_CREATED)
async def create_liability(
    request: LiabilityCreate,
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """Record a liability. Loans paid into an account also post the proceeds as income."""
    outcome = await SourceRecordService(db, cache).create_liability(request)
    liability = outcome["record"]

    await log_event(
        db=db,
        action=AuditAction.LIABILITY_CREATED,
        actor=current_user,
        entity_type="liability_entry",
        entity_id=liability.id,
        metadata={"total_amount": liability.total_amount, "is_loan": liability.is_loan},
    )

    return _write_response(outcome, LiabilityResponse, "Liability recorded")


@router.post(
    "/liabilities/{liability_id}/payments",
    response_model=SourceRecordWriteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_liability_payment(
    request: LiabilityPaymentCreate,
    liability_id: str = Path(..., description="Liability ID"),
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """Pay down a liability from an account."""
    outcome = await SourceRecordService(db, cache).record_liability_payment(liability_id, request)
    payment = outcome["record"]

    await log_event(
        db=db,
        action=AuditAction.LIABILITY_PAYMENT_RECORDED,
        actor=current_user,
        entity_type="liability_entry",
        entity_id=liability_id,
        metadata={
            "expenditure_id": payment.id,
            "amount": payment.amount,
            "status": outcome["liability"].status.value,
        },
    )

    return _write_response(outcome, ExpenditureResponse, "Liability payment recorded")
