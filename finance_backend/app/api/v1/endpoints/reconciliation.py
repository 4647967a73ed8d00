"""
Reconciliation API Endpoints.

Sessions, transaction listing with cleared flags, status toggling and
adjustment entries.
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from finance_backend.app.db.session import get_db
from finance_backend.app.core.dependencies import get_balance_cache, get_current_user, require_writable_schema
from finance_backend.app.core.guards import require_finance_writer
from finance_backend.app.schemas.reconciliation import (
    ReconcileRequest, ReconcileResponse, ReconciliationAdjustmentCreate, ReconciliationAdjustmentResponse,
    ReconciliationSessionCreate, ReconciliationSessionResponse, ReconciliationSummaryResponse,
    ReconciliationTransactionsResponse,
)
from finance_backend.app.schemas.source_records import ExpenditureResponse, IncomeResponse
from finance_backend.app.services.audit import AuditAction, log_event
from finance_backend.app.services.cache import BalanceCache
from finance_backend.app.services.reconciliation import ReconciliationSessionManager
from finance_backend.app.services.source_records import SourceRecordService

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


@router.get("", response_model=ReconciliationTransactionsResponse)
async def list_reconciliation_transactions(
    account_id: str = Query(..., description="Account to reconcile"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    reconciliation_id: Optional[str] = Query(None, description="Session whose cleared flags to overlay"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Ledger entries of an account with their cleared status in a session."""
    data = await ReconciliationSessionManager(db).list_transactions(
        account_id, start_date, end_date, reconciliation_id
    )
    return {"data": data}


@router.post("", response_model=ReconcileResponse)
async def update_reconciliation_status(
    request: ReconcileRequest,
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    db: AsyncSession = Depends(get_db)
):
    """
    Mark one or more transactions reconciled or unreconciled.

    Items are processed independently; failures are listed in `failed`
    alongside the items that succeeded.
    """
    manager = ReconciliationSessionManager(db)
    if request.transaction_ids:
        result = await manager.set_reconciled(request.ids, request.reconciliation_id, request.is_reconciled)
    else:
        result = await manager.set_single_reconciled(
            request.transaction_id, request.reconciliation_id, request.is_reconciled
        )

    await log_event(
        db=db,
        action=AuditAction.RECONCILIATION_UPDATED,
        actor=current_user,
        entity_type="reconciliation",
        entity_id=request.reconciliation_id,
        metadata={
            "is_reconciled": request.is_reconciled,
            "transactions": request.ids,
            "failed": [f["transaction_id"] for f in result.failed],
        },
    )

    return result.dict()


@router.post("/sessions", response_model=ReconciliationSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_reconciliation_session(
    request: ReconciliationSessionCreate,
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    db: AsyncSession = Depends(get_db)
):
    """Open a reconciliation session for an account and statement period."""
    session = await ReconciliationSessionManager(db).create_session(
        request.account_id, request.start_date, request.end_date, request.bank_balance, request.notes
    )

    await log_event(
        db=db,
        action=AuditAction.RECONCILIATION_SESSION_CREATED,
        actor=current_user,
        entity_type="reconciliation",
        entity_id=session.id,
        metadata={
            "account_id": session.account_id,
            "bank_balance": session.bank_balance,
            "book_balance": session.book_balance,
        },
    )

    return session


@router.get("/sessions/{reconciliation_id}", response_model=ReconciliationSummaryResponse)
async def get_reconciliation_session(
    reconciliation_id: str = Path(..., description="Reconciliation ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Cleared totals and remaining difference of a session."""
    return await ReconciliationSessionManager(db).session_summary(reconciliation_id)


@router.post("/sessions/{reconciliation_id}/complete", response_model=ReconciliationSummaryResponse)
async def complete_reconciliation_session(
    reconciliation_id: str = Path(..., description="Reconciliation ID"),
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    db: AsyncSession = Depends(get_db)
):
    """Close a session whose cleared transactions match the bank balance."""
    summary = await ReconciliationSessionManager(db).complete_session(reconciliation_id)

    await log_event(
        db=db,
        action=AuditAction.RECONCILIATION_SESSION_COMPLETED,
        actor=current_user,
        entity_type="reconciliation",
        entity_id=reconciliation_id,
        metadata={"cleared_total": summary["cleared_total"], "cleared_count": summary["cleared_count"]},
    )

    return summary


@router.post(
    "/sessions/{reconciliation_id}/adjustments",
    response_model=ReconciliationAdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_reconciliation_adjustment(
    request: ReconciliationAdjustmentCreate,
    reconciliation_id: str = Path(..., description="Reconciliation ID"),
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """
    Post an income or expenditure adjustment for a session.

    The entry is cleared in the session and the book balance follows it.
    Deleting the entry through the finance endpoints reverses it.
    """
    outcome = await SourceRecordService(db, cache).create_reconciliation_adjustment(reconciliation_id, request)
    entry = outcome["record"]
    record_schema = IncomeResponse if request.adjustment_type == "income" else ExpenditureResponse

    await log_event(
        db=db,
        action=AuditAction.RECONCILIATION_ADJUSTED,
        actor=current_user,
        entity_type="reconciliation",
        entity_id=reconciliation_id,
        metadata={"entry_id": entry.id, "type": request.adjustment_type, "amount": entry.amount},
    )

    return {
        "success": True,
        "message": "Reconciliation adjustment recorded",
        "record": record_schema.model_validate(entry).model_dump(mode="json"),
        "ledger_tables": outcome["ledger_tables"],
        "balances": outcome["balances"],
        "reconciliation": ReconciliationSessionResponse.model_validate(outcome["reconciliation"]),
    }
