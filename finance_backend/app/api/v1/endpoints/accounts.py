"""
Account API Endpoints.

Balance reads, ledger listing and balance recalculation.
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from finance_backend.app.db.session import get_db
from finance_backend.app.core.dependencies import get_balance_cache, get_current_user, require_writable_schema
from finance_backend.app.core.guards import require_admin, require_finance_writer
from finance_backend.app.domain.ledger.balance_calculator import summarize_transactions
from finance_backend.app.schemas.account import (
    AccountBalanceResponse, AccountTransactionsResponse, BalanceRecalculationResponse,
    RecalculateAllResponse, RecalculateBalanceRequest,
)
from finance_backend.app.services.audit import AuditAction, log_event
from finance_backend.app.services.balance_service import BalanceService
from finance_backend.app.services.cache import BalanceCache
from finance_backend.app.services.ledger_reader import LedgerReader

router = APIRouter(prefix="/accounts", tags=["Accounts"])


@router.get("/{account_id}/balance", response_model=AccountBalanceResponse)
async def get_account_balance(
    account_id: str = Path(..., description="Account ID"),
    current_user: dict = Depends(get_current_user),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """
    Current balance of an account, recomputed from its ledger.

    Never fails on schema problems: a missing account or unreadable ledger
    yields a balance of 0.
    """
    return await BalanceService(db, cache).current_balance(account_id)


@router.get("/{account_id}/transactions", response_model=AccountTransactionsResponse)
async def list_account_transactions(
    account_id: str = Path(..., description="Account ID"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Ledger entries of an account in a date range, newest first, with totals."""
    ledger = await LedgerReader(db).entries_for_account(account_id, start_date, end_date)

    return {
        "account_id": account_id,
        "source": ledger.strategy,
        "data": ledger.value,
        "summary": summarize_transactions(ledger.value).dict(),
    }


@router.post("/recalculate-all", response_model=RecalculateAllResponse)
async def recalculate_all_balances(
    admin: dict = Depends(require_admin),
    schema=Depends(require_writable_schema),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """Recalculate and persist every account balance (admin-only)."""
    results = await BalanceService(db, cache).recalculate_all()
    failed = [r for r in results if not r["success"]]

    await log_event(
        db=db,
        action=AuditAction.BALANCES_RECALCULATED,
        actor=admin,
        entity_type="account",
        metadata={"accounts": len(results), "failed": len(failed)},
    )

    if not results:
        message = "No accounts found to recalculate"
    else:
        message = f"Recalculated {len(results) - len(failed)} of {len(results)} account balance(s)"

    return {"success": not failed, "message": message, "results": results}


@router.post("/{account_id}/recalculate-balance", response_model=BalanceRecalculationResponse)
async def recalculate_account_balance(
    response: Response,
    account_id: str = Path(..., description="Account ID"),
    request: Optional[RecalculateBalanceRequest] = Body(None),
    current_user: dict = Depends(require_finance_writer),
    schema=Depends(require_writable_schema),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """
    Recompute an account balance from its ledger and persist it.

    `persisted_via` names the write path that stored the balance. When no
    path succeeds the computed balance is still returned with
    `success: false` and status 503.
    """
    if request is not None and request.accountId and request.accountId != account_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="accountId in body does not match the path"
        )

    result = await BalanceService(db, cache).recalculate(account_id)

    await log_event(
        db=db,
        action=AuditAction.BALANCE_RECALCULATED,
        actor=current_user,
        entity_type="account",
        entity_id=account_id,
        metadata={
            "success": result["success"],
            "balance": result["balance"],
            "persisted_via": result["persisted_via"],
            "source": result["source"],
        },
    )

    if not result["success"]:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return result
