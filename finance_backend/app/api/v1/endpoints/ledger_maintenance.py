"""
Ledger Maintenance API Endpoints (admin-only).

Schema bootstrap, ledger resynchronization and the audit trail.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from finance_backend.app.db.session import get_db
from finance_backend.app.core.dependencies import get_balance_cache, get_bootstrapper, require_writable_schema
from finance_backend.app.core.guards import require_admin
from finance_backend.app.schemas.maintenance import AuditLogResponse, BootstrapResponse, LedgerSyncResponse
from finance_backend.app.services.audit import AuditAction, get_audit_trail, log_event
from finance_backend.app.services.bootstrap import SchemaBootstrapper
from finance_backend.app.services.cache import BalanceCache
from finance_backend.app.services.ledger_sync import TransactionLogSynchronizer

router = APIRouter(prefix="/admin/ledger", tags=["Admin - Ledger"])


@router.post("/bootstrap", response_model=BootstrapResponse)
async def bootstrap_ledger_schema(
    admin: dict = Depends(require_admin),
    bootstrapper: SchemaBootstrapper = Depends(get_bootstrapper),
    db: AsyncSession = Depends(get_db)
):
    """Create missing finance tables and recreate the ledger union view."""
    report = await bootstrapper.ensure()

    await log_event(
        db=db,
        action=AuditAction.LEDGER_BOOTSTRAPPED,
        actor=admin,
        entity_type="ledger",
        metadata={"tables_ready": report.tables_ready, "view_ready": report.view_ready, "error": report.error},
    )

    return report.dict()


@router.post("/sync", response_model=LedgerSyncResponse)
async def sync_ledger(
    recalculate: bool = Query(False, description="Recalculate every account balance after syncing"),
    admin: dict = Depends(require_admin),
    schema=Depends(require_writable_schema),
    cache: BalanceCache = Depends(get_balance_cache),
    db: AsyncSession = Depends(get_db)
):
    """
    Backfill ledger entries from income, expenditure and transfers, then
    copy rows missing from either ledger table into the other.

    Safe to repeat: rows already present are skipped.
    """
    synchronizer = TransactionLogSynchronizer(db)
    reports = await synchronizer.sync_all()
    inserted = sum(r.inserted for r in reports)

    if inserted:
        await cache.clear()
    if recalculate:
        await synchronizer.recalculate_all_balances(cache)

    await log_event(
        db=db,
        action=AuditAction.LEDGER_SYNCED,
        actor=admin,
        entity_type="ledger",
        metadata={"inserted": inserted, "recalculated": recalculate},
    )

    return {
        "success": all(r.success for r in reports),
        "inserted": inserted,
        "reports": [r.dict() for r in reports],
    }


@router.get("/audit", response_model=List[AuditLogResponse])
async def list_audit_trail(
    entity_id: Optional[str] = Query(None, description="Only events for this record"),
    action: Optional[str] = Query(None, description="Only events with this action"),
    limit: int = Query(100, ge=1, le=1000),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Recent audit events, most recent first."""
    return await get_audit_trail(db, entity_id=entity_id, action=action, limit=limit)
