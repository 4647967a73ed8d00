"""
Audit logging service for finance operations.

Provides centralized logging of balance recalculations, ledger maintenance,
reconciliation changes and source-record writes.
"""

import logging
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from finance_backend.app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    """Standardized audit action constants."""
    # Balances
    BALANCE_RECALCULATED = "BALANCE_RECALCULATED"
    BALANCES_RECALCULATED = "BALANCES_RECALCULATED"

    # Ledger maintenance
    LEDGER_BOOTSTRAPPED = "LEDGER_BOOTSTRAPPED"
    LEDGER_SYNCED = "LEDGER_SYNCED"

    # Reconciliation
    RECONCILIATION_SESSION_CREATED = "RECONCILIATION_SESSION_CREATED"
    RECONCILIATION_SESSION_COMPLETED = "RECONCILIATION_SESSION_COMPLETED"
    RECONCILIATION_UPDATED = "RECONCILIATION_UPDATED"
    RECONCILIATION_ADJUSTED = "RECONCILIATION_ADJUSTED"

    # Source records
    INCOME_CREATED = "INCOME_CREATED"
    INCOME_DELETED = "INCOME_DELETED"
    EXPENDITURE_CREATED = "EXPENDITURE_CREATED"
    EXPENDITURE_DELETED = "EXPENDITURE_DELETED"
    TRANSFER_CREATED = "TRANSFER_CREATED"
    TRANSFER_DELETED = "TRANSFER_DELETED"
    LIABILITY_CREATED = "LIABILITY_CREATED"
    LIABILITY_PAYMENT_RECORDED = "LIABILITY_PAYMENT_RECORDED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor: Optional[dict] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[AuditLog]:
    """
    Log a finance event to the audit log.

    The operation being audited has already been committed, so a failure to
    write the audit row is logged and does not fail the request.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor: Decoded token payload of the caller (None for system actions)
        entity_type: Kind of record acted upon ("account", "income_entry", ...)
        entity_id: ID of the record acted upon
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance, or None if it could not be written
    """
    audit_log = AuditLog(
        actor_id=str(actor.get("user_id")) if actor and actor.get("user_id") is not None else None,
        actor_username=actor.get("sub") if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata,
    )

    try:
        async with db.begin_nested():
            db.add(audit_log)
        await db.commit()
        await db.refresh(audit_log)
    except SQLAlchemyError:
        logger.exception("Failed to write audit event %s for %s:%s", action, entity_type, entity_id)
        return None

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Args:
        db: Database session
        entity_id: Filter by entity ID
        action: Filter by action type
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
