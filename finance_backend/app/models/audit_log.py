"""
Audit Log Database Model.

Tracks finance write operations and which storage path served them.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from finance_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for finance operations.

    Events logged:
    - BALANCE_RECALCULATED (with the persistence path used)
    - LEDGER_SYNCED / LEDGER_BOOTSTRAPPED
    - RECONCILIATION_UPDATED / RECONCILIATION_SESSION_* / RECONCILIATION_ADJUSTED
    - *_CREATED / *_DELETED for source records
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(String(64), index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # What it was performed on
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(36), index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
