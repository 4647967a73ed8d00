"""
Bank reconciliation database models.

A session (`bank_reconciliations`) and the two status tables that record
which ledger entries were cleared in it. The third status store is the flag
column set on `account_tx_table`.
"""

from sqlalchemy import (
    Column, String, Float, Boolean, Date, DateTime, ForeignKey, Enum, Text, UniqueConstraint
)
from sqlalchemy.sql import func
from finance_backend.app.db.session import Base
from finance_backend.app.models.account import new_uuid
from finance_backend.app.models.finance_enums import ReconciliationStatus


class BankReconciliation(Base):
    """
    Reconciliation session.

    Matches ledger entries of one account for a statement period against the
    bank's closing balance.
    """
    __tablename__ = "bank_reconciliations"

    id = Column(String(36), primary_key=True, default=new_uuid)
    account_id = Column(String(36), ForeignKey('accounts.id'), nullable=False, index=True)

    # Statement period
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    bank_balance = Column(Float, nullable=False)
    book_balance = Column(Float, nullable=False, default=0.0)
    difference = Column(Float, nullable=False, default=0.0)

    status = Column(Enum(ReconciliationStatus), default=ReconciliationStatus.IN_PROGRESS, nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<BankReconciliation(id={self.id}, account_id={self.account_id}, status='{self.status.value}')>"


class TransactionReconciliation(Base):
    """Session link table. One row per (transaction, session)."""
    __tablename__ = "transaction_reconciliations"
    __table_args__ = (
        UniqueConstraint("transaction_id", "reconciliation_id", name="uq_transaction_reconciliation"),
    )

    id = Column(String(36), primary_key=True, default=new_uuid)
    transaction_id = Column(String(36), nullable=False, index=True)
    reconciliation_id = Column(String(36), nullable=False, index=True)
    is_reconciled = Column(Boolean, default=False, nullable=False)
    reconciled_at = Column(DateTime(timezone=True), nullable=True)


class ReconciliationItem(Base):
    """Generic reconciliation item. Weak reference to a ledger entry by id."""
    __tablename__ = "reconciliation_items"

    id = Column(String(36), primary_key=True, default=new_uuid)
    reconciliation_id = Column(String(36), ForeignKey('bank_reconciliations.id'), nullable=False, index=True)
    transaction_id = Column(String(36), nullable=True, index=True)
    transaction_type = Column(String(50), nullable=True)
    amount = Column(Float, nullable=True)
    date = Column(Date, nullable=True)
    is_cleared = Column(Boolean, default=False, nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
