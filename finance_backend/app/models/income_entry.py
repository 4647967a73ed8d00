"""
Income Entry database model.

Source record for money received (offerings, tithes, loan proceeds,
asset disposals, opening balances).
"""

from sqlalchemy import Column, String, Float, Boolean, Date, DateTime, ForeignKey, JSON, Text
from sqlalchemy.sql import func
from finance_backend.app.db.session import Base
from finance_backend.app.models.account import new_uuid


class IncomeEntry(Base):
    """
    Income Entry model.

    Each entry with an account_id derives exactly one `income` ledger entry
    per ledger table. `amount` is stored unsigned.
    """
    __tablename__ = "income_entries"

    id = Column(String(36), primary_key=True, default=new_uuid)
    date = Column(Date, nullable=False, index=True)
    category_id = Column(String(36), nullable=True)
    description = Column(Text, nullable=True)
    amount = Column(Float, nullable=False)
    payment_method = Column(String(50), nullable=False, default="cash")

    account_id = Column(String(36), ForeignKey('accounts.id'), nullable=True, index=True)
    member_id = Column(String(36), nullable=True)

    # Free-form metadata (e.g. {"type": "opening_balance"} or {"source": "liability"})
    payment_details = Column(JSON, nullable=True)

    budget_item_id = Column(String(36), nullable=True)
    reconciliation_id = Column(String(36), nullable=True)
    is_reconciliation_adjustment = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<IncomeEntry(id={self.id}, amount={self.amount}, account_id={self.account_id})>"
