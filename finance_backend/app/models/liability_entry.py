"""
Liability Entry database model.

Debts owed by the church. Payments are recorded as expenditure entries.
"""

from sqlalchemy import Column, String, Float, Boolean, Date, DateTime, Enum, Text
from sqlalchemy.sql import func
from finance_backend.app.db.session import Base
from finance_backend.app.models.account import new_uuid
from finance_backend.app.models.finance_enums import LiabilityStatus


class LiabilityEntry(Base):
    """
    Liability Entry model.

    Status follows amount_paid: UNPAID -> PARTIAL -> PAID.
    """
    __tablename__ = "liability_entries"

    id = Column(String(36), primary_key=True, default=new_uuid)
    date = Column(Date, nullable=False)
    category_id = Column(String(36), nullable=True)
    creditor_name = Column(String(255), nullable=False)
    details = Column(Text, nullable=True)

    # Financials
    total_amount = Column(Float, nullable=False)
    amount_paid = Column(Float, default=0.0, nullable=False)
    amount_remaining = Column(Float, nullable=False)

    due_date = Column(Date, nullable=True)
    status = Column(Enum(LiabilityStatus), default=LiabilityStatus.UNPAID, nullable=False, index=True)
    is_loan = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<LiabilityEntry(id={self.id}, status='{self.status.value}', remaining={self.amount_remaining})>"
