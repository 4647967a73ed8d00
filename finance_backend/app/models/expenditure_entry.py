"""
Expenditure Entry database model.

Source record for money paid out, including liability payments.
"""

from sqlalchemy import Column, String, Float, Boolean, Date, DateTime, ForeignKey, Text
from sqlalchemy.sql import func
from finance_backend.app.db.session import Base
from finance_backend.app.models.account import new_uuid


class ExpenditureEntry(Base):
    """
    Expenditure Entry model.

    Amount is stored unsigned; the derived ledger entry carries it negated.
    Liability payments are expenditures with `liability_payment=True`.
    """
    __tablename__ = "expenditure_entries"

    id = Column(String(36), primary_key=True, default=new_uuid)
    date = Column(Date, nullable=False, index=True)
    category_id = Column(String(36), nullable=True)
    description = Column(Text, nullable=True)
    amount = Column(Float, nullable=False)
    recipient = Column(String(255), nullable=True)
    payment_method = Column(String(50), nullable=False, default="cash")

    account_id = Column(String(36), ForeignKey('accounts.id'), nullable=True, index=True)

    # Liability linkage
    liability_payment = Column(Boolean, default=False, nullable=False)
    liability_id = Column(String(36), ForeignKey('liability_entries.id'), nullable=True, index=True)

    budget_item_id = Column(String(36), nullable=True)
    reconciliation_id = Column(String(36), nullable=True)
    is_reconciliation_adjustment = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<ExpenditureEntry(id={self.id}, amount={self.amount}, account_id={self.account_id})>"
