"""
Account Transfer database model.

Moves money between two accounts; derives a transfer_out entry on the
source account and a transfer_in entry on the destination account.
"""

from sqlalchemy import Column, String, Float, Date, DateTime, ForeignKey, Text
from sqlalchemy.sql import func
from finance_backend.app.db.session import Base
from finance_backend.app.models.account import new_uuid


class AccountTransfer(Base):
    """Account Transfer model."""
    __tablename__ = "account_transfers"

    id = Column(String(36), primary_key=True, default=new_uuid)
    date = Column(Date, nullable=False, index=True)

    source_account_id = Column(String(36), ForeignKey('accounts.id'), nullable=False, index=True)
    destination_account_id = Column(String(36), ForeignKey('accounts.id'), nullable=False, index=True)

    amount = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return (
            f"<AccountTransfer(id={self.id}, {self.source_account_id} -> "
            f"{self.destination_account_id}, amount={self.amount})>"
        )
