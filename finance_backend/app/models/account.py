"""
Account database model.

Financial accounts (cash box, bank account, mobile money wallet) that
ledger entries are posted against.
"""

import uuid
from sqlalchemy import Column, String, Float, Boolean, DateTime, Enum, Text
from sqlalchemy.sql import func
from finance_backend.app.db.session import Base
from finance_backend.app.models.finance_enums import AccountType


def new_uuid() -> str:
    return str(uuid.uuid4())


class Account(Base):
    """
    Account model.

    `balance` is a cached value written by the recalculation path. It may be
    stale or null and is never read as the current balance; the calculator
    recomputes from opening_balance + ledger entries.
    """
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(255), nullable=False)
    account_type = Column(Enum(AccountType), default=AccountType.CASH, nullable=False)

    # Bank metadata
    account_number = Column(String(100), nullable=True)
    bank_name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)

    # Financials
    opening_balance = Column(Float, default=0.0, nullable=True)
    balance = Column(Float, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Account(id={self.id}, name='{self.name}', opening_balance={self.opening_balance})>"
