"""
Finance enumerations for accounts, ledger entries and reconciliation.
"""

import enum


class AccountType(str, enum.Enum):
    """Account type enumeration."""
    CASH = "cash"
    BANK = "bank"
    MOBILE_MONEY = "mobile_money"
    OTHER = "other"


class TransactionType(str, enum.Enum):
    """Ledger entry type enumeration."""
    INCOME = "income"  # Money entering the account
    EXPENDITURE = "expenditure"  # Money leaving the account
    TRANSFER_IN = "transfer_in"  # Received from another account
    TRANSFER_OUT = "transfer_out"  # Sent to another account

    @property
    def is_inflow(self) -> bool:
        return self in (TransactionType.INCOME, TransactionType.TRANSFER_IN)


class ReferenceType(str, enum.Enum):
    """Kind of source record a ledger entry points back to."""
    INCOME_ENTRY = "income_entry"
    EXPENDITURE_ENTRY = "expenditure_entry"
    TRANSFER_OUT = "account_transfer_out"
    TRANSFER_IN = "account_transfer_in"


class LiabilityStatus(str, enum.Enum):
    """Liability status enumeration."""
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class ReconciliationStatus(str, enum.Enum):
    """Reconciliation session status: IN_PROGRESS -> COMPLETED."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
