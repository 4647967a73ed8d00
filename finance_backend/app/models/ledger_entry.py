"""
Ledger Entry database models.

Two parallel ledger tables exist for backward compatibility:
`account_transactions` (original log) and `account_tx_table` (log that also
carries reconciliation flags). Both must hold the same entries; the union
view `account_ledger_view` is the read-side representation.
"""

import uuid
from sqlalchemy import (
    Column, String, Float, Boolean, Date, DateTime, ForeignKey, Text, Index, MetaData, Table
)
from sqlalchemy.orm import declared_attr
from sqlalchemy.sql import func
from finance_backend.app.db.session import Base

# Namespace for deterministic ledger ids
LEDGER_ID_NAMESPACE = uuid.UUID("6f1c2a4e-8b1d-4c53-9a57-2f0d5e7c9b11")

LEDGER_COLUMNS = (
    "id", "account_id", "date", "amount", "description", "transaction_type",
    "reference_id", "reference_type", "created_at", "updated_at",
)


def ledger_entry_id(reference_type: str, reference_id: str) -> str:
    """
    Ledger id for a source record.

    Derived from (reference_type, reference_id) so the same source record gets
    the same id in both ledger tables.
    """
    return str(uuid.uuid5(LEDGER_ID_NAMESPACE, f"{reference_type}:{reference_id}"))


class LedgerEntryMixin:
    """Columns shared by both ledger tables."""

    id = Column(String(36), primary_key=True)

    @declared_attr
    def account_id(cls):
        return Column(String(36), ForeignKey('accounts.id'), nullable=False, index=True)

    date = Column(Date, nullable=False, index=True)

    # Signed: positive for inflow, negative for outflow
    amount = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    transaction_type = Column(String(50), nullable=False)

    # Pointer back to the source record
    reference_id = Column(String(36), nullable=True)
    reference_type = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class AccountTransaction(LedgerEntryMixin, Base):
    """Original ledger log."""
    __tablename__ = "account_transactions"
    __table_args__ = (
        Index("idx_account_transactions_reference", "reference_id", "reference_type"),
    )

    def __repr__(self):
        return f"<AccountTransaction(id={self.id}, type='{self.transaction_type}', amount={self.amount})>"


class AccountTxEntry(LedgerEntryMixin, Base):
    """Ledger log with per-entry reconciliation flag columns."""
    __tablename__ = "account_tx_table"
    __table_args__ = (
        Index("idx_account_tx_table_reference", "reference_id", "reference_type"),
    )

    is_reconciled = Column(Boolean, default=False, nullable=True)
    reconciled_at = Column(DateTime(timezone=True), nullable=True)
    reconciliation_id = Column(String(36), nullable=True, index=True)

    def __repr__(self):
        return f"<AccountTxEntry(id={self.id}, type='{self.transaction_type}', amount={self.amount})>"


LEDGER_MODELS = (AccountTxEntry, AccountTransaction)


# The view lives in its own MetaData so create_all/drop_all never touch it.
view_metadata = MetaData()

ledger_view = Table(
    "account_ledger_view",
    view_metadata,
    Column("id", String(36)),
    Column("account_id", String(36)),
    Column("date", Date),
    Column("amount", Float),
    Column("description", Text),
    Column("transaction_type", String(50)),
    Column("reference_id", String(36)),
    Column("reference_type", String(50)),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

_VIEW_COLUMNS = ", ".join(LEDGER_COLUMNS)

CREATE_LEDGER_VIEW_SQL = f"""
CREATE VIEW account_ledger_view AS
SELECT {_VIEW_COLUMNS} FROM account_tx_table
UNION ALL
SELECT {", ".join("a." + c for c in LEDGER_COLUMNS)} FROM account_transactions a
WHERE NOT EXISTS (
    SELECT 1 FROM account_tx_table t
    WHERE t.id = a.id
       OR (t.reference_id = a.reference_id AND t.reference_type = a.reference_type)
)
"""

DROP_LEDGER_VIEW_SQL = "DROP VIEW IF EXISTS account_ledger_view"
