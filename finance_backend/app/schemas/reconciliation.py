"""
Reconciliation schemas.

Request and response models for sessions and status toggling.
"""

from pydantic import BaseModel, Field, model_validator
from datetime import date
from typing import Literal, Optional, List
from finance_backend.app.models.finance_enums import ReconciliationStatus
from finance_backend.app.schemas.account import LedgerEntryResponse
from finance_backend.app.schemas.source_records import SourceRecordWriteResponse


class ReconciliationSessionCreate(BaseModel):
    """Schema for opening a reconciliation session."""
    account_id: str = Field(..., min_length=1, max_length=36)
    start_date: date
    end_date: date
    bank_balance: float
    notes: Optional[str] = None


class ReconciliationSessionResponse(BaseModel):
    id: str
    account_id: str
    start_date: date
    end_date: date
    bank_balance: float
    book_balance: float
    difference: float
    status: ReconciliationStatus
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class ReconciliationSummaryResponse(BaseModel):
    reconciliation_id: str
    account_id: str
    start_date: date
    end_date: date
    status: str
    bank_balance: float
    book_balance: float
    difference: float
    opening_balance: float
    cleared_total: float
    cleared_count: int
    uncleared_count: int
    cleared_balance: float
    unreconciled_difference: float


class ReconciliationTransaction(LedgerEntryResponse):
    is_reconciled: bool = False
    reconciliation_id: Optional[str] = None


class ReconciliationTransactionsResponse(BaseModel):
    data: List[ReconciliationTransaction]


class ReconcileRequest(BaseModel):
    """
    Toggle request. Either a single `transaction_id` or a list in
    `transaction_ids`.
    """
    transaction_id: Optional[str] = None
    transaction_ids: Optional[List[str]] = None
    is_reconciled: bool
    reconciliation_id: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def one_target(self):
        if not self.transaction_id and not self.transaction_ids:
            raise ValueError("transaction_id or transaction_ids is required")
        return self

    @property
    def ids(self) -> List[str]:
        return list(self.transaction_ids) if self.transaction_ids else [self.transaction_id]


class ReconcileItemResult(BaseModel):
    transaction_id: str
    success: bool
    stores: List[str]
    errors: List[str]


class ReconcileFailure(BaseModel):
    transaction_id: str
    error: str


class ReconcileResponse(BaseModel):
    success: bool
    message: str
    results: List[ReconcileItemResult]
    failed: List[ReconcileFailure]


class ReconciliationAdjustmentCreate(BaseModel):
    """
    Schema for an adjustment entry posted from a session.

    Income raises the book balance, expenditure lowers it.
    """
    adjustment_type: Literal["income", "expenditure"]
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=3, max_length=1000)
    category_id: Optional[str] = None


class ReconciliationAdjustmentResponse(SourceRecordWriteResponse):
    reconciliation: ReconciliationSessionResponse
