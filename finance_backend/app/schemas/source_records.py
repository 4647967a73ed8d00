"""
Source record schemas.

Request and response models for income, expenditure, transfers and
liabilities.
"""

from pydantic import BaseModel, Field, model_validator
from datetime import date, datetime
from typing import Optional, List, Dict, Any
from finance_backend.app.models.finance_enums import LiabilityStatus
from finance_backend.app.schemas.account import BalanceRecalculationResponse


class IncomeCreate(BaseModel):
    """Schema for recording income."""
    date: date
    amount: float = Field(..., gt=0)
    account_id: str = Field(..., min_length=1, max_length=36)
    description: Optional[str] = Field(None, max_length=1000)
    category_id: Optional[str] = None
    payment_method: str = Field("cash", max_length=50)
    member_id: Optional[str] = None
    payment_details: Optional[Dict[str, Any]] = None
    budget_item_id: Optional[str] = None


class ExpenditureCreate(BaseModel):
    """Schema for recording an expenditure."""
    date: date
    amount: float = Field(..., gt=0)
    account_id: str = Field(..., min_length=1, max_length=36)
    description: Optional[str] = Field(None, max_length=1000)
    recipient: Optional[str] = Field(None, max_length=255)
    category_id: Optional[str] = None
    payment_method: str = Field("cash", max_length=50)
    budget_item_id: Optional[str] = None


class TransferCreate(BaseModel):
    """Schema for moving money between accounts."""
    date: date
    amount: float = Field(..., gt=0)
    source_account_id: str = Field(..., min_length=1, max_length=36)
    destination_account_id: str = Field(..., min_length=1, max_length=36)
    description: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def accounts_differ(self):
        if self.source_account_id == self.destination_account_id:
            raise ValueError("Source and destination accounts must be different")
        return self


class LiabilityCreate(BaseModel):
    """
    Schema for recording a liability.

    A loan with `account_id` also records the loan proceeds as income on
    that account.
    """
    date: date
    creditor_name: str = Field(..., min_length=1, max_length=255)
    total_amount: float = Field(..., gt=0)
    details: Optional[str] = None
    due_date: Optional[date] = None
    is_loan: bool = False
    account_id: Optional[str] = None
    category_id: Optional[str] = None


class LiabilityPaymentCreate(BaseModel):
    """Schema for paying down a liability."""
    amount: float = Field(..., gt=0)
    account_id: str = Field(..., min_length=1, max_length=36)
    payment_date: date
    payment_method: str = Field("cash", max_length=50)
    description: Optional[str] = Field(None, max_length=1000)
    category_id: Optional[str] = None


class IncomeResponse(BaseModel):
    id: str
    date: date
    amount: float
    account_id: Optional[str]
    description: Optional[str]
    payment_method: str
    category_id: Optional[str] = None
    budget_item_id: Optional[str] = None
    reconciliation_id: Optional[str] = None
    is_reconciliation_adjustment: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class ExpenditureResponse(BaseModel):
    id: str
    date: date
    amount: float
    account_id: Optional[str]
    description: Optional[str]
    recipient: Optional[str] = None
    payment_method: str
    liability_payment: bool = False
    liability_id: Optional[str] = None
    budget_item_id: Optional[str] = None
    reconciliation_id: Optional[str] = None
    is_reconciliation_adjustment: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class TransferResponse(BaseModel):
    id: str
    date: date
    amount: float
    source_account_id: str
    destination_account_id: str
    description: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class LiabilityResponse(BaseModel):
    id: str
    date: date
    creditor_name: str
    total_amount: float
    amount_paid: float
    amount_remaining: float
    due_date: Optional[date]
    status: LiabilityStatus
    is_loan: bool

    class Config:
        from_attributes = True


class SourceRecordWriteResponse(BaseModel):
    """Result of a source-record write: the record plus ledger and balance effects."""
    success: bool = True
    message: str
    record: Dict[str, Any]
    ledger_tables: List[str] = []
    balances: List[BalanceRecalculationResponse] = []
