"""
Account balance and ledger schemas.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Optional, List


class AccountBalanceResponse(BaseModel):
    """Read-path balance of an account."""
    account_id: str
    balance: float
    opening_balance: float
    account_found: bool
    transaction_count: int
    source: str = Field(..., description="Ledger source that served the read")
    cached: bool = False


class RecalculateBalanceRequest(BaseModel):
    """Body of the recalculate endpoint. `accountId` must match the path if sent."""
    accountId: Optional[str] = None


class BalanceRecalculationResponse(BaseModel):
    """Outcome of a balance recalculation."""
    account_id: str
    success: bool
    balance: Optional[float]
    message: str
    persisted_via: Optional[str] = None
    source: Optional[str] = None
    account_name: Optional[str] = None


class RecalculateAllResponse(BaseModel):
    success: bool
    message: str
    results: List[BalanceRecalculationResponse]


class LedgerEntryResponse(BaseModel):
    id: str
    account_id: str
    date: date
    amount: float
    description: Optional[str]
    transaction_type: str
    reference_id: Optional[str]
    reference_type: Optional[str]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TransactionSummaryResponse(BaseModel):
    total_inflow: float
    total_outflow: float
    transfers_in: float
    transfers_out: float
    loan_inflow: float
    net_change: float
    count: int


class AccountTransactionsResponse(BaseModel):
    account_id: str
    source: str
    data: List[LedgerEntryResponse]
    summary: TransactionSummaryResponse
