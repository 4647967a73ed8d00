"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from finance_backend.app.api.v1.endpoints import (
    accounts, reconciliation, finance_entries, ledger_maintenance
)

router = APIRouter()

# Balances and ledger reads
router.include_router(accounts.router)

# Bank reconciliation
router.include_router(reconciliation.router)

# Income, expenditure, transfers, liabilities
router.include_router(finance_entries.router)

# Admin ledger maintenance
router.include_router(ledger_maintenance.router)
