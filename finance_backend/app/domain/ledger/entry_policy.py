"""
Deletion policy for source records.

Some income and expenditure entries are generated by other parts of the
finance module (opening balances, loans, budgets, asset disposals) and must
not be deleted by hand. The storage layer does not enforce this; the
finance write path checks `income_block_reason` and
`expenditure_block_reason` before deleting.

Reconciliation adjustments are always deletable.
"""

from typing import Any, Mapping, Optional

OPENING_BALANCE_MARKERS = ("opening balance", "[bal c/d]")
LOAN_DESCRIPTION_PREFIX = "loan from"
LOAN_SOURCES = {"liability", "loan"}
ASSET_DISPOSAL = "asset_disposal"

ADJUSTMENT_DESCRIPTION_PREFIX = "[RECONCILIATION]"
ADJUSTMENT_PAYMENT_METHOD = "reconciliation"


def _details(entry: Any) -> Mapping[str, Any]:
    details = getattr(entry, "payment_details", None)
    return details if isinstance(details, Mapping) else {}


def is_reconciliation_adjustment(entry: Any) -> bool:
    """Flagged adjustments, plus older ones marked only by payment method or description."""
    if getattr(entry, "is_reconciliation_adjustment", False):
        return True
    if getattr(entry, "payment_method", None) == ADJUSTMENT_PAYMENT_METHOD:
        return True
    description = getattr(entry, "description", None) or ""
    return description.startswith(ADJUSTMENT_DESCRIPTION_PREFIX)


def income_block_reason(entry: Any) -> Optional[str]:
    """Reason an income entry may not be deleted, or None."""
    if is_reconciliation_adjustment(entry):
        return None

    description = (getattr(entry, "description", None) or "").strip().lower()
    details = _details(entry)

    if details.get("type") == "opening_balance" or any(m in description for m in OPENING_BALANCE_MARKERS):
        return "opening balance entries are managed by the account"

    if description.startswith(LOAN_DESCRIPTION_PREFIX) or details.get("source") in LOAN_SOURCES:
        return "loan income is managed by its liability"

    if getattr(entry, "budget_item_id", None):
        return "budget-derived entries are managed by the budget"

    if getattr(entry, "payment_method", None) == ASSET_DISPOSAL or details.get("source") == ASSET_DISPOSAL:
        return "asset disposal income is managed by the asset register"

    return None


def expenditure_block_reason(entry: Any) -> Optional[str]:
    """Reason an expenditure entry may not be deleted, or None."""
    if is_reconciliation_adjustment(entry):
        return None

    if getattr(entry, "budget_item_id", None):
        return "budget-derived entries are managed by the budget"

    return None
