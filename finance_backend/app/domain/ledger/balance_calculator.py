"""
Account Balance Calculator (Domain Logic).

Pure functions, no I/O. The current balance of an account is always
opening_balance + sum of its signed ledger amounts; callers fetch the
account and its entries and call `calculate_balance` rather than trusting
the cached `accounts.balance` column.
"""

import math
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Union

from finance_backend.app.models.finance_enums import TransactionType

Record = Union[Mapping[str, Any], Any]

CENT = Decimal("0.01")

LOAN_DESCRIPTION_PREFIX = "loan from"


def _field(record: Record, name: str, default: Any = None) -> Any:
    if record is None:
        return default
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def to_amount(value: Any) -> Decimal:
    """Numeric value of an amount; missing or non-numeric contributes 0."""
    if value is None or isinstance(value, bool):
        return Decimal(0)
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal(0)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return Decimal(0)
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except ArithmeticError:
            return Decimal(0)
        return parsed if parsed.is_finite() else Decimal(0)
    return Decimal(0)


def round_money(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def signed_amount(transaction_type: Union[TransactionType, str], amount: Any) -> float:
    """
    Apply the sign convention used when a ledger entry is derived.

    income and transfer_in are positive; expenditure and transfer_out negative.
    """
    magnitude = abs(to_amount(amount))
    if TransactionType(transaction_type).is_inflow:
        return round_money(magnitude)
    return round_money(-magnitude)


def calculate_balance(account: Record, transactions: Iterable[Record]) -> float:
    """
    Current balance of an account.

    Args:
        account: Account row or mapping; `opening_balance` defaults to 0
        transactions: Ledger entries of the account; amounts already signed

    Returns:
        opening_balance + sum(amount), rounded to cents
    """
    total = to_amount(_field(account, "opening_balance", 0))
    for transaction in transactions:
        total += to_amount(_field(transaction, "amount"))
    return round_money(total)


@dataclass
class TransactionSummary:
    total_inflow: float = 0.0
    total_outflow: float = 0.0
    transfers_in: float = 0.0
    transfers_out: float = 0.0
    loan_inflow: float = 0.0
    net_change: float = 0.0
    count: int = 0

    def dict(self) -> dict:
        return asdict(self)


def summarize_transactions(transactions: Iterable[Record]) -> TransactionSummary:
    """
    Totals for a list of ledger entries.

    Outflow totals are reported as positive magnitudes. Income whose
    description starts with "Loan from" is counted in `loan_inflow` as well
    as in `total_inflow`.
    """
    inflow = outflow = transfers_in = transfers_out = loans = Decimal(0)
    count = 0

    for transaction in transactions:
        count += 1
        amount = to_amount(_field(transaction, "amount"))
        kind = _field(transaction, "transaction_type")

        if amount >= 0:
            inflow += amount
        else:
            outflow += -amount

        if kind == TransactionType.TRANSFER_IN.value:
            transfers_in += abs(amount)
        elif kind == TransactionType.TRANSFER_OUT.value:
            transfers_out += abs(amount)
        elif kind == TransactionType.INCOME.value:
            description = (_field(transaction, "description") or "").strip().lower()
            if description.startswith(LOAN_DESCRIPTION_PREFIX):
                loans += amount

    return TransactionSummary(
        total_inflow=round_money(inflow),
        total_outflow=round_money(outflow),
        transfers_in=round_money(transfers_in),
        transfers_out=round_money(transfers_out),
        loan_inflow=round_money(loans),
        net_change=round_money(inflow - outflow),
        count=count,
    )
