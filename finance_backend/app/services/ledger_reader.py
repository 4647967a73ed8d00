"""
Ledger read service.

Reads an account's ledger entries through an ordered list of strategies:
the union view first (authoritative), then both tables merged in Python,
then each table on its own. Read paths never fail on schema problems; when
every strategy fails the result is an empty, degraded list.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence
from sqlalchemy import Table, select
from sqlalchemy.ext.asyncio import AsyncSession
from finance_backend.app.core.reliability import AllStrategiesFailedError, FallbackChain, StrategyResult
from finance_backend.app.models.ledger_entry import (
    LEDGER_COLUMNS, AccountTransaction, AccountTxEntry, ledger_view,
)

logger = logging.getLogger(__name__)

TX_TABLE: Table = AccountTxEntry.__table__
LOG_TABLE: Table = AccountTransaction.__table__


def entry_key(entry: dict):
    """Composite (reference_id, reference_type) key, or None for unreferenced rows."""
    if entry.get("reference_id") is None or entry.get("reference_type") is None:
        return None
    return (entry["reference_id"], entry["reference_type"])


def merge_ledgers(primary: Iterable[dict], secondary: Iterable[dict]) -> List[dict]:
    """
    Union of two ledger row lists.

    All rows of `primary`, plus rows of `secondary` that match no primary row
    by id or by composite key. Same rule as the union view.
    """
    merged = list(primary)
    ids = {e["id"] for e in merged}
    keys = {entry_key(e) for e in merged} - {None}

    for entry in secondary:
        key = entry_key(entry)
        if entry["id"] in ids or (key is not None and key in keys):
            continue
        merged.append(entry)
        ids.add(entry["id"])
        if key is not None:
            keys.add(key)
    return merged


def newest_first(entries: List[dict]) -> List[dict]:
    return sorted(
        entries,
        key=lambda e: (e.get("date") or date.min, str(e.get("created_at") or ""), e["id"]),
        reverse=True,
    )


class LedgerReader:
    """Ledger entry reads with fallback across the view and both tables."""

    STRATEGIES = ("union_view", "merged_tables", "account_tx_table", "account_transactions")

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _select(
        self,
        table: Table,
        account_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        ids: Optional[Sequence[str]] = None,
    ) -> List[dict]:
        query = select(*[table.c[name] for name in LEDGER_COLUMNS])
        if account_id is not None:
            query = query.where(table.c.account_id == account_id)
        if start_date is not None:
            query = query.where(table.c.date >= start_date)
        if end_date is not None:
            query = query.where(table.c.date <= end_date)
        if ids is not None:
            query = query.where(table.c.id.in_(list(ids)))

        result = await self.db.execute(query)
        return [dict(row._mapping) for row in result]

    async def _merged(self, **filters) -> List[dict]:
        primary = await self._select(TX_TABLE, **filters)
        secondary = await self._select(LOG_TABLE, **filters)
        return merge_ledgers(primary, secondary)

    def _strategies(self, **filters):
        return [
            ("union_view", lambda: self._select(ledger_view, **filters)),
            ("merged_tables", lambda: self._merged(**filters)),
            ("account_tx_table", lambda: self._select(TX_TABLE, **filters)),
            ("account_transactions", lambda: self._select(LOG_TABLE, **filters)),
        ]

    async def _read(self, chain_name: str, **filters) -> StrategyResult:
        chain = FallbackChain(chain_name, session=self.db)
        try:
            result = await chain.run(self._strategies(**filters))
        except AllStrategiesFailedError as e:
            logger.warning("%s: no ledger source readable, returning empty result", chain_name)
            return StrategyResult(value=[], strategy="none", attempts=e.errors)

        result.value = newest_first(result.value)
        return result

    async def entries_for_account(
        self,
        account_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> StrategyResult:
        """
        Ledger entries of one account, newest first.

        Returns:
            StrategyResult whose `value` is a list of entry dicts and whose
            `strategy` names the source that served them
        """
        return await self._read(
            "ledger.read", account_id=account_id, start_date=start_date, end_date=end_date
        )

    async def entries_by_ids(self, ids: Sequence[str]) -> Dict[str, dict]:
        """Ledger entries keyed by id; ids that match no entry are absent."""
        if not ids:
            return {}
        result = await self._read("ledger.lookup", ids=list(ids))
        return {entry["id"]: entry for entry in result.value}
