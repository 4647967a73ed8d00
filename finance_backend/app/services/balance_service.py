"""
Account balance service.

Read path: recompute the balance from opening balance + ledger entries,
degrading to 0 rather than failing. Write path: recompute and persist the
result into `accounts.balance`, first through the stored procedure and then
by direct update.
"""

import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func
from finance_backend.app.core.config import settings
from finance_backend.app.core.exceptions import ResourceNotFoundError, StoreUnavailableError, raise_if_unavailable
from finance_backend.app.core.reliability import AllStrategiesFailedError, FallbackChain
from finance_backend.app.domain.ledger.balance_calculator import calculate_balance
from finance_backend.app.models.account import Account
from finance_backend.app.services.cache import BalanceCache
from finance_backend.app.services.ledger_reader import LedgerReader

logger = logging.getLogger(__name__)


class BalanceService:

    def __init__(self, db: AsyncSession, cache: Optional[BalanceCache] = None):
        self.db = db
        self.cache = cache
        self.reader = LedgerReader(db)

    async def _get_account(self, account_id: str) -> Optional[Account]:
        result = await self.db.execute(select(Account).where(Account.id == account_id))
        return result.scalar_one_or_none()

    async def _lookup_account(self, account_id: str) -> Optional[Account]:
        async with self.db.begin_nested():
            return await self._get_account(account_id)

    async def current_balance(self, account_id: str) -> Dict[str, Any]:
        """
        Read-path balance of an account.

        A missing account has opening balance 0 (`account_found` False). Store
        errors other than unavailability degrade to balance 0 and are logged.
        """
        if self.cache is not None:
            cached = await self.cache.get(account_id)
            if cached is not None:
                return {**cached, "cached": True}

        try:
            account = await self._lookup_account(account_id)
        except SQLAlchemyError as e:
            raise_if_unavailable(e)
            logger.warning("Balance read for %s degraded, account lookup failed: %s", account_id, e)
            return {
                "account_id": account_id,
                "balance": 0.0,
                "opening_balance": 0.0,
                "account_found": False,
                "transaction_count": 0,
                "source": "none",
                "cached": False,
            }

        ledger = await self.reader.entries_for_account(account_id)
        opening_balance = (account.opening_balance or 0.0) if account else 0.0

        value = {
            "account_id": account_id,
            "balance": calculate_balance({"opening_balance": opening_balance}, ledger.value),
            "opening_balance": opening_balance,
            "account_found": account is not None,
            "transaction_count": len(ledger.value),
            "source": ledger.strategy,
        }

        # Degraded reads are not cached so the next request retries the store
        if self.cache is not None and account is not None and ledger.strategy != "none":
            await self.cache.set(account_id, value)

        return {**value, "cached": False}

    async def _persist_via_procedure(self, account_id: str, balance: float) -> None:
        await self.db.execute(
            text(f"SELECT {settings.balance_procedure_name}(:account_id, :balance)"),
            {"account_id": account_id, "balance": balance},
        )

    async def _persist_direct(self, account_id: str, balance: float) -> None:
        await self.db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance=balance, updated_at=func.now())
        )

    async def recalculate(self, account_id: str) -> Dict[str, Any]:
        """
        Recompute an account balance and persist it.

        Returns:
            {account_id, success, balance, message, persisted_via, source}

        Raises:
            ResourceNotFoundError: if the account does not exist
        """
        try:
            account = await self._lookup_account(account_id)
        except SQLAlchemyError as e:
            raise_if_unavailable(e)
            logger.error("Recalculation of %s failed, account lookup error: %s", account_id, e)
            return {
                "account_id": account_id,
                "success": False,
                "balance": None,
                "message": f"Failed to load account: {e}",
                "persisted_via": None,
                "source": None,
            }

        if account is None:
            raise ResourceNotFoundError("Account", account_id)

        ledger = await self.reader.entries_for_account(account_id)
        balance = calculate_balance(account, ledger.value)

        strategies = []
        if settings.balance_procedure_name:
            strategies.append(("stored_procedure", lambda: self._persist_via_procedure(account_id, balance)))
        strategies.append(("direct_update", lambda: self._persist_direct(account_id, balance)))

        chain = FallbackChain("balance.persist", session=self.db)
        try:
            result = await chain.run(strategies)
            await self.db.commit()
        except AllStrategiesFailedError as e:
            logger.error("Balance for %s computed (%s) but not persisted: %s", account_id, balance, e)
            return {
                "account_id": account_id,
                "success": False,
                "balance": balance,
                "message": f"Failed to update account balance: {e.last_error}",
                "persisted_via": None,
                "source": ledger.strategy,
            }

        if self.cache is not None:
            await self.cache.invalidate(account_id)

        logger.info("Balance of %s recalculated to %s via %s", account_id, balance, result.strategy)
        return {
            "account_id": account_id,
            "success": True,
            "balance": balance,
            "message": "Account balance recalculated successfully",
            "persisted_via": result.strategy,
            "source": ledger.strategy,
        }

    async def recalculate_all(self) -> List[Dict[str, Any]]:
        """Recalculate every account; one failing account never stops the batch."""
        result = await self.db.execute(select(Account.id, Account.name).order_by(Account.name))
        accounts = result.all()
        logger.info("Recalculating balances for %d account(s)", len(accounts))

        results = []
        for account_id, name in accounts:
            try:
                outcome = await self.recalculate(account_id)
            except StoreUnavailableError:
                raise
            except (ResourceNotFoundError, SQLAlchemyError) as e:
                await self.db.rollback()
                logger.warning("Recalculation of %s failed: %s", account_id, e)
                outcome = {
                    "account_id": account_id,
                    "success": False,
                    "balance": None,
                    "message": str(e),
                    "persisted_via": None,
                    "source": None,
                }
            outcome["account_name"] = name
            results.append(outcome)
        return results
