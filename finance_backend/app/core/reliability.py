"""
Reliability utilities for the ledger engine.

Includes the ordered fallback chain used wherever a store operation has more
than one way of being served (read strategies, sync strategies, balance
persistence).
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from finance_backend.app.core.exceptions import StoreErrorKind, StoreUnavailableError, classify_store_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

Strategy = Tuple[str, Callable[[], Awaitable[T]]]


class AllStrategiesFailedError(Exception):
    """Every strategy in a chain failed with a recoverable store error."""

    def __init__(self, chain: str, errors: List[Tuple[str, str]]):
        self.chain = chain
        self.errors = errors
        detail = "; ".join(f"{name}: {error}" for name, error in errors)
        super().__init__(f"All strategies failed for {chain}: {detail}")

    @property
    def last_error(self) -> Optional[str]:
        return self.errors[-1][1] if self.errors else None


@dataclass
class StrategyResult(Generic[T]):
    value: T
    strategy: str
    attempts: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when a preferred strategy failed before this one served."""
        return bool(self.attempts)


class FallbackChain:
    """
    Ordered chain of strategies evaluated with early return.

    Each strategy is a (name, zero-arg coroutine factory) pair. A strategy
    that raises a schema-mismatch store error hands over to the next one;
    store unavailability is fatal and surfaces as StoreUnavailableError.

    With a `session`, each strategy runs inside its own savepoint: a failed
    strategy undoes only its own statements, while objects already loaded in
    the session stay usable and pending changes are kept. Strategies must not
    commit; the caller commits once the chain has served.

    Usage:
        chain = FallbackChain("ledger.read", session=db)
        result = await chain.run([
            ("union_view", lambda: read_view(account_id)),
            ("account_tx_table", lambda: read_tx_table(account_id)),
        ])
        result.value, result.strategy
    """

    def __init__(self, name: str, session: Optional[AsyncSession] = None):
        self.name = name
        self.session = session

    async def _attempt(self, factory: Callable[[], Awaitable[T]]) -> T:
        if self.session is None:
            return await factory()
        async with self.session.begin_nested():
            return await factory()

    async def run(self, strategies: Sequence[Strategy]) -> StrategyResult:
        errors: List[Tuple[str, str]] = []

        for strategy_name, factory in strategies:
            try:
                value = await self._attempt(factory)
            except SQLAlchemyError as e:
                if classify_store_error(e) == StoreErrorKind.UNAVAILABLE:
                    logger.error("%s: store unavailable during '%s': %s", self.name, strategy_name, e)
                    raise StoreUnavailableError(details={"chain": self.name, "strategy": strategy_name}) from e
                logger.warning("%s: strategy '%s' failed, falling back: %s", self.name, strategy_name, e)
                errors.append((strategy_name, str(e)))
                continue

            if errors:
                logger.warning("%s: served by fallback strategy '%s'", self.name, strategy_name)
            else:
                logger.info("%s: served by '%s'", self.name, strategy_name)
            return StrategyResult(value=value, strategy=strategy_name, attempts=errors)

        logger.error("%s: all strategies failed", self.name)
        raise AllStrategiesFailedError(self.name, errors)
