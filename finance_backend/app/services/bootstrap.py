"""
Ledger schema bootstrap.

Creates the finance tables and indexes if they are absent and (re)creates
the union view over the two ledger tables. Run once at application start;
safe to repeat.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import List, Optional
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from finance_backend.app.core.exceptions import raise_if_unavailable
from finance_backend.app.db.session import Base
from finance_backend.app.models.ledger_entry import CREATE_LEDGER_VIEW_SQL, DROP_LEDGER_VIEW_SQL

# Imported for table registration on Base.metadata
from finance_backend.app.models import (  # noqa: F401
    account, income_entry, expenditure_entry, account_transfer, liability_entry,
    ledger_entry, reconciliation, audit_log,
)

logger = logging.getLogger(__name__)


@dataclass
class BootstrapReport:
    tables_ready: bool = False
    view_ready: bool = False
    tables: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def dict(self) -> dict:
        return asdict(self)


class SchemaBootstrapper:
    """
    Idempotent schema bootstrap.

    Table failure leaves the bootstrapper not ready: reads carry on and write
    endpoints retry `ensure()` once before refusing. A view failure is logged
    and only degrades reads to the table strategies.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.last_report: Optional[BootstrapReport] = None

    @property
    def ready(self) -> bool:
        return self.last_report is not None and self.last_report.tables_ready

    async def ensure(self) -> BootstrapReport:
        report = BootstrapReport()

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all, checkfirst=True)
            report.tables_ready = True
            report.tables = sorted(Base.metadata.tables.keys())
            logger.info("Ledger schema ready (%d tables)", len(report.tables))
        except SQLAlchemyError as e:
            raise_if_unavailable(e)
            report.error = str(e)
            logger.error("Ledger schema bootstrap failed: %s", e)
            self.last_report = report
            return report

        try:
            async with self.engine.begin() as conn:
                await conn.execute(text(DROP_LEDGER_VIEW_SQL))
                await conn.execute(text(CREATE_LEDGER_VIEW_SQL))
            report.view_ready = True
            logger.info("Ledger union view created")
        except SQLAlchemyError as e:
            raise_if_unavailable(e)
            report.error = str(e)
            logger.warning("Ledger union view could not be created, reads will use tables: %s", e)

        self.last_report = report
        return report
