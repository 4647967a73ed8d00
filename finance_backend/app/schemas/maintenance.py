"""
Ledger maintenance schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List, Dict, Any


class BootstrapResponse(BaseModel):
    tables_ready: bool
    view_ready: bool
    tables: List[str]
    error: Optional[str] = None


class TableSyncResponse(BaseModel):
    table: str
    inserted: int
    skipped: int
    strategy: Optional[str]
    errors: List[str]


class SyncReportResponse(BaseModel):
    source: str
    inserted: int
    success: bool
    tables: List[TableSyncResponse]


class LedgerSyncResponse(BaseModel):
    success: bool
    inserted: int
    reports: List[SyncReportResponse]


class AuditLogResponse(BaseModel):
    id: int
    timestamp: datetime
    actor_id: Optional[str]
    actor_username: Optional[str]
    action: str
    entity_type: Optional[str]
    entity_id: Optional[str]
    meta_data: Optional[Dict[str, Any]]

    class Config:
        from_attributes = True
