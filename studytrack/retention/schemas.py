"""
schemas.py — Admin cleanup API response contracts (read from engine result dataclasses).
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ExpiredCleanupOut(_FromAttributes):
    deleted: int
    errors: int


class CompletedCleanupOut(_FromAttributes):
    sessions_deleted: int
    files_deleted: int
    errors: int


class OrphanScanOut(_FromAttributes):
    files_checked: int
    files_deleted: int
    errors: int
    referenced_urls: int


class FullCleanupOut(_FromAttributes):
    completed: CompletedCleanupOut
    incomplete_deleted: int
    orphans: OrphanScanOut
    errors: int
    started_at: datetime
    finished_at: Optional[datetime] = None


class ConsistencyReportOut(_FromAttributes):
    users_checked: int
    sessions_deleted: int
    errors: int
    failed_users: list[str]
