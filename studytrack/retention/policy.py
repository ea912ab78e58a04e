"""
policy.py — Retention policy resolver.

  load_retention_settings(db) — read the admin_settings row; never raises
  resolve_retention(settings)  — pure: settings object in, RetentionPolicy out

Settings are passed explicitly to every caller (cleanup engine, session
listing); nothing here caches them at module level.

Decision table:
  no settings row                   -> enabled, 30 days (safe default)
  data_retention false              -> disabled, purge_all
  retention_duration "never"        -> enabled, purge_all
  retention_duration "7"/"30"/"90"  -> enabled, cutoff = now - N days
  anything unparseable / <= 0       -> enabled, 30 days (logged)

purge_all means "keep nothing": the expired-session sweep deletes every
session. Callers branch on purge_all, never on cutoff being None.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from studytrack.store import get_admin_settings

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30
NEVER = "never"


@dataclass(frozen=True)
class RetentionSettings:
    data_retention: bool = True
    retention_duration: str = str(DEFAULT_RETENTION_DAYS)


@dataclass(frozen=True)
class RetentionPolicy:
    enabled: bool
    duration_days: Optional[int]
    cutoff: Optional[datetime]
    purge_all: bool = False


async def load_retention_settings(db: AsyncSession) -> Optional[RetentionSettings]:
    """
    Read the retention subset of admin_settings.
    Returns None when no row exists OR the read fails (fail open to the default).
    """
    try:
        row = await get_admin_settings(db)
    except SQLAlchemyError:
        logger.error("Failed to read retention settings — using default policy", exc_info=True)
        return None
    if row is None:
        return None
    return RetentionSettings(
        data_retention=bool(row.data_retention),
        retention_duration=str(row.retention_duration or DEFAULT_RETENTION_DAYS),
    )


def _default_policy(now: datetime) -> RetentionPolicy:
    return RetentionPolicy(
        enabled=True,
        duration_days=DEFAULT_RETENTION_DAYS,
        cutoff=now - timedelta(days=DEFAULT_RETENTION_DAYS),
    )


def resolve_retention(
    settings: Optional[RetentionSettings],
    now: Optional[datetime] = None,
) -> RetentionPolicy:
    now = now or datetime.now(timezone.utc)
    if settings is None:
        return _default_policy(now)

    duration = (settings.retention_duration or "").strip().lower()
    if not settings.data_retention:
        return RetentionPolicy(enabled=False, duration_days=None, cutoff=None, purge_all=True)
    if duration == NEVER:
        return RetentionPolicy(enabled=True, duration_days=None, cutoff=None, purge_all=True)

    try:
        days = int(duration)
    except ValueError:
        days = 0
    if days <= 0:
        logger.warning(
            "Unrecognised retention_duration=%r — using %d-day default",
            settings.retention_duration, DEFAULT_RETENTION_DAYS,
        )
        return _default_policy(now)
    return RetentionPolicy(enabled=True, duration_days=days, cutoff=now - timedelta(days=days))
