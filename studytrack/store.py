"""
store.py — Data access facade for studytrack.

Provides a consistent, low-level API for persisting and retrieving sessions,
progress, daily activity and the retention settings row. The lifecycle rules
(idempotent create, duplicate repair, completion side effects) live in
sessions/service.py; retention policy lives in retention/. Nothing outside
this module builds SQLAlchemy statements against these tables.

Design principles:
  - All functions are async and accept an AsyncSession parameter
  - flush() not commit() — caller / get_db() / the job's own scope handles commit
  - Bulk deletes use synchronize_session=False: callers never reuse rows they bulk-delete
  - Logs only ids and counts — never transcript text
  - Returns ORM instances; routes convert with the pydantic schemas (from_attributes)
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studytrack.models.admin_settings import AdminSettingsORM
from studytrack.models.progress import ProgressORM
from studytrack.models.session import SessionORM
from studytrack.models.user_activity import UserActivityORM

logger = logging.getLogger(__name__)

# Counter columns that may be bumped with increment_session_counters()
SESSION_COUNTERS = frozenset({
    "duration",
    "questions_answered",
    "correct_answers",
    "photo_uploads_count",
    "whiteboard_submissions",
    "ai_interactions",
    "spreading_joy_actions",
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _active_clause():
    """completed = false AND last_point IS NULL OR ''."""
    return (
        SessionORM.completed.is_(False),
        or_(SessionORM.last_point.is_(None), SessionORM.last_point == ""),
    )


# ---------------------------------------------------------------------------
# Session operations
# ---------------------------------------------------------------------------

async def insert_session(
    db: AsyncSession,
    user_id: str,
    fields: dict[str, Any],
) -> SessionORM:
    """Insert a new session row for user_id with the given column values."""
    orm = SessionORM(user_id=user_id, **fields)
    db.add(orm)
    await db.flush()
    logger.info("Created session session_id=%s user_id=%s", orm.id, user_id)
    return orm


async def get_session(
    db: AsyncSession,
    session_id: str,
    user_id: Optional[str] = None,
) -> Optional[SessionORM]:
    """
    Fetch one session by id, optionally scoped to its owner.
    Returns None when absent or owned by someone else (caller raises 404).
    """
    stmt = select(SessionORM).where(SessionORM.id == session_id)
    if user_id is not None:
        stmt = stmt.where(SessionORM.user_id == user_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_active_sessions(db: AsyncSession, user_id: str) -> list[SessionORM]:
    """All true-active sessions of a user, most recently updated first."""
    result = await db.execute(
        select(SessionORM)
        .where(SessionORM.user_id == user_id, *_active_clause())
        .order_by(SessionORM.updated_at.desc(), SessionORM.created_at.desc())
    )
    return list(result.scalars().all())


async def list_user_sessions(
    db: AsyncSession,
    user_id: str,
    completed: Optional[bool] = None,
    updated_since: Optional[datetime] = None,
    newest_first_by: str = "created_at",
) -> list[SessionORM]:
    """
    List a user's sessions with optional completion / recency filters.
    newest_first_by: "created_at" or "updated_at".
    """
    order_col = SessionORM.updated_at if newest_first_by == "updated_at" else SessionORM.created_at
    stmt = select(SessionORM).where(SessionORM.user_id == user_id)
    if completed is not None:
        stmt = stmt.where(SessionORM.completed.is_(completed))
    if updated_since is not None:
        stmt = stmt.where(SessionORM.updated_at >= updated_since)
    result = await db.execute(stmt.order_by(order_col.desc()))
    return list(result.scalars().all())


async def apply_session_fields(
    db: AsyncSession,
    orm: SessionORM,
    fields: dict[str, Any],
) -> SessionORM:
    """Set column values on a loaded session and bump updated_at."""
    for key, value in fields.items():
        setattr(orm, key, value)
    orm.updated_at = _utcnow()
    await db.flush()
    logger.info("Updated session session_id=%s fields=%s", orm.id, sorted(fields))
    return orm


async def update_session_by_id(
    db: AsyncSession,
    session_id: str,
    fields: dict[str, Any],
    only_if_incomplete: bool = False,
) -> bool:
    """
    Write column values without loading the row (background write-backs).
    Returns False when the row no longer exists — e.g. deleted by retention
    cleanup while a classification was in flight — or, with only_if_incomplete,
    when the session has been completed in the meantime.
    """
    stmt = update(SessionORM).where(SessionORM.id == session_id)
    if only_if_incomplete:
        stmt = stmt.where(SessionORM.completed.is_(False))
    result = await db.execute(
        stmt.values(**fields, updated_at=_utcnow()).execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0


async def increment_session_counters(
    db: AsyncSession,
    session_id: str,
    user_id: Optional[str] = None,
    **increments: int,
) -> Optional[SessionORM]:
    """
    Atomically add to one or more counter columns (UPDATE ... SET c = c + n).
    Returns the refreshed session, or None if it does not exist.
    """
    unknown = set(increments) - SESSION_COUNTERS
    if unknown:
        raise ValueError(f"Not a session counter: {', '.join(sorted(unknown))}")

    values: dict[str, Any] = {
        name: getattr(SessionORM, name) + amount for name, amount in increments.items()
    }
    values["updated_at"] = _utcnow()
    stmt = update(SessionORM).where(SessionORM.id == session_id)
    if user_id is not None:
        stmt = stmt.where(SessionORM.user_id == user_id)
    result = await db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    if not result.rowcount:
        return None
    return await db.get(SessionORM, session_id, populate_existing=True)


async def delete_session(
    db: AsyncSession,
    session_id: str,
    user_id: Optional[str] = None,
) -> bool:
    """
    Delete one session. Returns True if a row was removed, False if it was
    already gone — concurrent deletion by the cleanup job is expected.
    """
    stmt = delete(SessionORM).where(SessionORM.id == session_id)
    if user_id is not None:
        stmt = stmt.where(SessionORM.user_id == user_id)
    result = await db.execute(stmt)
    deleted = (result.rowcount or 0) > 0
    if deleted:
        logger.info("Deleted session session_id=%s", session_id)
    return deleted


async def delete_user_sessions(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(
        delete(SessionORM)
        .where(SessionORM.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def list_users_with_duplicate_active(db: AsyncSession) -> list[str]:
    """User ids that currently have more than one true-active session."""
    result = await db.execute(
        select(SessionORM.user_id)
        .where(*_active_clause())
        .group_by(SessionORM.user_id)
        .having(func.count(SessionORM.id) > 1)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Retention queries
# ---------------------------------------------------------------------------

async def delete_all_sessions(db: AsyncSession) -> int:
    result = await db.execute(delete(SessionORM).execution_options(synchronize_session=False))
    return result.rowcount or 0


async def delete_sessions_updated_before(db: AsyncSession, cutoff: datetime) -> int:
    """Delete every session (completed or not) last updated before cutoff."""
    result = await db.execute(
        delete(SessionORM)
        .where(SessionORM.updated_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def list_stale_completed_sessions(
    db: AsyncSession,
    cutoff: datetime,
) -> list[tuple[str, Optional[dict]]]:
    """(id, transcript) of completed sessions last updated before cutoff."""
    result = await db.execute(
        select(SessionORM.id, SessionORM.data)
        .where(SessionORM.completed.is_(True), SessionORM.updated_at < cutoff)
        .order_by(SessionORM.updated_at.asc())
    )
    return [(row.id, row.data) for row in result.all()]


async def list_abandoned_session_ids(db: AsyncSession, created_before: datetime) -> list[str]:
    """Incomplete sessions that never received a transcript, created before the threshold."""
    result = await db.execute(
        select(SessionORM.id).where(
            SessionORM.completed.is_(False),
            SessionORM.data.is_(None),
            SessionORM.created_at < created_before,
        )
    )
    return list(result.scalars().all())


async def list_session_transcripts(db: AsyncSession) -> list[dict]:
    """Every non-null transcript (orphaned-file reference scan)."""
    result = await db.execute(select(SessionORM.data).where(SessionORM.data.is_not(None)))
    return [data for data in result.scalars().all() if data is not None]


# ---------------------------------------------------------------------------
# Progress operations
# ---------------------------------------------------------------------------

async def save_progress_records(db: AsyncSession, records: list[ProgressORM]) -> None:
    db.add_all(records)
    await db.flush()
    if records:
        logger.info(
            "Saved %d progress record(s) user_id=%s session_id=%s",
            len(records), records[0].user_id, records[0].session_id,
        )


async def list_progress(
    db: AsyncSession,
    user_id: str,
    subject: Optional[str] = None,
) -> list[ProgressORM]:
    """A user's progress records, newest first, optionally for one subject."""
    stmt = select(ProgressORM).where(ProgressORM.user_id == user_id)
    if subject is not None:
        stmt = stmt.where(ProgressORM.subject == subject)
    result = await db.execute(stmt.order_by(ProgressORM.created_at.desc()))
    return list(result.scalars().all())


async def delete_user_progress(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(
        delete(ProgressORM)
        .where(ProgressORM.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Daily activity operations
# ---------------------------------------------------------------------------

async def get_or_create_activity(db: AsyncSession, user_id: str, day: date) -> UserActivityORM:
    """Fetch the (user, day) activity row, creating an all-zero one on first access."""
    result = await db.execute(
        select(UserActivityORM).where(
            UserActivityORM.user_id == user_id,
            UserActivityORM.date == day,
        )
    )
    orm = result.scalar_one_or_none()
    if orm is None:
        orm = UserActivityORM(
            user_id=user_id,
            date=day,
            study_minutes=0,
            questions_answered=0,
            photo_questions=0,
            positive_actions=0,
            ai_interactions=0,
            star_progress=0,
        )
        db.add(orm)
        await db.flush()
        logger.info("Created activity row user_id=%s date=%s", user_id, day.isoformat())
    return orm


async def add_activity(
    db: AsyncSession,
    user_id: str,
    day: date,
    increments: dict[str, int],
) -> UserActivityORM:
    """Add to counters on the (user, day) row."""
    orm = await get_or_create_activity(db, user_id, day)
    for key, amount in increments.items():
        setattr(orm, key, (getattr(orm, key) or 0) + amount)
    await db.flush()
    return orm


async def set_activity_fields(
    db: AsyncSession,
    user_id: str,
    day: date,
    fields: dict[str, Any],
) -> UserActivityORM:
    orm = await get_or_create_activity(db, user_id, day)
    for key, value in fields.items():
        setattr(orm, key, value)
    await db.flush()
    return orm


async def reset_activity_ai_interactions(db: AsyncSession, user_id: str) -> None:
    await db.execute(
        update(UserActivityORM)
        .where(UserActivityORM.user_id == user_id)
        .values(ai_interactions=0)
        .execution_options(synchronize_session=False)
    )


# ---------------------------------------------------------------------------
# Admin settings (read-only)
# ---------------------------------------------------------------------------

async def get_admin_settings(db: AsyncSession) -> Optional[AdminSettingsORM]:
    """The most recently updated settings row, or None when none exists."""
    result = await db.execute(
        select(AdminSettingsORM).order_by(AdminSettingsORM.updated_at.desc()).limit(1)
    )
    return result.scalar_one_or_none()
