"""
service.py — Session lifecycle rules on top of the store facade.

  create_session()            idempotent: returns the existing true-active session
  get_active_session()        read + duplicate repair
  reconcile_active_sessions() restore "at most one true-active session per user"
  reconcile_all_users()       the same repair as a standalone consistency job
  update_session()            patch, commit, then hand derived work to the worker
  delete_session()            idempotent delete
  resume_session()            PAUSED -> ACTIVE

The repair is eventually consistent: two concurrent creates may both insert,
and the next read or the daily consistency job removes the extra row.

update_session() commits before dispatching background jobs because those jobs
open their own database sessions and must see the committed row.
"""
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studytrack import store
from studytrack.errors import InvalidSessionStateError, SessionNotFoundError
from studytrack.models.session import SessionORM
from studytrack.retention.policy import RetentionPolicy
from studytrack.sessions.transcript import get_messages, has_real_messages

if TYPE_CHECKING:
    from studytrack.metrics.service import SessionPipeline
    from studytrack.worker import BackgroundWorker

logger = logging.getLogger(__name__)

# Route path segment -> counter column
COUNTER_EVENTS = {
    "photo": "photo_uploads_count",
    "whiteboard": "whiteboard_submissions",
    "ai-interaction": "ai_interactions",
    "spreading-joy": "spreading_joy_actions",
}

# last_point written on a session set aside by an explicit resume or un-pause
SUPERSEDED_LAST_POINT = "Paused when another session was resumed"


# ---------------------------------------------------------------------------
# Active-session reconciliation
# ---------------------------------------------------------------------------

def _pick_keeper(actives: list[SessionORM], keep_id: Optional[str]) -> SessionORM:
    """
    actives arrive most-recently-updated first. Preference:
    keep_id if present > newest with a transcript > newest overall.
    """
    if keep_id is not None:
        for session in actives:
            if session.id == keep_id:
                return session
    for session in actives:
        if session.data is not None:
            return session
    return actives[0]


async def _reconcile(
    db: AsyncSession,
    user_id: str,
    keep_id: Optional[str] = None,
) -> tuple[Optional[SessionORM], int]:
    actives = await store.list_active_sessions(db, user_id)
    if not actives:
        return None, 0
    if len(actives) == 1:
        return actives[0], 0

    keeper = _pick_keeper(actives, keep_id)
    logger.warning(
        "Found %d active sessions for user_id=%s — keeping session_id=%s",
        len(actives), user_id, keeper.id,
    )
    deleted = 0
    for duplicate in actives:
        if duplicate.id == keeper.id:
            continue
        try:
            async with db.begin_nested():
                if keep_id is not None and has_real_messages(duplicate.data):
                    # Caller chose the keeper; conversations with real messages are paused
                    await store.apply_session_fields(
                        db, duplicate, {"last_point": SUPERSEDED_LAST_POINT},
                    )
                    logger.info("Paused superseded session session_id=%s", duplicate.id)
                elif await store.delete_session(db, duplicate.id):
                    deleted += 1
        except SQLAlchemyError:
            logger.error(
                "Failed to repair duplicate session session_id=%s", duplicate.id, exc_info=True,
            )
    return keeper, deleted


async def reconcile_active_sessions(
    db: AsyncSession,
    user_id: str,
    keep_id: Optional[str] = None,
) -> Optional[SessionORM]:
    """
    Leave at most one true-active session for user_id and return it.

    Extra sessions are deleted, except when keep_id names the survivor (resume,
    un-pause): then extras holding real messages are paused instead.
    """
    keeper, _ = await _reconcile(db, user_id, keep_id)
    return keeper


@dataclass
class ConsistencyReport:
    users_checked: int = 0
    sessions_deleted: int = 0
    errors: int = 0
    failed_users: list[str] = field(default_factory=list)


async def reconcile_all_users(session_factory: async_sessionmaker) -> ConsistencyReport:
    """
    Standalone consistency check: repair every user that currently has more
    than one true-active session. Each user is repaired in its own transaction.
    """
    report = ConsistencyReport()
    async with session_factory() as db:
        user_ids = await store.list_users_with_duplicate_active(db)

    for user_id in user_ids:
        report.users_checked += 1
        try:
            async with session_factory() as db:
                _, deleted = await _reconcile(db, user_id)
                await db.commit()
            report.sessions_deleted += deleted
        except SQLAlchemyError:
            report.errors += 1
            report.failed_users.append(user_id)
            logger.error("Consistency check failed for user_id=%s", user_id, exc_info=True)

    logger.info(
        "Consistency check: users_checked=%d sessions_deleted=%d errors=%d",
        report.users_checked, report.sessions_deleted, report.errors,
    )
    return report


# ---------------------------------------------------------------------------
# Lifecycle operations
# ---------------------------------------------------------------------------

async def create_session(
    db: AsyncSession,
    user_id: str,
    initial: Optional[dict[str, Any]] = None,
) -> SessionORM:
    """Return the user's true-active session if one exists; otherwise insert a new one."""
    existing = await reconcile_active_sessions(db, user_id)
    if existing is not None:
        logger.info("Reusing active session session_id=%s user_id=%s", existing.id, user_id)
        return existing
    return await store.insert_session(db, user_id, dict(initial or {}))


async def get_active_session(db: AsyncSession, user_id: str) -> Optional[SessionORM]:
    return await reconcile_active_sessions(db, user_id)


async def get_session(
    db: AsyncSession,
    session_id: str,
    user_id: Optional[str] = None,
) -> SessionORM:
    orm = await store.get_session(db, session_id, user_id)
    if orm is None:
        raise SessionNotFoundError(session_id)
    return orm


def _dispatch_background_work(
    orm: SessionORM,
    patch: dict[str, Any],
    became_completed: bool,
    worker: Optional["BackgroundWorker"],
    pipeline: Optional["SessionPipeline"],
) -> None:
    transcript_updated = bool(get_messages(patch.get("data")))
    real_messages = has_real_messages(orm.data)
    session_id = orm.id

    if became_completed and not real_messages:
        logger.info(
            "Session session_id=%s completed without real messages — skipping progress", session_id,
        )
    if not (transcript_updated or became_completed):
        return
    if worker is None or pipeline is None:
        logger.warning("No background worker — derived metrics skipped for session_id=%s", session_id)
        return

    if became_completed and real_messages:
        # Completion recalculates first so the daily rollup sees fresh counters
        worker.submit(
            f"complete:{session_id}",
            lambda: pipeline.complete_session(session_id, recalculate=transcript_updated),
        )
        return

    if transcript_updated:
        worker.submit(f"metrics:{session_id}", lambda: pipeline.recalculate_metrics(session_id))
        if real_messages and not orm.completed:
            worker.submit(f"subject:{session_id}", lambda: pipeline.refresh_subject(session_id))


async def update_session(
    db: AsyncSession,
    session_id: str,
    patch: dict[str, Any],
    user_id: Optional[str] = None,
    worker: Optional["BackgroundWorker"] = None,
    pipeline: Optional["SessionPipeline"] = None,
) -> SessionORM:
    """
    Apply a partial update and bump updated_at.

    Raises SessionNotFoundError for an unknown id (or a foreign owner when
    user_id is given) and InvalidSessionStateError when the patch tries to
    un-complete a completed session. Transcript changes and completion are
    followed by background jobs; their outcome is visible on a later read.
    """
    orm = await get_session(db, session_id, user_id)
    was_completed = orm.completed
    if was_completed and patch.get("completed") is False:
        raise InvalidSessionStateError(session_id, "Completed sessions cannot be reopened")

    await store.apply_session_fields(db, orm, patch)
    became_completed = orm.completed and not was_completed

    if orm.is_active:
        await reconcile_active_sessions(db, orm.user_id, keep_id=orm.id)
    await db.commit()

    _dispatch_background_work(orm, patch, became_completed, worker, pipeline)
    return orm


async def delete_session(
    db: AsyncSession,
    session_id: str,
    user_id: Optional[str] = None,
) -> bool:
    """True if removed now, False if it was already gone. Never raises NotFound."""
    deleted = await store.delete_session(db, session_id, user_id)
    if not deleted:
        logger.info("Session session_id=%s already deleted or not owned", session_id)
    return deleted


async def resume_session(db: AsyncSession, session_id: str, user_id: str) -> SessionORM:
    orm = await get_session(db, session_id, user_id)
    if orm.completed:
        raise InvalidSessionStateError(session_id, "Cannot resume a completed session")
    if orm.last_point:
        await store.apply_session_fields(db, orm, {"last_point": None})
    await reconcile_active_sessions(db, user_id, keep_id=orm.id)
    logger.info("Resumed session session_id=%s user_id=%s", session_id, user_id)
    return orm


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

async def list_user_sessions(db: AsyncSession, user_id: str) -> list[SessionORM]:
    return await store.list_user_sessions(db, user_id)


def _has_progress_worth_resuming(orm: SessionORM) -> bool:
    if orm.last_point and orm.last_point.strip():
        return True
    if isinstance(orm.data, dict):
        if len(get_messages(orm.data)) > 1:
            return True
        if orm.data.get("whiteboard"):
            return True
    return False


async def list_incomplete_sessions(db: AsyncSession, user_id: str) -> list[SessionORM]:
    """Not-completed sessions that are paused or hold content beyond the welcome message."""
    sessions = await store.list_user_sessions(
        db, user_id, completed=False, newest_first_by="updated_at",
    )
    return [s for s in sessions if _has_progress_worth_resuming(s)]


async def list_complete_sessions(
    db: AsyncSession,
    user_id: str,
    policy: RetentionPolicy,
) -> list[SessionORM]:
    """Completed sessions inside the retention window; none while retention is disabled."""
    if not policy.enabled:
        return []
    return await store.list_user_sessions(
        db, user_id, completed=True, updated_since=policy.cutoff, newest_first_by="updated_at",
    )


async def get_session_counts(
    db: AsyncSession,
    user_id: str,
    policy: RetentionPolicy,
) -> dict[str, int]:
    incomplete = len(await list_incomplete_sessions(db, user_id))
    complete = len(await list_complete_sessions(db, user_id, policy))
    return {
        "incomplete_count": incomplete,
        "complete_count": complete,
        "total_count": incomplete + complete,
    }


# ---------------------------------------------------------------------------
# Explicit edits
# ---------------------------------------------------------------------------

async def rename_session(db: AsyncSession, session_id: str, user_id: str, title: str) -> SessionORM:
    """Set the subject explicitly. Allowed after completion."""
    orm = await get_session(db, session_id, user_id)
    return await store.apply_session_fields(db, orm, {"subject": title})


async def update_session_modes(
    db: AsyncSession,
    session_id: str,
    user_id: str,
    audio_enabled: bool,
    text_enabled: bool,
) -> SessionORM:
    orm = await get_session(db, session_id, user_id)
    return await store.apply_session_fields(
        db, orm, {"audio_mode_enabled": audio_enabled, "text_mode_enabled": text_enabled},
    )


async def increment_session_counter(
    db: AsyncSession,
    session_id: str,
    user_id: str,
    counter: str,
    amount: int = 1,
) -> SessionORM:
    if amount < 0:
        raise ValueError("Counters only move forward")
    orm = await store.increment_session_counters(db, session_id, user_id, **{counter: amount})
    if orm is None:
        raise SessionNotFoundError(session_id)
    return orm


async def clear_user_data(db: AsyncSession, user_id: str) -> dict[str, int]:
    """Delete all sessions and progress of a user and reset AI interaction counters."""
    sessions_deleted = await store.delete_user_sessions(db, user_id)
    progress_deleted = await store.delete_user_progress(db, user_id)
    await store.reset_activity_ai_interactions(db, user_id)
    logger.info(
        "Cleared AI data user_id=%s sessions=%d progress=%d",
        user_id, sessions_deleted, progress_deleted,
    )
    return {"sessions_deleted": sessions_deleted, "progress_deleted": progress_deleted}
