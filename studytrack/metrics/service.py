"""
service.py — Derived-metrics orchestration.

SessionPipeline — background jobs submitted by sessions.service.update_session():
  recalculate_metrics()  full recompute of spreading-joy and photo-upload counters
  refresh_subject()      dominant subject/topic while the session is still open
  record_completion()    progress rows, subject back-fill, today's activity rollup
  complete_session()     recalculate_metrics() then record_completion()

Each job opens its own short database sessions and never holds a connection
across an oracle round-trip. A session deleted while a job is in flight is not
an error: the write-back finds no row and the job ends quietly.

Query functions (request path, take the request's AsyncSession):
  get_progress_metrics(), calculate_star_progress(), get_personal_stats(),
  get_today_activity(), get_progress(), get_progress_summary()
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studytrack import store
from studytrack.classifier.oracle import CompletionOracle
from studytrack.classifier.subject_classifier import classify_multi, count_positive_actions
from studytrack.metrics.aggregator import (
    Medals,
    PersonalStats,
    ProgressSummary,
    Streak,
    build_progress_records,
    compute_medals,
    compute_personal_stats,
    compute_progress_summary,
    compute_star_progress,
    count_photo_uploads,
    daily_activity_increments,
    local_date,
)
from studytrack.models.progress import ProgressORM
from studytrack.models.user_activity import UserActivityORM
from studytrack.sessions.transcript import get_messages, real_messages

logger = logging.getLogger(__name__)


def local_today() -> date:
    return local_date(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Background pipeline
# ---------------------------------------------------------------------------

class SessionPipeline:
    """Background computations for one session at a time."""

    def __init__(self, session_factory: async_sessionmaker, oracle: CompletionOracle):
        self.session_factory = session_factory
        self.oracle = oracle

    async def _load_messages(self, session_id: str) -> Optional[tuple[bool, list[dict]]]:
        """(completed, messages) or None when the session no longer exists."""
        async with self.session_factory() as db:
            orm = await store.get_session(db, session_id)
            if orm is None:
                return None
            return orm.completed, get_messages(orm.data)

    async def recalculate_metrics(self, session_id: str) -> Optional[dict[str, int]]:
        """
        Re-derive spreading_joy_actions and photo_uploads_count from the current
        transcript. Safe to repeat: it overwrites, never increments.
        """
        loaded = await self._load_messages(session_id)
        if loaded is None:
            logger.info("Metrics skipped — session_id=%s no longer exists", session_id)
            return None
        _, messages = loaded

        counters = {
            "spreading_joy_actions": await count_positive_actions(self.oracle, messages),
            "photo_uploads_count": count_photo_uploads(messages),
        }
        async with self.session_factory() as db:
            updated = await store.update_session_by_id(db, session_id, counters)
            await db.commit()
        if not updated:
            logger.info("Metrics write-back skipped — session_id=%s deleted meanwhile", session_id)
            return None
        logger.info(
            "Recalculated session_id=%s spreading_joy=%d photos=%d",
            session_id, counters["spreading_joy_actions"], counters["photo_uploads_count"],
        )
        return counters

    async def refresh_subject(self, session_id: str) -> None:
        """Write the dominant subject/topic; completed sessions keep theirs."""
        loaded = await self._load_messages(session_id)
        if loaded is None:
            return
        completed, messages = loaded
        real = real_messages(messages)
        if completed or not real:
            return

        dominant = (await classify_multi(self.oracle, real))[0]
        async with self.session_factory() as db:
            updated = await store.update_session_by_id(
                db,
                session_id,
                {"subject": dominant.subject, "topic": dominant.topic},
                only_if_incomplete=True,
            )
            await db.commit()
        if updated:
            logger.info(
                "Updated session_id=%s dominant subject (%d question(s))",
                session_id, dominant.question_count,
            )

    async def record_completion(self, session_id: str) -> int:
        """
        Create one Progress row per detected subject for a completed session and
        roll its counters into today's activity. Returns the number of rows written.
        """
        loaded = await self._load_messages(session_id)
        if loaded is None:
            return 0
        real = real_messages(loaded[1])
        if not real:
            logger.info("Session session_id=%s has no real messages — no progress", session_id)
            return 0

        buckets = await classify_multi(self.oracle, real)

        async with self.session_factory() as db:
            orm = await store.get_session(db, session_id)
            if orm is None:
                logger.info("Progress skipped — session_id=%s deleted meanwhile", session_id)
                return 0
            records = [ProgressORM(**values) for values in build_progress_records(orm, buckets)]
            await store.save_progress_records(db, records)

            if not orm.subject:
                await store.apply_session_fields(
                    db, orm, {"subject": buckets[0].subject, "topic": buckets[0].topic},
                )

            today = local_today()
            activity = await store.add_activity(
                db, orm.user_id, today, daily_activity_increments(orm),
            )
            activity.star_progress = compute_star_progress(activity)
            await db.commit()

        logger.info("Created %d progress record(s) for session_id=%s", len(records), session_id)
        return len(records)

    async def complete_session(self, session_id: str, recalculate: bool = True) -> int:
        if recalculate:
            await self.recalculate_metrics(session_id)
        return await self.record_completion(session_id)


# ---------------------------------------------------------------------------
# Request-path queries
# ---------------------------------------------------------------------------

@dataclass
class ProgressMetrics:
    streak: Streak
    medals: Medals
    star_progress: int
    today_activity: UserActivityORM


async def get_today_activity(db: AsyncSession, user_id: str) -> UserActivityORM:
    """Today's activity row, created on first access."""
    return await store.get_or_create_activity(db, user_id, local_today())


async def calculate_star_progress(db: AsyncSession, user_id: str) -> int:
    """Recompute today's star progress and persist it on the activity row."""
    activity = await get_today_activity(db, user_id)
    activity.star_progress = compute_star_progress(activity)
    await db.flush()
    return activity.star_progress


async def get_progress_metrics(db: AsyncSession, user_id: str) -> ProgressMetrics:
    sessions = await store.list_user_sessions(db, user_id)
    streak, medals = compute_medals(sessions, today=local_today())
    activity = await get_today_activity(db, user_id)
    return ProgressMetrics(
        streak=streak,
        medals=medals,
        star_progress=activity.star_progress,
        today_activity=activity,
    )


async def get_personal_stats(
    db: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
) -> PersonalStats:
    sessions = await store.list_user_sessions(db, user_id)
    progress = await store.list_progress(db, user_id)
    return compute_personal_stats(sessions, progress, now=now)


async def get_progress(
    db: AsyncSession,
    user_id: str,
    subject: Optional[str] = None,
) -> list[ProgressORM]:
    return await store.list_progress(db, user_id, subject)


async def get_progress_summary(db: AsyncSession, user_id: str) -> ProgressSummary:
    return compute_progress_summary(await store.list_progress(db, user_id))
