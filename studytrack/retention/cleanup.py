"""
cleanup.py — Retention cleanup engine.

Two deliberately different expiry policies:

  cleanup_expired_sessions()   scheduler sweep. Any session (completed or not)
                               with updated_at < cutoff; every session when the
                               policy is purge_all. Rows only, no file cleanup.
  cleanup_completed_sessions() file-aware pass. Completed sessions with
                               updated_at < cutoff, and the uploads they
                               reference. Does nothing under purge_all.

Plus:
  cleanup_incomplete_sessions() abandoned sessions that never got a transcript
  cleanup_orphaned_files()      referenced-URL scan (no bucket listing diff yet)
  run_full_cleanup()            completed + incomplete + orphan scan, each isolated

Steps count their own per-item failures. run_full_cleanup() additionally
isolates whole steps, so one crashing step never stops the others.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from studytrack import store
from studytrack.retention.blob_store import BlobStore
from studytrack.retention.policy import (
    RetentionPolicy,
    load_retention_settings,
    resolve_retention,
)
from studytrack.sessions.transcript import extract_blob_urls

logger = logging.getLogger(__name__)


@dataclass
class ExpiredCleanupResult:
    deleted: int = 0
    errors: int = 0


@dataclass
class CompletedCleanupResult:
    sessions_deleted: int = 0
    files_deleted: int = 0
    errors: int = 0


@dataclass
class OrphanScanResult:
    files_checked: int = 0
    files_deleted: int = 0
    errors: int = 0
    referenced_urls: int = 0


@dataclass
class FullCleanupResult:
    completed: CompletedCleanupResult = field(default_factory=CompletedCleanupResult)
    incomplete_deleted: int = 0
    orphans: OrphanScanResult = field(default_factory=OrphanScanResult)
    errors: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None


class CleanupEngine:
    """Batch deletion of expired / abandoned sessions and their uploads."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        blob_store: Optional[BlobStore] = None,
        incomplete_max_age_days: int = 7,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.incomplete_max_age_days = incomplete_max_age_days

    async def current_policy(self) -> RetentionPolicy:
        async with self.session_factory() as db:
            settings = await load_retention_settings(db)
        return resolve_retention(settings)

    # ------------------------------------------------------------------
    # Scheduler sweep: all sessions past cutoff, no files
    # ------------------------------------------------------------------

    async def cleanup_expired_sessions(
        self,
        policy: Optional[RetentionPolicy] = None,
    ) -> ExpiredCleanupResult:
        policy = policy or await self.current_policy()
        result = ExpiredCleanupResult()
        try:
            async with self.session_factory() as db:
                if policy.purge_all:
                    result.deleted = await store.delete_all_sessions(db)
                elif policy.cutoff is not None:
                    result.deleted = await store.delete_sessions_updated_before(db, policy.cutoff)
                await db.commit()
        except SQLAlchemyError:
            result.errors += 1
            logger.error("Expired-session sweep failed", exc_info=True)
            return result

        if policy.purge_all:
            logger.info("Retention disabled/never: deleted all %d session(s)", result.deleted)
        else:
            logger.info(
                "Retention sweep: deleted %d session(s) older than %s day(s)",
                result.deleted, policy.duration_days,
            )
        return result

    # ------------------------------------------------------------------
    # File-aware pass: completed sessions past cutoff, plus their uploads
    # ------------------------------------------------------------------

    async def _delete_files(self, urls: list[str], result: CompletedCleanupResult) -> None:
        if self.blob_store is None or not self.blob_store.is_available():
            return
        for url in dict.fromkeys(urls):
            try:
                if await self.blob_store.delete_by_url(url):
                    result.files_deleted += 1
                else:
                    result.errors += 1
            except Exception:
                result.errors += 1
                logger.error("File deletion raised during cleanup", exc_info=True)

    async def cleanup_completed_sessions(
        self,
        policy: Optional[RetentionPolicy] = None,
    ) -> CompletedCleanupResult:
        policy = policy or await self.current_policy()
        result = CompletedCleanupResult()
        if policy.purge_all or policy.cutoff is None:
            logger.info("Completed-session cleanup skipped: retention disabled or never")
            return result

        try:
            async with self.session_factory() as db:
                stale = await store.list_stale_completed_sessions(db, policy.cutoff)
        except SQLAlchemyError:
            result.errors += 1
            logger.error("Could not list stale completed sessions", exc_info=True)
            return result

        logger.info("Found %d completed session(s) past retention", len(stale))
        for session_id, data in stale:
            await self._delete_files(extract_blob_urls(data), result)
            try:
                async with self.session_factory() as db:
                    if await store.delete_session(db, session_id):
                        result.sessions_deleted += 1
                    await db.commit()
            except SQLAlchemyError:
                result.errors += 1
                logger.error("Failed to delete session session_id=%s", session_id, exc_info=True)

        logger.info(
            "Completed-session cleanup: sessions=%d files=%d errors=%d",
            result.sessions_deleted, result.files_deleted, result.errors,
        )
        return result

    # ------------------------------------------------------------------
    # Abandoned empty sessions
    # ------------------------------------------------------------------

    async def cleanup_incomplete_sessions(self, older_than_days: Optional[int] = None) -> int:
        days = self.incomplete_max_age_days if older_than_days is None else older_than_days
        threshold = datetime.now(timezone.utc) - timedelta(days=days)
        async with self.session_factory() as db:
            ids = await store.list_abandoned_session_ids(db, threshold)
            deleted = 0
            for session_id in ids:
                if await store.delete_session(db, session_id):
                    deleted += 1
            await db.commit()
        logger.info("Deleted %d abandoned empty session(s) older than %d day(s)", deleted, days)
        return deleted

    # ------------------------------------------------------------------
    # Orphaned uploads
    # ------------------------------------------------------------------

    async def cleanup_orphaned_files(self) -> OrphanScanResult:
        """
        Collect the uploads still referenced by sessions. Diffing against a
        bucket listing is not implemented, so nothing is checked or deleted.
        """
        result = OrphanScanResult()
        try:
            async with self.session_factory() as db:
                transcripts = await store.list_session_transcripts(db)
        except SQLAlchemyError:
            result.errors += 1
            logger.error("Orphaned-file scan failed", exc_info=True)
            return result

        referenced: set[str] = set()
        for data in transcripts:
            referenced.update(extract_blob_urls(data))
        result.referenced_urls = len(referenced)
        logger.info("Orphaned-file scan: %d referenced file(s)", len(referenced))
        return result

    # ------------------------------------------------------------------
    # Daily entry point
    # ------------------------------------------------------------------

    async def run_full_cleanup(self) -> FullCleanupResult:
        full = FullCleanupResult()

        try:
            full.completed = await self.cleanup_completed_sessions()
        except Exception:
            full.errors += 1
            logger.error("Completed-session cleanup crashed", exc_info=True)

        try:
            full.incomplete_deleted = await self.cleanup_incomplete_sessions()
        except Exception:
            full.errors += 1
            logger.error("Incomplete-session cleanup crashed", exc_info=True)

        try:
            full.orphans = await self.cleanup_orphaned_files()
        except Exception:
            full.errors += 1
            logger.error("Orphaned-file scan crashed", exc_info=True)

        full.errors += full.completed.errors + full.orphans.errors
        full.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Full cleanup finished: completed=%d files=%d incomplete=%d errors=%d",
            full.completed.sessions_deleted, full.completed.files_deleted,
            full.incomplete_deleted, full.errors,
        )
        return full
