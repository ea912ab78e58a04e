"""
routes.py — Operational cleanup triggers.

POST /api/admin/cleanup/run                — full cleanup (completed + incomplete + orphan scan)
POST /api/admin/cleanup/expired            — retention sweep over all sessions
POST /api/admin/cleanup/orphaned-files     — referenced-upload scan
POST /api/admin/cleanup/consistency-check  — repair duplicate active sessions

Every endpoint requires an admin caller (auth.require_admin).
app.state.cleanup_engine / app.state.scheduler are set in main.py.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from studytrack.auth import require_admin
from studytrack.retention.cleanup import CleanupEngine
from studytrack.retention.schemas import (
    ConsistencyReportOut,
    ExpiredCleanupOut,
    FullCleanupOut,
    OrphanScanOut,
)
from studytrack.sessions.service import reconcile_all_users

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/cleanup", tags=["Admin Cleanup"])


def _engine(request: Request) -> CleanupEngine:
    engine = getattr(request.app.state, "cleanup_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Cleanup engine not initialized")
    return engine


@router.post("/run", response_model=FullCleanupOut)
async def run_full_cleanup(
    request: Request,
    user_id: str = Depends(require_admin),
):
    logger.info("Manual full cleanup requested by user_id=%s", user_id)
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is not None:
        result = await scheduler.run_manual()
    else:
        result = await _engine(request).run_full_cleanup()
    return FullCleanupOut.model_validate(result)


@router.post("/expired", response_model=ExpiredCleanupOut)
async def cleanup_expired_sessions(
    request: Request,
    user_id: str = Depends(require_admin),
):
    logger.info("Manual retention sweep requested by user_id=%s", user_id)
    return ExpiredCleanupOut.model_validate(await _engine(request).cleanup_expired_sessions())


@router.post("/orphaned-files", response_model=OrphanScanOut)
async def cleanup_orphaned_files(
    request: Request,
    user_id: str = Depends(require_admin),
):
    logger.info("Manual orphaned-file scan requested by user_id=%s", user_id)
    return OrphanScanOut.model_validate(await _engine(request).cleanup_orphaned_files())


@router.post("/consistency-check", response_model=ConsistencyReportOut)
async def consistency_check(
    request: Request,
    user_id: str = Depends(require_admin),
):
    logger.info("Manual consistency check requested by user_id=%s", user_id)
    engine = _engine(request)
    return ConsistencyReportOut.model_validate(await reconcile_all_users(engine.session_factory))
