"""
routes.py — Session lifecycle HTTP endpoints.

POST   /api/sessions                       — create (idempotent: returns the active session)
GET    /api/sessions                       — all of the caller's sessions, newest first
GET    /api/sessions/active                — the true-active session (repairs duplicates) or null
GET    /api/sessions/incomplete            — paused / resumable sessions
GET    /api/sessions/complete              — completed sessions inside the retention window
GET    /api/sessions/counts                — incomplete / complete / total
GET    /api/sessions/{id}                  — one session
PATCH  /api/sessions/{id}                  — partial update; derived metrics run in the background
DELETE /api/sessions/{id}                  — idempotent delete
POST   /api/sessions/{id}/resume           — PAUSED -> ACTIVE
PATCH  /api/sessions/{id}/rename           — explicit subject rename
PATCH  /api/sessions/{id}/modes            — audio / text mode flags
POST   /api/sessions/{id}/{counter-event}  — photo | whiteboard | ai-interaction | spreading-joy
POST   /api/sessions/{id}/recalculate-metrics — synchronous metrics recompute

Domain errors (SessionNotFoundError, InvalidSessionStateError) propagate to
the handlers registered in main.py. app.state.worker / app.state.pipeline are
set in the main.py lifespan.
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from studytrack.auth import get_current_user_id
from studytrack.database import get_db
from studytrack.retention.policy import load_retention_settings, resolve_retention
from studytrack.sessions import service
from studytrack.sessions.schemas import (
    CounterIncrement,
    DeleteResult,
    ModesRequest,
    RecalculatedMetrics,
    RenameRequest,
    SessionCounts,
    SessionCreate,
    SessionOut,
    SessionPatch,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/sessions", tags=["Sessions"])

# Columns that may be explicitly set to null by a patch
_NULLABLE_PATCH_FIELDS = frozenset({"data", "last_point", "subject", "topic"})


def _patch_values(body: SessionPatch) -> dict[str, Any]:
    return {
        key: value
        for key, value in body.model_dump(exclude_unset=True).items()
        if value is not None or key in _NULLABLE_PATCH_FIELDS
    }


@router.post("", response_model=SessionOut, status_code=201)
async def create_session(
    body: Optional[SessionCreate] = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    initial = body.model_dump(exclude_unset=True) if body is not None else {}
    orm = await service.create_session(db, user_id, initial)
    return SessionOut.model_validate(orm)


@router.get("", response_model=list[SessionOut])
async def list_sessions(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return [SessionOut.model_validate(s) for s in await service.list_user_sessions(db, user_id)]


@router.get("/active", response_model=Optional[SessionOut])
async def get_active_session(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    orm = await service.get_active_session(db, user_id)
    return SessionOut.model_validate(orm) if orm is not None else None


@router.get("/incomplete", response_model=list[SessionOut])
async def list_incomplete_sessions(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    sessions = await service.list_incomplete_sessions(db, user_id)
    return [SessionOut.model_validate(s) for s in sessions]


@router.get("/complete", response_model=list[SessionOut])
async def list_complete_sessions(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    policy = resolve_retention(await load_retention_settings(db))
    sessions = await service.list_complete_sessions(db, user_id, policy)
    return [SessionOut.model_validate(s) for s in sessions]


@router.get("/counts", response_model=SessionCounts)
async def get_session_counts(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    policy = resolve_retention(await load_retention_settings(db))
    return SessionCounts(**await service.get_session_counts(db, user_id, policy))


@router.get("/{session_id}", response_model=SessionOut)
async def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return SessionOut.model_validate(await service.get_session(db, session_id, user_id))


@router.patch("/{session_id}", response_model=SessionOut)
async def update_session(
    session_id: str,
    body: SessionPatch,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Apply a partial update. The response reflects the patch immediately;
    counters and subject derived from the transcript appear on a later read.
    """
    orm = await service.update_session(
        db,
        session_id,
        _patch_values(body),
        user_id=user_id,
        worker=getattr(request.app.state, "worker", None),
        pipeline=getattr(request.app.state, "pipeline", None),
    )
    return SessionOut.model_validate(orm)


@router.delete("/{session_id}", response_model=DeleteResult)
async def delete_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    deleted = await service.delete_session(db, session_id, user_id)
    return DeleteResult(session_id=session_id, deleted=deleted)


@router.post("/{session_id}/resume", response_model=SessionOut)
async def resume_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return SessionOut.model_validate(await service.resume_session(db, session_id, user_id))


@router.patch("/{session_id}/rename", response_model=SessionOut)
async def rename_session(
    session_id: str,
    body: RenameRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    orm = await service.rename_session(db, session_id, user_id, body.title)
    return SessionOut.model_validate(orm)


@router.patch("/{session_id}/modes", response_model=SessionOut)
async def update_session_modes(
    session_id: str,
    body: ModesRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    orm = await service.update_session_modes(
        db, session_id, user_id, body.audio_enabled, body.text_enabled,
    )
    return SessionOut.model_validate(orm)


@router.post("/{session_id}/recalculate-metrics", response_model=RecalculatedMetrics)
async def recalculate_metrics(
    session_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await service.get_session(db, session_id, user_id)
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Metrics pipeline not initialized")
    counters = await pipeline.recalculate_metrics(session_id)
    if counters is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return RecalculatedMetrics(session_id=session_id, **counters)


@router.post("/{session_id}/{event}", response_model=SessionOut)
async def record_counter_event(
    session_id: str,
    event: str,
    body: Optional[CounterIncrement] = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    counter = service.COUNTER_EVENTS.get(event)
    if counter is None:
        raise HTTPException(status_code=404, detail=f"Unknown session event '{event}'")
    amount = body.count if body is not None else 1
    orm = await service.increment_session_counter(db, session_id, user_id, counter, amount)
    return SessionOut.model_validate(orm)
