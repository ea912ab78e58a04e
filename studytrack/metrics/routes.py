"""
routes.py — Metrics HTTP endpoints.

GET    /api/metrics                   — streak, medals, star progress, today's activity
GET    /api/metrics/star-progress     — recompute and persist today's star progress
GET    /api/metrics/stats             — personal stats for the progress page
GET    /api/metrics/progress          — progress records (optional ?subject=)
GET    /api/metrics/progress/summary  — score-based summary per subject
DELETE /api/metrics/ai-data           — delete the caller's sessions and progress
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from studytrack.auth import get_current_user_id
from studytrack.database import get_db
from studytrack.metrics import service
from studytrack.metrics.schemas import (
    ClearDataOut,
    PersonalStatsOut,
    ProgressMetricsOut,
    ProgressOut,
    ProgressSummaryOut,
    StarProgressOut,
)
from studytrack.sessions.service import clear_user_data

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/metrics", tags=["Metrics"])


@router.get("", response_model=ProgressMetricsOut)
async def get_progress_metrics(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    metrics = await service.get_progress_metrics(db, user_id)
    return ProgressMetricsOut.model_validate(metrics)


@router.get("/star-progress", response_model=StarProgressOut)
async def get_star_progress(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return StarProgressOut(star_progress=await service.calculate_star_progress(db, user_id))


@router.get("/stats", response_model=PersonalStatsOut)
async def get_personal_stats(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return PersonalStatsOut.model_validate(await service.get_personal_stats(db, user_id))


@router.get("/progress", response_model=list[ProgressOut])
async def get_progress(
    subject: Optional[str] = Query(default=None, max_length=255),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    records = await service.get_progress(db, user_id, subject)
    return [ProgressOut.model_validate(p) for p in records]


@router.get("/progress/summary", response_model=ProgressSummaryOut)
async def get_progress_summary(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return ProgressSummaryOut.model_validate(await service.get_progress_summary(db, user_id))


@router.delete("/ai-data", response_model=ClearDataOut)
async def clear_ai_data(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return ClearDataOut(**await clear_user_data(db, user_id))
