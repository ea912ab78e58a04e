"""
models/progress.py — SQLAlchemy ORM model for per-subject learning progress.

Table: progress
Immutable: one row per detected subject per completed session, written once by
metrics.service.SessionPipeline.record_completion(). session_id is a weak
back-reference (no FK) so retention cleanup never has to touch progress rows.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from studytrack.database import Base, JSONType


class ProgressORM(Base):
    """
    ORM model for one subject's share of a completed session.

    Counters are the session totals scaled by this subject's share of detected
    questions, each rounded independently (sums may differ from session totals).
    """
    __tablename__ = "progress"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    session_id: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True, index=True,
        comment="Source session (weak reference, may be deleted by retention)",
    )
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    topic: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    accuracy: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    time_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="Seconds")
    questions_attempted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    questions_correct: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    questions_wrong: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[str] = mapped_column(String(32), nullable=False, default="beginner")
    details: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
        comment="Session context: whiteboard, photo uploads, multi-subject flags",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
