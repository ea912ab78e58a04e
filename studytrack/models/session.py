"""
models/session.py — SQLAlchemy ORM model for a learning session.

Table: sessions

Lifecycle (derived from columns, no explicit state column):
  ACTIVE     completed = false, last_point NULL or ''
  PAUSED     completed = false, last_point set
  COMPLETED  completed = true  (terminal; only explicit rename and deletion follow)

At most one ACTIVE row per user — restored by sessions.service.reconcile_active_sessions().
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from studytrack.database import Base, JSONType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionORM(Base):
    """
    ORM model for one user's learning interaction window.

    data:       transcript — {"messages": [...], "whiteboard": ...}. SQL NULL until the
                user produces content. Logged by id only, never by content.
    updated_at: bumped on every mutation; basis for retention cutoff and "active" recency.
    """
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Session UUID",
    )
    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Owning user id from the identity provider",
    )
    data: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Transcript: messages + optional whiteboard payload",
    )
    completed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True,
        comment="Monotonic false -> true",
    )
    last_point: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True,
        comment="Resume marker; presence means paused, not active",
    )
    subject: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    topic: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Counters, non-negative
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="Seconds")
    questions_answered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    photo_uploads_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    whiteboard_submissions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ai_interactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    spreading_joy_actions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    audio_mode_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    text_mode_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
        index=True,
    )

    @property
    def is_active(self) -> bool:
        """True-active: not completed and no saved resume marker."""
        return not self.completed and not self.last_point
