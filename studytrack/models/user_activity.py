"""
models/user_activity.py — SQLAlchemy ORM model for daily activity rollups.

Table: user_activity
One row per (user, calendar day), created lazily on first read/write for today.
"""
import datetime as dt
import uuid

from sqlalchemy import Date, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from studytrack.database import Base


class UserActivityORM(Base):
    """ORM model for a user's activity on one local calendar day."""
    __tablename__ = "user_activity"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_user_activity_user_date"),)

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    study_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    questions_answered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    photo_questions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    positive_actions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ai_interactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    star_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="0..100")
