"""
models/admin_settings.py — SQLAlchemy ORM model for admin retention settings.

Table: admin_settings
Singleton-like; written by the external admin surface, only READ here.
retention_duration: "7" | "30" | "90" | "never".
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from studytrack.database import Base


class AdminSettingsORM(Base):
    """ORM model for the retention subset of the admin settings row."""
    __tablename__ = "admin_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    data_retention: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    retention_duration: Mapped[str] = mapped_column(String(16), nullable=False, default="30")
    updated_by: Mapped[str] = mapped_column(String(64), nullable=False, default="system")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
