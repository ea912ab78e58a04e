"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 12:00:00.000000 UTC

Creates the four tables:
  - sessions        (learning sessions, JSONB transcript)
  - progress        (per-subject records of completed sessions, weak session_id reference)
  - user_activity   (one row per user per day)
  - admin_settings  (retention configuration, written by the admin surface)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- sessions table ---
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(length=36), nullable=False, comment="Session UUID"),
        sa.Column("user_id", sa.String(length=64), nullable=False, comment="Owning user id from the identity provider"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment="Transcript: messages + optional whiteboard payload"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false(), comment="Monotonic false -> true"),
        sa.Column("last_point", sa.Text(), nullable=True, comment="Resume marker; presence means paused, not active"),
        sa.Column("subject", sa.String(length=255), nullable=True),
        sa.Column("topic", sa.String(length=255), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="0", comment="Seconds"),
        sa.Column("questions_answered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("correct_answers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("photo_uploads_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("whiteboard_submissions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ai_interactions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("spreading_joy_actions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("audio_mode_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("text_mode_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_sessions_user_id"), "sessions", ["user_id"], unique=False)
    op.create_index(op.f("ix_sessions_completed"), "sessions", ["completed"], unique=False)
    op.create_index(op.f("ix_sessions_updated_at"), "sessions", ["updated_at"], unique=False)

    # --- progress table ---
    op.create_table(
        "progress",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=True, comment="Source session (weak reference, may be deleted by retention)"),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("topic", sa.String(length=255), nullable=True),
        sa.Column("score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("accuracy", sa.Float(), nullable=False, server_default="0"),
        sa.Column("time_spent", sa.Integer(), nullable=False, server_default="0", comment="Seconds"),
        sa.Column("questions_attempted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("questions_correct", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("questions_wrong", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.String(length=32), nullable=False, server_default="beginner"),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment="Session context: whiteboard, photo uploads, multi-subject flags"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_progress_user_id"), "progress", ["user_id"], unique=False)
    op.create_index(op.f("ix_progress_session_id"), "progress", ["session_id"], unique=False)

    # --- user_activity table ---
    op.create_table(
        "user_activity",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("study_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("questions_answered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("photo_questions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("positive_actions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ai_interactions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("star_progress", sa.Integer(), nullable=False, server_default="0", comment="0..100"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "date", name="uq_user_activity_user_date"),
    )
    op.create_index(op.f("ix_user_activity_user_id"), "user_activity", ["user_id"], unique=False)

    # --- admin_settings table ---
    op.create_table(
        "admin_settings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("data_retention", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("retention_duration", sa.String(length=16), nullable=False, server_default="30", comment="'7' | '30' | '90' | 'never'"),
        sa.Column("updated_by", sa.String(length=64), nullable=False, server_default="system"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("admin_settings")
    op.drop_index(op.f("ix_user_activity_user_id"), table_name="user_activity")
    op.drop_table("user_activity")
    op.drop_index(op.f("ix_progress_session_id"), table_name="progress")
    op.drop_index(op.f("ix_progress_user_id"), table_name="progress")
    op.drop_table("progress")
    op.drop_index(op.f("ix_sessions_updated_at"), table_name="sessions")
    op.drop_index(op.f("ix_sessions_completed"), table_name="sessions")
    op.drop_index(op.f("ix_sessions_user_id"), table_name="sessions")
    op.drop_table("sessions")
