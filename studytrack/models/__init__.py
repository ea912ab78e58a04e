"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.
"""
from studytrack.models.admin_settings import AdminSettingsORM
from studytrack.models.progress import ProgressORM
from studytrack.models.session import SessionORM
from studytrack.models.user_activity import UserActivityORM

__all__ = ["AdminSettingsORM", "ProgressORM", "SessionORM", "UserActivityORM"]
