"""
Test configuration for studytrack tests.

Store, service, pipeline and cleanup tests run against an in-memory SQLite
database (aiosqlite) shared through a StaticPool, so every session opened by
`session_factory` sees the same tables. The schema comes from
Base.metadata.create_all rather than Alembic.

All sessions share one connection: a test that hands `session_factory` to
background code (pipeline, cleanup engine) closes its own session first.
"""
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import studytrack.models  # noqa: F401  (registers tables on Base.metadata)
from studytrack.database import Base
from studytrack.tests.helpers import MATH_REPLY, make_oracle


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def oracle() -> AsyncMock:
    return make_oracle(subjects_reply=MATH_REPLY, positive_reply='{"positiveActions": 1}')
