"""
End-to-end API tests through the FastAPI app.

Tests the HTTP stack: X-User-Id identity → schema validation → session
service → SQLite persistence → standard error bodies.

ASGITransport does not run the lifespan, so no migrations, worker, oracle or
scheduler are started; `get_db` is overridden to use the test session factory
and app.state.cleanup_engine is set per test.
"""
from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from studytrack.config import settings
from studytrack.database import get_db
from studytrack.main import app
from studytrack.retention.cleanup import CleanupEngine
from studytrack.tests.helpers import transcript, user_message

HEADERS = {"X-User-Id": "api-user"}
ADMIN_HEADERS = {"X-User-Id": "ops-admin"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory):
    """Async httpx client using ASGI transport — no live server needed."""
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.cleanup_engine = CleanupEngine(session_factory)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
    del app.state.cleanup_engine


# ---------------------------------------------------------------------------
# Test Group 1: identity & error envelope
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health_needs_no_identity(client: AsyncClient) -> None:
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_user_header_is_401(client: AsyncClient) -> None:
    response = await client.get("/api/sessions/active")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_unknown_session_is_404(client: AsyncClient) -> None:
    response = await client.get("/api/sessions/nope", headers=HEADERS)

    assert response.status_code == 404
    body = response.json()["error"]
    assert body["code"] == "NOT_FOUND"
    assert body["details"] == [{"field": "session_id", "issue": "nope"}]


@pytest.mark.asyncio
async def test_unknown_patch_field_is_422(client: AsyncClient) -> None:
    created = (await client.post("/api/sessions", headers=HEADERS)).json()

    response = await client.patch(
        f"/api/sessions/{created['id']}", json={"colour": "blue"}, headers=HEADERS,
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_negative_counter_is_422(client: AsyncClient) -> None:
    created = (await client.post("/api/sessions", headers=HEADERS)).json()

    response = await client.patch(
        f"/api/sessions/{created['id']}", json={"duration": -1}, headers=HEADERS,
    )

    assert response.status_code == 422


# ---------------------------------------------------------------------------
# Test Group 2: session lifecycle over HTTP
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_is_idempotent(client: AsyncClient) -> None:
    first = await client.post("/api/sessions", headers=HEADERS)
    second = await client.post("/api/sessions", json={"subject": "Maths"}, headers=HEADERS)

    assert first.status_code == 201
    assert second.status_code == 201
    assert second.json()["id"] == first.json()["id"]

    active = await client.get("/api/sessions/active", headers=HEADERS)
    assert active.json()["id"] == first.json()["id"]


@pytest.mark.asyncio
async def test_active_is_null_without_session(client: AsyncClient) -> None:
    response = await client.get("/api/sessions/active", headers=HEADERS)
    assert response.status_code == 200
    assert response.json() is None


@pytest.mark.asyncio
async def test_sessions_are_scoped_to_caller(client: AsyncClient) -> None:
    created = (await client.post("/api/sessions", headers=HEADERS)).json()

    response = await client.get(f"/api/sessions/{created['id']}", headers={"X-User-Id": "someone-else"})

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_patch_then_reopen_is_409(client: AsyncClient) -> None:
    created = (await client.post("/api/sessions", headers=HEADERS)).json()
    session_url = f"/api/sessions/{created['id']}"

    patched = await client.patch(
        session_url,
        json={"data": transcript(user_message("m2", "what is 3+4")), "duration": 90},
        headers=HEADERS,
    )
    assert patched.status_code == 200
    assert patched.json()["duration"] == 90
    assert patched.json()["data"]["messages"][1]["text"] == "what is 3+4"

    done = await client.patch(session_url, json={"completed": True}, headers=HEADERS)
    assert done.json()["completed"] is True

    reopen = await client.patch(session_url, json={"completed": False}, headers=HEADERS)
    assert reopen.status_code == 409
    assert reopen.json()["error"]["code"] == "INVALID_STATE"


@pytest.mark.asyncio
async def test_pause_resume_flow(client: AsyncClient) -> None:
    created = (await client.post("/api/sessions", headers=HEADERS)).json()
    session_url = f"/api/sessions/{created['id']}"

    await client.patch(session_url, json={"last_point": "question 2"}, headers=HEADERS)
    assert (await client.get("/api/sessions/active", headers=HEADERS)).json() is None

    incomplete = (await client.get("/api/sessions/incomplete", headers=HEADERS)).json()
    assert [s["id"] for s in incomplete] == [created["id"]]

    resumed = await client.post(f"{session_url}/resume", headers=HEADERS)
    assert resumed.status_code == 200
    assert resumed.json()["last_point"] is None


@pytest.mark.asyncio
async def test_delete_twice(client: AsyncClient) -> None:
    created = (await client.post("/api/sessions", headers=HEADERS)).json()
    session_url = f"/api/sessions/{created['id']}"

    first = await client.delete(session_url, headers=HEADERS)
    second = await client.delete(session_url, headers=HEADERS)

    assert first.json() == {"session_id": created["id"], "deleted": True}
    assert second.status_code == 200
    assert second.json()["deleted"] is False


@pytest.mark.asyncio
async def test_counter_events(client: AsyncClient) -> None:
    created = (await client.post("/api/sessions", headers=HEADERS)).json()
    session_url = f"/api/sessions/{created['id']}"

    await client.post(f"{session_url}/photo", headers=HEADERS)
    photo = await client.post(f"{session_url}/photo", json={"count": 2}, headers=HEADERS)
    joy = await client.post(f"{session_url}/spreading-joy", headers=HEADERS)
    unknown = await client.post(f"{session_url}/confetti", headers=HEADERS)

    assert photo.json()["photo_uploads_count"] == 3
    assert joy.json()["spreading_joy_actions"] == 1
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_rename_and_counts(client: AsyncClient) -> None:
    created = (await client.post("/api/sessions", headers=HEADERS)).json()
    session_url = f"/api/sessions/{created['id']}"
    await client.patch(session_url, json={"completed": True}, headers=HEADERS)

    renamed = await client.patch(f"{session_url}/rename", json={"title": "Fractions"}, headers=HEADERS)
    counts = await client.get("/api/sessions/counts", headers=HEADERS)

    assert renamed.json()["subject"] == "Fractions"
    assert counts.json() == {"incomplete_count": 0, "complete_count": 1, "total_count": 1}


@pytest.mark.asyncio
async def test_recalculate_without_pipeline_is_503(client: AsyncClient) -> None:
    created = (await client.post("/api/sessions", headers=HEADERS)).json()

    response = await client.post(f"/api/sessions/{created['id']}/recalculate-metrics", headers=HEADERS)

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "SERVICE_UNAVAILABLE"


# ---------------------------------------------------------------------------
# Test Group 3: metrics & admin cleanup
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_metrics_for_new_user(client: AsyncClient) -> None:
    response = await client.get("/api/metrics", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["streak"] == {"current": 0, "longest": 0}
    assert body["medals"]["streaker"] == {"threshold": 200, "progress": 0, "status": "in_progress"}
    assert body["star_progress"] == 0
    assert body["today_activity"]["study_minutes"] == 0


@pytest.mark.asyncio
async def test_stats_and_progress_endpoints(client: AsyncClient) -> None:
    stats = await client.get("/api/metrics/stats", headers=HEADERS)
    progress = await client.get("/api/metrics/progress", params={"subject": "Mathematics"}, headers=HEADERS)
    summary = await client.get("/api/metrics/progress/summary", headers=HEADERS)

    assert stats.json()["total_sessions"] == 0
    assert progress.json() == []
    assert summary.json()["overall_progress"] == 0


@pytest.mark.asyncio
async def test_clear_ai_data(client: AsyncClient) -> None:
    await client.post("/api/sessions", headers=HEADERS)

    cleared = await client.delete("/api/metrics/ai-data", headers=HEADERS)

    assert cleared.json() == {"sessions_deleted": 1, "progress_deleted": 0}
    assert (await client.get("/api/sessions", headers=HEADERS)).json() == []


@pytest.mark.asyncio
async def test_admin_cleanup_endpoints(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setattr(settings, "admin_user_ids", "ops-admin")
    await client.post("/api/sessions", headers=HEADERS)

    full = await client.post("/api/admin/cleanup/run", headers=ADMIN_HEADERS)
    expired = await client.post("/api/admin/cleanup/expired", headers=ADMIN_HEADERS)
    orphans = await client.post("/api/admin/cleanup/orphaned-files", headers=ADMIN_HEADERS)
    consistency = await client.post("/api/admin/cleanup/consistency-check", headers=ADMIN_HEADERS)

    assert full.status_code == 200
    assert full.json()["errors"] == 0
    assert expired.json() == {"deleted": 0, "errors": 0}
    assert orphans.json()["referenced_urls"] == 0
    assert consistency.json()["users_checked"] == 0


@pytest.mark.asyncio
async def test_admin_cleanup_refuses_non_admin(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setattr(settings, "admin_user_ids", "ops-admin")
    victim = {"X-User-Id": "victim"}
    await client.post("/api/sessions", headers=victim)

    for path in ("run", "expired", "orphaned-files", "consistency-check"):
        response = await client.post(f"/api/admin/cleanup/{path}", headers=HEADERS)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    assert len((await client.get("/api/sessions", headers=victim)).json()) == 1


@pytest.mark.asyncio
async def test_admin_cleanup_closed_when_no_admins_configured(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setattr(settings, "admin_user_ids", "")

    response = await client.post("/api/admin/cleanup/expired", headers=ADMIN_HEADERS)

    assert response.status_code == 403
