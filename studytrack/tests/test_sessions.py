"""
Session lifecycle tests — store facade + sessions.service over SQLite.

Covers the one-active-session invariant (idempotent create, duplicate repair,
keeper preference), idempotent delete, resume / reopen rules, and which
background jobs an update hands to the worker.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from studytrack import store
from studytrack.errors import InvalidSessionStateError, SessionNotFoundError
from studytrack.retention.policy import RetentionSettings, resolve_retention
from studytrack.sessions import service
from studytrack.tests.helpers import transcript, user_message

USER = "user-1"
OTHER = "user-2"


def _ts(minutes_ago: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)


# ---------------------------------------------------------------------------
# Test Group 1: idempotent create & the one-active invariant
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_session_is_idempotent_for_active_session(db) -> None:
    first = await service.create_session(db, USER)
    second = await service.create_session(db, USER, {"subject": "ignored"})

    assert second.id == first.id
    assert second.subject is None
    assert len(await store.list_active_sessions(db, USER)) == 1


@pytest.mark.asyncio
async def test_create_session_after_pause_inserts_new_row(db) -> None:
    first = await service.create_session(db, USER)
    await service.update_session(db, first.id, {"last_point": "question 3"})

    second = await service.create_session(db, USER)

    assert second.id != first.id
    assert [s.id for s in await store.list_active_sessions(db, USER)] == [second.id]


@pytest.mark.asyncio
async def test_active_sessions_are_per_user(db) -> None:
    mine = await service.create_session(db, USER)
    theirs = await service.create_session(db, OTHER)
    assert mine.id != theirs.id


@pytest.mark.asyncio
async def test_reconcile_prefers_newest_session_with_transcript(db) -> None:
    empty_newest = await store.insert_session(db, USER, {"updated_at": _ts(1)})
    with_data = await store.insert_session(
        db, USER, {"data": transcript(user_message("m2", "what is 3+4")), "updated_at": _ts(5)},
    )
    await store.insert_session(db, USER, {"updated_at": _ts(10)})

    keeper = await service.get_active_session(db, USER)

    assert keeper is not None
    assert keeper.id == with_data.id
    remaining = await store.list_active_sessions(db, USER)
    assert [s.id for s in remaining] == [with_data.id]
    assert await store.get_session(db, empty_newest.id) is None


@pytest.mark.asyncio
async def test_reconcile_falls_back_to_most_recently_updated(db) -> None:
    older = await store.insert_session(db, USER, {"updated_at": _ts(30)})
    newer = await store.insert_session(db, USER, {"updated_at": _ts(2)})

    keeper = await service.reconcile_active_sessions(db, USER)

    assert keeper.id == newer.id
    assert await store.get_session(db, older.id) is None


@pytest.mark.asyncio
async def test_reconcile_keep_id_wins_over_recency_and_transcript(db) -> None:
    await store.insert_session(
        db, USER, {"data": transcript(user_message("m2", "hello there")), "updated_at": _ts(1)},
    )
    chosen = await store.insert_session(db, USER, {"updated_at": _ts(60)})

    keeper = await service.reconcile_active_sessions(db, USER, keep_id=chosen.id)

    assert keeper.id == chosen.id
    assert [s.id for s in await store.list_active_sessions(db, USER)] == [chosen.id]


@pytest.mark.asyncio
async def test_paused_and_completed_sessions_are_not_reconciled(db) -> None:
    paused = await store.insert_session(db, USER, {"last_point": "q2"})
    done = await store.insert_session(db, USER, {"completed": True})
    active = await store.insert_session(db, USER, {})

    keeper = await service.get_active_session(db, USER)

    assert keeper.id == active.id
    assert await store.get_session(db, paused.id) is not None
    assert await store.get_session(db, done.id) is not None


@pytest.mark.asyncio
async def test_empty_last_point_counts_as_active(db) -> None:
    blank = await store.insert_session(db, USER, {"last_point": "", "updated_at": _ts(1)})
    await store.insert_session(db, USER, {"updated_at": _ts(20)})

    keeper = await service.get_active_session(db, USER)

    assert keeper.id == blank.id
    assert len(await store.list_active_sessions(db, USER)) == 1


@pytest.mark.asyncio
async def test_reconcile_all_users_repairs_every_duplicate(session_factory) -> None:
    async with session_factory() as db:
        for user_id in (USER, OTHER):
            await store.insert_session(db, user_id, {"updated_at": _ts(3)})
            await store.insert_session(db, user_id, {"updated_at": _ts(1)})
        await store.insert_session(db, "solo", {})
        await db.commit()

    report = await service.reconcile_all_users(session_factory)

    assert report.users_checked == 2
    assert report.sessions_deleted == 2
    assert report.errors == 0
    async with session_factory() as db:
        assert await store.list_users_with_duplicate_active(db) == []


# ---------------------------------------------------------------------------
# Test Group 2: delete / resume / reopen
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_session_is_idempotent(db) -> None:
    orm = await service.create_session(db, USER)

    assert await service.delete_session(db, orm.id, USER) is True
    assert await service.delete_session(db, orm.id, USER) is False


@pytest.mark.asyncio
async def test_delete_session_scoped_to_owner(db) -> None:
    orm = await service.create_session(db, USER)

    assert await service.delete_session(db, orm.id, OTHER) is False
    assert await store.get_session(db, orm.id) is not None


@pytest.mark.asyncio
async def test_get_session_foreign_owner_is_not_found(db) -> None:
    orm = await service.create_session(db, USER)
    with pytest.raises(SessionNotFoundError):
        await service.get_session(db, orm.id, OTHER)


@pytest.mark.asyncio
async def test_resume_clears_last_point_and_removes_empty_other_active(db) -> None:
    paused = await store.insert_session(db, USER, {"last_point": "q4", "updated_at": _ts(30)})
    current = await store.insert_session(db, USER, {"updated_at": _ts(1)})

    resumed = await service.resume_session(db, paused.id, USER)

    assert resumed.id == paused.id
    assert not resumed.last_point
    assert resumed.is_active
    assert await store.get_session(db, current.id) is None


@pytest.mark.asyncio
async def test_resume_pauses_other_active_with_real_messages(db) -> None:
    paused = await store.insert_session(db, USER, {"last_point": "q4", "updated_at": _ts(30)})
    current = await store.insert_session(
        db, USER, {"data": transcript(user_message("m2", "what is 7x8")), "updated_at": _ts(1)},
    )

    resumed = await service.resume_session(db, paused.id, USER)

    kept = await store.get_session(db, current.id)
    assert kept is not None
    assert kept.last_point == service.SUPERSEDED_LAST_POINT
    assert [s.id for s in await store.list_active_sessions(db, USER)] == [resumed.id]


@pytest.mark.asyncio
async def test_unpausing_via_update_pauses_other_conversation(db) -> None:
    paused = await store.insert_session(db, USER, {"last_point": "q1", "updated_at": _ts(30)})
    current = await store.insert_session(
        db, USER, {"data": transcript(user_message("m2", "explain photosynthesis")), "updated_at": _ts(1)},
    )

    await service.update_session(db, paused.id, {"last_point": None})

    kept = await store.get_session(db, current.id)
    assert kept is not None
    assert not kept.is_active
    assert [s.id for s in await store.list_active_sessions(db, USER)] == [paused.id]


@pytest.mark.asyncio
async def test_resume_completed_session_raises(db) -> None:
    done = await store.insert_session(db, USER, {"completed": True})
    with pytest.raises(InvalidSessionStateError):
        await service.resume_session(db, done.id, USER)


@pytest.mark.asyncio
async def test_resume_foreign_session_raises_not_found(db) -> None:
    paused = await store.insert_session(db, USER, {"last_point": "q1"})
    with pytest.raises(SessionNotFoundError):
        await service.resume_session(db, paused.id, OTHER)


@pytest.mark.asyncio
async def test_update_cannot_reopen_completed_session(db) -> None:
    orm = await service.create_session(db, USER)
    await service.update_session(db, orm.id, {"completed": True})

    with pytest.raises(InvalidSessionStateError):
        await service.update_session(db, orm.id, {"completed": False})


@pytest.mark.asyncio
async def test_update_unknown_session_raises_not_found(db) -> None:
    with pytest.raises(SessionNotFoundError):
        await service.update_session(db, "does-not-exist", {"duration": 10})


@pytest.mark.asyncio
async def test_update_bumps_updated_at(db) -> None:
    orm = await store.insert_session(db, USER, {"updated_at": _ts(60)})
    before = await store.get_session(db, orm.id)
    before_ts = before.updated_at

    updated = await service.update_session(db, orm.id, {"duration": 120})

    assert updated.duration == 120
    assert updated.updated_at.replace(tzinfo=None) > before_ts.replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Test Group 3: background dispatch from update_session
# ---------------------------------------------------------------------------

def _submitted_names(worker: MagicMock) -> list[str]:
    return [c.args[0] for c in worker.submit.call_args_list]


@pytest.mark.asyncio
async def test_transcript_update_schedules_metrics_and_subject(db) -> None:
    orm = await service.create_session(db, USER)
    worker, pipeline = MagicMock(), MagicMock()

    await service.update_session(
        db, orm.id, {"data": transcript(user_message("m2", "what is 3+4"))},
        worker=worker, pipeline=pipeline,
    )

    assert _submitted_names(worker) == [f"metrics:{orm.id}", f"subject:{orm.id}"]


@pytest.mark.asyncio
async def test_welcome_only_transcript_skips_subject_refresh(db) -> None:
    orm = await service.create_session(db, USER)
    worker, pipeline = MagicMock(), MagicMock()

    await service.update_session(db, orm.id, {"data": transcript()}, worker=worker, pipeline=pipeline)

    assert _submitted_names(worker) == [f"metrics:{orm.id}"]


@pytest.mark.asyncio
async def test_completion_with_real_messages_schedules_single_completion_job(db) -> None:
    orm = await service.create_session(db, USER, {"data": transcript(user_message("m2", "what is 3+4"))})
    worker, pipeline = MagicMock(), MagicMock()

    await service.update_session(db, orm.id, {"completed": True}, worker=worker, pipeline=pipeline)

    assert _submitted_names(worker) == [f"complete:{orm.id}"]


@pytest.mark.asyncio
async def test_completion_without_real_messages_schedules_nothing(db) -> None:
    orm = await service.create_session(db, USER, {"data": transcript()})
    worker, pipeline = MagicMock(), MagicMock()

    await service.update_session(db, orm.id, {"completed": True}, worker=worker, pipeline=pipeline)

    worker.submit.assert_not_called()


@pytest.mark.asyncio
async def test_counter_only_update_schedules_nothing(db) -> None:
    orm = await service.create_session(db, USER)
    worker, pipeline = MagicMock(), MagicMock()

    await service.update_session(db, orm.id, {"duration": 300}, worker=worker, pipeline=pipeline)

    worker.submit.assert_not_called()


@pytest.mark.asyncio
async def test_update_active_session_repairs_duplicates_keeping_it(db) -> None:
    target = await store.insert_session(db, USER, {"updated_at": _ts(50)})
    other = await store.insert_session(db, USER, {"updated_at": _ts(1)})

    await service.update_session(db, target.id, {"duration": 30})

    assert await store.get_session(db, other.id) is None
    assert [s.id for s in await store.list_active_sessions(db, USER)] == [target.id]


# ---------------------------------------------------------------------------
# Test Group 4: listings, counters, explicit edits
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_incomplete_sessions_requires_resumable_progress(db) -> None:
    paused = await store.insert_session(db, USER, {"last_point": "q2"})
    with_messages = await store.insert_session(
        db, USER, {"data": transcript(user_message("m2", "hi")), "last_point": "x"},
    )
    whiteboard = await store.insert_session(
        db, USER, {"data": transcript(whiteboard={"strokes": [1]}), "last_point": "y"},
    )
    await store.insert_session(db, USER, {"data": transcript()})

    ids = {s.id for s in await service.list_incomplete_sessions(db, USER)}

    assert ids == {paused.id, with_messages.id, whiteboard.id}


@pytest.mark.asyncio
async def test_list_complete_sessions_respects_retention(db) -> None:
    await store.insert_session(db, USER, {"completed": True, "updated_at": _ts(60 * 24 * 3)})
    recent = await store.insert_session(db, USER, {"completed": True})

    week = resolve_retention(RetentionSettings(True, "1"))
    disabled = resolve_retention(RetentionSettings(False, "30"))
    never = resolve_retention(RetentionSettings(True, "never"))

    assert [s.id for s in await service.list_complete_sessions(db, USER, week)] == [recent.id]
    assert await service.list_complete_sessions(db, USER, disabled) == []
    assert len(await service.list_complete_sessions(db, USER, never)) == 2


@pytest.mark.asyncio
async def test_session_counts(db) -> None:
    await store.insert_session(db, USER, {"last_point": "q2"})
    await store.insert_session(db, USER, {"completed": True})
    await store.insert_session(db, USER, {"completed": True})

    counts = await service.get_session_counts(db, USER, resolve_retention(None))

    assert counts == {"incomplete_count": 1, "complete_count": 2, "total_count": 3}


@pytest.mark.asyncio
async def test_increment_session_counter(db) -> None:
    orm = await service.create_session(db, USER)

    await service.increment_session_counter(db, orm.id, USER, "photo_uploads_count")
    updated = await service.increment_session_counter(db, orm.id, USER, "photo_uploads_count", 3)

    assert updated.photo_uploads_count == 4


@pytest.mark.asyncio
async def test_increment_rejects_negative_and_unknown_counters(db) -> None:
    orm = await service.create_session(db, USER)

    with pytest.raises(ValueError):
        await service.increment_session_counter(db, orm.id, USER, "ai_interactions", -1)
    with pytest.raises(ValueError):
        await service.increment_session_counter(db, orm.id, USER, "subject", 1)
    with pytest.raises(SessionNotFoundError):
        await service.increment_session_counter(db, "missing", USER, "ai_interactions", 1)


@pytest.mark.asyncio
async def test_rename_allowed_after_completion(db) -> None:
    orm = await store.insert_session(db, USER, {"completed": True, "subject": "Unknown"})

    renamed = await service.rename_session(db, orm.id, USER, "Fractions practice")

    assert renamed.subject == "Fractions practice"
    assert renamed.completed is True


@pytest.mark.asyncio
async def test_clear_user_data_removes_sessions_only_for_user(db) -> None:
    await store.insert_session(db, USER, {"completed": True})
    await store.insert_session(db, USER, {"last_point": "q"})
    kept = await store.insert_session(db, OTHER, {})

    result = await service.clear_user_data(db, USER)

    assert result["sessions_deleted"] == 2
    assert await store.list_user_sessions(db, USER) == []
    assert await store.get_session(db, kept.id) is not None
