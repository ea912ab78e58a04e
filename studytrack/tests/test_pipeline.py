"""
SessionPipeline tests — background jobs against SQLite with a mocked oracle.

The oracle double answers subject classification and positive-action prompts
with fixed JSON; no network calls are made.
"""
import pytest

from studytrack import store
from studytrack.metrics.service import (
    SessionPipeline,
    calculate_star_progress,
    get_personal_stats,
    get_progress_metrics,
    local_today,
)
from studytrack.tests.helpers import make_oracle, transcript, user_message

USER = "learner-1"


async def _insert(session_factory, **fields) -> str:
    async with session_factory() as db:
        orm = await store.insert_session(db, USER, fields)
        await db.commit()
        return orm.id


# ---------------------------------------------------------------------------
# Test Group 1: completion -> progress + activity
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_completion_creates_progress_and_rolls_up_activity(session_factory, oracle) -> None:
    session_id = await _insert(
        session_factory,
        data=transcript(
            user_message("m2", "what is 3+4"),
            user_message("m3", "thanks, I got it!"),
        ),
        completed=True,
        duration=600,
        questions_answered=4,
        correct_answers=3,
    )
    pipeline = SessionPipeline(session_factory, oracle)

    created = await pipeline.complete_session(session_id)

    assert created == 1
    async with session_factory() as db:
        records = await store.list_progress(db, USER)
        assert len(records) == 1
        record = records[0]
        assert record.subject == "Mathematics"
        assert record.topic == "Arithmetic"
        assert record.session_id == session_id
        assert record.time_spent == 600
        assert record.questions_attempted == 2
        assert record.questions_correct == 3
        assert record.questions_wrong == 0
        assert record.details["is_multi_subject_session"] is False
        assert record.details["total_subjects_in_session"] == 1

        session = await store.get_session(db, session_id)
        assert session.subject == "Mathematics"
        assert session.spreading_joy_actions == 1

        activity = await store.get_or_create_activity(db, USER, local_today())
        assert activity.study_minutes == 10
        assert activity.questions_answered == 4
        assert activity.positive_actions == 1
        # 40 * 10/120 + 30 * 4/20 + 30 = 39.33
        assert activity.star_progress == 39


@pytest.mark.asyncio
async def test_completion_keeps_explicit_subject(session_factory, oracle) -> None:
    session_id = await _insert(
        session_factory,
        data=transcript(user_message("m2", "what is 3+4")),
        completed=True,
        subject="My homework",
    )

    await SessionPipeline(session_factory, oracle).record_completion(session_id)

    async with session_factory() as db:
        assert (await store.get_session(db, session_id)).subject == "My homework"


@pytest.mark.asyncio
async def test_welcome_only_session_creates_no_progress(session_factory, oracle) -> None:
    session_id = await _insert(session_factory, data=transcript(), completed=True, duration=60)

    created = await SessionPipeline(session_factory, oracle).record_completion(session_id)

    assert created == 0
    oracle.complete.assert_not_called()
    async with session_factory() as db:
        assert await store.list_progress(db, USER) == []


@pytest.mark.asyncio
async def test_mixed_subjects_collapse_into_one_record(session_factory) -> None:
    oracle = make_oracle(
        subjects_reply=(
            '{"subjects": ['
            '{"subject": "Mathematics", "topic": "Algebra", "questionCount": 3},'
            '{"subject": "Physics", "topic": "Forces", "questionCount": 1}]}'
        ),
    )
    session_id = await _insert(
        session_factory,
        data=transcript(user_message("m2", "solve x+2=5"), user_message("m3", "what is a newton")),
        completed=True,
        duration=400,
    )

    await SessionPipeline(session_factory, oracle).record_completion(session_id)

    async with session_factory() as db:
        records = await store.list_progress(db, USER)
    assert [r.subject for r in records] == ["General Practice - Mixed: Mathematics, Physics"]
    assert records[0].questions_attempted == 4
    assert records[0].time_spent == 400


@pytest.mark.asyncio
async def test_oracle_failure_records_unknown_subject(session_factory) -> None:
    oracle = make_oracle()
    oracle.complete.side_effect = RuntimeError("upstream down")
    session_id = await _insert(
        session_factory,
        data=transcript(user_message("m2", "what is 3+4"), user_message("m3", "and 5+6?")),
        completed=True,
    )

    created = await SessionPipeline(session_factory, oracle).complete_session(session_id)

    assert created == 1
    async with session_factory() as db:
        records = await store.list_progress(db, USER)
        assert records[0].subject == "Unknown"
        assert records[0].questions_attempted == 2
        assert (await store.get_session(db, session_id)).spreading_joy_actions == 0


# ---------------------------------------------------------------------------
# Test Group 2: metrics recalculation & subject refresh
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_recalculate_metrics_overwrites_counters(session_factory, oracle) -> None:
    session_id = await _insert(
        session_factory,
        data=transcript(
            user_message("m2", 'look <img src="a.png">'),
            user_message("m3", "[Whiteboard Submission] triangle"),
            user_message("m4", "thank you!"),
        ),
        photo_uploads_count=9,
        spreading_joy_actions=9,
    )
    pipeline = SessionPipeline(session_factory, oracle)

    first = await pipeline.recalculate_metrics(session_id)
    second = await pipeline.recalculate_metrics(session_id)

    assert first == second == {"spreading_joy_actions": 1, "photo_uploads_count": 2}
    async with session_factory() as db:
        session = await store.get_session(db, session_id)
        assert session.photo_uploads_count == 2
        assert session.spreading_joy_actions == 1


@pytest.mark.asyncio
async def test_deleted_session_jobs_end_quietly(session_factory, oracle) -> None:
    pipeline = SessionPipeline(session_factory, oracle)

    assert await pipeline.recalculate_metrics("gone") is None
    assert await pipeline.record_completion("gone") == 0
    await pipeline.refresh_subject("gone")

    oracle.complete.assert_not_called()


@pytest.mark.asyncio
async def test_refresh_subject_updates_open_session(session_factory, oracle) -> None:
    session_id = await _insert(session_factory, data=transcript(user_message("m2", "what is 3+4")))

    await SessionPipeline(session_factory, oracle).refresh_subject(session_id)

    async with session_factory() as db:
        session = await store.get_session(db, session_id)
    assert (session.subject, session.topic) == ("Mathematics", "Arithmetic")


@pytest.mark.asyncio
async def test_refresh_subject_leaves_completed_session_alone(session_factory, oracle) -> None:
    session_id = await _insert(
        session_factory,
        data=transcript(user_message("m2", "what is 3+4")),
        completed=True,
        subject="Renamed by user",
    )

    await SessionPipeline(session_factory, oracle).refresh_subject(session_id)

    async with session_factory() as db:
        assert (await store.get_session(db, session_id)).subject == "Renamed by user"
    oracle.complete.assert_not_called()


# ---------------------------------------------------------------------------
# Test Group 3: request-path metric queries
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_progress_metrics_and_star_progress(session_factory, oracle) -> None:
    session_id = await _insert(
        session_factory,
        data=transcript(user_message("m2", "what is 3+4")),
        completed=True,
        duration=7200,
        questions_answered=20,
        photo_uploads_count=2,
    )
    await SessionPipeline(session_factory, oracle).complete_session(session_id, recalculate=False)

    async with session_factory() as db:
        metrics = await get_progress_metrics(db, USER)
        star = await calculate_star_progress(db, USER)

    assert metrics.streak.current == 1
    assert metrics.medals.say_cheese.progress == 2
    assert metrics.medals.say_cheese.status == "in_progress"
    assert metrics.star_progress == 100
    assert star == 100


@pytest.mark.asyncio
async def test_personal_stats_only_count_completed_sessions(session_factory) -> None:
    await _insert(
        session_factory,
        data=transcript(user_message("m2", "q")),
        completed=True,
        duration=1200,
        questions_answered=10,
        correct_answers=7,
    )
    await _insert(session_factory, data=transcript(user_message("m2", "q")), duration=600)

    async with session_factory() as db:
        stats = await get_personal_stats(db, USER)

    assert stats.total_sessions == 1
    assert stats.total_study_time == 1200
    assert stats.average_session_minutes == 20
    assert stats.accuracy == 70
    assert stats.total_study_time_this_week == 1800
    assert len(stats.recent_activity) == 1
    assert stats.recent_activity[0].title == "Practice Session"
