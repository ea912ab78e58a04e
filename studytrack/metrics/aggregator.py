"""
aggregator.py — Pure derived-metrics computations over session history.

No database access and no oracle calls: everything here takes already-loaded
sessions / progress rows (or any object with the same attributes) and returns
plain values, so it is deterministic and tested without fixtures.

Day boundaries are server-local calendar days. Timestamps read back from a
database without timezone support come back naive; they are treated as UTC.

Rounding: every "round" here is half-up (2.5 -> 3), not Python's banker's round().
"""
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from studytrack.sessions.transcript import WHITEBOARD_MARKER, is_user_message, message_text

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

STREAKER_THRESHOLD = 200        # continuous days
SPREADING_JOY_THRESHOLD = 100   # positive actions, all sessions
SAY_CHEESE_THRESHOLD = 100      # photo uploads, all sessions

STUDY_GOAL_MINUTES = 120
QUESTIONS_GOAL = 20
STUDY_WEIGHT = 40
QUESTIONS_WEIGHT = 30
STREAK_WEIGHT = 30

RECENT_ACTIVITY_LIMIT = 5
DEFAULT_ACTIVITY_TITLE = "Practice Session"
DEFAULT_LEVEL = "beginner"

MEDAL_COMPLETED = "completed"
MEDAL_IN_PROGRESS = "in_progress"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def as_aware(ts: datetime) -> datetime:
    """Attach UTC to naive timestamps."""
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def local_date(ts: datetime) -> date:
    return as_aware(ts).astimezone().date()


def start_of_week(now: Optional[datetime] = None) -> datetime:
    """Monday 00:00 in server-local time for the week containing `now`."""
    local_now = as_aware(now).astimezone() if now is not None else datetime.now().astimezone()
    monday = local_now - timedelta(days=local_now.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def count_photo_uploads(messages: list[dict]) -> int:
    """User messages carrying an embedded image or a whiteboard submission."""
    return sum(
        1 for m in messages
        if is_user_message(m)
        and ("<img" in message_text(m) or WHITEBOARD_MARKER in message_text(m))
    )


# ---------------------------------------------------------------------------
# Streaks & medals
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Streak:
    current: int
    longest: int


def compute_streak(timestamps: Iterable[datetime], today: Optional[date] = None) -> Streak:
    """
    current — consecutive days ending today (today missing -> 0)
    longest — longest run of consecutive days anywhere, never below current
    """
    days = {local_date(ts) for ts in timestamps}
    if not days:
        return Streak(0, 0)
    today = today or datetime.now().astimezone().date()

    current = 0
    while today - timedelta(days=current) in days:
        current += 1

    longest = run = 0
    previous: Optional[date] = None
    for day in sorted(days):
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day
    return Streak(current=current, longest=max(longest, current))


@dataclass(frozen=True)
class Medal:
    threshold: int
    progress: int

    @property
    def status(self) -> str:
        return MEDAL_COMPLETED if self.progress >= self.threshold else MEDAL_IN_PROGRESS


@dataclass(frozen=True)
class Medals:
    streaker: Medal
    spreading_joy: Medal
    say_cheese: Medal


def compute_medals(sessions: Iterable[Any], today: Optional[date] = None) -> tuple[Streak, Medals]:
    """Streak over session creation days plus the three medal counters."""
    sessions = list(sessions)
    streak = compute_streak((s.created_at for s in sessions), today=today)
    total_joy = sum(s.spreading_joy_actions or 0 for s in sessions)
    total_photos = sum(s.photo_uploads_count or 0 for s in sessions)
    return streak, Medals(
        streaker=Medal(STREAKER_THRESHOLD, streak.current),
        spreading_joy=Medal(SPREADING_JOY_THRESHOLD, total_joy),
        say_cheese=Medal(SAY_CHEESE_THRESHOLD, total_photos),
    )


# ---------------------------------------------------------------------------
# Star progress
# ---------------------------------------------------------------------------

def compute_star_progress(activity: Any) -> int:
    """
    Daily 0..100 score: 40% study time toward 120 min, 30% questions toward 20,
    30% for having studied at all today.
    """
    minutes = max(activity.study_minutes or 0, 0)
    questions = max(activity.questions_answered or 0, 0)
    total = (
        STUDY_WEIGHT * min(minutes / STUDY_GOAL_MINUTES, 1)
        + QUESTIONS_WEIGHT * min(questions / QUESTIONS_GOAL, 1)
        + (STREAK_WEIGHT if minutes > 0 else 0)
    )
    return min(max(round_half_up(total), 0), 100)


# ---------------------------------------------------------------------------
# Personal stats
# ---------------------------------------------------------------------------

@dataclass
class SubjectBreakdown:
    subject: str
    sessions_count: int
    accuracy: float
    time_spent: int
    level: str


@dataclass(frozen=True)
class RecentActivity:
    id: str
    title: str
    date: datetime
    duration: int
    type: str = "session"


@dataclass
class PersonalStats:
    total_study_time_this_week: int
    concepts_learned: int
    latest_session_date: Optional[datetime]
    total_sessions: int
    total_study_time: int
    average_session_minutes: int
    total_questions_answered: int
    correct_answers: int
    accuracy: int
    current_streak: int
    longest_streak: int
    subject_breakdown: list[SubjectBreakdown] = field(default_factory=list)
    recent_activity: list[RecentActivity] = field(default_factory=list)


def _subject_breakdown(progress: Iterable[Any]) -> list[SubjectBreakdown]:
    # Pairwise running average of accuracy, kept for compatibility with
    # existing dashboards; it is not a weighted mean.
    by_subject: dict[str, SubjectBreakdown] = {}
    for p in progress:
        entry = by_subject.get(p.subject)
        if entry is None:
            by_subject[p.subject] = SubjectBreakdown(
                subject=p.subject,
                sessions_count=1,
                accuracy=p.accuracy or 0,
                time_spent=p.time_spent or 0,
                level=p.level or DEFAULT_LEVEL,
            )
        else:
            entry.sessions_count += 1
            entry.time_spent += p.time_spent or 0
            entry.accuracy = round_half_up((entry.accuracy + (p.accuracy or 0)) / 2)
    return list(by_subject.values())


def compute_personal_stats(
    sessions: Iterable[Any],
    progress: Iterable[Any],
    now: Optional[datetime] = None,
) -> PersonalStats:
    """
    Aggregate view for the progress page.

    Completion-based figures (totals, accuracy, streaks, recent activity) use
    completed sessions with a transcript; this-week study time and the latest
    session date use every session with a transcript, completed or not.
    """
    by_newest = sorted(sessions, key=lambda s: as_aware(s.created_at), reverse=True)
    with_data = [s for s in by_newest if s.data is not None]
    completed = [s for s in with_data if s.completed]
    progress = list(progress)

    week_start = start_of_week(now)
    this_week = sum(s.duration or 0 for s in with_data if as_aware(s.updated_at) >= week_start)

    concepts = {p.topic or p.subject for p in progress if p.topic or p.subject}

    total_time = sum(s.duration or 0 for s in completed)
    answered = sum(s.questions_answered or 0 for s in completed)
    correct = sum(s.correct_answers or 0 for s in completed)

    today = as_aware(now).astimezone().date() if now is not None else None
    streak = compute_streak((s.created_at for s in completed), today=today)

    return PersonalStats(
        total_study_time_this_week=this_week,
        concepts_learned=len(concepts),
        latest_session_date=with_data[0].created_at if with_data else None,
        total_sessions=len(completed),
        total_study_time=total_time,
        average_session_minutes=round_half_up(total_time / len(completed) / 60) if completed else 0,
        total_questions_answered=answered,
        correct_answers=correct,
        accuracy=round_half_up(correct / answered * 100) if answered > 0 else 0,
        current_streak=streak.current,
        longest_streak=streak.longest,
        subject_breakdown=_subject_breakdown(progress),
        recent_activity=[
            RecentActivity(
                id=s.id,
                title=s.subject or DEFAULT_ACTIVITY_TITLE,
                date=s.created_at,
                duration=s.duration or 0,
            )
            for s in completed[:RECENT_ACTIVITY_LIMIT]
        ],
    )


# ---------------------------------------------------------------------------
# Progress records & daily rollup
# ---------------------------------------------------------------------------

def build_progress_records(session: Any, buckets: list[Any]) -> list[dict[str, Any]]:
    """
    Column values for one Progress row per subject bucket.

    share = bucket.question_count / sum of all bucket counts (equal split when
    every count is 0). time_spent and questions_correct are rounded half-up per
    subject independently, so their sums may differ from the session totals.
    """
    if not buckets:
        return []
    total = sum(b.question_count for b in buckets)
    data = session.data if isinstance(session.data, dict) else {}
    details = {
        "session_id": session.id,
        "has_whiteboard": data.get("whiteboard") is not None,
        "photo_uploads": session.photo_uploads_count or 0,
        "ai_interactions": session.ai_interactions or 0,
        "is_multi_subject_session": len(buckets) > 1,
        "total_subjects_in_session": len(buckets),
    }

    records = []
    for bucket in buckets:
        share = bucket.question_count / total if total > 0 else 1 / len(buckets)
        attempted = bucket.question_count
        correct = round_half_up((session.correct_answers or 0) * share)
        records.append({
            "user_id": session.user_id,
            "session_id": session.id,
            "subject": bucket.subject,
            "topic": bucket.topic,
            "score": 0,
            "accuracy": 0,
            "time_spent": round_half_up((session.duration or 0) * share),
            "questions_attempted": attempted,
            "questions_correct": correct,
            "questions_wrong": max(0, attempted - correct),
            "level": DEFAULT_LEVEL,
            "details": dict(details),
        })
    return records


def daily_activity_increments(session: Any) -> dict[str, int]:
    """What a completed session adds to today's user_activity row."""
    return {
        "study_minutes": round_half_up((session.duration or 0) / 60),
        "questions_answered": session.questions_answered or 0,
        "photo_questions": session.photo_uploads_count or 0,
        "positive_actions": session.spreading_joy_actions or 0,
    }


# ---------------------------------------------------------------------------
# Progress summary
# ---------------------------------------------------------------------------

IMPROVEMENT_MARGIN = 10
NEEDS_WORK_SCORE = 60


@dataclass(frozen=True)
class SubjectProgress:
    subject: str
    progress: int
    level: str


@dataclass
class ProgressSummary:
    overall_progress: int = 0
    subject_progress: list[SubjectProgress] = field(default_factory=list)
    recent_improvements: list[str] = field(default_factory=list)
    areas_needing_work: list[str] = field(default_factory=list)


def compute_progress_summary(progress: Iterable[Any]) -> ProgressSummary:
    """
    Score-based summary over progress rows. A subject "improved" when its latest
    score beats the previous one by more than 10 points, and "needs work" when it
    did not improve and the latest score is below 60.
    """
    rows = sorted(progress, key=lambda p: as_aware(p.created_at))
    if not rows:
        return ProgressSummary()

    by_subject: dict[str, list[Any]] = {}
    for p in rows:
        by_subject.setdefault(p.subject, []).append(p)

    summary = ProgressSummary(
        overall_progress=round_half_up(sum(p.score or 0 for p in rows) / len(rows)),
    )
    for subject, items in by_subject.items():
        summary.subject_progress.append(SubjectProgress(
            subject=subject,
            progress=round_half_up(sum(p.score or 0 for p in items) / len(items)),
            level=items[-1].level or DEFAULT_LEVEL,
        ))
        if len(items) >= 2:
            previous, latest = items[-2].score or 0, items[-1].score or 0
            if latest > previous + IMPROVEMENT_MARGIN:
                summary.recent_improvements.append(subject)
            elif latest < NEEDS_WORK_SCORE:
                summary.areas_needing_work.append(subject)
    return summary
