"""
schemas.py — Metrics API Pydantic v2 response contracts.

All models read from the aggregator dataclasses / ORM rows via from_attributes.
"""
from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class MedalOut(_FromAttributes):
    threshold: int
    progress: int
    status: Literal["completed", "in_progress"]


class MedalsOut(_FromAttributes):
    streaker: MedalOut
    spreading_joy: MedalOut
    say_cheese: MedalOut


class StreakOut(_FromAttributes):
    current: int
    longest: int


class ActivityOut(_FromAttributes):
    date: date
    study_minutes: int
    questions_answered: int
    photo_questions: int
    positive_actions: int
    ai_interactions: int
    star_progress: int = Field(ge=0, le=100)


class ProgressMetricsOut(_FromAttributes):
    streak: StreakOut
    medals: MedalsOut
    star_progress: int = Field(ge=0, le=100)
    today_activity: ActivityOut


class StarProgressOut(BaseModel):
    star_progress: int = Field(ge=0, le=100)


class SubjectBreakdownOut(_FromAttributes):
    subject: str
    sessions_count: int
    accuracy: float
    time_spent: int
    level: str


class RecentActivityOut(_FromAttributes):
    id: str
    type: str
    title: str
    date: datetime
    duration: int


class PersonalStatsOut(_FromAttributes):
    total_study_time_this_week: int = Field(description="Seconds")
    concepts_learned: int
    latest_session_date: Optional[datetime] = None
    total_sessions: int
    total_study_time: int = Field(description="Seconds")
    average_session_minutes: int
    total_questions_answered: int
    correct_answers: int
    accuracy: int = Field(description="Percent 0..100")
    current_streak: int
    longest_streak: int
    subject_breakdown: list[SubjectBreakdownOut]
    recent_activity: list[RecentActivityOut]


class ProgressOut(_FromAttributes):
    id: str
    session_id: Optional[str] = None
    subject: str
    topic: Optional[str] = None
    score: float
    accuracy: float
    time_spent: int
    questions_attempted: int
    questions_correct: int
    questions_wrong: int
    level: str
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="details")
    created_at: datetime


class SubjectProgressOut(_FromAttributes):
    subject: str
    progress: int
    level: str


class ProgressSummaryOut(_FromAttributes):
    overall_progress: int
    subject_progress: list[SubjectProgressOut]
    recent_improvements: list[str]
    areas_needing_work: list[str]


class ClearDataOut(BaseModel):
    sessions_deleted: int
    progress_deleted: int
