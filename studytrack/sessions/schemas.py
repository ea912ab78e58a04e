"""
schemas.py — Session API Pydantic v2 data contracts.

Defines:
  - SessionCreate / SessionPatch   (request bodies; unknown fields -> 422)
  - SessionOut                     (response, built from SessionORM via from_attributes)
  - RenameRequest, ModesRequest, CounterIncrement
  - SessionCounts, DeleteResult, RecalculatedMetrics

`data` is the client transcript, passed through as JSON:
  {"messages": [{"id", "sender", "text", "attachments"?}], "whiteboard": ...}
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class SessionCreate(BaseModel):
    """Initial values for a new session. All optional — an empty body is valid."""
    model_config = ConfigDict(extra="forbid")

    data: Optional[dict[str, Any]] = None
    subject: Optional[str] = Field(default=None, max_length=255)
    topic: Optional[str] = Field(default=None, max_length=255)
    audio_mode_enabled: bool = False
    text_mode_enabled: bool = True


class SessionPatch(BaseModel):
    """
    Partial update. Only fields present in the request body are applied
    (model_dump(exclude_unset=True)). `completed` may only move false -> true.
    """
    model_config = ConfigDict(extra="forbid")

    data: Optional[dict[str, Any]] = None
    completed: Optional[bool] = None
    last_point: Optional[str] = None
    subject: Optional[str] = Field(default=None, max_length=255)
    topic: Optional[str] = Field(default=None, max_length=255)
    duration: Optional[int] = Field(default=None, ge=0, description="Seconds")
    questions_answered: Optional[int] = Field(default=None, ge=0)
    correct_answers: Optional[int] = Field(default=None, ge=0)
    whiteboard_submissions: Optional[int] = Field(default=None, ge=0)
    ai_interactions: Optional[int] = Field(default=None, ge=0)
    audio_mode_enabled: Optional[bool] = None
    text_mode_enabled: Optional[bool] = None


class RenameRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=255)


class ModesRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    audio_enabled: bool
    text_enabled: bool


class CounterIncrement(BaseModel):
    model_config = ConfigDict(extra="forbid")

    count: int = Field(default=1, ge=1, le=1000)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    data: Optional[dict[str, Any]] = None
    completed: bool
    last_point: Optional[str] = None
    subject: Optional[str] = None
    topic: Optional[str] = None
    duration: int
    questions_answered: int
    correct_answers: int
    photo_uploads_count: int
    whiteboard_submissions: int
    ai_interactions: int
    spreading_joy_actions: int
    audio_mode_enabled: bool
    text_mode_enabled: bool
    created_at: datetime
    updated_at: datetime


class SessionCounts(BaseModel):
    incomplete_count: int
    complete_count: int
    total_count: int


class DeleteResult(BaseModel):
    session_id: str
    deleted: bool = Field(description="False when the session was already gone")


class RecalculatedMetrics(BaseModel):
    session_id: str
    spreading_joy_actions: int
    photo_uploads_count: int
