"""
Shared builders for transcripts, timestamps and oracle doubles.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from unittest.mock import AsyncMock

WELCOME = {"id": "1", "sender": "assistant", "text": "Hi! What would you like to learn today?"}

MATH_REPLY = '{"subjects": [{"subject": "Mathematics", "topic": "Arithmetic", "questionCount": 2}]}'


def user_message(msg_id: str, text: str, **extra: Any) -> dict:
    return {"id": msg_id, "sender": "user", "text": text, **extra}


def assistant_message(msg_id: str, text: str) -> dict:
    return {"id": msg_id, "sender": "assistant", "text": text}


def transcript(*messages: dict, whiteboard: Any = None) -> dict:
    return {"messages": [WELCOME, *messages], "whiteboard": whiteboard}


def days_ago(days: float, now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now(timezone.utc)) - timedelta(days=days)


def make_oracle(subjects_reply: str = "{}", positive_reply: str = '{"positiveActions": 0}') -> AsyncMock:
    """
    AsyncMock oracle: calls with a system prompt are positive-action analysis,
    everything else is subject classification.
    """
    async def complete(prompt: str, *, system: Optional[str] = None, max_tokens: int = 300) -> str:
        return positive_reply if system is not None else subjects_reply

    oracle = AsyncMock()
    oracle.complete = AsyncMock(side_effect=complete)
    return oracle
