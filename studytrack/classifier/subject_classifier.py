"""
subject_classifier.py — Best-effort subject/topic inference over a transcript.

Components:
  strip_code_fences()      — remove ```json / ``` wrappers from oracle output
  classify_single()        — one {subject, topic} guess from user utterances
  classify_multi()         — ranked subject buckets with per-bucket question counts
  count_positive_actions() — "spreading joy" detection (en / es / hi / zh)

The oracle returns free-form text that usually resembles JSON. None of these
functions raise: malformed output and upstream failures degrade to fixed
fallbacks and are logged (ids/counts only, never transcript text).
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from studytrack.classifier.oracle import CompletionOracle
from studytrack.sessions.transcript import (
    WHITEBOARD_MARKER,
    is_assistant_message,
    is_user_message,
    message_text,
    strip_html,
)

logger = logging.getLogger(__name__)

GENERAL_SUBJECT = "General"
UNKNOWN_SUBJECT = "Unknown"
PLACEHOLDER_SUBJECTS = frozenset({GENERAL_SUBJECT, UNKNOWN_SUBJECT})
MIXED_SUBJECT_PREFIX = "General Practice - Mixed: "

# Assistant messages that describe drawn / uploaded content count as interactions
VISUAL_KEYWORDS = ("drawn", "drawing", "image", "whiteboard", "uploaded", "shape", "diagram")

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


@dataclass(frozen=True)
class SubjectGuess:
    subject: str
    topic: Optional[str] = None


@dataclass(frozen=True)
class SubjectBucket:
    subject: str
    topic: Optional[str]
    question_count: int


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

SINGLE_SUBJECT_PROMPT = """What subject is this about: "{text}"

Respond only in JSON: {{"subject": "subject_name", "topic": "specific_topic"}}"""

MULTI_SUBJECT_PROMPT = """Analyze this conversation which includes text questions, whiteboard drawings, and image uploads. Detect educational subjects.

{conversation}

IMPORTANT RULES:
- Extract subject from BOTH text questions AND AI descriptions of drawings/images
- Examples:
  * "AI described: triangle and quadrilateral" -> Subject: "Mathematics" (Geometry)
  * "Question: what is 3+4" -> Subject: "Mathematics" (Arithmetic)
  * "AI described: cartoon character, no educational content" -> Ignore (not educational)
  * "User drew chemistry diagram" -> Subject: "Chemistry"
- If a drawing or image shows educational content (shapes, equations, diagrams), count it as a question
- If an image is non-educational (screenshots, cartoons, random photos), mark it as "General" or ignore it
- Count each educational interaction (text question OR educational drawing) as 1 question

Respond ONLY in JSON (no markdown):
{{
  "subjects": [
    {{"subject": "Mathematics", "topic": "Geometry and Arithmetic", "questionCount": 2}}
  ]
}}"""

POSITIVE_ACTIONS_SYSTEM = """You are a sentiment analyzer that detects positive and encouraging actions in student messages across multiple languages (English, Spanish, Hindi, Chinese).

Count the following positive actions:
1. Expressing gratitude (thank you, thanks, gracias, धन्यवाद, 谢谢)
2. Sharing progress or achievements (I learned, I understand, I got it, etc.)
3. Giving positive feedback (great, awesome, helpful, this helped, etc.)
4. Showing appreciation (I appreciate, this is useful, you helped me, etc.)

Return ONLY a JSON object with the count:
{"positiveActions": <number>}"""


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def strip_code_fences(text: str) -> str:
    """Remove markdown code fences so the remainder can be parsed as JSON."""
    return _FENCE_RE.sub("", text or "").strip()


def _parse_json_object(raw: str) -> Optional[dict[str, Any]]:
    try:
        parsed = json.loads(strip_code_fences(raw))
    except (json.JSONDecodeError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _as_question_count(value: Any) -> int:
    """max(1, int(value)); anything unparseable counts as one question."""
    try:
        count = int(float(value))
    except (TypeError, ValueError):
        return 1
    return max(1, count)


def _clean_label(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

async def classify_single(oracle: CompletionOracle, messages: list[dict]) -> SubjectGuess:
    """
    Single subject/topic guess from the user's utterances (longer than 2 chars).
    Empty input short-circuits to General without calling the oracle.
    """
    user_text = " ".join(
        message_text(m) for m in messages
        if is_user_message(m) and len(message_text(m)) > 2
    )
    if not user_text.strip():
        return SubjectGuess(GENERAL_SUBJECT)

    try:
        raw = await oracle.complete(SINGLE_SUBJECT_PROMPT.format(text=user_text), max_tokens=50)
    except Exception as exc:  # UpstreamUnavailableError or a misbehaving oracle
        logger.warning("Single-subject classification unavailable: %s", exc)
        return SubjectGuess(GENERAL_SUBJECT)

    parsed = _parse_json_object(raw)
    if parsed is None:
        logger.warning("Single-subject classification returned non-JSON output")
        return SubjectGuess(GENERAL_SUBJECT)
    return SubjectGuess(
        subject=_clean_label(parsed.get("subject")) or GENERAL_SUBJECT,
        topic=_clean_label(parsed.get("topic")),
    )


def _relevant_messages(messages: list[dict]) -> list[dict]:
    relevant = []
    for message in messages:
        text = message_text(message)
        if is_user_message(message) and len(text) > 2:
            relevant.append(message)
        elif is_assistant_message(message) and text:
            lowered = text.lower()
            if any(keyword in lowered for keyword in VISUAL_KEYWORDS):
                relevant.append(message)
    return relevant


def _conversation_text(relevant: list[dict]) -> str:
    lines = []
    for number, message in enumerate(relevant, 1):
        text = message_text(message)
        if is_user_message(message):
            if WHITEBOARD_MARKER in text:
                lines.append(f"User drew on whiteboard (Question {number})")
            else:
                lines.append(f"Question {number}: {text}")
        else:
            lines.append(f"AI described: {text}")
    return "\n\n".join(lines)


def _merge_by_subject(buckets) -> list[SubjectBucket]:
    """Sum repeated subjects; the largest bucket's topic wins. Result is largest first."""
    merged: dict[str, SubjectBucket] = {}
    for bucket in buckets:
        seen = merged.get(bucket.subject)
        if seen is None:
            merged[bucket.subject] = bucket
            continue
        keep_topic = seen.topic if seen.question_count >= bucket.question_count else bucket.topic
        merged[bucket.subject] = SubjectBucket(
            bucket.subject, keep_topic, seen.question_count + bucket.question_count,
        )
    return sorted(merged.values(), key=lambda b: b.question_count, reverse=True)


async def classify_multi(oracle: CompletionOracle, messages: list[dict]) -> list[SubjectBucket]:
    """
    Ranked subject buckets for a transcript's real messages.

    Returns exactly one bucket:
      - the single detected real subject, or
      - a synthetic "General Practice - Mixed: A, B" bucket (summed count) when
        two or more distinct real subjects are detected, or
      - Unknown with the relevant-message count when nothing usable came back.
    """
    relevant = _relevant_messages(messages)
    if not relevant:
        return [SubjectBucket(UNKNOWN_SUBJECT, None, 0)]

    fallback = [SubjectBucket(UNKNOWN_SUBJECT, None, len(relevant))]
    logger.info("Classifying subjects over %d relevant message(s)", len(relevant))

    try:
        raw = await oracle.complete(
            MULTI_SUBJECT_PROMPT.format(conversation=_conversation_text(relevant)),
            max_tokens=300,
        )
    except Exception as exc:  # UpstreamUnavailableError or a misbehaving oracle
        logger.warning("Multi-subject classification unavailable: %s", exc)
        return fallback

    parsed = _parse_json_object(raw)
    entries = parsed.get("subjects") if parsed is not None else None
    if not isinstance(entries, list) or not entries:
        logger.warning("Multi-subject classification returned malformed output")
        return fallback

    buckets = sorted(
        (
            SubjectBucket(
                subject=_clean_label(entry.get("subject")) or UNKNOWN_SUBJECT,
                topic=_clean_label(entry.get("topic")),
                question_count=_as_question_count(entry.get("questionCount")),
            )
            for entry in entries
            if isinstance(entry, dict)
        ),
        key=lambda b: b.question_count,
        reverse=True,
    )
    real = _merge_by_subject(b for b in buckets if b.subject not in PLACEHOLDER_SUBJECTS)

    if not real:
        return fallback
    if len(real) == 1:
        return real
    return [
        SubjectBucket(
            subject=MIXED_SUBJECT_PREFIX + ", ".join(b.subject for b in real),
            topic=None,
            question_count=sum(b.question_count for b in real),
        )
    ]


async def count_positive_actions(oracle: CompletionOracle, messages: list[dict]) -> int:
    """
    Number of appreciative / progress-sharing user utterances. Whiteboard
    submissions and messages under 3 characters (after HTML stripping) are
    ignored. Any failure counts as 0.
    """
    utterances = []
    for message in messages:
        text = message_text(message)
        if not is_user_message(message) or not text or WHITEBOARD_MARKER in text:
            continue
        cleaned = strip_html(text)
        if len(cleaned) >= 3:
            utterances.append(cleaned)

    if not utterances:
        return 0

    try:
        raw = await oracle.complete(
            "Analyze these messages and count positive actions:\n\n" + "\n\n".join(utterances),
            system=POSITIVE_ACTIONS_SYSTEM,
            max_tokens=50,
        )
    except Exception as exc:  # UpstreamUnavailableError or a misbehaving oracle
        logger.warning("Positive-action analysis unavailable: %s", exc)
        return 0

    parsed = _parse_json_object(raw)
    if parsed is None:
        logger.warning("Positive-action analysis returned non-JSON output")
        return 0
    try:
        return max(0, int(parsed.get("positiveActions") or 0))
    except (TypeError, ValueError):
        return 0
