"""
transcript.py — Read-only helpers over a session's JSON transcript.

Transcript shape (as submitted by the client):
    {
      "messages": [
        {"id": "1", "sender": "assistant", "text": "Hi! What shall we learn?"},   # welcome
        {"id": "m2", "sender": "user", "text": "what is 3+4",
         "attachments": [{"url": "https://bucket.s3.us-east-1.amazonaws.com/k.png", "type": "image"}]},
        ...
      ],
      "whiteboard": {...} | null,
      "chatHistory": [...]          # legacy alternative structure, attachments only
    }

Everything here tolerates malformed input: a transcript is client data, so
non-dict messages and non-string fields are skipped rather than raised on.
"""
import re
from typing import Any, Optional

WELCOME_MESSAGE_ID = "1"
USER_SENDER = "user"
ASSISTANT_SENDERS = frozenset({"assistant", "bot"})
WHITEBOARD_MARKER = "[Whiteboard Submission]"

_HTML_TAG_RE = re.compile(r"<[^>]*>")


def get_messages(data: Optional[dict]) -> list[dict]:
    """Return the message list of a transcript, or [] when absent/malformed."""
    if not isinstance(data, dict):
        return []
    messages = data.get("messages")
    if not isinstance(messages, list):
        return []
    return [m for m in messages if isinstance(m, dict)]


def real_messages(messages: list[dict]) -> list[dict]:
    """Drop the synthetic welcome message."""
    return [m for m in messages if str(m.get("id")) != WELCOME_MESSAGE_ID]


def has_real_messages(data: Optional[dict]) -> bool:
    return bool(real_messages(get_messages(data)))


def message_text(message: dict) -> str:
    text = message.get("text")
    return text if isinstance(text, str) else ""


def is_user_message(message: dict) -> bool:
    return message.get("sender") == USER_SENDER


def is_assistant_message(message: dict) -> bool:
    return message.get("sender") in ASSISTANT_SENDERS


def strip_html(text: str) -> str:
    return _HTML_TAG_RE.sub("", text).strip()


def is_blob_url(url: Any) -> bool:
    """Storage-provider (S3) URLs only — local/relative paths are not ours to delete."""
    return isinstance(url, str) and (".s3." in url or "s3.amazonaws.com" in url)


def _attachment_urls(entry: dict) -> list[str]:
    attachments = entry.get("attachments")
    if not isinstance(attachments, list):
        return []
    return [
        a["url"]
        for a in attachments
        if isinstance(a, dict) and is_blob_url(a.get("url"))
    ]


def extract_blob_urls(data: Optional[dict]) -> list[str]:
    """
    Collect every blob-storage URL referenced by a transcript.

    Sources: messages[*].attachments[*].url, legacy messages[*].image,
    and legacy chatHistory[*].attachments[*].url. Order is preserved;
    duplicates are kept (callers that need a set build one).
    """
    if not isinstance(data, dict):
        return []

    urls: list[str] = []
    for message in get_messages(data):
        urls.extend(_attachment_urls(message))
        if is_blob_url(message.get("image")):
            urls.append(message["image"])

    chat_history = data.get("chatHistory")
    if isinstance(chat_history, list):
        for chat in chat_history:
            if isinstance(chat, dict):
                urls.extend(_attachment_urls(chat))
    return urls
