"""
Request validation, input sanitization and CORS origin matching.
Pure functions, no side effects. Shared by the proxy and the client store.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Union

from foliochat.storage.models import HistoryItem

MAX_MESSAGE_LENGTH = 500

INVALID_FORMAT_ERROR = "Invalid request format. Expected { message: string, history?: Array }"

# ASCII 0-8, 11, 12, 14-31 and 127. Tab, newline and carriage return survive.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

_HISTORY_ROLES = ("user", "model")


@dataclass(frozen=True)
class ChatRequest:
    """A structurally valid, not yet sanitized, chat request."""
    message: str
    history: list[HistoryItem] = field(default_factory=list)


@dataclass(frozen=True)
class Valid:
    request: ChatRequest


@dataclass(frozen=True)
class Invalid:
    reason: str


ValidationResult = Union[Valid, Invalid]


def validate_chat_request(body: object) -> ValidationResult:
    """Check the shape {message: str, history?: [{role, content}]}."""
    if not isinstance(body, dict):
        return Invalid("body must be a JSON object")

    message = body.get("message")
    if not isinstance(message, str):
        return Invalid("message must be a string")

    raw_history = body.get("history")
    if raw_history is None:
        return Valid(ChatRequest(message=message))
    if not isinstance(raw_history, list):
        return Invalid("history must be an array")

    history: list[HistoryItem] = []
    for i, item in enumerate(raw_history):
        if not isinstance(item, dict):
            return Invalid(f"history[{i}] must be an object")
        role = item.get("role")
        content = item.get("content")
        if role not in _HISTORY_ROLES:
            return Invalid(f"history[{i}].role must be 'user' or 'model'")
        if not isinstance(content, str):
            return Invalid(f"history[{i}].content must be a string")
        history.append(HistoryItem(role=role, content=content))

    return Valid(ChatRequest(message=message, history=history))


def strip_control_chars(text: str) -> str:
    return _CONTROL_CHARS.sub("", text)


def clamp(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    return text[:max_length]


def sanitize_input(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Trim, cap the length, then drop control characters."""
    return strip_control_chars(clamp(text.strip(), max_length))


# ── CORS ─────────────────────────────────────────────────────────────────────

def is_localhost_origin(origin: str) -> bool:
    """
    True for http(s)://localhost with or without a port.
    Prefix matching on "localhost:" only, so evil-localhost.com and
    localhost.evil.com never qualify.
    """
    return (
        origin in ("http://localhost", "https://localhost")
        or origin.startswith("http://localhost:")
        or origin.startswith("https://localhost:")
    )


def is_allowed_origin(origin: str, allowed: Iterable[str]) -> bool:
    if not origin:
        return False
    return origin in tuple(allowed) or is_localhost_origin(origin)


def resolve_cors_origin(origin: str, allowed: Iterable[str]) -> str:
    """Echo an allowed origin back, otherwise fall back to the first allow-listed one."""
    allowed = tuple(allowed)
    if is_allowed_origin(origin, allowed):
        return origin
    return allowed[0] if allowed else ""
