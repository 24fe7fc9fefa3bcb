"""
Data models for the chat core.
These define the shape of data flowing between the store, the wire and the proxy.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from uuid import uuid4

# Wire-protocol role names: the backend calls the assistant "model".
WIRE_ROLES = {"user": "user", "assistant": "model"}


@dataclass(frozen=True)
class Message:
    """A single chat message. Immutable once created."""
    role: str                # "user" or "assistant"
    content: str
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Serialize for persistence; the timestamp becomes an ISO-8601 string."""
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        """Rebuild a message from its persisted form. Raises on bad shape."""
        role = data["role"]
        if role not in WIRE_ROLES:
            raise ValueError(f"unknown role: {role!r}")
        content = data["content"]
        if not isinstance(content, str):
            raise TypeError("content must be a string")
        return cls(
            role=role,
            content=content,
            id=str(data["id"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass(frozen=True)
class HistoryItem:
    """A prior turn as sent to the proxy: role is "user" or "model"."""
    role: str
    content: str

    @classmethod
    def from_message(cls, message: Message) -> HistoryItem:
        return cls(role=WIRE_ROLES.get(message.role, "model"), content=message.content)

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ConversationState:
    """Everything the chat widget renders. Replaced wholesale on each update."""
    messages: tuple[Message, ...] = ()
    is_loading: bool = False
    error: str | None = None
    is_rate_limited: bool = False
    rate_limit_seconds_remaining: int = 0
    suggestions: tuple[str, ...] = ()
    failed_message: str | None = None

    def evolve(self, **changes) -> ConversationState:
        """Return a copy with the given fields replaced."""
        if "messages" in changes:
            changes["messages"] = tuple(changes["messages"])
        if "suggestions" in changes:
            changes["suggestions"] = tuple(changes["suggestions"])
        return replace(self, **changes)
