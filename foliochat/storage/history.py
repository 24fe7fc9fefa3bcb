"""
Persisted chat history: one namespaced blob holding {messages, savedAt}.

Rules:
  - blobs older than the TTL are discarded entirely, never partially
  - only the most recent MAX_PERSISTED_MESSAGES are written
  - unreadable or corrupt blobs are deleted rather than left in place
  - storage failures are logged and swallowed; history is best-effort
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from foliochat.storage.blob_store import BlobStore, StorageError
from foliochat.storage.models import Message

logger = logging.getLogger(__name__)

STORAGE_KEY = "foliochat:chat-history"
HISTORY_TTL = timedelta(hours=24)
MAX_PERSISTED_MESSAGES = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PersistedHistory:
    """Loads and saves the message list for one storage key."""

    def __init__(
        self,
        storage: BlobStore,
        key: str = STORAGE_KEY,
        ttl: timedelta = HISTORY_TTL,
        max_messages: int = MAX_PERSISTED_MESSAGES,
        clock: Callable[[], datetime] | None = None,
    ):
        self.storage = storage
        self.key = key
        self.ttl = ttl
        self.max_messages = max_messages
        self._clock = clock or _utcnow

    def load(self) -> list[Message]:
        """Return persisted messages, or [] when missing, expired, or corrupt."""
        try:
            raw = self.storage.get(self.key)
        except StorageError as e:
            logger.warning("Chat history unavailable: %s", e)
            return []
        if not raw:
            return []

        try:
            data = json.loads(raw)
            saved_at = datetime.fromisoformat(data["savedAt"])
            messages = [Message.from_dict(m) for m in data["messages"]]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding corrupt chat history under '%s': %s", self.key, e)
            self._discard()
            return []

        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=timezone.utc)
        if self._clock() - saved_at > self.ttl:
            logger.debug("Chat history under '%s' expired (saved %s)", self.key, saved_at.isoformat())
            self._discard()
            return []

        return messages

    def save(self, messages: Iterable[Message]) -> None:
        """Write the most recent messages with a fresh savedAt."""
        recent = list(messages)[-self.max_messages:]
        payload = {
            "messages": [m.to_dict() for m in recent],
            "savedAt": self._clock().isoformat(),
        }
        try:
            self.storage.set(self.key, json.dumps(payload, ensure_ascii=False))
        except StorageError as e:
            logger.warning("Failed to persist chat history: %s", e)

    def clear(self) -> None:
        self._discard()

    def _discard(self) -> None:
        try:
            self.storage.delete(self.key)
        except StorageError as e:
            logger.debug("Failed to delete chat history '%s': %s", self.key, e)
