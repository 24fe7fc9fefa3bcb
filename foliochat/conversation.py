"""
ConversationStore — the client half of the chat core.

Owns the visible conversation: message list, loading flag, error text,
rate-limit countdown, follow-up suggestions, and the last failed message
for retry. Talks to POST /api/chat over httpx and persists history through
a BlobStore.

Everything runs on one asyncio loop. State is an immutable
ConversationState replaced on every update; subscribers get the new
snapshot after each replacement.

    async with ConversationStore("http://localhost:8788/api/chat") as store:
        store.subscribe(render)
        await store.send_message("What does Michael do?")
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from typing import Awaitable, Callable

import httpx

from foliochat.storage.blob_store import BlobStore
from foliochat.storage.history import STORAGE_KEY, PersistedHistory
from foliochat.storage.models import ConversationState, HistoryItem, Message
from foliochat.validation import sanitize_input

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:8788/api/chat"
DEFAULT_TIMEOUT = 30.0
RATE_LIMIT_COOLDOWN_SECONDS = 30
MAX_HISTORY_ITEMS = 10
MAX_SUGGESTIONS = 3

ERR_TIMEOUT = "Request timed out. Please try again."
ERR_NETWORK = "Network error. Please check your connection and try again."
ERR_INVALID_RESPONSE = "Invalid response from AI service"
ERR_EMPTY_RESPONSE = "Empty response from AI service"

Listener = Callable[[ConversationState], None]


def rate_limit_message(seconds: int) -> str:
    return f"Too many requests. Please wait {seconds} seconds before trying again."


def cooldown_seconds(payload: object) -> int:
    """Seconds to wait after a 429: the server's retryAfterMs when positive, else the default."""
    if isinstance(payload, dict):
        hint = payload.get("retryAfterMs")
        if isinstance(hint, (int, float)) and not isinstance(hint, bool) and math.isfinite(hint) and hint > 0:
            return math.ceil(hint / 1000)
    return RATE_LIMIT_COOLDOWN_SECONDS


class ConversationStore:
    """Client-side chat state machine."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = DEFAULT_TIMEOUT,
        storage: BlobStore | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
        storage_key: str = STORAGE_KEY,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self._sleep = sleep
        self._listeners: list[Listener] = []
        self._countdown: asyncio.Task | None = None
        self._request: asyncio.Task | None = None
        self._generation = 0

        self._history = PersistedHistory(storage, key=storage_key, clock=clock) if storage is not None else None
        messages = self._history.load() if self._history else []
        if messages:
            logger.debug("Restored %d persisted messages", len(messages))
        self._state = ConversationState(messages=tuple(messages))

    # ------------------------------------------------------------------
    # Read state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._state.messages

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def error(self) -> str | None:
        return self._state.error

    @property
    def is_rate_limited(self) -> bool:
        return self._state.is_rate_limited

    @property
    def rate_limit_seconds_remaining(self) -> int:
        return self._state.rate_limit_seconds_remaining

    @property
    def suggestions(self) -> tuple[str, ...]:
        return self._state.suggestions

    @property
    def failed_message(self) -> str | None:
        return self._state.failed_message

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback for state changes. Returns the unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes) -> None:
        previous = self._state
        self._state = previous.evolve(**changes)
        if (
            self._history is not None
            and "messages" in changes
            and self._state.messages
            and self._state.messages != previous.messages
        ):
            self._history.save(self._state.messages)
        for listener in list(self._listeners):
            listener(self._state)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def send_message(self, content: str) -> None:
        """
        Append a user message and ask the proxy for a reply.
        Ignored when the text is empty or a request / cooldown is in progress.
        """
        text = sanitize_input(content)
        if not text or self._state.is_loading or self._state.is_rate_limited:
            return

        # History is taken before the new message is appended
        history = [HistoryItem.from_message(m).to_dict() for m in self._state.messages[-MAX_HISTORY_ITEMS:]]
        self._update(
            messages=(*self._state.messages, Message(role="user", content=text)),
            is_loading=True,
            error=None,
            failed_message=None,
            suggestions=(),
        )
        generation = self._generation
        request = asyncio.ensure_future(self._exchange(text, history))
        self._request = request
        try:
            await request
        except asyncio.CancelledError:
            # Cancelled by clear_history or aclose; the reply belongs to no conversation
            if self._generation == generation:
                raise
        finally:
            if self._request is request:
                self._request = None
            if self._generation == generation:
                self._update(is_loading=False)

    async def retry_last_message(self) -> None:
        """Drop the failed user message and send it again."""
        failed = self._state.failed_message
        if not failed or self._state.is_loading or self._state.is_rate_limited:
            return

        messages = list(self._state.messages)
        for i in range(len(messages) - 1, -1, -1):
            if messages[i].role == "user" and messages[i].content == failed:
                del messages[i]
                break
        self._update(messages=messages, error=None)
        await self.send_message(failed)

    def clear_history(self) -> None:
        """Reset the conversation and forget the persisted copy."""
        self._cancel_countdown()
        self._cancel_request()
        self._state = ConversationState()
        for listener in list(self._listeners):
            listener(self._state)
        if self._history is not None:
            self._history.clear()

    async def aclose(self) -> None:
        self._cancel_countdown()
        self._cancel_request()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ConversationStore:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Request / response
    # ------------------------------------------------------------------

    async def _exchange(self, text: str, history: list[dict]) -> None:
        try:
            resp = await asyncio.wait_for(
                self._client.post(self.endpoint, json={"message": text, "history": history}),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("Chat request timed out after %ss", self.timeout)
            self._fail(text, ERR_TIMEOUT)
            return
        except httpx.HTTPError as e:
            logger.warning("Chat request failed: %s", e)
            self._fail(text, ERR_NETWORK)
            return

        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.status_code == 429:
            self._start_cooldown(text, cooldown_seconds(data))
            return

        if not resp.is_success:
            server_error = data.get("error") if isinstance(data, dict) else None
            if isinstance(server_error, str) and server_error:
                self._fail(text, server_error)
            else:
                self._fail(text, f"Request failed: {resp.status_code}")
            return

        if not isinstance(data, dict):
            self._fail(text, ERR_INVALID_RESPONSE)
            return
        if data.get("error"):
            self._fail(text, str(data["error"]))
            return

        reply = data.get("reply")
        if not isinstance(reply, str) or not reply.strip():
            self._fail(text, ERR_EMPTY_RESPONSE)
            return

        raw_suggestions = data.get("suggestions")
        suggestions = []
        if isinstance(raw_suggestions, list):
            suggestions = [s for s in raw_suggestions if isinstance(s, str)][:MAX_SUGGESTIONS]

        self._update(
            messages=(*self._state.messages, Message(role="assistant", content=reply)),
            suggestions=suggestions,
        )

    def _fail(self, text: str, error: str) -> None:
        self._update(error=error, failed_message=text)

    # ------------------------------------------------------------------
    # Rate-limit countdown
    # ------------------------------------------------------------------

    def _start_cooldown(self, text: str, seconds: int) -> None:
        self._cancel_countdown()
        logger.info("Rate limited; cooling down for %ds", seconds)
        self._update(
            is_rate_limited=True,
            failed_message=text,
            rate_limit_seconds_remaining=seconds,
            error=rate_limit_message(seconds),
        )
        self._countdown = asyncio.create_task(self._run_countdown(seconds))

    async def _run_countdown(self, seconds: int) -> None:
        remaining = seconds
        while remaining > 0:
            await self._sleep(1)
            remaining -= 1
            if remaining > 0:
                self._update(rate_limit_seconds_remaining=remaining, error=rate_limit_message(remaining))
        self._update(is_rate_limited=False, error=None, rate_limit_seconds_remaining=0)
        self._countdown = None

    def _cancel_request(self) -> None:
        self._generation += 1
        if self._request is not None and not self._request.done():
            self._request.cancel()
        self._request = None

    def _cancel_countdown(self) -> None:
        if self._countdown is not None and not self._countdown.done():
            self._countdown.cancel()
        self._countdown = None
