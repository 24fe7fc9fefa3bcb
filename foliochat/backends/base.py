"""
Base backend abstraction.
Every model in the fallback chain is wrapped in a backend so the chain can
treat them uniformly. Backends never raise for HTTP or transport failures;
they report them in a BackendResponse and let the chain decide.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class BackendResponse:
    """Standardized result of one model attempt."""
    ok: bool
    status_code: int = 200   # 0 when no HTTP response arrived at all
    data: dict = field(default_factory=dict)
    backend_name: str = ""
    latency_ms: float = 0.0
    error: str = ""
    timed_out: bool = False
    retry_after_ms: int | None = None

    @property
    def candidate(self) -> dict:
        candidates = self.data.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            return {}
        first = candidates[0]
        return first if isinstance(first, dict) else {}

    @property
    def finish_reason(self) -> str:
        reason = self.candidate.get("finishReason")
        return reason if isinstance(reason, str) else ""

    @property
    def content(self) -> str:
        """Concatenated text of the first candidate's parts. Non-string parts are ignored."""
        content = self.candidate.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            return ""
        return "".join(
            p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)
        )


class BaseBackend(abc.ABC):
    """
    Abstract base for model backends.
    Each backend serves one model and knows how to forward a request to it.
    """

    def __init__(self, name: str, url: str, timeout: float = 25, priority: int = 1):
        self.name = name
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.priority = priority

    @abc.abstractmethod
    async def forward(self, body: dict) -> BackendResponse:
        """
        Forward a generateContent request body.
        Returns BackendResponse with data or error.
        """
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r} priority={self.priority}>"
