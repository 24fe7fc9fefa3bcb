"""
Proxy: the server half of the chat core.

Takes the raw JSON body of POST /api/chat and turns it into a uniform
envelope:

    200  {"reply": str, "suggestions": [str]}
    4xx/5xx  {"error": str, "retryAfterMs"?: int, "attemptedModels"?: [str]}

Pipeline per request (no state survives between requests):
  1. validate the body shape          → 400 on failure, no backend call
  2. sanitize message + history       → 400 if the message ends up empty
  3. check the API key is configured  → 503, no backend call
  4. assemble grounding context + acknowledgment + history + message
  5. walk the model chain             → reply / refusal / mapped error
  6. derive follow-up suggestions

Raw upstream error bodies are logged here and never returned to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from foliochat.backends.chain import ChainResult, ModelChain, Verdict
from foliochat.backends.gemini import DEFAULT_URL, GeminiBackend
from foliochat.storage.models import HistoryItem
from foliochat.suggestions import KeywordSuggestionStrategy, SuggestionStrategy
from foliochat.system_context import acknowledgment, get_system_context, safety_refusal
from foliochat.validation import (
    INVALID_FORMAT_ERROR,
    MAX_MESSAGE_LENGTH,
    Invalid,
    sanitize_input,
    validate_chat_request,
)
from foliochat.wiretap import WireLog

logger = logging.getLogger(__name__)

MAX_HISTORY_ITEMS = 10

DEFAULT_MODELS = [
    "gemini-3-flash",
    "gemini-2.5-flash",
    "gemini-2.5-flash-lite",
    "gemma-3-27b-it",
]

HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

ERR_EMPTY = "Message cannot be empty"
ERR_NOT_CONFIGURED = "AI service not configured"
ERR_RATE_LIMITED = "Too many requests. Please wait a moment and try again."
ERR_TIMEOUT = "Request timed out. Please try again."
ERR_UNAVAILABLE = "AI service temporarily unavailable"
ERR_UNEXPECTED = "An unexpected error occurred. Please try again."


@dataclass
class ProxyResult:
    status_code: int
    payload: dict = field(default_factory=dict)


class ChatProxy:
    """Stateless request handler between the chat widget and the model chain."""

    def __init__(
        self,
        chain: ModelChain,
        api_key: str = "",
        cfg: dict | None = None,
        suggestions: SuggestionStrategy | None = None,
        wire: WireLog | None = None,
    ):
        self.chain = chain
        self.api_key = api_key
        self.cfg = cfg or {}
        self.suggestions = suggestions or KeywordSuggestionStrategy()
        self.wire = wire

        chat_cfg = self.cfg.get("chat", {})
        self.max_length = chat_cfg.get("max_message_length", MAX_MESSAGE_LENGTH)
        self.max_history = chat_cfg.get("max_history_items", MAX_HISTORY_ITEMS)

        gen_cfg = self.cfg.get("generation", {})
        self.generation_config = {
            "temperature": gen_cfg.get("temperature", 0.7),
            "topK": gen_cfg.get("top_k", 40),
            "topP": gen_cfg.get("top_p", 0.95),
            "maxOutputTokens": gen_cfg.get("max_output_tokens", 500),
        }
        threshold = gen_cfg.get("safety_threshold", "BLOCK_MEDIUM_AND_ABOVE")
        self.safety_settings = [{"category": c, "threshold": threshold} for c in HARM_CATEGORIES]

    @classmethod
    def from_config(cls, cfg: dict, wire: WireLog | None = None) -> ChatProxy:
        """Build the proxy and one Gemini backend per configured model."""
        backend_cfg = cfg.get("backend", {})
        api_key = backend_cfg.get("api_key", "") or ""
        models = backend_cfg.get("models") or DEFAULT_MODELS
        backends = [
            GeminiBackend(
                name=model,
                url=backend_cfg.get("url", DEFAULT_URL),
                api_key=api_key,
                timeout=backend_cfg.get("timeout", 25),
                priority=i,
            )
            for i, model in enumerate(models)
        ]
        return cls(chain=ModelChain(backends, wire=wire), api_key=api_key, cfg=cfg, wire=wire)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    # ------------------------------------------------------------------
    # Request assembly
    # ------------------------------------------------------------------

    def build_contents(self, message: str, history: list[HistoryItem]) -> list[dict]:
        """Grounding context, acknowledgment, recent history, then the new message."""
        contents = [
            {"role": "user", "parts": [{"text": get_system_context(self.cfg)}]},
            {"role": "model", "parts": [{"text": acknowledgment(self.cfg)}]},
        ]
        contents.extend({"role": h.role, "parts": [{"text": h.content}]} for h in history)
        contents.append({"role": "user", "parts": [{"text": message}]})
        return contents

    def build_request(self, message: str, history: list[HistoryItem]) -> dict:
        return {
            "contents": self.build_contents(message, history),
            "generationConfig": dict(self.generation_config),
            "safetySettings": [dict(s) for s in self.safety_settings],
        }

    def _sanitize_history(self, history: list[HistoryItem]) -> list[HistoryItem]:
        recent = history[-self.max_history:] if self.max_history > 0 else []
        cleaned = (HistoryItem(role=h.role, content=sanitize_input(h.content, self.max_length)) for h in recent)
        return [h for h in cleaned if h.content]

    # ------------------------------------------------------------------
    # Handler
    # ------------------------------------------------------------------

    async def handle(self, body: object) -> ProxyResult:
        """Validate, forward through the chain, and build the response envelope."""
        validation = validate_chat_request(body)
        if isinstance(validation, Invalid):
            logger.info("Rejected chat request: %s", validation.reason)
            return ProxyResult(400, {"error": INVALID_FORMAT_ERROR})

        request = validation.request
        message = sanitize_input(request.message, self.max_length)
        if not message:
            return ProxyResult(400, {"error": ERR_EMPTY})

        if not self.configured:
            logger.error("GEMINI_API_KEY not configured")
            return ProxyResult(503, {"error": ERR_NOT_CONFIGURED})

        history = self._sanitize_history(request.history)
        self._tap("inbound", "user", message)

        result = await self.chain.forward(self.build_request(message, history))
        return self._respond(result, message, history)

    def _respond(self, result: ChainResult, message: str, history: list[HistoryItem]) -> ProxyResult:
        if result.verdict == Verdict.SUCCESS:
            suggestions = self.suggestions.suggest(message, result.reply, history)
            self._tap("outbound", "assistant", result.reply, model=result.model, status=200)
            return ProxyResult(200, {"reply": result.reply, "suggestions": suggestions})

        if result.verdict == Verdict.REFUSED:
            refusal = safety_refusal(self.cfg)
            logger.info("Model '%s' blocked a reply on safety grounds", result.model)
            self._tap("outbound", "assistant", refusal, model=result.model, status=200)
            return ProxyResult(200, {"reply": refusal})

        if result.exhausted:
            if result.all_rate_limited:
                payload: dict = {"error": ERR_RATE_LIMITED}
                if result.retry_after_ms is not None:
                    payload["retryAfterMs"] = result.retry_after_ms
                payload["attemptedModels"] = list(result.attempted_models)
                self._tap("outbound", "error", ERR_RATE_LIMITED, status=429)
                return ProxyResult(429, payload)

            status = 504 if result.status_code == 504 else 502
            error = ERR_TIMEOUT if status == 504 else ERR_UNAVAILABLE
            self._tap("outbound", "error", error, status=status)
            return ProxyResult(status, {"error": error, "attemptedModels": list(result.attempted_models)})

        # Verdict.ABORT
        self._tap("outbound", "error", result.error, model=result.model, status=result.status_code)
        return ProxyResult(result.status_code, {"error": result.error})

    def _tap(self, direction: str, role: str, content: str, model: str = "", status: int | None = None):
        if self.wire is not None:
            self.wire.log(direction, role, content, model=model, status=status)
