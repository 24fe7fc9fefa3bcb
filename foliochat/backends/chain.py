"""
Model chain — ordered fallback across backend models.

The chain tries each model in order, one attempt each, strictly
sequentially. Every attempt is run through classify(), a pure function that
maps a BackendResponse onto one of four verdicts:

    SUCCESS  usable reply, stop here
    REFUSED  backend withheld the reply on safety grounds, stop here
    NEXT     transient / model-specific failure, try the next model
    ABORT    failure no other model can fix (auth, bad request), stop here

When every model comes back NEXT the chain is exhausted and the result says
whether it was all rate limits (429) or something else (502/504).
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Sequence

from foliochat.backends.base import BaseBackend, BackendResponse
from foliochat.wiretap import WireLog

logger = logging.getLogger(__name__)

SAFETY_FINISH_REASONS = ("SAFETY",)


class Verdict(enum.Enum):
    SUCCESS = "success"
    REFUSED = "refused"
    NEXT = "next"
    ABORT = "abort"


@dataclass(frozen=True)
class Classification:
    verdict: Verdict
    status_code: int
    error: str = ""
    reply: str = ""
    rate_limited: bool = False
    timed_out: bool = False


def classify(response: BackendResponse) -> Classification:
    """Decide what one model attempt means for the chain."""
    if not response.ok:
        status = response.status_code

        if status == 0:
            # No HTTP response: timeout or transport failure
            return Classification(
                Verdict.NEXT,
                status_code=504 if response.timed_out else 502,
                error=response.error,
                timed_out=response.timed_out,
            )
        if status in (401, 403):
            return Classification(Verdict.ABORT, status_code=503, error="AI service authentication error")
        if status == 429:
            return Classification(Verdict.NEXT, status_code=429, error=response.error, rate_limited=True)
        if status >= 500:
            return Classification(Verdict.NEXT, status_code=status, error=response.error)
        if status >= 400:
            return Classification(Verdict.ABORT, status_code=502, error="AI service temporarily unavailable")
        # 2xx that could not be decoded
        return Classification(Verdict.NEXT, status_code=502, error=response.error or "Malformed model response")

    data = response.data
    if data.get("error"):
        err = data["error"]
        message = err.get("message", "Unknown model error") if isinstance(err, dict) else str(err)
        return Classification(Verdict.NEXT, status_code=502, error=message)

    if not response.candidate:
        return Classification(Verdict.NEXT, status_code=502, error="No candidates in response")

    if response.finish_reason in SAFETY_FINISH_REASONS:
        return Classification(Verdict.REFUSED, status_code=200)

    reply = response.content.strip()
    if not reply:
        return Classification(Verdict.NEXT, status_code=502, error="Empty text in AI response")

    return Classification(Verdict.SUCCESS, status_code=200, reply=reply)


@dataclass
class ChainResult:
    """Outcome of walking the chain for one request."""
    verdict: Verdict
    status_code: int
    reply: str = ""
    error: str = ""
    model: str = ""
    attempted_models: list[str] = field(default_factory=list)
    retry_after_ms: int | None = None
    all_rate_limited: bool = False

    @property
    def exhausted(self) -> bool:
        return self.verdict == Verdict.NEXT


class ModelChain:
    """
    Walks backends in priority order.
    Lower priority number = tried first.
    """

    def __init__(self, backends: Sequence[BaseBackend], wire: WireLog | None = None):
        self.backends: list[BaseBackend] = sorted(backends, key=lambda b: b.priority)
        self.wire = wire
        if self.backends:
            logger.info("Model chain: %s", " → ".join(b.name for b in self.backends))
        else:
            logger.warning("Model chain is empty")

    @property
    def models(self) -> list[str]:
        return [b.name for b in self.backends]

    async def forward(self, body: dict) -> ChainResult:
        """Try each model in turn; stop at the first decisive outcome."""
        attempted: list[str] = []
        best_retry_after: int | None = None
        rate_limited = 0
        last: Classification | None = None

        for backend in self.backends:
            attempted.append(backend.name)
            logger.debug("Trying model '%s'", backend.name)
            response = await backend.forward(body)

            if response.retry_after_ms is not None:
                best_retry_after = max(best_retry_after or 0, response.retry_after_ms)

            outcome = classify(response)
            last = outcome
            if self.wire is not None:
                self.wire.log(
                    "upstream", "attempt", outcome.error or outcome.verdict.value,
                    model=backend.name, status=response.status_code, latency_ms=response.latency_ms,
                )

            if outcome.verdict in (Verdict.SUCCESS, Verdict.REFUSED):
                logger.info(
                    "Model '%s' answered (%s) in %.0fms",
                    backend.name, outcome.verdict.value, response.latency_ms,
                )
                return ChainResult(
                    verdict=outcome.verdict,
                    status_code=200,
                    reply=outcome.reply,
                    model=backend.name,
                    attempted_models=attempted,
                )

            if outcome.verdict == Verdict.ABORT:
                logger.error(
                    "Model '%s' returned HTTP %d, aborting chain: %s",
                    backend.name, response.status_code, response.error,
                )
                return ChainResult(
                    verdict=Verdict.ABORT,
                    status_code=outcome.status_code,
                    error=outcome.error,
                    model=backend.name,
                    attempted_models=attempted,
                )

            if outcome.rate_limited:
                rate_limited += 1
            logger.warning("Model '%s' failed, trying next: %s", backend.name, outcome.error)

        all_rate_limited = bool(attempted) and rate_limited == len(attempted)
        if all_rate_limited:
            status = 429
        elif last is not None and last.timed_out:
            status = 504
        else:
            status = 502

        logger.error(
            "Model chain exhausted (status=%d, attempted=%s, last error=%s)",
            status, attempted, last.error if last else "no models configured",
        )
        return ChainResult(
            verdict=Verdict.NEXT,
            status_code=status,
            error=last.error if last else "No models configured",
            attempted_models=attempted,
            retry_after_ms=best_retry_after,
            all_rate_limited=all_rate_limited,
        )
