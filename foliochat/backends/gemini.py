"""
Gemini backend — one generateContent endpoint per model.
Also extracts retry hints from 429/5xx responses so the chain can pass the
best one back to the client.
"""

from __future__ import annotations

import logging
import math
import re
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx

from foliochat.backends.base import BaseBackend, BackendResponse

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://generativelanguage.googleapis.com/v1beta"

_RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"
_DELAY_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)s\s*$")


def parse_retry_after(value: str | None, now: datetime | None = None) -> int | None:
    """
    Parse a Retry-After header (delta-seconds or HTTP date) into milliseconds.
    Returns None when absent, invalid, or already in the past.
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            return None
        return max(0, round(seconds * 1000))

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta_ms = (when - (now or datetime.now(timezone.utc))).total_seconds() * 1000
    return round(delta_ms) if delta_ms > 0 else None


def parse_retry_delay(error_body: dict) -> int | None:
    """Read google.rpc.RetryInfo.retryDelay (e.g. "12s") from an error body."""
    err = error_body.get("error")
    details = err.get("details") if isinstance(err, dict) else None
    if not isinstance(details, list):
        return None
    for detail in details:
        if not isinstance(detail, dict) or detail.get("@type") != _RETRY_INFO_TYPE:
            continue
        match = _DELAY_RE.match(str(detail.get("retryDelay", "")))
        if match:
            return round(float(match.group(1)) * 1000)
    return None


class GeminiBackend(BaseBackend):
    """Backend for a single Gemini (or Gemma) model via the REST API."""

    def __init__(
        self,
        name: str,
        url: str = DEFAULT_URL,
        api_key: str = "",
        timeout: float = 25,
        priority: int = 1,
    ):
        super().__init__(name=name, url=url, timeout=timeout, priority=priority)
        self.api_key = api_key

    @property
    def endpoint(self) -> str:
        return f"{self.url}/models/{self.name}:generateContent"

    def _headers(self) -> dict:
        """Build request headers with auth. The key travels in a header, never the URL."""
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

    @staticmethod
    def _retry_hint(resp: httpx.Response) -> int | None:
        hint = parse_retry_after(resp.headers.get("retry-after"))
        if hint is not None:
            return hint
        try:
            body = resp.json()
        except ValueError:
            return None
        return parse_retry_delay(body) if isinstance(body, dict) else None

    async def forward(self, body: dict) -> BackendResponse:
        """Send one generateContent request to this model."""
        if not self.api_key:
            return BackendResponse(
                ok=False, status_code=0, backend_name=self.name,
                error="No API key configured for Gemini",
            )

        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.endpoint, headers=self._headers(), json=body)
                latency = (time.monotonic() - t0) * 1000

                if resp.status_code >= 400:
                    return BackendResponse(
                        ok=False,
                        status_code=resp.status_code,
                        backend_name=self.name,
                        latency_ms=latency,
                        error=f"HTTP {resp.status_code}: {resp.text[:200]}",
                        retry_after_ms=self._retry_hint(resp),
                    )

                try:
                    data = resp.json()
                except ValueError:
                    return BackendResponse(
                        ok=False, status_code=resp.status_code, backend_name=self.name,
                        latency_ms=latency, error="Invalid JSON from model",
                    )
                if not isinstance(data, dict):
                    return BackendResponse(
                        ok=False, status_code=resp.status_code, backend_name=self.name,
                        latency_ms=latency, error="Unexpected JSON shape from model",
                    )

                return BackendResponse(
                    ok=True,
                    status_code=resp.status_code,
                    data=data,
                    backend_name=self.name,
                    latency_ms=latency,
                )
        except httpx.TimeoutException:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("Gemini model '%s' timed out after %.0fms", self.name, latency)
            return BackendResponse(
                ok=False, status_code=0, backend_name=self.name, latency_ms=latency,
                error=f"Timeout after {self.timeout}s", timed_out=True,
            )
        except httpx.HTTPError as e:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("Gemini model '%s' failed: %s", self.name, e)
            return BackendResponse(
                ok=False, status_code=0, backend_name=self.name, latency_ms=latency,
                error=str(e) or e.__class__.__name__,
            )
