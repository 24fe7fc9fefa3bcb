"""
Tests for the Gemini backend and retry-hint parsing.
Run with: pytest tests/test_backends.py
"""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from foliochat.backends.base import BackendResponse
from foliochat.backends.gemini import GeminiBackend, parse_retry_after, parse_retry_delay

URL = "https://fake.googleapis.test/v1beta"


def _reply(text: str, finish: str = "STOP") -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish}]}


def _mock_client(mock_client_cls, response=None, side_effect=None):
    mock_client = AsyncMock()
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    else:
        mock_client.post.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


# ---------------------------------------------------------------------------
# BackendResponse
# ---------------------------------------------------------------------------

def test_backend_response_content():
    ok = BackendResponse(ok=True, data={"candidates": [{"content": {"parts": [{"text": "Hel"}, {"text": "lo"}]}}]})
    assert ok.content == "Hello"
    assert ok.finish_reason == ""

    err = BackendResponse(ok=False, error="timeout")
    assert err.content == ""
    assert err.candidate == {}


def test_backend_response_finish_reason():
    resp = BackendResponse(ok=True, data=_reply("", finish="SAFETY"))
    assert resp.finish_reason == "SAFETY"


# ---------------------------------------------------------------------------
# Retry hints
# ---------------------------------------------------------------------------

def test_parse_retry_after_seconds():
    assert parse_retry_after("12") == 12000
    assert parse_retry_after("1.5") == 1500
    assert parse_retry_after("0") == 0


def test_parse_retry_after_http_date():
    now = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
    header = format_datetime(now + timedelta(seconds=20), usegmt=True)
    assert parse_retry_after(header, now=now) == 20000


@pytest.mark.parametrize("value", [None, "", "soon", "nan", "inf"])
def test_parse_retry_after_invalid(value):
    assert parse_retry_after(value) is None


def test_parse_retry_after_past_date():
    now = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
    header = format_datetime(now - timedelta(seconds=20), usegmt=True)
    assert parse_retry_after(header, now=now) is None


def test_parse_retry_delay_from_error_body():
    body = {"error": {"code": 429, "details": [
        {"@type": "type.googleapis.com/google.rpc.QuotaFailure"},
        {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "7s"},
    ]}}
    assert parse_retry_delay(body) == 7000
    assert parse_retry_delay({"error": {"code": 429}}) is None
    assert parse_retry_delay({}) is None


@pytest.mark.parametrize("body", [
    {"error": "quota exceeded"},
    {"error": {"details": "nope"}},
    {"error": {"details": [{"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": 5}]}},
])
def test_parse_retry_delay_tolerates_odd_error_bodies(body):
    assert parse_retry_delay(body) is None


# ---------------------------------------------------------------------------
# GeminiBackend
# ---------------------------------------------------------------------------

def test_gemini_backend_init():
    b = GeminiBackend(name="gemini-2.5-flash", url=URL + "/", api_key="k", timeout=25, priority=1)
    assert b.endpoint == f"{URL}/models/gemini-2.5-flash:generateContent"
    assert b.timeout == 25
    assert b.priority == 1


@pytest.mark.asyncio
async def test_gemini_forward_success():
    b = GeminiBackend(name="gemini-3-flash", url=URL, api_key="secret")
    resp = httpx.Response(200, json=_reply("Hello"))

    with patch("foliochat.backends.gemini.httpx.AsyncClient") as mock_client_cls:
        mock_client = _mock_client(mock_client_cls, resp)
        result = await b.forward({"contents": []})

    assert result.ok
    assert result.status_code == 200
    assert result.content == "Hello"
    assert result.backend_name == "gemini-3-flash"

    url = mock_client.post.call_args.args[0]
    headers = mock_client.post.call_args.kwargs["headers"]
    assert url.endswith("/models/gemini-3-flash:generateContent")
    assert "secret" not in url
    assert headers["x-goog-api-key"] == "secret"


@pytest.mark.asyncio
async def test_gemini_forward_without_key_makes_no_call():
    b = GeminiBackend(name="gemini-3-flash", url=URL, api_key="")
    with patch("foliochat.backends.gemini.httpx.AsyncClient") as mock_client_cls:
        result = await b.forward({"contents": []})
        mock_client_cls.assert_not_called()
    assert not result.ok
    assert result.status_code == 0


@pytest.mark.asyncio
async def test_gemini_forward_429_carries_retry_after_header():
    b = GeminiBackend(name="m", url=URL, api_key="k")
    resp = httpx.Response(429, headers={"Retry-After": "9"}, json={"error": {"code": 429}})

    with patch("foliochat.backends.gemini.httpx.AsyncClient") as mock_client_cls:
        _mock_client(mock_client_cls, resp)
        result = await b.forward({})

    assert not result.ok
    assert result.status_code == 429
    assert result.retry_after_ms == 9000
    assert "HTTP 429" in result.error


@pytest.mark.asyncio
async def test_gemini_forward_429_falls_back_to_retry_info():
    b = GeminiBackend(name="m", url=URL, api_key="k")
    body = {"error": {"code": 429, "details": [
        {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "31s"},
    ]}}
    resp = httpx.Response(429, json=body)

    with patch("foliochat.backends.gemini.httpx.AsyncClient") as mock_client_cls:
        _mock_client(mock_client_cls, resp)
        result = await b.forward({})

    assert result.retry_after_ms == 31000


@pytest.mark.asyncio
async def test_gemini_forward_invalid_json():
    b = GeminiBackend(name="m", url=URL, api_key="k")
    resp = httpx.Response(200, text="<html>oops</html>")

    with patch("foliochat.backends.gemini.httpx.AsyncClient") as mock_client_cls:
        _mock_client(mock_client_cls, resp)
        result = await b.forward({})

    assert not result.ok
    assert result.status_code == 200
    assert result.error == "Invalid JSON from model"


@pytest.mark.asyncio
async def test_gemini_forward_timeout():
    b = GeminiBackend(name="m", url=URL, api_key="k", timeout=1)

    with patch("foliochat.backends.gemini.httpx.AsyncClient") as mock_client_cls:
        _mock_client(mock_client_cls, side_effect=httpx.ReadTimeout("slow"))
        result = await b.forward({})

    assert not result.ok
    assert result.status_code == 0
    assert result.timed_out
    assert "Timeout" in result.error


@pytest.mark.asyncio
async def test_gemini_forward_connect_error():
    b = GeminiBackend(name="m", url=URL, api_key="k")

    with patch("foliochat.backends.gemini.httpx.AsyncClient") as mock_client_cls:
        _mock_client(mock_client_cls, side_effect=httpx.ConnectError("refused"))
        result = await b.forward({})

    assert not result.ok
    assert result.status_code == 0
    assert not result.timed_out
    assert "refused" in result.error


@pytest.mark.asyncio
async def test_gemini_forward_429_with_string_error_body():
    b = GeminiBackend(name="m", url=URL, api_key="k")
    resp = httpx.Response(429, json={"error": "quota exceeded"})

    with patch("foliochat.backends.gemini.httpx.AsyncClient") as mock_client_cls:
        _mock_client(mock_client_cls, resp)
        result = await b.forward({})

    assert not result.ok
    assert result.status_code == 429
    assert result.retry_after_ms is None
