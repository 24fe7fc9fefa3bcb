"""
Tests for wiretap.py — JSONL wire log and tail formatting.
"""

import json

from foliochat.wiretap import MAX_CONTENT_CHARS, WireLog, format_entry, read_tail


def test_log_writes_jsonl(tmp_path):
    path = tmp_path / "logs" / "wire.jsonl"
    wire = WireLog(str(path))
    wire.log("inbound", "user", "Hello")
    wire.log("outbound", "assistant", "Hi!", model="gemini-3-flash", status=200, latency_ms=123.4)
    wire.close()

    lines = path.read_text().splitlines()
    assert len(lines) == 2
    first, second = (json.loads(l) for l in lines)
    assert first["dir"] == "inbound"
    assert first["content"] == "Hello"
    assert "status" not in first
    assert second["model"] == "gemini-3-flash"
    assert second["status"] == 200
    assert second["latency_ms"] == 123


def test_long_content_is_truncated(tmp_path):
    path = tmp_path / "wire.jsonl"
    wire = WireLog(str(path))
    wire.log("inbound", "user", "x" * (MAX_CONTENT_CHARS + 500))
    wire.close()

    entry = json.loads(path.read_text())
    assert entry["len"] == MAX_CONTENT_CHARS + 500
    assert "chars truncated" in entry["content"]
    assert len(entry["content"]) < MAX_CONTENT_CHARS + 100


def test_read_tail_skips_garbage(tmp_path):
    path = tmp_path / "wire.jsonl"
    path.write_text('{"role": "user", "n": 1}\nnot json\n\n{"role": "user", "n": 2}\n{"role": "user", "n": 3}\n')
    assert [e["n"] for e in read_tail(str(path), last_n=2)] == [2, 3]
    assert read_tail(str(tmp_path / "missing.jsonl")) == []


def test_format_entry():
    entry = {
        "ts": "2026-01-01T12:34:56+00:00",
        "dir": "upstream",
        "role": "attempt",
        "model": "gemma-3-27b-it",
        "status": 429,
        "content": "HTTP 429\nquota",
    }
    line = format_entry(entry)
    assert "12:34:56" in line
    assert "gemma-3-27b-it [429]" in line
    assert "HTTP 429 quota" in line
    assert json.loads(format_entry(entry, raw=True)) == entry
