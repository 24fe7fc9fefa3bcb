"""
Wiretap — structured record of what went over the line.

Two parts:
  1. WireLog: writes one JSONL entry per event through the proxy
     (inbound question, each model attempt, outbound reply or error)
  2. read_tail() / format_entry(): used by `foliochat tap` to show recent traffic

The wire log is separate from the debug log and is disabled by default.
"""

import json
import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 2000

C_RESET = "\033[0m"
C_DIM = "\033[2m"
C_USER = "\033[96m"       # cyan
C_ASSISTANT = "\033[93m"  # yellow
C_MODEL = "\033[95m"      # magenta
C_ERROR = "\033[91m"      # red

ROLE_COLORS = {
    "user": C_USER,
    "assistant": C_ASSISTANT,
    "attempt": C_MODEL,
    "error": C_ERROR,
}


class WireLog:
    """
    Structured JSONL logger for the wire.

    Format:
        {"ts": "...", "dir": "inbound|outbound|upstream", "role": "...",
         "model": "...", "status": 200, "len": 123, "content": "..."}
    """

    def __init__(self, log_path: str):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = None

    def _ensure_open(self):
        if self._file is None:
            self._file = open(self.log_path, "a", buffering=1, encoding="utf-8")  # line-buffered

    def log(
        self,
        direction: str,
        role: str,
        content: str = "",
        model: str = "",
        status: int | None = None,
        latency_ms: float | None = None,
    ):
        """Write a wire log entry."""
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "dir": direction,
            "role": role,
            "model": model,
            "len": len(content),
        }
        if status is not None:
            entry["status"] = status
        if latency_ms is not None:
            entry["latency_ms"] = round(latency_ms)

        if len(content) <= MAX_CONTENT_CHARS:
            entry["content"] = content
        else:
            half = MAX_CONTENT_CHARS // 2
            entry["content"] = (
                content[:half]
                + f"\n\n[... {len(content) - MAX_CONTENT_CHARS} chars truncated ...]\n\n"
                + content[-half:]
            )

        try:
            self._ensure_open()
            self._file.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.warning("Wire log write failed (%s): %s", self.log_path, e)

    def close(self):
        if self._file:
            self._file.close()
            self._file = None


def read_tail(log_path: str, last_n: int = 20) -> list[dict]:
    """Return the last N decodable entries of a wire log."""
    path = Path(log_path)
    if not path.exists():
        return []
    tail: deque[dict] = deque(maxlen=max(last_n, 0))
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                tail.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return list(tail)


def format_entry(entry: dict, raw: bool = False) -> str:
    """Format a single wire log entry for display."""
    if raw:
        return json.dumps(entry, ensure_ascii=False)

    ts = entry.get("ts", "")
    try:
        time_str = datetime.fromisoformat(ts).strftime("%H:%M:%S")
    except (ValueError, TypeError):
        time_str = ts[:8] if ts else "??:??:??"

    role = entry.get("role", "?")
    color = ROLE_COLORS.get(role, "")
    model = entry.get("model", "")
    status = entry.get("status")
    meta = " ".join(x for x in (model, f"[{status}]" if status is not None else "") if x)
    content = entry.get("content", "").replace("\n", " ")
    if len(content) > 160:
        content = content[:157] + "..."
    return f"{C_DIM}{time_str}{C_RESET} {color}{role:<9}{C_RESET} {C_DIM}{meta}{C_RESET} {content}".rstrip()
