"""
Wiretap: a structured record of what went over the line.

WireLog writes one JSONL entry per transcript sent to the model, per assistant
message received, and per tool result fed back. It is separate from the debug
log: a clean record of who said what, when, for which user.

read_wire() / format_entry() back the `lumai tap` command.
"""

import json
import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_INLINE_CONTENT = 2000

ROLE_ICONS = {
    "user": "▶",
    "assistant": "◀",
    "system": "●",
    "tool": "⚡",
}


class WireLog:
    """
    Structured JSONL logger for the wire.

    Format:
        {"ts": "...", "dir": "outbound|inbound", "role": "...",
         "user": "...", "depth": 0, "len": 123, "content": "...", "tool": "..."}
    """

    def __init__(self, log_path: str):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = None

    def _ensure_open(self):
        if self._file is None:
            self._file = open(self.log_path, "a", buffering=1)  # line-buffered

    def log(
        self,
        direction: str,  # "outbound" (engine->model) or "inbound" (model/tool->engine)
        role: str,
        content: str,
        user_id: str = "",
        depth: int = 0,
        tool_name: str = "",
        tool_calls: list[str] | None = None,
    ):
        """Write a wire log entry."""
        self._ensure_open()
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "dir": direction,
            "role": role,
            "user": user_id,
            "depth": depth,
            "len": len(content),
        }
        if tool_name:
            entry["tool"] = tool_name
        if tool_calls:
            entry["calls"] = tool_calls

        if len(content) <= MAX_INLINE_CONTENT:
            entry["content"] = content
        else:
            dropped = len(content) - MAX_INLINE_CONTENT
            entry["content"] = content[:1000] + f"\n\n[... {dropped} chars truncated ...]\n\n" + content[-1000:]

        self._file.write(json.dumps(entry, ensure_ascii=False) + "\n")

    def close(self):
        if self._file:
            self._file.close()
            self._file = None


def read_wire(log_path: str, last_n: int = 20, role_filter: str | None = None) -> list[dict]:
    """Return the last `last_n` parseable entries, optionally for one role."""
    path = Path(log_path)
    if not path.exists():
        return []
    entries: deque = deque(maxlen=last_n)
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping malformed wire entry: %.80s", line)
                continue
            if role_filter and entry.get("role") != role_filter:
                continue
            entries.append(entry)
    return list(entries)


def format_entry(entry: dict) -> str:
    """One-line summary of a wire entry for terminal output."""
    ts = entry.get("ts", "")[11:19]
    role = entry.get("role", "?")
    icon = ROLE_ICONS.get(role, "·")
    label = entry.get("tool") or role
    calls = entry.get("calls")
    content = entry.get("content", "").replace("\n", " ")
    if len(content) > 120:
        content = content[:117] + "..."
    suffix = f" -> {', '.join(calls)}" if calls else ""
    return f"{ts} {icon} [{entry.get('user', '')}] d{entry.get('depth', 0)} {label}: {content}{suffix}"
