from __future__ import annotations

import json
from typing import Any, Iterable, List


DEFAULT_ERROR_MESSAGE = "Build failed"

# Markers that identify the line worth surfacing as the headline error.
_ERROR_MARKERS = ("Error:", "Failed to compile", "Module not found", "Cannot resolve")


def parse_event_stream(text: str) -> List[Any]:
    """
    Parse a deployment event stream. Accepts a JSON array or newline-delimited JSON;
    lines that are not valid JSON are skipped.
    """
    t = (text or "").strip()
    if not t:
        return []
    if t.startswith("["):
        try:
            data = json.loads(t)
        except ValueError:
            data = None
        if isinstance(data, list):
            return data
    out: List[Any] = []
    for line in t.splitlines():
        if not line.strip():
            continue
        try:
            out.append(json.loads(line))
        except ValueError:
            continue
    return out


def extract_log_lines(events: Any) -> List[str]:
    """
    Map deployment events to their log text. Accepts a bare event list or the
    collaborator envelope {"data": {"events": [...]}}; empty texts are dropped.
    """
    if isinstance(events, dict):
        data = events.get("data") if isinstance(events.get("data"), dict) else events
        events = data.get("events") or []
    if not isinstance(events, list):
        return []
    lines: List[str] = []
    for ev in events:
        if not isinstance(ev, dict):
            continue
        payload = ev.get("payload")
        text = payload.get("text") if isinstance(payload, dict) else None
        if isinstance(text, str) and text:
            lines.append(text)
    return lines


def headline_error(lines: Iterable[str], *, default: str = DEFAULT_ERROR_MESSAGE) -> str:
    for line in lines:
        if any(m in line for m in _ERROR_MARKERS):
            return line.strip()
    return default
