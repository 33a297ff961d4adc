from __future__ import annotations

import json
import os
import re
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional


_SECRET_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-]+"),
    re.compile(r"(?i)((?:api[_-]?key|token|secret|password)\s*[=:]\s*)\S+"),
    re.compile(r"gh[pousr]_[A-Za-z0-9]{20,}"),
    re.compile(r"sk-[A-Za-z0-9_\-]{16,}"),
]


def redact(text: str | None, *, max_chars: int = 500) -> str:
    """
    Strip credential-looking substrings and cap length. Used for anything derived from
    build logs or upstream error bodies before it reaches the audit trail.
    """
    t = text or ""
    for pat in _SECRET_PATTERNS:
        if pat.groups:
            t = pat.sub(lambda m: m.group(1) + "***", t)
        else:
            t = pat.sub("***", t)
    if len(t) > max_chars:
        t = t[:max_chars] + "…"
    return t


class AuditLogger:
    """
    Append-only JSONL audit trail, one record per pipeline event.
    """

    def __init__(self, path: str):
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._lock = threading.Lock()

    def write(
        self,
        correlation_id: str,
        event_type: str,
        payload: Dict[str, Any],
        *,
        actor: str = "resurrect",
        timestamp: Optional[str] = None,
    ) -> None:
        record = {
            "ts": timestamp or datetime.now(timezone.utc).isoformat(),
            "correlation_id": correlation_id,
            "actor": actor,
            "event_type": event_type,
            "payload": payload,
        }
        line = json.dumps(record, ensure_ascii=False, default=str) + "\n"
        # Concurrent runs share one file.
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
