from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterator


RAW_RESPONSE_KEY = "rawResponse"

_JSON_FENCE = re.compile(r"```json[ \t]*\n?(.*?)\n?```", re.DOTALL | re.IGNORECASE)
_BARE_FENCE = re.compile(r"```[ \t]*\n(.*?)\n?```|```(.*?)```", re.DOTALL)


def _candidates(text: str) -> Iterator[str]:
    m = _JSON_FENCE.search(text)
    if m:
        yield m.group(1)
    m = _BARE_FENCE.search(text)
    if m:
        yield m.group(1) if m.group(1) is not None else m.group(2)
    yield text


def parse_model_json(text: str | None) -> Dict[str, Any]:
    """
    Best-effort extraction of a JSON object from model output.

    Tries a ```json fence, then a bare ``` fence, then the whole text. The first
    candidate that parses to a JSON object wins. Never raises: unparseable output
    comes back as {"rawResponse": <text>}.
    """
    t = text if isinstance(text, str) else ""
    for candidate in _candidates(t):
        try:
            data = json.loads(candidate.strip())
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    return {RAW_RESPONSE_KEY: t}


def is_fallback(payload: Dict[str, Any]) -> bool:
    return set(payload.keys()) == {RAW_RESPONSE_KEY}
