from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Protocol

import httpx

from resurrect.classifier.errors import StageFailure, classify_http_failure, classify_transport_error


class ModelGateway(Protocol):
    def complete(self, *, system: str, user: str) -> str: ...


@dataclass(frozen=True)
class GatewayClient:
    """
    Calls the AI gateway via its OpenAI-compatible API.

    Endpoint: POST {base_url}/chat/completions

    One network call per `complete()`; no retries here (retry policy belongs to the caller).
    Failures are raised as StageFailure with a classified error.
    """

    api_key: str
    base_url: str = "https://ai.gateway.lovable.dev/v1"
    model: str = "google/gemini-2.5-flash"
    temperature: float = 0.3
    timeout_s: float = 60.0
    transport: httpx.BaseTransport | None = None

    def complete(self, *, system: str, user: str) -> str:
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
        }
        try:
            with httpx.Client(timeout=self.timeout_s, transport=self.transport) as client:
                r = client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            # Timeouts and connection failures are treated like any other upstream failure.
            raise StageFailure(classify_transport_error(e)) from e

        if not 200 <= r.status_code < 300:
            raise StageFailure(classify_http_failure(r.status_code, r.text))

        # A 2xx that is not a completion is handed to the response parser as-is.
        try:
            content = r.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            return r.text
        return content if isinstance(content, str) else r.text
