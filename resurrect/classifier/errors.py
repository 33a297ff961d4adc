from __future__ import annotations

import json
from typing import Dict

import httpx

from resurrect.models import ClassifiedError, ErrorKind


# Ordered: first match wins. Anything non-2xx that is not listed is upstream_error.
STATUS_TABLE: tuple[tuple[int, ErrorKind], ...] = (
    (429, ErrorKind.rate_limited),
    (402, ErrorKind.quota_exhausted),
)

_DEFAULT_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.rate_limited: "Rate limit exceeded. Please try again later.",
    ErrorKind.quota_exhausted: "AI credits exhausted. Please add credits.",
}

_USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.rate_limited: "Rate limit exceeded. Please wait a moment and try again.",
    ErrorKind.quota_exhausted: "AI credits exhausted. Please add credits to continue using AI features.",
    ErrorKind.parse_failure: "The model returned an unstructured answer; review the raw response.",
}


class StageFailure(Exception):
    """
    Raised by the gateway (and anything calling it) when an upstream call fails.
    Carries the classified error so the orchestrator can attach it to the failed step.
    """

    def __init__(self, error: ClassifiedError):
        super().__init__(f"{error.kind.value}: {error.message}")
        self.error = error


def kind_for_status(status: int) -> ErrorKind | None:
    """
    Map an HTTP status to a failure kind. Returns None for 2xx (not a failure).
    """
    if 200 <= status < 300:
        return None
    for code, kind in STATUS_TABLE:
        if status == code:
            return kind
    return ErrorKind.upstream_error


def _message_from_body(body: str) -> str:
    text = body or ""
    try:
        data = json.loads(text)
    except ValueError:
        return text
    if isinstance(data, dict):
        for key in ("message", "error"):
            v = data.get(key)
            if isinstance(v, str) and v:
                return v
            # OpenAI-style envelopes: {"error": {"message": "..."}}
            if isinstance(v, dict) and isinstance(v.get("message"), str) and v["message"]:
                return v["message"]
    return text


def classify_http_failure(status: int, body: str) -> ClassifiedError:
    """
    Pure mapping from an upstream HTTP failure to the error taxonomy.
    """
    kind = kind_for_status(status)
    if kind is None:
        raise ValueError(f"status {status} is not a failure")
    message = _message_from_body(body)
    if not message.strip():
        message = _DEFAULT_MESSAGES.get(kind, f"Upstream error: HTTP {status}")
    return ClassifiedError(kind=kind, http_status=status, message=message[:1500])


def classify_transport_error(exc: Exception) -> ClassifiedError:
    if isinstance(exc, httpx.TimeoutException):
        return ClassifiedError(kind=ErrorKind.upstream_error, message=f"timeout: {exc}")
    return ClassifiedError(kind=ErrorKind.upstream_error, message=f"network_error: {type(exc).__name__}: {exc}")


def parse_failure(reason: str) -> ClassifiedError:
    return ClassifiedError(kind=ErrorKind.parse_failure, message=reason)


def user_message(err: ClassifiedError) -> str:
    """Caller-facing text that tells the three fatal kinds apart."""
    if err.kind in _USER_MESSAGES:
        return _USER_MESSAGES[err.kind]
    return f"Agent failed: {err.message}"


def http_status_for(err: ClassifiedError) -> int:
    if err.kind == ErrorKind.rate_limited:
        return 429
    if err.kind == ErrorKind.quota_exhausted:
        return 402
    return 502
