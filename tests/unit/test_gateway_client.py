from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from resurrect.classifier.errors import StageFailure
from resurrect.llm.gateway_client import GatewayClient
from resurrect.models import ErrorKind


def _client(handler, seen: List[httpx.Request]) -> GatewayClient:
    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return GatewayClient(api_key="test", base_url="https://gw.example/v1", transport=httpx.MockTransport(_record))


def test_gateway_returns_assistant_text() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    out = _client(handler, seen).complete(system="sys", user="hi")
    assert out == "ok"
    assert len(seen) == 1
    req = seen[0]
    assert req.url.path == "/v1/chat/completions"
    assert req.headers["Authorization"] == "Bearer test"
    body = json.loads(req.content.decode("utf-8"))
    assert body["model"] == "google/gemini-2.5-flash"
    assert body["temperature"] == 0.3
    assert [m["role"] for m in body["messages"]] == ["system", "user"]


@pytest.mark.parametrize(
    "status,kind",
    [
        (429, ErrorKind.rate_limited),
        (402, ErrorKind.quota_exhausted),
        (500, ErrorKind.upstream_error),
        (401, ErrorKind.upstream_error),
    ],
)
def test_gateway_classifies_http_failures_without_retrying(status: int, kind: ErrorKind) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"message": "nope"})

    with pytest.raises(StageFailure) as ei:
        _client(handler, seen).complete(system="s", user="u")
    assert ei.value.error.kind == kind
    assert ei.value.error.http_status == status
    assert len(seen) == 1


def test_gateway_timeout_is_upstream_error() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("deadline exceeded", request=request)

    with pytest.raises(StageFailure) as ei:
        _client(handler, seen).complete(system="s", user="u")
    assert ei.value.error.kind == ErrorKind.upstream_error
    assert ei.value.error.http_status is None


def test_gateway_hands_non_completion_body_to_parser() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="upstream said something odd")

    assert _client(handler, seen).complete(system="s", user="u") == "upstream said something odd"
