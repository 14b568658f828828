from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from storyweave.config import chat_completions_url
from storyweave.modules.llm_boundary import client
from storyweave.modules.llm_boundary.errors import (
    GENERATION_ERROR_HTTP,
    GENERATION_ERROR_NETWORK,
    GENERATION_ERROR_PARSE,
    GenerationError,
)

ENDPOINT = "https://example.com/v1/chat/completions"


class _FakeResponse:
    def __init__(self, *, status_code: int, payload: object = None, text: str | None = None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)
        self.request = httpx.Request("POST", ENDPOINT)

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class _FakeStreamResponse:
    def __init__(self, *, status_code: int, lines: list[str], body: bytes = b""):
        self.status_code = status_code
        self._lines = lines
        self._body = body

    async def aread(self) -> bytes:
        return self._body

    async def aiter_lines(self):
        for line in self._lines:
            yield line


class _FakeStreamContext:
    def __init__(self, outcome):
        self.outcome = outcome

    async def __aenter__(self):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _FakeAsyncClient:
    scenarios: list[object] = []
    requests: list[dict] = []

    def __init__(self, *, timeout):
        self.timeout = timeout

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url: str, *, headers: dict, json: dict):
        _FakeAsyncClient.requests.append({"url": url, "headers": headers, "json": json})
        outcome = _FakeAsyncClient.scenarios.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def stream(self, method: str, url: str, *, headers: dict, json: dict):
        _FakeAsyncClient.requests.append({"method": method, "url": url, "headers": headers, "json": json})
        return _FakeStreamContext(_FakeAsyncClient.scenarios.pop(0))


@pytest.fixture(autouse=True)
def _fake_httpx(monkeypatch: pytest.MonkeyPatch) -> None:
    _FakeAsyncClient.scenarios = []
    _FakeAsyncClient.requests = []
    monkeypatch.setattr(client.httpx, "AsyncClient", _FakeAsyncClient)


def _payload(stream: bool = False) -> dict:
    return client.build_payload(
        model="demo-model",
        messages=[{"role": "system", "content": "sys"}, {"role": "user", "content": "prompt"}],
        temperature=0.8,
        max_tokens=1000,
        stream=stream,
    )


def _post(**overrides) -> str:
    kwargs = {"api_key": "k", "endpoint_url": ENDPOINT, "payload": _payload(), "timeout_s": 5.0}
    kwargs.update(overrides)
    return asyncio.run(client.post_chat_completion(**kwargs))


def _stream(on_delta=None) -> str:
    return asyncio.run(
        client.call_chat_completions_stream_text(
            api_key="k",
            endpoint_url=ENDPOINT,
            payload=_payload(stream=True),
            timeout_s=5.0,
            on_delta=on_delta,
        )
    )


def test_chat_completions_url_trims_slashes() -> None:
    assert chat_completions_url("https://api.example.com///", "v1/chat/completions") == (
        "https://api.example.com/v1/chat/completions"
    )
    assert chat_completions_url("https://api.example.com", "/v1/chat/completions") == (
        "https://api.example.com/v1/chat/completions"
    )


def test_buffered_call_sends_minimal_payload_and_returns_content() -> None:
    _FakeAsyncClient.scenarios = [
        _FakeResponse(status_code=200, payload={"choices": [{"message": {"content": '{"title":"t"}'}}]})
    ]
    assert _post() == '{"title":"t"}'

    req = _FakeAsyncClient.requests[0]
    assert req["url"] == ENDPOINT
    assert req["headers"]["Authorization"] == "Bearer k"
    assert set(req["json"].keys()) == {"model", "messages", "temperature", "max_tokens", "stream"}
    assert req["json"]["stream"] is False
    assert [message["role"] for message in req["json"]["messages"]] == ["system", "user"]


def test_non_2xx_is_http_error() -> None:
    _FakeAsyncClient.scenarios = [_FakeResponse(status_code=401, payload={"error": "bad key"})]
    with pytest.raises(GenerationError) as exc:
        _post()
    assert exc.value.error_kind == GENERATION_ERROR_HTTP
    assert exc.value.status_code == 401


def test_transport_failure_is_network_error() -> None:
    _FakeAsyncClient.scenarios = [httpx.ConnectError("refused", request=httpx.Request("POST", ENDPOINT))]
    with pytest.raises(GenerationError) as exc:
        _post()
    assert exc.value.error_kind == GENERATION_ERROR_NETWORK


def test_timeout_is_network_error() -> None:
    _FakeAsyncClient.scenarios = [httpx.ReadTimeout("slow", request=httpx.Request("POST", ENDPOINT))]
    with pytest.raises(GenerationError) as exc:
        _post()
    assert exc.value.error_kind == GENERATION_ERROR_NETWORK


@pytest.mark.parametrize(
    "response",
    [
        _FakeResponse(status_code=200, payload=None, text="<html>oops</html>"),
        _FakeResponse(status_code=200, payload={"choices": []}),
        _FakeResponse(status_code=200, payload={"choices": [{"message": {"content": "  "}}]}),
    ],
)
def test_unusable_body_is_parse_error(response: _FakeResponse) -> None:
    _FakeAsyncClient.scenarios = [response]
    with pytest.raises(GenerationError) as exc:
        _post()
    assert exc.value.error_kind == GENERATION_ERROR_PARSE


def test_stream_delivers_deltas_in_order_until_done() -> None:
    lines = [
        ": keep-alive",
        'data: {"choices":[{"delta":{"role":"assistant"}}]}',
        'data: {"choices":[{"delta":{"content":"Hel"}}]}',
        "",
        'data: {"choices":[{"delta":{"content":"lo"}}]}',
        "data: [DONE]",
        'data: {"choices":[{"delta":{"content":"ignored"}}]}',
    ]
    _FakeAsyncClient.scenarios = [_FakeStreamResponse(status_code=200, lines=lines)]
    seen: list[str] = []

    assert _stream(on_delta=seen.append) == "Hello"
    assert seen == ["Hel", "lo"]
    assert _FakeAsyncClient.requests[0]["json"]["stream"] is True


def test_stream_callback_failure_does_not_abort_turn() -> None:
    lines = ['data: {"choices":[{"delta":{"content":"ok"}}]}', "data: [DONE]"]
    _FakeAsyncClient.scenarios = [_FakeStreamResponse(status_code=200, lines=lines)]

    def _boom(_text: str) -> None:
        raise RuntimeError("ui went away")

    assert _stream(on_delta=_boom) == "ok"


def test_stream_non_2xx_is_http_error() -> None:
    _FakeAsyncClient.scenarios = [_FakeStreamResponse(status_code=500, lines=[], body=b"upstream down")]
    with pytest.raises(GenerationError) as exc:
        _stream()
    assert exc.value.error_kind == GENERATION_ERROR_HTTP
    assert exc.value.raw_snippet == "upstream down"


def test_stream_invalid_chunk_is_parse_error() -> None:
    _FakeAsyncClient.scenarios = [_FakeStreamResponse(status_code=200, lines=["data: {broken"])]
    with pytest.raises(GenerationError) as exc:
        _stream()
    assert exc.value.error_kind == GENERATION_ERROR_PARSE


def test_stream_connect_failure_is_network_error() -> None:
    _FakeAsyncClient.scenarios = [httpx.ConnectError("refused", request=httpx.Request("POST", ENDPOINT))]
    with pytest.raises(GenerationError) as exc:
        _stream()
    assert exc.value.error_kind == GENERATION_ERROR_NETWORK


def test_empty_stream_is_parse_error() -> None:
    _FakeAsyncClient.scenarios = [_FakeStreamResponse(status_code=200, lines=["data: [DONE]"])]
    with pytest.raises(GenerationError) as exc:
        _stream()
    assert exc.value.error_kind == GENERATION_ERROR_PARSE
