from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Callable, Literal, TypedDict

import httpx

from storyweave.modules.llm_boundary.errors import (
    GENERATION_ERROR_HTTP,
    GENERATION_ERROR_NETWORK,
    GENERATION_ERROR_PARSE,
    GenerationError,
)

log = logging.getLogger("storyweave")

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


class ChatCompletionMessage(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatCompletionPayload(TypedDict, total=False):
    model: str
    messages: list[ChatCompletionMessage]
    temperature: float
    max_tokens: int
    stream: bool


def _normalize_messages(messages: list[dict]) -> list[ChatCompletionMessage]:
    normalized: list[ChatCompletionMessage] = []
    for item in messages:
        if not isinstance(item, dict):
            continue
        role = str(item.get("role") or "").strip().lower()
        content = str(item.get("content") or "")
        if role not in {"system", "user", "assistant"}:
            continue
        normalized.append({"role": role, "content": content})
    return normalized


def _headers(api_key: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


def build_payload(
    *,
    model: str,
    messages: list[dict],
    temperature: float,
    max_tokens: int,
    stream: bool,
) -> ChatCompletionPayload:
    normalized = _normalize_messages(messages)
    if not normalized:
        normalized = [{"role": "user", "content": ""}]
    return {
        "model": str(model),
        "messages": normalized,
        "temperature": float(temperature),
        "max_tokens": int(max_tokens),
        "stream": bool(stream),
    }


def _snippet(text: str, limit: int = 240) -> str:
    return " ".join(str(text or "").split())[:limit]


def _status_error(status_code: int, body: str) -> GenerationError:
    return GenerationError(
        f"chat/completions non-2xx: {status_code}",
        error_kind=GENERATION_ERROR_HTTP,
        status_code=status_code,
        raw_snippet=_snippet(body) or None,
    )


def _transport_error(exc: Exception) -> GenerationError:
    return GenerationError(f"chat/completions transport failed: {exc}", error_kind=GENERATION_ERROR_NETWORK)


def extract_message_content(data: object) -> str:
    try:
        content = data["choices"][0]["message"]["content"]  # type: ignore[index]
    except Exception as exc:  # noqa: BLE001
        raise GenerationError("missing choices[0].message.content", error_kind=GENERATION_ERROR_PARSE) from exc
    if not isinstance(content, str) or not content.strip():
        raise GenerationError("empty model content", error_kind=GENERATION_ERROR_PARSE)
    return content


def extract_stream_delta(chunk: object) -> str:
    if not isinstance(chunk, dict):
        return ""
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


async def post_chat_completion(
    *,
    api_key: str,
    endpoint_url: str,
    payload: ChatCompletionPayload,
    timeout_s: float,
    connect_timeout_s: float | None = None,
) -> str:
    timeout = httpx.Timeout(timeout_s, connect=connect_timeout_s)
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(endpoint_url, headers=_headers(api_key), json={**payload, "stream": False})
    except (httpx.RequestError, TimeoutError) as exc:
        raise _transport_error(exc) from exc
    if not 200 <= response.status_code < 300:
        raise _status_error(response.status_code, response.text)
    try:
        data = response.json()
    except ValueError as exc:
        raise GenerationError(
            "chat/completions body is not JSON",
            error_kind=GENERATION_ERROR_PARSE,
            raw_snippet=_snippet(response.text) or None,
        ) from exc
    return extract_message_content(data)


async def stream_chat_completion_deltas(
    *,
    api_key: str,
    endpoint_url: str,
    payload: ChatCompletionPayload,
    timeout_s: float,
    connect_timeout_s: float | None = None,
) -> AsyncIterator[str]:
    """Yield ``choices[0].delta.content`` pieces in arrival order until ``data: [DONE]``."""
    timeout = httpx.Timeout(timeout_s, connect=connect_timeout_s)
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            async with client.stream(
                "POST",
                endpoint_url,
                headers=_headers(api_key),
                json={**payload, "stream": True},
            ) as response:
                if not 200 <= response.status_code < 300:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise _status_error(response.status_code, body)

                async for line in response.aiter_lines():
                    text = str(line or "").strip()
                    if not text.startswith(SSE_DATA_PREFIX):
                        continue
                    data = text[len(SSE_DATA_PREFIX) :].strip()
                    if not data:
                        continue
                    if data == SSE_DONE:
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError as exc:
                        raise GenerationError(
                            "invalid streamed json chunk",
                            error_kind=GENERATION_ERROR_PARSE,
                            raw_snippet=_snippet(data),
                        ) from exc
                    piece = extract_stream_delta(chunk)
                    if piece:
                        yield piece
    except (httpx.RequestError, TimeoutError) as exc:
        raise _transport_error(exc) from exc


async def call_chat_completions_stream_text(
    *,
    api_key: str,
    endpoint_url: str,
    payload: ChatCompletionPayload,
    timeout_s: float,
    connect_timeout_s: float | None = None,
    on_delta: Callable[[str], None] | None = None,
) -> str:
    fragments: list[str] = []
    async for piece in stream_chat_completion_deltas(
        api_key=api_key,
        endpoint_url=endpoint_url,
        payload=payload,
        timeout_s=timeout_s,
        connect_timeout_s=connect_timeout_s,
    ):
        fragments.append(piece)
        if on_delta is not None:
            try:
                on_delta(piece)
            except Exception as exc:  # noqa: BLE001
                log.warning("llm_client: on_delta callback failed: %s", exc)
    text = "".join(fragments)
    if not text.strip():
        raise GenerationError("empty streamed content", error_kind=GENERATION_ERROR_PARSE)
    return text
