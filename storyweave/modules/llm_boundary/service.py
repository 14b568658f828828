from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from storyweave.config import Settings, chat_completions_url
from storyweave.modules.llm_boundary.client import (
    build_payload,
    call_chat_completions_stream_text,
    post_chat_completion,
)
from storyweave.modules.llm_boundary.grammarcheck import parse_story_node
from storyweave.modules.llm_boundary.schemas import StoryNodeDraft
from storyweave.modules.narrative.prompt_composer import ComposedPrompt

log = logging.getLogger("storyweave")


@dataclass(frozen=True)
class LLMChannelConfig:
    api_key: str
    endpoint_url: str
    model: str
    timeout_s: float
    connect_timeout_s: float | None = None

    @classmethod
    def from_settings(cls, config: Settings) -> "LLMChannelConfig":
        return cls(
            api_key=str(config.llm_api_key or "").strip(),
            endpoint_url=chat_completions_url(config.llm_base_url, config.llm_chat_path),
            model=str(config.llm_model or "").strip(),
            timeout_s=float(config.llm_timeout_s),
            connect_timeout_s=float(config.llm_connect_timeout_s),
        )


class GenerationClient:
    """One model request per call, no internal retries.

    Raises ``GenerationError`` on transport, status, parse and schema failures.
    """

    def __init__(self, channel: LLMChannelConfig):
        self.channel = channel

    def generate(
        self,
        prompt: ComposedPrompt,
        *,
        stream: bool = False,
        on_token: Callable[[str], None] | None = None,
    ) -> StoryNodeDraft:
        return asyncio.run(self.generate_async(prompt, stream=stream, on_token=on_token))

    async def generate_async(
        self,
        prompt: ComposedPrompt,
        *,
        stream: bool = False,
        on_token: Callable[[str], None] | None = None,
    ) -> StoryNodeDraft:
        payload = build_payload(
            model=self.channel.model,
            messages=[
                {"role": "system", "content": prompt.system_prompt},
                {"role": "user", "content": prompt.text},
            ],
            temperature=prompt.temperature,
            max_tokens=prompt.max_tokens,
            stream=stream,
        )
        if stream:
            raw_text = await call_chat_completions_stream_text(
                api_key=self.channel.api_key,
                endpoint_url=self.channel.endpoint_url,
                payload=payload,
                timeout_s=self.channel.timeout_s,
                connect_timeout_s=self.channel.connect_timeout_s,
                on_delta=on_token,
            )
        else:
            raw_text = await post_chat_completion(
                api_key=self.channel.api_key,
                endpoint_url=self.channel.endpoint_url,
                payload=payload,
                timeout_s=self.channel.timeout_s,
                connect_timeout_s=self.channel.connect_timeout_s,
            )
        draft = parse_story_node(raw_text)
        log.info("generation_client: parsed draft %r with %d choices", draft.title, len(draft.choices))
        return draft
