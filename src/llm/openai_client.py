"""Hosted chat completions through the OpenAI SDK."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from openai import AsyncOpenAI

from config.settings import get_settings
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)


class OpenAIClient(BaseLLMClient):
    def __init__(self, *, api_key: str, model: str, base_url: str | None = None) -> None:
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._model = model

    @classmethod
    def from_settings(cls) -> OpenAIClient:
        settings = get_settings()
        # Summaries share the Realtime key unless a separate one is set.
        api_key = settings.llm_api_key or settings.openai_api_key
        if not api_key:
            raise ValueError("LLM_API_KEY or OPENAI_API_KEY must be configured for summaries.")
        return cls(api_key=api_key, model=settings.llm_model, base_url=settings.llm_endpoint or None)

    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.2,
        max_tokens: int = 256,
    ) -> str:
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=list(messages),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if response.usage is not None:
            LOGGER.debug("Chat completion used %d tokens", response.usage.total_tokens)
        return response.choices[0].message.content or ""
