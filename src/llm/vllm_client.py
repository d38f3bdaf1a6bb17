"""Chat completions against a self-hosted OpenAI-compatible server (vLLM, TGI)."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import httpx

from config.settings import get_settings
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)


class VLLMClient(BaseLLMClient):
    def __init__(
        self,
        endpoint: str,
        *,
        model: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = f"{endpoint.rstrip('/')}/v1/chat/completions"
        self._model = model
        self._timeout = timeout
        self._transport = transport
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    @classmethod
    def from_settings(cls) -> VLLMClient:
        settings = get_settings()
        if not settings.llm_endpoint:
            raise ValueError("LLM_ENDPOINT must be configured for the self-hosted provider.")
        return cls(settings.llm_endpoint, model=settings.llm_model, api_key=settings.llm_api_key)

    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.2,
        max_tokens: int = 256,
    ) -> str:
        payload = {
            "model": self._model,
            "messages": list(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._url, json=payload, headers=self._headers)
        response.raise_for_status()

        choices: list[dict] = response.json().get("choices") or []
        if not choices:
            raise RuntimeError("LLM response contains no choices.")
        return (choices[0].get("message") or {}).get("content") or ""
