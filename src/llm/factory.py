"""Factory returning the configured text-generation client."""

from __future__ import annotations

from config.settings import get_settings
from llm.base import BaseLLMClient
from llm.openai_client import OpenAIClient
from llm.vllm_client import VLLMClient


def build_llm_client() -> BaseLLMClient:
    """Instantiate the client used for end-of-call summaries."""

    settings = get_settings()
    if settings.llm_provider == "openai":
        return OpenAIClient.from_settings()
    if settings.llm_provider == "self_hosted_vllm":
        return VLLMClient.from_settings()
    raise ValueError(f"Unsupported llm_provider: {settings.llm_provider}")
