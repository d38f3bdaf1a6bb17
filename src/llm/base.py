"""Interface for the text-generation backends behind call summaries."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable


class BaseLLMClient(ABC):
    @abstractmethod
    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.2,
        max_tokens: int = 256,
    ) -> str:
        """Return the assistant message for an OpenAI-style message list."""
