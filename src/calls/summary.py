"""End-of-call summary via one text-generation request."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from calls.errors import SummaryFailedError
from calls.models import TranscriptEntry
from llm.base import BaseLLMClient
from prompts.loader import render_prompt

LOGGER = logging.getLogger(__name__)


class CallSummarizer:
    def __init__(self, llm_client: BaseLLMClient, *, principal: str) -> None:
        self._llm = llm_client
        self._system_prompt = render_prompt("summary_system.txt", principal=principal)

    async def summarize(self, entries: Sequence[TranscriptEntry]) -> str:
        if not entries:
            raise SummaryFailedError("Nothing to summarize.")

        transcript = "\n".join(entry.as_line() for entry in entries)
        messages = [
            {"role": "system", "content": self._system_prompt},
            {"role": "user", "content": f"Call transcript:\n{transcript}"},
        ]
        try:
            summary = await self._llm.chat(messages, temperature=0.2, max_tokens=200)
        except Exception as exc:
            raise SummaryFailedError(f"Summary request failed: {exc}") from exc

        summary = summary.strip()
        if not summary:
            raise SummaryFailedError("Empty summary returned.")
        return summary
