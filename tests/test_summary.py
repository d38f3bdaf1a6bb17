from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from calls.errors import SummaryFailedError
from calls.models import TranscriptEntry
from calls.summary import CallSummarizer
from integrations.groupme import GroupMeNotifier
from llm.vllm_client import VLLMClient

ENTRIES = [
    TranscriptEntry("agent", "Hello! Oscar has a message for you. Dinner is at six.", 0, 0, 0),
    TranscriptEntry("caller", "Great, tell him I'll bring dessert.", 1, 1, 1),
]


def _llm(handler) -> VLLMClient:
    return VLLMClient(
        "http://llm.local/",
        model="test-model",
        api_key="secret",
        transport=httpx.MockTransport(handler),
    )


def test_summary_request_carries_the_transcript() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"choices": [{"message": {"role": "assistant", "content": " The callee will bring dessert. "}}]},
        )

    summarizer = CallSummarizer(_llm(handler), principal="Oscar")
    summary = asyncio.run(summarizer.summarize(ENTRIES))

    assert summary == "The callee will bring dessert."
    assert seen["url"] == "http://llm.local/v1/chat/completions"
    assert seen["auth"] == "Bearer secret"
    system, user = seen["body"]["messages"]
    assert "Oscar" in system["content"]
    assert "Caller: Great, tell him I'll bring dessert." in user["content"]
    assert seen["body"]["model"] == "test-model"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "boom"}),
        httpx.Response(200, json={"choices": []}),
        httpx.Response(200, json={"choices": [{"message": {"content": "   "}}]}),
    ],
)
def test_summary_failures_raise_summary_error(response) -> None:
    summarizer = CallSummarizer(_llm(lambda request: response), principal="Oscar")
    with pytest.raises(SummaryFailedError):
        asyncio.run(summarizer.summarize(ENTRIES))


def test_nothing_to_summarize() -> None:
    summarizer = CallSummarizer(_llm(lambda request: httpx.Response(200)), principal="Oscar")
    with pytest.raises(SummaryFailedError):
        asyncio.run(summarizer.summarize([]))


def test_groupme_notifier_posts_as_the_bot() -> None:
    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        posted.append(json.loads(request.content))
        return httpx.Response(202)

    notifier = GroupMeNotifier("bot-1", transport=httpx.MockTransport(handler))
    asyncio.run(notifier.send("Caller: hi"))
    assert posted == [{"bot_id": "bot-1", "text": "Caller: hi"}]


def test_groupme_notifier_raises_on_http_error() -> None:
    notifier = GroupMeNotifier("bot-1", transport=httpx.MockTransport(lambda request: httpx.Response(400)))
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(notifier.send("hello"))
