"""Twilio Media Streams message helpers."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any

LOGGER = logging.getLogger(__name__)

DEFAULT_PROMPT = "test"


@dataclass(frozen=True, slots=True)
class StreamStart:
    stream_sid: str
    call_sid: str | None
    prompt: str
    echo: bool


def parse_twilio_ws_message(text: str) -> dict[str, Any] | None:
    """Decode one Media Streams frame; malformed frames yield None."""

    try:
        message = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        LOGGER.debug("Ignoring malformed media stream message")
        return None
    if not isinstance(message, dict) or not message.get("event"):
        return None
    return message


def parse_start(message: dict[str, Any]) -> StreamStart | None:
    start = message.get("start") or {}
    stream_sid = str(start.get("streamSid") or message.get("streamSid") or "").strip()
    if not stream_sid:
        return None

    params = start.get("customParameters") or {}
    prompt = params.get("prompt")
    prompt = prompt.strip() if isinstance(prompt, str) and prompt.strip() else DEFAULT_PROMPT

    return StreamStart(
        stream_sid=stream_sid,
        call_sid=str(start.get("callSid") or "") or None,
        prompt=prompt,
        echo=str(params.get("loop") or "0") == "1",
    )


def media_payload(message: dict[str, Any]) -> bytes | None:
    """Inbound mu-law audio of a `media` event, or None when absent/invalid."""

    media = message.get("media") or {}
    if media.get("track") and media.get("track") != "inbound":
        return None
    payload = media.get("payload")
    if not isinstance(payload, str) or not payload:
        return None
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        LOGGER.debug("Ignoring media event with invalid base64 payload")
        return None


def build_media_message(stream_sid: str, payload_b64: str) -> dict[str, Any]:
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload_b64}}
