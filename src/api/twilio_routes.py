"""Twilio Voice integration.

This module provides:
- TwiML endpoint that bridges a call to our media stream.
- Media Streams WebSocket driving one call session per stream.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, Response, WebSocket, WebSocketDisconnect

from api.dependencies import get_registry, get_session_factory
from calls.registry import SessionRegistry
from config.settings import get_settings
from integrations.twilio_client import to_ws_url, twiml_connect_stream
from integrations.twilio_streaming import (
    DEFAULT_PROMPT,
    media_payload,
    parse_start,
    parse_twilio_ws_message,
)

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _stream_url(request: Request) -> str:
    settings = get_settings()
    if settings.public_base_url:
        return to_ws_url(f"{settings.public_base_url.rstrip('/')}/api/twilio/stream")
    # Fallback to request host. This may not work behind proxies; prefer PUBLIC_BASE_URL.
    return to_ws_url(str(request.base_url).rstrip("/") + "/api/twilio/stream")


@router.api_route("/twiml", methods=["GET", "POST"])
async def twilio_twiml(request: Request) -> Response:
    prompt = (request.query_params.get("prompt") or "").strip() or DEFAULT_PROMPT
    echo = request.query_params.get("loop") == "1"
    LOGGER.info("TwiML served for prompt=%r echo=%s", prompt, echo)
    return _twiml_response(twiml_connect_stream(stream_url=_stream_url(request), prompt=prompt, echo=echo))


@router.websocket("/stream")
async def twilio_media_stream(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_registry),
    session_factory=Depends(get_session_factory),
) -> None:
    await websocket.accept()

    async def send_to_transport(message: dict[str, Any]) -> None:
        await websocket.send_json(message)

    session = session_factory(send_to_transport)
    try:
        while True:
            message = parse_twilio_ws_message(await websocket.receive_text())
            if message is None:
                continue

            event = message.get("event")
            if event == "start":
                start = parse_start(message)
                if start is None:
                    LOGGER.warning("Media stream start without stream sid")
                    continue
                await session.on_start(
                    start.stream_sid,
                    start.prompt,
                    call_sid=start.call_sid,
                    echo=start.echo,
                )
                registry.register(session)
            elif event == "media":
                payload = media_payload(message)
                if payload:
                    await session.on_audio_frame(payload)
            elif event == "stop":
                LOGGER.info("Media stream stopped for call %s", session.key)
                break
    except WebSocketDisconnect:
        LOGGER.info("Media stream disconnected for call %s", session.key)
    finally:
        await session.on_end()
