"""Duplex event-stream client for the OpenAI Realtime conversational engine."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import websockets

from calls.errors import EngineUnavailableError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)

AUDIO_DELTA_EVENTS = frozenset({"response.audio.delta", "response.output_audio.delta"})
TEXT_DELTA_EVENTS = frozenset(
    {
        "response.audio_transcript.delta",
        "response.output_audio_transcript.delta",
        "response.text.delta",
        "response.output_text.delta",
    }
)
RESPONSE_STARTED_EVENTS = frozenset({"response.created"})
RESPONSE_DONE_EVENTS = frozenset({"response.done", "response.completed"})


class RealtimeEngine:
    """One engine connection, owned by exactly one call session.

    Audio is exchanged as base64 G.711 mu-law in both directions so that
    Twilio payloads can be relayed verbatim.
    """

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        model: str,
        voice: str,
        instructions: str,
        server_vad: bool = False,
    ) -> None:
        self._url = f"{url.rstrip('/')}?model={model}"
        self._api_key = api_key
        self._voice = voice
        self._instructions = instructions
        self._server_vad = server_vad
        self._ws: Any = None

    @classmethod
    def from_settings(cls, instructions: str) -> RealtimeEngine:
        settings = get_settings()
        if not settings.openai_api_key:
            raise EngineUnavailableError("OPENAI_API_KEY not configured")
        return cls(
            url=settings.realtime_url,
            api_key=settings.openai_api_key,
            model=settings.realtime_model,
            voice=settings.realtime_voice,
            instructions=instructions,
            server_vad=settings.realtime_server_vad,
        )

    @property
    def ready(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        try:
            self._ws = await websockets.connect(
                self._url,
                additional_headers=headers,
                ping_interval=15,
                ping_timeout=20,
            )
        except Exception as exc:
            raise EngineUnavailableError(f"Engine connection failed: {exc}") from exc

        LOGGER.info("Connected to conversational engine")
        await self.send(self._session_config())

    def _session_config(self) -> dict[str, Any]:
        return {
            "type": "session.update",
            "session": {
                "voice": self._voice,
                "modalities": ["audio", "text"],
                "input_audio_format": "g711_ulaw",
                "output_audio_format": "g711_ulaw",
                "turn_detection": (
                    {"type": "server_vad", "create_response": False, "interrupt_response": False}
                    if self._server_vad
                    else None
                ),
                "instructions": self._instructions,
            },
        }

    async def send(self, payload: dict[str, Any]) -> None:
        if self._ws is None:
            raise EngineUnavailableError("Engine connection is not open")
        try:
            await self._ws.send(json.dumps(payload))
        except Exception as exc:
            raise EngineUnavailableError(f"Engine send failed: {exc}") from exc

    async def append_audio(self, payload_b64: str) -> None:
        await self.send({"type": "input_audio_buffer.append", "audio": payload_b64})

    async def commit_input(self) -> None:
        await self.send({"type": "input_audio_buffer.commit"})

    async def request_response(self, *, instructions: str | None = None) -> None:
        response: dict[str, Any] = {"modalities": ["audio", "text"]}
        if instructions:
            response["instructions"] = instructions
        await self.send({"type": "response.create", "response": response})

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded engine events until the connection closes."""

        if self._ws is None:
            return
        async for message in self._ws:
            try:
                event = json.loads(message)
            except json.JSONDecodeError:
                LOGGER.debug("Dropping non-JSON engine message")
                continue
            if isinstance(event, dict):
                yield event

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except Exception:
            LOGGER.debug("Engine close failed", exc_info=True)
