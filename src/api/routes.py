"""FastAPI routes: health, chat command webhook and stored transcripts."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException

from api.dependencies import (
    get_notifier,
    get_registry,
    get_repository,
    get_twilio_cfg,
    get_twilio_client,
)
from api.schemas import (
    CallTranscriptResponse,
    GroupMeMessage,
    HealthResponse,
    TranscriptLineResponse,
    WebhookResponse,
)
from calls.commands import USAGE_HINT, CallCommand, HangupCommand, parse_command
from calls.errors import CallPlacementError
from calls.registry import SessionRegistry
from config.settings import get_settings
from db.repository import CallRepository
from integrations.groupme import Notifier
from integrations.twilio_client import hang_up_call, place_call

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(registry: SessionRegistry = Depends(get_registry)) -> HealthResponse:
    return HealthResponse(active_calls=len(registry))


@router.post("/groupme", response_model=WebhookResponse)
async def groupme_webhook(
    message: GroupMeMessage,
    background_tasks: BackgroundTasks,
    x_shared_secret: Annotated[str | None, Header()] = None,
    notifier: Notifier = Depends(get_notifier),
    registry: SessionRegistry = Depends(get_registry),
    twilio_client=Depends(get_twilio_client),
    cfg=Depends(get_twilio_cfg),
) -> WebhookResponse:
    settings = get_settings()
    if settings.groupme_shared_secret and x_shared_secret != settings.groupme_shared_secret:
        raise HTTPException(status_code=403, detail="Forbidden")

    # The bot's own posts come back through the same callback.
    if message.sender_type == "bot":
        return WebhookResponse(action="ignored")

    command = parse_command(message.text)
    if command is None:
        await notifier.send(USAGE_HINT)
        return WebhookResponse(action="usage")

    if isinstance(command, HangupCommand):
        return await _hang_up(notifier, registry, twilio_client, background_tasks)

    return await _call(command, notifier, twilio_client, cfg)


async def _call(command: CallCommand, notifier: Notifier, twilio_client, cfg) -> WebhookResponse:
    if command.to_number is None:
        await notifier.send(f'Could not find a valid phone number in "{command.raw_number}"')
        return WebhookResponse(action="invalid_number")

    if twilio_client is None or cfg is None:
        await notifier.send("Twilio call failed.")
        return WebhookResponse(action="failed")

    try:
        call_sid = await place_call(twilio_client, cfg, to_number=command.to_number, prompt=command.prompt)
    except CallPlacementError as exc:
        LOGGER.error("%s", exc.detail)
        await notifier.send("Twilio call failed.")
        return WebhookResponse(action="failed")

    await notifier.send(f'Calling {command.to_number} now and saying: "{command.prompt}"')
    return WebhookResponse(action="call", call_sid=call_sid)


async def _hang_up(
    notifier: Notifier,
    registry: SessionRegistry,
    twilio_client,
    background_tasks: BackgroundTasks,
) -> WebhookResponse:
    sessions = registry.active()
    if not sessions:
        await notifier.send("No active call to hang up.")
        return WebhookResponse(action="hangup")

    # Most recently started call.
    session = sessions[-1]
    if session.call_sid and twilio_client is not None:
        try:
            await hang_up_call(twilio_client, session.call_sid)
        except CallPlacementError as exc:
            LOGGER.error("%s", exc.detail)

    # The transcript pipeline runs after the response is sent.
    background_tasks.add_task(session.on_end)
    await notifier.send("Hanging up.")
    return WebhookResponse(action="hangup", call_sid=session.call_sid)


@router.get("/calls/{call_key}/transcript", response_model=CallTranscriptResponse)
async def get_call_transcript(
    call_key: str,
    repository: CallRepository = Depends(get_repository),
) -> CallTranscriptResponse:
    record = await repository.get_call(call_key)
    if record is None:
        raise HTTPException(status_code=404, detail="Call not found.")

    return CallTranscriptResponse(
        call_key=record.call_key,
        prompt=record.prompt,
        transcript_source=record.transcript_source,
        summary=record.summary,
        started_at=record.started_at,
        ended_at=record.ended_at,
        lines=[TranscriptLineResponse(speaker=line.speaker, text=line.text) for line in record.lines],
    )
