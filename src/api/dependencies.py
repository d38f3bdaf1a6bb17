"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from calls.registry import SessionRegistry
from config.settings import get_settings
from integrations.groupme import Notifier, build_notifier

if TYPE_CHECKING:  # pragma: no cover
    from calls.session import CallSession
    from calls.summary import CallSummarizer
    from db.repository import CallRepository
    from speech.transcriber import BaseTranscriber

LOGGER = logging.getLogger(__name__)

SessionFactory = Callable[[Callable[[dict[str, Any]], Awaitable[None]]], "CallSession"]


@lru_cache(maxsize=1)
def get_registry() -> SessionRegistry:
    return SessionRegistry()


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    return build_notifier()


@lru_cache(maxsize=1)
def _transcriber_factory() -> BaseTranscriber | None:
    # Lazy import: faster-whisper is only loaded when configured.
    from speech.transcriber import build_transcriber

    try:
        return build_transcriber()
    except (RuntimeError, ValueError) as exc:
        LOGGER.warning("Transcription disabled: %s", exc)
        return None


def get_transcriber() -> BaseTranscriber | None:
    return _transcriber_factory()


@lru_cache(maxsize=1)
def _summarizer_factory() -> CallSummarizer | None:
    from calls.summary import CallSummarizer
    from llm.factory import build_llm_client

    settings = get_settings()
    if not settings.summary_enabled:
        return None
    try:
        return CallSummarizer(build_llm_client(), principal=settings.principal_name)
    except ValueError as exc:
        LOGGER.warning("Call summaries disabled: %s", exc)
        return None


def get_summarizer() -> CallSummarizer | None:
    return _summarizer_factory()


@lru_cache(maxsize=1)
def get_repository() -> CallRepository:
    from db.repository import CallRepository

    return CallRepository()


def get_twilio_client():
    """Twilio REST client, or None when credentials are missing."""

    from integrations.twilio_client import build_twilio_client

    try:
        return build_twilio_client()
    except ValueError as exc:
        LOGGER.warning("Twilio unavailable: %s", exc)
        return None


def get_twilio_cfg():
    from integrations.twilio_client import get_twilio_config

    try:
        return get_twilio_config()
    except ValueError:
        return None


def get_session_factory() -> SessionFactory:
    """Builds sessions bound to the shared collaborators and the registry."""

    from calls.session import CallSession, SessionConfig
    from integrations.realtime import RealtimeEngine

    settings = get_settings()
    registry = get_registry()
    config = SessionConfig.from_settings(settings)

    def factory(send_to_transport: Callable[[dict[str, Any]], Awaitable[None]]) -> CallSession:
        return CallSession(
            config,
            send_to_transport=send_to_transport,
            notifier=get_notifier(),
            engine_factory=RealtimeEngine.from_settings,
            transcriber=get_transcriber(),
            summarizer=get_summarizer(),
            repository=get_repository(),
            loop=asyncio.get_running_loop(),
            on_closed=registry.unregister,
        )

    return factory
