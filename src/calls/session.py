"""Call session: owns one call's audio, turns and engine connection.

The session is driven by three event sources that interleave on the event
loop: transport messages (`on_start`, `on_audio_frame`, `on_end`), engine
events (pumped by a background task) and the segmenter's debounce timer.
Anything read before an `await` is re-checked afterwards because any of the
other sources may have run in between.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from calls.models import AudioFrame, SessionState, TranscriptEntry, Turn, slice_frames
from calls.summary import CallSummarizer
from calls.turns import SegmenterConfig, TimerLoop, TurnSegmenter
from config.settings import Settings
from integrations.groupme import Notifier
from integrations.realtime import (
    AUDIO_DELTA_EVENTS,
    RESPONSE_DONE_EVENTS,
    RESPONSE_STARTED_EVENTS,
    TEXT_DELTA_EVENTS,
)
from integrations.twilio_streaming import build_media_message
from prompts.loader import render_prompt
from speech.transcriber import BaseTranscriber
from speech.transcript import (
    LiveTextBuffer,
    SegmentFilter,
    TranscriptAssembler,
    cleaned_transcription,
    render_transcript,
)
from telephony.audio import duration_to_bytes, mulaw_to_wav_bytes

LOGGER = logging.getLogger(__name__)

TRANSCRIPT_UNAVAILABLE = "Call transcript unavailable."
SUMMARY_UNAVAILABLE = "Call summary unavailable."


class EngineConnection(Protocol):
    @property
    def ready(self) -> bool: ...

    async def connect(self) -> None: ...

    async def append_audio(self, payload_b64: str) -> None: ...

    async def commit_input(self) -> None: ...

    async def request_response(self, *, instructions: str | None = None) -> None: ...

    def events(self) -> AsyncIterator[dict[str, Any]]: ...

    async def close(self) -> None: ...


class TranscriptStore(Protocol):
    async def save_transcript(
        self,
        call_key: str,
        *,
        stream_sid: str | None,
        prompt: str,
        entries: list[TranscriptEntry],
        summary: str | None,
        source: str,
        started_at: datetime | None = None,
    ) -> Any: ...


@dataclass(frozen=True, slots=True)
class SessionConfig:
    debounce_seconds: float = 0.7
    min_turn_bytes: int = 2000
    transcript_mode: str = "hybrid"
    live_text_max_chars: int = 200
    segment_filter: SegmentFilter = field(default_factory=SegmentFilter)
    boilerplate: tuple[str, ...] = ()
    turn_transcription_timeout: float = 15.0
    response_grace_seconds: float = 1.0
    call_end_timeout: float = 40.0
    principal: str = "Oscar"

    @classmethod
    def from_settings(cls, settings: Settings) -> SessionConfig:
        return cls(
            debounce_seconds=settings.debounce_ms / 1000,
            min_turn_bytes=duration_to_bytes(settings.min_turn_ms),
            transcript_mode=settings.transcript_mode,
            live_text_max_chars=settings.live_text_max_chars,
            segment_filter=SegmentFilter(
                no_speech_threshold=settings.no_speech_threshold,
                logprob_floor=settings.logprob_floor,
                min_segment_seconds=settings.min_segment_seconds,
            ),
            boilerplate=tuple(settings.boilerplate_phrases),
            turn_transcription_timeout=settings.turn_transcription_timeout_seconds,
            response_grace_seconds=settings.response_grace_seconds,
            call_end_timeout=settings.call_end_timeout_seconds,
            principal=settings.principal_name,
        )

    @property
    def live_enabled(self) -> bool:
        return self.transcript_mode in ("live", "hybrid")

    @property
    def reconcile_enabled(self) -> bool:
        return self.transcript_mode in ("post_call", "hybrid")


class CallSession:
    """Lifecycle hooks consumed by the media transport."""

    def __init__(
        self,
        config: SessionConfig,
        *,
        send_to_transport: Callable[[dict[str, Any]], Awaitable[None]],
        notifier: Notifier,
        engine_factory: Callable[[str], EngineConnection] | None = None,
        transcriber: BaseTranscriber | None = None,
        summarizer: CallSummarizer | None = None,
        repository: TranscriptStore | None = None,
        loop: TimerLoop | None = None,
        on_closed: Callable[[CallSession], None] | None = None,
    ) -> None:
        self._config = config
        self._send_to_transport = send_to_transport
        self._notifier = notifier
        self._engine_factory = engine_factory
        self._transcriber = transcriber
        self._summarizer = summarizer
        self._repository = repository
        self._on_closed = on_closed

        self.state: SessionState | None = None
        self.stream_sid: str | None = None
        self.call_sid: str | None = None
        self.prompt = ""
        self.echo = False
        self.started_at: datetime | None = None

        self.frames: list[AudioFrame] = []
        self.inbound_bytes = 0
        self.engine: EngineConnection | None = None
        self.transcript: list[TranscriptEntry] = []
        self.summary: str | None = None

        self._segmenter = TurnSegmenter(
            SegmenterConfig(
                debounce_seconds=config.debounce_seconds,
                min_turn_bytes=config.min_turn_bytes,
            ),
            loop=loop,
            on_caller_turn=self._on_caller_turn,
            on_agent_turn_closed=self._on_agent_turn_closed,
        )
        self._live_buffer = LiveTextBuffer(config.live_text_max_chars)
        self._assembler = TranscriptAssembler()

        self._engine_task: asyncio.Task | None = None
        self._turn_tasks: dict[int, asyncio.Task] = {}
        self._live_queue: asyncio.Queue[str | None] | None = None
        self._live_worker: asyncio.Task | None = None
        self._transcript_sent = False
        self._summary_sent = False

    @property
    def segmenter(self) -> TurnSegmenter:
        return self._segmenter

    @property
    def turns(self) -> list[Turn]:
        return self._segmenter.turns

    @property
    def key(self) -> str:
        return self.call_sid or self.stream_sid or "unknown"

    # Transport hooks

    async def on_start(
        self,
        stream_sid: str,
        prompt: str,
        *,
        call_sid: str | None = None,
        echo: bool = False,
    ) -> None:
        if self.state is not None:
            return
        self.state = SessionState.STARTING
        self.stream_sid = stream_sid
        self.call_sid = call_sid
        self.prompt = prompt
        self.echo = echo
        self.started_at = datetime.now(timezone.utc)
        LOGGER.info("Call %s started (echo=%s) prompt=%r", self.key, echo, prompt)

        if not echo and self._engine_factory is not None:
            await self._open_engine()

        if self.state is SessionState.STARTING:
            self.state = SessionState.ACTIVE

    async def on_audio_frame(self, data: bytes) -> None:
        if self.state is not SessionState.ACTIVE or not data:
            return

        payload_b64 = base64.b64encode(data).decode("ascii")
        if self.echo:
            await self._send_audio(payload_b64)
            return

        self.frames.append(AudioFrame(offset=self.inbound_bytes, data=data))
        self.inbound_bytes += len(data)
        self._segmenter.on_audio(len(data))

        engine = self.engine
        if engine is not None and engine.ready:
            try:
                await engine.append_audio(payload_b64)
            except Exception:
                LOGGER.exception("Forwarding audio to engine failed; continuing audio-only")
                await self._drop_engine(engine)

    async def on_end(self) -> None:
        if self.state in (SessionState.ENDING, SessionState.CLOSED):
            return
        if self.state is None or self.echo:
            self.state = SessionState.ENDING
            await self._release()
            return

        self.state = SessionState.ENDING
        LOGGER.info("Call %s ending after %d inbound bytes", self.key, self.inbound_bytes)
        try:
            await asyncio.wait_for(self._finish_call(), timeout=self._config.call_end_timeout)
        except asyncio.TimeoutError:
            LOGGER.error("Call %s end pipeline timed out", self.key)
            if not self._transcript_sent:
                await self._notify("Call transcript unavailable (timeout).")
            elif self._summarizer is not None and not self._summary_sent:
                await self._notify("Call summary unavailable (timeout).")
        finally:
            await self._release()

    # Engine

    async def _open_engine(self) -> None:
        instructions = render_prompt("agent_instructions.txt", principal=self._config.principal)
        try:
            engine = self._engine_factory(instructions)
            await engine.connect()
        except Exception:
            LOGGER.exception("Engine unavailable for call %s; continuing audio-only", self.key)
            return

        if self.state is not SessionState.STARTING:
            # The call ended while connecting.
            await engine.close()
            return

        self.engine = engine
        self._segmenter.commands = engine
        self._engine_task = asyncio.create_task(self._pump_engine_events(engine))

        opening = render_prompt(
            "opening_line.txt",
            principal=self._config.principal,
            prompt=self.prompt,
        )
        await self._segmenter.request_opening(opening)

    async def _pump_engine_events(self, engine: EngineConnection) -> None:
        try:
            async for event in engine.events():
                await self._handle_engine_event(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Engine event stream failed for call %s", self.key)

        if self.engine is engine:
            LOGGER.warning("Engine connection closed early for call %s", self.key)
            await self._drop_engine(engine)

    async def _handle_engine_event(self, event: dict[str, Any]) -> None:
        event_type = str(event.get("type") or "")

        if event_type in AUDIO_DELTA_EVENTS:
            delta = event.get("delta")
            if isinstance(delta, str) and delta:
                await self._send_audio(delta)
        elif event_type in TEXT_DELTA_EVENTS:
            self._on_agent_text(event.get("delta"))
        elif event_type in RESPONSE_STARTED_EVENTS:
            self._segmenter.on_response_started()
        elif event_type in RESPONSE_DONE_EVENTS:
            status = (event.get("response") or {}).get("status")
            self._segmenter.on_response_done(error=status == "failed")
        elif event_type == "error":
            LOGGER.error("Engine error on call %s: %s", self.key, event.get("error"))
            if self._segmenter.response_in_flight:
                self._segmenter.on_response_done(error=True)

    async def _drop_engine(self, engine: EngineConnection) -> None:
        if self.engine is not engine:
            return
        self.engine = None
        self._segmenter.on_engine_lost()
        await engine.close()

    async def _close_engine(self) -> None:
        engine, self.engine = self.engine, None
        task, self._engine_task = self._engine_task, None
        if engine is not None:
            await engine.close()
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                LOGGER.exception("Engine event task failed while closing")

    # Turn callbacks

    def _on_agent_text(self, delta: Any) -> None:
        if not isinstance(delta, str) or not delta:
            return
        self._segmenter.append_agent_text(delta)
        if self._config.live_enabled:
            chunk = self._live_buffer.feed(delta)
            if chunk:
                self._notify_soon(f"Agent: {chunk}")

    def _on_agent_turn_closed(self, turn: Turn) -> None:
        if not self._config.live_enabled:
            return
        tail = self._live_buffer.flush()
        if tail:
            self._notify_soon(f"Agent: {tail}")

    def _on_caller_turn(self, turn: Turn) -> None:
        if self._config.live_enabled and self._transcriber is not None:
            self._turn_tasks[turn.ordinal] = asyncio.create_task(self._transcribe_turn(turn))

    async def _transcribe_turn(self, turn: Turn) -> None:
        audio = slice_frames(self.frames, turn.start or 0, turn.end or 0)
        if not audio:
            return
        try:
            result = await self._transcriber.transcribe(mulaw_to_wav_bytes(audio))
        except Exception:
            LOGGER.exception("Transcription of caller turn %d failed", turn.ordinal)
            return

        turn.text = cleaned_transcription(result, self._config.segment_filter, self._config.boilerplate)
        if turn.text and self.state in (SessionState.ACTIVE, SessionState.ENDING):
            self._notify_soon(f"Caller: {turn.text}")

    # End of call

    async def _finish_call(self) -> None:
        if self._segmenter.response_in_flight:
            await self._segmenter.wait_for_response(self._config.response_grace_seconds)
        await self._segmenter.finalize()
        await self._close_engine()
        await self._await_turn_transcriptions()
        await self._drain_notifications()

        entries, source = await self._build_transcript()
        self.transcript = entries
        body = render_transcript(entries) if entries else TRANSCRIPT_UNAVAILABLE
        await self._notify(f"Call transcript ({self.key}):\n{body}" if entries else body)
        self._transcript_sent = True

        if self._summarizer is not None:
            self.summary = await self._summarize(entries)
            await self._notify(f"Call summary: {self.summary}" if self.summary else SUMMARY_UNAVAILABLE)
            self._summary_sent = True

        await self._persist(entries, source)

    async def _await_turn_transcriptions(self) -> None:
        pending = {ordinal: task for ordinal, task in self._turn_tasks.items() if not task.done()}
        if not pending:
            return
        _done, not_done = await asyncio.wait(
            pending.values(), timeout=self._config.turn_transcription_timeout
        )
        by_task = {task: ordinal for ordinal, task in pending.items()}
        turns = {turn.ordinal: turn for turn in self.turns}
        for task in not_done:
            task.cancel()
            turn = turns.get(by_task[task])
            if turn is not None and turn.text is None:
                turn.text = ""
        if not_done:
            LOGGER.warning("%d caller turn transcriptions timed out", len(not_done))

    async def _build_transcript(self) -> tuple[list[TranscriptEntry], str]:
        turns = self.turns
        if self._config.reconcile_enabled and self._transcriber is not None:
            caller_text = await self._transcribe_full_call()
            if caller_text is not None:
                return self._assembler.from_reconciliation(turns, caller_text), "post_call"
            LOGGER.warning("Falling back to live transcript for call %s", self.key)
        return self._assembler.from_live(turns), "live"

    async def _transcribe_full_call(self) -> str | None:
        audio = b"".join(frame.data for frame in self.frames)
        if not audio:
            return ""
        try:
            result = await self._transcriber.transcribe(mulaw_to_wav_bytes(audio))
        except Exception:
            LOGGER.exception("Full-call transcription failed for call %s", self.key)
            return None
        return cleaned_transcription(result, self._config.segment_filter, self._config.boilerplate)

    async def _summarize(self, entries: list[TranscriptEntry]) -> str | None:
        if not entries:
            return None
        try:
            return await self._summarizer.summarize(entries)
        except Exception:
            LOGGER.exception("Summary failed for call %s", self.key)
            return None

    async def _persist(self, entries: list[TranscriptEntry], source: str) -> None:
        if self._repository is None:
            return
        try:
            await self._repository.save_transcript(
                self.key,
                stream_sid=self.stream_sid,
                prompt=self.prompt,
                entries=entries,
                summary=self.summary,
                source=source,
                started_at=self.started_at,
            )
        except Exception:
            LOGGER.exception("Persisting transcript failed for call %s", self.key)

    async def _release(self) -> None:
        try:
            await self._close_engine()
        except Exception:
            LOGGER.exception("Engine close failed for call %s", self.key)
        for task in self._turn_tasks.values():
            if not task.done():
                task.cancel()
        self._turn_tasks.clear()
        worker, self._live_worker = self._live_worker, None
        self._live_queue = None
        if worker is not None and not worker.done():
            worker.cancel()
        self.frames.clear()
        self.state = SessionState.CLOSED
        LOGGER.info("Call %s closed", self.key)
        if self._on_closed is not None:
            self._on_closed(self)

    # Outputs

    async def _send_audio(self, payload_b64: str) -> None:
        if not self.stream_sid:
            return
        try:
            await self._send_to_transport(build_media_message(self.stream_sid, payload_b64))
        except Exception:
            LOGGER.debug("Transport send failed for call %s", self.key, exc_info=True)

    async def _notify(self, text: str) -> None:
        try:
            await self._notifier.send(text)
        except Exception:
            LOGGER.exception("Notification failed for call %s", self.key)

    def _notify_soon(self, text: str) -> None:
        # One worker per call keeps live lines in the order they were produced.
        if self._live_queue is None:
            self._live_queue = asyncio.Queue()
            self._live_worker = asyncio.create_task(self._deliver_live(self._live_queue))
        self._live_queue.put_nowait(text)

    async def _deliver_live(self, queue: asyncio.Queue[str | None]) -> None:
        while True:
            text = await queue.get()
            if text is None:
                return
            await self._notify(text)

    async def _drain_notifications(self) -> None:
        queue, worker = self._live_queue, self._live_worker
        self._live_queue = self._live_worker = None
        if queue is None or worker is None:
            return
        queue.put_nowait(None)
        await worker
