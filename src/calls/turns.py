"""Silence-debounced turn segmentation with single-flight response requests."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from calls.models import SegmenterState, Turn

LOGGER = logging.getLogger(__name__)


class EngineCommands(Protocol):
    async def commit_input(self) -> None: ...

    async def request_response(self, *, instructions: str | None = None) -> None: ...


class TimerLoop(Protocol):
    """The part of an event loop the segmenter needs (asyncio loops satisfy it)."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Any: ...


@dataclass(frozen=True, slots=True)
class SegmenterConfig:
    debounce_seconds: float = 0.7
    min_turn_bytes: int = 2000


class TurnSegmenter:
    """Decides caller turn boundaries from frame arrival timing alone.

    Every inbound frame extends the open accumulation window and re-arms the
    debounce timer. When the timer expires the window becomes a caller turn
    (if it is long enough) and the engine is asked to commit its input buffer
    and respond. Windows shorter than `min_turn_bytes` stay open and are
    counted in the next turn.

    `response_in_flight` is the single-flight flag: it is set before a
    response is requested and cleared only by a terminal engine event or a
    failed send. A debounce expiry while a response is in flight is deferred
    until that response finishes.
    """

    def __init__(
        self,
        config: SegmenterConfig | None = None,
        *,
        commands: EngineCommands | None = None,
        loop: TimerLoop | None = None,
        on_caller_turn: Callable[[Turn], None] | None = None,
        on_agent_turn_closed: Callable[[Turn], None] | None = None,
    ) -> None:
        self.config = config or SegmenterConfig()
        self.commands = commands
        self._loop = loop
        self._on_caller_turn = on_caller_turn
        self._on_agent_turn_closed = on_agent_turn_closed

        self.state = SegmenterState.IDLE
        self.response_in_flight = False
        self._response_idle = asyncio.Event()
        self._response_idle.set()

        self._turns: list[Turn] = []
        self._next_ordinal = 0
        self._open_agent_turn: Turn | None = None

        self._window_start = 0
        self._window_end = 0
        self._timer: Any = None
        self._flush_task: asyncio.Future | None = None
        self._deferred = False

    @property
    def turns(self) -> list[Turn]:
        return sorted(self._turns, key=lambda turn: turn.ordinal)

    @property
    def caller_turns(self) -> list[Turn]:
        return [turn for turn in self.turns if turn.speaker == "caller"]

    @property
    def pending_bytes(self) -> int:
        return self._window_end - self._window_start

    @property
    def open_agent_turn(self) -> Turn | None:
        return self._open_agent_turn

    @property
    def closed(self) -> bool:
        return self.state is SegmenterState.CLOSED

    # Caller audio

    def on_audio(self, nbytes: int) -> None:
        if self.closed or nbytes <= 0:
            return
        self._window_end += nbytes
        if self.state is SegmenterState.IDLE:
            self.state = SegmenterState.ACCUMULATING
        self._arm_timer()

    def _arm_timer(self) -> None:
        self._cancel_timer()
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(self.config.debounce_seconds, self._on_silence)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_silence(self) -> None:
        self._timer = None
        if self.closed:
            return
        if self.response_in_flight or self._flushing:
            self._deferred = True
            return
        self._flush_task = asyncio.ensure_future(self.end_caller_turn())

    @property
    def _flushing(self) -> bool:
        return self._flush_task is not None and not self._flush_task.done()

    async def end_caller_turn(self) -> Turn | None:
        """Turn the open window into a caller turn and request an agent response."""

        start, end = self._window_start, self._window_end
        if end - start < self.config.min_turn_bytes:
            LOGGER.debug("Ignoring %d-byte burst below turn threshold", end - start)
            if self.state is SegmenterState.ACCUMULATING:
                self.state = SegmenterState.IDLE
            return None

        # The ordinal is reserved before suspending so that an agent turn opened
        # while the commands are in transit still sorts after this turn.
        turn = Turn(speaker="caller", ordinal=self._reserve_ordinal(), start=start, end=end)
        self.state = SegmenterState.COMMITTING

        if self.commands is not None:
            self._set_in_flight(True)
            try:
                await self.commands.commit_input()
                await self.commands.request_response()
            except Exception:
                LOGGER.exception("Commit/response request failed; turn left open for retry")
                self._set_in_flight(False)
                if not self.closed:
                    self.state = SegmenterState.IDLE
                return None

        if self.closed:
            return None

        self._window_start = end
        self._turns.append(turn)
        LOGGER.info("Caller turn %d materialized (%d bytes)", turn.ordinal, turn.byte_count)

        if self.state is SegmenterState.COMMITTING:
            if self.response_in_flight:
                self.state = SegmenterState.AWAITING_RESPONSE
            else:
                self.state = SegmenterState.ACCUMULATING if self.pending_bytes else SegmenterState.IDLE

        if self._on_caller_turn is not None:
            self._on_caller_turn(turn)
        return turn

    # Agent responses

    async def request_opening(self, instructions: str) -> bool:
        """Ask the engine for the scripted opening line."""

        if self.closed or self.commands is None or self.response_in_flight:
            return False
        self._set_in_flight(True)
        self.state = SegmenterState.AWAITING_RESPONSE
        try:
            await self.commands.request_response(instructions=instructions)
        except Exception:
            LOGGER.exception("Opening response request failed")
            self._set_in_flight(False)
            if not self.closed:
                self.state = SegmenterState.IDLE
            return False
        return True

    def on_response_started(self) -> Turn | None:
        if self.closed:
            return None
        if self._open_agent_turn is not None:
            LOGGER.warning("Response started while turn %d still open; closing it", self._open_agent_turn.ordinal)
            self._close_agent_turn()

        caller_turn = None
        if not self.response_in_flight:
            caller_turn = self._take_engine_committed_window()

        turn = Turn(speaker="agent", ordinal=self._reserve_ordinal())
        self._turns.append(turn)
        self._open_agent_turn = turn
        self._set_in_flight(True)
        self.state = SegmenterState.AGENT_SPEAKING
        if caller_turn is not None and self._on_caller_turn is not None:
            self._on_caller_turn(caller_turn)
        return turn

    def _take_engine_committed_window(self) -> Turn | None:
        """Attribute the open window to the caller when the engine answers it unasked.

        The engine only responds on its own after committing its input buffer,
        so the speech it is answering is already committed and no second
        request is made for it.
        """

        start, end = self._window_start, self._window_end
        if end - start < self.config.min_turn_bytes:
            return None
        self._cancel_timer()
        self._deferred = False
        turn = Turn(speaker="caller", ordinal=self._reserve_ordinal(), start=start, end=end)
        self._window_start = end
        self._turns.append(turn)
        LOGGER.info("Caller turn %d closed by an engine-initiated response", turn.ordinal)
        return turn

    def append_agent_text(self, delta: str) -> None:
        if self.closed or not delta:
            return
        if self._open_agent_turn is None:
            self.on_response_started()
        if self._open_agent_turn is not None:
            self._open_agent_turn.parts.append(delta)

    def on_response_done(self, *, error: bool = False) -> None:
        if error:
            LOGGER.warning("Engine reported a failed response")
        if self._open_agent_turn is not None:
            self._close_agent_turn()
        self._set_in_flight(False)
        if self.closed:
            return

        self.state = SegmenterState.ACCUMULATING if self.pending_bytes else SegmenterState.IDLE
        if self._deferred:
            self._deferred = False
            if self._timer is None and self.pending_bytes:
                self._flush_task = asyncio.ensure_future(self.end_caller_turn())

    def on_engine_lost(self) -> None:
        """The engine connection is gone: continue segmenting without it."""

        self.commands = None
        self.on_response_done(error=True)

    def _close_agent_turn(self) -> None:
        turn = self._open_agent_turn
        if turn is None:
            return
        self._open_agent_turn = None
        turn.text = "".join(turn.parts).strip()
        if self._on_agent_turn_closed is not None:
            self._on_agent_turn_closed(turn)

    def _reserve_ordinal(self) -> int:
        ordinal = self._next_ordinal
        self._next_ordinal += 1
        return ordinal

    def _set_in_flight(self, value: bool) -> None:
        self.response_in_flight = value
        if value:
            self._response_idle.clear()
        else:
            self._response_idle.set()

    async def wait_for_response(self, timeout: float) -> bool:
        """Wait until no response is in flight; False on timeout."""

        if not self.response_in_flight:
            return True
        try:
            await asyncio.wait_for(self._response_idle.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # End of call

    async def finalize(self) -> Turn | None:
        """Stop segmenting: close the open agent turn and flush the partial caller turn."""

        if self.closed:
            return None
        self._cancel_timer()
        self._deferred = False

        if self._flushing:
            try:
                await self._flush_task
            except Exception:
                LOGGER.exception("Pending turn flush failed during finalize")

        if self._open_agent_turn is not None:
            self._close_agent_turn()

        turn: Turn | None = None
        start, end = self._window_start, self._window_end
        if end - start >= self.config.min_turn_bytes:
            turn = Turn(speaker="caller", ordinal=self._reserve_ordinal(), start=start, end=end)
            if self.commands is not None:
                try:
                    await self.commands.commit_input()
                except Exception:
                    LOGGER.exception("Final input commit failed")
            self._window_start = end
            self._turns.append(turn)
            LOGGER.info("Final caller turn %d materialized (%d bytes)", turn.ordinal, turn.byte_count)

        self.state = SegmenterState.CLOSED
        self.commands = None
        self._set_in_flight(False)

        if turn is not None and self._on_caller_turn is not None:
            self._on_caller_turn(turn)
        return turn
