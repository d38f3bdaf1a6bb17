"""In-memory call state: audio frames, turns and transcript entries."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

Speaker = Literal["caller", "agent"]

SPEAKER_LABELS: dict[str, str] = {"caller": "Caller", "agent": "Agent"}


class SessionState(str, Enum):
    STARTING = "starting"
    ACTIVE = "active"
    ENDING = "ending"
    CLOSED = "closed"


class SegmenterState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    COMMITTING = "committing"
    AWAITING_RESPONSE = "awaiting_response"
    AGENT_SPEAKING = "agent_speaking"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class AudioFrame:
    """Inbound mu-law audio positioned in the session's cumulative byte stream."""

    offset: int
    data: bytes

    @property
    def end(self) -> int:
        return self.offset + len(self.data)


@dataclass(slots=True)
class Turn:
    """One utterance by one speaker.

    Caller turns carry the byte range `[start, end)` of the audio attributed
    to them. Text stays None until something resolves it: engine deltas for
    agent turns, a per-turn transcription for caller turns.
    """

    speaker: Speaker
    ordinal: int
    start: int | None = None
    end: int | None = None
    text: str | None = None
    parts: list[str] = field(default_factory=list)

    @property
    def byte_count(self) -> int:
        if self.start is None or self.end is None:
            return 0
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    speaker: Speaker
    text: str
    ordinal: int
    position: int
    sequence: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def sort_key(self) -> tuple[int, int, int]:
        return (self.ordinal, self.position, self.sequence)

    def as_line(self) -> str:
        return f"{SPEAKER_LABELS[self.speaker]}: {self.text}"


def slice_frames(frames: Sequence[AudioFrame], start: int, end: int) -> bytes:
    """Concatenate the bytes of `frames` that fall inside `[start, end)`."""

    chunks: list[bytes] = []
    for frame in frames:
        if frame.end <= start:
            continue
        if frame.offset >= end:
            break
        lo = max(start, frame.offset) - frame.offset
        hi = min(end, frame.end) - frame.offset
        chunks.append(frame.data[lo:hi])
    return b"".join(chunks)
