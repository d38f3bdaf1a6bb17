"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    active_calls: int = 0


class GroupMeMessage(BaseModel):
    """Subset of the GroupMe bot callback payload."""

    text: str = ""
    sender_type: str = ""
    name: str | None = None


class WebhookResponse(BaseModel):
    status: str = "ok"
    action: str = Field(description="What the command did: call, hangup, usage, invalid_number, failed, ignored.")
    call_sid: str | None = None


class TranscriptLineResponse(BaseModel):
    speaker: str
    text: str


class CallTranscriptResponse(BaseModel):
    call_key: str
    prompt: str
    transcript_source: str
    summary: str | None
    started_at: datetime
    ended_at: datetime | None
    lines: list[TranscriptLineResponse]
