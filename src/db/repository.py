"""Repository utilities for persisting call transcripts."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import select

from calls.models import TranscriptEntry
from db.base import AsyncSessionFactory
from db.models import CallRecord, TranscriptLine


class CallRepository:
    """Async repository encapsulating storage operations."""

    async def save_transcript(
        self,
        call_key: str,
        *,
        stream_sid: str | None,
        prompt: str,
        entries: Sequence[TranscriptEntry],
        summary: str | None,
        source: str,
        started_at: datetime | None = None,
    ) -> CallRecord:
        """Store (or replace) the final transcript of a call."""

        async with AsyncSessionFactory() as session:
            result = await session.execute(select(CallRecord).where(CallRecord.call_key == call_key))
            record = result.scalar_one_or_none()
            if record is None:
                record = CallRecord(call_key=call_key)
                if started_at is not None:
                    record.started_at = started_at
                session.add(record)

            record.stream_sid = stream_sid
            record.prompt = prompt
            record.summary = summary
            record.transcript_source = source
            record.ended_at = datetime.now(timezone.utc)
            record.lines = [
                TranscriptLine(position=index, speaker=entry.speaker, text=entry.text)
                for index, entry in enumerate(entries)
            ]
            await session.commit()
            await session.refresh(record)
            return record

    async def get_call(self, call_key: str) -> CallRecord | None:
        async with AsyncSessionFactory() as session:
            result = await session.execute(select(CallRecord).where(CallRecord.call_key == call_key))
            return result.scalar_one_or_none()
