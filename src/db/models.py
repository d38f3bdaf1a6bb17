"""SQLAlchemy models for call transcripts."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base


class CallRecord(Base):
    """One relayed call."""

    __tablename__ = "calls"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    call_key: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    stream_sid: Mapped[str | None] = mapped_column(String(64))
    prompt: Mapped[str] = mapped_column(Text(), default="")
    transcript_source: Mapped[str] = mapped_column(String(16), default="post_call")
    summary: Mapped[str | None] = mapped_column(Text())
    started_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(timezone.utc))
    ended_at: Mapped[datetime | None] = mapped_column()

    lines: Mapped[list[TranscriptLine]] = relationship(
        back_populates="call",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TranscriptLine.position",
    )


class TranscriptLine(Base):
    """A single speaker-labelled line of the final transcript."""

    __tablename__ = "transcript_lines"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    call_id: Mapped[int] = mapped_column(ForeignKey("calls.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column()
    speaker: Mapped[str] = mapped_column(String(16))
    text: Mapped[str] = mapped_column(Text())

    call: Mapped[CallRecord] = relationship(back_populates="lines")
