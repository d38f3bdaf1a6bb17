"""Batch speech-to-text over WAV audio (hosted Whisper API or local faster-whisper)."""

from __future__ import annotations

import asyncio
import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import numpy as np
import soundfile as sf
from openai import AsyncOpenAI

from calls.errors import TranscriptionFailedError
from config.settings import get_settings
from telephony.audio import pcm16_resample

LOGGER = logging.getLogger(__name__)

WHISPER_SAMPLE_RATE = 16000


@dataclass
class TranscriptionSegment:
    """Structured representation of a Whisper transcription segment."""

    start: float
    end: float
    text: str
    avg_logprob: float | None = None
    no_speech_prob: float | None = None


@dataclass
class TranscriptionResult:
    text: str
    segments: list[TranscriptionSegment] = field(default_factory=list)


class BaseTranscriber(ABC):
    """Interface for batch transcription services."""

    @abstractmethod
    async def transcribe(self, wav_bytes: bytes) -> TranscriptionResult:
        """Transcribe a complete WAV file."""


class OpenAITranscriber(BaseTranscriber):
    """Hosted transcription through the OpenAI audio API."""

    def __init__(self) -> None:
        settings = get_settings()
        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY must be configured for hosted transcription.")

        self._client = AsyncOpenAI(api_key=settings.openai_api_key)
        self._model = settings.transcription_model

    async def transcribe(self, wav_bytes: bytes) -> TranscriptionResult:
        # verbose_json (segment confidences) is only offered by whisper models.
        verbose = self._model.startswith("whisper")
        LOGGER.debug("Transcribing %d bytes with %s", len(wav_bytes), self._model)
        try:
            response = await self._client.audio.transcriptions.create(
                file=("call.wav", wav_bytes, "audio/wav"),
                model=self._model,
                response_format="verbose_json" if verbose else "json",
                temperature=0.0,
            )
        except Exception as exc:
            raise TranscriptionFailedError(f"Transcription request failed: {exc}") from exc

        segments = [
            TranscriptionSegment(
                start=float(seg.start),
                end=float(seg.end),
                text=seg.text,
                avg_logprob=getattr(seg, "avg_logprob", None),
                no_speech_prob=getattr(seg, "no_speech_prob", None),
            )
            for seg in (getattr(response, "segments", None) or [])
        ]
        return TranscriptionResult(text=response.text or "", segments=segments)


class WhisperTranscriber(BaseTranscriber):
    """Local transcription using faster-whisper."""

    def __init__(self) -> None:
        try:
            from faster_whisper import WhisperModel
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("faster-whisper is required for local transcription.") from exc

        settings = get_settings()
        self._model = WhisperModel(
            model_size_or_path=settings.whisper_model_size,
            device=settings.whisper_device,
            compute_type=settings.whisper_compute_type,
        )

    async def transcribe(self, wav_bytes: bytes) -> TranscriptionResult:
        try:
            return await asyncio.to_thread(self._transcribe_sync, wav_bytes)
        except Exception as exc:
            raise TranscriptionFailedError(f"Local transcription failed: {exc}") from exc

    def _transcribe_sync(self, wav_bytes: bytes) -> TranscriptionResult:
        with sf.SoundFile(io.BytesIO(wav_bytes), mode="r") as audio_file:
            pcm = audio_file.read(dtype="int16")
            sample_rate = int(audio_file.samplerate)

        if isinstance(pcm, np.ndarray) and pcm.ndim > 1:
            pcm = np.mean(pcm, axis=1).astype(np.int16)  # convert to mono

        # Whisper expects float32 at 16 kHz; telephony audio arrives at 8 kHz.
        pcm = pcm16_resample(pcm, sample_rate, WHISPER_SAMPLE_RATE)
        audio_array = pcm.astype(np.float32) / 32768.0

        segments, _info = self._model.transcribe(
            audio_array,
            beam_size=5,
            task="transcribe",
            condition_on_previous_text=False,
            temperature=0.0,
        )

        results = [
            TranscriptionSegment(
                start=segment.start,
                end=segment.end,
                text=segment.text.strip(),
                avg_logprob=segment.avg_logprob,
                no_speech_prob=segment.no_speech_prob,
            )
            for segment in segments
        ]
        return TranscriptionResult(text=" ".join(s.text for s in results).strip(), segments=results)


def build_transcriber() -> BaseTranscriber:
    """Factory returning the configured transcriber."""

    settings = get_settings()
    if settings.transcription_provider == "openai":
        return OpenAITranscriber()
    if settings.transcription_provider == "faster_whisper":
        return WhisperTranscriber()
    raise ValueError(f"Unsupported transcription provider: {settings.transcription_provider}")
