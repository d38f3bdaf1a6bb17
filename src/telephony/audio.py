from __future__ import annotations

import wave
from io import BytesIO

import numpy as np

from telephony.g711 import mulaw_to_pcm16

TELEPHONY_SAMPLE_RATE = 8000
WAV_HEADER_BYTES = 44


def pcm16_resample(pcm: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    if src_rate == dst_rate:
        return pcm
    if pcm.size == 0:
        return pcm.astype(np.int16)

    x_old = np.arange(pcm.size, dtype=np.float32)
    x_new = np.linspace(0, pcm.size - 1, int(pcm.size * dst_rate / src_rate), dtype=np.float32)

    y_old = pcm.astype(np.float32)
    y_new = np.interp(x_new, x_old, y_old)

    return np.clip(y_new, -32768, 32767).astype(np.int16)


def pcm16_to_wav_bytes(pcm: np.ndarray, sample_rate: int, channels: int = 1) -> bytes:
    """Wrap PCM16 samples in a minimal RIFF/WAVE container (44-byte header).

    Multi-channel input is expected interleaved.
    """

    pcm_bytes = np.clip(np.asarray(pcm), -32768, 32767).astype("<i2").tobytes()
    buffer = BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm_bytes)
    return buffer.getvalue()


def mulaw_to_wav_bytes(ulaw_bytes: bytes, sample_rate: int = TELEPHONY_SAMPLE_RATE) -> bytes:
    """Telephony mu-law audio as an 8 kHz mono WAV file for batch transcription."""

    return pcm16_to_wav_bytes(mulaw_to_pcm16(ulaw_bytes), sample_rate)


def duration_to_bytes(milliseconds: float, sample_rate: int = TELEPHONY_SAMPLE_RATE) -> int:
    # mu-law is one byte per sample
    return int(sample_rate * milliseconds / 1000)
