from __future__ import annotations

import numpy as np

MULAW_BIAS = 0x84
MULAW_CLIP = 32635


def decode_mulaw(ulaw: int) -> int:
    """Decode a single G.711 mu-law byte to a linear PCM16 sample."""

    u = ~ulaw & 0xFF
    sign = u & 0x80
    exponent = (u >> 4) & 0x07
    mantissa = u & 0x0F

    magnitude = (((mantissa << 3) + MULAW_BIAS) << exponent) - MULAW_BIAS
    return -magnitude if sign else magnitude


def encode_mulaw(sample: int) -> int:
    """Encode a linear sample to a G.711 mu-law byte.

    Samples outside the int16 range are clamped first.
    """

    sample = max(-32768, min(32767, int(sample)))
    sign = 0x80 if sample < 0 else 0
    magnitude = min(abs(sample), MULAW_CLIP) + MULAW_BIAS

    exponent = 7
    while exponent > 0 and not magnitude & (0x4000 >> (7 - exponent)):
        exponent -= 1
    mantissa = (magnitude >> (exponent + 3)) & 0x0F

    return ~(sign | (exponent << 4) | mantissa) & 0xFF


# Decoding is a pure function of the byte, so a table covers the whole domain.
_DECODE_TABLE = np.array([decode_mulaw(b) for b in range(256)], dtype=np.int16)


def mulaw_to_pcm16(ulaw_bytes: bytes) -> np.ndarray:
    """Decode G.711 mu-law bytes to a PCM16 int16 array."""

    data = np.frombuffer(ulaw_bytes, dtype=np.uint8)
    return _DECODE_TABLE[data]


def pcm16_to_mulaw(pcm16: np.ndarray) -> bytes:
    """Encode linear samples to G.711 mu-law bytes.

    Vectorized; each output byte depends only on its input sample.
    """

    pcm16 = np.asarray(pcm16)
    if pcm16.size == 0:
        return b""

    x = np.clip(pcm16.astype(np.int64), -32768, 32767)
    sign = (x < 0).astype(np.int64) << 7
    x = np.minimum(np.abs(x), MULAW_CLIP) + MULAW_BIAS

    # Segment = position of the highest set bit above bit 7.
    exponent = np.zeros_like(x)
    for exp in range(8):
        exponent = np.where(x >= (1 << (exp + 7)), exp, exponent)

    mantissa = (x >> (exponent + 3)) & 0x0F

    ulaw = np.bitwise_not(sign | (exponent << 4) | mantissa) & 0xFF
    return ulaw.astype(np.uint8).tobytes()
