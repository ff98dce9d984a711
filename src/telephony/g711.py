"""G.711 mu-law companding for 8 kHz telephony audio.

Scalar conversions define the codec; the buffer forms used on the audio path
are table lookups built from them once at import time.
"""

from __future__ import annotations

from typing import Final

import numpy as np

BIAS: Final[int] = 0x84
CLIP: Final[int] = 32635

ULAW_SILENCE: Final[int] = 0xFF


def ulaw_to_linear(ulaw_byte: int) -> int:
    """Decode one mu-law byte to a 16-bit linear sample."""

    if not 0 <= ulaw_byte <= 0xFF:
        raise ValueError(f"mu-law byte out of range: {ulaw_byte}")

    u = ~ulaw_byte & 0xFF
    sign = u & 0x80
    exponent = (u >> 4) & 0x07
    mantissa = u & 0x0F

    magnitude = (((mantissa << 3) + BIAS) << exponent) - BIAS
    return -magnitude if sign else magnitude


def linear_to_ulaw(sample: int) -> int:
    """Encode one 16-bit linear sample to a mu-law byte."""

    if not -32768 <= sample <= 32767:
        raise ValueError(f"PCM16 sample out of range: {sample}")

    sign = 0x80 if sample < 0 else 0
    biased = min(abs(sample), CLIP) + BIAS

    # biased >= 0x84, so its top bit sits somewhere in bits 7..14.
    exponent = biased.bit_length() - 8
    mantissa = (biased >> (exponent + 3)) & 0x0F

    return ~(sign | (exponent << 4) | mantissa) & 0xFF


def _build_encode_table() -> np.ndarray:
    x = np.arange(-32768, 32768, dtype=np.int32)
    sign = np.where(x < 0, 0x80, 0).astype(np.int32)
    biased = np.minimum(np.abs(x), CLIP) + BIAS

    exponent = np.zeros_like(biased)
    for exp in range(1, 8):
        exponent = np.where(biased >= (1 << (exp + 7)), exp, exponent)

    mantissa = (biased >> (exponent + 3)) & 0x0F
    return (np.bitwise_not(sign | (exponent << 4) | mantissa) & 0xFF).astype(np.uint8)


_DECODE_TABLE: Final[np.ndarray] = np.array([ulaw_to_linear(b) for b in range(256)], dtype=np.int16)
_ENCODE_TABLE: Final[np.ndarray] = _build_encode_table()


def ulaw_decode(ulaw_bytes: bytes) -> np.ndarray:
    """Decode G.711 mu-law bytes to a PCM16 int16 array."""

    data = np.frombuffer(ulaw_bytes, dtype=np.uint8)
    return _DECODE_TABLE[data]


def ulaw_encode(pcm16: np.ndarray) -> bytes:
    """Encode a PCM16 int16 array to G.711 mu-law bytes."""

    if pcm16.size == 0:
        return b""

    index = pcm16.astype(np.int32) + 32768
    return _ENCODE_TABLE[index].tobytes()


def ulaw_step_bound(ulaw_byte: int) -> int:
    """Largest reconstruction error of a sample that encodes to ``ulaw_byte``."""

    exponent = ((~ulaw_byte & 0xFF) >> 4) & 0x07
    return 1 << (exponent + 2)
