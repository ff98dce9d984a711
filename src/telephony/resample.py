"""Fixed-ratio PCM16 rate conversion between the 8 kHz phone leg and the 16 kHz model leg.

These are deliberately not general resamplers: no filtering and no fractional
ratios, only the 2:1 relationship the two links use.
"""

from __future__ import annotations

from typing import Literal

import numpy as np

DownsampleMode = Literal["average", "decimate"]


def pcm16_from_bytes(pcm_bytes: bytes) -> np.ndarray:
    """View little-endian PCM16 bytes as int16 samples (a trailing odd byte is ignored)."""

    usable = len(pcm_bytes) - (len(pcm_bytes) % 2)
    return np.frombuffer(pcm_bytes[:usable], dtype="<i2").astype(np.int16)


def pcm16_to_bytes(pcm: np.ndarray) -> bytes:
    return pcm.astype("<i2").tobytes()


def upsample_8k_to_16k(pcm: np.ndarray) -> np.ndarray:
    """Double the sample count by repeating every sample once (zero-order hold)."""

    return np.repeat(pcm.astype(np.int16), 2)


def downsample_16k_to_8k(pcm: np.ndarray, *, mode: DownsampleMode = "average") -> np.ndarray:
    """Halve the sample count.

    ``average`` (default) replaces each adjacent pair with its mean, which
    attenuates content above the new Nyquist rate a little; ``decimate`` keeps
    the first sample of each pair. A trailing unpaired sample is dropped, so the
    output always holds ``len(pcm) // 2`` samples.
    """

    pairs = pcm[: pcm.size - (pcm.size % 2)].astype(np.int32).reshape(-1, 2)
    if mode == "decimate":
        return pairs[:, 0].astype(np.int16)
    if mode == "average":
        return ((pairs[:, 0] + pairs[:, 1]) // 2).astype(np.int16)
    raise ValueError(f"Unsupported downsample mode: {mode}")
