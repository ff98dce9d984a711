"""Fixed-duration packetization of audio buffers."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Final

FRAME_MS: Final[int] = 20
TELEPHONY_SAMPLE_RATE: Final[int] = 8000


def frame_size(frame_ms: int = FRAME_MS, sample_rate: int = TELEPHONY_SAMPLE_RATE, sample_width: int = 2) -> int:
    """Bytes per frame, e.g. 320 for 20 ms of 8 kHz PCM16 or 160 for 20 ms of mu-law."""

    size = sample_rate * frame_ms // 1000 * sample_width
    if size <= 0:
        raise ValueError(f"Invalid frame geometry: {frame_ms}ms @ {sample_rate}Hz x{sample_width}")
    return size


def split_frames(
    buf: bytes,
    frame_ms: int = FRAME_MS,
    sample_rate: int = TELEPHONY_SAMPLE_RATE,
    sample_width: int = 2,
) -> Iterator[bytes]:
    """Yield full frames of ``buf`` in order; a short trailing remainder is dropped."""

    size = frame_size(frame_ms, sample_rate, sample_width)
    for start in range(0, len(buf) - size + 1, size):
        yield buf[start : start + size]


class FrameSplitter:
    """Stateful splitter used per call.

    With ``carry_remainder`` the bytes left over from one buffer are prepended to
    the next one instead of being dropped.
    """

    def __init__(self, frame_bytes: int, *, carry_remainder: bool = False) -> None:
        if frame_bytes <= 0:
            raise ValueError("frame_bytes must be positive")
        self.frame_bytes = frame_bytes
        self.carry_remainder = carry_remainder
        self._remainder = b""

    @property
    def pending(self) -> int:
        return len(self._remainder)

    def split(self, buf: bytes) -> list[bytes]:
        # Eager so the carried remainder is updated even if the caller stops early.
        data = self._remainder + buf if self._remainder else buf
        full = len(data) - (len(data) % self.frame_bytes)
        self._remainder = data[full:] if self.carry_remainder else b""

        return [data[start : start + self.frame_bytes] for start in range(0, full, self.frame_bytes)]

    def reset(self) -> None:
        self._remainder = b""
