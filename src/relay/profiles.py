"""Audio format strategies for the two legs of a call.

The phone leg always speaks 8 kHz mu-law. What the speech backend speaks
depends on deployment, so the session delegates both conversions to a profile
instead of branching on formats itself.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from telephony.g711 import ulaw_decode, ulaw_encode
from telephony.resample import (
    DownsampleMode,
    downsample_16k_to_8k,
    pcm16_from_bytes,
    pcm16_to_bytes,
    upsample_8k_to_16k,
)


class AudioProfile(ABC):
    """Converts caller audio for the backend and backend audio for the caller."""

    name: str
    backend_input_format: str
    backend_output_format: str

    @abstractmethod
    def decode_inbound(self, ulaw: bytes) -> bytes:
        """Telephony mu-law -> backend input format."""

    @abstractmethod
    def encode_outbound(self, audio: bytes) -> bytes:
        """Backend output format -> telephony mu-law."""


class Pcm16Profile(AudioProfile):
    """mu-law 8 kHz on the phone, PCM16 16 kHz on the backend.

    OpenAI Realtime's own ``pcm16`` runs at 24 kHz; use the passthrough
    profile against that endpoint.
    """

    name = "pcm16"
    backend_input_format = "pcm16"
    backend_output_format = "pcm16"

    def __init__(self, *, downsample_mode: DownsampleMode = "average") -> None:
        self._downsample_mode = downsample_mode

    def decode_inbound(self, ulaw: bytes) -> bytes:
        if not ulaw:
            return b""
        return pcm16_to_bytes(upsample_8k_to_16k(ulaw_decode(ulaw)))

    def encode_outbound(self, audio: bytes) -> bytes:
        pcm16k = pcm16_from_bytes(audio)
        if not pcm16k.size:
            return b""
        return ulaw_encode(downsample_16k_to_8k(pcm16k, mode=self._downsample_mode))


class UlawPassthroughProfile(AudioProfile):
    """Both ends agree on 8 kHz mu-law; audio is relayed untouched."""

    name = "g711_ulaw"
    backend_input_format = "g711_ulaw"
    backend_output_format = "g711_ulaw"

    def decode_inbound(self, ulaw: bytes) -> bytes:
        return ulaw

    def encode_outbound(self, audio: bytes) -> bytes:
        return audio


def build_audio_profile(name: str) -> AudioProfile:
    """Factory returning the configured audio profile."""

    if name == "pcm16":
        return Pcm16Profile()
    if name == "g711_ulaw":
        return UlawPassthroughProfile()
    raise ValueError(f"Unsupported audio profile: {name}")
