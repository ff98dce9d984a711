"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "You are a friendly and professional receptionist answering the phone. "
    "Keep your answers short and natural, ask one question at a time and "
    "confirm important details back to the caller."
)


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Speech backend (OpenAI Realtime)
    openai_api_key: str | None = Field(default=None, description="Required; the service refuses to start without it.")
    openai_realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    openai_realtime_model: str = Field(default="gpt-4o-realtime-preview")
    openai_voice: str = Field(default="alloy")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT)
    input_transcription_model: str | None = Field(
        default="whisper-1",
        description="Model used by the backend to transcribe caller audio for logs. Empty disables it.",
    )

    # Server-side turn detection
    vad_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    vad_prefix_padding_ms: int = Field(default=300, ge=0)
    vad_silence_duration_ms: int = Field(default=500, ge=0)

    # Audio pipeline
    audio_profile: Literal["pcm16", "g711_ulaw"] = Field(
        default="pcm16",
        description="pcm16 transcodes to 16 kHz linear PCM; g711_ulaw passes mu-law through untouched.",
    )
    frame_remainder_policy: Literal["drop", "carry"] = Field(
        default="drop",
        description="What to do with the partial 20 ms frame at the end of each backend audio chunk.",
    )
    pending_inbound_max_chunks: int = Field(
        default=500,
        ge=1,
        description="Caller audio chunks buffered while the backend is not ready yet.",
    )
    interrupt_on_speech_start: bool = Field(
        default=True,
        description="Clear queued playback on the phone when the caller starts speaking.",
    )

    # Link management
    keepalive_interval_seconds: float = Field(default=20.0, gt=0)
    backend_connect_attempts: int = Field(default=2, ge=1, le=2)
    backend_connect_timeout_seconds: float = Field(default=10.0, gt=0)

    # HTTP server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5050)
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for Twilio (e.g. https://<ngrok>.ngrok-free.app).",
    )

    # Twilio (Voice)
    twilio_greeting: str | None = Field(default=None, description="Optional <Say> played before the stream connects.")
    twilio_say_voice: str = Field(default="Polly.Joanna")
    twilio_say_language: str = Field(default="en-US")
    twilio_error_message: str = Field(default="Sorry, we are having technical difficulties. Please try again later.")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
