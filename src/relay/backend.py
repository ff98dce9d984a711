"""Client for the OpenAI Realtime websocket."""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, WebSocketException

from config.settings import Settings
from relay.errors import BackendConnectError, ConfigurationError, LinkClosedError
from relay.profiles import AudioProfile

LOGGER = logging.getLogger(__name__)


def build_session_config(settings: Settings, profile: AudioProfile) -> dict[str, Any]:
    """``session.update`` payload sent once right after the socket opens."""

    session: dict[str, Any] = {
        "modalities": ["text", "audio"],
        "instructions": settings.system_prompt,
        "voice": settings.openai_voice,
        "input_audio_format": profile.backend_input_format,
        "output_audio_format": profile.backend_output_format,
        "turn_detection": {
            "type": "server_vad",
            "threshold": settings.vad_threshold,
            "prefix_padding_ms": settings.vad_prefix_padding_ms,
            "silence_duration_ms": settings.vad_silence_duration_ms,
        },
    }
    if settings.input_transcription_model:
        session["input_audio_transcription"] = {"model": settings.input_transcription_model}
    return session


class RealtimeBackendClient:
    """One websocket to the speech backend, owned by a single call."""

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        model: str,
        session_config: dict[str, Any],
        open_timeout: float = 10.0,
    ) -> None:
        self._url = f"{url.rstrip('/')}?{urlencode({'model': model})}"
        self._api_key = api_key
        self._session_config = session_config
        self._open_timeout = open_timeout
        self._ws: ClientConnection | None = None
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings, profile: AudioProfile) -> RealtimeBackendClient:
        if not settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")
        return cls(
            url=settings.openai_realtime_url,
            api_key=settings.openai_api_key,
            model=settings.openai_realtime_model,
            session_config=build_session_config(settings, profile),
            open_timeout=settings.backend_connect_timeout_seconds,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    async def connect(self) -> None:
        """Open the socket and send the session configuration."""

        try:
            self._ws = await websockets.connect(
                self._url,
                additional_headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "OpenAI-Beta": "realtime=v1",
                },
                max_size=2**24,
                open_timeout=self._open_timeout,
                ping_interval=20,
                ping_timeout=20,
            )
        except (OSError, WebSocketException) as exc:
            raise BackendConnectError(f"backend connection failed: {exc!r}") from exc

        LOGGER.info("Connected to realtime backend")
        try:
            await self._send({"type": "session.update", "session": self._session_config})
        except LinkClosedError as exc:
            await self.close()
            raise BackendConnectError(f"backend closed during configuration: {exc.detail}") from exc
        except BaseException:
            await self.close()
            raise

    async def append_audio(self, audio: bytes) -> None:
        await self._send({"type": "input_audio_buffer.append", "audio": base64.b64encode(audio).decode("ascii")})

    async def events(self) -> AsyncIterator[str]:
        """Yield raw server events until the socket closes."""

        if self._ws is None:
            raise LinkClosedError("backend link is not connected")
        try:
            async for message in self._ws:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                yield message
        except ConnectionClosed as exc:
            LOGGER.info("Realtime backend closed the connection: %s", exc)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws is None:
            return
        try:
            await self._ws.close()
        except (OSError, WebSocketException) as exc:
            LOGGER.debug("Error while closing backend websocket: %r", exc)

    async def _send(self, message: dict[str, Any]) -> None:
        if self._ws is None or self._closed:
            raise LinkClosedError("backend link is closed")
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as exc:
            raise LinkClosedError(f"backend send failed: {exc!r}") from exc
