from __future__ import annotations

import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosed

import relay.backend as backend_module
from config.settings import Settings
from relay.backend import RealtimeBackendClient, build_session_config
from relay.errors import BackendConnectError, ConfigurationError
from relay.profiles import Pcm16Profile, UlawPassthroughProfile


class StubSocket:
    def __init__(self, *, fail_send: bool = False) -> None:
        self.fail_send = fail_send
        self.sent: list[dict] = []
        self.close_calls = 0

    async def send(self, data: str) -> None:
        if self.fail_send:
            raise ConnectionClosed(None, None)
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.close_calls += 1


def _client() -> RealtimeBackendClient:
    return RealtimeBackendClient(
        url="wss://realtime.example.com/v1/realtime",
        api_key="sk-test",
        model="gpt-4o-realtime-preview",
        session_config={"voice": "alloy"},
    )


def _serve(monkeypatch, socket: StubSocket) -> dict:
    seen: dict = {}

    async def fake_connect(url, **kwargs):
        seen["url"] = url
        seen.update(kwargs)
        return socket

    monkeypatch.setattr(backend_module.websockets, "connect", fake_connect)
    return seen


def test_connect_sends_session_update(monkeypatch):
    socket = StubSocket()
    seen = _serve(monkeypatch, socket)
    client = _client()

    asyncio.run(client.connect())

    assert seen["url"] == "wss://realtime.example.com/v1/realtime?model=gpt-4o-realtime-preview"
    assert seen["additional_headers"]["Authorization"] == "Bearer sk-test"
    assert socket.sent == [{"type": "session.update", "session": {"voice": "alloy"}}]


def test_connect_closes_socket_when_configuration_fails(monkeypatch):
    socket = StubSocket(fail_send=True)
    _serve(monkeypatch, socket)
    client = _client()

    with pytest.raises(BackendConnectError):
        asyncio.run(client.connect())

    assert socket.close_calls == 1
    assert client.closed


def test_close_is_idempotent(monkeypatch):
    socket = StubSocket()
    _serve(monkeypatch, socket)
    client = _client()

    async def scenario():
        await client.connect()
        await client.close()
        await client.close()

    asyncio.run(scenario())
    assert socket.close_calls == 1


def test_from_settings_requires_api_key():
    with pytest.raises(ConfigurationError):
        RealtimeBackendClient.from_settings(Settings(openai_api_key=None), Pcm16Profile())


def test_session_config_follows_profile_and_vad_settings():
    settings = Settings(openai_api_key="sk-test", vad_silence_duration_ms=700, input_transcription_model="")

    config = build_session_config(settings, UlawPassthroughProfile())

    assert config["input_audio_format"] == "g711_ulaw"
    assert config["output_audio_format"] == "g711_ulaw"
    assert config["turn_detection"]["type"] == "server_vad"
    assert config["turn_detection"]["silence_duration_ms"] == 700
    assert "input_audio_transcription" not in config
