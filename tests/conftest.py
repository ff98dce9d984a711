from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Settings are cached on first use, so the environment must be ready before any import.
os.environ.setdefault("OPENAI_API_KEY", "test-key")


class FakeTelephony:
    """Records what the relay would have sent to Twilio."""

    def __init__(self, *, fail_sends: bool = False) -> None:
        self.sent: list[dict] = []
        self.close_calls = 0
        self.fail_sends = fail_sends

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def send_json(self, message: dict) -> None:
        from relay.errors import LinkClosedError

        if self.fail_sends or self.closed:
            raise LinkClosedError("fake telephony closed")
        self.sent.append(message)

    async def close(self) -> None:
        self.close_calls += 1

    def media(self) -> list[dict]:
        return [m for m in self.sent if m["event"] == "media"]


class FakeBackend:
    """Scripted speech backend.

    ``events()`` yields the scripted raw messages, then whatever is ``push``-ed
    until closed, unless ``hang_up`` is set, in which case the stream just ends.
    ``events_after_close`` counts messages handed to the relay after ``close``.
    """

    def __init__(self, script: list[str] | None = None, *, fail_connect: bool = False, hang_up: bool = False) -> None:
        self.script = list(script or [])
        self.fail_connect = fail_connect
        self.hang_up = hang_up
        self.appended: list[bytes] = []
        self.connected = False
        self.close_calls = 0
        self.events_after_close = 0
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def connect(self) -> None:
        from relay.errors import BackendConnectError

        if self.fail_connect:
            raise BackendConnectError("refused")
        self.connected = True

    def push(self, *messages: str) -> None:
        for message in messages:
            self._inbox.put_nowait(message)

    async def append_audio(self, audio: bytes) -> None:
        self.appended.append(audio)

    async def events(self):
        for item in self.script:
            if self.closed:
                self.events_after_close += 1
            yield item
        if self.hang_up:
            return
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            if self.closed:
                self.events_after_close += 1
            yield item

    async def close(self) -> None:
        self.close_calls += 1
        self._inbox.put_nowait(None)


@pytest.fixture()
def fake_telephony() -> FakeTelephony:
    return FakeTelephony()


@pytest.fixture(scope="session")
def app():
    import importlib

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def relay_app(app):
    """The app wired to a controller whose calls reach ``FakeBackend`` instances."""

    import api.dependencies as deps
    from config.settings import get_settings
    from relay.controller import RelayController

    backends: list[FakeBackend] = []
    scripts: list[list[str]] = []

    def factory() -> FakeBackend:
        backend = FakeBackend(scripts.pop(0) if scripts else [])
        backends.append(backend)
        return backend

    controller = RelayController(get_settings(), backend_factory=factory)
    app.dependency_overrides[deps.get_relay_controller] = lambda: controller
    yield app, controller, backends, scripts
    app.dependency_overrides.clear()
