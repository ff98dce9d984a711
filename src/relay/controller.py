"""Event loop glue between the telephony websocket, call sessions and the speech backend."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Coroutine
from typing import Any, Protocol

from fastapi import WebSocket, WebSocketDisconnect

from config.settings import Settings
from relay.backend import RealtimeBackendClient
from relay.errors import BackendConnectError, ConfigurationError, LinkClosedError, MalformedMessageError
from relay.links import TelephonyLink
from relay.messages import (
    BackendEventKind,
    TelephonyEventKind,
    parse_backend_event,
    parse_telephony_message,
)
from relay.profiles import AudioProfile, build_audio_profile
from relay.session import CallSession

LOGGER = logging.getLogger(__name__)


class BackendConnection(Protocol):
    async def connect(self) -> None: ...

    async def append_audio(self, audio: bytes) -> None: ...

    def events(self) -> AsyncIterator[str]: ...

    async def close(self) -> None: ...


BackendFactory = Callable[[], BackendConnection]


class RelayController:
    """Owns every live call on this process.

    ``sessions`` is the registry of active calls: a session is inserted when its
    telephony socket is accepted and removed by ``teardown``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        backend_factory: BackendFactory | None = None,
        profile: AudioProfile | None = None,
    ) -> None:
        self._settings = settings
        self._profile = profile or build_audio_profile(settings.audio_profile)
        self._backend_factory = backend_factory or (
            lambda: RealtimeBackendClient.from_settings(self._settings, self._profile)
        )
        self.sessions: dict[str, CallSession] = {}
        self._tasks: dict[str, list[asyncio.Task]] = {}

    def create_session(self, telephony: Any) -> CallSession:
        session = CallSession(
            uuid.uuid4().hex,
            telephony,
            profile=self._profile,
            max_pending_chunks=self._settings.pending_inbound_max_chunks,
            carry_frame_remainder=self._settings.frame_remainder_policy == "carry",
        )
        self.sessions[session.session_id] = session
        self._tasks[session.session_id] = []
        LOGGER.info("[%s] Telephony connected (%d active)", session.session_id, len(self.sessions))
        return session

    async def handle_telephony(self, websocket: WebSocket) -> None:
        """Serve one Twilio Media Streams websocket until either side ends the call."""

        await websocket.accept()
        session = self.create_session(TelephonyLink(websocket))
        self._spawn(session, self._keepalive(session), "keepalive")

        reason = "telephony closed"
        try:
            while not session.is_closed:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
                # Twilio only sends text frames; binary ones go through the malformed path.
                data = message.get("text")
                if data is None:
                    data = message.get("bytes") or b""
                await self.dispatch_telephony(session, data)
        except WebSocketDisconnect as exc:
            reason = f"telephony disconnected ({exc.code})"
        except LinkClosedError as exc:
            reason = f"link failure: {exc.detail}"
        finally:
            await self.teardown(session, reason)

    async def dispatch_telephony(self, session: CallSession, text: str | bytes) -> None:
        try:
            message = parse_telephony_message(text)
        except MalformedMessageError as exc:
            LOGGER.warning("[%s] Discarding malformed telephony message: %s", session.session_id, exc.detail)
            return

        kind = message.kind
        if kind is TelephonyEventKind.MEDIA:
            if message.track and message.track != "inbound":
                return
            await session.on_caller_audio(message.payload)
        elif kind is TelephonyEventKind.START:
            connect = await session.on_telephony_stream_start(
                message.stream_sid,
                call_sid=message.call_sid,
                media_format=message.media_format,
            )
            if connect:
                self._spawn(session, self._run_backend(session), "backend")
        elif kind is TelephonyEventKind.STOP:
            await self.teardown(session, "stream stopped")
        elif kind is TelephonyEventKind.CONNECTED:
            LOGGER.debug("[%s] Telephony handshake", session.session_id)
        elif kind is TelephonyEventKind.MARK:
            LOGGER.debug("[%s] Mark acknowledged: %s", session.session_id, message.name)
        elif kind is TelephonyEventKind.DTMF:
            LOGGER.info("[%s] DTMF digit %s", session.session_id, message.name)
        else:
            LOGGER.info("[%s] Ignoring unrecognized telephony event %r", session.session_id, message.event)

    async def dispatch_backend(self, session: CallSession, text: str) -> None:
        try:
            event = parse_backend_event(text)
        except MalformedMessageError as exc:
            LOGGER.warning("[%s] Discarding malformed backend message: %s", session.session_id, exc.detail)
            return

        kind = event.kind
        if kind is BackendEventKind.AUDIO_DELTA:
            await session.on_backend_audio(event.audio)
        elif kind is BackendEventKind.READY:
            await session.on_backend_ready()
        elif kind is BackendEventKind.SPEECH_STARTED:
            LOGGER.info("[%s] Caller started speaking", session.session_id)
            if self._settings.interrupt_on_speech_start:
                await session.clear_playback()
        elif kind in (BackendEventKind.SPEECH_STOPPED, BackendEventKind.BUFFER_COMMITTED):
            LOGGER.debug("[%s] %s", session.session_id, event.type)
        elif kind is BackendEventKind.CALLER_TRANSCRIPT:
            LOGGER.info("[%s] Caller said: %s", session.session_id, event.text)
        elif kind is BackendEventKind.ASSISTANT_TRANSCRIPT:
            LOGGER.info("[%s] Assistant said: %s", session.session_id, event.text)
        elif kind is BackendEventKind.ERROR:
            # Advisory; the call only ends if the backend socket itself closes.
            LOGGER.error("[%s] Backend error: %s", session.session_id, event.error)
        else:
            LOGGER.debug("[%s] Ignoring backend event %s", session.session_id, event.type)

    async def _connect_backend(self, session: CallSession) -> BackendConnection | None:
        attempts = self._settings.backend_connect_attempts
        for attempt in range(1, attempts + 1):
            backend = self._backend_factory()
            try:
                await backend.connect()
                return backend
            except BackendConnectError as exc:
                LOGGER.warning(
                    "[%s] Backend connection attempt %d/%d failed: %s", session.session_id, attempt, attempts, exc.detail
                )
                await backend.close()
                if session.is_closed:
                    return None
            except BaseException:
                # Cancelled or crashed mid-handshake: the socket may already be open.
                await backend.close()
                raise
        return None

    async def _run_backend(self, session: CallSession) -> None:
        try:
            backend = await self._connect_backend(session)
        except ConfigurationError as exc:
            LOGGER.error("[%s] Cannot connect backend: %s", session.session_id, exc.detail)
            backend = None
        except Exception:
            LOGGER.exception("[%s] Backend connection crashed", session.session_id)
            backend = None
        if backend is None:
            await self.teardown(session, "backend unavailable")
            return
        if not session.attach_backend(backend):
            await backend.close()
            return

        reason = "backend closed"
        try:
            async for text in backend.events():
                if session.is_closed:
                    return
                await self.dispatch_backend(session, text)
        except LinkClosedError as exc:
            reason = f"link failure: {exc.detail}"
        except Exception:
            LOGGER.exception("[%s] Backend relay loop crashed", session.session_id)
            reason = "backend relay error"
        await self.teardown(session, reason)

    async def _keepalive(self, session: CallSession) -> None:
        interval = self._settings.keepalive_interval_seconds
        while not session.is_closed:
            await asyncio.sleep(interval)
            try:
                await session.send_keepalive()
            except LinkClosedError as exc:
                await self.teardown(session, f"keep-alive failed: {exc.detail}")
                return

    def _spawn(self, session: CallSession, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=f"{name}:{session.session_id}")
        task.add_done_callback(self._log_task_failure)
        self._tasks.setdefault(session.session_id, []).append(task)

    @staticmethod
    def _log_task_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Task %s crashed", task.get_name(), exc_info=exc)

    async def teardown(self, session: CallSession, reason: str) -> None:
        """End a call: unregister it, stop its background tasks, close both links."""

        if self.sessions.pop(session.session_id, None) is None:
            return

        current = asyncio.current_task()
        tasks = [t for t in self._tasks.pop(session.session_id, []) if t is not current and not t.done()]
        for task in tasks:
            task.cancel()

        await session.close(reason)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        for session in list(self.sessions.values()):
            await self.teardown(session, "server shutting down")

    def snapshot(self) -> list[dict[str, Any]]:
        return [
            {
                "session_id": s.session_id,
                "stream_sid": s.stream_sid,
                "call_sid": s.call_sid,
                "state": s.state.value,
                "backend_ready": s.backend_ready,
                "started_at": s.started_at,
                "last_activity": s.last_activity,
                "pending_chunks": s.pending_chunks,
                "chunks_forwarded": s.chunks_forwarded,
                "frames_sent": s.frames_sent,
                "dropped_inbound_chunks": s.dropped_inbound_chunks,
            }
            for s in self.sessions.values()
        ]
