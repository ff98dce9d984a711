"""Per-call state and the audio pipeline between the two links."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from enum import Enum
from typing import Any, Protocol

from relay.messages import clear_message, mark_message, media_message
from relay.profiles import AudioProfile
from telephony.framing import FRAME_MS, TELEPHONY_SAMPLE_RATE, FrameSplitter, frame_size

LOGGER = logging.getLogger(__name__)

KEEPALIVE_MARK = "keepalive"


class SessionState(str, Enum):
    AWAITING_START = "awaiting_start"
    BACKEND_CONNECTING = "backend_connecting"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


class TelephonyChannel(Protocol):
    async def send_json(self, message: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class BackendChannel(Protocol):
    async def append_audio(self, audio: bytes) -> None: ...

    async def close(self) -> None: ...


class CallSession:
    """Everything that belongs to one phone call.

    Handlers are serialized by a per-session lock, so the telephony reader and
    the backend reader never interleave their effects on the stream id, the
    readiness flag or the pending queue. ``close`` does not take the lock; the
    handlers re-check ``is_closed`` after every await instead.
    """

    def __init__(
        self,
        session_id: str,
        telephony: TelephonyChannel,
        *,
        profile: AudioProfile,
        max_pending_chunks: int = 500,
        carry_frame_remainder: bool = False,
    ) -> None:
        self.session_id = session_id
        self.telephony = telephony
        self.backend: BackendChannel | None = None
        self.profile = profile

        self.state = SessionState.AWAITING_START
        self.stream_sid: str | None = None
        self.call_sid: str | None = None
        self.media_format: dict[str, Any] = {}
        self.backend_ready = False
        self.close_reason: str | None = None

        self.started_at = time.time()
        self.last_activity = self.started_at
        self.chunks_forwarded = 0
        self.frames_sent = 0
        self.dropped_inbound_chunks = 0
        self.dropped_outbound_chunks = 0

        self._pending: deque[bytes] | None = deque()
        self._max_pending = max_pending_chunks
        self._framer = FrameSplitter(
            frame_size(FRAME_MS, TELEPHONY_SAMPLE_RATE, sample_width=1),
            carry_remainder=carry_frame_remainder,
        )
        self._lock = asyncio.Lock()

    @property
    def is_closed(self) -> bool:
        return self.state in (SessionState.CLOSING, SessionState.CLOSED)

    @property
    def pending_chunks(self) -> int:
        return len(self._pending) if self._pending is not None else 0

    def _touch(self) -> None:
        self.last_activity = time.time()

    async def on_telephony_stream_start(
        self,
        stream_sid: str,
        *,
        call_sid: str | None = None,
        media_format: dict[str, Any] | None = None,
    ) -> bool:
        """Record the stream id.

        Returns True when the caller has to establish the backend link now.
        """

        async with self._lock:
            if self.is_closed:
                return False
            if self.stream_sid is not None:
                LOGGER.warning(
                    "[%s] Ignoring duplicate start (stream=%s, already %s)", self.session_id, stream_sid, self.stream_sid
                )
                return False

            self.stream_sid = stream_sid
            self.call_sid = call_sid
            self.media_format = dict(media_format or {})
            self._touch()
            LOGGER.info("[%s] Stream started stream=%s call=%s", self.session_id, stream_sid, call_sid)

            encoding = self.media_format.get("encoding")
            if encoding and encoding != "audio/x-mulaw":
                LOGGER.warning("[%s] Unexpected telephony media format %s", self.session_id, self.media_format)

            if self.backend is None and self.state is SessionState.AWAITING_START:
                self.state = SessionState.BACKEND_CONNECTING
                return True
            return False

    def attach_backend(self, backend: BackendChannel) -> bool:
        """Hand over an established backend link. False if the call already ended."""

        if self.is_closed:
            return False
        self.backend = backend
        return True

    async def on_caller_audio(self, ulaw: bytes) -> None:
        async with self._lock:
            if self.is_closed:
                return
            audio = self.profile.decode_inbound(ulaw)
            if not audio:
                return

            if self.backend_ready and self.backend is not None:
                await self.backend.append_audio(audio)
                self.chunks_forwarded += 1
            else:
                self._enqueue(audio)
            self._touch()

    def _enqueue(self, audio: bytes) -> None:
        if self._pending is None:
            # Readiness retired the queue; nothing can legitimately land here.
            LOGGER.warning("[%s] Dropping caller audio after queue retirement", self.session_id)
            self.dropped_inbound_chunks += 1
            return
        if len(self._pending) >= self._max_pending:
            self._pending.popleft()
            self.dropped_inbound_chunks += 1
            LOGGER.warning(
                "[%s] Pending caller audio full (%d chunks); dropped oldest (%d dropped so far)",
                self.session_id,
                self._max_pending,
                self.dropped_inbound_chunks,
            )
        self._pending.append(audio)

    async def on_backend_ready(self) -> None:
        async with self._lock:
            if self.is_closed or self.backend_ready:
                return
            if self.backend is None:
                LOGGER.warning("[%s] Backend readiness without a backend link", self.session_id)
                return

            self.backend_ready = True
            self.state = SessionState.STREAMING
            pending, self._pending = self._pending or deque(), None
            self._touch()

            LOGGER.info("[%s] Backend ready; flushing %d buffered chunks", self.session_id, len(pending))
            while pending:
                if self.is_closed:
                    return
                await self.backend.append_audio(pending.popleft())
                self.chunks_forwarded += 1

    async def on_backend_audio(self, audio: bytes) -> None:
        async with self._lock:
            if self.is_closed:
                return
            if self.stream_sid is None:
                self.dropped_outbound_chunks += 1
                LOGGER.warning("[%s] Backend audio before stream start; dropping %d bytes", self.session_id, len(audio))
                return

            ulaw = self.profile.encode_outbound(audio)
            for frame in self._framer.split(ulaw):
                if self.is_closed:
                    return
                await self.telephony.send_json(media_message(self.stream_sid, frame))
                self.frames_sent += 1
            self._touch()

    async def clear_playback(self) -> None:
        async with self._lock:
            if self.is_closed or self.stream_sid is None:
                return
            self._framer.reset()
            await self.telephony.send_json(clear_message(self.stream_sid))

    async def send_keepalive(self) -> None:
        async with self._lock:
            if self.is_closed or self.stream_sid is None:
                return
            await self.telephony.send_json(mark_message(self.stream_sid, KEEPALIVE_MARK))

    async def close(self, reason: str = "closed") -> None:
        """Close both links and drop buffered audio. Safe to call repeatedly."""

        if self.is_closed:
            return
        self.state = SessionState.CLOSING
        self.close_reason = reason
        self._pending = None
        self._framer.reset()
        LOGGER.info("[%s] Closing session: %s", self.session_id, reason)

        for link in (self.backend, self.telephony):
            if link is None:
                continue
            try:
                await link.close()
            except Exception:
                LOGGER.exception("[%s] Error while closing %s", self.session_id, type(link).__name__)

        self.state = SessionState.CLOSED
        LOGGER.info(
            "[%s] Session closed after %.1fs (forwarded=%d frames=%d dropped_in=%d)",
            self.session_id,
            time.time() - self.started_at,
            self.chunks_forwarded,
            self.frames_sent,
            self.dropped_inbound_chunks,
        )
