"""Wire messages exchanged with Twilio Media Streams and the OpenAI Realtime API."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from relay.errors import MalformedMessageError


class TelephonyEventKind(str, Enum):
    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    STOP = "stop"
    MARK = "mark"
    DTMF = "dtmf"
    UNKNOWN = "unknown"


class BackendEventKind(str, Enum):
    SESSION_CREATED = "session_created"
    READY = "ready"
    AUDIO_DELTA = "audio_delta"
    SPEECH_STARTED = "speech_started"
    SPEECH_STOPPED = "speech_stopped"
    BUFFER_COMMITTED = "buffer_committed"
    CALLER_TRANSCRIPT = "caller_transcript"
    ASSISTANT_TRANSCRIPT = "assistant_transcript"
    RESPONSE_DONE = "response_done"
    ERROR = "error"
    UNKNOWN = "unknown"


_BACKEND_KINDS: dict[str, BackendEventKind] = {
    "session.created": BackendEventKind.SESSION_CREATED,
    "session.updated": BackendEventKind.READY,
    "response.audio.delta": BackendEventKind.AUDIO_DELTA,
    "response.output_audio.delta": BackendEventKind.AUDIO_DELTA,
    "input_audio_buffer.speech_started": BackendEventKind.SPEECH_STARTED,
    "input_audio_buffer.speech_stopped": BackendEventKind.SPEECH_STOPPED,
    "input_audio_buffer.committed": BackendEventKind.BUFFER_COMMITTED,
    "conversation.item.input_audio_transcription.completed": BackendEventKind.CALLER_TRANSCRIPT,
    "response.audio_transcript.done": BackendEventKind.ASSISTANT_TRANSCRIPT,
    "response.output_audio_transcript.done": BackendEventKind.ASSISTANT_TRANSCRIPT,
    "response.done": BackendEventKind.RESPONSE_DONE,
    "error": BackendEventKind.ERROR,
}


@dataclass(frozen=True, slots=True)
class TelephonyMessage:
    kind: TelephonyEventKind
    event: str
    stream_sid: str | None = None
    call_sid: str | None = None
    payload: bytes = b""
    track: str | None = None
    media_format: dict[str, Any] = field(default_factory=dict)
    custom_parameters: dict[str, Any] = field(default_factory=dict)
    name: str | None = None


@dataclass(frozen=True, slots=True)
class BackendEvent:
    kind: BackendEventKind
    type: str
    audio: bytes = b""
    text: str | None = None
    error: dict[str, Any] = field(default_factory=dict)


def _load_object(text: str | bytes) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedMessageError(f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedMessageError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _b64(value: Any, what: str) -> bytes:
    if not isinstance(value, str):
        raise MalformedMessageError(f"{what} is missing or not a string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedMessageError(f"{what} is not valid base64") from exc


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise MalformedMessageError(f"'{key}' must be an object")
    return value


def parse_telephony_message(text: str | bytes) -> TelephonyMessage:
    """Classify one Twilio Media Streams message.

    Raises:
        MalformedMessageError: if the message is not a JSON object with an
            ``event`` string, or a known event is missing required fields.
    """

    data = _load_object(text)
    event = data.get("event")
    if not isinstance(event, str) or not event:
        raise MalformedMessageError("missing 'event'")

    try:
        kind = TelephonyEventKind(event)
    except ValueError:
        kind = TelephonyEventKind.UNKNOWN
    stream_sid = data.get("streamSid")

    if kind is TelephonyEventKind.START:
        start = _section(data, "start")
        stream_sid = start.get("streamSid") or stream_sid
        if not isinstance(stream_sid, str) or not stream_sid:
            raise MalformedMessageError("start event without streamSid")
        custom = _section(start, "customParameters")
        return TelephonyMessage(
            kind=kind,
            event=event,
            stream_sid=stream_sid,
            call_sid=start.get("callSid") or custom.get("callSid"),
            media_format=_section(start, "mediaFormat"),
            custom_parameters=custom,
        )

    if kind is TelephonyEventKind.MEDIA:
        media = _section(data, "media")
        return TelephonyMessage(
            kind=kind,
            event=event,
            stream_sid=stream_sid,
            payload=_b64(media.get("payload"), "media.payload"),
            track=media.get("track"),
        )

    if kind is TelephonyEventKind.STOP:
        stop = _section(data, "stop")
        return TelephonyMessage(kind=kind, event=event, stream_sid=stream_sid, call_sid=stop.get("callSid"))

    if kind is TelephonyEventKind.MARK:
        return TelephonyMessage(kind=kind, event=event, stream_sid=stream_sid, name=_section(data, "mark").get("name"))

    if kind is TelephonyEventKind.DTMF:
        return TelephonyMessage(kind=kind, event=event, stream_sid=stream_sid, name=_section(data, "dtmf").get("digit"))

    return TelephonyMessage(kind=kind, event=event, stream_sid=stream_sid)


def parse_backend_event(text: str | bytes) -> BackendEvent:
    """Classify one OpenAI Realtime server event.

    Raises:
        MalformedMessageError: if the message is not a JSON object with a
            ``type`` string, or an audio delta carries no valid base64.
    """

    data = _load_object(text)
    event_type = data.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedMessageError("missing 'type'")

    kind = _BACKEND_KINDS.get(event_type, BackendEventKind.UNKNOWN)

    if kind is BackendEventKind.AUDIO_DELTA:
        return BackendEvent(kind=kind, type=event_type, audio=_b64(data.get("delta"), "delta"))
    if kind is BackendEventKind.ERROR:
        error = data.get("error")
        return BackendEvent(kind=kind, type=event_type, error=error if isinstance(error, dict) else {"message": error})
    if kind in (BackendEventKind.CALLER_TRANSCRIPT, BackendEventKind.ASSISTANT_TRANSCRIPT):
        return BackendEvent(kind=kind, type=event_type, text=str(data.get("transcript") or "").strip())

    return BackendEvent(kind=kind, type=event_type)


def media_message(stream_sid: str, ulaw_frame: bytes) -> dict[str, Any]:
    return {
        "event": "media",
        "streamSid": stream_sid,
        "media": {"payload": base64.b64encode(ulaw_frame).decode("ascii")},
    }


def mark_message(stream_sid: str, name: str) -> dict[str, Any]:
    return {"event": "mark", "streamSid": stream_sid, "mark": {"name": name}}


def clear_message(stream_sid: str) -> dict[str, Any]:
    return {"event": "clear", "streamSid": stream_sid}
