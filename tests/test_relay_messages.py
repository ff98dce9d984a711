from __future__ import annotations

import base64
import json

import pytest

from relay.errors import MalformedMessageError
from relay.messages import (
    BackendEventKind,
    TelephonyEventKind,
    clear_message,
    mark_message,
    media_message,
    parse_backend_event,
    parse_telephony_message,
)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def test_parse_start_event() -> None:
    msg = parse_telephony_message(
        json.dumps(
            {
                "event": "start",
                "sequenceNumber": "1",
                "start": {
                    "streamSid": "MZ1",
                    "callSid": "CA1",
                    "tracks": ["inbound"],
                    "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
                    "customParameters": {"callSid": "CA1"},
                },
                "streamSid": "MZ1",
            }
        )
    )
    assert msg.kind is TelephonyEventKind.START
    assert msg.stream_sid == "MZ1"
    assert msg.call_sid == "CA1"
    assert msg.media_format["sampleRate"] == 8000


def test_parse_start_falls_back_to_custom_call_sid() -> None:
    msg = parse_telephony_message(
        json.dumps({"event": "start", "start": {"streamSid": "MZ1", "customParameters": {"callSid": "CA9"}}})
    )
    assert msg.call_sid == "CA9"


def test_parse_media_event_decodes_payload() -> None:
    msg = parse_telephony_message(
        json.dumps({"event": "media", "streamSid": "MZ1", "media": {"track": "inbound", "payload": _b64(b"\xff" * 160)}})
    )
    assert msg.kind is TelephonyEventKind.MEDIA
    assert msg.payload == b"\xff" * 160
    assert msg.track == "inbound"


@pytest.mark.parametrize(
    ("raw", "kind"),
    [
        ({"event": "connected", "protocol": "Call", "version": "1.0.0"}, TelephonyEventKind.CONNECTED),
        ({"event": "stop", "streamSid": "MZ1", "stop": {"callSid": "CA1"}}, TelephonyEventKind.STOP),
        ({"event": "mark", "streamSid": "MZ1", "mark": {"name": "keepalive"}}, TelephonyEventKind.MARK),
        ({"event": "dtmf", "streamSid": "MZ1", "dtmf": {"digit": "5"}}, TelephonyEventKind.DTMF),
        ({"event": "something-new"}, TelephonyEventKind.UNKNOWN),
    ],
)
def test_parse_other_telephony_events(raw: dict, kind: TelephonyEventKind) -> None:
    msg = parse_telephony_message(json.dumps(raw))
    assert msg.kind is kind
    assert msg.event == raw["event"]


@pytest.mark.parametrize(
    "text",
    [
        "{not json",
        "[1, 2]",
        json.dumps({"no": "event"}),
        json.dumps({"event": "start", "start": {}}),
        json.dumps({"event": "media", "media": {}}),
        json.dumps({"event": "media", "media": {"payload": "%%%"}}),
        json.dumps({"event": "media", "media": "oops"}),
    ],
)
def test_malformed_telephony_messages_raise(text: str) -> None:
    with pytest.raises(MalformedMessageError):
        parse_telephony_message(text)


@pytest.mark.parametrize("event_type", ["response.audio.delta", "response.output_audio.delta"])
def test_parse_audio_delta_variants(event_type: str) -> None:
    event = parse_backend_event(json.dumps({"type": event_type, "delta": _b64(b"\x01\x00" * 4)}))
    assert event.kind is BackendEventKind.AUDIO_DELTA
    assert event.audio == b"\x01\x00" * 4


@pytest.mark.parametrize(
    ("event_type", "kind"),
    [
        ("session.created", BackendEventKind.SESSION_CREATED),
        ("session.updated", BackendEventKind.READY),
        ("input_audio_buffer.speech_started", BackendEventKind.SPEECH_STARTED),
        ("input_audio_buffer.speech_stopped", BackendEventKind.SPEECH_STOPPED),
        ("input_audio_buffer.committed", BackendEventKind.BUFFER_COMMITTED),
        ("response.done", BackendEventKind.RESPONSE_DONE),
        ("rate_limits.updated", BackendEventKind.UNKNOWN),
    ],
)
def test_parse_backend_event_kinds(event_type: str, kind: BackendEventKind) -> None:
    assert parse_backend_event(json.dumps({"type": event_type})).kind is kind


def test_parse_backend_error_and_transcripts() -> None:
    error = parse_backend_event(
        json.dumps({"type": "error", "error": {"type": "invalid_request_error", "code": "input_audio_buffer_commit_empty"}})
    )
    assert error.kind is BackendEventKind.ERROR
    assert error.error["code"] == "input_audio_buffer_commit_empty"

    said = parse_backend_event(
        json.dumps({"type": "conversation.item.input_audio_transcription.completed", "transcript": " hello \n"})
    )
    assert said.kind is BackendEventKind.CALLER_TRANSCRIPT
    assert said.text == "hello"


@pytest.mark.parametrize("text", ["", "null", json.dumps({"type": "response.audio.delta"}), json.dumps({"delta": "AA=="})])
def test_malformed_backend_messages_raise(text: str) -> None:
    with pytest.raises(MalformedMessageError):
        parse_backend_event(text)


def test_outbound_message_builders() -> None:
    media = media_message("MZ1", b"\xff\xfe")
    assert media == {"event": "media", "streamSid": "MZ1", "media": {"payload": _b64(b"\xff\xfe")}}
    assert mark_message("MZ1", "keepalive")["mark"] == {"name": "keepalive"}
    assert clear_message("MZ1") == {"event": "clear", "streamSid": "MZ1"}
