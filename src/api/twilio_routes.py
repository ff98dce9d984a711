"""Twilio Voice integration.

This module provides:
- Voice webhook (TwiML) that connects an inbound call to the media stream.
- The Media Streams websocket the relay runs on.
"""

from __future__ import annotations

import logging
from xml.sax.saxutils import escape, quoteattr

from fastapi import APIRouter, Depends, Request, Response, WebSocket

from api.dependencies import get_relay_controller
from config.settings import get_settings
from relay.controller import RelayController

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])

STREAM_PATH = "/api/twilio/media-stream"


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _stream_url(request: Request) -> str:
    settings = get_settings()
    if settings.public_base_url:
        return _to_ws_url(f"{settings.public_base_url.rstrip('/')}{STREAM_PATH}")

    # Behind a TLS-terminating proxy the request itself arrives as plain http.
    scheme = "wss" if request.headers.get("x-forwarded-proto") == "https" else "ws"
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return f"{scheme}://{host}{STREAM_PATH}"


def _twiml_say(text: str) -> str:
    settings = get_settings()
    return (
        f"<Say voice={quoteattr(settings.twilio_say_voice)} language={quoteattr(settings.twilio_say_language)}>"
        f"{escape(text)}</Say>"
    )


def _twiml_connect_stream(*, stream_url: str, call_sid: str, greeting: str | None) -> str:
    say = _twiml_say(greeting) if greeting else ""
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        f"{say}"
        "<Connect>"
        f"<Stream url={quoteattr(stream_url)}>"
        f"<Parameter name=\"callSid\" value={quoteattr(call_sid)} />"
        "</Stream>"
        "</Connect>"
        "</Response>"
    )


def _twiml_error(message: str) -> str:
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        f"{_twiml_say(message)}"
        "<Hangup/>"
        "</Response>"
    )


@router.post("/voice")
async def twilio_voice_webhook(request: Request) -> Response:
    settings = get_settings()
    try:
        form = await request.form()
        call_sid = str(form.get("CallSid") or "").strip() or "unknown"
        stream_url = _stream_url(request)
    except Exception:
        LOGGER.exception("Failed to build stream TwiML")
        return _twiml_response(_twiml_error(settings.twilio_error_message))

    LOGGER.info("Incoming call %s -> %s", call_sid, stream_url)
    return _twiml_response(
        _twiml_connect_stream(stream_url=stream_url, call_sid=call_sid, greeting=settings.twilio_greeting)
    )


@router.websocket("/media-stream")
async def twilio_media_stream(
    websocket: WebSocket,
    controller: RelayController = Depends(get_relay_controller),
) -> None:
    await controller.handle_telephony(websocket)
