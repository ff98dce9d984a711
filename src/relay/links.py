from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from relay.errors import LinkClosedError

LOGGER = logging.getLogger(__name__)


class TelephonyLink:
    """Outbound side of the Twilio Media Streams websocket.

    Reading stays with the controller's receive loop; this wrapper only sends
    and closes, and turns transport failures into ``LinkClosedError``.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self._websocket.client_state == WebSocketState.DISCONNECTED

    async def send_json(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise LinkClosedError("telephony link is closed")
        try:
            await self._websocket.send_text(json.dumps(message))
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            self._closed = True
            raise LinkClosedError(f"telephony send failed: {exc!r}") from exc

    async def close(self, code: int = 1000) -> None:
        if self._closed:
            return
        self._closed = True

        if (
            self._websocket.client_state == WebSocketState.DISCONNECTED
            or self._websocket.application_state == WebSocketState.DISCONNECTED
        ):
            return
        try:
            await self._websocket.close(code=code)
        except (RuntimeError, OSError) as exc:
            LOGGER.debug("Telephony websocket already gone: %r", exc)
