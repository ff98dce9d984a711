"""Exceptions raised by the call relay.

None of these reach the caller; at most they end the call.
"""

from __future__ import annotations


class RelayError(Exception):
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ConfigurationError(RelayError):
    default_detail = "Relay is not configured."


class MalformedMessageError(RelayError, ValueError):
    default_detail = "Malformed message."


class LinkClosedError(RelayError):
    default_detail = "Link is closed."


class BackendConnectError(RelayError):
    default_detail = "Could not connect to the speech backend."
