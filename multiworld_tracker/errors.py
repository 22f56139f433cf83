"""Client error types for multiworld server interactions."""

from __future__ import annotations


class TrackerClientError(Exception):
    """Base error for multiworld tracker client failures."""


class TrackerTimeout(TrackerClientError):
    """Timeout while communicating with the server."""


class TrackerConnectionError(TrackerClientError):
    """Network connection to the server failed."""


class TrackerHandshakeError(TrackerClientError):
    """WebSocket handshake failed."""


class TrackerProtocolError(TrackerClientError, ValueError):
    """A frame or packet violated the wire protocol."""


class TrackerRefusedError(TrackerClientError):
    """The server refused the slot connection."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(", ".join(errors) or "Unknown reason")
        self.errors = errors


class TrackerResponseError(TrackerClientError):
    """HTTP response error from the web host."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
