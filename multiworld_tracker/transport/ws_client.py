"""WebSocket client wrapper for the multiworld server."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from ..errors import TrackerConnectionError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class TrackerWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class TrackerWsMessage:
    """Normalized WebSocket message payload.

    TEXT messages carry the frame text. CLOSED messages carry a dict with the
    close ``code`` and ``reason`` when the peer supplied them.
    """

    type: TrackerWsMessageType
    data: str | dict[str, Any] | None = None


def _close_details(code: Any, reason: Any) -> dict[str, Any]:
    return {
        "code": code if isinstance(code, int) else None,
        "reason": reason if isinstance(reason, str) else "",
    }


class TrackerWsClient:
    """Wrapper around websockets library for the multiworld server."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    async def connect(
        self,
        url: str,
        *,
        ping_interval: int | None = 20,
        timeout: float = 15.0,
    ) -> None:
        """Connect to the server websocket."""
        self._ws = await connect_websocket(
            url,
            ping_interval=ping_interval,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the websocket connection."""
        if self._ws is not None:
            await self._ws.close()

    async def send_text(self, text: str) -> None:
        """Send one text frame."""
        if self._ws is None:
            raise TrackerConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(text)
        except ConnectionClosed as err:
            raise TrackerConnectionError("WebSocket closed while sending") from err

    def __aiter__(self) -> AsyncIterator[TrackerWsMessage]:
        if self._ws is None:
            raise TrackerConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[TrackerWsMessage]:
        if self._ws is None:
            raise TrackerConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                normalized = self._normalize_message(msg)
                if normalized is None:
                    continue
                yield normalized
        except ConnectionClosed as err:
            rcvd = err.rcvd
            yield TrackerWsMessage(
                type=TrackerWsMessageType.CLOSED,
                data=_close_details(
                    rcvd.code if rcvd else None, rcvd.reason if rcvd else ""
                ),
            )
        except Exception:
            yield TrackerWsMessage(type=TrackerWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield TrackerWsMessage(
                type=TrackerWsMessageType.CLOSED,
                data=_close_details(
                    getattr(self._ws, "close_code", None),
                    getattr(self._ws, "close_reason", ""),
                ),
            )

    @staticmethod
    def _normalize_message(msg: Any) -> TrackerWsMessage | None:
        """Normalize frames; the protocol only uses text frames."""
        if isinstance(msg, (bytes, bytearray)):
            return None
        if isinstance(msg, str):
            return TrackerWsMessage(TrackerWsMessageType.TEXT, msg)
        return TrackerWsMessage(TrackerWsMessageType.TEXT, str(msg))
