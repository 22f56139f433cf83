"""Opening the WebSocket to a multiworld server.

Servers listen on a bare ``ws://host:port`` or ``wss://host:port`` address,
so callers pass the full URL built from their settings. The first
DataPackage reply carries every game's name tables in one frame and can run
to several megabytes, so incoming frame size is not capped.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    TrackerConnectionError,
    TrackerHandshakeError,
    TrackerTimeout,
)

_LOGGER = logging.getLogger(__name__)

SCHEMES = ("ws", "wss")


async def connect_websocket(
    url: str,
    *,
    ping_interval: int | None = 20,
    timeout: float = 15.0,
) -> ClientConnection:
    """Open a connection to a multiworld server.

    Args:
        url: ``ws://`` or ``wss://`` server address
        ping_interval: Keepalive ping interval in seconds, None to disable
        timeout: Seconds allowed for TCP, TLS and the opening handshake

    Raises:
        TrackerHandshakeError: The URL is not a WebSocket address or the
            server rejected the upgrade.
        TrackerTimeout: The server did not answer within ``timeout``.
        TrackerConnectionError: The server could not be reached.
    """
    scheme = urlsplit(url).scheme
    if scheme not in SCHEMES:
        raise TrackerHandshakeError(f"Unsupported server address {url!r}")

    _LOGGER.debug("Opening %s", url)
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise TrackerTimeout(f"No answer from {url} after {timeout:g}s") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise TrackerHandshakeError(f"Server at {url} refused the upgrade: {err}") from err
    except (OSError, WebSocketException) as err:
        raise TrackerConnectionError(f"Cannot reach {url}: {err}") from err
