"""Transport layer for the multiworld tracker.

Components:
- ws: WebSocket connection management
- ws_client: WebSocket frame iteration and text sends
"""

from .ws import connect_websocket
from .ws_client import TrackerWsClient, TrackerWsMessage, TrackerWsMessageType

__all__ = [
    "TrackerWsClient",
    "TrackerWsMessage",
    "TrackerWsMessageType",
    "connect_websocket",
]
