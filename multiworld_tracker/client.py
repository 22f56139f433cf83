"""Protocol client for one multiworld server connection.

The client owns the transport, frames and deframes packets, keeps the
per-connection caches (server version, slot table, players, data package)
and notifies observers through typed event channels. It never reconnects on
its own; reconnection policy belongs to the coordinator.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar
from uuid import uuid4

from .errors import TrackerClientError
from .protocol import (
    BouncedPacket,
    BouncePacket,
    ClientPacket,
    ClientStatus,
    ConnectedPacket,
    ConnectionRefusedPacket,
    ConnectPacket,
    DataPackagePacket,
    DataStorageOperation,
    GamePackage,
    GetDataPackagePacket,
    GetPacket,
    InvalidPacketPacket,
    ItemsHandling,
    LocationChecksPacket,
    LocationInfoPacket,
    LocationScoutsPacket,
    NetworkPlayer,
    NetworkSlot,
    NetworkVersion,
    PrintJSONPacket,
    ReceivedItemsPacket,
    RetrievedPacket,
    RoomInfoPacket,
    RoomUpdatePacket,
    SayPacket,
    ServerPacket,
    SetNotifyPacket,
    SetPacket,
    SetReplyPacket,
    StatusUpdatePacket,
    SyncPacket,
    UnknownPacket,
    build_frame,
    decode_frame,
)
from .transport.ws_client import TrackerWsClient, TrackerWsMessageType

_LOGGER = logging.getLogger(__name__)

DEFAULT_CLIENT_VERSION = NetworkVersion(0, 4, 6, "Version")
TRACKER_TAGS: tuple[str, ...] = ("Tracker", "WebTracker")

T = TypeVar("T")

Handler = Callable[[T], Awaitable[None] | None]


@dataclass(frozen=True)
class TransportOpened:
    """The transport connected; no packets exchanged yet."""

    url: str


@dataclass(frozen=True)
class ClientError:
    """A non-fatal client failure surfaced to observers."""

    message: str


@dataclass(frozen=True)
class DisconnectEvent:
    """The transport closed. ``user_initiated`` is True after ``close()``."""

    code: int | None
    reason: str
    user_initiated: bool


class EventChannel(Generic[T]):
    """Ordered observers for one event category.

    Handlers may be plain callables or coroutine functions; coroutines are
    awaited in registration order before the next handler runs.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Handler[T]] = []

    def __len__(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: Handler[T]) -> Callable[[], None]:
        """Register a handler; returns a callable that unregisters it."""
        self._handlers.append(handler)
        return lambda: self.unsubscribe(handler)

    def unsubscribe(self, handler: Handler[T]) -> None:
        """Remove one registration of ``handler``, if present."""
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    async def emit(self, payload: T) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as err:
                _LOGGER.exception("%s handler error: %s", self.name, err)


class ClientEvents:
    """Typed event channels exposed by ``ProtocolClient``."""

    def __init__(self) -> None:
        self.opened: EventChannel[TransportOpened] = EventChannel("opened")
        self.room_info: EventChannel[RoomInfoPacket] = EventChannel("room_info")
        self.connection_refused: EventChannel[ConnectionRefusedPacket] = (
            EventChannel("connection_refused")
        )
        self.connected: EventChannel[ConnectedPacket] = EventChannel("connected")
        self.received_items: EventChannel[ReceivedItemsPacket] = EventChannel(
            "received_items"
        )
        self.location_info: EventChannel[LocationInfoPacket] = EventChannel(
            "location_info"
        )
        self.room_update: EventChannel[RoomUpdatePacket] = EventChannel("room_update")
        self.print_json: EventChannel[PrintJSONPacket] = EventChannel("print_json")
        self.data_package: EventChannel[DataPackagePacket] = EventChannel(
            "data_package"
        )
        self.bounced: EventChannel[BouncedPacket] = EventChannel("bounced")
        self.invalid_packet: EventChannel[InvalidPacketPacket] = EventChannel(
            "invalid_packet"
        )
        self.retrieved: EventChannel[RetrievedPacket] = EventChannel("retrieved")
        self.set_reply: EventChannel[SetReplyPacket] = EventChannel("set_reply")
        self.unknown: EventChannel[UnknownPacket] = EventChannel("unknown")
        self.error: EventChannel[ClientError] = EventChannel("error")
        self.disconnected: EventChannel[DisconnectEvent] = EventChannel(
            "disconnected"
        )


class ProtocolClient:
    """Single logical connection to one multiworld server.

    Usage:
        client = ProtocolClient("wss://archipelago.gg:38281")
        client.events.room_info.subscribe(on_room_info)
        await client.connect()
        await client.authenticate("Player1")
        await client.close()
    """

    def __init__(
        self,
        url: str,
        *,
        ws_factory: Callable[[], TrackerWsClient] = TrackerWsClient,
        ping_interval: int | None = 20,
        timeout: float = 15.0,
    ) -> None:
        self.url = url
        self.events = ClientEvents()

        self._ws_factory = ws_factory
        self._ping_interval = ping_interval
        self._timeout = timeout

        self._ws: TrackerWsClient | None = None
        self._listen_task: asyncio.Task[None] | None = None
        self._close_requested = False

        # Per-connection caches
        self._room_info: RoomInfoPacket | None = None
        self._slot_info: Mapping[int, NetworkSlot] | None = None
        self._players: tuple[NetworkPlayer, ...] | None = None
        self._data_package: dict[str, GamePackage] = {}

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._ws.is_open

    @property
    def server_version(self) -> NetworkVersion | None:
        return self._room_info.version if self._room_info else None

    @property
    def room_info(self) -> RoomInfoPacket | None:
        return self._room_info

    @property
    def slot_info(self) -> Mapping[int, NetworkSlot] | None:
        return self._slot_info

    @property
    def players(self) -> tuple[NetworkPlayer, ...] | None:
        return self._players

    @property
    def data_package(self) -> dict[str, GamePackage]:
        return dict(self._data_package)

    async def connect(self) -> bool:
        """Open the transport and start reading frames.

        Returns:
            True if the transport is open, False if it could not be opened
        """
        if self.is_open:
            _LOGGER.warning("[%s] Already connected", self.url)
            return True

        _LOGGER.info("[%s] Connecting", self.url)
        ws = self._ws_factory()
        try:
            await ws.connect(
                self.url, ping_interval=self._ping_interval, timeout=self._timeout
            )
        except TrackerClientError as err:
            _LOGGER.warning("[%s] Connection failed: %s", self.url, err)
            await self.events.error.emit(ClientError(f"Connection failed: {err}"))
            return False

        self._ws = ws
        self._close_requested = False
        _LOGGER.info("[%s] WebSocket connected, waiting for room info", self.url)

        await self.events.opened.emit(TransportOpened(url=self.url))
        self._listen_task = asyncio.create_task(self._listen(ws))
        return True

    async def close(self) -> None:
        """Close the transport and discard per-connection state."""
        ws = self._ws
        if ws is None:
            return

        _LOGGER.info("[%s] Closing connection", self.url)
        self._close_requested = True

        task = self._listen_task
        self._listen_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        try:
            await asyncio.wait_for(ws.close(), timeout=2.0)
        except TimeoutError:
            _LOGGER.warning("[%s] WebSocket close timed out", self.url)

        await self._teardown(ws, 1000, "Closed by client")

    async def wait_closed(self) -> None:
        """Wait until the read loop ends."""
        task = self._listen_task
        if task is not None:
            await asyncio.shield(task)

    # -------------------------------------------------------------------------
    # Public API: Outbound packets
    # -------------------------------------------------------------------------

    async def send(self, packet: ClientPacket) -> bool:
        """Send one packet wrapped in a one-element frame.

        Returns:
            True if sent, False otherwise (an error event is emitted)
        """
        if self._ws is None or not self.is_open:
            _LOGGER.error(
                "[%s] Cannot send %s: WebSocket not connected", self.url, packet.cmd
            )
            await self.events.error.emit(
                ClientError(f"Cannot send {packet.cmd}: not connected")
            )
            return False

        try:
            await self._ws.send_text(build_frame(packet))
        except (TrackerClientError, TypeError, ValueError) as err:
            _LOGGER.error("[%s] Failed to send %s: %s", self.url, packet.cmd, err)
            await self.events.error.emit(
                ClientError(f"Failed to send {packet.cmd}: {err}")
            )
            return False

        _LOGGER.debug("[%s] Sent %s", self.url, packet.cmd)
        return True

    async def authenticate(self, slot_name: str, password: str | None = None) -> bool:
        """Send the Connect handshake as a passive tracker."""
        version = self.server_version or DEFAULT_CLIENT_VERSION
        packet = ConnectPacket(
            password=password or None,
            name=slot_name,
            uuid=str(uuid4()),
            version=version,
            game="",
            items_handling=ItemsHandling.ALL,
            tags=TRACKER_TAGS,
            slot_data=True,
        )
        _LOGGER.info(
            "[%s] Authenticating as %s (protocol %s)", self.url, slot_name, version
        )
        return await self.send(packet)

    async def request_data_package(self, games: Iterable[str] | None = None) -> bool:
        """Request translation tables, all games when ``games`` is empty."""
        scope = tuple(games) if games is not None else ()
        return await self.send(GetDataPackagePacket(games=scope or None))

    async def sync(self) -> bool:
        return await self.send(SyncPacket())

    async def check_locations(self, locations: Iterable[int]) -> bool:
        return await self.send(LocationChecksPacket(locations=tuple(locations)))

    async def scout_locations(
        self, locations: Iterable[int], *, create_as_hint: int | None = None
    ) -> bool:
        return await self.send(
            LocationScoutsPacket(
                locations=tuple(locations), create_as_hint=create_as_hint
            )
        )

    async def update_status(self, status: ClientStatus) -> bool:
        return await self.send(StatusUpdatePacket(status=status))

    async def say(self, text: str) -> bool:
        return await self.send(SayPacket(text=text))

    async def get(self, keys: Iterable[str]) -> bool:
        return await self.send(GetPacket(keys=tuple(keys)))

    async def set_notify(self, keys: Iterable[str]) -> bool:
        return await self.send(SetNotifyPacket(keys=tuple(keys)))

    async def set_value(
        self,
        key: str,
        operations: Iterable[DataStorageOperation],
        *,
        default: Any = None,
        want_reply: bool | None = None,
    ) -> bool:
        return await self.send(
            SetPacket(
                key=key,
                operations=tuple(operations),
                default=default,
                want_reply=want_reply,
            )
        )

    async def bounce(
        self,
        data: Mapping[str, Any],
        *,
        games: Iterable[str] | None = None,
        slots: Iterable[int] | None = None,
        tags: Iterable[str] | None = None,
    ) -> bool:
        return await self.send(
            BouncePacket(
                games=tuple(games) if games is not None else None,
                slots=tuple(slots) if slots is not None else None,
                tags=tuple(tags) if tags is not None else None,
                data=dict(data),
            )
        )

    # -------------------------------------------------------------------------
    # Inbound dispatch
    # -------------------------------------------------------------------------

    async def handle_frame(self, raw: str | bytes) -> None:
        """Decode one inbound frame and dispatch its packets in order.

        Malformed frames are logged and dropped; they never stop the read loop.
        """
        try:
            packets = decode_frame(raw)
        except ValueError as err:
            _LOGGER.warning("[%s] Dropping malformed frame: %s", self.url, err)
            return

        for packet in packets:
            await self._dispatch(packet)

    async def _dispatch(self, packet: ServerPacket) -> None:
        """Update caches affected by ``packet``, then notify observers."""
        _LOGGER.debug("[%s] Received packet: %s", self.url, packet.cmd)

        if isinstance(packet, RoomInfoPacket):
            self._room_info = packet
            await self.events.room_info.emit(packet)
        elif isinstance(packet, ConnectionRefusedPacket):
            _LOGGER.error(
                "[%s] Connection refused: %s", self.url, ", ".join(packet.errors)
            )
            await self.events.connection_refused.emit(packet)
        elif isinstance(packet, ConnectedPacket):
            self._slot_info = packet.slot_info
            self._players = packet.players
            await self.events.connected.emit(packet)
        elif isinstance(packet, ReceivedItemsPacket):
            await self.events.received_items.emit(packet)
        elif isinstance(packet, LocationInfoPacket):
            await self.events.location_info.emit(packet)
        elif isinstance(packet, RoomUpdatePacket):
            if packet.players is not None:
                self._players = packet.players
            await self.events.room_update.emit(packet)
        elif isinstance(packet, PrintJSONPacket):
            _LOGGER.debug("[%s] PrintJSON: %s", self.url, packet.plain_text)
            await self.events.print_json.emit(packet)
        elif isinstance(packet, DataPackagePacket):
            self._data_package.update(packet.games)
            await self.events.data_package.emit(packet)
        elif isinstance(packet, BouncedPacket):
            await self.events.bounced.emit(packet)
        elif isinstance(packet, InvalidPacketPacket):
            _LOGGER.warning(
                "[%s] Server rejected %s: %s",
                self.url,
                packet.original_cmd or packet.type,
                packet.text,
            )
            await self.events.invalid_packet.emit(packet)
        elif isinstance(packet, RetrievedPacket):
            await self.events.retrieved.emit(packet)
        elif isinstance(packet, SetReplyPacket):
            await self.events.set_reply.emit(packet)
        else:
            _LOGGER.debug("[%s] Unhandled packet type: %s", self.url, packet.cmd)
            await self.events.unknown.emit(packet)

    # -------------------------------------------------------------------------
    # Internal: Read loop
    # -------------------------------------------------------------------------

    async def _listen(self, ws: TrackerWsClient) -> None:
        """Process inbound frames sequentially until the transport closes."""
        code: int | None = None
        reason = ""
        message_count = 0

        try:
            async for msg in ws:
                if msg.type is TrackerWsMessageType.TEXT:
                    message_count += 1
                    if isinstance(msg.data, str):
                        await self.handle_frame(msg.data)
                elif msg.type is TrackerWsMessageType.CLOSED:
                    details = msg.data if isinstance(msg.data, dict) else {}
                    code = details.get("code")
                    reason = details.get("reason") or ""
                    _LOGGER.info("[%s] WebSocket closed: %s %s", self.url, code, reason)
                    break
                elif msg.type is TrackerWsMessageType.ERROR:
                    _LOGGER.error("[%s] WebSocket error", self.url)
                    await self.events.error.emit(
                        ClientError("WebSocket connection error")
                    )
                    break
        except asyncio.CancelledError:
            _LOGGER.debug(
                "[%s] Listener cancelled (%d messages)", self.url, message_count
            )
            raise
        except TrackerClientError as err:
            _LOGGER.warning("[%s] Client error: %s", self.url, err)
            await self.events.error.emit(ClientError(str(err)))
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected error: %s", self.url, err)
            await self.events.error.emit(ClientError(f"Unexpected error: {err}"))

        await self._teardown(ws, code, reason)

    async def _teardown(self, ws: TrackerWsClient, code: int | None, reason: str) -> None:
        """Discard the socket and caches, then notify once per connection."""
        if self._ws is not ws:
            return

        self._ws = None
        self._room_info = None
        self._slot_info = None
        self._players = None
        self._data_package = {}

        event = DisconnectEvent(
            code=code, reason=reason, user_initiated=self._close_requested
        )
        _LOGGER.info(
            "[%s] Disconnected (code=%s, user_initiated=%s)",
            self.url,
            code,
            event.user_initiated,
        )
        await self.events.disconnected.emit(event)
