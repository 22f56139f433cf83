"""Connection coordinator: drives the tracker handshake.

State machine:
    DISCONNECTED → CONNECTING → AWAITING_ROOM_INFO → AUTHENTICATING
        → AWAITING_DATA_PACKAGE → CONNECTED

ERROR is reachable from any non-terminal state. Replies are matched to
requests by packet type and the current state only. The coordinator never
retries on its own; every ``connect()`` is a fresh pass through the states.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import TypeVar

from .client import ClientError, DisconnectEvent, ProtocolClient, TransportOpened
from .config import ConnectionSettings, SettingsLoadError
from .errors import TrackerRefusedError
from .models import Session
from .protocol import (
    ConnectedPacket,
    ConnectionRefusedPacket,
    DataPackagePacket,
    LocationInfoPacket,
    PrintJSONPacket,
    ReceivedItemsPacket,
    RetrievedPacket,
    RoomInfoPacket,
    RoomUpdatePacket,
    SetReplyPacket,
)
from .reconciler import SessionReconciler, hint_storage_key

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SettingsProvider = Callable[[], ConnectionSettings]
ClientFactory = Callable[[str], ProtocolClient]


class ConnectionStatus(Enum):
    """Connection states exposed to observers."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_ROOM_INFO = "awaiting_room_info"
    AUTHENTICATING = "authenticating"
    AWAITING_DATA_PACKAGE = "awaiting_data_package"
    CONNECTED = "connected"
    ERROR = "error"


class ConnectionCoordinator:
    """Runs the handshake and feeds server packets to the reconciler.

    Usage:
        coordinator = ConnectionCoordinator(StaticSettingsProvider(settings))
        coordinator.on_status_changed(my_status_handler)
        await coordinator.connect()
        view = coordinator.session
        await coordinator.disconnect()
    """

    def __init__(
        self,
        settings_provider: SettingsProvider,
        reconciler: SessionReconciler | None = None,
        *,
        client_factory: ClientFactory = ProtocolClient,
    ) -> None:
        self._settings_provider = settings_provider
        self._reconciler = reconciler if reconciler is not None else SessionReconciler()
        self._client_factory = client_factory

        self._client: ProtocolClient | None = None
        self._settings: ConnectionSettings | None = None
        self._status = ConnectionStatus.DISCONNECTED
        self._error_message: str | None = None
        self._status_callback: Callable[[ConnectionStatus], None] | None = None

        self.room_name: str | None = None
        self.connected_slot: int | None = None
        self.last_connected_at: datetime | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    @property
    def error_message(self) -> str | None:
        return self._error_message

    @property
    def reconciler(self) -> SessionReconciler:
        return self._reconciler

    @property
    def client(self) -> ProtocolClient | None:
        return self._client

    @property
    def session(self) -> Session:
        """Read-only snapshot of the reconciled session."""
        return self._reconciler.snapshot()

    def on_status_changed(self, callback: Callable[[ConnectionStatus], None]) -> None:
        """Register callback for connection status changes."""
        self._status_callback = callback

    def clear_error(self) -> None:
        self._error_message = None

    async def connect(self) -> bool:
        """Start a fresh connection attempt.

        Returns:
            True if the transport opened, False on validation or transport
            failure (see ``error_message``)
        """
        try:
            settings = self._settings_provider()
        except SettingsLoadError as err:
            self._error_message = f"Invalid settings: {err}"
            _LOGGER.warning("Connect aborted: %s", self._error_message)
            return False

        problems = settings.validate()
        if problems:
            self._error_message = "Please fill in the settings: " + ", ".join(problems)
            _LOGGER.warning("Connect aborted: %s", self._error_message)
            return False

        await self._release_client()

        self._settings = settings
        self._error_message = None
        self.room_name = None
        self.connected_slot = None
        self._set_status(ConnectionStatus.CONNECTING)

        client = self._client_factory(settings.url)
        self._client = client
        self._attach(client)

        opened = await client.connect()
        if not opened and self._client is client:
            self._client = None
            self._fail(self._error_message or "Connection failed")
        return opened

    async def disconnect(self) -> None:
        """Close the transport; reconciled session data is kept."""
        await self._release_client()
        self._error_message = None
        self.room_name = None
        self.connected_slot = None
        self._set_status(ConnectionStatus.DISCONNECTED)

    # -------------------------------------------------------------------------
    # Internal: State machine
    # -------------------------------------------------------------------------

    def _label(self) -> str:
        return self._settings.slot_name if self._settings else "-"

    def _set_status(self, status: ConnectionStatus) -> None:
        """Update connection status and notify callback."""
        if self._status is status:
            return
        _LOGGER.debug(
            "[%s] State: %s → %s",
            self._label(),
            self._status.value,
            status.value,
        )
        self._status = status
        if self._status_callback:
            try:
                self._status_callback(status)
            except Exception as err:
                _LOGGER.exception("Status callback error: %s", err)

    def _fail(self, message: str) -> None:
        self._error_message = message
        _LOGGER.error("[%s] %s", self._label(), message)
        self._set_status(ConnectionStatus.ERROR)

    async def _release_client(self) -> None:
        """Detach and close the current client; its later events are ignored."""
        client = self._client
        self._client = None
        if client is not None:
            await client.close()

    def _attach(self, client: ProtocolClient) -> None:
        events = client.events
        events.opened.subscribe(self._bind(client, self._on_opened))
        events.room_info.subscribe(self._bind(client, self._on_room_info))
        events.connection_refused.subscribe(
            self._bind(client, self._on_connection_refused)
        )
        events.connected.subscribe(self._bind(client, self._on_connected))
        events.data_package.subscribe(self._bind(client, self._on_data_package))
        events.received_items.subscribe(self._bind(client, self._on_received_items))
        events.location_info.subscribe(self._bind(client, self._on_location_info))
        events.room_update.subscribe(self._bind(client, self._on_room_update))
        events.print_json.subscribe(self._bind(client, self._on_print_json))
        events.retrieved.subscribe(self._bind(client, self._on_retrieved))
        events.set_reply.subscribe(self._bind(client, self._on_set_reply))
        events.error.subscribe(self._bind(client, self._on_error))
        events.disconnected.subscribe(self._bind(client, self._on_disconnected))

    def _bind(
        self,
        client: ProtocolClient,
        handler: Callable[[ProtocolClient, T], Awaitable[None] | None],
    ) -> Callable[[T], Awaitable[None] | None]:
        def _guarded(payload: T) -> Awaitable[None] | None:
            if client is not self._client:
                _LOGGER.debug("Ignoring event from a released client")
                return None
            return handler(client, payload)

        return _guarded

    # -------------------------------------------------------------------------
    # Internal: Event handlers
    # -------------------------------------------------------------------------

    def _on_opened(self, client: ProtocolClient, event: TransportOpened) -> None:
        if self._status is ConnectionStatus.CONNECTING:
            self._set_status(ConnectionStatus.AWAITING_ROOM_INFO)

    async def _on_room_info(
        self, client: ProtocolClient, packet: RoomInfoPacket
    ) -> None:
        self.room_name = packet.seed_name
        self._reconciler.fold_room_info(packet)
        _LOGGER.info("Room info received: %s (server %s)", packet.seed_name, packet.version)

        if self._status is not ConnectionStatus.AWAITING_ROOM_INFO or not self._settings:
            return
        self._set_status(ConnectionStatus.AUTHENTICATING)
        await client.authenticate(
            self._settings.slot_name.strip(), self._settings.password
        )

    async def _on_connection_refused(
        self, client: ProtocolClient, packet: ConnectionRefusedPacket
    ) -> None:
        reason = TrackerRefusedError(list(packet.errors))
        self._fail(f"Connection refused: {reason}")
        await self._release_client()

    async def _on_connected(
        self, client: ProtocolClient, packet: ConnectedPacket
    ) -> None:
        self.connected_slot = packet.slot
        self._reconciler.fold_connected(packet)
        _LOGGER.info("Slot connected: %d", packet.slot)

        if self._status is not ConnectionStatus.AUTHENTICATING:
            return
        self._set_status(ConnectionStatus.AWAITING_DATA_PACKAGE)

        room_info = client.room_info
        await client.request_data_package(room_info.games if room_info else None)

        hints_key = hint_storage_key(packet.team, packet.slot)
        await client.get([hints_key])
        await client.set_notify([hints_key])

    def _on_data_package(
        self, client: ProtocolClient, packet: DataPackagePacket
    ) -> None:
        changed = self._reconciler.fold_data_package(packet)
        _LOGGER.debug("Data package merged: %d game(s) changed", len(changed))

        if self._status is ConnectionStatus.AWAITING_DATA_PACKAGE:
            self.last_connected_at = datetime.now(tz=UTC)
            self._set_status(ConnectionStatus.CONNECTED)

    def _on_received_items(
        self, client: ProtocolClient, packet: ReceivedItemsPacket
    ) -> None:
        self._reconciler.fold_received_items(packet)

    def _on_location_info(
        self, client: ProtocolClient, packet: LocationInfoPacket
    ) -> None:
        self._reconciler.fold_location_info(packet)

    def _on_room_update(
        self, client: ProtocolClient, packet: RoomUpdatePacket
    ) -> None:
        self._reconciler.fold_room_update(packet)

    def _on_print_json(self, client: ProtocolClient, packet: PrintJSONPacket) -> None:
        self._reconciler.fold_print_json(packet)

    def _on_retrieved(self, client: ProtocolClient, packet: RetrievedPacket) -> None:
        self._reconciler.fold_retrieved(packet)

    def _on_set_reply(self, client: ProtocolClient, packet: SetReplyPacket) -> None:
        self._reconciler.fold_set_reply(packet)

    def _on_error(self, client: ProtocolClient, event: ClientError) -> None:
        if self._status is ConnectionStatus.ERROR:
            return
        self._fail(event.message)

    def _on_disconnected(
        self, client: ProtocolClient, event: DisconnectEvent
    ) -> None:
        self._client = None
        self.room_name = None
        self.connected_slot = None

        if self._status is ConnectionStatus.ERROR:
            return
        if event.user_initiated:
            self._set_status(ConnectionStatus.DISCONNECTED)
            return

        detail = f" (code {event.code})" if event.code is not None else ""
        reason = f": {event.reason}" if event.reason else ""
        self._fail(f"Connection lost{detail}{reason}")

    def __repr__(self) -> str:
        return f"<ConnectionCoordinator status={self._status.value}>"
