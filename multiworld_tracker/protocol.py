"""Packet codec for the multiworld JSON-over-WebSocket protocol.

Every frame, in either direction, is a JSON array of packet objects. Each
packet carries a ``cmd`` discriminator selecting its shape. This module
defines the shapes as frozen dataclasses and provides the decode/validate
and encode steps; it has no connection behavior of its own.

Notes:
- Optional fields are omitted on send, never sent as null, except
  ``Connect.password`` which the server expects as an explicit null.
- Unknown ``cmd`` values decode to ``UnknownPacket`` so a batch is never
  rejected for containing a newer packet type.
- Version ``class`` strings are passed through verbatim.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Any, ClassVar, TypeAlias

from .errors import TrackerProtocolError

# --------------------------------------------------------------------------
# Shared wire types
# --------------------------------------------------------------------------


class SlotType(IntFlag):
    """Kind of slot in the slot table."""

    SPECTATOR = 0
    PLAYER = 1
    GROUP = 2


class ItemsHandling(IntFlag):
    """Item-receipt classes requested in the Connect packet."""

    NONE = 0
    REMOTE = 0b001
    OWN_WORLD = 0b010
    STARTING_INVENTORY = 0b100
    ALL = 0b111


class ItemFlags(IntFlag):
    """Classification flags carried on network items."""

    NONE = 0
    PROGRESSION = 0b001
    USEFUL = 0b010
    TRAP = 0b100


class ClientStatus(IntEnum):
    """Status values for StatusUpdate."""

    UNKNOWN = 0
    CONNECTED = 5
    READY = 10
    PLAYING = 20
    GOAL = 30


class HintStatus(IntEnum):
    """Status values stored on server-side hints."""

    UNSPECIFIED = 0
    NO_PRIORITY = 10
    AVOID = 20
    PRIORITY = 30
    FOUND = 40


def _require(data: Mapping[str, Any], key: str, cmd: str) -> Any:
    """Return a required field or raise a protocol error."""
    if data.get(key) is None:
        raise TrackerProtocolError(f"{cmd} packet missing required field '{key}'")
    return data[key]


def _int(value: Any, *, name: str) -> int:
    # bool is a subclass of int but never a valid identifier
    if isinstance(value, bool) or not isinstance(value, int):
        raise TrackerProtocolError(
            f"Field '{name}' must be integer, got {type(value).__name__}"
        )
    return value


def _opt_int(value: Any, *, name: str) -> int | None:
    return None if value is None else _int(value, name=name)


def _int_tuple(values: Any, *, name: str) -> tuple[int, ...]:
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise TrackerProtocolError(f"Field '{name}' must be a list of integers")
    return tuple(_int(value, name=name) for value in values)


def _str_tuple(values: Any, *, name: str) -> tuple[str, ...]:
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise TrackerProtocolError(f"Field '{name}' must be a list of strings")
    return tuple(str(value) for value in values)


@dataclass(frozen=True)
class NetworkVersion:
    """Protocol version triple plus its class discriminator."""

    major: int
    minor: int
    build: int
    class_name: str = "Version"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NetworkVersion:
        if not isinstance(data, Mapping):
            raise TrackerProtocolError("Version must be an object")
        return cls(
            major=_int(data.get("major"), name="major"),
            minor=_int(data.get("minor"), name="minor"),
            build=_int(data.get("build"), name="build"),
            class_name=data.get("class", "Version"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "major": self.major,
            "minor": self.minor,
            "build": self.build,
            "class": self.class_name,
        }

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.build}"


@dataclass(frozen=True)
class NetworkItem:
    """An item placed at a location.

    ``player`` is the finding slot on ReceivedItems and the receiving slot on
    LocationInfo, matching the server's usage.
    """

    item: int
    location: int
    player: int
    flags: ItemFlags = ItemFlags.NONE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NetworkItem:
        if not isinstance(data, Mapping):
            raise TrackerProtocolError("Network item must be an object")
        return cls(
            item=_int(data.get("item"), name="item"),
            location=_int(data.get("location"), name="location"),
            player=_int(data.get("player"), name="player"),
            flags=ItemFlags(data.get("flags", 0) or 0),
        )


@dataclass(frozen=True)
class NetworkPlayer:
    """A player entry from Connected/RoomUpdate."""

    team: int
    slot: int
    alias: str
    name: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NetworkPlayer:
        if not isinstance(data, Mapping):
            raise TrackerProtocolError("Player entry must be an object")
        name = str(data.get("name", ""))
        return cls(
            team=_int(data.get("team", 0), name="team"),
            slot=_int(data.get("slot"), name="slot"),
            alias=str(data.get("alias") or name),
            name=name,
        )


@dataclass(frozen=True)
class NetworkSlot:
    """A slot table entry."""

    name: str
    game: str
    type: SlotType = SlotType.PLAYER
    group_members: tuple[int, ...] = ()

    @property
    def is_group(self) -> bool:
        return bool(self.type & SlotType.GROUP)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NetworkSlot:
        if not isinstance(data, Mapping):
            raise TrackerProtocolError("Slot entry must be an object")
        return cls(
            name=str(data.get("name", "")),
            game=str(data.get("game", "")),
            type=SlotType(data.get("type", SlotType.PLAYER)),
            group_members=_int_tuple(
                data.get("group_members") or [], name="group_members"
            ),
        )


@dataclass(frozen=True)
class JSONMessagePart:
    """One fragment of a PrintJSON message."""

    type: str = "text"
    text: str = ""
    color: str | None = None
    player: int | None = None
    flags: ItemFlags = ItemFlags.NONE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> JSONMessagePart:
        if not isinstance(data, Mapping):
            raise TrackerProtocolError("Message part must be an object")
        return cls(
            type=data.get("type") or "text",
            text=str(data.get("text", "")),
            color=data.get("color"),
            player=data.get("player"),
            flags=ItemFlags(data.get("flags", 0) or 0),
        )


@dataclass(frozen=True)
class GamePackage:
    """Per-game translation data from a data package."""

    item_name_to_id: Mapping[str, int]
    location_name_to_id: Mapping[str, int]
    checksum: str | None = None
    version: int = 0

    @property
    def cache_key(self) -> str:
        """Version identity used to decide whether a table changed."""
        return self.checksum if self.checksum else f"v{self.version}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GamePackage:
        if not isinstance(data, Mapping):
            raise TrackerProtocolError("Game package must be an object")
        items = data.get("item_name_to_id") or {}
        locations = data.get("location_name_to_id") or {}
        if not isinstance(items, Mapping) or not isinstance(locations, Mapping):
            raise TrackerProtocolError("Game package tables must be objects")
        return cls(
            item_name_to_id={
                str(k): _int(v, name="item_name_to_id") for k, v in items.items()
            },
            location_name_to_id={
                str(k): _int(v, name="location_name_to_id")
                for k, v in locations.items()
            },
            checksum=data.get("checksum"),
            version=data.get("version", 0) or 0,
        )


@dataclass(frozen=True)
class DataStorageOperation:
    """A single operation in a Set packet."""

    operation: str
    value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DataStorageOperation:
        return cls(operation=str(data["operation"]), value=data.get("value"))

    def to_dict(self) -> dict[str, Any]:
        return {"operation": self.operation, "value": self.value}


# --------------------------------------------------------------------------
# Client -> server packets
# --------------------------------------------------------------------------


def _to_wire(value: Any) -> Any:
    if isinstance(value, (NetworkVersion, DataStorageOperation)):
        return value.to_dict()
    if isinstance(value, (IntFlag, IntEnum)):
        return int(value)
    if isinstance(value, (list, tuple)):
        return [_to_wire(v) for v in value]
    if isinstance(value, Mapping):
        return {k: _to_wire(v) for k, v in value.items()}
    return value


def _decoder(func: Callable[[Any], Any]) -> dict[str, Any]:
    return {"decode": func}


class _ClientPacket:
    """Shared encode/decode for client packet dataclasses."""

    cmd: ClassVar[str]
    nullable: ClassVar[frozenset[str]] = frozenset()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"cmd": self.cmd}
        for f in dataclasses.fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if value is None and f.name not in self.nullable:
                continue
            payload[f.name] = _to_wire(value)
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Any:
        kwargs: dict[str, Any] = {}
        for f in dataclasses.fields(cls):  # type: ignore[arg-type]
            if f.name in data:
                value = data[f.name]
                decode = f.metadata.get("decode")
                if decode is not None and value is not None:
                    value = decode(value)
                elif isinstance(value, list):
                    value = tuple(value)
                kwargs[f.name] = value
            elif (
                f.default is dataclasses.MISSING
                and f.default_factory is dataclasses.MISSING
            ):
                raise TrackerProtocolError(
                    f"{cls.cmd} packet missing required field '{f.name}'"
                )
        return cls(**kwargs)


@dataclass(frozen=True)
class ConnectPacket(_ClientPacket):
    """Slot authentication request."""

    cmd: ClassVar[str] = "Connect"
    nullable: ClassVar[frozenset[str]] = frozenset({"password"})

    password: str | None
    name: str
    uuid: str
    version: NetworkVersion = field(metadata=_decoder(NetworkVersion.from_dict))
    game: str = ""
    items_handling: ItemsHandling | None = field(
        default=ItemsHandling.ALL, metadata=_decoder(ItemsHandling)
    )
    tags: tuple[str, ...] | None = None
    slot_data: bool | None = None


@dataclass(frozen=True)
class SyncPacket(_ClientPacket):
    cmd: ClassVar[str] = "Sync"


@dataclass(frozen=True)
class LocationChecksPacket(_ClientPacket):
    cmd: ClassVar[str] = "LocationChecks"

    locations: tuple[int, ...]


@dataclass(frozen=True)
class LocationScoutsPacket(_ClientPacket):
    cmd: ClassVar[str] = "LocationScouts"

    locations: tuple[int, ...]
    create_as_hint: int | None = None


@dataclass(frozen=True)
class StatusUpdatePacket(_ClientPacket):
    cmd: ClassVar[str] = "StatusUpdate"

    status: ClientStatus = field(metadata=_decoder(ClientStatus))


@dataclass(frozen=True)
class SayPacket(_ClientPacket):
    cmd: ClassVar[str] = "Say"

    text: str


@dataclass(frozen=True)
class GetDataPackagePacket(_ClientPacket):
    """Translation table request; no ``games`` means every game."""

    cmd: ClassVar[str] = "GetDataPackage"

    games: tuple[str, ...] | None = None


@dataclass(frozen=True)
class BouncePacket(_ClientPacket):
    cmd: ClassVar[str] = "Bounce"

    games: tuple[str, ...] | None = None
    slots: tuple[int, ...] | None = None
    tags: tuple[str, ...] | None = None
    data: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class GetPacket(_ClientPacket):
    cmd: ClassVar[str] = "Get"

    keys: tuple[str, ...]


@dataclass(frozen=True)
class SetPacket(_ClientPacket):
    cmd: ClassVar[str] = "Set"

    key: str
    operations: tuple[DataStorageOperation, ...] = field(
        default=(),
        metadata=_decoder(
            lambda ops: tuple(DataStorageOperation.from_dict(op) for op in ops)
        ),
    )
    default: Any = None
    want_reply: bool | None = None


@dataclass(frozen=True)
class SetNotifyPacket(_ClientPacket):
    cmd: ClassVar[str] = "SetNotify"

    keys: tuple[str, ...]


ClientPacket: TypeAlias = (
    ConnectPacket
    | SyncPacket
    | LocationChecksPacket
    | LocationScoutsPacket
    | StatusUpdatePacket
    | SayPacket
    | GetDataPackagePacket
    | BouncePacket
    | GetPacket
    | SetPacket
    | SetNotifyPacket
)

CLIENT_PACKET_TYPES: dict[str, type[_ClientPacket]] = {
    packet_cls.cmd: packet_cls
    for packet_cls in (
        ConnectPacket,
        SyncPacket,
        LocationChecksPacket,
        LocationScoutsPacket,
        StatusUpdatePacket,
        SayPacket,
        GetDataPackagePacket,
        BouncePacket,
        GetPacket,
        SetPacket,
        SetNotifyPacket,
    )
}


# --------------------------------------------------------------------------
# Server -> client packets
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class RoomInfoPacket:
    """First packet after the transport opens."""

    cmd: ClassVar[str] = "RoomInfo"

    version: NetworkVersion
    seed_name: str
    generator_version: NetworkVersion | None = None
    tags: tuple[str, ...] = ()
    password: bool = False
    permissions: Mapping[str, int] = field(default_factory=lambda: {})
    hint_cost: int = 0
    location_check_points: int = 0
    games: tuple[str, ...] = ()
    datapackage_checksums: Mapping[str, str] = field(default_factory=lambda: {})
    time: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RoomInfoPacket:
        generator = data.get("generator_version")
        return cls(
            version=NetworkVersion.from_dict(_require(data, "version", cls.cmd)),
            seed_name=str(_require(data, "seed_name", cls.cmd)),
            generator_version=(
                NetworkVersion.from_dict(generator) if generator else None
            ),
            tags=_str_tuple(data.get("tags") or [], name="tags"),
            password=bool(data.get("password", False)),
            permissions=dict(data.get("permissions") or {}),
            hint_cost=_int(data.get("hint_cost") or 0, name="hint_cost"),
            location_check_points=_int(
                data.get("location_check_points") or 0, name="location_check_points"
            ),
            games=_str_tuple(data.get("games") or [], name="games"),
            datapackage_checksums=dict(data.get("datapackage_checksums") or {}),
            time=data.get("time"),
        )


@dataclass(frozen=True)
class ConnectionRefusedPacket:
    cmd: ClassVar[str] = "ConnectionRefused"

    errors: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConnectionRefusedPacket:
        return cls(errors=_str_tuple(data.get("errors") or [], name="errors"))


def _parse_slot_info(raw: Any, cmd: str) -> dict[int, NetworkSlot]:
    if not isinstance(raw, Mapping):
        raise TrackerProtocolError(f"{cmd} slot_info must be an object")
    slots: dict[int, NetworkSlot] = {}
    for key, value in raw.items():
        try:
            slot = int(key)
        except (TypeError, ValueError) as err:
            raise TrackerProtocolError(f"Invalid slot key {key!r}") from err
        slots[slot] = NetworkSlot.from_dict(value)
    return slots


def _parse_players(raw: Any) -> tuple[NetworkPlayer, ...]:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise TrackerProtocolError("players must be a list")
    return tuple(NetworkPlayer.from_dict(p) for p in raw)


@dataclass(frozen=True)
class ConnectedPacket:
    """Slot authentication accepted."""

    cmd: ClassVar[str] = "Connected"

    slot: int
    players: tuple[NetworkPlayer, ...]
    slot_info: Mapping[int, NetworkSlot]
    team: int = 0
    missing_locations: tuple[int, ...] = ()
    checked_locations: tuple[int, ...] = ()
    slot_data: Mapping[str, Any] = field(default_factory=lambda: {})
    hint_points: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConnectedPacket:
        return cls(
            slot=_int(_require(data, "slot", cls.cmd), name="slot"),
            players=_parse_players(_require(data, "players", cls.cmd)),
            slot_info=_parse_slot_info(_require(data, "slot_info", cls.cmd), cls.cmd),
            team=_int(data.get("team", 0), name="team"),
            missing_locations=_int_tuple(
                data.get("missing_locations") or [], name="missing_locations"
            ),
            checked_locations=_int_tuple(
                data.get("checked_locations") or [], name="checked_locations"
            ),
            slot_data=dict(data.get("slot_data") or {}),
            hint_points=_opt_int(data.get("hint_points"), name="hint_points"),
        )


def _parse_items(raw: Any, name: str) -> tuple[NetworkItem, ...]:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise TrackerProtocolError(f"{name} must be a list")
    return tuple(NetworkItem.from_dict(entry) for entry in raw)


@dataclass(frozen=True)
class ReceivedItemsPacket:
    """Items delivered to the connected slot, starting at ``index``."""

    cmd: ClassVar[str] = "ReceivedItems"

    index: int
    items: tuple[NetworkItem, ...]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReceivedItemsPacket:
        return cls(
            index=_int(_require(data, "index", cls.cmd), name="index"),
            items=_parse_items(_require(data, "items", cls.cmd), "items"),
        )


@dataclass(frozen=True)
class LocationInfoPacket:
    """Scouted location contents."""

    cmd: ClassVar[str] = "LocationInfo"

    locations: tuple[NetworkItem, ...]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LocationInfoPacket:
        return cls(
            locations=_parse_items(_require(data, "locations", cls.cmd), "locations")
        )


@dataclass(frozen=True)
class RoomUpdatePacket:
    """Partial room state update. ``None`` means the field was absent."""

    cmd: ClassVar[str] = "RoomUpdate"

    hint_points: int | None = None
    checked_locations: tuple[int, ...] | None = None
    missing_locations: tuple[int, ...] | None = None
    players: tuple[NetworkPlayer, ...] | None = None
    hint_cost: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RoomUpdatePacket:
        checked = data.get("checked_locations")
        missing = data.get("missing_locations")
        players = data.get("players")
        return cls(
            hint_points=_opt_int(data.get("hint_points"), name="hint_points"),
            checked_locations=(
                _int_tuple(checked, name="checked_locations")
                if checked is not None
                else None
            ),
            missing_locations=(
                _int_tuple(missing, name="missing_locations")
                if missing is not None
                else None
            ),
            players=_parse_players(players) if players is not None else None,
            hint_cost=_opt_int(data.get("hint_cost"), name="hint_cost"),
        )


@dataclass(frozen=True)
class PrintJSONPacket:
    """Chat and game event text."""

    cmd: ClassVar[str] = "PrintJSON"

    data: tuple[JSONMessagePart, ...]
    type: str | None = None
    receiving: int | None = None
    item: NetworkItem | None = None
    found: bool | None = None
    slot: int | None = None
    message: str | None = None

    @property
    def plain_text(self) -> str:
        return "".join(part.text for part in self.data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PrintJSONPacket:
        parts = _require(data, "data", cls.cmd)
        if not isinstance(parts, Sequence) or isinstance(parts, (str, bytes)):
            raise TrackerProtocolError("PrintJSON data must be a list")
        item = data.get("item")
        return cls(
            data=tuple(JSONMessagePart.from_dict(part) for part in parts),
            type=data.get("type"),
            receiving=data.get("receiving"),
            item=NetworkItem.from_dict(item) if item is not None else None,
            found=data.get("found"),
            slot=data.get("slot"),
            message=data.get("message"),
        )


@dataclass(frozen=True)
class DataPackagePacket:
    """Translation tables for the requested games."""

    cmd: ClassVar[str] = "DataPackage"

    games: Mapping[str, GamePackage]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DataPackagePacket:
        body = _require(data, "data", cls.cmd)
        if not isinstance(body, Mapping):
            raise TrackerProtocolError("DataPackage data must be an object")
        games = _require(body, "games", cls.cmd)
        if not isinstance(games, Mapping):
            raise TrackerProtocolError("DataPackage games must be an object")
        return cls(
            games={str(game): GamePackage.from_dict(pkg) for game, pkg in games.items()}
        )


@dataclass(frozen=True)
class BouncedPacket:
    cmd: ClassVar[str] = "Bounced"

    games: tuple[str, ...] | None = None
    slots: tuple[int, ...] | None = None
    tags: tuple[str, ...] | None = None
    data: Mapping[str, Any] = field(default_factory=lambda: {})

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BouncedPacket:
        games = data.get("games")
        slots = data.get("slots")
        tags = data.get("tags")
        return cls(
            games=_str_tuple(games, name="games") if games is not None else None,
            slots=_int_tuple(slots, name="slots") if slots is not None else None,
            tags=_str_tuple(tags, name="tags") if tags is not None else None,
            data=dict(data.get("data") or {}),
        )


@dataclass(frozen=True)
class InvalidPacketPacket:
    """Server rejection of one of our packets."""

    cmd: ClassVar[str] = "InvalidPacket"

    type: str
    text: str
    original_cmd: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InvalidPacketPacket:
        return cls(
            type=str(_require(data, "type", cls.cmd)),
            text=str(_require(data, "text", cls.cmd)),
            original_cmd=data.get("original_cmd"),
        )


@dataclass(frozen=True)
class RetrievedPacket:
    cmd: ClassVar[str] = "Retrieved"

    keys: Mapping[str, Any]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RetrievedPacket:
        keys = _require(data, "keys", cls.cmd)
        if not isinstance(keys, Mapping):
            raise TrackerProtocolError("Retrieved keys must be an object")
        return cls(keys=dict(keys))


@dataclass(frozen=True)
class SetReplyPacket:
    cmd: ClassVar[str] = "SetReply"

    key: str
    value: Any
    original_value: Any = None
    slot: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SetReplyPacket:
        if "value" not in data:
            raise TrackerProtocolError("SetReply packet missing required field 'value'")
        return cls(
            key=str(_require(data, "key", cls.cmd)),
            value=data["value"],
            original_value=data.get("original_value"),
            slot=data.get("slot"),
        )


@dataclass(frozen=True)
class UnknownPacket:
    """A packet whose ``cmd`` this client does not model."""

    cmd: str
    raw: Mapping[str, Any]


ServerPacket: TypeAlias = (
    RoomInfoPacket
    | ConnectionRefusedPacket
    | ConnectedPacket
    | ReceivedItemsPacket
    | LocationInfoPacket
    | RoomUpdatePacket
    | PrintJSONPacket
    | DataPackagePacket
    | BouncedPacket
    | InvalidPacketPacket
    | RetrievedPacket
    | SetReplyPacket
    | UnknownPacket
)

SERVER_PACKET_TYPES: dict[str, Any] = {
    packet_cls.cmd: packet_cls
    for packet_cls in (
        RoomInfoPacket,
        ConnectionRefusedPacket,
        ConnectedPacket,
        ReceivedItemsPacket,
        LocationInfoPacket,
        RoomUpdatePacket,
        PrintJSONPacket,
        DataPackagePacket,
        BouncedPacket,
        InvalidPacketPacket,
        RetrievedPacket,
        SetReplyPacket,
    )
}


# --------------------------------------------------------------------------
# Frame encode/decode
# --------------------------------------------------------------------------


def decode_packet(data: Any) -> ServerPacket:
    """Decode one packet object by its ``cmd`` discriminator.

    Raises:
        TrackerProtocolError: If the object is malformed or misses a
            required field.
    """
    if not isinstance(data, Mapping):
        raise TrackerProtocolError(
            f"Packet must be an object, got {type(data).__name__}"
        )
    cmd = data.get("cmd")
    if not isinstance(cmd, str):
        raise TrackerProtocolError("Packet is missing its 'cmd' discriminator")

    packet_cls = SERVER_PACKET_TYPES.get(cmd)
    if packet_cls is None:
        return UnknownPacket(cmd=cmd, raw=dict(data))

    try:
        packet: ServerPacket = packet_cls.from_dict(data)
    except TrackerProtocolError:
        raise
    except (TypeError, ValueError, KeyError, AttributeError) as err:
        raise TrackerProtocolError(f"Malformed {cmd} packet: {err}") from err
    return packet


def decode_frame(raw: str | bytes) -> list[ServerPacket]:
    """Decode an inbound frame into server packets.

    The frame is decoded completely before anything is returned, so a
    malformed element rejects the whole frame.
    """
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as err:
        raise TrackerProtocolError("Frame is not valid JSON") from err
    if not isinstance(payload, list):
        raise TrackerProtocolError(
            f"Expected array of packets, got {type(payload).__name__}"
        )
    return [decode_packet(element) for element in payload]


def encode_packet(packet: ClientPacket) -> dict[str, Any]:
    """Encode a client packet into its wire object."""
    return packet.to_dict()


def decode_client_packet(data: Mapping[str, Any]) -> ClientPacket:
    """Decode a client packet object (used by tooling and tests)."""
    packet_cls = CLIENT_PACKET_TYPES.get(str(data.get("cmd")))
    if packet_cls is None:
        raise TrackerProtocolError(f"Unknown client packet: {data.get('cmd')!r}")
    packet: ClientPacket = packet_cls.from_dict(data)
    return packet


def build_frame(packet: ClientPacket) -> str:
    """Wrap one client packet in a one-element array frame."""
    return json.dumps([encode_packet(packet)])
