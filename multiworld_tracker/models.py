"""Session aggregate for a tracked multiworld room.

The reconciler owns every instance in this module. Readers get deep copies
through ``SessionReconciler.snapshot()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import uuid4


class HintImportance(Enum):
    """Hint importance tiers (ordered)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    def __lt__(self, other: HintImportance) -> bool:
        order = [HintImportance.LOW, HintImportance.MEDIUM, HintImportance.HIGH]
        return order.index(self) < order.index(other)

    def __le__(self, other: HintImportance) -> bool:
        return self == other or self < other


def game_id_for_slot(slot: int) -> str:
    """Stable game identifier derived from a slot number."""
    return f"game-{slot}"


@dataclass
class Location:
    """A location in one game's location namespace.

    Attributes:
        location_id: Numeric identifier scoped to the owning game.
        name: Resolved name, or the raw identifier while unresolved.
        game_id: Owning game.
        in_logic: Reachability flag supplied from outside the tracker.
        found_by_game_id: Game that checked this location, once found.
        found_at: When the location was first seen as checked.
        item_name: Scouted item name, if the location was scouted.
        item_owner_game_id: Game the scouted item belongs to.
    """

    location_id: int
    name: str
    game_id: str
    in_logic: bool = False
    found_by_game_id: str | None = None
    found_at: datetime | None = None
    item_id: int | None = None
    item_name: str | None = None
    item_owner_game_id: str | None = None
    item_flags: int = 0

    @property
    def id(self) -> str:
        return f"{self.game_id}:loc-{self.location_id}"

    @property
    def found(self) -> bool:
        return self.found_at is not None


@dataclass
class Item:
    """One delivery of an item to a game.

    ``owning_game_id`` is the game the item belongs to (its destination) and
    ``holder_game_id`` the game whose location held it.
    """

    item_id: int
    name: str
    owning_game_id: str
    holder_game_id: str
    found_at: datetime
    location_id: int | None = None
    location_name: str | None = None
    flags: int = 0
    index: int | None = None
    id: str = field(default_factory=lambda: str(uuid4()))


@dataclass
class Hint:
    """A clue about where one game's item sits in another game."""

    text: str
    sender_game_id: str
    target_game_id: str
    importance: HintImportance
    found_at: datetime
    item_id: int = 0
    location_id: int = 0
    found: bool = False
    entrance: str = ""
    id: str = field(default_factory=lambda: str(uuid4()))


@dataclass
class Game:
    """One playable slot and everything reconciled for it."""

    id: str
    slot: int
    name: str
    player_name: str
    alias: str
    locations: list[Location] = field(default_factory=lambda: [])
    items: list[Item] = field(default_factory=lambda: [])
    hints: list[Hint] = field(default_factory=lambda: [])

    def location(self, location_id: int) -> Location | None:
        for location in self.locations:
            if location.location_id == location_id:
                return location
        return None


@dataclass
class Session:
    """Root aggregate: one room and its games in slot discovery order."""

    room_name: str = ""
    games: list[Game] = field(default_factory=lambda: [])
    team: int = 0
    slot: int | None = None
    hint_points: int = 0
    hint_cost: int = 0
    id: str = field(default_factory=lambda: str(uuid4()))

    def game(self, game_id: str) -> Game | None:
        for game in self.games:
            if game.id == game_id:
                return game
        return None

    def game_for_slot(self, slot: int) -> Game | None:
        return self.game(game_id_for_slot(slot))
