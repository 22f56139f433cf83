"""Session reconciliation: folds server packets into one ``Session``.

Each supported packet kind has exactly one fold operation. Folds are
idempotent (re-applying the same payload changes nothing) and tolerate
arbitrary relative order across unrelated games, locations and items:

- Games are keyed by slot, so repeated roster folds update in place.
- Locations transition to found once; later checks are no-ops.
- Items and hints are append-only and deduplicated by a delivery key.
- Names fall back to raw identifiers and are re-resolved whenever a data
  package changes the translation cache.

References to slots that are not established yet are discarded and
reported once through ``diagnostics``; they never raise.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from .models import (
    Game,
    Hint,
    HintImportance,
    Item,
    Location,
    Session,
    game_id_for_slot,
)
from .protocol import (
    ConnectedPacket,
    DataPackagePacket,
    GamePackage,
    HintStatus,
    ItemFlags,
    LocationInfoPacket,
    PrintJSONPacket,
    ReceivedItemsPacket,
    RetrievedPacket,
    RoomInfoPacket,
    RoomUpdatePacket,
    SetReplyPacket,
)
from .translation import SERVER_GAME, TranslationCache

_LOGGER = logging.getLogger(__name__)

SERVER_SLOT = 0
HINT_STORAGE_PREFIX = "_read_hints_"

_ItemKey = tuple[int, ...]
_HintKey = tuple[int, int, int, int]


def hint_storage_key(team: int, slot: int) -> str:
    """Data storage key under which the server keeps a slot's hints."""
    return f"{HINT_STORAGE_PREFIX}{team}_{slot}"


def hint_importance(flags: int, status: int | None = None) -> HintImportance:
    """Map hint status and item flags to an importance tier."""
    if status == HintStatus.PRIORITY:
        return HintImportance.HIGH
    if status == HintStatus.AVOID:
        return HintImportance.LOW
    if flags & ItemFlags.PROGRESSION:
        return HintImportance.HIGH
    if flags & ItemFlags.USEFUL:
        return HintImportance.MEDIUM
    return HintImportance.LOW


class SessionReconciler:
    """Owns the canonical ``Session`` and applies packet folds to it.

    Usage:
        reconciler = SessionReconciler()
        reconciler.fold_connected(connected_packet)
        reconciler.fold_data_package(data_package_packet)
        view = reconciler.snapshot()
    """

    def __init__(
        self,
        session: Session | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session = session if session is not None else Session()
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._translations = TranslationCache()

        # Slot -> game name, groups and the server slot included
        self._slot_games: dict[int, str] = {SERVER_SLOT: SERVER_GAME}
        self._locations: dict[tuple[str, int], Location] = {}
        self._item_keys: dict[str, set[_ItemKey]] = {}
        self._hint_keys: dict[str, set[_HintKey]] = {}
        self._reported: set[str] = set()
        self._diagnostic_callback: Callable[[str], None] | None = None
        # RoomInfo for another seed, applied once that room accepts us
        self._pending_room: RoomInfoPacket | None = None

        self.diagnostics: list[str] = []
        self._index_session()

    # -------------------------------------------------------------------------
    # Public API: Read access
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        """Live aggregate. Mutated only by this reconciler."""
        return self._session

    @property
    def translations(self) -> TranslationCache:
        return self._translations

    def snapshot(self) -> Session:
        """Return a deep copy safe to read while folds continue."""
        return copy.deepcopy(self._session)

    def on_diagnostic(self, callback: Callable[[str], None]) -> None:
        """Register callback for first-time reconciliation diagnostics."""
        self._diagnostic_callback = callback

    def reset(self) -> None:
        """Start a fresh session, keeping the translation cache."""
        _LOGGER.info("Starting a new session (previous room %r)", self._session.room_name)
        self._session = Session()
        self._slot_games = {SERVER_SLOT: SERVER_GAME}
        self._locations.clear()
        self._item_keys.clear()
        self._hint_keys.clear()
        self._reported.clear()
        self._pending_room = None

    # -------------------------------------------------------------------------
    # Public API: Folds
    # -------------------------------------------------------------------------

    def fold_room_info(self, packet: RoomInfoPacket) -> None:
        """Record the room.

        A different seed starts a new session, but only once the server
        accepts the connection (see ``fold_connected``). A refused attempt
        against another room leaves the current session untouched.
        """
        if self._session.room_name and self._session.room_name != packet.seed_name:
            _LOGGER.info(
                "Room %r announced; keeping %r until connected",
                packet.seed_name,
                self._session.room_name,
            )
            self._pending_room = packet
            return
        self._pending_room = None
        self._session.room_name = packet.seed_name
        self._session.hint_cost = packet.hint_cost

    def fold_connected(self, packet: ConnectedPacket) -> None:
        """Derive the game roster from the slot table.

        Group slots never become games. Existing games for slots still in the
        table keep their locations, items and hints.
        """
        pending, self._pending_room = self._pending_room, None
        if pending is not None:
            self.reset()
            self._session.room_name = pending.seed_name
            self._session.hint_cost = pending.hint_cost

        session = self._session
        session.team = packet.team
        session.slot = packet.slot
        if packet.hint_points is not None:
            session.hint_points = packet.hint_points

        for slot, info in packet.slot_info.items():
            self._slot_games[slot] = info.game

        aliases = {p.slot: p.alias for p in packet.players if p.team == packet.team}
        roster: list[str] = []

        for slot, info in packet.slot_info.items():
            if info.is_group:
                continue
            game_id = game_id_for_slot(slot)
            roster.append(game_id)
            alias = aliases.get(slot, info.name)

            game = session.game(game_id)
            if game is None:
                game = Game(
                    id=game_id,
                    slot=slot,
                    name=info.game,
                    player_name=info.name,
                    alias=alias,
                )
                session.games.append(game)
                _LOGGER.debug("Game added: %s (%s, %s)", game_id, info.game, info.name)
            else:
                game.name = info.game
                game.player_name = info.name
                game.alias = alias

        stale = [game for game in session.games if game.id not in roster]
        for game in stale:
            _LOGGER.info("Dropping game %s: slot no longer in the slot table", game.id)
            self._forget_game(game)

        own = self._own_game()
        if own is None:
            self._report(
                f"own-slot-{packet.slot}",
                f"Connected slot {packet.slot} is not a playable game; "
                "location state is not tracked",
            )
            return
        self._apply_location_lists(
            own, packet.missing_locations, packet.checked_locations
        )

    def fold_data_package(self, packet: DataPackagePacket) -> list[str]:
        """Merge translation tables; re-resolve names if any table changed.

        Returns:
            Names of the games whose tables changed.
        """
        changed = self._translations.merge_all(packet.games)
        if changed:
            self._refresh_names()
        return changed

    def fold_game_package(self, game: str, package: GamePackage) -> bool:
        """Merge a single game's package, e.g. one fetched from the web host."""
        changed = self._translations.merge(game, package)
        if changed:
            self._refresh_names()
        return changed

    def fold_received_items(self, packet: ReceivedItemsPacket) -> int:
        """Append items delivered to the connected slot.

        Returns:
            Number of new item records.
        """
        own = self._own_game()
        if own is None:
            self._report(
                "received-items-without-slot",
                "Received items before the connected slot was established; "
                "discarding",
            )
            return 0

        added = 0
        for offset, entry in enumerate(packet.items):
            if self._append_item(
                own,
                item_id=entry.item,
                location_id=entry.location,
                finder_slot=entry.player,
                flags=int(entry.flags),
                index=packet.index + offset,
            ):
                added += 1
            self._mark_finder_location(entry.player, entry.location)

        if added:
            _LOGGER.debug("Received %d new item(s) for %s", added, own.id)
        return added

    def fold_location_info(self, packet: LocationInfoPacket) -> int:
        """Attach scouted contents to known locations of the connected slot.

        Does not mark anything found.
        """
        own = self._own_game()
        if own is None:
            self._report(
                "location-info-without-slot",
                "Scouted locations arrived before the connected slot was "
                "established; discarding",
            )
            return 0

        updated = 0
        for entry in packet.locations:
            location = self._locations.get((own.id, entry.location))
            if location is None:
                _LOGGER.debug("Scouted unknown location %d; ignoring", entry.location)
                continue
            owner_id = game_id_for_slot(entry.player)
            location.item_id = entry.item
            location.item_owner_game_id = owner_id
            location.item_flags = int(entry.flags)
            location.item_name = self._item_name(owner_id, entry.item)
            updated += 1
        return updated

    def fold_room_update(self, packet: RoomUpdatePacket) -> None:
        """Apply only the fields present in this update."""
        session = self._session
        if packet.hint_points is not None:
            session.hint_points = packet.hint_points
        if packet.hint_cost is not None:
            session.hint_cost = packet.hint_cost

        if packet.players is not None:
            for player in packet.players:
                if player.team != session.team:
                    continue
                game = session.game_for_slot(player.slot)
                if game is not None:
                    game.alias = player.alias

        if packet.checked_locations is None and packet.missing_locations is None:
            return

        own = self._own_game()
        if own is None:
            self._report(
                "room-update-without-slot",
                "Location update arrived before the connected slot was "
                "established; discarding",
            )
            return
        self._apply_location_lists(
            own, packet.missing_locations or (), packet.checked_locations or ()
        )

    def fold_print_json(self, packet: PrintJSONPacket) -> None:
        """Fold item sends and hints announced as PrintJSON messages."""
        if packet.item is None or packet.receiving is None:
            return

        entry = packet.item
        if packet.type == "ItemSend":
            receiver = self._session.game_for_slot(packet.receiving)
            if receiver is None:
                self._report(
                    f"unknown-slot-{packet.receiving}",
                    f"Item sent to unknown slot {packet.receiving}; discarding",
                )
                return
            if entry.location > 0:
                self._append_item(
                    receiver,
                    item_id=entry.item,
                    location_id=entry.location,
                    finder_slot=entry.player,
                    flags=int(entry.flags),
                    index=None,
                )
            self._mark_finder_location(entry.player, entry.location)
        elif packet.type == "Hint":
            self._append_hint(
                receiving=packet.receiving,
                finding=entry.player,
                location_id=entry.location,
                item_id=entry.item,
                flags=int(entry.flags),
                found=bool(packet.found),
            )

    def fold_hints(self, hints: Sequence[Any]) -> int:
        """Fold server-side hint records from data storage.

        Returns:
            Number of new hints.
        """
        added = 0
        for raw in hints:
            if not isinstance(raw, Mapping):
                self._report("malformed-hint", "Skipping malformed hint record")
                continue
            try:
                receiving = int(raw["receiving_player"])
                finding = int(raw["finding_player"])
                location_id = int(raw["location"])
                item_id = int(raw["item"])
                flags = int(raw.get("item_flags", 0) or 0)
                status = raw.get("status")
                if status is not None and (
                    isinstance(status, bool) or not isinstance(status, int)
                ):
                    raise TypeError(f"hint status {status!r}")
            except (KeyError, TypeError, ValueError):
                self._report("malformed-hint", "Skipping malformed hint record")
                continue
            if self._append_hint(
                receiving=receiving,
                finding=finding,
                location_id=location_id,
                item_id=item_id,
                flags=flags,
                found=bool(raw.get("found", False)),
                status=status,
                entrance=str(raw.get("entrance", "") or ""),
            ):
                added += 1
        return added

    def fold_retrieved(self, packet: RetrievedPacket) -> int:
        added = 0
        for key, value in packet.keys.items():
            if key.startswith(HINT_STORAGE_PREFIX) and isinstance(value, list):
                added += self.fold_hints(value)
        return added

    def fold_set_reply(self, packet: SetReplyPacket) -> int:
        if packet.key.startswith(HINT_STORAGE_PREFIX) and isinstance(
            packet.value, list
        ):
            return self.fold_hints(packet.value)
        return 0

    def set_in_logic(
        self, game_id: str, location_ids: Sequence[int], in_logic: bool = True
    ) -> int:
        """Apply externally computed reachability to a game's locations."""
        game = self._session.game(game_id)
        if game is None:
            self._report(
                f"unknown-game-{game_id}",
                f"In-logic update for unknown game {game_id}; discarding",
            )
            return 0
        updated = 0
        for location_id in location_ids:
            location = self._locations.get((game.id, location_id))
            if location is not None and location.in_logic != in_logic:
                location.in_logic = in_logic
                updated += 1
        return updated

    # -------------------------------------------------------------------------
    # Internal: Entities
    # -------------------------------------------------------------------------

    def _own_game(self) -> Game | None:
        if self._session.slot is None:
            return None
        return self._session.game_for_slot(self._session.slot)

    def _index_session(self) -> None:
        for game in self._session.games:
            self._slot_games.setdefault(game.slot, game.name)
            for location in game.locations:
                self._locations[(game.id, location.location_id)] = location

    def _forget_game(self, game: Game) -> None:
        self._session.games.remove(game)
        self._item_keys.pop(game.id, None)
        self._hint_keys.pop(game.id, None)
        for location in game.locations:
            self._locations.pop((game.id, location.location_id), None)

    def _ensure_location(self, game: Game, location_id: int) -> Location:
        location = self._locations.get((game.id, location_id))
        if location is None:
            location = Location(
                location_id=location_id,
                name=self._location_name(game.id, location_id),
                game_id=game.id,
            )
            game.locations.append(location)
            self._locations[(game.id, location_id)] = location
        return location

    def _mark_found(self, location: Location, finder_id: str) -> bool:
        if location.found:
            return False
        location.found_by_game_id = finder_id
        location.found_at = self._clock()
        return True

    def _mark_finder_location(self, finder_slot: int, location_id: int) -> None:
        if location_id <= 0:
            return
        finder = self._session.game_for_slot(finder_slot)
        if finder is None:
            # Group slots are known but own no locations
            self._check_slot(finder_slot, f"Location {location_id} found by")
            return
        self._mark_found(self._ensure_location(finder, location_id), finder.id)

    def _check_slot(self, slot: int, context: str) -> None:
        if slot not in self._slot_games:
            self._report(f"unknown-slot-{slot}", f"{context} unknown slot {slot}")

    def _apply_location_lists(
        self, game: Game, missing: Sequence[int], checked: Sequence[int]
    ) -> None:
        # Checked wins over missing; found never reverts.
        for location_id in missing:
            self._ensure_location(game, location_id)
        found = 0
        for location_id in checked:
            if self._mark_found(self._ensure_location(game, location_id), game.id):
                found += 1
        if found:
            _LOGGER.debug("%s: %d location(s) newly checked", game.id, found)

    def _append_item(
        self,
        receiver: Game,
        *,
        item_id: int,
        location_id: int,
        finder_slot: int,
        flags: int,
        index: int | None,
    ) -> bool:
        key: _ItemKey
        if location_id > 0:
            key = (item_id, location_id, finder_slot)
        else:
            # Server and starting-inventory items share location ids
            key = (item_id, location_id, finder_slot, -1 if index is None else index)

        keys = self._item_keys.setdefault(receiver.id, set())
        if key in keys:
            return False
        keys.add(key)

        # The item itself is real; only the holder reference is unresolved
        self._check_slot(finder_slot, f"Item {item_id} found by")
        holder_id = game_id_for_slot(finder_slot)
        receiver.items.append(
            Item(
                item_id=item_id,
                name=self._item_name(receiver.id, item_id),
                owning_game_id=receiver.id,
                holder_game_id=holder_id,
                found_at=self._clock(),
                location_id=location_id,
                location_name=self._location_name(holder_id, location_id),
                flags=flags,
                index=index,
            )
        )
        return True

    def _append_hint(
        self,
        *,
        receiving: int,
        finding: int,
        location_id: int,
        item_id: int,
        flags: int,
        found: bool,
        status: int | None = None,
        entrance: str = "",
    ) -> bool:
        target = self._session.game_for_slot(receiving)
        if target is None:
            self._report(
                f"unknown-slot-{receiving}",
                f"Hint for unknown slot {receiving}; discarding",
            )
            return False

        key: _HintKey = (receiving, finding, location_id, item_id)
        keys = self._hint_keys.setdefault(target.id, set())
        if key in keys:
            return False
        keys.add(key)

        hint = Hint(
            text="",
            sender_game_id=game_id_for_slot(finding),
            target_game_id=target.id,
            importance=hint_importance(flags, status),
            found_at=self._clock(),
            item_id=item_id,
            location_id=location_id,
            found=found or status == HintStatus.FOUND,
            entrance=entrance,
        )
        hint.text = self._render_hint(hint)
        target.hints.append(hint)
        return True

    # -------------------------------------------------------------------------
    # Internal: Names
    # -------------------------------------------------------------------------

    def _game_name(self, game_id: str) -> str | None:
        game = self._session.game(game_id)
        if game is not None:
            return game.name
        for slot, name in self._slot_games.items():
            if game_id_for_slot(slot) == game_id:
                return name
        return None

    def _item_name(self, game_id: str, item_id: int) -> str:
        name = self._translations.item_name(self._game_name(game_id), item_id)
        return name if name is not None else str(item_id)

    def _location_name(self, game_id: str, location_id: int) -> str:
        name = self._translations.location_name(self._game_name(game_id), location_id)
        return name if name is not None else str(location_id)

    def _player_name(self, game_id: str) -> str:
        game = self._session.game(game_id)
        if game is not None:
            return game.alias or game.player_name
        return game_id

    def _render_hint(self, hint: Hint) -> str:
        text = (
            f"{self._player_name(hint.target_game_id)}'s "
            f"{self._item_name(hint.target_game_id, hint.item_id)} is at "
            f"{self._location_name(hint.sender_game_id, hint.location_id)} in "
            f"{self._player_name(hint.sender_game_id)}'s world"
        )
        if hint.entrance:
            text += f" ({hint.entrance})"
        if hint.found:
            text += " (found)"
        return text

    def _refresh_names(self) -> None:
        for game in self._session.games:
            for location in game.locations:
                location.name = self._location_name(game.id, location.location_id)
                if location.item_id is not None and location.item_owner_game_id:
                    location.item_name = self._item_name(
                        location.item_owner_game_id, location.item_id
                    )
            for item in game.items:
                item.name = self._item_name(item.owning_game_id, item.item_id)
                if item.location_id is not None:
                    item.location_name = self._location_name(
                        item.holder_game_id, item.location_id
                    )
            for hint in game.hints:
                hint.text = self._render_hint(hint)

    # -------------------------------------------------------------------------
    # Internal: Diagnostics
    # -------------------------------------------------------------------------

    def _report(self, key: str, message: str) -> None:
        """Report a reconciliation problem once per key."""
        if key in self._reported:
            _LOGGER.debug("Repeated diagnostic suppressed: %s", key)
            return
        self._reported.add(key)
        self.diagnostics.append(message)
        _LOGGER.warning("Reconciliation: %s", message)
        if self._diagnostic_callback:
            try:
                self._diagnostic_callback(message)
            except Exception as err:
                _LOGGER.exception("Diagnostic callback error: %s", err)
