"""Tests for SessionReconciler folds."""

from __future__ import annotations

import itertools
from datetime import UTC, datetime

import pytest

from multiworld_tracker.models import HintImportance
from multiworld_tracker.protocol import (
    ConnectedPacket,
    DataPackagePacket,
    GamePackage,
    ItemFlags,
    JSONMessagePart,
    LocationInfoPacket,
    NetworkItem,
    NetworkPlayer,
    NetworkSlot,
    NetworkVersion,
    PrintJSONPacket,
    ReceivedItemsPacket,
    RetrievedPacket,
    RoomInfoPacket,
    RoomUpdatePacket,
    SetReplyPacket,
    SlotType,
)
from multiworld_tracker.reconciler import (
    SessionReconciler,
    hint_importance,
    hint_storage_key,
)

NOW = datetime(2026, 1, 1, tzinfo=UTC)


def _reconciler() -> SessionReconciler:
    return SessionReconciler(clock=lambda: NOW)


def _room_info(seed_name: str = "abc") -> RoomInfoPacket:
    return RoomInfoPacket(
        version=NetworkVersion(0, 4, 6),
        seed_name=seed_name,
        hint_cost=10,
        games=("Alpha", "Beta"),
    )


def _connected(
    *,
    missing: tuple[int, ...] = (1001, 1002),
    checked: tuple[int, ...] = (1000,),
    slot: int = 1,
) -> ConnectedPacket:
    return ConnectedPacket(
        slot=slot,
        team=0,
        players=(
            NetworkPlayer(team=0, slot=1, alias="Ann", name="P1"),
            NetworkPlayer(team=0, slot=2, alias="P2", name="P2"),
        ),
        slot_info={
            1: NetworkSlot(name="P1", game="Alpha"),
            2: NetworkSlot(name="P2", game="Beta"),
            3: NetworkSlot(
                name="Everyone", game="Alpha", type=SlotType.GROUP, group_members=(1, 2)
            ),
        },
        missing_locations=missing,
        checked_locations=checked,
        hint_points=5,
    )


def _data_package() -> DataPackagePacket:
    return DataPackagePacket(
        games={
            "Alpha": GamePackage(
                item_name_to_id={"Sword": 1, "Shield": 2},
                location_name_to_id={"Chest": 1000, "Cave": 1001, "Tower": 1002},
                checksum="a1",
            ),
            "Beta": GamePackage(
                item_name_to_id={"Hookshot": 10},
                location_name_to_id={"Shop": 2000},
                checksum="b1",
            ),
            "Archipelago": GamePackage(
                item_name_to_id={"Nothing": -1},
                location_name_to_id={"Cheat Console": -1, "Server": -2},
                checksum="ap",
            ),
        }
    )


def _received(index: int = 0) -> ReceivedItemsPacket:
    # Shield from P1's Cave, Sword from P2's Shop
    return ReceivedItemsPacket(
        index=index,
        items=(
            NetworkItem(item=2, location=1001, player=1),
            NetworkItem(item=1, location=2000, player=2, flags=ItemFlags.PROGRESSION),
        ),
    )


def _item_send(receiving: int = 2, location: int = 1002) -> PrintJSONPacket:
    return PrintJSONPacket(
        data=(JSONMessagePart(text="P1 sent Hookshot to P2"),),
        type="ItemSend",
        receiving=receiving,
        item=NetworkItem(item=10, location=location, player=1),
    )


def _hint_record(**overrides):
    record = {
        "receiving_player": 1,
        "finding_player": 2,
        "location": 2000,
        "item": 1,
        "found": False,
        "entrance": "",
        "item_flags": int(ItemFlags.PROGRESSION),
    }
    record.update(overrides)
    return record


class TestRoster:
    """Tests for game roster derivation."""

    def test_groups_are_excluded(self):
        """Test group slots never become games."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())

        session = reconciler.session
        assert [game.id for game in session.games] == ["game-1", "game-2"]
        assert [game.player_name for game in session.games] == ["P1", "P2"]
        assert session.slot == 1
        assert session.hint_points == 5

    def test_own_locations_are_tracked(self):
        """Test the connected slot's location lists are applied."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())

        own = reconciler.session.games[0]
        assert sorted(loc.location_id for loc in own.locations) == [1000, 1001, 1002]
        assert [loc.location_id for loc in own.locations if loc.found] == [1000]
        found = own.location(1000)
        assert found is not None
        assert found.found_by_game_id == "game-1"
        assert found.found_at == NOW

    def test_connected_is_idempotent(self):
        """Test re-applying Connected changes nothing."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        before = reconciler.snapshot()

        reconciler.fold_connected(_connected())

        assert reconciler.snapshot() == before

    def test_new_seed_starts_new_session(self):
        """Test a different seed resets the session once Connected arrives."""
        reconciler = _reconciler()
        reconciler.fold_room_info(_room_info("abc"))
        reconciler.fold_connected(_connected())
        reconciler.fold_received_items(_received())
        reconciler.fold_room_info(_room_info("abc"))
        assert len(reconciler.session.games) == 2

        reconciler.fold_room_info(_room_info("xyz"))

        assert reconciler.session.room_name == "abc"
        assert len(reconciler.session.games[0].items) == 2

        reconciler.fold_connected(_connected())

        assert reconciler.session.room_name == "xyz"
        assert [game.id for game in reconciler.session.games] == ["game-1", "game-2"]
        assert all(not game.items for game in reconciler.session.games)

    def test_room_info_alone_keeps_session(self):
        """Test an unanswered RoomInfo for another seed changes nothing."""
        reconciler = _reconciler()
        reconciler.fold_room_info(_room_info("abc"))
        reconciler.fold_connected(_connected())
        reconciler.fold_received_items(_received())
        before = reconciler.snapshot()

        reconciler.fold_room_info(_room_info("xyz"))

        assert reconciler.snapshot() == before

    def test_returning_to_same_seed_cancels_reset(self):
        """Test a RoomInfo for the current seed drops a pending room change."""
        reconciler = _reconciler()
        reconciler.fold_room_info(_room_info("abc"))
        reconciler.fold_connected(_connected())
        reconciler.fold_received_items(_received())

        reconciler.fold_room_info(_room_info("xyz"))
        reconciler.fold_room_info(_room_info("abc"))
        reconciler.fold_connected(_connected())

        assert reconciler.session.room_name == "abc"
        assert len(reconciler.session.games[0].items) == 2

    def test_own_slot_must_be_a_game(self):
        """Test connecting as a group slot reports once and skips locations."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected(slot=3))
        reconciler.fold_connected(_connected(slot=3))

        assert len(reconciler.diagnostics) == 1
        assert all(not game.locations for game in reconciler.session.games)


class TestLocations:
    """Tests for location state folds."""

    def test_room_update_without_lists_keeps_locations(self):
        """Test a points-only RoomUpdate keeps checked locations."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())

        reconciler.fold_room_update(RoomUpdatePacket(hint_points=12))

        session = reconciler.session
        assert session.hint_points == 12
        chest = session.games[0].location(1000)
        assert chest is not None and chest.found

    def test_checked_wins_over_missing(self):
        """Test a location listed as missing after a check stays found."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())

        reconciler.fold_room_update(
            RoomUpdatePacket(checked_locations=(1001,), missing_locations=(1000, 1001))
        )

        own = reconciler.session.games[0]
        assert {loc.location_id for loc in own.locations if loc.found} == {1000, 1001}

    def test_room_update_aliases(self):
        """Test alias changes apply to same-team players only."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())

        reconciler.fold_room_update(
            RoomUpdatePacket(
                players=(
                    NetworkPlayer(team=0, slot=2, alias="Bea", name="P2"),
                    NetworkPlayer(team=1, slot=1, alias="Other", name="P1"),
                )
            )
        )

        assert [game.alias for game in reconciler.session.games] == ["Ann", "Bea"]

    def test_location_info_attaches_scouted_item(self):
        """Test scouts attach item details without marking found."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        reconciler.fold_data_package(_data_package())

        updated = reconciler.fold_location_info(
            LocationInfoPacket(
                locations=(
                    NetworkItem(item=10, location=1002, player=2),
                    NetworkItem(item=10, location=9999, player=2),
                )
            )
        )

        assert updated == 1
        tower = reconciler.session.games[0].location(1002)
        assert tower is not None
        assert tower.item_name == "Hookshot"
        assert tower.item_owner_game_id == "game-2"
        assert not tower.found

    def test_set_in_logic(self):
        """Test external reachability flags are applied."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())

        assert reconciler.set_in_logic("game-1", [1001, 1002, 4242]) == 2
        assert reconciler.set_in_logic("game-1", [1001]) == 0

        cave = reconciler.session.games[0].location(1001)
        assert cave is not None and cave.in_logic


class TestItems:
    """Tests for item folds."""

    def test_received_items(self):
        """Test received items land on the connected game."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        reconciler.fold_data_package(_data_package())

        assert reconciler.fold_received_items(_received()) == 2

        own = reconciler.session.games[0]
        assert [item.name for item in own.items] == ["Shield", "Sword"]
        sword = own.items[1]
        assert sword.owning_game_id == "game-1"
        assert sword.holder_game_id == "game-2"
        assert sword.location_name == "Shop"
        assert sword.flags == ItemFlags.PROGRESSION

    def test_received_items_marks_finder_location(self):
        """Test the finder's location is marked found."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        reconciler.fold_received_items(_received())

        cave = reconciler.session.games[0].location(1001)
        shop = reconciler.session.games[1].location(2000)
        assert cave is not None and cave.found
        assert shop is not None and shop.found_by_game_id == "game-2"

    def test_received_items_is_idempotent(self):
        """Test replayed deliveries are not duplicated."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        reconciler.fold_received_items(_received())
        before = reconciler.snapshot()

        assert reconciler.fold_received_items(_received()) == 0
        assert reconciler.fold_received_items(_received(index=5)) == 0

        assert reconciler.snapshot() == before

    def test_server_items_are_kept_per_index(self):
        """Test location-less deliveries are distinguished by index."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        gift = ReceivedItemsPacket(
            index=0, items=(NetworkItem(item=1, location=-2, player=0),)
        )

        reconciler.fold_received_items(gift)
        reconciler.fold_received_items(gift)
        reconciler.fold_received_items(
            ReceivedItemsPacket(index=1, items=gift.items)
        )

        own = reconciler.session.games[0]
        assert [item.index for item in own.items] == [0, 1]
        assert reconciler.diagnostics == []

    def test_items_before_connected_are_reported(self):
        """Test items without an established slot are discarded once."""
        reconciler = _reconciler()

        assert reconciler.fold_received_items(_received()) == 0
        assert reconciler.fold_received_items(_received()) == 0

        assert len(reconciler.diagnostics) == 1

    def test_item_send_between_other_games(self):
        """Test ItemSend adds the item to the receiver and marks the finder."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        reconciler.fold_data_package(_data_package())

        reconciler.fold_print_json(_item_send())
        reconciler.fold_print_json(_item_send())

        p1, p2 = reconciler.session.games
        assert [item.name for item in p2.items] == ["Hookshot"]
        assert p2.items[0].location_name == "Tower"
        tower = p1.location(1002)
        assert tower is not None and tower.found_by_game_id == "game-1"

    def test_item_send_to_unknown_slot(self):
        """Test references to unknown slots are discarded and reported once."""
        reconciler = _reconciler()
        reported: list[str] = []
        reconciler.on_diagnostic(reported.append)
        reconciler.fold_connected(_connected())

        reconciler.fold_print_json(_item_send(receiving=9))
        reconciler.fold_print_json(_item_send(receiving=9, location=1001))

        assert len(reported) == 1
        assert "9" in reported[0]
        assert all(not game.items for game in reconciler.session.games)

    def test_item_from_unknown_finder_is_reported(self):
        """Test an item found in an unknown slot is kept and reported once."""
        reconciler = _reconciler()
        reported: list[str] = []
        reconciler.on_diagnostic(reported.append)
        reconciler.fold_connected(_connected())
        stray = ReceivedItemsPacket(
            index=0,
            items=(
                NetworkItem(item=1, location=3000, player=9),
                NetworkItem(item=2, location=3001, player=9),
            ),
        )

        assert reconciler.fold_received_items(stray) == 2
        reconciler.fold_received_items(stray)

        assert len(reported) == 1
        assert "unknown slot 9" in reported[0]
        own = reconciler.session.games[0]
        assert [item.item_id for item in own.items] == [1, 2]
        for game in reconciler.session.games:
            assert all(loc.location_id < 3000 for loc in game.locations)

    def test_item_games_are_exclusive(self):
        """Test every item appears under exactly one game."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        reconciler.fold_received_items(_received())
        reconciler.fold_print_json(_item_send())

        ids = [item.id for game in reconciler.session.games for item in game.items]
        assert len(ids) == len(set(ids)) == 3


class TestHints:
    """Tests for hint folds."""

    def test_retrieved_hints(self):
        """Test hints from data storage are rendered and deduplicated."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        reconciler.fold_data_package(_data_package())
        key = hint_storage_key(0, 1)

        added = reconciler.fold_retrieved(RetrievedPacket(keys={key: [_hint_record()]}))
        again = reconciler.fold_set_reply(
            SetReplyPacket(key=key, value=[_hint_record()])
        )

        assert (added, again) == (1, 0)
        hints = reconciler.session.games[0].hints
        assert len(hints) == 1
        assert hints[0].text == "Ann's Sword is at Shop in P2's world"
        assert hints[0].importance is HintImportance.HIGH
        assert hints[0].sender_game_id == "game-2"
        assert hints[0].target_game_id == "game-1"

    def test_found_hint_with_entrance(self):
        """Test entrance and found state are shown in the text."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())

        reconciler.fold_hints([_hint_record(found=True, entrance="Back Door")])

        hint = reconciler.session.games[0].hints[0]
        assert hint.found
        assert hint.text == "Ann's 1 is at 2000 in P2's world (Back Door) (found)"

    def test_hint_from_print_json(self):
        """Test Hint messages become hints for the receiving game."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())

        reconciler.fold_print_json(
            PrintJSONPacket(
                data=(JSONMessagePart(text="[Hint]"),),
                type="Hint",
                receiving=2,
                item=NetworkItem(item=10, location=1002, player=1, flags=ItemFlags.USEFUL),
                found=False,
            )
        )

        hints = reconciler.session.games[1].hints
        assert len(hints) == 1
        assert hints[0].importance is HintImportance.MEDIUM

    def test_unrelated_storage_keys_are_ignored(self):
        """Test non-hint storage keys are not folded."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())

        assert reconciler.fold_set_reply(SetReplyPacket(key="other", value=[])) == 0
        assert reconciler.fold_retrieved(RetrievedPacket(keys={"other": 1})) == 0

    def test_malformed_hint_is_skipped(self):
        """Test malformed records are reported and skipped."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())

        assert reconciler.fold_hints(["bogus", {"item": 1}, _hint_record()]) == 1
        assert len(reconciler.diagnostics) == 1

    @pytest.mark.parametrize(
        "overrides",
        [{"item_flags": "x"}, {"status": "bad"}, {"status": True}, {"item": None}],
    )
    def test_malformed_hint_fields_do_not_abort_batch(self, overrides):
        """Test one bad field skips its record and later hints still fold."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())

        added = reconciler.fold_hints(
            [_hint_record(location=2001, **overrides), _hint_record()]
        )

        assert added == 1
        assert [hint.location_id for hint in reconciler.session.games[0].hints] == [2000]
        assert len(reconciler.diagnostics) == 1

    @pytest.mark.parametrize(
        ("flags", "status", "expected"),
        [
            (ItemFlags.PROGRESSION, None, HintImportance.HIGH),
            (ItemFlags.USEFUL, None, HintImportance.MEDIUM),
            (ItemFlags.NONE, None, HintImportance.LOW),
            (ItemFlags.NONE, 30, HintImportance.HIGH),
            (ItemFlags.PROGRESSION, 20, HintImportance.LOW),
        ],
    )
    def test_hint_importance(self, flags, status, expected):
        """Test importance tiers."""
        assert hint_importance(flags, status) is expected

    def test_importance_ordering(self):
        """Test importance tiers compare by severity."""
        assert HintImportance.LOW < HintImportance.MEDIUM < HintImportance.HIGH


class TestTranslation:
    """Tests for name resolution through the translation cache."""

    def test_names_fall_back_to_identifiers(self):
        """Test unresolved names show the raw identifier."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        reconciler.fold_received_items(_received())

        own = reconciler.session.games[0]
        assert [loc.name for loc in own.locations] == ["1001", "1002", "1000"]
        assert [item.name for item in own.items] == ["2", "1"]

    def test_data_package_re_resolves_names(self):
        """Test a later data package renames existing entities."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        reconciler.fold_received_items(_received())
        reconciler.fold_hints([_hint_record()])

        changed = reconciler.fold_data_package(_data_package())

        assert changed == ["Alpha", "Beta", "Archipelago"]
        own = reconciler.session.games[0]
        assert [loc.name for loc in own.locations] == ["Cave", "Tower", "Chest"]
        assert [item.name for item in own.items] == ["Shield", "Sword"]
        assert own.hints[0].text == "Ann's Sword is at Shop in P2's world"

    def test_repeated_data_package_is_a_cache_hit(self):
        """Test the same tables twice report no changes."""
        reconciler = _reconciler()
        reconciler.fold_data_package(_data_package())

        assert reconciler.fold_data_package(_data_package()) == []

    def test_server_slot_names(self):
        """Test slot 0 resolves through the server's own game."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        reconciler.fold_data_package(_data_package())

        reconciler.fold_received_items(
            ReceivedItemsPacket(index=0, items=(NetworkItem(item=1, location=-1, player=0),))
        )

        item = reconciler.session.games[0].items[0]
        assert item.holder_game_id == "game-0"
        assert item.location_name == "Cheat Console"

    def test_fold_game_package(self):
        """Test a single fetched package resolves names."""
        reconciler = _reconciler()
        reconciler.fold_connected(_connected())

        assert reconciler.fold_game_package(
            "Alpha",
            GamePackage(
                item_name_to_id={}, location_name_to_id={"Chest": 1000}, checksum="a1"
            ),
        )

        chest = reconciler.session.games[0].location(1000)
        assert chest is not None and chest.name == "Chest"


def _orders():
    steps = ("data_package", "received", "item_send", "room_update")
    return list(itertools.permutations(steps))


class TestOrderTolerance:
    """Tests for order independence after the roster is known."""

    @staticmethod
    def _apply(reconciler: SessionReconciler, step: str) -> None:
        if step == "data_package":
            reconciler.fold_data_package(_data_package())
        elif step == "received":
            reconciler.fold_received_items(_received())
        elif step == "item_send":
            reconciler.fold_print_json(_item_send())
        elif step == "room_update":
            reconciler.fold_room_update(
                RoomUpdatePacket(checked_locations=(1002,), hint_points=9)
            )

    @staticmethod
    def _view(reconciler: SessionReconciler):
        return [
            (
                game.id,
                sorted((loc.location_id, loc.name, loc.found) for loc in game.locations),
                sorted(
                    (item.name, item.holder_game_id, item.location_name)
                    for item in game.items
                ),
            )
            for game in reconciler.session.games
        ]

    @pytest.mark.parametrize("order", _orders())
    def test_same_result_in_any_order(self, order):
        """Test folds converge regardless of arrival order."""
        baseline = _reconciler()
        baseline.fold_connected(_connected())
        for step in _orders()[0]:
            self._apply(baseline, step)

        reconciler = _reconciler()
        reconciler.fold_connected(_connected())
        for step in order:
            self._apply(reconciler, step)

        assert self._view(reconciler) == self._view(baseline)
        assert reconciler.session.hint_points == 9
