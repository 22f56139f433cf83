"""Pytest configuration and fixtures for multiworld_tracker tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from multiworld_tracker.errors import TrackerConnectionError
from multiworld_tracker.transport.ws_client import (
    TrackerWsMessage,
    TrackerWsMessageType,
)


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_data is not None:
        response.json.return_value = json_data
    if text_data is not None:
        response.text.return_value = text_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class FakeTransport:
    """Scripted stand-in for ``TrackerWsClient``.

    Yields the given text frames in order, sets ``drained`` once they have all
    been consumed, then blocks until closed locally or dropped by ``drop()``.
    """

    def __init__(
        self,
        frames: list[Any] | None = None,
        *,
        fail_with: Exception | None = None,
    ) -> None:
        self.frames = [f if isinstance(f, str) else json.dumps(f) for f in frames or []]
        self.fail_with = fail_with
        self.sent: list[str] = []
        self.url: str | None = None
        self.closed = False
        self.close_code: int | None = None
        self.close_reason = ""
        self.drained = asyncio.Event()
        self._release = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self.url is not None and not self.closed

    async def connect(
        self, url: str, *, ping_interval: int | None = 20, timeout: float = 15.0
    ) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.url = url

    async def close(self) -> None:
        self.closed = True
        self.close_code = 1000
        self._release.set()

    def drop(self, code: int, reason: str = "") -> None:
        """Simulate the server closing the connection."""
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._release.set()

    async def send_text(self, text: str) -> None:
        if not self.is_open:
            raise TrackerConnectionError("WebSocket is not connected")
        self.sent.append(text)

    def __aiter__(self) -> AsyncIterator[TrackerWsMessage]:
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[TrackerWsMessage]:
        for frame in self.frames:
            yield TrackerWsMessage(TrackerWsMessageType.TEXT, frame)
        self.drained.set()
        await self._release.wait()
        yield TrackerWsMessage(
            TrackerWsMessageType.CLOSED,
            {"code": self.close_code, "reason": self.close_reason},
        )

    @property
    def sent_packets(self) -> list[dict[str, Any]]:
        return [packet for frame in self.sent for packet in json.loads(frame)]

    @property
    def sent_cmds(self) -> list[str]:
        return [packet["cmd"] for packet in self.sent_packets]


def room_info_frame(
    seed_name: str = "abc",
    *,
    version_class: str = "Version",
    games: list[str] | None = None,
) -> list[dict[str, Any]]:
    return [
        {
            "cmd": "RoomInfo",
            "version": {"major": 0, "minor": 4, "build": 6, "class": version_class},
            "generator_version": {"major": 0, "minor": 4, "build": 6, "class": "Version"},
            "tags": ["AP"],
            "password": False,
            "permissions": {"release": 1, "collect": 1, "remaining": 0},
            "hint_cost": 10,
            "location_check_points": 1,
            "games": games if games is not None else ["Alpha", "Beta"],
            "datapackage_checksums": {"Alpha": "a1", "Beta": "b1"},
            "seed_name": seed_name,
            "time": 1700000000.0,
        }
    ]


def connected_frame(slot: int = 1) -> list[dict[str, Any]]:
    return [
        {
            "cmd": "Connected",
            "team": 0,
            "slot": slot,
            "players": [
                {"team": 0, "slot": 1, "alias": "Ann", "name": "P1"},
                {"team": 0, "slot": 2, "alias": "P2", "name": "P2"},
            ],
            "missing_locations": [1001, 1002],
            "checked_locations": [1000],
            "slot_data": {},
            "slot_info": {
                "1": {"name": "P1", "game": "Alpha", "type": 1, "group_members": []},
                "2": {"name": "P2", "game": "Beta", "type": 1, "group_members": []},
                "3": {
                    "name": "Everyone",
                    "game": "Alpha",
                    "type": 2,
                    "group_members": [1, 2],
                },
            },
            "hint_points": 5,
        }
    ]


def data_package_frame() -> list[dict[str, Any]]:
    return [
        {
            "cmd": "DataPackage",
            "data": {
                "games": {
                    "Alpha": {
                        "item_name_to_id": {"Sword": 1, "Shield": 2},
                        "location_name_to_id": {
                            "Chest": 1000,
                            "Cave": 1001,
                            "Tower": 1002,
                        },
                        "checksum": "a1",
                    },
                    "Beta": {
                        "item_name_to_id": {"Hookshot": 10},
                        "location_name_to_id": {"Shop": 2000},
                        "checksum": "b1",
                    },
                }
            },
        }
    ]


@pytest.fixture
def handshake_frames() -> list[list[dict[str, Any]]]:
    return [room_info_frame(), connected_frame(), data_package_frame()]
