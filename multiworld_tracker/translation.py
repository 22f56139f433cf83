"""Identifier-to-name translation tables sourced from data packages."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from .protocol import GamePackage

_LOGGER = logging.getLogger(__name__)

SERVER_GAME = "Archipelago"


@dataclass(frozen=True)
class GameTranslation:
    """Immutable name tables for one (game, version) pair."""

    game: str
    version_key: str
    item_names: Mapping[int, str] = field(default_factory=lambda: {})
    location_names: Mapping[int, str] = field(default_factory=lambda: {})

    @classmethod
    def from_package(cls, game: str, package: GamePackage) -> GameTranslation:
        return cls(
            game=game,
            version_key=package.cache_key,
            item_names={v: k for k, v in package.item_name_to_id.items()},
            location_names={v: k for k, v in package.location_name_to_id.items()},
        )


class TranslationCache:
    """Per-game translation tables keyed by game name and version.

    A package whose version matches the cached one is a cache hit and is not
    parsed again. A different version replaces the cached table.
    """

    def __init__(self) -> None:
        self._tables: dict[str, GameTranslation] = {}

    def __contains__(self, game: object) -> bool:
        return game in self._tables

    def __len__(self) -> int:
        return len(self._tables)

    def merge(self, game: str, package: GamePackage) -> bool:
        """Merge one game's package.

        Returns:
            True if the cached table changed, False on a cache hit.
        """
        cached = self._tables.get(game)
        if cached is not None and cached.version_key == package.cache_key:
            _LOGGER.debug("Translation cache hit for %s (%s)", game, cached.version_key)
            return False

        if cached is not None:
            _LOGGER.info(
                "Replacing translation table for %s: %s → %s",
                game,
                cached.version_key,
                package.cache_key,
            )
        self._tables[game] = GameTranslation.from_package(game, package)
        return True

    def merge_all(self, games: Mapping[str, GamePackage]) -> list[str]:
        """Merge several packages, returning the games whose tables changed."""
        return [game for game, package in games.items() if self.merge(game, package)]

    def get(self, game: str) -> GameTranslation | None:
        return self._tables.get(game)

    def version_of(self, game: str) -> str | None:
        table = self._tables.get(game)
        return table.version_key if table else None

    def item_name(self, game: str | None, item_id: int) -> str | None:
        table = self._tables.get(game) if game is not None else None
        if table is None:
            return None
        return table.item_names.get(item_id)

    def location_name(self, game: str | None, location_id: int) -> str | None:
        table = self._tables.get(game) if game is not None else None
        if table is None:
            return None
        return table.location_names.get(location_id)

    def clear(self) -> None:
        self._tables.clear()
