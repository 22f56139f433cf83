"""Connection settings and settings providers.

Settings are plain data. The coordinator asks its provider for a fresh
``ConnectionSettings`` on every connect attempt, so a file-backed provider
picks up edits without restarting.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

DEFAULT_HOST = "archipelago.gg"


class SettingsLoadError(Exception):
    """Error loading connection settings."""


@dataclass(frozen=True)
class ConnectionSettings:
    """Where and as whom to connect.

    Attributes:
        port: Server port (rooms on the public host get their own port).
        slot_name: Slot to authenticate as.
        password: Room password, if any.
        host: Server hostname.
        use_tls: Use ``wss://`` instead of ``ws://``.
        path: Optional URL path.
    """

    port: int | str = ""
    slot_name: str = ""
    password: str | None = None
    host: str = DEFAULT_HOST
    use_tls: bool = True
    path: str = ""

    @property
    def url(self) -> str:
        scheme = "wss" if self.use_tls else "ws"
        return f"{scheme}://{self.host.strip()}:{str(self.port).strip()}{self.path}"

    def validate(self) -> list[str]:
        """Return the problems that prevent a connect attempt."""
        problems: list[str] = []
        if not self.host.strip():
            problems.append("server host is required")
        if not str(self.port).strip():
            problems.append("port number is required")
        if not self.slot_name.strip():
            problems.append("slot name is required")
        return problems


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file with error handling."""
    if not path.exists():
        raise SettingsLoadError(f"File not found: {path}")
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as err:
        raise SettingsLoadError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise SettingsLoadError(f"Settings file must contain a mapping: {path}")
    return data


def load_settings(path: Path) -> ConnectionSettings:
    """Load connection settings from a YAML file.

    Expected keys: ``host``, ``port``, ``slot_name``, ``password``,
    ``use_tls``, ``path``. Unknown keys are ignored.

    Raises:
        SettingsLoadError: If the file is missing or malformed.
    """
    data = _load_yaml(path)
    return ConnectionSettings(
        port=data.get("port", ""),
        slot_name=str(data.get("slot_name", "") or ""),
        password=data.get("password") or None,
        host=str(data.get("host", DEFAULT_HOST) or DEFAULT_HOST),
        use_tls=bool(data.get("use_tls", True)),
        path=str(data.get("path", "") or ""),
    )


class StaticSettingsProvider:
    """Settings held in memory and updated in place."""

    def __init__(self, settings: ConnectionSettings | None = None) -> None:
        self._settings = settings or ConnectionSettings()

    def __call__(self) -> ConnectionSettings:
        return self._settings

    def update(self, **changes: Any) -> ConnectionSettings:
        """Apply a partial update and return the new settings."""
        self._settings = dataclasses.replace(self._settings, **changes)
        return self._settings


class FileSettingsProvider:
    """Settings re-read from a YAML file on every call."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def __call__(self) -> ConnectionSettings:
        return load_settings(self.path)
