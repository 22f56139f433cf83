"""Passive tracker client for multiworld randomizer servers."""

__version__ = "0.1.0"

from .client import (
    DEFAULT_CLIENT_VERSION,
    TRACKER_TAGS,
    ClientError,
    DisconnectEvent,
    EventChannel,
    ProtocolClient,
    TransportOpened,
)
from .config import (
    ConnectionSettings,
    FileSettingsProvider,
    SettingsLoadError,
    StaticSettingsProvider,
    load_settings,
)
from .coordinator import ConnectionCoordinator, ConnectionStatus
from .errors import (
    TrackerClientError,
    TrackerConnectionError,
    TrackerHandshakeError,
    TrackerProtocolError,
    TrackerRefusedError,
    TrackerResponseError,
    TrackerTimeout,
)
from .http import TrackerHttpClient
from .models import Game, Hint, HintImportance, Item, Location, Session
from .reconciler import SessionReconciler
from .translation import TranslationCache

__all__ = [
    "DEFAULT_CLIENT_VERSION",
    "TRACKER_TAGS",
    "ClientError",
    "ConnectionCoordinator",
    "ConnectionSettings",
    "ConnectionStatus",
    "DisconnectEvent",
    "EventChannel",
    "FileSettingsProvider",
    "Game",
    "Hint",
    "HintImportance",
    "Item",
    "Location",
    "ProtocolClient",
    "Session",
    "SessionReconciler",
    "SettingsLoadError",
    "StaticSettingsProvider",
    "TrackerClientError",
    "TrackerConnectionError",
    "TrackerHandshakeError",
    "TrackerHttpClient",
    "TrackerProtocolError",
    "TrackerRefusedError",
    "TrackerResponseError",
    "TrackerTimeout",
    "TranslationCache",
    "TransportOpened",
    "load_settings",
]
