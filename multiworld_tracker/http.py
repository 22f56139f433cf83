"""HTTP client for multiworld web host endpoints."""

from __future__ import annotations

from typing import Any

import aiohttp

from .errors import (
    TrackerConnectionError,
    TrackerProtocolError,
    TrackerResponseError,
    TrackerTimeout,
)
from .protocol import GamePackage


class TrackerHttpClient:
    """HTTP client wrapper for the web host's JSON API.

    Data packages are content-addressed by checksum, so a tracker can fetch
    tables it has not cached without holding a websocket open.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        host: str,
        *,
        use_tls: bool = True,
    ) -> None:
        self._session = session
        self._host = host
        self._use_tls = use_tls

    def _url(self, path: str) -> str:
        scheme = "https" if self._use_tls else "http"
        return f"{scheme}://{self._host}{path}"

    async def fetch_datapackage(self, checksum: str) -> GamePackage:
        """Fetch one game's data package from /api/datapackage/<checksum>."""
        url = self._url(f"/api/datapackage/{checksum}")
        try:
            async with self._session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=10),
            ) as resp:
                if resp.status != 200:
                    raise TrackerResponseError(
                        resp.status, f"Data package {checksum} not available"
                    )
                data = await resp.json()
        except TimeoutError as err:
            raise TrackerTimeout("Data package request timed out") from err
        except aiohttp.ClientError as err:
            raise TrackerConnectionError("Data package request failed") from err

        package = GamePackage.from_dict(data)
        if package.checksum is None:
            package = GamePackage(
                item_name_to_id=package.item_name_to_id,
                location_name_to_id=package.location_name_to_id,
                checksum=checksum,
                version=package.version,
            )
        return package

    async def fetch_room_status(self, room_id: str) -> dict[str, Any]:
        """Fetch room status from /api/room_status/<room_id>."""
        url = self._url(f"/api/room_status/{room_id}")
        try:
            async with self._session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=5),
            ) as resp:
                if resp.status != 200:
                    raise TrackerResponseError(
                        resp.status, "Room status request failed with non-200 response"
                    )
                data = await resp.json()
        except TimeoutError as err:
            raise TrackerTimeout("Room status request timed out") from err
        except aiohttp.ClientError as err:
            raise TrackerConnectionError("Room status request failed") from err

        if not isinstance(data, dict):
            raise TrackerProtocolError("Room status must be an object")
        return data
