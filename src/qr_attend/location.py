"""Location acquisition with permission handling and tiered timeouts."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Protocol

import aiohttp

from .errors import LocationError
from .geo import is_valid_latitude, is_valid_longitude
from .models import UserLocation

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocationConfig:
    """Accuracy tier; ``timeout`` and ``maximum_age`` are in seconds."""

    accuracy: str
    timeout: float
    maximum_age: float


LOCATION_CONFIGS: Dict[str, LocationConfig] = {
    "high": LocationConfig(accuracy="high", timeout=15.0, maximum_age=10.0),
    "balanced": LocationConfig(accuracy="balanced", timeout=10.0, maximum_age=30.0),
    "low": LocationConfig(accuracy="low", timeout=5.0, maximum_age=60.0),
}


def location_config(tier: str) -> LocationConfig:
    try:
        return LOCATION_CONFIGS[tier.lower()]
    except KeyError:
        raise ValueError(f"Unknown location tier '{tier}' (expected one of {', '.join(LOCATION_CONFIGS)})") from None


class PermissionStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


class LocationBackend(Protocol):
    """Platform location API.

    ``current_position`` raises :class:`LocationError` with reason
    ``services_disabled`` or ``unavailable`` when no fix can be produced.
    """

    async def check_permission(self) -> bool:
        """Return True when permission was already granted."""

    async def request_permission(self) -> bool:
        """Prompt for permission; return True when granted."""

    async def current_position(self, accuracy: str) -> UserLocation:
        """Return a fresh position fix."""


class GeolocationProvider:
    """Wrap a :class:`LocationBackend` with a session permission cache and timeouts."""

    def __init__(
        self,
        backend: LocationBackend,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._backend = backend
        self._logger = logger or LOGGER
        self._permission: Optional[PermissionStatus] = None

    @property
    def permission(self) -> Optional[PermissionStatus]:
        return self._permission

    async def request_permission(self) -> PermissionStatus:
        """One-shot permission prompt; the answer is cached for this session."""
        self._logger.debug("Requesting location permission")
        granted = await self._backend.request_permission()
        self._permission = PermissionStatus.GRANTED if granted else PermissionStatus.DENIED
        self._logger.info("Location permission %s", self._permission.value)
        return self._permission

    async def _ensure_permission(self) -> None:
        if self._permission is PermissionStatus.GRANTED:
            return
        if await self._backend.check_permission():
            self._permission = PermissionStatus.GRANTED
            return
        if await self.request_permission() is not PermissionStatus.GRANTED:
            raise LocationError("permission_denied")

    async def get_current_location(self, config: LocationConfig = LOCATION_CONFIGS["high"]) -> UserLocation:
        """Return a position fix or raise :class:`LocationError`.

        The fix is raced against ``config.timeout``; a slow backend yields a
        ``timeout`` error instead of blocking the flow.
        """
        await self._ensure_permission()
        self._logger.debug("Getting current location (accuracy=%s, timeout=%.0fs)", config.accuracy, config.timeout)
        try:
            location = await asyncio.wait_for(
                self._backend.current_position(config.accuracy),
                timeout=config.timeout,
            )
        except asyncio.TimeoutError:
            self._logger.warning("Location fix timed out after %.0fs", config.timeout)
            raise LocationError("timeout") from None
        self._logger.info(
            "Location acquired lat=%.6f lon=%.6f accuracy=%s",
            location.latitude,
            location.longitude,
            location.accuracy,
        )
        return location


class FixedLocationBackend:
    """Backend that always reports the same coordinates."""

    def __init__(
        self,
        latitude: float,
        longitude: float,
        *,
        accuracy: Optional[float] = None,
        permission_granted: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.latitude = latitude
        self.longitude = longitude
        self.accuracy = accuracy
        self._permission_granted = permission_granted
        self._prompted = False
        self._clock = clock

    async def check_permission(self) -> bool:
        return self._permission_granted and self._prompted

    async def request_permission(self) -> bool:
        self._prompted = True
        return self._permission_granted

    async def current_position(self, accuracy: str) -> UserLocation:
        return UserLocation(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy=self.accuracy,
            timestamp=self._clock(),
        )


class IpLocationBackend:
    """Approximate position from an IP geolocation endpoint.

    The endpoint must answer with JSON carrying ``latitude``/``longitude``
    (``lat``/``lon`` are accepted too). No OS permission is involved.
    """

    DEFAULT_URL = "https://ipapi.co/json/"
    # City-level lookups are only good to a few kilometres.
    APPROXIMATE_ACCURACY_M = 5000.0

    def __init__(
        self,
        url: str = DEFAULT_URL,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._url = url
        self._session = session
        self._clock = clock

    async def check_permission(self) -> bool:
        return True

    async def request_permission(self) -> bool:
        return True

    async def current_position(self, accuracy: str) -> UserLocation:
        try:
            if self._session is not None:
                payload = await self._fetch(self._session)
            else:
                async with aiohttp.ClientSession() as session:
                    payload = await self._fetch(session)
        except (aiohttp.ClientError, ValueError) as exc:
            raise LocationError("unavailable", details=str(exc)) from exc

        lat = payload.get("latitude", payload.get("lat")) if isinstance(payload, dict) else None
        lon = payload.get("longitude", payload.get("lon")) if isinstance(payload, dict) else None
        if not (is_valid_latitude(lat) and is_valid_longitude(lon)):
            raise LocationError("unavailable", details={"payload": payload})
        return UserLocation(
            latitude=float(lat),
            longitude=float(lon),
            accuracy=self.APPROXIMATE_ACCURACY_M,
            timestamp=self._clock(),
        )

    async def _fetch(self, session: aiohttp.ClientSession):
        async with session.get(self._url) as response:
            if response.status != 200:
                raise LocationError("unavailable", details={"status": response.status})
            return await response.json(content_type=None)
