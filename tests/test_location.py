import asyncio
from unittest.mock import AsyncMock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from qr_attend.errors import ErrorKind, LocationError
from qr_attend.location import (
    LOCATION_CONFIGS,
    FixedLocationBackend,
    GeolocationProvider,
    IpLocationBackend,
    LocationConfig,
    PermissionStatus,
    location_config,
)
from qr_attend.models import UserLocation


def test_tiers_match_published_timeouts():
    assert LOCATION_CONFIGS["high"] == LocationConfig("high", 15.0, 10.0)
    assert LOCATION_CONFIGS["balanced"] == LocationConfig("balanced", 10.0, 30.0)
    assert LOCATION_CONFIGS["low"] == LocationConfig("low", 5.0, 60.0)
    assert location_config("LOW") is LOCATION_CONFIGS["low"]
    with pytest.raises(ValueError):
        location_config("ultra")


def test_permission_is_requested_transparently_and_cached():
    backend = FixedLocationBackend(19.4326, -99.1332, accuracy=8.0, clock=lambda: 1000.0)
    provider = GeolocationProvider(backend)

    location = asyncio.run(provider.get_current_location())

    assert location == UserLocation(19.4326, -99.1332, accuracy=8.0, timestamp=1000.0)
    assert provider.permission is PermissionStatus.GRANTED


def test_denied_permission_surfaces_permission_error():
    provider = GeolocationProvider(FixedLocationBackend(0, 0, permission_granted=False))

    with pytest.raises(LocationError) as info:
        asyncio.run(provider.get_current_location())

    assert info.value.reason == "permission_denied"
    assert info.value.kind is ErrorKind.LOCATION_PERMISSION
    assert provider.permission is PermissionStatus.DENIED


def test_granted_permission_is_not_requested_again():
    backend = AsyncMock()
    backend.check_permission.return_value = False
    backend.request_permission.return_value = True
    backend.current_position.return_value = UserLocation(1.0, 2.0)
    provider = GeolocationProvider(backend)

    async def run_twice():
        await provider.get_current_location(LOCATION_CONFIGS["low"])
        await provider.get_current_location(LOCATION_CONFIGS["low"])

    asyncio.run(run_twice())

    backend.request_permission.assert_awaited_once()
    backend.check_permission.assert_awaited_once()
    backend.current_position.assert_awaited_with("low")


def test_slow_fix_becomes_timeout_error():
    class SlowBackend(FixedLocationBackend):
        async def current_position(self, accuracy):
            await asyncio.sleep(5)
            return await super().current_position(accuracy)

    provider = GeolocationProvider(SlowBackend(0, 0))
    quick = LocationConfig(accuracy="high", timeout=0.01, maximum_age=10.0)

    with pytest.raises(LocationError) as info:
        asyncio.run(provider.get_current_location(quick))

    assert info.value.reason == "timeout"
    assert info.value.kind is ErrorKind.LOCATION_TIMEOUT


def test_backend_errors_propagate_with_their_reason():
    backend = AsyncMock()
    backend.check_permission.return_value = True
    backend.current_position.side_effect = LocationError("services_disabled")
    provider = GeolocationProvider(backend)

    with pytest.raises(LocationError) as info:
        asyncio.run(provider.get_current_location())

    assert info.value.reason == "services_disabled"


def _ip_app(payload, status=200):
    async def handler(request):
        return web.json_response(payload, status=status)

    app = web.Application()
    app.router.add_get("/json/", handler)
    return app


def test_ip_backend_reads_lat_lon():
    async def scenario():
        async with TestServer(_ip_app({"lat": 19.43, "lon": -99.13})) as server:
            backend = IpLocationBackend(str(server.make_url("/json/")), clock=lambda: 5.0)
            return await backend.current_position("low")

    location = asyncio.run(scenario())

    assert (location.latitude, location.longitude) == (19.43, -99.13)
    assert location.accuracy == IpLocationBackend.APPROXIMATE_ACCURACY_M
    assert location.timestamp == 5.0


@pytest.mark.parametrize("payload,status", [({"error": True}, 200), ({"latitude": 1, "longitude": 2}, 429)])
def test_ip_backend_failures_are_unavailable(payload, status):
    async def scenario():
        async with TestServer(_ip_app(payload, status)) as server:
            await IpLocationBackend(str(server.make_url("/json/"))).current_position("low")

    with pytest.raises(LocationError) as info:
        asyncio.run(scenario())

    assert info.value.reason == "unavailable"
