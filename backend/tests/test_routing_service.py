"""Tests for RoutingService with a mocked OSRM backend."""

import asyncio

import httpx
import pytest

from transitplan.core.errors import ValidationError
from transitplan.core.geo import decode_polyline
from transitplan.core.route_cache import RouteCache
from transitplan.core.routing_service import RoutingService

ORIGIN = (3.1390, 101.6869)
DESTINATION = (3.0738, 101.5183)

OSRM_OK = {
    "code": "Ok",
    "routes": [{
        "distance": 12300.0,
        "duration": 900.0,
        "geometry": {"type": "LineString", "coordinates": [[101.6869, 3.1390], [101.6000, 3.1000], [101.5183, 3.0738]]},
    }],
}


def _osrm(requests: list, payload=OSRM_OK, status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, json=payload)
    return handler


def _service(handler, cache=None) -> RoutingService:
    client = httpx.AsyncClient(base_url="http://osrm.test", transport=httpx.MockTransport(handler))
    return RoutingService(cache=cache, client=client, retries=0)


def test_fetch_route_converts_units():
    requests = []

    async def scenario():
        return await _service(_osrm(requests)).fetch_route(*ORIGIN, *DESTINATION, "car")

    route = asyncio.run(scenario())
    assert route.distance == pytest.approx(12.3)
    assert route.duration == pytest.approx(15.0)
    assert route.emissions == pytest.approx(12.3 * 0.192)
    assert not route.estimated
    assert decode_polyline(route.geometry)[0] == ORIGIN
    assert requests[0].url.path == "/route/v1/driving/101.6869,3.139;101.5183,3.0738"
    assert requests[0].url.params["geometries"] == "geojson"


def test_profiles_by_mode():
    requests = []

    async def scenario():
        service = _service(_osrm(requests))
        await service.fetch_route(*ORIGIN, *DESTINATION, "bicycle")
        await service.fetch_route(*ORIGIN, *DESTINATION, "walking")

    asyncio.run(scenario())
    assert [r.url.path.split("/")[3] for r in requests] == ["bike", "foot"]


def test_unreachable_backend_estimates():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        return await _service(handler).fetch_route(*ORIGIN, *DESTINATION, "car")

    route = asyncio.run(scenario())
    assert route.estimated
    # Straight line x 1.3 at 30 km/h
    assert route.duration == pytest.approx(route.distance / 30 * 60)
    assert len(decode_polyline(route.geometry)) == 2


def test_no_route_estimates():
    requests = []

    async def scenario():
        return await _service(_osrm(requests, {"code": "NoRoute", "routes": []})).fetch_route(
            *ORIGIN, *DESTINATION, "car")

    assert asyncio.run(scenario()).estimated


def test_unknown_mode_rejected():
    async def scenario():
        await _service(_osrm([])).get_route(*ORIGIN, *DESTINATION, "hovercraft")

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_invalid_coordinates_rejected():
    async def scenario():
        await _service(_osrm([])).get_route(91.0, 101.0, *DESTINATION, "car")

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_cached_and_reversed(transit_db):
    requests = []

    async def scenario():
        async with transit_db() as db:
            service = _service(_osrm(requests), RouteCache(db.session_factory))
            live = await service.get_route(*ORIGIN, *DESTINATION, "car")
            cached = await service.get_route(*ORIGIN, *DESTINATION, "car")
            swapped = await service.get_route(*DESTINATION, *ORIGIN, "car")
            return live, cached, swapped

    live, cached, swapped = asyncio.run(scenario())
    assert len(requests) == 1
    assert not live.cached
    assert cached.cached and not cached.reversed
    assert cached.distance == pytest.approx(12.3)
    assert swapped.cached and swapped.reversed
    assert decode_polyline(swapped.geometry) == list(reversed(decode_polyline(live.geometry)))


def test_estimates_not_cached(transit_db):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        async with transit_db() as db:
            cache = RouteCache(db.session_factory)
            service = _service(handler, cache)
            await service.get_route(*ORIGIN, *DESTINATION, "car")
            return await cache.stats()

    assert asyncio.run(scenario()).by_mode == []


def test_compare_modes():
    async def scenario():
        return await _service(_osrm([])).compare_transport_modes(*ORIGIN, *DESTINATION)

    comparison = asyncio.run(scenario())
    scenarios = comparison.scenarios
    # 15 car size/fuel combinations, 3 motorcycles, 4 public modes, 2 active modes
    assert len(scenarios) == 24
    emissions = [s.emissions for s in scenarios]
    assert emissions == sorted(emissions)
    assert [s.rank for s in scenarios] == list(range(1, 25))
    assert comparison.worst_option.id == "car_large_petrol"
    assert comparison.worst_option.emissions_vs_worst == 100.0
    assert comparison.best_option.emissions == 0.0
    assert comparison.route_distance == pytest.approx(12.3)
    mrt = next(s for s in scenarios if s.id == "mrt")
    assert mrt.duration == pytest.approx(15.0 * 1.2)
    assert mrt.savings_vs_worst == pytest.approx(12.3 * (0.282 - 0.023))


def test_compare_modes_filters():
    async def scenario():
        return await _service(_osrm([])).compare_transport_modes(
            *ORIGIN, *DESTINATION,
            exclude_public=True, exclude_active=True,
            vehicle_sizes=["small"], fuel_types=["petrol", "bev"],
        )

    comparison = asyncio.run(scenario())
    assert [s.id for s in comparison.scenarios] == [
        "car_small_bev", "motorcycle_small", "motorcycle_medium", "motorcycle_large", "car_small_petrol",
    ]


def test_compare_rejects_unknown_fuel():
    async def scenario():
        await _service(_osrm([])).compare_transport_modes(*ORIGIN, *DESTINATION, fuel_types=["coal"])

    with pytest.raises(ValidationError):
        asyncio.run(scenario())
