"""Tests for StopLocator."""

import asyncio

import pytest
from sqlalchemy import MetaData

from transitplan.core.categories import CategoryRegistry, FeedCategory
from transitplan.core.errors import NotFoundError, PersistenceError, ValidationError
from transitplan.core.geo import haversine_km
from transitplan.core.schedule_store import ScheduleStore
from transitplan.core.stop_locator import StopLocator

ORIGIN = (3.0166, 101.6206)


def test_nearby_stops_sorted_by_distance(transit_db):
    async def scenario():
        async with transit_db() as db:
            return await StopLocator(db.store).find_nearby_stops(*ORIGIN)

    stops = asyncio.run(scenario())
    assert [s.stop_id for s in stops] == ["KJ15", "1000001"]
    assert [s.category for s in stops] == ["rapid-rail-kl", "rapid-bus-kl"]
    assert stops[0].distance_km <= stops[1].distance_km
    assert stops[0].name == "Kelana Jaya"
    # Rounded to meters
    assert stops[0].distance_km == round(stops[0].distance_km, 3)


def test_radius_is_inclusive(transit_db):
    """A stop exactly at the radius is returned."""
    radius = haversine_km(*ORIGIN, 3.0170, 101.6210)

    async def scenario():
        async with transit_db() as db:
            return await StopLocator(db.store).find_nearby_stops(*ORIGIN, radius_km=radius)

    stops = asyncio.run(scenario())
    assert [s.stop_id for s in stops] == ["KJ15"]
    assert stops[0].distance_km <= radius


def test_reported_distance_within_radius(transit_db):
    radii = [haversine_km(*ORIGIN, 3.0160, 101.6200), 0.0629, 0.12345]

    async def scenario():
        async with transit_db() as db:
            locator = StopLocator(db.store)
            return [await locator.find_nearby_stops(*ORIGIN, radius_km=r) for r in radii]

    results = asyncio.run(scenario())
    assert all(results)
    for radius, stops in zip(radii, results):
        assert all(s.distance_km <= radius for s in stops)


def test_every_feed_represented(transit_db):
    """Nearby rail and bus stops both survive a small limit."""
    async def scenario():
        async with transit_db() as db:
            return await StopLocator(db.store).find_nearby_stops(3.1461, 101.7001, limit=2)

    stops = asyncio.run(scenario())
    assert {s.category for s in stops} == {"rapid-rail-kl", "rapid-bus-kl"}


def test_limit_truncates_aggregate(transit_db):
    async def scenario():
        async with transit_db() as db:
            return await StopLocator(db.store).find_nearby_stops(*ORIGIN, limit=1)

    stops = asyncio.run(scenario())
    assert len(stops) == 1
    assert stops[0].stop_id == "KJ15"


def test_no_stops_in_empty_area(transit_db):
    async def scenario():
        async with transit_db() as db:
            return await StopLocator(db.store).find_nearby_stops(5.0, 100.0)

    assert asyncio.run(scenario()) == []


@pytest.mark.parametrize("lat,lon,radius,limit", [
    (95.0, 101.0, 1.5, 10),
    (3.0, 200.0, 1.5, 10),
    (3.0, 101.0, 0.0, 10),
    (3.0, 101.0, -1.0, 10),
    (3.0, 101.0, 1.5, 0),
])
def test_invalid_queries_rejected(transit_db, lat, lon, radius, limit):
    async def scenario():
        async with transit_db() as db:
            await StopLocator(db.store).find_nearby_stops(lat, lon, radius, limit)

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_fallback_beyond_walking_range(transit_db):
    """~3 km from the nearest stop: found only by the wider search."""
    async def scenario():
        async with transit_db() as db:
            return await StopLocator(db.store).find_with_fallback(3.0166, 101.6480)

    stops, walkable = asyncio.run(scenario())
    assert not walkable
    assert stops
    assert all(s.distance_km > 1.5 for s in stops)


def test_fallback_within_walking_range(transit_db):
    async def scenario():
        async with transit_db() as db:
            return await StopLocator(db.store).find_with_fallback(*ORIGIN)

    stops, walkable = asyncio.run(scenario())
    assert walkable
    assert stops[0].stop_id == "KJ15"


def test_routes_at_stop(transit_db):
    async def scenario():
        async with transit_db() as db:
            return await StopLocator(db.store).get_routes_at_stop("1000002", "rapid-bus-kl")

    routes = asyncio.run(scenario())
    assert [r.route_id for r in routes] == ["T789", "T800"]
    assert routes[0].route_type == 3


def test_routes_at_stop_unknown_category(transit_db):
    async def scenario():
        async with transit_db() as db:
            await StopLocator(db.store).get_routes_at_stop("1000002", "no-such-feed")

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_system_summary(transit_db):
    async def scenario():
        async with transit_db() as db:
            return await StopLocator(db.store).get_transit_system_summary()

    summary = asyncio.run(scenario())
    assert summary["rapid-rail-kl"] == {"stops": 3, "routes": 1, "trips": 1}
    assert summary["rapid-bus-kl"] == {"stops": 3, "routes": 2, "trips": 2}
    assert summary["ktmb"] == {"stops": 0, "routes": 0, "trips": 0}


def test_store_failure_propagates(transit_db):
    """Missing schedule tables surface as PersistenceError."""
    async def scenario():
        async with transit_db() as db:
            registry = CategoryRegistry(
                categories=(FeedCategory("mrt-feeder"),), reference=MetaData(), realtime=MetaData(),
            )
            locator = StopLocator(ScheduleStore(registry, db.session_factory))
            await locator.find_nearby_stops(*ORIGIN)

    with pytest.raises(PersistenceError):
        asyncio.run(scenario())


def test_routes_at_unknown_stop(transit_db):
    async def scenario():
        async with transit_db() as db:
            await StopLocator(db.store).get_routes_at_stop("9999999", "rapid-bus-kl")

    with pytest.raises(NotFoundError):
        asyncio.run(scenario())
