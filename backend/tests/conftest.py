"""Shared fixtures: an in-memory SQLite copy of a small Klang Valley network."""

import contextlib
from dataclasses import dataclass

import pytest
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from transitplan.core.categories import KIND_BUS, KIND_RAIL, CategoryRegistry, FeedCategory
from transitplan.core.schedule_store import ScheduleStore
from transitplan.models.tables import RouteCacheEntry

TEST_CATEGORIES = (
    FeedCategory("rapid-bus-kl", KIND_BUS, realtime_provider="prasarana"),
    FeedCategory("rapid-rail-kl", KIND_RAIL),
    FeedCategory("ktmb", KIND_RAIL, realtime_provider="ktmb", realtime_query_category=False),
)

RAIL_STOPS = [
    {"stop_id": "KJ15", "stop_code": "KJ15", "stop_name": "Kelana Jaya", "stop_lat": 3.0170, "stop_lon": 101.6210},
    {"stop_id": "KJ14", "stop_code": "KJ14", "stop_name": "Pasar Seni", "stop_lat": 3.1460, "stop_lon": 101.7000},
    {"stop_id": "KJ10", "stop_code": "KJ10", "stop_name": "KLCC", "stop_lat": 3.1340, "stop_lon": 101.6865},
]

RAIL_SHAPE = [
    (3.0000, 101.6000),
    (3.0080, 101.6100),
    (3.0170, 101.6210),  # Kelana Jaya
    (3.0500, 101.6400),
    (3.1000, 101.6700),
    (3.1460, 101.7000),  # Pasar Seni
    (3.1400, 101.6930),
    (3.1340, 101.6865),  # KLCC
    (3.1300, 101.6900),
    (3.1250, 101.7000),
    (3.1200, 101.7100),
]

BUS_STOPS = [
    {"stop_id": "1000001", "stop_code": "KL101", "stop_name": "Kelana Jaya Bus Hub", "stop_lat": 3.0160, "stop_lon": 101.6200},
    {"stop_id": "1000002", "stop_code": "KL102", "stop_name": "Pasar Seni Bus Hub", "stop_lat": 3.1463, "stop_lon": 101.7003},
    {"stop_id": "1000003", "stop_code": "SA201", "stop_name": "Shah Alam", "stop_lat": 3.0700, "stop_lon": 101.5000},
]


@dataclass
class TransitDB:
    engine: object
    session_factory: async_sessionmaker
    registry: CategoryRegistry
    store: ScheduleStore


async def _seed(conn, registry: CategoryRegistry) -> None:
    rail = registry.tables("rapid-rail-kl")
    await conn.execute(rail.stops.insert(), RAIL_STOPS)
    await conn.execute(rail.routes.insert(), [{
        "route_id": "KJL", "route_short_name": "KJ", "route_long_name": "LRT Kelana Jaya Line",
        "route_type": 1, "route_color": "E0115F",
    }])
    await conn.execute(rail.trips.insert(), [{
        "trip_id": "KJL-1", "route_id": "KJL", "trip_headsign": "Gombak", "direction_id": 0, "shape_id": "SH-KJL",
    }])
    await conn.execute(rail.stop_times.insert(), [
        {"trip_id": "KJL-1", "stop_sequence": 1, "stop_id": "KJ15", "arrival_time": "07:00:00", "departure_time": "07:00:00"},
        {"trip_id": "KJL-1", "stop_sequence": 2, "stop_id": "KJ14", "arrival_time": "07:20:00", "departure_time": "07:20:30"},
        {"trip_id": "KJL-1", "stop_sequence": 3, "stop_id": "KJ10", "arrival_time": "07:25:00", "departure_time": "07:25:00"},
    ])
    await conn.execute(rail.shapes.insert(), [
        {"shape_id": "SH-KJL", "shape_pt_sequence": i + 1, "shape_pt_lat": lat, "shape_pt_lon": lon}
        for i, (lat, lon) in enumerate(RAIL_SHAPE)
    ])

    bus = registry.tables("rapid-bus-kl")
    await conn.execute(bus.stops.insert(), BUS_STOPS)
    await conn.execute(bus.routes.insert(), [
        {"route_id": "T789", "route_short_name": "T789", "route_long_name": "Kelana Jaya - Pasar Seni",
         "route_type": 3, "route_color": None},
        {"route_id": "T800", "route_short_name": "T800", "route_long_name": "Pasar Seni - Shah Alam",
         "route_type": 3, "route_color": None},
    ])
    await conn.execute(bus.trips.insert(), [
        {"trip_id": "T789-1", "route_id": "T789", "trip_headsign": "Pasar Seni", "direction_id": 0, "shape_id": None},
        {"trip_id": "T800-1", "route_id": "T800", "trip_headsign": "Shah Alam", "direction_id": 0, "shape_id": None},
    ])
    await conn.execute(bus.stop_times.insert(), [
        {"trip_id": "T789-1", "stop_sequence": 1, "stop_id": "1000001", "arrival_time": "07:00:00", "departure_time": "07:00:00"},
        {"trip_id": "T789-1", "stop_sequence": 2, "stop_id": "1000002", "arrival_time": "07:45:00", "departure_time": "07:45:00"},
        {"trip_id": "T800-1", "stop_sequence": 1, "stop_id": "1000002", "arrival_time": "08:00:00", "departure_time": "08:00:00"},
        {"trip_id": "T800-1", "stop_sequence": 2, "stop_id": "1000003", "arrival_time": "08:50:00", "departure_time": "08:50:00"},
    ])


@contextlib.asynccontextmanager
async def open_transit_db(seed: bool = True, categories=TEST_CATEGORIES):
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    registry = CategoryRegistry(categories=categories, schema=None, reference=MetaData(), realtime=MetaData())
    async with engine.begin() as conn:
        await conn.run_sync(registry.reference.create_all)
        await conn.run_sync(registry.realtime.create_all)
        await conn.run_sync(RouteCacheEntry.__table__.create)
        if seed:
            await _seed(conn, registry)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield TransitDB(engine, session_factory, registry, ScheduleStore(registry, session_factory))
    finally:
        await engine.dispose()


@pytest.fixture
def transit_db():
    """Factory for a seeded in-memory database; use as ``async with transit_db() as db``."""
    return open_transit_db
