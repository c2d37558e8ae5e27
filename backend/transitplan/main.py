"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from transitplan.api import cache as cache_api
from transitplan.api import planning, routes, stops, vehicles
from transitplan.config import settings
from transitplan.core.categories import CategoryRegistry
from transitplan.core.connection_finder import ConnectionFinder
from transitplan.core.errors import NotFoundError, PersistenceError, UpstreamError, ValidationError
from transitplan.core.feed_client import FeedClient
from transitplan.core.route_cache import RouteCache
from transitplan.core.routing_service import RoutingService
from transitplan.core.schedule_store import ScheduleStore
from transitplan.core.scheduler import create_scheduler
from transitplan.core.shape_matcher import ShapeMatcher
from transitplan.core.stop_locator import StopLocator
from transitplan.core.trip_assembler import TripAssembler
from transitplan.core.vehicle_tracker import VehicleTracker
from transitplan.db.session import async_session, engine
from transitplan.models.base import Base
from transitplan.models import tables  # noqa: F401

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    registry = CategoryRegistry(schema=settings.gtfs_schema)

    async with engine.begin() as conn:
        if settings.gtfs_schema and conn.dialect.name == "postgresql":
            await conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{settings.gtfs_schema}"'))
        # Realtime tables and the route cache; reference tables come from the GTFS import
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(registry.verify_schema)

    # Initialize services
    feeds = FeedClient()
    route_cache = RouteCache(async_session)
    store = ScheduleStore(registry, async_session)
    locator = StopLocator(store)
    assembler = TripAssembler(locator, ConnectionFinder(store), ShapeMatcher(store), route_cache)
    routing = RoutingService(route_cache)
    tracker = VehicleTracker(registry, feeds, async_session)

    # Wire up API modules
    planning.assembler = assembler
    stops.locator = locator
    routes.routing = routing
    vehicles.tracker = tracker
    cache_api.cache = route_cache
    cache_api.assembler = assembler
    cache_api.routing = routing

    scheduler = create_scheduler(tracker, route_cache)
    scheduler.start()
    logger.info(
        "Transit planner started - refreshing %d realtime feeds every %ds",
        len(registry.realtime_categories()), settings.realtime_refresh_seconds,
    )

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    await feeds.close()
    await routing.close()
    await engine.dispose()
    logger.info("Transit planner shut down")


app = FastAPI(
    title="Multi-modal Transit Planner",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(planning.router)
app.include_router(stops.router)
app.include_router(routes.router)
app.include_router(vehicles.router)
app.include_router(cache_api.router)


def _error_response(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


app.add_exception_handler(ValidationError, _error_response(422))
app.add_exception_handler(NotFoundError, _error_response(404))
app.add_exception_handler(UpstreamError, _error_response(502))
app.add_exception_handler(PersistenceError, _error_response(503))


@app.get("/api/health")
async def health():
    return {"status": "ok"}
