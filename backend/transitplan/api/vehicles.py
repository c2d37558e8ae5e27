"""Realtime vehicle position endpoints."""

from fastapi import APIRouter, HTTPException

from transitplan.config import settings
from transitplan.schemas.vehicle import (
    RefreshResult,
    RouteVehicleQuery,
    RouteVehicles,
    ServiceHealth,
    VehiclePositionOut,
)

router = APIRouter(prefix="/api/vehicles", tags=["vehicles"])

# Will be set by main.py
tracker = None


def _tracker():
    if tracker is None:
        raise HTTPException(status_code=503, detail="Vehicle tracker not ready")
    return tracker


@router.get("/health", response_model=ServiceHealth)
async def service_health():
    return await _tracker().get_service_health()


@router.post("/refresh", response_model=list[RefreshResult])
async def refresh_all(clear_old: bool = True):
    return await _tracker().refresh_all(clear_old)


@router.post("/routes", response_model=list[RouteVehicles])
async def vehicles_for_routes(queries: list[RouteVehicleQuery]):
    """Vehicles on several routes, refreshing stale feeds first."""
    return await _tracker().get_vehicle_positions_for_routes(queries)


@router.post("/{category}/refresh", response_model=RefreshResult)
async def refresh_category(category: str, clear_old: bool = True):
    return await _tracker().refresh_vehicle_positions(category, clear_old)


@router.get("/{category}/latest", response_model=list[VehiclePositionOut])
async def latest_positions(category: str, minutes_old: int = settings.realtime_default_minutes_old):
    return await _tracker().get_latest_vehicle_positions(category, minutes_old)


@router.get("/{category}/nearby", response_model=list[VehiclePositionOut])
async def nearby_positions(
    category: str, lat: float, lon: float, radius_km: float = 1.0,
    minutes_old: int = settings.realtime_default_minutes_old,
):
    return await _tracker().get_vehicle_positions_nearby(lat, lon, radius_km, category, minutes_old)


@router.get("/{category}/route/{route_id}", response_model=RouteVehicles)
async def route_positions(
    category: str,
    route_id: str,
    minutes_old: int | None = None,
    direction_id: int | None = None,
    min_stop_sequence: int | None = None,
    max_stop_sequence: int | None = None,
):
    """Vehicles on one route; minutes_old=-1 ignores data age."""
    return await _tracker().get_vehicle_positions_for_route(RouteVehicleQuery(
        category=category,
        route_id=route_id,
        minutes_old=minutes_old,
        direction_id=direction_id,
        min_stop_sequence=min_stop_sequence,
        max_stop_sequence=max_stop_sequence,
    ))


@router.delete("/{category}/old")
async def cleanup_old(category: str, hours: int = settings.realtime_retention_hours):
    deleted = await _tracker().cleanup_old_records(category, hours)
    return {"category": category, "deleted": deleted, "hours_kept": hours}
