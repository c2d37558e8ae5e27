"""Stop search endpoints."""

from fastapi import APIRouter, HTTPException

from transitplan.config import settings
from transitplan.schemas.transit import NearbyStop, RouteAtStop

router = APIRouter(prefix="/api/stops", tags=["stops"])

# Will be set by main.py
locator = None


def _locator():
    if locator is None:
        raise HTTPException(status_code=503, detail="Stop locator not ready")
    return locator


@router.get("/nearby", response_model=list[NearbyStop])
async def nearby_stops(lat: float, lon: float, radius_km: float = settings.max_walking_distance_km, limit: int = 10):
    """Nearest stops across every feed, closest first."""
    return await _locator().find_nearby_stops(lat, lon, radius_km, limit)


@router.get("/summary")
async def system_summary():
    """Stop, route and trip counts per feed."""
    return await _locator().get_transit_system_summary()


@router.get("/{category}/{stop_id}/routes", response_model=list[RouteAtStop])
async def routes_at_stop(category: str, stop_id: str):
    return await _locator().get_routes_at_stop(stop_id, category)
