"""Point-to-point routing and mode comparison endpoints."""

from fastapi import APIRouter, HTTPException, Query

from transitplan.schemas.routing import ModeComparison, SimpleRoute

router = APIRouter(prefix="/api/routes", tags=["routes"])

# Will be set by main.py
routing = None


def _routing():
    if routing is None:
        raise HTTPException(status_code=503, detail="Routing service not ready")
    return routing


@router.get("/simple", response_model=SimpleRoute)
async def simple_route(origin_lat: float, origin_lon: float, dest_lat: float, dest_lon: float, mode: str = "car"):
    """Road route for car, motorcycle, bicycle or walking."""
    return await _routing().get_route(origin_lat, origin_lon, dest_lat, dest_lon, mode)


@router.get("/compare", response_model=ModeComparison)
async def compare_modes(
    origin_lat: float,
    origin_lon: float,
    dest_lat: float,
    dest_lon: float,
    exclude_private: bool = False,
    exclude_public: bool = False,
    exclude_active: bool = False,
    vehicle_sizes: list[str] | None = Query(None),
    fuel_types: list[str] | None = Query(None),
):
    """Emissions and duration of every travel mode for the trip, lowest emissions first."""
    return await _routing().compare_transport_modes(
        origin_lat, origin_lon, dest_lat, dest_lon,
        exclude_private=exclude_private,
        exclude_public=exclude_public,
        exclude_active=exclude_active,
        vehicle_sizes=vehicle_sizes,
        fuel_types=fuel_types,
    )
