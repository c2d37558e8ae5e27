"""Transit itinerary planning endpoint."""

from fastapi import APIRouter, HTTPException, Query

from transitplan.schemas.transit import PlanResult

router = APIRouter(prefix="/api/plan", tags=["planning"])

# Will be set by main.py
assembler = None


@router.get("", response_model=PlanResult)
async def plan_transit_route(
    origin_lat: float = Query(...),
    origin_lon: float = Query(...),
    dest_lat: float = Query(...),
    dest_lon: float = Query(...),
    use_cache: bool = True,
):
    """Plan door-to-door transit itineraries between two points."""
    if assembler is None:
        raise HTTPException(status_code=503, detail="Planner not ready")
    return await assembler.plan_transit_route(origin_lat, origin_lon, dest_lat, dest_lon, use_cache=use_cache)
