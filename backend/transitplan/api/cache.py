"""Route cache maintenance endpoints."""

from fastapi import APIRouter, HTTPException

from transitplan.schemas.routing import CacheStats, PrewarmItem, PrewarmReport

router = APIRouter(prefix="/api/cache", tags=["cache"])

# Will be set by main.py
cache = None
assembler = None
routing = None


def _cache():
    if cache is None:
        raise HTTPException(status_code=503, detail="Route cache not ready")
    return cache


@router.get("/stats", response_model=CacheStats)
async def cache_stats():
    return await _cache().stats()


@router.delete("/expired")
async def clean_expired():
    return {"deleted": await _cache().clean_expired()}


@router.post("/prewarm", response_model=PrewarmReport)
async def prewarm(items: list[PrewarmItem]):
    """Compute and cache a batch of named routes."""
    return await _cache().prewarm(items, assembler, routing)
