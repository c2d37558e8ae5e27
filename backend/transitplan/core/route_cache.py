"""Spatial cache for point-to-point routes and full transit plans.

Keys are origin/destination coordinates quantized to ~100 m plus the travel
mode. Lookups try the exact key, then the swapped (reverse) key, then the
closest entry within a small window. Every failure fails open: a broken
cache behaves like an empty one.
"""

import datetime
import logging
import time
from dataclasses import dataclass

import orjson
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from transitplan.config import settings
from transitplan.core.errors import TransitPlanError
from transitplan.core.geo import quantize
from transitplan.db.upsert import dialect_insert
from transitplan.models.tables import RouteCacheEntry
from transitplan.schemas.routing import (
    CacheModeStats,
    CacheStats,
    PrewarmItem,
    PrewarmItemResult,
    PrewarmReport,
)

logger = logging.getLogger(__name__)

# Modes whose payload is an opaque serialized structure
STRUCTURED_MODES = {"transit"}


@dataclass
class CacheHit:
    payload: dict
    reversed: bool
    proximity: bool
    hit_count: int
    created_at: datetime.datetime


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class RouteCache:
    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory
        self.hits = 0
        self.misses = 0

    def _key(self, origin_lat, origin_lon, dest_lat, dest_lon) -> tuple[float, float, float, float]:
        p = settings.cache_precision_decimals
        return (quantize(origin_lat, p), quantize(origin_lon, p), quantize(dest_lat, p), quantize(dest_lon, p))

    async def get(
        self, origin_lat: float, origin_lon: float, dest_lat: float, dest_lon: float, mode: str,
    ) -> CacheHit | None:
        """Cached payload for a route, or None on miss or cache failure."""
        olat, olon, dlat, dlon = self._key(origin_lat, origin_lon, dest_lat, dest_lon)
        c = RouteCacheEntry
        try:
            async with self.session_factory() as session:
                now = _now()
                live = (c.mode == mode) & (c.expires_at > now)

                def exact(a, b, x, y):
                    return select(c).where(
                        live, c.origin_lat == a, c.origin_lon == b, c.dest_lat == x, c.dest_lon == y,
                    ).limit(1)

                reversed_ = proximity = False
                entry = (await session.execute(exact(olat, olon, dlat, dlon))).scalar_one_or_none()
                if entry is None:
                    entry = (await session.execute(exact(dlat, dlon, olat, olon))).scalar_one_or_none()
                    reversed_ = entry is not None
                if entry is None:
                    w = settings.cache_proximity_window_deg
                    score = (
                        (c.origin_lat - olat) * (c.origin_lat - olat)
                        + (c.origin_lon - olon) * (c.origin_lon - olon)
                        + (c.dest_lat - dlat) * (c.dest_lat - dlat)
                        + (c.dest_lon - dlon) * (c.dest_lon - dlon)
                    )
                    stmt = (
                        select(c)
                        .where(
                            live,
                            func.abs(c.origin_lat - olat) < w,
                            func.abs(c.origin_lon - olon) < w,
                            func.abs(c.dest_lat - dlat) < w,
                            func.abs(c.dest_lon - dlon) < w,
                        )
                        .order_by(score)
                        .limit(1)
                    )
                    entry = (await session.execute(stmt)).scalar_one_or_none()
                    proximity = entry is not None

                if entry is None:
                    self.misses += 1
                    logger.debug("Cache MISS: %s route", mode)
                    return None

                prior_hits = entry.hit_count
                await session.execute(
                    update(c)
                    .where(c.id == entry.id)
                    .values(
                        hit_count=c.hit_count + 1,
                        updated_at=now,
                        expires_at=now + datetime.timedelta(days=settings.cache_ttl_days),
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()

                if mode in STRUCTURED_MODES:
                    payload = orjson.loads(entry.payload) if entry.payload else {}
                else:
                    payload = {
                        "distance": entry.distance,
                        "duration": entry.duration,
                        "emissions": entry.emissions,
                        "geometry": entry.geometry,
                    }
                self.hits += 1
                logger.info(
                    "Cache HIT: %s route%s (%d hits)", mode,
                    " (reversed)" if reversed_ else " (proximity)" if proximity else "",
                    prior_hits,
                )
                return CacheHit(
                    payload=payload,
                    reversed=reversed_,
                    proximity=proximity,
                    hit_count=prior_hits + 1,
                    created_at=entry.created_at,
                )
        except (SQLAlchemyError, orjson.JSONDecodeError):
            logger.exception("Cache lookup failed, falling back to live computation")
            return None

    async def set(
        self, origin_lat: float, origin_lon: float, dest_lat: float, dest_lon: float,
        mode: str, data: dict,
    ) -> bool:
        """Upsert a route under its quantized key. Returns False on failure."""
        olat, olon, dlat, dlon = self._key(origin_lat, origin_lon, dest_lat, dest_lon)
        if mode in STRUCTURED_MODES:
            values = {"distance": 0.0, "duration": 0.0, "emissions": 0.0, "geometry": None}
        else:
            values = {
                "distance": float(data.get("distance") or 0.0),
                "duration": float(data.get("duration") or 0.0),
                "emissions": float(data.get("emissions") or 0.0),
                "geometry": data.get("geometry"),
            }
        try:
            values["payload"] = orjson.dumps(data).decode() if mode in STRUCTURED_MODES else None
            now = _now()
            expires = now + datetime.timedelta(days=settings.cache_ttl_days)
            async with self.session_factory() as session:
                stmt = dialect_insert(session, RouteCacheEntry.__table__).values(
                    origin_lat=olat, origin_lon=olon, dest_lat=dlat, dest_lon=dlon, mode=mode,
                    hit_count=0, created_at=now, updated_at=now, expires_at=expires, **values,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["origin_lat", "origin_lon", "dest_lat", "dest_lon", "mode"],
                    set_={**values, "updated_at": now, "expires_at": expires},
                )
                await session.execute(stmt)
                await session.commit()
            logger.debug("Cached %s route", mode)
            return True
        except (SQLAlchemyError, TypeError):
            logger.exception("Caching %s route failed", mode)
            return False

    async def stats(self) -> CacheStats:
        c = RouteCacheEntry
        total = self.hits + self.misses
        by_mode: list[CacheModeStats] = []
        try:
            async with self.session_factory() as session:
                rows = await session.execute(
                    select(
                        c.mode,
                        func.count(),
                        func.coalesce(func.sum(c.hit_count), 0),
                        func.coalesce(func.avg(c.hit_count), 0),
                        func.coalesce(func.max(c.hit_count), 0),
                        func.min(c.created_at),
                        func.max(c.created_at),
                    )
                    .group_by(c.mode)
                    .order_by(c.mode)
                )
                for mode, count, hits, avg, max_hits, oldest, newest in rows:
                    by_mode.append(CacheModeStats(
                        mode=mode,
                        total_routes=count,
                        total_hits=int(hits),
                        avg_hits_per_route=round(float(avg), 2),
                        max_hits=int(max_hits),
                        oldest_route=oldest.isoformat() if oldest else None,
                        newest_route=newest.isoformat() if newest else None,
                    ))
        except SQLAlchemyError:
            logger.exception("Failed to read cache stats")
        return CacheStats(
            by_mode=by_mode,
            session_hits=self.hits,
            session_misses=self.misses,
            session_hit_rate=round(self.hits / total * 100, 1) if total else 0.0,
        )

    async def clean_expired(self) -> int:
        """Delete expired entries, returning how many were removed."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(RouteCacheEntry).where(RouteCacheEntry.expires_at < _now())
                )
                await session.commit()
            logger.info("Cleaned %d expired cache entries", result.rowcount)
            return result.rowcount
        except SQLAlchemyError:
            logger.exception("Failed to clean expired cache entries")
            return 0

    async def prewarm(self, items: list[PrewarmItem], planner, router) -> PrewarmReport:
        """Compute and store each named route.

        ``planner`` serves the ``transit`` mode, ``router`` every road mode.
        Items with nothing to cache, including straight-line estimates, are
        reported as skipped.
        """
        started = time.monotonic()
        results: list[PrewarmItemResult] = []
        logger.info("Pre-caching %d routes", len(items))
        for item in items:
            try:
                if item.mode == "transit":
                    plan = await planner.compute_plan(item.origin_lat, item.origin_lon, item.dest_lat, item.dest_lon)
                    data = plan.model_dump(mode="json") if plan.success and plan.routes else None
                else:
                    route = await router.fetch_route(
                        item.origin_lat, item.origin_lon, item.dest_lat, item.dest_lon, item.mode,
                    )
                    if route.distance and not route.estimated:
                        data = route.model_dump(include={"distance", "duration", "emissions", "geometry"})
                    else:
                        data = None
                if data is None:
                    results.append(PrewarmItemResult(name=item.name, mode=item.mode, status="skipped"))
                    logger.info("  skipped %s: no routable result", item.name)
                    continue
                ok = await self.set(item.origin_lat, item.origin_lon, item.dest_lat, item.dest_lon, item.mode, data)
                if ok:
                    results.append(PrewarmItemResult(name=item.name, mode=item.mode, status="cached"))
                else:
                    results.append(PrewarmItemResult(
                        name=item.name, mode=item.mode, status="error", error="cache write failed",
                    ))
            except TransitPlanError as e:
                logger.warning("  failed %s: %s", item.name, e)
                results.append(PrewarmItemResult(name=item.name, mode=item.mode, status="error", error=str(e)))

        report = PrewarmReport(
            total=len(items),
            cached=sum(r.status == "cached" for r in results),
            skipped=sum(r.status == "skipped" for r in results),
            errors=sum(r.status == "error" for r in results),
            items=results,
            elapsed_seconds=round(time.monotonic() - started, 2),
        )
        logger.info("Pre-cached %d/%d routes", report.cached, report.total)
        return report
