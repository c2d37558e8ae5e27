"""Nearest-stop search across all schedule feeds."""

import logging
import math

from transitplan.config import settings
from transitplan.core.errors import NotFoundError, PersistenceError, ValidationError
from transitplan.core.geo import bounding_box, haversine_km, validate_coordinates
from transitplan.core.schedule_store import ScheduleStore
from transitplan.schemas.transit import NearbyStop, RouteAtStop

logger = logging.getLogger(__name__)


class StopLocator:
    """Finds candidate stops near a point, keeping every feed represented."""

    def __init__(self, store: ScheduleStore) -> None:
        self.store = store

    async def find_nearby_stops(
        self,
        lat: float,
        lon: float,
        radius_km: float = settings.max_walking_distance_km,
        limit: int = 10,
        per_category_limit: int | None = None,
    ) -> list[NearbyStop]:
        """Stops within ``radius_km`` of a point, nearest first.

        Each category contributes at most ``ceil(limit / categories)`` stops
        (or ``per_category_limit``) before the aggregate is re-sorted, so a dense
        bus network cannot crowd out a nearby rail station.
        """
        if not validate_coordinates(lat, lon):
            raise ValidationError(f"Invalid coordinates: {lat}, {lon}")
        if radius_km is None or radius_km <= 0:
            raise ValidationError(f"Search radius must be positive, got {radius_km}")
        if limit <= 0:
            raise ValidationError(f"Limit must be positive, got {limit}")

        categories = self.store.registry.schedule_categories()
        if not categories:
            return []
        cap = per_category_limit or math.ceil(limit / len(categories))
        box = bounding_box(lat, lon, radius_km)

        found: list[NearbyStop] = []
        for cat in categories:
            rows = await self.store.stops_in_box(cat.name, *box)
            within = []
            for row in rows:
                d = haversine_km(lat, lon, row["stop_lat"], row["stop_lon"])
                if d <= radius_km:
                    within.append(NearbyStop(
                        stop_id=row["stop_id"],
                        name=row["stop_name"],
                        code=row["stop_code"],
                        lat=row["stop_lat"],
                        lon=row["stop_lon"],
                        distance_km=min(round(d, 3), radius_km),
                        category=cat.name,
                    ))
            within.sort(key=lambda s: s.distance_km)
            found.extend(within[:cap])

        found.sort(key=lambda s: s.distance_km)
        logger.debug("Found %d stops within %.2fkm of (%.5f, %.5f)", len(found), radius_km, lat, lon)
        return found[:limit]

    async def find_with_fallback(self, lat: float, lon: float) -> tuple[list[NearbyStop], bool]:
        """Walking-range search, retried once over the wider fallback radius.

        Returns (stops, within_walking). An empty list means no coverage at all.
        """
        stops = await self.find_nearby_stops(
            lat, lon, settings.max_walking_distance_km, settings.stop_candidates,
        )
        if stops:
            return stops, True
        stops = await self.find_nearby_stops(
            lat, lon, settings.fallback_search_radius_km, settings.fallback_stop_candidates,
        )
        return stops, False

    async def get_routes_at_stop(self, stop_id: str, category: str) -> list[RouteAtStop]:
        if await self.store.get_stop(category, stop_id) is None:
            raise NotFoundError(f"Stop {stop_id} not found in {category}")
        rows = await self.store.routes_at_stop(category, stop_id)
        return [
            RouteAtStop(
                route_id=r["route_id"],
                short_name=r["route_short_name"],
                long_name=r["route_long_name"],
                route_type=r["route_type"],
                color=r["route_color"],
            )
            for r in rows
        ]

    async def get_transit_system_summary(self) -> dict[str, dict[str, int]]:
        summary = {}
        for cat in self.store.registry.schedule_categories():
            try:
                summary[cat.name] = await self.store.counts(cat.name)
            except PersistenceError:
                logger.warning("Category %s not available for summary", cat.name)
        return summary
