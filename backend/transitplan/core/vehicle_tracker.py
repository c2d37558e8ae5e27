"""Realtime pipeline: fetch feeds, persist positions, serve live vehicle queries."""

import datetime
import logging

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError

from transitplan.config import settings
from transitplan.core.categories import CategoryRegistry
from transitplan.core.errors import PersistenceError, TransitPlanError, UpstreamError, ValidationError
from transitplan.core.feed_client import FeedClient
from transitplan.core.geo import bounding_box, haversine_km, validate_coordinates
from transitplan.db.upsert import dialect_insert
from transitplan.schemas.vehicle import (
    CategoryHealth,
    RefreshResult,
    RouteVehicles,
    RouteVehicleQuery,
    ServiceHealth,
    VehiclePositionOut,
)

logger = logging.getLogger(__name__)

INSERT_CHUNK = 500
HEALTH_WINDOW_MINUTES = 10
ANY_AGE = -1  # route queries: newest rows regardless of age

# Columns refreshed when the same (vehicle, timestamp) arrives again
_UPSERT_COLUMNS = (
    "trip_id", "route_id", "latitude", "longitude", "bearing", "speed",
    "current_stop_sequence", "stop_id", "current_status", "occupancy_status", "updated_at",
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _aware(ts: datetime.datetime | None) -> datetime.datetime | None:
    # SQLite hands back naive values; everything is stored in UTC
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=datetime.timezone.utc)
    return ts


def _to_out(row: dict, category: str, distance_km: float | None = None) -> VehiclePositionOut:
    created = _aware(row.get("created_at"))
    return VehiclePositionOut(
        vehicle_id=row["vehicle_id"],
        trip_id=row["trip_id"],
        route_id=row["route_id"],
        direction_id=row["direction_id"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        bearing=row["bearing"],
        speed=row["speed"],
        current_stop_sequence=row["current_stop_sequence"],
        stop_id=row["stop_id"],
        current_status=row["current_status"],
        position_timestamp=row["position_timestamp"],
        vehicle_label=row["vehicle_label"],
        vehicle_license_plate=row["vehicle_license_plate"],
        occupancy_status=row["occupancy_status"],
        category=category,
        distance_km=distance_km,
        created_at=created.isoformat() if created else None,
    )


class VehicleTracker:
    """Keeps per-category vehicle-position tables current and answers queries on them."""

    def __init__(self, registry: CategoryRegistry, feeds: FeedClient, session_factory) -> None:
        self.registry = registry
        self.feeds = feeds
        self.session_factory = session_factory

    # --- refresh ---

    async def refresh_vehicle_positions(self, category: str, clear_old: bool = True) -> RefreshResult:
        """Fetch one category's feed and store it in a single transaction.

        ``clear_old`` replaces the table contents; otherwise rows are upserted on
        (vehicle_id, position_timestamp). Failures come back as an unsuccessful
        result, never as an exception.
        """
        cat = self.registry.get(category)
        table = self.registry.vehicle_table(cat.name)
        started = _utcnow()
        try:
            feed = await self.feeds.fetch(cat)
        except UpstreamError as e:
            logger.error("Realtime fetch failed for %s: %s", cat.name, e)
            return RefreshResult(
                success=False, category=cat.name, error=str(e), error_kind="upstream",
                timestamp=started.isoformat(),
            )

        # One row per key; a multi-row upsert may not touch the same row twice
        unique: dict[tuple, dict] = {}
        for record in feed.records:
            unique[(record["vehicle_id"], record["position_timestamp"])] = record
        rows = [{**r, "created_at": started, "updated_at": started} for r in unique.values()]

        deleted = 0
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    if session.bind.dialect.name == "postgresql":
                        await session.execute(
                            text(f"SET LOCAL statement_timeout = {int(settings.realtime_statement_timeout_ms)}")
                        )
                    if clear_old:
                        result = await session.execute(delete(table))
                        deleted = result.rowcount
                    for i in range(0, len(rows), INSERT_CHUNK):
                        stmt = dialect_insert(session, table).values(rows[i:i + INSERT_CHUNK])
                        stmt = stmt.on_conflict_do_update(
                            index_elements=["vehicle_id", "position_timestamp"],
                            set_={col: stmt.excluded[col] for col in _UPSERT_COLUMNS},
                        )
                        await session.execute(stmt)
        except SQLAlchemyError as e:
            logger.exception("Storing vehicle positions failed for %s, rolled back", cat.name)
            return RefreshResult(
                success=False, category=cat.name, fetched=feed.fetched, feed_timestamp=feed.feed_timestamp,
                error=str(e), error_kind="persistence",
                timestamp=started.isoformat(),
            )

        logger.info(
            "Stored %d vehicle positions for %s (%d skipped, %d replaced)",
            len(rows), cat.name, feed.skipped, deleted,
        )
        return RefreshResult(
            success=True,
            category=cat.name,
            fetched=feed.fetched,
            feed_timestamp=feed.feed_timestamp,
            deleted=deleted,
            inserted=len(rows),
            skipped=feed.skipped + (len(feed.records) - len(rows)),
            timestamp=started.isoformat(),
        )

    async def refresh_all(self, clear_old: bool = True) -> list[RefreshResult]:
        """Refresh every realtime category; one failing feed never stops the others."""
        results = []
        for cat in self.registry.realtime_categories():
            try:
                results.append(await self.refresh_vehicle_positions(cat.name, clear_old))
            except TransitPlanError as e:
                logger.exception("Refresh failed for %s", cat.name)
                results.append(RefreshResult(
                    success=False, category=cat.name, error=str(e), error_kind="validation",
                    timestamp=_utcnow().isoformat(),
                ))
        return results

    async def _data_age(self, category: str) -> tuple[datetime.datetime | None, int]:
        table = self.registry.vehicle_table(category)
        async with self.session_factory() as session:
            row = (await session.execute(
                select(func.max(table.c.created_at), func.count()).select_from(table)
            )).one()
        return _aware(row[0]), row[1]

    async def ensure_fresh(self, category: str) -> RefreshResult | None:
        """Refresh a category on demand when it is empty or older than the staleness window."""
        try:
            latest, count = await self._data_age(category)
        except SQLAlchemyError:
            logger.exception("Freshness check failed for %s", category)
            return None
        if latest is not None and count > 0:
            age = (_utcnow() - latest).total_seconds()
            if age <= settings.realtime_staleness_seconds:
                logger.debug("Using stored data for %s (%ds old, %d rows)", category, age, count)
                return None
            logger.info("Refreshing stale data for %s (%ds old, on-demand)", category, age)
        else:
            logger.info("No data for %s, fetching (on-demand)", category)
        result = await self.refresh_vehicle_positions(category)
        if not result.success:
            logger.warning("On-demand refresh of %s failed: %s", category, result.error)
        return result

    # --- queries ---

    async def _select(self, stmt) -> list[dict]:
        try:
            async with self.session_factory() as session:
                return [dict(r._mapping) for r in await session.execute(stmt)]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Vehicle position query failed: {e}") from e

    async def get_latest_vehicle_positions(
        self, category: str, minutes_old: int = settings.realtime_default_minutes_old,
    ) -> list[VehiclePositionOut]:
        """Newest position per vehicle among rows stored within ``minutes_old``."""
        if minutes_old <= 0:
            raise ValidationError(f"minutes_old must be positive, got {minutes_old}")
        table = self.registry.vehicle_table(category)
        since = _utcnow() - datetime.timedelta(minutes=minutes_old)
        rows = await self._select(
            select(table)
            .where(table.c.created_at >= since)
            .order_by(table.c.vehicle_id, table.c.position_timestamp.desc())
        )
        latest: dict[str, dict] = {}
        for row in rows:
            latest.setdefault(row["vehicle_id"], row)
        name = self.registry.get(category).name
        return [_to_out(row, name) for row in latest.values()]

    async def get_vehicle_positions_nearby(
        self, lat: float, lon: float, radius_km: float, category: str,
        minutes_old: int = settings.realtime_default_minutes_old,
    ) -> list[VehiclePositionOut]:
        if not validate_coordinates(lat, lon):
            raise ValidationError(f"Invalid coordinates: {lat}, {lon}")
        if radius_km is None or radius_km <= 0:
            raise ValidationError(f"Search radius must be positive, got {radius_km}")
        min_lat, max_lat, min_lon, max_lon = bounding_box(lat, lon, radius_km)
        found = []
        for v in await self.get_latest_vehicle_positions(category, minutes_old):
            if not (min_lat <= v.latitude <= max_lat and min_lon <= v.longitude <= max_lon):
                continue
            d = haversine_km(lat, lon, v.latitude, v.longitude)
            if d <= radius_km:
                v.distance_km = round(d, 3)
                found.append(v)
        found.sort(key=lambda v: v.distance_km)
        return found

    async def get_vehicle_positions_for_route(self, query: RouteVehicleQuery) -> RouteVehicles:
        """Vehicles on a route, optionally by direction and stop-sequence window.

        Vehicles reporting no direction match every direction filter.
        ``minutes_old=-1`` returns rows regardless of age.
        """
        cat = self.registry.get(query.category)
        table = self.registry.vehicle_table(cat.name)
        minutes_old = query.minutes_old or settings.realtime_default_minutes_old
        conditions = [table.c.route_id == query.route_id]
        if minutes_old != ANY_AGE:
            if minutes_old <= 0:
                raise ValidationError(f"minutes_old must be positive or -1, got {minutes_old}")
            conditions.append(table.c.created_at >= _utcnow() - datetime.timedelta(minutes=minutes_old))
        if query.direction_id is not None:
            conditions.append(
                (table.c.direction_id == query.direction_id) | table.c.direction_id.is_(None)
            )
        if query.min_stop_sequence is not None and query.max_stop_sequence is not None:
            conditions.append(table.c.current_stop_sequence.between(query.min_stop_sequence, query.max_stop_sequence))

        rows = await self._select(select(table).where(*conditions).order_by(table.c.created_at.desc()))
        vehicles = [_to_out(row, cat.name) for row in rows]
        logger.debug("Found %d vehicles for route %s in %s", len(vehicles), query.route_id, cat.name)
        return RouteVehicles(
            category=cat.name,
            route_id=query.route_id,
            vehicles=vehicles,
            count=len(vehicles),
            most_recent_data_timestamp=vehicles[0].created_at if vehicles else None,
        )

    async def get_vehicle_positions_for_routes(self, queries: list[RouteVehicleQuery]) -> list[RouteVehicles]:
        """Several route queries, refreshing stale categories first."""
        for category in dict.fromkeys(self.registry.get(q.category).name for q in queries):
            await self.ensure_fresh(category)
        results = []
        for q in queries:
            try:
                results.append(await self.get_vehicle_positions_for_route(q))
            except PersistenceError as e:
                results.append(RouteVehicles(
                    category=q.category, route_id=q.route_id, vehicles=[], count=0, error=str(e),
                ))
        return results

    # --- maintenance ---

    async def cleanup_old_records(self, category: str, hours: int = settings.realtime_retention_hours) -> int:
        table = self.registry.vehicle_table(category)
        cutoff = _utcnow() - datetime.timedelta(hours=hours)
        try:
            async with self.session_factory() as session:
                result = await session.execute(delete(table).where(table.c.created_at < cutoff))
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cleanup failed for {category}: {e}") from e
        logger.info("Cleaned up %d old records from %s (kept last %d hours)", result.rowcount, category, hours)
        return result.rowcount

    async def cleanup_all(self) -> dict[str, int]:
        deleted = {}
        for cat in self.registry.realtime_categories():
            try:
                deleted[cat.name] = await self.cleanup_old_records(cat.name)
            except PersistenceError:
                logger.exception("Retention sweep failed for %s", cat.name)
        return deleted

    async def get_service_health(self) -> ServiceHealth:
        since = _utcnow() - datetime.timedelta(minutes=HEALTH_WINDOW_MINUTES)
        categories: dict[str, CategoryHealth] = {}
        for cat in self.registry.realtime_categories():
            table = self.registry.vehicle_table(cat.name)
            try:
                async with self.session_factory() as session:
                    recent = (await session.execute(
                        select(func.count()).select_from(table).where(table.c.created_at >= since)
                    )).scalar_one()
                    latest = (await session.execute(select(func.max(table.c.created_at)))).scalar_one()
                latest = _aware(latest)
                categories[cat.name] = CategoryHealth(
                    recent_vehicles=recent,
                    latest_update=latest.isoformat() if latest else None,
                )
            except SQLAlchemyError as e:
                logger.exception("Health check failed for %s", cat.name)
                categories[cat.name] = CategoryHealth(error=str(e))
        status = "degraded" if any(h.error for h in categories.values()) else "ok"
        return ServiceHealth(status=status, categories=categories, timestamp=_utcnow().isoformat())
