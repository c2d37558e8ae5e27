"""Read-only queries over the per-category GTFS reference tables."""

import logging

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError

from transitplan.core.categories import CategoryRegistry
from transitplan.core.errors import PersistenceError

logger = logging.getLogger(__name__)


class ScheduleStore:
    """Parameterized queries against the schedule tables of each feed category."""

    def __init__(self, registry: CategoryRegistry, session_factory) -> None:
        self.registry = registry
        self.session_factory = session_factory

    async def _fetch(self, stmt) -> list[dict]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Schedule query failed: {e}") from e

    async def stops_in_box(
        self, category: str,
        min_lat: float, max_lat: float, min_lon: float, max_lon: float,
    ) -> list[dict]:
        """Stops inside a lat/lon bounding box (served by the location index)."""
        s = self.registry.tables(category).stops
        stmt = select(
            s.c.stop_id, s.c.stop_name, s.c.stop_code, s.c.stop_lat, s.c.stop_lon,
        ).where(
            s.c.stop_lat.between(min_lat, max_lat),
            s.c.stop_lon.between(min_lon, max_lon),
        )
        return await self._fetch(stmt)

    async def get_stop(self, category: str, stop_id: str) -> dict | None:
        s = self.registry.tables(category).stops
        rows = await self._fetch(
            select(s.c.stop_id, s.c.stop_name, s.c.stop_code, s.c.stop_lat, s.c.stop_lon)
            .where(s.c.stop_id == stop_id)
        )
        return rows[0] if rows else None

    async def routes_at_stop(self, category: str, stop_id: str) -> list[dict]:
        t = self.registry.tables(category)
        r, tr, st = t.routes, t.trips, t.stop_times
        stmt = (
            select(
                r.c.route_id, r.c.route_short_name, r.c.route_long_name,
                r.c.route_type, r.c.route_color,
            )
            .select_from(r.join(tr, tr.c.route_id == r.c.route_id).join(st, st.c.trip_id == tr.c.trip_id))
            .where(st.c.stop_id == stop_id)
            .distinct()
            .order_by(r.c.route_short_name)
        )
        return await self._fetch(stmt)

    async def direct_trips(self, category: str, origin_stop_id: str, dest_stop_id: str, limit: int) -> list[dict]:
        """Trips visiting the origin stop and later the destination stop."""
        t = self.registry.tables(category)
        r, tr = t.routes, t.trips
        st1 = t.stop_times.alias("st1")
        st2 = t.stop_times.alias("st2")
        stmt = (
            select(
                r.c.route_id, r.c.route_short_name, r.c.route_long_name, r.c.route_type,
                tr.c.trip_id, tr.c.trip_headsign,
                st1.c.stop_sequence.label("origin_sequence"),
                st2.c.stop_sequence.label("dest_sequence"),
                st1.c.departure_time.label("origin_departure"),
                st2.c.arrival_time.label("dest_arrival"),
            )
            .select_from(
                r.join(tr, tr.c.route_id == r.c.route_id)
                .join(st1, st1.c.trip_id == tr.c.trip_id)
                .join(st2, st2.c.trip_id == tr.c.trip_id)
            )
            .where(
                st1.c.stop_id == origin_stop_id,
                st2.c.stop_id == dest_stop_id,
                st1.c.stop_sequence < st2.c.stop_sequence,
            )
            .order_by(r.c.route_short_name, tr.c.trip_id)
            .limit(limit)
        )
        return await self._fetch(stmt)

    async def trips_from_stop(self, category: str, stop_id: str, limit: int) -> list[dict]:
        """Trips that call at a stop and continue past it."""
        t = self.registry.tables(category)
        r, tr = t.routes, t.trips
        st = t.stop_times.alias("st_origin")
        later = t.stop_times.alias("st_later")
        stmt = (
            select(
                r.c.route_id, r.c.route_short_name, r.c.route_long_name, r.c.route_type,
                tr.c.trip_id, tr.c.trip_headsign,
                st.c.stop_sequence.label("origin_sequence"),
            )
            .select_from(
                r.join(tr, tr.c.route_id == r.c.route_id)
                .join(st, st.c.trip_id == tr.c.trip_id)
            )
            .where(
                st.c.stop_id == stop_id,
                select(later.c.trip_id)
                .where(later.c.trip_id == tr.c.trip_id, later.c.stop_sequence > st.c.stop_sequence)
                .exists(),
            )
            .order_by(r.c.route_short_name, tr.c.trip_id)
            .limit(limit)
        )
        return await self._fetch(stmt)

    async def stops_after(self, category: str, trip_id: str, after_sequence: int) -> list[dict]:
        """Ordered downstream stops of a trip."""
        t = self.registry.tables(category)
        st, s = t.stop_times, t.stops
        stmt = (
            select(
                st.c.stop_id, st.c.stop_sequence,
                s.c.stop_name, s.c.stop_lat, s.c.stop_lon,
            )
            .select_from(st.join(s, s.c.stop_id == st.c.stop_id))
            .where(st.c.trip_id == trip_id, st.c.stop_sequence > after_sequence)
            .order_by(st.c.stop_sequence)
        )
        return await self._fetch(stmt)

    async def stops_before(
        self, category: str, stop_id: str, box: tuple[float, float, float, float] | None = None,
    ) -> list[dict]:
        """Distinct stops from which some trip later reaches ``stop_id``.

        ``box`` (min_lat, max_lat, min_lon, max_lon) keeps only stops inside it.
        """
        t = self.registry.tables(category)
        s = t.stops
        st_up = t.stop_times.alias("st_up")
        st_dest = t.stop_times.alias("st_dest")
        stmt = (
            select(s.c.stop_id, s.c.stop_name, s.c.stop_lat, s.c.stop_lon)
            .select_from(
                st_up.join(st_dest, and_(
                    st_dest.c.trip_id == st_up.c.trip_id,
                    st_dest.c.stop_sequence > st_up.c.stop_sequence,
                ))
                .join(s, s.c.stop_id == st_up.c.stop_id)
            )
            .where(st_dest.c.stop_id == stop_id, st_up.c.stop_id != stop_id)
            .distinct()
        )
        if box is not None:
            min_lat, max_lat, min_lon, max_lon = box
            stmt = stmt.where(
                s.c.stop_lat.between(min_lat, max_lat),
                s.c.stop_lon.between(min_lon, max_lon),
            )
        return await self._fetch(stmt)

    async def trips_between(
        self, category: str, from_stop_ids: list[str], to_stop_id: str,
        exclude_route_id: str | None, limit: int,
    ) -> list[dict]:
        """Trips from any of ``from_stop_ids`` to ``to_stop_id``, optionally on another route."""
        if not from_stop_ids:
            return []
        t = self.registry.tables(category)
        r, tr = t.routes, t.trips
        st_from = t.stop_times.alias("st_from")
        st_to = t.stop_times.alias("st_to")
        conditions = [
            st_from.c.stop_id.in_(from_stop_ids),
            st_to.c.stop_id == to_stop_id,
            st_from.c.stop_sequence < st_to.c.stop_sequence,
        ]
        if exclude_route_id is not None:
            conditions.append(r.c.route_id != exclude_route_id)
        stmt = (
            select(
                r.c.route_id, r.c.route_short_name, r.c.route_long_name, r.c.route_type,
                tr.c.trip_id, tr.c.trip_headsign,
                st_from.c.stop_id.label("from_stop_id"),
                st_from.c.stop_sequence.label("from_sequence"),
                st_to.c.stop_sequence.label("to_sequence"),
            )
            .select_from(
                r.join(tr, tr.c.route_id == r.c.route_id)
                .join(st_from, st_from.c.trip_id == tr.c.trip_id)
                .join(st_to, st_to.c.trip_id == tr.c.trip_id)
            )
            .where(*conditions)
            .order_by(r.c.route_short_name, tr.c.trip_id, st_from.c.stop_sequence)
            .limit(limit)
        )
        return await self._fetch(stmt)

    async def closest_trip_for_pair(
        self, category: str, route_id: str, board_stop_id: str, alight_stop_id: str,
    ) -> dict | None:
        """Trip of a route serving both stops with the smallest sequence gap."""
        t = self.registry.tables(category)
        tr = t.trips
        st1 = t.stop_times.alias("st_board")
        st2 = t.stop_times.alias("st_alight")
        gap = (st2.c.stop_sequence - st1.c.stop_sequence).label("sequence_gap")
        stmt = (
            select(
                tr.c.trip_id, tr.c.shape_id,
                st1.c.stop_sequence.label("board_sequence"),
                st2.c.stop_sequence.label("alight_sequence"),
                gap,
            )
            .select_from(
                tr.join(st1, st1.c.trip_id == tr.c.trip_id)
                .join(st2, st2.c.trip_id == tr.c.trip_id)
            )
            .where(
                tr.c.route_id == route_id,
                st1.c.stop_id == board_stop_id,
                st2.c.stop_id == alight_stop_id,
                st1.c.stop_sequence < st2.c.stop_sequence,
            )
            .order_by(gap, tr.c.trip_id)
            .limit(1)
        )
        rows = await self._fetch(stmt)
        return rows[0] if rows else None

    async def trip_stop_times(self, category: str, trip_id: str, from_sequence: int, to_sequence: int) -> list[dict]:
        t = self.registry.tables(category)
        st, s = t.stop_times, t.stops
        stmt = (
            select(
                st.c.stop_id, st.c.stop_sequence, st.c.shape_dist_traveled,
                s.c.stop_lat, s.c.stop_lon,
            )
            .select_from(st.join(s, s.c.stop_id == st.c.stop_id))
            .where(
                st.c.trip_id == trip_id,
                st.c.stop_sequence >= from_sequence,
                st.c.stop_sequence <= to_sequence,
            )
            .order_by(st.c.stop_sequence)
        )
        return await self._fetch(stmt)

    async def shape_points(self, category: str, shape_id: str) -> list[dict]:
        sh = self.registry.tables(category).shapes
        stmt = (
            select(sh.c.shape_pt_lat, sh.c.shape_pt_lon, sh.c.shape_pt_sequence, sh.c.shape_dist_traveled)
            .where(sh.c.shape_id == shape_id)
            .order_by(sh.c.shape_pt_sequence)
        )
        return await self._fetch(stmt)

    async def counts(self, category: str) -> dict[str, int]:
        t = self.registry.tables(category)
        try:
            async with self.session_factory() as session:
                out = {}
                for key, table in (("stops", t.stops), ("routes", t.routes), ("trips", t.trips)):
                    out[key] = (await session.execute(select(func.count()).select_from(table))).scalar_one()
                return out
        except SQLAlchemyError as e:
            raise PersistenceError(f"Summary query failed for {category}: {e}") from e
