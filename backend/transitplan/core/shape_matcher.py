"""Cut the segment between two stops out of a trip's recorded shape."""

import bisect
import logging
import math
from dataclasses import dataclass

from shapely.geometry import LineString

from transitplan.config import settings
from transitplan.core.geo import encode_polyline, haversine_km
from transitplan.core.schedule_store import ScheduleStore

logger = logging.getLogger(__name__)

LAT_M_PER_DEG = 111_320.0


@dataclass
class ShapeMatch:
    geometry: str  # encoded polyline
    coords: list[tuple[float, float]]  # [(lat, lon), ...]
    distance_km: float
    start_index: int
    end_index: int
    used_shape_dist: bool


def _to_metric(coords: list[tuple[float, float]], ref_lat: float) -> list[tuple[float, float]]:
    """Project (lat, lon) to a local planar (x, y) in meters."""
    lon_m = LAT_M_PER_DEG * math.cos(math.radians(ref_lat))
    return [(lon * lon_m, lat * LAT_M_PER_DEG) for lat, lon in coords]


def _dist_reliable(stops: list[dict], points: list[dict]) -> bool:
    stop_d = [s["shape_dist_traveled"] for s in stops]
    point_d = [p["shape_dist_traveled"] for p in points]
    if any(d is None for d in stop_d) or any(d is None for d in point_d):
        return False
    if any(b < a for a, b in zip(stop_d, stop_d[1:])) or any(b < a for a, b in zip(point_d, point_d[1:])):
        return False
    # Values must share a scale with the shape, not all zero
    return point_d[-1] > 0 and stop_d[-1] <= point_d[-1] * 1.01


def _bounds_by_distance(stops: list[dict], points: list[dict]) -> tuple[int, int]:
    point_d = [p["shape_dist_traveled"] for p in points]
    start = bisect.bisect_left(point_d, stops[0]["shape_dist_traveled"])
    end = bisect.bisect_right(point_d, stops[-1]["shape_dist_traveled"]) - 1
    return start, end


def _bounds_by_nearest(stops: list[dict], planar: list[tuple[float, float]], ref_lat: float) -> tuple[int, int]:
    """Forward-only nearest shape point for each stop in sequence order."""
    stop_xy = _to_metric([(s["stop_lat"], s["stop_lon"]) for s in stops], ref_lat)
    cursor = 0
    matched = []
    for sx, sy in stop_xy:
        best_i, best_d = cursor, math.inf
        for i in range(cursor, len(planar)):
            px, py = planar[i]
            d = (px - sx) ** 2 + (py - sy) ** 2
            if d < best_d:
                best_i, best_d = i, d
        matched.append(best_i)
        cursor = best_i
    return matched[0], matched[-1]


def match_points(
    stops: list[dict],
    points: list[dict],
    snap_max_km: float = settings.shape_snap_max_km,
    max_fraction: float = settings.shape_max_segment_fraction,
) -> ShapeMatch | None:
    """Match ordered stop-times (board..alight) onto ordered shape points.

    ``stops`` rows carry stop_lat, stop_lon and shape_dist_traveled; ``points``
    rows carry shape_pt_lat, shape_pt_lon and shape_dist_traveled. Returns None
    when the match is not trustworthy.
    """
    if len(stops) < 2 or len(points) < 2:
        return None

    coords = [(p["shape_pt_lat"], p["shape_pt_lon"]) for p in points]
    ref_lat = sum(c[0] for c in coords) / len(coords)
    planar = _to_metric(coords, ref_lat)

    used_dist = _dist_reliable(stops, points)
    if used_dist:
        start, end = _bounds_by_distance(stops, points)
    else:
        start, end = _bounds_by_nearest(stops, planar, ref_lat)

    if not (0 <= start < end < len(points)):
        logger.debug("Shape match rejected: bounds %d..%d of %d", start, end, len(points))
        return None
    if (end - start + 1) / len(points) > max_fraction:
        logger.debug("Shape match rejected: %d..%d spans too much of %d points", start, end, len(points))
        return None

    board = (stops[0]["stop_lat"], stops[0]["stop_lon"])
    alight = (stops[-1]["stop_lat"], stops[-1]["stop_lon"])
    if (haversine_km(*board, *coords[start]) > snap_max_km
            or haversine_km(*alight, *coords[end]) > snap_max_km):
        logger.debug("Shape match rejected: endpoints too far from stops")
        return None

    segment = [board, *coords[start:end + 1], alight]
    length_m = LineString(_to_metric(segment, ref_lat)).length
    return ShapeMatch(
        geometry=encode_polyline(segment),
        coords=segment,
        distance_km=length_m / 1000.0,
        start_index=start,
        end_index=end,
        used_shape_dist=used_dist,
    )


class ShapeMatcher:
    """Looks up the best trip and shape for a ride and matches the segment."""

    def __init__(self, store: ScheduleStore) -> None:
        self.store = store

    async def match_segment(
        self, category: str, route_id: str, board_stop_id: str, alight_stop_id: str,
    ) -> ShapeMatch | None:
        trip = await self.store.closest_trip_for_pair(category, route_id, board_stop_id, alight_stop_id)
        if trip is None or not trip["shape_id"]:
            return None
        points = await self.store.shape_points(category, trip["shape_id"])
        if len(points) < 2:
            return None
        stops = await self.store.trip_stop_times(
            category, trip["trip_id"], trip["board_sequence"], trip["alight_sequence"],
        )
        match = match_points(stops, points)
        if match is None:
            logger.warning(
                "No usable shape for %s route %s (%s -> %s), using straight line",
                category, route_id, board_stop_id, alight_stop_id,
            )
        return match
