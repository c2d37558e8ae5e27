"""Tests for shape segment matching."""

import asyncio
import math

from transitplan.core.shape_matcher import ShapeMatcher, match_points
from transitplan.core.geo import decode_polyline


def _points(n=10, lat=3.1, lon0=101.60, step=0.01, dist=False):
    return [
        {
            "shape_pt_lat": lat,
            "shape_pt_lon": lon0 + i * step,
            "shape_dist_traveled": float(i) if dist else None,
        }
        for i in range(n)
    ]


def _stop(lat, lon, dist=None):
    return {"stop_lat": lat, "stop_lon": lon, "shape_dist_traveled": dist}


def test_segment_between_stops():
    """Stops on shape points 2 and 5 cut out that stretch."""
    stops = [_stop(3.1, 101.62), _stop(3.1, 101.63), _stop(3.1, 101.65)]
    match = match_points(stops, _points())
    assert match is not None
    assert (match.start_index, match.end_index) == (2, 5)
    assert not match.used_shape_dist
    # 0.03 degrees of longitude at 3.1N
    expected = 0.03 * 111.32 * math.cos(math.radians(3.1))
    assert math.isclose(match.distance_km, expected, rel_tol=0.01)
    coords = decode_polyline(match.geometry)
    assert coords[0] == (3.1, 101.62)
    assert coords[-1] == (3.1, 101.65)


def test_uses_shape_dist_traveled_when_consistent():
    stops = [_stop(3.1, 101.62, 2.0), _stop(3.1, 101.65, 5.0)]
    match = match_points(stops, _points(dist=True))
    assert match is not None
    assert match.used_shape_dist
    assert (match.start_index, match.end_index) == (2, 5)


def test_inconsistent_shape_dist_falls_back_to_nearest():
    # Stop distances beyond the shape's own scale
    stops = [_stop(3.1, 101.62, 2000.0), _stop(3.1, 101.65, 5000.0)]
    match = match_points(stops, _points(dist=True))
    assert match is not None
    assert not match.used_shape_dist
    assert (match.start_index, match.end_index) == (2, 5)


def test_rejects_segment_covering_most_of_shape():
    """A match spanning every point of the shape is not trusted."""
    stops = [_stop(3.1, 101.60), _stop(3.1, 101.69)]
    assert match_points(stops, _points()) is None


def test_rejects_stops_far_from_shape():
    # ~3 km north of the shape line
    stops = [_stop(3.127, 101.62), _stop(3.127, 101.65)]
    assert match_points(stops, _points()) is None


def test_rejects_backwards_match():
    """Alighting before boarding along the shape collapses to one point."""
    stops = [_stop(3.1, 101.65), _stop(3.1, 101.62)]
    assert match_points(stops, _points()) is None


def test_needs_two_stops_and_points():
    assert match_points([_stop(3.1, 101.62)], _points()) is None
    assert match_points([_stop(3.1, 101.62), _stop(3.1, 101.65)], _points(n=1)) is None


def test_match_segment_from_store(transit_db):
    async def scenario():
        async with transit_db() as db:
            return await ShapeMatcher(db.store).match_segment("rapid-rail-kl", "KJL", "KJ15", "KJ10")

    match = asyncio.run(scenario())
    assert match is not None
    assert (match.start_index, match.end_index) == (2, 7)
    assert match.distance_km > 14.0


def test_match_segment_without_shape(transit_db):
    """Bus trips in the fixture network carry no shape."""
    async def scenario():
        async with transit_db() as db:
            return await ShapeMatcher(db.store).match_segment("rapid-bus-kl", "T789", "1000001", "1000002")

    assert asyncio.run(scenario()) is None


def test_rejects_segment_covering_95_percent():
    """19 of 20 shape points between the stops."""
    points = _points(n=20)
    stops = [_stop(3.1, 101.60), _stop(3.1, 101.78)]
    assert match_points(stops, points) is None
