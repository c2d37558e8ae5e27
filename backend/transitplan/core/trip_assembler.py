"""Turn stop-pair connections into complete, ranked door-to-door itineraries."""

import datetime
import functools
import logging

import pydantic

from transitplan.config import settings
from transitplan.core.access_advisor import access_options
from transitplan.core.connection_finder import (
    Candidate,
    ConnectionFinder,
    DirectCandidate,
    Ride,
    SearchPolicy,
    StopPoint,
)
from transitplan.core.emissions import mode_for_route_type, transit_leg_metrics
from transitplan.core.errors import TransitPlanError, ValidationError
from transitplan.core.geo import haversine_km, validate_coordinates
from transitplan.core.route_cache import RouteCache
from transitplan.core.shape_matcher import ShapeMatcher
from transitplan.core.stop_locator import StopLocator
from transitplan.schemas.transit import (
    DirectItinerary,
    Location,
    NearbyStop,
    PlanResult,
    RouteTypeCounts,
    StopRef,
    TransferItinerary,
    TransferLeg,
    TransitLeg,
    WalkLeg,
)

logger = logging.getLogger(__name__)

CACHE_MODE = "transit"
MAX_ALTERNATIVES_PER_TYPE = 2


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _compare(a, b) -> float:
    """Duration order, favouring a direct trip within the preference window."""
    if a.type == b.type:
        return a.total_duration - b.total_duration
    if abs(a.total_duration - b.total_duration) < settings.direct_preference_minutes:
        return -1 if a.type == "direct" else 1
    return a.total_duration - b.total_duration


def _signature(itinerary) -> tuple:
    return tuple(
        (leg.route_id, leg.board_stop.stop_id, leg.alight_stop.stop_id)
        for leg in itinerary.legs if leg.type == "transit"
    )


def _stop_location(stop: StopPoint) -> Location:
    return Location(latitude=stop.lat, longitude=stop.lon, name=stop.name, stop_id=stop.stop_id)


def _stop_ref(stop: StopPoint) -> StopRef:
    return StopRef(stop_id=stop.stop_id, name=stop.name, latitude=stop.lat, longitude=stop.lon)


def order_stops(stops: list[NearbyStop], trip_km: float, rail_categories: set[str]) -> list[NearbyStop]:
    """Rail stops first on longer trips; plain distance order on short ones."""
    if trip_km < settings.rail_preference_min_km:
        return list(stops)
    return sorted(stops, key=lambda s: (s.category not in rail_categories, s.distance_km))


class TripAssembler:
    """Plans transit itineraries from coordinates, backed by the route cache."""

    def __init__(
        self,
        locator: StopLocator,
        finder: ConnectionFinder,
        shapes: ShapeMatcher,
        cache: RouteCache | None = None,
    ) -> None:
        self.locator = locator
        self.finder = finder
        self.shapes = shapes
        self.cache = cache

    async def plan_transit_route(
        self, origin_lat: float, origin_lon: float, dest_lat: float, dest_lon: float,
        use_cache: bool = True,
    ) -> PlanResult:
        if not (validate_coordinates(origin_lat, origin_lon) and validate_coordinates(dest_lat, dest_lon)):
            raise ValidationError("Invalid coordinates")

        if use_cache and self.cache is not None:
            hit = await self.cache.get(origin_lat, origin_lon, dest_lat, dest_lon, CACHE_MODE)
            if hit is not None:
                try:
                    result = PlanResult.model_validate(hit.payload)
                except pydantic.ValidationError:
                    logger.warning("Discarding unreadable cached plan")
                else:
                    result.cached = True
                    result.reversed = hit.reversed
                    return result

        result = await self.compute_plan(origin_lat, origin_lon, dest_lat, dest_lon)
        if use_cache and self.cache is not None and result.success:
            await self.cache.set(
                origin_lat, origin_lon, dest_lat, dest_lon, CACHE_MODE, result.model_dump(mode="json"),
            )
        return result

    async def compute_plan(
        self, origin_lat: float, origin_lon: float, dest_lat: float, dest_lon: float,
    ) -> PlanResult:
        """Live planning without the cache."""
        logger.info(
            "Planning transit route from [%.5f,%.5f] to [%.5f,%.5f]",
            origin_lat, origin_lon, dest_lat, dest_lon,
        )
        origin = Location(latitude=origin_lat, longitude=origin_lon)
        destination = Location(latitude=dest_lat, longitude=dest_lon)

        origin_stops, walkable = await self.locator.find_with_fallback(origin_lat, origin_lon)
        failure = self._coverage_failure(origin_stops, walkable, "origin")
        if failure is not None:
            return failure
        dest_stops, walkable = await self.locator.find_with_fallback(dest_lat, dest_lon)
        failure = self._coverage_failure(dest_stops, walkable, "destination")
        if failure is not None:
            return failure

        trip_km = haversine_km(origin_lat, origin_lon, dest_lat, dest_lon)
        rail = {c.name for c in self.locator.store.registry.schedule_categories() if c.is_rail}
        origin_stops = order_stops(origin_stops, trip_km, rail)
        dest_stops = order_stops(dest_stops, trip_km, rail)

        outcome = await self.finder.search(origin_stops, dest_stops, SearchPolicy())
        logger.info(
            "Checked %d stop pairs, %d candidates (%s)",
            outcome.pairs_checked, len(outcome.candidates), outcome.truncation.value,
        )

        itineraries = []
        seen = set()
        for candidate in outcome.candidates:
            itinerary = await self._assemble(candidate, origin, destination)
            sig = _signature(itinerary)
            if sig in seen:
                continue
            seen.add(sig)
            itineraries.append(itinerary)
        itineraries = self._drop_slow_transfers(itineraries)

        if not itineraries:
            return PlanResult(
                success=False,
                origin=origin,
                destination=destination,
                error="No public transport routes found between these locations",
                suggestion="The locations may not be well connected by public transport",
                origin_stops=origin_stops[:3],
                dest_stops=dest_stops[:3],
                truncation=outcome.truncation.value,
                timestamp=_now_iso(),
            )

        itineraries.sort(key=functools.cmp_to_key(_compare))
        top = itineraries[:settings.max_itineraries]
        direct = [i for i in itineraries if i.type == "direct"]
        transfer = [i for i in itineraries if i.type == "transfer"]
        return PlanResult(
            success=True,
            origin=origin,
            destination=destination,
            routes=top,
            direct_routes=direct[:MAX_ALTERNATIVES_PER_TYPE],
            transfer_routes=transfer[:MAX_ALTERNATIVES_PER_TYPE],
            total_routes_found=len(itineraries),
            best_route=top[0],
            route_types=RouteTypeCounts(direct=len(direct), transfer=len(transfer)),
            truncation=outcome.truncation.value,
            timestamp=_now_iso(),
        )

    def _coverage_failure(self, stops: list[NearbyStop], walkable: bool, end: str) -> PlanResult | None:
        if not stops:
            return PlanResult(
                success=False,
                error=f"No public transport stops found near {end}",
                suggestion="This area is not serviced by public transport",
                timestamp=_now_iso(),
            )
        if walkable:
            return None
        advice = access_options(stops[0].distance_km, end, stops[0].name)
        result = PlanResult(
            success=False,
            error=f"No stops within walking distance of {end} ({settings.max_walking_distance_km}km)",
            suggestion=advice.recommendation,
            access_options=advice,
            timestamp=_now_iso(),
        )
        if end == "origin":
            result.nearest_origin_stops = stops
        else:
            result.nearest_dest_stops = stops
        return result

    @staticmethod
    def _drop_slow_transfers(itineraries: list) -> list:
        """Drop transfers slower than the fastest direct itinerary.

        A transfer always has more legs than a direct ride, so it never
        survives on leg count.
        """
        directs = [i for i in itineraries if i.type == "direct"]
        if not directs:
            return itineraries
        fastest = min(directs, key=lambda i: i.total_duration)
        return [
            i for i in itineraries
            if i.type == "direct"
            or i.total_duration <= fastest.total_duration
        ]

    @staticmethod
    def _walk(start: Location, end: Location, instruction: str) -> WalkLeg:
        distance = haversine_km(start.latitude, start.longitude, end.latitude, end.longitude)
        duration = distance / settings.walking_speed_kmh * 60
        return WalkLeg(
            instruction=f"{instruction} ({distance * 1000:.0f}m, about {round(duration)} minutes)",
            distance=distance,
            duration=duration,
            start=start,
            end=end,
        )

    async def _ride(self, ride: Ride, towards: str) -> TransitLeg:
        mode = mode_for_route_type(ride.route_type)
        try:
            match = await self.shapes.match_segment(
                ride.category, ride.route_id, ride.board.stop_id, ride.alight.stop_id,
            )
        except TransitPlanError:
            logger.warning("Shape lookup failed for route %s, using straight line", ride.route_id)
            match = None
        if match is not None:
            distance = match.distance_km
        else:
            distance = haversine_km(ride.board.lat, ride.board.lon, ride.alight.lat, ride.alight.lon)
        duration, emissions = transit_leg_metrics(mode, distance)
        name = ride.route_short_name or ride.route_long_name or ride.route_id
        return TransitLeg(
            mode=mode,
            instruction=f"Take {name} towards {ride.headsign or towards}",
            route_id=ride.route_id,
            route_name=ride.route_short_name,
            route_long_name=ride.route_long_name,
            trip_id=ride.trip_id,
            headsign=ride.headsign,
            category=ride.category,
            board_stop=_stop_ref(ride.board),
            alight_stop=_stop_ref(ride.alight),
            distance=distance,
            duration=duration,
            emissions=emissions,
            geometry=match.geometry if match else None,
            degraded=match is None,
        )

    async def _assemble(self, candidate: Candidate, origin: Location, destination: Location):
        first_stop = _stop_location(candidate.rides[0].board)
        last_stop = _stop_location(candidate.rides[-1].alight)
        legs = [self._walk(origin, first_stop, f"Walk to {first_stop.name}")]

        if isinstance(candidate, DirectCandidate):
            legs.append(await self._ride(candidate.ride, "destination"))
        else:
            legs.append(await self._ride(candidate.first, "transfer point"))
            at = _stop_location(candidate.first.alight)
            if candidate.cross_feed:
                walk_min = candidate.walk_km / settings.walking_speed_kmh * 60
                legs.append(TransferLeg(
                    instruction=(
                        f"Walk to {candidate.second.board.name} (transfer from "
                        f"{candidate.first.category} to {candidate.second.category})"
                    ),
                    distance=candidate.walk_km,
                    duration=walk_min + settings.cross_feed_transfer_buffer_minutes,
                    at=at,
                    to=_stop_location(candidate.second.board),
                    walking=True,
                ))
            else:
                legs.append(TransferLeg(
                    instruction=f"Transfer at {at.name}",
                    distance=0.0,
                    duration=settings.same_feed_transfer_minutes,
                    at=at,
                ))
            legs.append(await self._ride(candidate.second, "destination"))

        legs.append(self._walk(last_stop, destination, f"Walk to destination from {last_stop.name}"))
        totals = {
            "total_distance": sum(leg.distance for leg in legs),
            "total_duration": sum(leg.duration for leg in legs),
            "total_emissions": sum(leg.emissions for leg in legs),
        }
        if isinstance(candidate, DirectCandidate):
            return DirectItinerary(category=candidate.ride.category, legs=legs, **totals)
        category = candidate.first.category if not candidate.cross_feed else "mixed"
        return TransferItinerary(
            category=category, transfer_point=candidate.first.alight.name, legs=legs, **totals,
        )
