"""Bounded direct and single-transfer connection search between stops."""

import enum
import logging
import time
from dataclasses import dataclass, field

from transitplan.config import settings
from transitplan.core.geo import bounding_box, haversine_km
from transitplan.core.schedule_store import ScheduleStore
from transitplan.schemas.transit import NearbyStop

logger = logging.getLogger(__name__)


class TruncationReason(str, enum.Enum):
    COMPLETE = "complete"  # every allowed combination was checked
    SUFFICIENT_RESULTS = "sufficient_results"
    MAX_COMBINATIONS = "max_combinations"
    TIME_BUDGET = "time_budget"


@dataclass
class SearchPolicy:
    """Explicit bounds of the connection search."""

    max_combinations: int = settings.max_stop_pair_combinations
    max_results: int = settings.sufficient_itineraries
    time_budget_seconds: float = settings.search_time_budget_seconds
    max_direct_results: int = settings.max_direct_results
    max_first_leg_candidates: int = settings.max_first_leg_candidates
    max_transfer_points: int = settings.max_transfer_points
    max_second_leg_candidates: int = settings.max_second_leg_candidates
    max_transfer_results: int = settings.max_transfer_results
    transfer_radius_km: float = settings.cross_feed_transfer_radius_km
    started_at: float = field(default_factory=time.monotonic)

    def restart(self) -> None:
        self.started_at = time.monotonic()

    def out_of_time(self) -> bool:
        return time.monotonic() - self.started_at >= self.time_budget_seconds


@dataclass(frozen=True)
class StopPoint:
    stop_id: str
    name: str
    lat: float
    lon: float

    @classmethod
    def from_row(cls, row: dict) -> "StopPoint":
        return cls(row["stop_id"], row["stop_name"], row["stop_lat"], row["stop_lon"])

    @classmethod
    def from_nearby(cls, stop: NearbyStop) -> "StopPoint":
        return cls(stop.stop_id, stop.name, stop.lat, stop.lon)


@dataclass(frozen=True)
class Ride:
    """One vehicle ride between two stops of the same feed."""

    category: str
    route_id: str
    route_short_name: str | None
    route_long_name: str | None
    route_type: int | None
    trip_id: str
    headsign: str | None
    board: StopPoint
    alight: StopPoint

    @classmethod
    def from_row(cls, category: str, row: dict, board: StopPoint, alight: StopPoint) -> "Ride":
        return cls(
            category=category,
            route_id=row["route_id"],
            route_short_name=row["route_short_name"],
            route_long_name=row["route_long_name"],
            route_type=row["route_type"],
            trip_id=row["trip_id"],
            headsign=row["trip_headsign"],
            board=board,
            alight=alight,
        )

    @property
    def signature(self) -> tuple[str, str, str]:
        return (self.route_id, self.board.stop_id, self.alight.stop_id)


@dataclass(frozen=True)
class DirectCandidate:
    origin: NearbyStop
    destination: NearbyStop
    ride: Ride

    @property
    def rides(self) -> tuple[Ride, ...]:
        return (self.ride,)


@dataclass(frozen=True)
class TransferCandidate:
    origin: NearbyStop
    destination: NearbyStop
    first: Ride
    second: Ride
    walk_km: float = 0.0  # between first.alight and second.board

    @property
    def rides(self) -> tuple[Ride, ...]:
        return (self.first, self.second)

    @property
    def cross_feed(self) -> bool:
        return self.first.category != self.second.category


Candidate = DirectCandidate | TransferCandidate


@dataclass
class SearchOutcome:
    candidates: list[Candidate] = field(default_factory=list)
    pairs_checked: int = 0
    truncation: TruncationReason = TruncationReason.COMPLETE


def _valid(candidate: Candidate) -> bool:
    return all(r.board.stop_id != r.alight.stop_id for r in candidate.rides)


def _padded_box(rows: list[dict], radius_km: float) -> tuple[float, float, float, float] | None:
    """Box around every stop row, widened by radius_km; None for no rows."""
    if not rows:
        return None
    boxes = [bounding_box(r["stop_lat"], r["stop_lon"], radius_km) for r in rows]
    return (
        min(b[0] for b in boxes),
        max(b[1] for b in boxes),
        min(b[2] for b in boxes),
        max(b[3] for b in boxes),
    )


class ConnectionFinder:
    """Direct and one-transfer search over the schedule store."""

    def __init__(self, store: ScheduleStore) -> None:
        self.store = store

    async def search(
        self,
        origin_stops: list[NearbyStop],
        dest_stops: list[NearbyStop],
        policy: SearchPolicy | None = None,
    ) -> SearchOutcome:
        """Check stop pairs in enumeration order until a bound is hit."""
        policy = policy or SearchPolicy()
        outcome = SearchOutcome()
        for origin in origin_stops:
            for dest in dest_stops:
                if outcome.pairs_checked >= policy.max_combinations:
                    outcome.truncation = TruncationReason.MAX_COMBINATIONS
                    return outcome
                if policy.out_of_time():
                    outcome.truncation = TruncationReason.TIME_BUDGET
                    return outcome
                outcome.pairs_checked += 1
                candidates, timed_out = await self.find_connections(origin, dest, policy)
                outcome.candidates.extend(candidates)
                if timed_out:
                    outcome.truncation = TruncationReason.TIME_BUDGET
                    return outcome
                if len(outcome.candidates) >= policy.max_results:
                    outcome.truncation = TruncationReason.SUFFICIENT_RESULTS
                    return outcome
        return outcome

    async def find_connections(
        self, origin: NearbyStop, dest: NearbyStop, policy: SearchPolicy,
    ) -> tuple[list[Candidate], bool]:
        """Direct trips, or transfer candidates when no direct trip exists.

        Returns (candidates, stopped_on_time_budget).
        """
        if origin.category == dest.category and origin.stop_id == dest.stop_id:
            return [], False
        direct = await self.find_direct(origin, dest, policy)
        if direct:
            return direct, False
        return await self.find_transfers(origin, dest, policy)

    async def find_direct(self, origin: NearbyStop, dest: NearbyStop, policy: SearchPolicy) -> list[DirectCandidate]:
        if origin.category != dest.category:
            return []
        rows = await self.store.direct_trips(
            origin.category, origin.stop_id, dest.stop_id, policy.max_direct_results,
        )
        board, alight = StopPoint.from_nearby(origin), StopPoint.from_nearby(dest)
        found = [
            DirectCandidate(origin, dest, Ride.from_row(origin.category, row, board, alight))
            for row in rows
        ]
        return [c for c in found if _valid(c)]

    async def find_transfers(
        self, origin: NearbyStop, dest: NearbyStop, policy: SearchPolicy,
    ) -> tuple[list[TransferCandidate], bool]:
        first_rows = await self.store.trips_from_stop(
            origin.category, origin.stop_id, policy.max_first_leg_candidates,
        )
        # One sample per route and headsign; further trips repeat the same pattern
        seen = set()
        first_legs = []
        for row in first_rows:
            key = (row["route_id"], row["trip_headsign"])
            if key not in seen:
                seen.add(key)
                first_legs.append(row)
        if not first_legs:
            return [], False
        first_legs = first_legs[:policy.max_transfer_points]

        downstreams = []
        for first in first_legs:
            if policy.out_of_time():
                return [], True
            downstreams.append(await self.store.stops_after(
                origin.category, first["trip_id"], first["origin_sequence"],
            ))

        # Stops from which the destination can be reached; across feeds only
        # those within walking range of some first leg
        same_feed = origin.category == dest.category
        box = None
        if not same_feed:
            box = _padded_box([row for rows in downstreams for row in rows], policy.transfer_radius_km)
            if box is None:
                return [], False
        feeders = {
            row["stop_id"]: StopPoint.from_row(row)
            for row in await self.store.stops_before(dest.category, dest.stop_id, box)
        }
        if not feeders:
            return [], False

        board = StopPoint.from_nearby(origin)
        final = StopPoint.from_nearby(dest)
        results: list[TransferCandidate] = []

        for first, downstream in zip(first_legs, downstreams):
            if policy.out_of_time():
                return results, True
            # feeder stop id -> (downstream position, stop where the first leg ends, walk km)
            links: dict[str, tuple[int, StopPoint, float]] = {}
            for pos, row in enumerate(downstream):
                if same_feed:
                    if row["stop_id"] in feeders and row["stop_id"] not in links:
                        links[row["stop_id"]] = (pos, StopPoint.from_row(row), 0.0)
                    continue
                min_lat, max_lat, min_lon, max_lon = bounding_box(
                    row["stop_lat"], row["stop_lon"], policy.transfer_radius_km,
                )
                for feeder in feeders.values():
                    if not (min_lat <= feeder.lat <= max_lat and min_lon <= feeder.lon <= max_lon):
                        continue
                    d = haversine_km(row["stop_lat"], row["stop_lon"], feeder.lat, feeder.lon)
                    if d <= policy.transfer_radius_km:
                        prev = links.get(feeder.stop_id)
                        if prev is None or d < prev[2]:
                            links[feeder.stop_id] = (pos, StopPoint.from_row(row), d)
            if not links:
                continue

            second_rows = await self.store.trips_between(
                dest.category, list(links), dest.stop_id,
                first["route_id"] if same_feed else None,
                policy.max_second_leg_candidates,
            )
            # Earliest transfer opportunity along the first leg wins per second route
            second_rows.sort(key=lambda r: links[r["from_stop_id"]][0])
            used_routes = set()
            for second in second_rows:
                if second["route_id"] in used_routes:
                    continue
                used_routes.add(second["route_id"])
                _, alight, walk_km = links[second["from_stop_id"]]
                candidate = TransferCandidate(
                    origin=origin,
                    destination=dest,
                    first=Ride.from_row(origin.category, first, board, alight),
                    second=Ride.from_row(dest.category, second, feeders[second["from_stop_id"]], final),
                    walk_km=walk_km,
                )
                if not _valid(candidate):
                    logger.debug("Discarding transfer with coincident stops at %s", alight.stop_id)
                    continue
                results.append(candidate)
                if len(results) >= policy.max_transfer_results:
                    return results, False
        return results, False
