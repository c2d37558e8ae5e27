"""Tests for ConnectionFinder."""

import asyncio

from transitplan.core.connection_finder import (
    ConnectionFinder,
    DirectCandidate,
    SearchPolicy,
    TransferCandidate,
    TruncationReason,
)
from transitplan.schemas.transit import NearbyStop

KELANA_JAYA = NearbyStop(stop_id="KJ15", name="Kelana Jaya", lat=3.0170, lon=101.6210, distance_km=0.06,
                         category="rapid-rail-kl")
KLCC = NearbyStop(stop_id="KJ10", name="KLCC", lat=3.1340, lon=101.6865, distance_km=0.04,
                  category="rapid-rail-kl")
KJ_BUS_HUB = NearbyStop(stop_id="1000001", name="Kelana Jaya Bus Hub", lat=3.0160, lon=101.6200, distance_km=0.09,
                        category="rapid-bus-kl")
SHAH_ALAM = NearbyStop(stop_id="1000003", name="Shah Alam", lat=3.0700, lon=101.5000, distance_km=0.02,
                       category="rapid-bus-kl")


def test_direct_trip_found(transit_db):
    async def scenario():
        async with transit_db() as db:
            return await ConnectionFinder(db.store).find_connections(KELANA_JAYA, KLCC, SearchPolicy())

    candidates, timed_out = asyncio.run(scenario())
    assert not timed_out
    assert len(candidates) == 1
    direct = candidates[0]
    assert isinstance(direct, DirectCandidate)
    assert direct.ride.route_id == "KJL"
    assert direct.ride.headsign == "Gombak"
    assert direct.ride.signature == ("KJL", "KJ15", "KJ10")


def test_no_direct_trip_against_direction(transit_db):
    async def scenario():
        async with transit_db() as db:
            finder = ConnectionFinder(db.store)
            return await finder.find_direct(KLCC, KELANA_JAYA, SearchPolicy())

    assert asyncio.run(scenario()) == []


def test_identical_stop_skipped(transit_db):
    async def scenario():
        async with transit_db() as db:
            return await ConnectionFinder(db.store).find_connections(KLCC, KLCC, SearchPolicy())

    assert asyncio.run(scenario()) == ([], False)


def test_cross_feed_transfer(transit_db):
    """Bus to Pasar Seni, walk to the LRT station, LRT to KLCC."""
    async def scenario():
        async with transit_db() as db:
            return await ConnectionFinder(db.store).find_connections(KJ_BUS_HUB, KLCC, SearchPolicy())

    candidates, _ = asyncio.run(scenario())
    assert len(candidates) == 1
    transfer = candidates[0]
    assert isinstance(transfer, TransferCandidate)
    assert transfer.cross_feed
    assert transfer.first.route_id == "T789"
    assert transfer.first.alight.stop_id == "1000002"
    assert transfer.second.route_id == "KJL"
    assert transfer.second.board.stop_id == "KJ14"
    assert transfer.second.alight.stop_id == "KJ10"
    assert 0 < transfer.walk_km < 0.1


def test_same_feed_transfer(transit_db):
    async def scenario():
        async with transit_db() as db:
            return await ConnectionFinder(db.store).find_connections(KJ_BUS_HUB, SHAH_ALAM, SearchPolicy())

    candidates, _ = asyncio.run(scenario())
    assert len(candidates) == 1
    transfer = candidates[0]
    assert not transfer.cross_feed
    assert transfer.walk_km == 0.0
    assert [r.route_id for r in transfer.rides] == ["T789", "T800"]
    assert transfer.first.alight.stop_id == transfer.second.board.stop_id == "1000002"


def test_no_connection_from_terminus(transit_db):
    """Nothing departs Shah Alam in the fixture network."""
    async def scenario():
        async with transit_db() as db:
            return await ConnectionFinder(db.store).find_connections(SHAH_ALAM, KLCC, SearchPolicy())

    assert asyncio.run(scenario()) == ([], False)


def test_search_complete(transit_db):
    async def scenario():
        async with transit_db() as db:
            return await ConnectionFinder(db.store).search([KELANA_JAYA, KJ_BUS_HUB], [KLCC], SearchPolicy())

    outcome = asyncio.run(scenario())
    assert outcome.pairs_checked == 2
    assert outcome.truncation == TruncationReason.COMPLETE
    assert [type(c) for c in outcome.candidates] == [DirectCandidate, TransferCandidate]


def test_search_stops_at_combination_cap(transit_db):
    async def scenario():
        async with transit_db() as db:
            policy = SearchPolicy(max_combinations=1)
            return await ConnectionFinder(db.store).search([KELANA_JAYA, KJ_BUS_HUB], [KLCC], policy)

    outcome = asyncio.run(scenario())
    assert outcome.pairs_checked == 1
    assert outcome.truncation == TruncationReason.MAX_COMBINATIONS
    assert len(outcome.candidates) == 1


def test_search_stops_when_sufficient(transit_db):
    async def scenario():
        async with transit_db() as db:
            policy = SearchPolicy(max_results=1)
            return await ConnectionFinder(db.store).search([KELANA_JAYA, KJ_BUS_HUB], [KLCC], policy)

    outcome = asyncio.run(scenario())
    assert outcome.pairs_checked == 1
    assert outcome.truncation == TruncationReason.SUFFICIENT_RESULTS


def test_search_time_budget(transit_db):
    """An exhausted budget returns whatever was found so far, here nothing."""
    async def scenario():
        async with transit_db() as db:
            policy = SearchPolicy(time_budget_seconds=0)
            return await ConnectionFinder(db.store).search([KELANA_JAYA], [KLCC], policy)

    outcome = asyncio.run(scenario())
    assert outcome.pairs_checked == 0
    assert outcome.candidates == []
    assert outcome.truncation == TruncationReason.TIME_BUDGET


def test_cross_feed_feeders_limited_to_walking_range(transit_db):
    """Only destination-feed stops near the bus route are considered for the walk."""
    fetched = []

    async def scenario():
        async with transit_db() as db:
            store = db.store
            unbounded = await store.stops_before("rapid-rail-kl", "KJ10")
            stops_before = store.stops_before

            async def recording(category, stop_id, box=None):
                rows = await stops_before(category, stop_id, box)
                fetched.append(rows)
                return rows

            store.stops_before = recording
            candidates, _ = await ConnectionFinder(store).find_connections(KJ_BUS_HUB, KLCC, SearchPolicy())
            return unbounded, candidates

    unbounded, candidates = asyncio.run(scenario())
    assert {r["stop_id"] for r in unbounded} == {"KJ15", "KJ14"}
    assert [r["stop_id"] for r in fetched[0]] == ["KJ14"]
    assert len(candidates) == 1
