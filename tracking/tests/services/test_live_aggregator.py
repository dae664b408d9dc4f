# tracking/tests/services/test_live_aggregator.py
import asyncio
import json
import random
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tracking.app.core.exceptions import ExternalFeedFailure, UpstreamUnavailable
from tracking.app.schemas.live_vehicle import LiveVehicle
from tracking.app.schemas.position_report import PositionReport, VehicleCategory
from tracking.app.services.external_feeds.opensky_client import OpenSkyFeed
from tracking.app.services.live_aggregator import LiveAggregator
from tracking.app.services.read_resolver import ReadResolver
from tracking.app.services.synthetic_fleet import (
    AIRCRAFT_JITTER_DEGREES,
    ALL_BUS_ROUTES,
    ALL_TRUCK_HUBS,
    BUS_JITTER_DEGREES,
    BUS_ROUTES,
    FALLBACK_FLIGHTS,
    STANDALONE_JITTER_DEGREES,
    TRUCK_HUBS,
    TRUCK_JITTER_DEGREES,
    SyntheticFleet,
)


def _real_aircraft(n=3):
    return [
        LiveVehicle(vehicle_id=f"aircraft-REAL{i}", latitude=40 + i, longitude=-100, timestamp=1,
                    type=VehicleCategory.AIRCRAFT, callsign=f"REAL{i}")
        for i in range(n)
    ]


def _feed(**kwargs):
    feed = MagicMock()
    feed.fetch_aircraft = AsyncMock(**kwargs)
    return feed


def _aggregator(cache, history_store, feed, clock, seed=42):
    resolver = ReadResolver(cache, history_store)
    return LiveAggregator(resolver, feed, fleet=SyntheticFleet(random.Random(seed), clock), clock=clock)


def _within(vehicles, roster, bound):
    reference = {point.id: point for point in roster}
    for vehicle in vehicles:
        point = reference[vehicle.callsign or vehicle.vehicle_id]
        assert abs(vehicle.latitude - point.lat) <= bound
        assert abs(vehicle.longitude - point.lng) <= bound


def test_feed_failure_falls_back_to_simulated_flights(cache, history_store, clock):
    feed = _feed(side_effect=ExternalFeedFailure("OpenSky API error: 503", status_code=503))
    aggregator = _aggregator(cache, history_store, feed, clock)

    aircraft = asyncio.run(aggregator.aircraft())

    assert len(aircraft) == len(FALLBACK_FLIGHTS)
    assert all(a.synthetic and a.type is VehicleCategory.AIRCRAFT for a in aircraft)
    _within(aircraft, FALLBACK_FLIGHTS, AIRCRAFT_JITTER_DEGREES)
    assert all(30000 <= a.altitude <= 40000 for a in aircraft)


def test_empty_feed_is_treated_like_a_failure(cache, history_store, clock):
    aggregator = _aggregator(cache, history_store, _feed(return_value=[]), clock)

    aircraft = asyncio.run(aggregator.aircraft())

    assert len(aircraft) == len(FALLBACK_FLIGHTS)
    assert all(a.synthetic for a in aircraft)


def test_live_feed_is_used_when_available(cache, history_store, clock):
    feed = _feed(return_value=_real_aircraft())
    aggregator = _aggregator(cache, history_store, feed, clock)

    aircraft = asyncio.run(aggregator.aircraft())

    assert [a.vehicle_id for a in aircraft] == ["aircraft-REAL0", "aircraft-REAL1", "aircraft-REAL2"]
    assert not any(a.synthetic for a in aircraft)
    feed.fetch_aircraft.assert_awaited_once_with(50)


def test_fallback_jitter_is_recomputed_per_request(cache, history_store, clock):
    aggregator = _aggregator(cache, history_store, _feed(return_value=[]), clock)

    first = asyncio.run(aggregator.aircraft())
    second = asyncio.run(aggregator.aircraft())

    assert [a.vehicle_id for a in first] == [a.vehicle_id for a in second]
    assert [a.latitude for a in first] != [a.latitude for a in second]


def test_snapshot_concatenates_categories_in_order(cache, history_store, clock):
    asyncio.run(cache.put_report(PositionReport(vehicle_id="v1", latitude=10, longitude=20, timestamp=1000)))
    asyncio.run(cache.put_report(PositionReport(vehicle_id="bus-7", latitude=37.7, longitude=-122.4,
                                                timestamp=1001, type="bus", route="38-Geary")))
    aggregator = _aggregator(cache, history_store, _feed(return_value=_real_aircraft(2)), clock)

    snapshot = asyncio.run(aggregator.snapshot())

    cached, rest = snapshot[:2], snapshot[2:]
    assert {v.vehicle_id: v.type for v in cached} == {"v1": VehicleCategory.TRUCK, "bus-7": VehicleCategory.BUS}
    assert not any(v.synthetic for v in cached)
    assert [v.vehicle_id for v in rest[:2]] == ["aircraft-REAL0", "aircraft-REAL1"]
    ground = rest[2:]
    assert [v.vehicle_id for v in ground] == [h.id for h in TRUCK_HUBS] + [b.id for b in BUS_ROUTES]
    assert len(snapshot) == 2 + 2 + len(TRUCK_HUBS) + len(BUS_ROUTES)


def test_snapshot_survives_cache_and_feed_outages(history_store, clock):
    cache = MagicMock()
    cache.list_report_keys = AsyncMock(side_effect=UpstreamUnavailable("redis down", resource="cache"))
    feed = _feed(side_effect=ExternalFeedFailure("unreachable"))
    aggregator = _aggregator(cache, history_store, feed, clock)

    snapshot = asyncio.run(aggregator.snapshot())

    assert len(snapshot) == len(FALLBACK_FLIGHTS) + len(TRUCK_HUBS) + len(BUS_ROUTES)
    assert all(v.synthetic for v in snapshot)


def test_slow_feed_does_not_hold_up_the_snapshot(cache, history_store, clock):
    def slow_fetch(url, params, timeout):
        time.sleep(0.5)
        return {"states": []}

    feed = OpenSkyFeed(timeout_seconds=0.05)
    aggregator = _aggregator(cache, history_store, feed, clock)

    async def timed_snapshot():
        started = time.monotonic()
        snapshot = await aggregator.snapshot()
        return snapshot, time.monotonic() - started

    with patch("tracking.app.services.external_feeds.opensky_client.fetch_opensky_states",
               side_effect=slow_fetch):
        snapshot, elapsed = asyncio.run(timed_snapshot())

    assert elapsed < 0.4
    assert sum(1 for v in snapshot if v.type is VehicleCategory.AIRCRAFT) == len(FALLBACK_FLIGHTS)


def test_ground_fleet_stays_within_jitter_bounds(clock):
    fleet = SyntheticFleet(random.Random(1), clock)

    trucks = fleet.trucks()
    buses = fleet.buses()

    _within(trucks, TRUCK_HUBS, TRUCK_JITTER_DEGREES)
    _within(buses, BUS_ROUTES, BUS_JITTER_DEGREES)
    assert all(t.city for t in trucks)
    assert all(b.route and b.type is VehicleCategory.BUS for b in buses)
    assert all(v.timestamp == int(clock.now) for v in trucks + buses)


def test_seeded_fleets_are_reproducible(clock):
    first = SyntheticFleet(random.Random(7), clock).fallback_aircraft()
    second = SyntheticFleet(random.Random(7), clock).fallback_aircraft()
    assert first == second


def test_standalone_views_use_the_full_rosters(cache, history_store, clock):
    aggregator = _aggregator(cache, history_store, _feed(return_value=[]), clock)

    trucks = aggregator.live_trucks()
    buses = aggregator.live_buses()

    assert len(trucks) == len(ALL_TRUCK_HUBS) == 21
    assert len(buses) == len(ALL_BUS_ROUTES) == 10
    _within(trucks, ALL_TRUCK_HUBS, STANDALONE_JITTER_DEGREES)
    _within(buses, ALL_BUS_ROUTES, STANDALONE_JITTER_DEGREES)


def test_standalone_aircraft_view_has_no_fallback(cache, history_store, clock):
    feed = _feed(side_effect=ExternalFeedFailure("unreachable"))
    aggregator = _aggregator(cache, history_store, feed, clock)

    with pytest.raises(ExternalFeedFailure):
        asyncio.run(aggregator.live_aircraft())
    feed.fetch_aircraft.assert_awaited_once_with(100)


def test_snapshot_survives_unusable_feed_values(cache, history_store, clock):
    # json.loads turns 1e400 into inf
    payload = json.loads('{"states": [["a1b2c3", "UAL123", "US", 1, 1e400, -74.0, 40.7, 10668.0, false, 230.5]]}')
    feed = OpenSkyFeed(timeout_seconds=1.0)
    aggregator = _aggregator(cache, history_store, feed, clock)

    with patch("tracking.app.services.external_feeds.opensky_client.fetch_opensky_states", return_value=payload):
        snapshot = asyncio.run(aggregator.snapshot())

    assert sum(1 for v in snapshot if v.type is VehicleCategory.AIRCRAFT) == len(FALLBACK_FLIGHTS)


def test_unexpected_feed_error_falls_back_to_simulated_flights(cache, history_store, clock):
    aggregator = _aggregator(cache, history_store, _feed(side_effect=OverflowError("inf")), clock)

    aircraft = asyncio.run(aggregator.aircraft())

    assert len(aircraft) == len(FALLBACK_FLIGHTS)
    assert all(a.synthetic for a in aircraft)
