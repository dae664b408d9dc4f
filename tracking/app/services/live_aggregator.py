# tracking/app/services/live_aggregator.py
"""
Builds the live fleet view from three independent categories:

1. vehicles in the latest-state cache (real ingested data),
2. aircraft from the OpenSky feed, falling back to a simulated roster when
   the feed fails or yields nothing,
3. the synthetic ground fleet (truck hubs and bus routes), which has no
   upstream and never fails.

Categories are computed concurrently and concatenated in that order. They
are assumed disjoint by id prefix, so no de-duplication happens.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from tracking.app.core.config import AIRCRAFT_FEED_LIMIT, LIVE_AIRCRAFT_LIMIT
from tracking.app.core.exceptions import ExternalFeedFailure, UpstreamUnavailable
from tracking.app.schemas.live_vehicle import LiveVehicle
from tracking.app.services.external_feeds.opensky_client import OpenSkyFeed
from tracking.app.services.read_resolver import ReadResolver
from tracking.app.services.synthetic_fleet import (
    ALL_BUS_ROUTES,
    ALL_TRUCK_HUBS,
    STANDALONE_JITTER_DEGREES,
    SyntheticFleet,
)

logger = logging.getLogger(__name__)


class LiveAggregator:
    def __init__(
        self,
        resolver: ReadResolver,
        feed: OpenSkyFeed,
        fleet: SyntheticFleet | None = None,
        aircraft_limit: int = LIVE_AIRCRAFT_LIMIT,
        clock: Callable[[], float] = time.time,
    ):
        self._resolver = resolver
        self._feed = feed
        self._fleet = fleet or SyntheticFleet(clock=clock)
        self._aircraft_limit = aircraft_limit
        self._clock = clock

    async def cached_vehicles(self) -> list[LiveVehicle]:
        try:
            reports = await self._resolver.list_all()
        except UpstreamUnavailable as e:
            logger.warning("Cached vehicles unavailable, continuing without them: %s", e)
            return []
        now = int(self._clock())
        return [LiveVehicle.from_report(report, now) for report in reports]

    async def aircraft(self) -> list[LiveVehicle]:
        # An empty answer is treated the same as a failed one
        try:
            aircraft = await self._feed.fetch_aircraft(self._aircraft_limit)
        except ExternalFeedFailure as e:
            logger.warning("Aircraft fetch failed, continuing with simulated: %s", e)
            return self._fleet.fallback_aircraft()
        except Exception as e:
            logger.exception("Unexpected error from aircraft feed, continuing with simulated: %s", e)
            return self._fleet.fallback_aircraft()
        if not aircraft:
            logger.info("Aircraft feed returned no qualifying states, continuing with simulated")
            return self._fleet.fallback_aircraft()
        return aircraft

    async def ground_fleet(self) -> list[LiveVehicle]:
        return self._fleet.trucks() + self._fleet.buses()

    async def snapshot(self) -> list[LiveVehicle]:
        cached, aircraft, ground = await asyncio.gather(
            self.cached_vehicles(),
            self.aircraft(),
            self.ground_fleet(),
        )
        return [*cached, *aircraft, *ground]

    async def live_aircraft(self, limit: int = AIRCRAFT_FEED_LIMIT) -> list[LiveVehicle]:
        """Feed only, no fallback. Raises ExternalFeedFailure."""
        return await self._feed.fetch_aircraft(limit)

    def live_trucks(self) -> list[LiveVehicle]:
        return self._fleet.trucks(ALL_TRUCK_HUBS, STANDALONE_JITTER_DEGREES)

    def live_buses(self) -> list[LiveVehicle]:
        return self._fleet.buses(ALL_BUS_ROUTES, STANDALONE_JITTER_DEGREES)
