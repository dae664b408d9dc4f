# tracking/app/services/synthetic_fleet.py
"""
Locally generated vehicles for the live map.

Every roster entry sits at a fixed reference coordinate and gets a fresh,
bounded jitter on each call so the map keeps moving. Generated entries are
tagged synthetic=True; the flag is not part of the JSON output.
"""
from __future__ import annotations

import random
import time
from collections.abc import Callable
from typing import NamedTuple

from tracking.app.schemas.live_vehicle import LiveVehicle
from tracking.app.schemas.position_report import VehicleCategory

# Maximum absolute offset in degrees, applied to latitude and longitude independently
AIRCRAFT_JITTER_DEGREES = 0.05
TRUCK_JITTER_DEGREES = 0.01
BUS_JITTER_DEGREES = 0.0005
STANDALONE_JITTER_DEGREES = 0.001

FALLBACK_ALTITUDE_MIN = 30000
FALLBACK_ALTITUDE_SPAN = 10000


class ReferencePoint(NamedTuple):
    id: str
    label: str
    lat: float
    lng: float


# Substituted when the live aircraft feed is down or returns nothing
FALLBACK_FLIGHTS = [
    ReferencePoint("UAL123", "NYC", 40.7128, -74.006),
    ReferencePoint("AAL456", "LAX", 33.9425, -118.408),
    ReferencePoint("DAL789", "ORD", 41.8781, -87.6298),
    ReferencePoint("SWA101", "DFW", 32.8998, -97.0403),
    ReferencePoint("JBU202", "BOS", 42.3656, -71.0096),
    ReferencePoint("FFT303", "ATL", 33.6407, -84.4277),
    ReferencePoint("UAL404", "SFO", 37.6213, -122.379),
    ReferencePoint("AAL505", "SEA", 47.4502, -122.309),
    ReferencePoint("DAL606", "DEN", 39.8561, -104.674),
    ReferencePoint("SWA707", "MIA", 25.7959, -80.287),
    ReferencePoint("ASA808", "PHX", 33.4373, -112.008),
    ReferencePoint("UAL909", "DCA", 38.8512, -77.0402),
    ReferencePoint("FDX001", "MEM", 35.0421, -89.9792), # FedEx hub
    ReferencePoint("UPS002", "SDF", 38.1740, -85.7364), # UPS hub
]

# Distribution hubs for the aggregated view
TRUCK_HUBS = [
    ReferencePoint("truck-la", "Los Angeles", 34.0522, -118.2437),
    ReferencePoint("truck-sf", "San Francisco", 37.7749, -122.4194),
    ReferencePoint("truck-sea", "Seattle", 47.6062, -122.3321),
    ReferencePoint("truck-den", "Denver", 39.7392, -104.9903),
    ReferencePoint("truck-dal", "Dallas", 32.7767, -96.7970),
    ReferencePoint("truck-chi", "Chicago", 41.8781, -87.6298),
    ReferencePoint("truck-nyc", "New York", 40.7128, -74.0060),
    ReferencePoint("truck-atl", "Atlanta", 33.7490, -84.3880),
    ReferencePoint("truck-mia", "Miami", 25.7617, -80.1918),
    ReferencePoint("truck-bos", "Boston", 42.3601, -71.0589),
]

# Route waypoints (MUNI / AC Transit) for the aggregated view
BUS_ROUTES = [
    ReferencePoint("muni-14-001", "14-Mission", 37.7599, -122.4194),
    ReferencePoint("muni-38-001", "38-Geary", 37.7854, -122.4195),
    ReferencePoint("act-51a-001", "51A-Broadway", 37.8044, -122.2712),
    ReferencePoint("act-72-001", "72-MLK", 37.8716, -122.2727),
]

# Larger rosters served by the per-category endpoints
ALL_TRUCK_HUBS = [
    # West Coast
    ReferencePoint("truck-la-01", "Los Angeles", 34.0522, -118.2437),
    ReferencePoint("truck-la-02", "Los Angeles", 33.9425, -118.4081),
    ReferencePoint("truck-sf-01", "San Francisco", 37.7749, -122.4194),
    ReferencePoint("truck-sea-01", "Seattle", 47.6062, -122.3321),
    ReferencePoint("truck-phx-01", "Phoenix", 33.4484, -112.0740),
    # Mountain
    ReferencePoint("truck-den-01", "Denver", 39.7392, -104.9903),
    ReferencePoint("truck-slc-01", "Salt Lake City", 40.7608, -111.8910),
    # Central
    ReferencePoint("truck-dal-01", "Dallas", 32.7767, -96.7970),
    ReferencePoint("truck-hou-01", "Houston", 29.7604, -95.3698),
    ReferencePoint("truck-chi-01", "Chicago", 41.8781, -87.6298),
    ReferencePoint("truck-chi-02", "Chicago", 41.8527, -87.6180),
    ReferencePoint("truck-kc-01", "Kansas City", 39.0997, -94.5786),
    ReferencePoint("truck-mem-01", "Memphis", 35.1495, -90.0490),
    # East Coast
    ReferencePoint("truck-nyc-01", "New York", 40.7128, -74.0060),
    ReferencePoint("truck-nyc-02", "New York", 40.7589, -73.9851),
    ReferencePoint("truck-bos-01", "Boston", 42.3601, -71.0589),
    ReferencePoint("truck-phi-01", "Philadelphia", 39.9526, -75.1652),
    ReferencePoint("truck-atl-01", "Atlanta", 33.7490, -84.3880),
    ReferencePoint("truck-atl-02", "Atlanta", 33.6407, -84.4277),
    ReferencePoint("truck-mia-01", "Miami", 25.7617, -80.1918),
    ReferencePoint("truck-dc-01", "Washington DC", 38.9072, -77.0369),
]

ALL_BUS_ROUTES = [
    ReferencePoint("muni-14-001", "14-Mission", 37.7599, -122.4194),
    ReferencePoint("muni-14-002", "14-Mission", 37.7521, -122.4182),
    ReferencePoint("muni-38-001", "38-Geary", 37.7854, -122.4195),
    ReferencePoint("muni-38-002", "38-Geary", 37.7814, -122.4589),
    ReferencePoint("muni-49-001", "49-Van Ness", 37.7749, -122.4194),
    ReferencePoint("act-51a-001", "51A-Broadway", 37.8044, -122.2712),
    ReferencePoint("act-51a-002", "51A-Broadway", 37.8256, -122.2621),
    ReferencePoint("act-72-001", "72-MLK", 37.8716, -122.2727),
    ReferencePoint("bart-bus-001", "BART-Shuttle", 37.8044, -122.2711),
    ReferencePoint("samtrans-001", "SamTrans-292", 37.5548, -122.2717),
]


def jitter(rng: random.Random, bound: float) -> float:
    """Uniform offset in [-bound, bound]."""
    return rng.uniform(-bound, bound)


class SyntheticFleet:
    def __init__(self, rng: random.Random | None = None, clock: Callable[[], float] = time.time):
        self._rng = rng or random.Random()
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def fallback_aircraft(self, flights: list[ReferencePoint] = FALLBACK_FLIGHTS,
                          bound: float = AIRCRAFT_JITTER_DEGREES) -> list[LiveVehicle]:
        now = self._now()
        return [
            LiveVehicle(
                vehicle_id=f"aircraft-{flight.id}",
                latitude=flight.lat + jitter(self._rng, bound),
                longitude=flight.lng + jitter(self._rng, bound),
                timestamp=now,
                type=VehicleCategory.AIRCRAFT,
                callsign=flight.id,
                altitude=FALLBACK_ALTITUDE_MIN + self._rng.random() * FALLBACK_ALTITUDE_SPAN,
                synthetic=True,
            )
            for flight in flights
        ]

    def trucks(self, hubs: list[ReferencePoint] = TRUCK_HUBS,
               bound: float = TRUCK_JITTER_DEGREES) -> list[LiveVehicle]:
        now = self._now()
        return [
            LiveVehicle(
                vehicle_id=hub.id,
                latitude=hub.lat + jitter(self._rng, bound),
                longitude=hub.lng + jitter(self._rng, bound),
                timestamp=now,
                type=VehicleCategory.TRUCK,
                city=hub.label,
                synthetic=True,
            )
            for hub in hubs
        ]

    def buses(self, routes: list[ReferencePoint] = BUS_ROUTES,
              bound: float = BUS_JITTER_DEGREES) -> list[LiveVehicle]:
        now = self._now()
        return [
            LiveVehicle(
                vehicle_id=bus.id,
                latitude=bus.lat + jitter(self._rng, bound),
                longitude=bus.lng + jitter(self._rng, bound),
                timestamp=now,
                type=VehicleCategory.BUS,
                route=bus.label,
                synthetic=True,
            )
            for bus in routes
        ]
