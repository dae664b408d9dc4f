# tracking/app/services/external_feeds/opensky_client.py
import asyncio
import logging
import math
import time
from collections.abc import Callable

import requests
import tenacity
from pydantic import ValidationError

from tracking.app.core.config import (
    OPENSKY_BOUNDING_BOX,
    OPENSKY_EXCLUDE_ON_GROUND,
    OPENSKY_STATES_URL,
    OPENSKY_TIMEOUT_SECONDS,
)
from tracking.app.core.exceptions import ExternalFeedFailure
from tracking.app.schemas.live_vehicle import LiveVehicle
from tracking.app.schemas.position_report import VehicleCategory

logger = logging.getLogger(__name__)

# OpenSky state vector positions:
# [icao24, callsign, origin_country, time_position, last_contact,
#  longitude, latitude, baro_altitude, on_ground, velocity, ...]
ICAO24, CALLSIGN, LAST_CONTACT, LONGITUDE, LATITUDE, BARO_ALTITUDE, ON_GROUND, VELOCITY = 0, 1, 4, 5, 6, 7, 8, 9

# --- Tenacity Retry Strategy ---
# Kept short: the caller's deadline bounds the whole call, retries included.
retry_strategy = tenacity.retry(
    stop=tenacity.stop_after_attempt(2),
    wait=tenacity.wait_fixed(0.5),
    # Retry on network errors (including HTTP 4xx/5xx responses raised by raise_for_status)
    retry=tenacity.retry_if_exception_type(requests.exceptions.RequestException),
    reraise=True # Re-raise the last exception if all retries fail
)


@retry_strategy
def fetch_opensky_states(url: str, params: dict, timeout: float) -> dict:
    """
    Fetches the state vectors inside a bounding box with retry logic.
    Raises requests.exceptions.RequestException on network/HTTP errors.
    """
    logger.debug("Fetching aircraft states from %s with %s", url, params)
    response = requests.get(url, params=params, timeout=timeout)
    response.raise_for_status() # This will raise an HTTPError for 4xx/5xx responses
    return response.json()


def _is_coordinate(value, limit: float) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and -limit <= value <= limit
    )


def parse_opensky_states(payload, limit: int, exclude_on_ground: bool, now: int) -> list[LiveVehicle]:
    """
    Transforms an OpenSky response into aircraft entries. Entries without a
    usable position (and, optionally, aircraft on the ground) are skipped, and
    at most `limit` entries are returned.
    Raises ExternalFeedFailure when the payload does not have the expected shape.
    """
    if not isinstance(payload, dict):
        raise ExternalFeedFailure(f"Unexpected OpenSky payload type: {type(payload).__name__}")

    states = payload.get("states")
    if states is None: # OpenSky sends null when nothing is in the box
        return []
    if not isinstance(states, list):
        raise ExternalFeedFailure("OpenSky 'states' is not a list")

    aircraft = []
    for state in states:
        if len(aircraft) >= limit:
            break
        if not isinstance(state, (list, tuple)) or len(state) <= ON_GROUND:
            continue
        if not (_is_coordinate(state[LATITUDE], 90) and _is_coordinate(state[LONGITUDE], 180)):
            continue
        on_ground = bool(state[ON_GROUND])
        if exclude_on_ground and on_ground:
            continue

        callsign = (state[CALLSIGN] or "").strip() if isinstance(state[CALLSIGN], str) else ""
        velocity = state[VELOCITY] if len(state) > VELOCITY else None
        try:
            aircraft.append(LiveVehicle(
                vehicle_id=f"aircraft-{callsign or state[ICAO24]}",
                latitude=state[LATITUDE],
                longitude=state[LONGITUDE],
                timestamp=int(state[LAST_CONTACT] or now),
                type=VehicleCategory.AIRCRAFT,
                callsign=callsign or "N/A",
                altitude=state[BARO_ALTITUDE] or 0,
                velocity=velocity or 0,
                on_ground=on_ground,
            ))
        except (ValidationError, TypeError, ValueError, OverflowError) as e:
            logger.debug("Skipping unusable OpenSky state %r: %s", state[ICAO24], e)
    return aircraft


class OpenSkyFeed:
    """Best-effort live aircraft source with a hard deadline per call."""

    def __init__(
        self,
        url: str = OPENSKY_STATES_URL,
        bounding_box: dict | None = None,
        timeout_seconds: float = OPENSKY_TIMEOUT_SECONDS,
        exclude_on_ground: bool = OPENSKY_EXCLUDE_ON_GROUND,
        clock: Callable[[], float] = time.time,
    ):
        self.url = url
        self.bounding_box = dict(bounding_box or OPENSKY_BOUNDING_BOX)
        self.timeout_seconds = timeout_seconds
        self.exclude_on_ground = exclude_on_ground
        self._clock = clock

    async def fetch_aircraft(self, limit: int) -> list[LiveVehicle]:
        """
        Races the blocking fetch (in a worker thread) against the deadline.
        Any failure, timeout included, is raised as ExternalFeedFailure.
        """
        try:
            payload = await asyncio.wait_for(
                asyncio.to_thread(fetch_opensky_states, self.url, self.bounding_box, self.timeout_seconds),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ExternalFeedFailure(f"OpenSky did not answer within {self.timeout_seconds}s") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise ExternalFeedFailure(f"OpenSky API error: {status}", status_code=status) from e
        except (requests.exceptions.RequestException, tenacity.RetryError) as e:
            raise ExternalFeedFailure(f"OpenSky request failed: {e}") from e

        return parse_opensky_states(payload, limit, self.exclude_on_ground, int(self._clock()))
