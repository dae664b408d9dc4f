# tracking/app/services/read_resolver.py
from __future__ import annotations

import asyncio
import logging

from tracking.app.core.config import LATEST_STATE_TTL_SECONDS
from tracking.app.schemas.position_report import PositionReport, validate_vehicle_id
from tracking.app.stores.history_store import SqlAlchemyHistoryStore
from tracking.app.stores.latest_cache import LatestStateCache

logger = logging.getLogger(__name__)


class ReadResolver:
    """Cache-aside reads of the latest position per vehicle."""

    def __init__(
        self,
        cache: LatestStateCache,
        history: SqlAlchemyHistoryStore,
        ttl_seconds: int = LATEST_STATE_TTL_SECONDS,
    ):
        self._cache = cache
        self._history = history
        self._ttl_seconds = ttl_seconds

    async def get_latest(self, vehicle_id: str) -> PositionReport | None:
        """
        Returns the cached report, else the newest history row (written back to
        the cache with a fresh TTL), else None for an unknown vehicle.
        Raises ReportValidationError for a malformed id and UpstreamUnavailable
        when the cache or store cannot be reached.
        """
        vehicle_id = validate_vehicle_id(vehicle_id)

        cached = await self._cache.get_report(vehicle_id)
        if cached is not None:
            return cached

        report = await self._history.get_latest_by_key(vehicle_id)
        if report is None:
            return None

        logger.debug("Cache miss for %s, repopulating from history", vehicle_id)
        await self._cache.put_report(report, self._ttl_seconds)
        return report

    async def list_all(self) -> list[PositionReport]:
        """
        Snapshot of every cached vehicle. Keys that expire between the scan and
        the fetch are left out; history is not consulted.
        """
        keys = await self._cache.list_report_keys()
        if not keys:
            return []
        reports = await asyncio.gather(*(self._cache.get_report_by_key(key) for key in keys))
        return [report for report in reports if report is not None]
