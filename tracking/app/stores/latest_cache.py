"""Latest-state cache adapters.

One entry per vehicle under ``vehicle:{vehicle_id}:latest`` holding the
JSON-encoded PositionReport, with a TTL refreshed on every write. Expiry is
left to the backend; nothing here sweeps for stale keys.
"""

from __future__ import annotations

import abc
import logging
import time
from collections.abc import Callable

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from tracking.app.core.config import CACHE_BACKEND, LATEST_STATE_TTL_SECONDS, REDIS_HOST, REDIS_PORT
from tracking.app.core.exceptions import UpstreamUnavailable
from tracking.app.schemas.position_report import PositionReport

logger = logging.getLogger(__name__)

KEY_PREFIX = "vehicle:"
KEY_SUFFIX = ":latest"
LATEST_KEY_PATTERN = f"{KEY_PREFIX}*{KEY_SUFFIX}"


def latest_key(vehicle_id: str) -> str:
    return f"{KEY_PREFIX}{vehicle_id}{KEY_SUFFIX}"


def vehicle_id_from_key(key: str) -> str | None:
    if not (key.startswith(KEY_PREFIX) and key.endswith(KEY_SUFFIX)):
        return None
    vehicle_id = key[len(KEY_PREFIX):-len(KEY_SUFFIX)]
    return vehicle_id or None


class LatestStateCache(abc.ABC):
    """Key-value contract consumed by the consumer, resolver and aggregator."""

    def __init__(self, ttl_seconds: int = LATEST_STATE_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds

    @abc.abstractmethod
    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Upsert ``key``; the TTL restarts at ``ttl`` (default window when None)."""

    @abc.abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None when absent or expired."""

    @abc.abstractmethod
    async def list_keys_by_prefix(self, prefix: str) -> set[str]:
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    async def put_report(self, report: PositionReport, ttl: int | None = None) -> None:
        await self.set(latest_key(report.vehicle_id), report.to_json(), ttl)

    async def get_report_by_key(self, key: str) -> PositionReport | None:
        value = await self.get(key)
        if value is None:
            return None
        try:
            return PositionReport.model_validate_json(value)
        except ValidationError as e:
            # An undecodable entry is treated like an expired one.
            logger.warning("Ignoring undecodable cache entry %s: %s", key, e)
            return None

    async def get_report(self, vehicle_id: str) -> PositionReport | None:
        return await self.get_report_by_key(latest_key(vehicle_id))

    async def list_report_keys(self) -> set[str]:
        keys = await self.list_keys_by_prefix(KEY_PREFIX)
        return {key for key in keys if vehicle_id_from_key(key) is not None}


class RedisLatestStateCache(LatestStateCache):
    """Cache backed by ``redis.asyncio``; Redis errors surface as UpstreamUnavailable."""

    def __init__(self, client: Redis, ttl_seconds: int = LATEST_STATE_TTL_SECONDS) -> None:
        super().__init__(ttl_seconds)
        self._client = client

    @classmethod
    def from_config(cls, host: str = REDIS_HOST, port: int = REDIS_PORT,
                    ttl_seconds: int = LATEST_STATE_TTL_SECONDS) -> "RedisLatestStateCache":
        return cls(Redis(host=host, port=port, decode_responses=True), ttl_seconds)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        try:
            await self._client.set(key, value, ex=ttl if ttl is not None else self.ttl_seconds)
        except RedisError as e:
            raise UpstreamUnavailable(f"Cache write failed for {key}: {e}", resource="cache") from e

    async def get(self, key: str) -> str | None:
        try:
            value = await self._client.get(key)
        except RedisError as e:
            raise UpstreamUnavailable(f"Cache read failed for {key}: {e}", resource="cache") from e
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def list_keys_by_prefix(self, prefix: str) -> set[str]:
        # SCAN rather than KEYS so a large keyspace does not block the server
        keys: set[str] = set()
        try:
            async for key in self._client.scan_iter(match=f"{prefix}*"):
                keys.add(key.decode("utf-8") if isinstance(key, bytes) else key)
        except RedisError as e:
            raise UpstreamUnavailable(f"Cache scan failed for {prefix}*: {e}", resource="cache") from e
        return keys

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            raise UpstreamUnavailable(f"Cache ping failed: {e}", resource="cache") from e

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryLatestStateCache(LatestStateCache):
    """Process-local cache with passive expiry, selected by CACHE_BACKEND=memory."""

    def __init__(self, ttl_seconds: int = LATEST_STATE_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(ttl_seconds)
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    def _live_value(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        window = ttl if ttl is not None else self.ttl_seconds
        self._entries[key] = (value, self._clock() + window)

    async def get(self, key: str) -> str | None:
        return self._live_value(key)

    async def list_keys_by_prefix(self, prefix: str) -> set[str]:
        return {
            key for key in list(self._entries)
            if key.startswith(prefix) and self._live_value(key) is not None
        }


def build_latest_cache(backend: str = CACHE_BACKEND,
                       ttl_seconds: int = LATEST_STATE_TTL_SECONDS) -> LatestStateCache:
    if backend == "redis":
        return RedisLatestStateCache.from_config(ttl_seconds=ttl_seconds)
    if backend == "memory":
        logger.warning("Using the in-process latest-state cache; entries are lost on restart")
        return InMemoryLatestStateCache(ttl_seconds)
    raise ValueError(f"Unknown CACHE_BACKEND {backend!r}, expected 'redis' or 'memory'")
