# tracking/tests/services/test_read_resolver.py
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from tracking.app.core.exceptions import ReportValidationError, UpstreamUnavailable
from tracking.app.schemas.position_report import PositionReport
from tracking.app.services.read_resolver import ReadResolver


def _report(vehicle_id="v1", timestamp=1000):
    return PositionReport(vehicle_id=vehicle_id, latitude=10, longitude=20, timestamp=timestamp)


def test_cache_hit_never_touches_history(cache):
    history = MagicMock()
    history.get_latest_by_key = AsyncMock()
    asyncio.run(cache.put_report(_report()))
    resolver = ReadResolver(cache, history)

    assert asyncio.run(resolver.get_latest("v1")) == _report()
    history.get_latest_by_key.assert_not_awaited()


def test_cache_miss_falls_back_to_history_and_writes_back(cache, history_store, clock):
    for ts in (100, 300, 200):
        asyncio.run(history_store.append(_report(timestamp=ts)))
    resolver = ReadResolver(cache, history_store, ttl_seconds=86400)

    first = asyncio.run(resolver.get_latest("v1"))

    assert first == _report(timestamp=300)
    assert asyncio.run(cache.get_report("v1")) == first
    clock.advance(86399)
    assert asyncio.run(cache.get_report("v1")) == first
    clock.advance(1)
    assert asyncio.run(cache.get_report("v1")) is None


def test_repeat_read_after_write_back_is_served_from_cache(cache):
    history = MagicMock()
    history.get_latest_by_key = AsyncMock(return_value=_report())
    resolver = ReadResolver(cache, history)

    first = asyncio.run(resolver.get_latest("v1"))
    second = asyncio.run(resolver.get_latest("v1"))

    assert first == second == _report()
    history.get_latest_by_key.assert_awaited_once_with("v1")


def test_unknown_vehicle_resolves_to_none(cache, history_store):
    resolver = ReadResolver(cache, history_store)
    assert asyncio.run(resolver.get_latest("never-seen")) is None
    assert asyncio.run(cache.list_report_keys()) == set()


def test_malformed_vehicle_id_is_rejected_before_any_lookup():
    cache = MagicMock()
    cache.get_report = AsyncMock()
    resolver = ReadResolver(cache, MagicMock())

    with pytest.raises(ReportValidationError):
        asyncio.run(resolver.get_latest("../etc"))
    cache.get_report.assert_not_awaited()


def test_cache_outage_surfaces_on_the_read_path():
    cache = MagicMock()
    cache.get_report = AsyncMock(side_effect=UpstreamUnavailable("redis down", resource="cache"))
    resolver = ReadResolver(cache, MagicMock())

    with pytest.raises(UpstreamUnavailable):
        asyncio.run(resolver.get_latest("v1"))


def test_list_all_returns_every_cached_report(cache):
    for vehicle_id in ("v1", "v2", "v3"):
        asyncio.run(cache.put_report(_report(vehicle_id)))
    resolver = ReadResolver(cache, MagicMock())

    reports = asyncio.run(resolver.list_all())

    assert sorted(r.vehicle_id for r in reports) == ["v1", "v2", "v3"]


def test_list_all_drops_keys_that_vanish_between_scan_and_fetch(cache):
    asyncio.run(cache.put_report(_report("v1")))
    asyncio.run(cache.put_report(_report("v2")))
    # The scan still sees a key that has expired by the time it is fetched
    cache.list_keys_by_prefix = AsyncMock(
        return_value={"vehicle:v1:latest", "vehicle:v2:latest", "vehicle:gone:latest"}
    )
    resolver = ReadResolver(cache, MagicMock())

    reports = asyncio.run(resolver.list_all())

    assert sorted(r.vehicle_id for r in reports) == ["v1", "v2"]


def test_list_all_does_not_consult_history(cache, history_store, clock):
    asyncio.run(history_store.append(_report("archived")))
    asyncio.run(cache.put_report(_report("v1")))
    clock.advance(86400)
    asyncio.run(cache.put_report(_report("v2")))
    resolver = ReadResolver(cache, history_store)

    reports = asyncio.run(resolver.list_all())

    assert [r.vehicle_id for r in reports] == ["v2"]
