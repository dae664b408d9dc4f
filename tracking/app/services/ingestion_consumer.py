# tracking/app/services/ingestion_consumer.py
"""
Consumes position reports from the vehicle-locations topic and dual-writes
each one to the latest-state cache and the history store.

The two writes share no transaction. A cache write that lands while the
history append fails leaves the cache ahead of history until the next
successful ingest for that vehicle; the IngestResult records each outcome.
"""
from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import KafkaError

from tracking.app.core.config import (
    DATABASE_URL,
    KAFKA_BROKERS,
    KAFKA_CLIENT_ID,
    KAFKA_FROM_BEGINNING,
    KAFKA_GROUP_ID,
    KAFKA_TOPIC,
    LATEST_STATE_TTL_SECONDS,
    LOG_LEVEL,
    SQL_ECHO,
)
from tracking.app.core.exceptions import MalformedMessage, ReportValidationError, UpstreamUnavailable
from tracking.app.core.logging_config import configure_logging
from tracking.app.db.session import build_session_factory
from tracking.app.schemas.position_report import PositionReport, parse_position_report
from tracking.app.stores.history_store import SqlAlchemyHistoryStore
from tracking.app.stores.latest_cache import LatestStateCache, build_latest_cache

logger = logging.getLogger(__name__)


class IngestStatus(str, enum.Enum):
    STORED = "stored"     # both writes succeeded
    PARTIAL = "partial"   # exactly one write succeeded
    FAILED = "failed"     # valid report, neither write succeeded
    DROPPED = "dropped"   # malformed or invalid, nothing written


@dataclass(frozen=True)
class IngestResult:
    status: IngestStatus
    report: PositionReport | None = None
    reason: str | None = None
    cache_error: UpstreamUnavailable | None = None
    history_error: UpstreamUnavailable | None = None

    @property
    def cache_written(self) -> bool:
        return self.report is not None and self.cache_error is None

    @property
    def history_written(self) -> bool:
        return self.report is not None and self.history_error is None


def decode_message(payload: bytes | str | None) -> dict[str, Any]:
    """Decodes a raw stream payload into a JSON object. Raises MalformedMessage."""
    if not payload:
        raise MalformedMessage("Empty message payload")
    try:
        text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        data = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedMessage(f"Payload is not UTF-8 JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedMessage(f"Expected a JSON object, got {type(data).__name__}")
    return data


def build_kafka_consumer(
    topic: str = KAFKA_TOPIC,
    brokers: list[str] = KAFKA_BROKERS,
    group_id: str = KAFKA_GROUP_ID,
) -> AIOKafkaConsumer:
    # Offsets are committed by hand after each message is handled, so a crash
    # mid-message means redelivery rather than loss.
    return AIOKafkaConsumer(
        topic,
        bootstrap_servers=brokers,
        group_id=group_id,
        client_id=KAFKA_CLIENT_ID,
        enable_auto_commit=False,
        auto_offset_reset="earliest" if KAFKA_FROM_BEGINNING else "latest",
    )


class IngestionConsumer:
    def __init__(
        self,
        cache: LatestStateCache,
        history: SqlAlchemyHistoryStore,
        ttl_seconds: int = LATEST_STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._cache = cache
        self._history = history
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._running = False
        self.stats: Counter[str] = Counter()

    @property
    def running(self) -> bool:
        return self._running

    async def handle_message(self, payload: bytes | str | None) -> IngestResult:
        """
        Decode, validate, then write the cache entry and the history row.
        Per-message failures are logged and reported in the result, never raised.
        """
        try:
            data = decode_message(payload)
        except MalformedMessage as e:
            logger.warning("Dropping malformed message: %s", e)
            return self._record(IngestResult(IngestStatus.DROPPED, reason=str(e)))

        if data.get("timestamp") is None:
            data = {**data, "timestamp": int(self._clock())}

        try:
            report = parse_position_report(data)
        except ReportValidationError as e:
            logger.warning("Dropping invalid position report for %r: %s", data.get("vehicle_id"), e.details)
            return self._record(IngestResult(IngestStatus.DROPPED, reason=str(e)))

        cache_error = None
        try:
            await self._cache.put_report(report, self._ttl_seconds)
        except UpstreamUnavailable as e:
            logger.error("Cache write failed for %s: %s", report.vehicle_id, e)
            cache_error = e

        history_error = None
        try:
            await self._history.append(report)
        except UpstreamUnavailable as e:
            logger.error("History append failed for %s: %s", report.vehicle_id, e)
            history_error = e

        if cache_error is None and history_error is None:
            status = IngestStatus.STORED
        elif cache_error is not None and history_error is not None:
            status = IngestStatus.FAILED
        else:
            status = IngestStatus.PARTIAL
        return self._record(IngestResult(status, report, cache_error=cache_error, history_error=history_error))

    def _record(self, result: IngestResult) -> IngestResult:
        self.stats[result.status.value] += 1
        return result

    async def run(self, kafka_consumer: AIOKafkaConsumer) -> None:
        """
        Handles messages one at a time in delivery order and commits the offset
        after each handler returns. The consumer must already be started.
        """
        self._running = True
        logger.info("Ingestion consumer running")
        try:
            async for message in kafka_consumer:
                try:
                    await self.handle_message(message.value)
                except Exception as e:
                    logger.exception("Unexpected error handling message at offset %s: %s",
                                     getattr(message, "offset", None), e)
                    self.stats["errors"] += 1
                try:
                    await kafka_consumer.commit()
                except KafkaError as e:
                    # The uncommitted message is redelivered after the rebalance
                    logger.warning("Offset commit failed: %s", e)
                if not self._running:
                    break
        finally:
            self._running = False
            logger.info("Ingestion consumer stopped (%s)", dict(self.stats))

    async def consume(self, kafka_consumer: AIOKafkaConsumer) -> None:
        """Starts the Kafka consumer, runs the loop, and stops it on exit."""
        await kafka_consumer.start()
        try:
            await self.run(kafka_consumer)
        finally:
            await kafka_consumer.stop()

    def stop(self) -> None:
        self._running = False


async def main() -> None:
    configure_logging(LOG_LEVEL)
    cache = build_latest_cache()
    try:
        history = SqlAlchemyHistoryStore(build_session_factory(DATABASE_URL, echo=SQL_ECHO))
        history.create_schema()
        await IngestionConsumer(cache, history).consume(build_kafka_consumer())
    finally:
        await cache.close()


if __name__ == "__main__":
    # Standalone consumer process: python -m tracking.app.services.ingestion_consumer
    asyncio.run(main())
