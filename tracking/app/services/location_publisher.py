# tracking/app/services/location_publisher.py
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from tracking.app.core.config import KAFKA_BROKERS, KAFKA_CLIENT_ID, KAFKA_TOPIC
from tracking.app.core.exceptions import UpstreamUnavailable
from tracking.app.schemas.position_report import PositionReport, parse_position_report

logger = logging.getLogger(__name__)


def build_kafka_producer(brokers: list[str] = KAFKA_BROKERS) -> AIOKafkaProducer:
    return AIOKafkaProducer(
        bootstrap_servers=brokers,
        client_id=f"{KAFKA_CLIENT_ID}-publisher",
        acks="all",
    )


class LocationPublisher:
    """
    Puts validated pings on the position-report topic, keyed by vehicle id so
    every report for one vehicle lands on the same partition.
    """

    def __init__(self, producer: AIOKafkaProducer, topic: str = KAFKA_TOPIC,
                 clock: Callable[[], float] = time.time):
        self._producer = producer
        self._topic = topic
        self._clock = clock

    async def publish(self, data: Mapping[str, Any]) -> PositionReport:
        """
        Raises ReportValidationError for a bad ping and UpstreamUnavailable
        when the broker does not acknowledge it.
        """
        payload = dict(data)
        # A zero or missing timestamp means "now"; anything else is validated as sent
        timestamp = payload.get("timestamp")
        if timestamp is None or (timestamp == 0 and not isinstance(timestamp, bool)):
            payload["timestamp"] = int(self._clock())
        report = parse_position_report(payload)

        try:
            await self._producer.send_and_wait(
                self._topic,
                value=report.to_json().encode("utf-8"),
                key=report.vehicle_id.encode("utf-8"),
            )
        except KafkaError as e:
            logger.error("Failed to publish ping for %s: %s", report.vehicle_id, e)
            raise UpstreamUnavailable(f"Failed to publish to {self._topic}: {e}", resource="stream") from e
        return report
