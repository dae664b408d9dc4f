# tracking/app/main.py
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from typing import Any

from fastapi import Body, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from tracking.app.core.config import DATABASE_URL, LOG_LEVEL, SQL_ECHO, START_CONSUMER
from tracking.app.core.exceptions import ExternalFeedFailure, ReportValidationError, UpstreamUnavailable
from tracking.app.core.logging_config import configure_logging
from tracking.app.core.metrics import RequestMetrics
from tracking.app.db.session import build_session_factory
from tracking.app.services.external_feeds.opensky_client import OpenSkyFeed
from tracking.app.services.ingestion_consumer import IngestionConsumer, build_kafka_consumer
from tracking.app.services.live_aggregator import LiveAggregator
from tracking.app.services.location_publisher import LocationPublisher, build_kafka_producer
from tracking.app.services.read_resolver import ReadResolver
from tracking.app.stores.history_store import SqlAlchemyHistoryStore
from tracking.app.stores.latest_cache import LatestStateCache, build_latest_cache

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Long-lived handles shared by every request."""
    cache: LatestStateCache
    history: SqlAlchemyHistoryStore
    resolver: ReadResolver
    aggregator: LiveAggregator
    consumer: IngestionConsumer
    publisher: LocationPublisher | None = None


def build_services(
    cache: LatestStateCache,
    history: SqlAlchemyHistoryStore,
    feed: OpenSkyFeed | None = None,
    publisher: LocationPublisher | None = None,
) -> ServiceContainer:
    resolver = ReadResolver(cache, history)
    return ServiceContainer(
        cache=cache,
        history=history,
        resolver=resolver,
        aggregator=LiveAggregator(resolver, feed or OpenSkyFeed()),
        consumer=IngestionConsumer(cache, history),
        publisher=publisher,
    )


def _log_consumer_exit(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Kafka consumer stopped unexpectedly: %s", task.exception())


async def _check_cache(cache: LatestStateCache) -> None:
    # Reads and writes fail per request until the cache comes back
    try:
        await cache.ping()
        logger.info("Connected to the latest-state cache")
    except UpstreamUnavailable as e:
        logger.error("Latest-state cache unreachable at startup: %s", e)


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    """
    With `services` given the app serves those handles as-is. Otherwise the
    lifespan connects Redis, Postgres and Kafka from config, runs the ingestion
    consumer in the background, and closes everything on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            app.state.services = services
            yield
            return

        configure_logging(LOG_LEVEL)
        cache = build_latest_cache()
        producer = None
        consumer_task = None
        try:
            await _check_cache(cache)
            history = SqlAlchemyHistoryStore(build_session_factory(DATABASE_URL, echo=SQL_ECHO))
            await asyncio.to_thread(history.create_schema)
            kafka_producer = build_kafka_producer()
            await kafka_producer.start()
            producer = kafka_producer
            app.state.services = build_services(cache, history, publisher=LocationPublisher(producer))

            if START_CONSUMER:
                consumer_task = asyncio.create_task(app.state.services.consumer.consume(build_kafka_consumer()))
                consumer_task.add_done_callback(_log_consumer_exit)
                logger.info("Kafka consumer started")
            yield
        finally:
            if consumer_task is not None:
                app.state.services.consumer.stop()
                consumer_task.cancel()
                with suppress(asyncio.CancelledError):
                    await consumer_task
            if producer is not None:
                await producer.stop()
            await cache.close()

    app = FastAPI(title="Nexus Logistics Tracking Service", lifespan=lifespan)
    metrics = RequestMetrics()

    @app.middleware("http")
    async def record_request_duration(request: Request, call_next):
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            # Label by route template so /tracking/{vehicle_id} is one series
            route = request.scope.get("route")
            path = getattr(route, "path", None) or request.url.path
            metrics.observe(request.method, path, status_code, time.perf_counter() - started)

    @app.exception_handler(ReportValidationError)
    async def validation_error_handler(request: Request, exc: ReportValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "validation_error", "message": str(exc), "details": exc.details},
        )

    @app.exception_handler(UpstreamUnavailable)
    async def upstream_error_handler(request: Request, exc: UpstreamUnavailable):
        logger.error("%s unavailable while serving %s: %s", exc.resource, request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})

    @app.exception_handler(ExternalFeedFailure)
    async def feed_error_handler(request: Request, exc: ExternalFeedFailure):
        logger.error("Error fetching aircraft data: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Failed to fetch aircraft data"})

    @app.get("/")
    async def root():
        return {"message": "Welcome to the Nexus Logistics Tracking API"}

    @app.get("/metrics")
    async def prometheus_metrics():
        return Response(content=metrics.render(), media_type=metrics.content_type)

    @app.get("/health")
    async def health_check():
        return {"status": "UP"}

    @app.get("/tracking/{vehicle_id}")
    async def get_latest_location(vehicle_id: str, services: ServiceContainer = Depends(get_services)):
        report = await services.resolver.get_latest(vehicle_id)
        if report is None:
            return JSONResponse(status_code=404, content={"error": "Vehicle not found"})
        return report.to_dict()

    @app.get("/vehicles")
    async def list_vehicles(services: ServiceContainer = Depends(get_services)):
        return [report.to_dict() for report in await services.resolver.list_all()]

    @app.get("/live/all")
    async def live_all(services: ServiceContainer = Depends(get_services)):
        return [vehicle.to_dict() for vehicle in await services.aggregator.snapshot()]

    @app.get("/live/aircraft")
    async def live_aircraft(services: ServiceContainer = Depends(get_services)):
        return [vehicle.to_dict() for vehicle in await services.aggregator.live_aircraft()]

    @app.get("/live/trucks")
    async def live_trucks(services: ServiceContainer = Depends(get_services)):
        return [vehicle.to_dict() for vehicle in services.aggregator.live_trucks()]

    @app.get("/live/buses")
    async def live_buses(services: ServiceContainer = Depends(get_services)):
        return [vehicle.to_dict() for vehicle in services.aggregator.live_buses()]

    @app.post("/pings", status_code=202)
    async def send_ping(payload: dict[str, Any] = Body(...), services: ServiceContainer = Depends(get_services)):
        if services.publisher is None:
            return JSONResponse(status_code=503, content={"success": False, "message": "Stream publisher not configured"})
        await services.publisher.publish(payload)
        return {"success": True, "message": "Ping received"}

    return app


app = create_app()
