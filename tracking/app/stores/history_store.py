# tracking/app/stores/history_store.py
import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from tracking.app.core.exceptions import UpstreamUnavailable
from tracking.app.db.session import Base
from tracking.app.models.vehicle_location import VehicleLocation
from tracking.app.schemas.position_report import PositionReport

logger = logging.getLogger(__name__)


class SqlAlchemyHistoryStore:
    """
    Append-only history of every ingested report, in the vehicle_locations table.
    The ORM calls block, so each public coroutine runs its work in a worker thread.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self._session_factory.kw["bind"])

    async def append(self, report: PositionReport) -> None:
        """Inserts one row. Raises UpstreamUnavailable on any database error; never retries."""
        await asyncio.to_thread(self._append, report)

    async def get_latest_by_key(self, vehicle_id: str) -> PositionReport | None:
        """Returns the max-timestamp row for vehicle_id, or None."""
        return await asyncio.to_thread(self._get_latest_by_key, vehicle_id)

    def _append(self, report: PositionReport) -> None:
        db: Session = self._session_factory()
        try:
            db.add(VehicleLocation(
                vehicle_id=report.vehicle_id,
                latitude=report.latitude,
                longitude=report.longitude,
                timestamp=report.timestamp,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise UpstreamUnavailable(
                f"History append failed for {report.vehicle_id}: {e}", resource="history"
            ) from e
        finally:
            db.close()

    def _get_latest_by_key(self, vehicle_id: str) -> PositionReport | None:
        db: Session = self._session_factory()
        try:
            row = (
                db.query(VehicleLocation)
                .filter(VehicleLocation.vehicle_id == vehicle_id)
                # id breaks ties between duplicate rows for the same report time
                .order_by(VehicleLocation.timestamp.desc(), VehicleLocation.id.desc())
                .first()
            )
        except SQLAlchemyError as e:
            raise UpstreamUnavailable(
                f"History lookup failed for {vehicle_id}: {e}", resource="history"
            ) from e
        finally:
            db.close()

        if row is None:
            return None
        return PositionReport(
            vehicle_id=row.vehicle_id,
            latitude=row.latitude,
            longitude=row.longitude,
            timestamp=row.timestamp,
        )

