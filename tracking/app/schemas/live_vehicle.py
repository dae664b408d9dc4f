# tracking/app/schemas/live_vehicle.py
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tracking.app.schemas.position_report import PositionReport, VehicleCategory


class LiveVehicle(BaseModel):
    """One entry of the aggregated live fleet view."""

    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    latitude: float
    longitude: float
    timestamp: int
    type: VehicleCategory
    callsign: str | None = None
    altitude: float | None = None
    velocity: float | None = None
    on_ground: bool | None = None
    route: str | None = None
    city: str | None = None
    # Provenance: True for generated entries. Never serialized.
    synthetic: bool = Field(False, exclude=True)

    @classmethod
    def from_report(cls, report: PositionReport, now: int) -> "LiveVehicle":
        return cls(
            vehicle_id=report.vehicle_id,
            latitude=report.latitude,
            longitude=report.longitude,
            timestamp=report.timestamp if report.timestamp is not None else now,
            type=report.category,
            callsign=report.callsign,
            altitude=report.altitude,
            route=report.route,
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
