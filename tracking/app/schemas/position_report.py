# tracking/app/schemas/position_report.py
from __future__ import annotations

import enum
from collections.abc import Mapping
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter, ValidationError

from tracking.app.core.exceptions import ReportValidationError

VEHICLE_ID_PATTERN = r"^[a-zA-Z0-9_-]+$"
VEHICLE_ID_MAX_LENGTH = 100

VehicleId = Annotated[
    str,
    StringConstraints(min_length=1, max_length=VEHICLE_ID_MAX_LENGTH, pattern=VEHICLE_ID_PATTERN),
]

_vehicle_id_adapter = TypeAdapter(VehicleId)


class VehicleCategory(str, enum.Enum):
    TRUCK = "truck"
    BUS = "bus"
    AIRCRAFT = "aircraft"


# --- Pydantic Model for Data Validation ---
# Mirrors the stream message body. Unknown fields are rejected, and numbers
# must arrive as JSON numbers: "10" or true is not a coordinate.
class PositionReport(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    vehicle_id: VehicleId
    latitude: float = Field(..., ge=-90, le=90, allow_inf_nan=False, strict=True)
    longitude: float = Field(..., ge=-180, le=180, allow_inf_nan=False, strict=True)
    timestamp: int | None = Field(None, gt=0, strict=True) # epoch seconds
    type: VehicleCategory | None = None
    callsign: str | None = Field(None, max_length=20)
    altitude: float | None = Field(None, strict=True)
    route: str | None = Field(None, max_length=100)

    @property
    def category(self) -> VehicleCategory:
        return self.type or VehicleCategory.TRUCK

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict without the optional fields that were never set."""
        return self.model_dump(mode="json", exclude_none=True)

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


def _error_details(exc: ValidationError) -> list[dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


def parse_position_report(data: Mapping[str, Any]) -> PositionReport:
    """
    Validates a decoded message body and builds a PositionReport.
    Raises ReportValidationError with per-field details on failure.
    """
    try:
        return PositionReport.model_validate(dict(data))
    except ValidationError as e:
        raise ReportValidationError("Invalid position report", details=_error_details(e)) from e


def validate_vehicle_id(value: Any) -> str:
    try:
        return _vehicle_id_adapter.validate_python(value)
    except ValidationError as e:
        details = [{"field": "vehicle_id", "message": err["msg"]} for err in e.errors()]
        raise ReportValidationError("Invalid vehicle id", details=details) from e
