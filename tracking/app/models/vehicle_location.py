# tracking/app/models/vehicle_location.py
from sqlalchemy import BigInteger, Column, DateTime, Float, Index, Integer, String
from sqlalchemy.sql import func # For default timestamps

from tracking.app.db.session import Base


class VehicleLocation(Base):
    __tablename__ = "vehicle_locations"

    id = Column(Integer, primary_key=True) # Surrogate PK; there is no natural key per report
    vehicle_id = Column(String(100), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    # Report time as sent by the vehicle (Unix epoch seconds), not insertion time.
    # Redelivered messages produce duplicate rows; no uniqueness constraint.
    timestamp = Column(BigInteger, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_vehicle_locations_vehicle_id_timestamp", "vehicle_id", "timestamp"),
    )

    def __repr__(self):
        return (
            f"<VehicleLocation(id={self.id}, vehicle_id='{self.vehicle_id}', "
            f"lat={self.latitude}, lon={self.longitude}, timestamp={self.timestamp})>"
        )
