"""
Trip Tracking database model.

Durable snapshot document per tracked trip, kept as history after the
trip leaves the in-memory registry.
"""

from sqlalchemy import Column, String, DateTime, Enum, JSON
from sqlalchemy.sql import func
from tracking_backend.app.db.session import Base
from tracking_backend.app.models.tracking_enums import TrackingStatus, TripStage


class TripTrackingRecord(Base):
    """
    Trip Tracking model.

    Holds the full serialized TripState in `snapshot`; the remaining columns
    are denormalized for querying (e.g. active trips after a restart).
    """
    __tablename__ = "trip_tracking"

    trip_id = Column(String(128), primary_key=True)

    # References (owned by the booking store)
    booking_id = Column(String(128), nullable=False, index=True)
    driver_id = Column(String(128), nullable=False, index=True)
    customer_id = Column(String(128), nullable=False, index=True)

    # State
    status = Column(Enum(TrackingStatus), default=TrackingStatus.ACTIVE, nullable=False, index=True)
    current_stage = Column(Enum(TripStage), default=TripStage.ENROUTE, nullable=False)
    stop_reason = Column(String(64), nullable=True)
    snapshot = Column(JSON, nullable=False)

    # Timestamps
    started_at = Column(DateTime(timezone=True), nullable=False)
    last_update = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<TripTrackingRecord(trip_id={self.trip_id}, status='{self.status.value}')>"
