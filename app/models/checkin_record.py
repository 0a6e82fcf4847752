"""
CheckinRecord Model
Stores accepted event check-ins
"""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.sql import func
from app.database import Base


class CheckinRecord(Base):
    """
    One accepted check-in.

    Written only after the QR token validated, the geofence check passed (or
    was skipped) and the token was atomically consumed.
    """
    __tablename__ = "checkin_records"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Event and token
    event_id = Column(String(255), nullable=False, index=True)
    qr_token = Column(Text, nullable=False)

    # Submitted data
    user_data = Column(JSON, nullable=False)
    location = Column(JSON, nullable=True)
    # {"latitude": 37.77, "longitude": -122.41, "accuracy": 12.0}

    # Validation outcome
    validation_status = Column(String(50), nullable=False, default="success")
    location_verified = Column(Boolean, nullable=False, default=False)
    distance_meters = Column(Integer, nullable=True)

    # Request metadata
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    # Timestamps
    checkin_time = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_checkin_records_event_time', 'event_id', 'checkin_time'),
    )

    def __repr__(self):
        return f"<CheckinRecord(id={self.id}, event_id='{self.event_id}', status='{self.validation_status}')>"
