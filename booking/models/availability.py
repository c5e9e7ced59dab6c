"""Availability model definitions."""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String, Time

from booking.database import Base


class AvailabilityWindow(Base):
    """A recurring weekly opening, in the provider's local time."""
    __tablename__ = "availability_windows"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, ForeignKey("provider_policies.provider_id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0=Monday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    session_kind = Column(String, nullable=True)  # None applies to every kind

    __table_args__ = (
        CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_availability_day_of_week'),
        CheckConstraint('start_time < end_time', name='ck_availability_window_order'),
    )
