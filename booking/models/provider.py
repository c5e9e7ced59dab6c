"""Provider policy model definitions."""

from sqlalchemy import Column, Integer, String

from booking.database import Base


class ProviderPolicy(Base):
    """Scheduling policy for a single provider."""
    __tablename__ = "provider_policies"

    provider_id = Column(String, primary_key=True)
    min_lead_minutes = Column(Integer, nullable=False, default=24 * 60)
    session_minutes = Column(Integer, nullable=False, default=50)
    buffer_before_minutes = Column(Integer, nullable=False, default=5)
    buffer_after_minutes = Column(Integer, nullable=False, default=5)
    horizon_days = Column(Integer, nullable=True)
    horizon_business_days = Column(Integer, nullable=True)
    utc_offset_minutes = Column(Integer, nullable=True)
