"""Stored Google Calendar credentials."""

from sqlalchemy import Column, DateTime, ForeignKey, String

from booking.database import Base


class GoogleCalendarAuth(Base):
    """OAuth tokens for a provider's connected calendar. Written by the connection flow."""
    __tablename__ = "google_calendar_auth"

    provider_id = Column(String, ForeignKey("provider_policies.provider_id"), primary_key=True)
    access_token = Column(String, nullable=True)
    refresh_token = Column(String, nullable=True)
    expires_at = Column(DateTime, nullable=True)
