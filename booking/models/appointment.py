"""Appointment model definitions."""

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String

from booking.database import Base


class AppointmentStatus(str, enum.Enum):
    HOLD = 'HOLD'
    CONFIRMED = 'CONFIRMED'
    CANCELLED = 'CANCELLED'


class SessionKind(str, enum.Enum):
    ONLINE = 'ONLINE'
    IN_PERSON = 'IN_PERSON'

    @classmethod
    def parse(cls, value: str) -> 'SessionKind':
        normalized = value.strip().upper().replace('-', '_').replace(' ', '_')
        return cls(SESSION_KIND_ALIASES.get(normalized, normalized))


SESSION_KIND_ALIASES = {
    'INPERSON': 'IN_PERSON',
    'PRESENCIAL': 'IN_PERSON',
}

ACTIVE_STATUSES = (AppointmentStatus.HOLD.value, AppointmentStatus.CONFIRMED.value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Appointment(Base):
    """A held or confirmed session. Times are stored as naive UTC."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, ForeignKey("provider_policies.provider_id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.HOLD.value)
    client_name = Column(String, nullable=False)
    client_email = Column(String, nullable=False)
    session_kind = Column(String, nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    __table_args__ = (
        Index('idx_appointments_provider_status_range', 'provider_id', 'status', 'start_time', 'end_time'),
        Index(
            'uq_appointments_active_start',
            'provider_id',
            'start_time',
            unique=True,
            sqlite_where=status.in_(ACTIVE_STATUSES),
            postgresql_where=status.in_(ACTIVE_STATUSES),
        ),
    )
