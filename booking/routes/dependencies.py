from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from booking.core import config
from booking.database import SessionLocal, ensure_appointment_schema
from booking.services.busy_intervals import ExternalCalendar
from booking.services.google_calendar import GoogleCalendarClient


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={'kind': 'storage', 'message': 'Database unavailable. Verify DATABASE_URL and database credentials.'},
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_now() -> datetime:
    return datetime.now(timezone.utc)


def get_calendar() -> ExternalCalendar | None:
    if not config.GOOGLE_CALENDAR_ENABLED:
        return None
    return GoogleCalendarClient()
