import os
from datetime import datetime, time, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('PROVIDER_UTC_OFFSET_MINUTES', '-180')
os.environ.setdefault('GOOGLE_CALENDAR_ENABLED', 'false')

from booking.database import Base, build_engine  # noqa: E402
from booking.models.appointment import Appointment  # noqa: E402
from booking.models.availability import AvailabilityWindow  # noqa: E402
from booking.models.google_auth import GoogleCalendarAuth  # noqa: E402
from booking.models.provider import ProviderPolicy  # noqa: E402

PROVIDER_ID = 'provider-1'
LOCAL_TZ = timezone(timedelta(hours=-3))

# Sunday 2026-01-04 10:00 in the provider's -03:00 offset.
SUNDAY_MORNING = datetime(2026, 1, 4, 10, 0, tzinfo=LOCAL_TZ)


def local(year: int, month: int, day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=LOCAL_TZ).astimezone(timezone.utc)


def seed_provider(
    db,
    provider_id: str = PROVIDER_ID,
    windows: list[tuple[int, time, time, str | None]] | None = None,
    **policy_fields,
) -> ProviderPolicy:
    policy_values = {
        'min_lead_minutes': 24 * 60,
        'session_minutes': 50,
        'buffer_before_minutes': 5,
        'buffer_after_minutes': 5,
        'horizon_days': 2,
    }
    policy_values.update(policy_fields)
    policy = ProviderPolicy(provider_id=provider_id, **policy_values)
    db.add(policy)
    for day_of_week, start, end, session_kind in windows if windows is not None else [(0, time(13, 0), time(17, 0), None)]:
        db.add(
            AvailabilityWindow(
                provider_id=provider_id,
                day_of_week=day_of_week,
                start_time=start,
                end_time=end,
                session_kind=session_kind,
            )
        )
    db.commit()
    return policy


def make_session_factory(database_url: str = 'sqlite://'):
    if database_url == 'sqlite://':
        engine = build_engine(database_url, poolclass=StaticPool)
    else:
        engine = build_engine(database_url)
    Base.metadata.create_all(
        bind=engine,
        tables=[
            ProviderPolicy.__table__,
            AvailabilityWindow.__table__,
            Appointment.__table__,
            GoogleCalendarAuth.__table__,
        ],
    )
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def session_factory():
    engine, factory = make_session_factory()
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def booking_db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
