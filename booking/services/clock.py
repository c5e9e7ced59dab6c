"""Fixed-offset civil time conversions.

The provider works in a single UTC offset with no daylight saving, so local
civil times are converted with plain offset arithmetic instead of a zone
database, and the host's local timezone is never consulted. Everything inside
the services is an aware UTC ``datetime``; the database stores naive UTC.
"""

from datetime import date, datetime, time, timedelta, timezone

from booking.core import config


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_storage(value: datetime) -> datetime:
    return ensure_utc(value).replace(tzinfo=None)


class ProviderClock:
    def __init__(self, utc_offset_minutes: int | None = None) -> None:
        if utc_offset_minutes is None:
            utc_offset_minutes = config.PROVIDER_UTC_OFFSET_MINUTES
        self.utc_offset_minutes = utc_offset_minutes
        self.tz = timezone(timedelta(minutes=utc_offset_minutes))

    def to_utc(self, local_date: date, local_time: time) -> datetime:
        local = datetime.combine(local_date, local_time.replace(tzinfo=None), tzinfo=self.tz)
        return local.astimezone(timezone.utc)

    def to_local(self, instant: datetime) -> datetime:
        return ensure_utc(instant).astimezone(self.tz)

    def to_local_civil(self, instant: datetime) -> tuple[date, time]:
        local = self.to_local(instant)
        return local.date(), local.time().replace(tzinfo=None)

    def local_today(self, now: datetime) -> date:
        return self.to_local(now).date()

    def iso_with_offset(self, instant: datetime) -> str:
        return self.to_local(instant).isoformat(timespec='seconds')

    def parse_instant(self, value: str) -> datetime:
        """Parse an ISO 8601 string; values without an offset are read as provider-local."""
        cleaned = value.strip()
        if not cleaned:
            raise ValueError('Empty datetime value.')
        if cleaned.endswith(('Z', 'z')):
            cleaned = f'{cleaned[:-1]}+00:00'
        parsed = datetime.fromisoformat(cleaned)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self.tz)
        return parsed.astimezone(timezone.utc)
