import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from booking.core import config
from booking.core.errors import ConfigurationError
from booking.models.availability import AvailabilityWindow
from booking.models.provider import ProviderPolicy
from booking.services.clock import ProviderClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowRule:
    day_of_week: int
    start_local_time: time
    end_local_time: time
    session_kind: str | None = None

    def applies_to(self, session_kind: str | None) -> bool:
        return self.session_kind is None or session_kind is None or self.session_kind == session_kind


@dataclass(frozen=True)
class PolicyRule:
    min_lead_time: timedelta = timedelta(hours=24)
    session_duration: timedelta = timedelta(minutes=50)
    buffer_before: timedelta = timedelta(minutes=5)
    buffer_after: timedelta = timedelta(minutes=5)
    horizon_days: int | None = None
    horizon_business_days: int | None = None
    utc_offset_minutes: int | None = None

    @property
    def block_length(self) -> timedelta:
        return self.session_duration + self.buffer_before + self.buffer_after

    @classmethod
    def from_record(cls, record: ProviderPolicy) -> 'PolicyRule':
        return cls(
            min_lead_time=timedelta(minutes=record.min_lead_minutes),
            session_duration=timedelta(minutes=record.session_minutes),
            buffer_before=timedelta(minutes=record.buffer_before_minutes or 0),
            buffer_after=timedelta(minutes=record.buffer_after_minutes or 0),
            horizon_days=record.horizon_days,
            horizon_business_days=record.horizon_business_days,
            utc_offset_minutes=record.utc_offset_minutes,
        )


class AvailabilityModel:
    """Weekly windows plus policy for one provider and session kind."""

    def __init__(
        self,
        policy: PolicyRule,
        windows: list[WindowRule],
        session_kind: str | None = None,
    ) -> None:
        if policy.block_length <= timedelta(0):
            raise ConfigurationError('Block length must be positive.')
        self.policy = policy
        self.session_kind = session_kind
        self.clock = ProviderClock(policy.utc_offset_minutes)
        self._windows_by_day: dict[int, list[WindowRule]] = {}
        for window in windows:
            if window.start_local_time >= window.end_local_time:
                raise ConfigurationError('Availability window must start before it ends.')
            if not window.applies_to(session_kind):
                continue
            self._windows_by_day.setdefault(window.day_of_week, []).append(window)
        for day_windows in self._windows_by_day.values():
            day_windows.sort(key=lambda window: (window.start_local_time, window.end_local_time))

    def windows_for(self, day_of_week: int) -> list[WindowRule]:
        return list(self._windows_by_day.get(day_of_week, []))

    def block_length(self) -> timedelta:
        return self.policy.block_length

    def has_windows(self) -> bool:
        return bool(self._windows_by_day)

    def contains(self, start: datetime) -> bool:
        """True when ``start`` sits on a window's block grid and the whole block fits inside it."""
        local_start = self.clock.to_local(start)
        local_end = local_start + self.block_length()
        for window in self.windows_for(local_start.weekday()):
            window_start = datetime.combine(local_start.date(), window.start_local_time, tzinfo=self.clock.tz)
            window_end = datetime.combine(local_start.date(), window.end_local_time, tzinfo=self.clock.tz)
            if not (window_start <= local_start and local_end <= window_end):
                continue
            if (local_start - window_start) % self.block_length() == timedelta(0):
                return True
        return False

    def default_horizon(self) -> tuple[int | None, int | None]:
        if self.policy.horizon_business_days:
            return None, self.policy.horizon_business_days
        return self.policy.horizon_days or config.DEFAULT_HORIZON_DAYS, None


def lock_provider(db: Session, provider_id: str) -> None:
    """Take the database write lock for this provider before any booking check runs.

    SQLite ignores ``FOR UPDATE`` and opens its transaction lazily, so a no-op
    write on the policy row is what serializes concurrent bookings there.
    """
    if db.get_bind().dialect.name != 'sqlite':
        return
    db.execute(
        update(ProviderPolicy.__table__)
        .where(ProviderPolicy.provider_id == provider_id)
        .values(provider_id=ProviderPolicy.provider_id)
    )


def load_policy_record(db: Session, provider_id: str, lock: bool = False) -> ProviderPolicy:
    if lock:
        lock_provider(db, provider_id)
    query = db.query(ProviderPolicy).filter(ProviderPolicy.provider_id == provider_id)
    if lock:
        query = query.with_for_update()
    record = query.one_or_none()
    if record is None:
        raise ConfigurationError(f'No policy configured for provider {provider_id!r}.')
    return record


def load_window_rules(db: Session, provider_id: str) -> list[WindowRule]:
    rows = db.query(AvailabilityWindow).filter(AvailabilityWindow.provider_id == provider_id).all()
    return [
        WindowRule(
            day_of_week=row.day_of_week,
            start_local_time=row.start_time,
            end_local_time=row.end_time,
            session_kind=row.session_kind,
        )
        for row in rows
    ]


def load_availability_model(
    db: Session,
    provider_id: str,
    session_kind: str | None,
    policy_record: ProviderPolicy | None = None,
) -> AvailabilityModel:
    if policy_record is None:
        policy_record = load_policy_record(db, provider_id)
    windows = load_window_rules(db, provider_id)
    logger.debug('Loaded %d availability windows for provider %s', len(windows), provider_id)
    return AvailabilityModel(PolicyRule.from_record(policy_record), windows, session_kind)


def load_provider_clock(db: Session, provider_id: str) -> ProviderClock:
    """Clock in the provider's own offset, or the configured default when it has no override."""
    record = db.get(ProviderPolicy, provider_id)
    return ProviderClock(record.utc_offset_minutes if record is not None else None)
