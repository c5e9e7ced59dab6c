import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from booking.core.errors import ConfigurationError, StorageError, ValidationError
from booking.services.availability import AvailabilityModel, load_availability_model
from booking.services.busy_intervals import ExternalCalendar, collect_busy_intervals
from booking.services.candidates import CandidateSchedule
from booking.services.clock import ProviderClock, ensure_utc
from booking.services.slot_filter import filter_slots

logger = logging.getLogger(__name__)

MAX_EXPLICIT_RANGE_DAYS = 366


@dataclass
class SlotListing:
    slots: list[datetime] = field(default_factory=list)
    clock: ProviderClock = field(default_factory=ProviderClock)

    def iso_slots(self) -> list[str]:
        return [self.clock.iso_with_offset(slot) for slot in self.slots]


def build_schedule(
    model: AvailabilityModel,
    now: datetime,
    window_from: datetime | None = None,
    window_to: datetime | None = None,
) -> CandidateSchedule:
    """Schedule walking from the later of ``now`` and ``window_from``.

    An explicit ``window_to`` replaces the policy horizon with the calendar days
    between the two bounds.
    """
    anchor = now if window_from is None else max(now, ensure_utc(window_from))
    if window_to is None:
        return CandidateSchedule(model, anchor)

    first_day = model.clock.local_today(anchor)
    last_day = model.clock.local_today(ensure_utc(window_to))
    span_days = (last_day - first_day).days + 1
    if span_days > MAX_EXPLICIT_RANGE_DAYS:
        raise ValidationError(f'Slot range cannot exceed {MAX_EXPLICIT_RANGE_DAYS} days.')
    return CandidateSchedule(model, anchor, horizon_days=max(span_days, 0))


async def list_available_slots(
    db: Session,
    provider_id: str,
    session_kind: str | None,
    now: datetime,
    calendar: ExternalCalendar | None = None,
    window_from: datetime | None = None,
    window_to: datetime | None = None,
) -> SlotListing:
    """Bookable UTC starts for a provider, ascending.

    A provider without a policy simply has no availability. External calendar
    failures degrade to local busy data; local storage failures propagate.
    """
    now = ensure_utc(now)
    if window_from is not None and window_to is not None and window_to <= window_from:
        raise ValidationError('Slot range end must be after its start.')

    try:
        model = await run_in_threadpool(load_availability_model, db, provider_id, session_kind)
    except ConfigurationError:
        logger.info('Provider %s has no scheduling policy; no availability', provider_id)
        return SlotListing()
    except SQLAlchemyError as exc:
        logger.exception('Loading availability failed for provider %s', provider_id)
        raise StorageError() from exc

    schedule = build_schedule(model, now, window_from, window_to)
    candidates = list(schedule)
    if window_from is not None:
        candidates = [candidate for candidate in candidates if candidate >= ensure_utc(window_from)]
    if window_to is not None:
        candidates = [candidate for candidate in candidates if candidate < ensure_utc(window_to)]
    if not candidates:
        return SlotListing(clock=model.clock)

    time_min = candidates[0]
    time_max = schedule.horizon_end()
    busy_intervals = await collect_busy_intervals(db, provider_id, time_min, time_max, calendar)

    slots = filter_slots(candidates, model, busy_intervals, now)
    logger.debug(
        'Provider %s: %d candidates, %d busy intervals, %d slots',
        provider_id,
        len(candidates),
        len(busy_intervals),
        len(slots),
    )
    return SlotListing(slots=slots, clock=model.clock)

