"""Conflict rules shared by slot listing and booking validation."""

import enum
from datetime import datetime
from typing import Iterable

from booking.core.errors import ConflictError, LeadTimeError, OutOfWindowError
from booking.services.availability import AvailabilityModel
from booking.services.busy_intervals import BusyInterval
from booking.services.clock import ensure_utc


class SlotViolation(str, enum.Enum):
    LEAD_TIME = 'lead_time'
    OUT_OF_WINDOW = 'out_of_window'
    BUSY = 'busy'


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def find_violation(
    candidate: datetime,
    model: AvailabilityModel,
    busy_intervals: Iterable[BusyInterval],
    now: datetime,
) -> SlotViolation | None:
    candidate = ensure_utc(candidate)
    if candidate < ensure_utc(now) + model.policy.min_lead_time:
        return SlotViolation.LEAD_TIME

    if not model.contains(candidate):
        return SlotViolation.OUT_OF_WINDOW

    candidate_end = candidate + model.block_length()
    for busy in busy_intervals:
        if overlaps(candidate, candidate_end, busy.start, busy.end):
            return SlotViolation.BUSY

    return None


def filter_slots(
    candidates: Iterable[datetime],
    model: AvailabilityModel,
    busy_intervals: Iterable[BusyInterval],
    now: datetime,
) -> list[datetime]:
    busy_intervals = list(busy_intervals)
    accepted = {
        ensure_utc(candidate)
        for candidate in candidates
        if find_violation(candidate, model, busy_intervals, now) is None
    }
    return sorted(accepted)


def raise_for_violation(violation: SlotViolation | None) -> None:
    if violation is SlotViolation.LEAD_TIME:
        raise LeadTimeError()
    if violation is SlotViolation.OUT_OF_WINDOW:
        raise OutOfWindowError()
    if violation is SlotViolation.BUSY:
        raise ConflictError()
