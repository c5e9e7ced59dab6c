from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from booking.core.errors import BookingError, ValidationError, to_http_exception
from booking.models.appointment import SessionKind
from booking.routes.dependencies import ensure_database_ready, get_calendar, get_db, get_now
from booking.services.busy_intervals import ExternalCalendar
from booking.services.clock import ProviderClock
from booking.services.slot_listing import list_available_slots

router = APIRouter(tags=['slots'])


class SlotListResponse(BaseModel):
    provider_id: str
    session_kind: SessionKind
    slots: list[str]


def parse_range_bound(value: str | None, label: str) -> datetime | None:
    if value is None or not value.strip():
        return None
    try:
        return ProviderClock().parse_instant(value)
    except ValueError as exc:
        raise ValidationError(f'{label!r} must be an ISO 8601 datetime.') from exc


@router.get('/slots', response_model=SlotListResponse)
async def list_slots(
    response: Response,
    provider_id: str = Query(..., min_length=1),
    session_kind: str = Query(default='online'),
    range_from: str | None = Query(default=None, alias='from'),
    range_to: str | None = Query(default=None, alias='to'),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    calendar: ExternalCalendar | None = Depends(get_calendar),
):
    ensure_database_ready()

    try:
        try:
            kind = SessionKind.parse(session_kind)
        except ValueError as exc:
            raise ValidationError('Invalid session kind.') from exc

        listing = await list_available_slots(
            db,
            provider_id.strip(),
            kind.value,
            now,
            calendar=calendar,
            window_from=parse_range_bound(range_from, 'from'),
            window_to=parse_range_bound(range_to, 'to'),
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc

    response.headers['Cache-Control'] = 'no-store'
    return SlotListResponse(provider_id=provider_id.strip(), session_kind=kind, slots=listing.iso_slots())
