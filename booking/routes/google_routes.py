from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from booking.core.errors import ExternalIntegrationError, NotFoundError, to_http_exception
from booking.routes.dependencies import get_calendar, get_db, get_now
from booking.services.availability import load_provider_clock
from booking.services.google_calendar import GoogleCalendarClient

router = APIRouter(tags=['google'])

FREEBUSY_DEBUG_DAYS = 14


class BusyIntervalResponse(BaseModel):
    start: str
    end: str
    source: str


class FreeBusyResponse(BaseModel):
    provider_id: str
    time_min: str
    time_max: str
    busy: list[BusyIntervalResponse]


@router.get('/google/freebusy', response_model=FreeBusyResponse)
async def debug_free_busy(
    provider_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    calendar: GoogleCalendarClient | None = Depends(get_calendar),
):
    """Raw external busy blocks for the next two weeks; failures are reported, not absorbed."""
    if calendar is None:
        raise to_http_exception(NotFoundError('Google Calendar integration is disabled.'))

    time_min = now
    time_max = now + timedelta(days=FREEBUSY_DEBUG_DAYS)
    try:
        access_token = await calendar.get_valid_access_token(provider_id)
        if access_token is None:
            raise NotFoundError('Google Calendar is not connected for this provider.')
        payload = await calendar.query_free_busy(access_token, time_min, time_max)
        intervals = calendar.parse_busy_intervals(payload)
    except (ExternalIntegrationError, NotFoundError) as exc:
        raise to_http_exception(exc) from exc

    clock = await run_in_threadpool(load_provider_clock, db, provider_id)
    return FreeBusyResponse(
        provider_id=provider_id,
        time_min=clock.iso_with_offset(time_min),
        time_max=clock.iso_with_offset(time_max),
        busy=[
            BusyIntervalResponse(
                start=clock.iso_with_offset(interval.start),
                end=clock.iso_with_offset(interval.end),
                source=interval.source.value,
            )
            for interval in intervals
        ],
    )
