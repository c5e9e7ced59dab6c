import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from booking.core import config
from booking.core.errors import ExternalIntegrationError, StorageError
from booking.models.appointment import ACTIVE_STATUSES, Appointment
from booking.services.clock import ensure_utc, to_storage

logger = logging.getLogger(__name__)


class BusySource(str, enum.Enum):
    LOCAL = 'LOCAL'
    EXTERNAL = 'EXTERNAL'


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime
    source: BusySource


class ExternalCalendar(Protocol):
    async def get_busy_intervals(
        self,
        provider_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        ...


def query_local_busy(db: Session, provider_id: str, time_min: datetime, time_max: datetime) -> list[BusyInterval]:
    try:
        rows = db.query(Appointment.start_time, Appointment.end_time).filter(
            Appointment.provider_id == provider_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.start_time < to_storage(time_max),
            Appointment.end_time > to_storage(time_min),
        ).all()
    except SQLAlchemyError as exc:
        logger.exception('Local busy query failed for provider %s', provider_id)
        raise StorageError() from exc

    return [
        BusyInterval(start=ensure_utc(start), end=ensure_utc(end), source=BusySource.LOCAL)
        for start, end in rows
    ]


async def fetch_external_busy(
    calendar: ExternalCalendar | None,
    provider_id: str,
    time_min: datetime,
    time_max: datetime,
    timeout_seconds: float | None = None,
) -> list[BusyInterval]:
    """External busy blocks, or an empty list when the calendar is down or slow."""
    if calendar is None:
        return []
    if timeout_seconds is None:
        timeout_seconds = config.EXTERNAL_BUSY_TIMEOUT_SECONDS

    try:
        return await asyncio.wait_for(
            calendar.get_busy_intervals(provider_id, time_min, time_max),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning('External calendar timed out for provider %s; using local data only', provider_id)
    except ExternalIntegrationError as exc:
        logger.warning('External calendar failed for provider %s: %s; using local data only', provider_id, exc)
    except Exception:
        logger.warning(
            'Unexpected external calendar error for provider %s; using local data only',
            provider_id,
            exc_info=True,
        )
    return []


async def collect_busy_intervals(
    db: Session,
    provider_id: str,
    time_min: datetime,
    time_max: datetime,
    calendar: ExternalCalendar | None = None,
    timeout_seconds: float | None = None,
) -> list[BusyInterval]:
    local_busy, external_busy = await asyncio.gather(
        run_in_threadpool(query_local_busy, db, provider_id, time_min, time_max),
        fetch_external_busy(calendar, provider_id, time_min, time_max, timeout_seconds),
    )
    return local_busy + external_busy
