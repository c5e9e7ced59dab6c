"""Create HOLD appointments without ever double-booking a provider.

The policy row is locked, the request is checked against the same rules the
slot listing uses, and the overlap query plus insert run in that one
transaction. The partial unique index on active starts (and the exclusion
constraint on PostgreSQL) turns any race that slips past the lock into an
``IntegrityError``, which is reported as a conflict.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from booking.core.errors import BookingError, ConfigurationError, ConflictError, NotFoundError, StorageError, ValidationError
from booking.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus, SessionKind
from booking.services.availability import load_availability_model, load_policy_record
from booking.services.clock import ProviderClock, ensure_utc, to_storage
from booking.services.slot_filter import find_violation, raise_for_violation

logger = logging.getLogger(__name__)


@dataclass
class BookingRequest:
    provider_id: str | None
    client_name: str | None
    client_email: str | None
    session_kind: str | None
    requested_start: str | datetime | None


@dataclass(frozen=True)
class _ValidatedRequest:
    provider_id: str
    client_name: str
    client_email: str
    session_kind: SessionKind


def _clean(value: str | None) -> str:
    return (value or '').strip()


def validate_request(request: BookingRequest) -> _ValidatedRequest:
    provider_id = _clean(request.provider_id)
    client_name = _clean(request.client_name)
    client_email = _clean(request.client_email).lower()
    raw_kind = _clean(request.session_kind)

    if not (provider_id and client_name and client_email and raw_kind and request.requested_start):
        raise ValidationError('Required booking data is missing.')

    if '@' not in client_email:
        raise ValidationError('Client email is not valid.')

    try:
        session_kind = SessionKind.parse(raw_kind)
    except ValueError as exc:
        raise ValidationError('Invalid session kind.') from exc

    # Syntax check only; naive values are re-read in the provider's offset later.
    parse_requested_start(request.requested_start, ProviderClock())

    return _ValidatedRequest(provider_id, client_name, client_email, session_kind)


def parse_requested_start(value: str | datetime, clock: ProviderClock) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return ensure_utc(value.replace(tzinfo=clock.tz))
        return ensure_utc(value)
    try:
        return clock.parse_instant(value)
    except ValueError as exc:
        raise ValidationError('Start time must be an ISO 8601 datetime.') from exc


def find_conflicting_appointment(
    db: Session,
    provider_id: str,
    start: datetime,
    end: datetime,
) -> Appointment | None:
    return db.query(Appointment).filter(
        Appointment.provider_id == provider_id,
        Appointment.status.in_(ACTIVE_STATUSES),
        Appointment.start_time < to_storage(end),
        Appointment.end_time > to_storage(start),
    ).first()


def book_appointment(db: Session, request: BookingRequest, now: datetime) -> Appointment:
    validated = validate_request(request)

    try:
        try:
            policy_record = load_policy_record(db, validated.provider_id, lock=True)
        except ConfigurationError as exc:
            raise NotFoundError() from exc

        model = load_availability_model(
            db,
            validated.provider_id,
            validated.session_kind.value,
            policy_record=policy_record,
        )
        requested_start = parse_requested_start(request.requested_start, model.clock)
        requested_end = requested_start + model.block_length()

        raise_for_violation(find_violation(requested_start, model, (), now))

        if find_conflicting_appointment(db, validated.provider_id, requested_start, requested_end):
            raise ConflictError()

        appointment = Appointment(
            provider_id=validated.provider_id,
            client_name=validated.client_name,
            client_email=validated.client_email,
            session_kind=validated.session_kind.value,
            start_time=to_storage(requested_start),
            end_time=to_storage(requested_end),
            status=AppointmentStatus.HOLD.value,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
    except BookingError as exc:
        db.rollback()
        if isinstance(exc, ConflictError):
            logger.info('Booking conflict for provider %s at %s', validated.provider_id, request.requested_start)
        raise
    except ConfigurationError as exc:
        db.rollback()
        raise NotFoundError(str(exc)) from exc
    except IntegrityError as exc:
        db.rollback()
        logger.info('Concurrent booking rejected for provider %s at %s', validated.provider_id, request.requested_start)
        raise ConflictError() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Booking transaction failed for provider %s', validated.provider_id)
        raise StorageError() from exc

    logger.info('Created HOLD appointment %s for provider %s', appointment.id, appointment.provider_id)
    return appointment
