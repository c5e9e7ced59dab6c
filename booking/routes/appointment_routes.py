from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from booking.core.errors import BookingError, to_http_exception
from booking.routes.dependencies import ensure_database_ready, get_db, get_now
from booking.services.availability import load_provider_clock
from booking.services.booking_transaction import BookingRequest, book_appointment
from booking.services.clock import ensure_utc

router = APIRouter(tags=['appointments'])

MAX_CLIENT_NAME_LENGTH = 200


class CreateAppointmentRequest(BaseModel):
    provider_id: str | None = None
    client_name: str | None = None
    client_email: str | None = None
    session_kind: str | None = None
    start: str | None = None

    @field_validator('client_email')
    @classmethod
    def normalize_client_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower()

    @field_validator('client_name')
    @classmethod
    def validate_client_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if len(normalized) > MAX_CLIENT_NAME_LENGTH:
            raise ValueError(f'Client name must be {MAX_CLIENT_NAME_LENGTH} characters or fewer.')
        return normalized


class AppointmentCreatedResponse(BaseModel):
    appointment_id: int
    provider_id: str
    status: str
    session_kind: str
    start: str
    end: str


@router.post('/appointments', response_model=AppointmentCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    ensure_database_ready()

    try:
        appointment = book_appointment(
            db,
            BookingRequest(
                provider_id=data.provider_id,
                client_name=data.client_name,
                client_email=data.client_email,
                session_kind=data.session_kind,
                requested_start=data.start,
            ),
            now,
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc

    clock = load_provider_clock(db, appointment.provider_id)
    return AppointmentCreatedResponse(
        appointment_id=appointment.id,
        provider_id=appointment.provider_id,
        status=appointment.status,
        session_kind=appointment.session_kind,
        start=clock.iso_with_offset(ensure_utc(appointment.start_time)),
        end=clock.iso_with_offset(ensure_utc(appointment.end_time)),
    )
