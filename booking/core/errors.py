"""Typed failures raised by the booking services.

Each error carries a machine-readable ``kind`` and the HTTP status the routes
answer with, so callers can tell a conflict from a validation problem without
parsing messages.
"""

from fastapi import HTTPException, status


class BookingError(Exception):
    kind = 'error'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Unexpected booking error.'

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BookingError):
    kind = 'validation_error'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Required booking data is missing or malformed.'


class NotFoundError(BookingError):
    kind = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Provider not found.'


class LeadTimeError(BookingError):
    kind = 'lead_time'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Appointments require more advance notice.'


class OutOfWindowError(BookingError):
    kind = 'out_of_window'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Requested time is outside the provider availability.'


class ConflictError(BookingError):
    kind = 'conflict'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'This time is already booked.'


class ExternalIntegrationError(BookingError):
    kind = 'external_integration'
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = 'External calendar is unavailable.'


class StorageError(BookingError):
    kind = 'storage'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = 'Database unavailable. Verify DATABASE_URL and database credentials.'


class ConfigurationError(Exception):
    """Provider has no policy record; listing treats this as no availability."""


def to_http_exception(exc: BookingError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail={'kind': exc.kind, 'message': exc.message},
    )
