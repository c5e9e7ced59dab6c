"""Google Calendar free/busy lookups for connected providers.

Only the busy-interval slice of the Calendar API is used. Tokens are read
from ``google_calendar_auth`` and refreshed shortly before they expire; the
consent flow that first writes them lives outside this service.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from booking.core import config
from booking.core.errors import ExternalIntegrationError
from booking.database import SessionLocal
from booking.models.google_auth import GoogleCalendarAuth
from booking.services.busy_intervals import BusyInterval, BusySource
from booking.services.clock import ensure_utc, to_storage

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)
DEFAULT_TOKEN_TTL_SECONDS = 3600


class GoogleCalendarError(ExternalIntegrationError):
    default_message = 'Google Calendar request failed.'


@dataclass(frozen=True)
class StoredToken:
    access_token: str | None
    refresh_token: str | None
    expires_at: datetime | None

    def is_usable(self, now: datetime) -> bool:
        if not self.access_token or self.expires_at is None:
            return False
        return ensure_utc(self.expires_at) - TOKEN_EXPIRY_MARGIN > now


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_google_datetime(value: datetime) -> str:
    return ensure_utc(value).strftime('%Y-%m-%dT%H:%M:%SZ')


def _parse_google_datetime(raw_value: Any) -> datetime:
    if not isinstance(raw_value, str) or not raw_value.strip():
        raise GoogleCalendarError('Google Calendar busy entry is missing a timestamp.')
    normalized = raw_value.strip().replace('Z', '+00:00')
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise GoogleCalendarError('Google Calendar returned an invalid timestamp.') from exc
    return ensure_utc(parsed)


class GoogleCalendarClient:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        calendar_id: str | None = None,
        timeout_seconds: float | None = None,
        api_base_url: str | None = None,
        token_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.client_id = client_id if client_id is not None else config.GOOGLE_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else config.GOOGLE_CLIENT_SECRET
        self.calendar_id = calendar_id or config.GOOGLE_CALENDAR_ID
        self.timeout_seconds = timeout_seconds or config.GOOGLE_API_TIMEOUT_SECONDS
        self.api_base_url = (api_base_url or config.GOOGLE_API_BASE_URL).rstrip('/')
        self.token_url = token_url or config.GOOGLE_TOKEN_URL
        self.transport = transport
        self.clock = clock

    async def get_busy_intervals(
        self,
        provider_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        access_token = await self.get_valid_access_token(provider_id)
        if access_token is None:
            logger.debug('Provider %s has no Google Calendar connection', provider_id)
            return []
        payload = await self.query_free_busy(access_token, time_min, time_max)
        return self.parse_busy_intervals(payload)

    async def get_valid_access_token(self, provider_id: str) -> str | None:
        stored = await run_in_threadpool(self._load_token, provider_id)
        if stored is None:
            return None

        now = self.clock()
        if stored.is_usable(now):
            return stored.access_token

        if not stored.refresh_token:
            raise GoogleCalendarError('Refresh token missing. Reconnect Google Calendar.')

        logger.info('Refreshing Google Calendar token for provider %s', provider_id)
        tokens = await self._post_form(
            self.token_url,
            {
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'grant_type': 'refresh_token',
                'refresh_token': stored.refresh_token,
            },
        )
        access_token = tokens.get('access_token')
        if not isinstance(access_token, str) or not access_token:
            raise GoogleCalendarError('Google token refresh response missing access_token.')

        try:
            expires_in = int(tokens.get('expires_in') or DEFAULT_TOKEN_TTL_SECONDS)
        except (TypeError, ValueError) as exc:
            raise GoogleCalendarError('Google token refresh response has an invalid expires_in.') from exc
        refreshed = StoredToken(
            access_token=access_token,
            refresh_token=tokens.get('refresh_token') or stored.refresh_token,
            expires_at=now + timedelta(seconds=expires_in),
        )
        await run_in_threadpool(self._store_token, provider_id, refreshed)
        return refreshed.access_token

    async def query_free_busy(self, access_token: str, time_min: datetime, time_max: datetime) -> dict[str, Any]:
        body = {
            'timeMin': _format_google_datetime(time_min),
            'timeMax': _format_google_datetime(time_max),
            'timeZone': 'UTC',
            'items': [{'id': self.calendar_id}],
        }
        return await self._request_json(
            'POST',
            f'{self.api_base_url}/freeBusy',
            json=body,
            headers={'Authorization': f'Bearer {access_token}'},
        )

    def parse_busy_intervals(self, payload: dict[str, Any]) -> list[BusyInterval]:
        calendars = payload.get('calendars')
        if not isinstance(calendars, dict):
            raise GoogleCalendarError('Google Calendar free/busy response missing calendars.')

        calendar_payload = calendars.get(self.calendar_id) or {}
        if not isinstance(calendar_payload, dict):
            raise GoogleCalendarError(f'Google Calendar returned a malformed entry for {self.calendar_id}.')
        errors = calendar_payload.get('errors')
        if errors:
            raise GoogleCalendarError(f'Google Calendar reported errors for {self.calendar_id}: {errors}')

        intervals: list[BusyInterval] = []
        busy_entries = calendar_payload.get('busy') or []
        if not isinstance(busy_entries, list):
            raise GoogleCalendarError(f'Google Calendar returned malformed busy data for {self.calendar_id}.')
        for entry in busy_entries:
            if not isinstance(entry, dict):
                continue
            start = _parse_google_datetime(entry.get('start'))
            end = _parse_google_datetime(entry.get('end'))
            if end <= start:
                continue
            intervals.append(BusyInterval(start=start, end=end, source=BusySource.EXTERNAL))
        return intervals

    def _load_token(self, provider_id: str) -> StoredToken | None:
        db = self.session_factory()
        try:
            record = db.query(GoogleCalendarAuth).filter(GoogleCalendarAuth.provider_id == provider_id).first()
            if record is None:
                return None
            return StoredToken(
                access_token=record.access_token,
                refresh_token=record.refresh_token,
                expires_at=record.expires_at,
            )
        except SQLAlchemyError as exc:
            raise GoogleCalendarError('Could not read Google Calendar credentials.') from exc
        finally:
            db.close()

    def _store_token(self, provider_id: str, token: StoredToken) -> None:
        db = self.session_factory()
        try:
            record = db.query(GoogleCalendarAuth).filter(GoogleCalendarAuth.provider_id == provider_id).first()
            if record is None:
                record = GoogleCalendarAuth(provider_id=provider_id)
                db.add(record)
            record.access_token = token.access_token
            record.refresh_token = token.refresh_token
            record.expires_at = to_storage(token.expires_at) if token.expires_at else None
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise GoogleCalendarError('Could not store refreshed Google Calendar credentials.') from exc
        finally:
            db.close()

    async def _post_form(self, url: str, data: dict[str, str]) -> dict[str, Any]:
        return await self._request_json('POST', url, data=data)

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise GoogleCalendarError(f'Google API request failed: {exc}') from exc

        if response.status_code >= 400:
            raise GoogleCalendarError(
                f'Google API request failed ({response.status_code}): {response.text[:300]}'
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise GoogleCalendarError('Google API returned invalid JSON.') from exc
        if not isinstance(payload, dict):
            raise GoogleCalendarError('Google API returned an unexpected payload.')
        return payload
