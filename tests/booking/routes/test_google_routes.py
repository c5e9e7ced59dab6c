import pytest
from fastapi.testclient import TestClient

from booking.main import app
from booking.routes.dependencies import get_calendar, get_db, get_now
from booking.services.busy_intervals import BusyInterval, BusySource
from conftest import PROVIDER_ID, SUNDAY_MORNING, local, seed_provider


class ConnectedCalendar:
    async def get_valid_access_token(self, provider_id):
        return 'access-1'

    async def query_free_busy(self, access_token, time_min, time_max):
        return {}

    def parse_busy_intervals(self, payload):
        return [BusyInterval(local(2026, 1, 5, 14), local(2026, 1, 5, 15), BusySource.EXTERNAL)]


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    db = session_factory()
    try:
        seed_provider(db, utc_offset_minutes=0)
    finally:
        db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_now] = lambda: SUNDAY_MORNING
    app.dependency_overrides[get_calendar] = lambda: ConnectedCalendar()
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_freebusy_uses_provider_offset_override(client) -> None:
    response = client.get('/google/freebusy', params={'provider_id': PROVIDER_ID})

    assert response.status_code == 200
    data = response.json()
    assert data['time_min'] == '2026-01-04T13:00:00+00:00'
    assert data['busy'] == [
        {'start': '2026-01-05T17:00:00+00:00', 'end': '2026-01-05T18:00:00+00:00', 'source': 'EXTERNAL'},
    ]


def test_freebusy_is_not_found_when_integration_disabled(client) -> None:
    app.dependency_overrides[get_calendar] = lambda: None

    response = client.get('/google/freebusy', params={'provider_id': PROVIDER_ID})

    assert response.status_code == 404
    assert response.json()['detail']['kind'] == 'not_found'
