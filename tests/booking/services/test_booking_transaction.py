import threading
import time as time_module
from datetime import datetime, time

import pytest
from sqlalchemy.exc import OperationalError

from booking.core.errors import (
    ConflictError,
    LeadTimeError,
    NotFoundError,
    OutOfWindowError,
    StorageError,
    ValidationError,
)
from booking.models.appointment import ACTIVE_STATUSES, Appointment
from booking.services import booking_transaction
from booking.services.booking_transaction import BookingRequest, book_appointment
from booking.services.clock import to_storage
from conftest import PROVIDER_ID, SUNDAY_MORNING, local, make_session_factory, seed_provider


def _request(start='2026-01-05T14:00:00-03:00', **overrides) -> BookingRequest:
    values = {
        'provider_id': PROVIDER_ID,
        'client_name': 'Ana Souza',
        'client_email': ' Ana@Example.com ',
        'session_kind': 'online',
        'requested_start': start,
    }
    values.update(overrides)
    return BookingRequest(**values)


@pytest.fixture
def provider_db(booking_db):
    seed_provider(booking_db, utc_offset_minutes=-180)
    return booking_db


def _active_count(db) -> int:
    return db.query(Appointment).filter(Appointment.status.in_(ACTIVE_STATUSES)).count()


def test_book_creates_hold_with_block_length(provider_db) -> None:
    appointment = book_appointment(provider_db, _request(), SUNDAY_MORNING)

    assert appointment.id is not None
    assert appointment.status == 'HOLD'
    assert appointment.session_kind == 'ONLINE'
    assert appointment.client_email == 'ana@example.com'
    assert appointment.start_time == datetime(2026, 1, 5, 17, 0)
    assert appointment.end_time == datetime(2026, 1, 5, 18, 0)


def test_second_booking_for_same_start_conflicts(provider_db) -> None:
    book_appointment(provider_db, _request(), SUNDAY_MORNING)

    with pytest.raises(ConflictError):
        book_appointment(provider_db, _request(client_email='other@example.com'), SUNDAY_MORNING)

    assert _active_count(provider_db) == 1


@pytest.mark.parametrize(
    'start',
    ['2026-01-05T14:00:00', '2026-01-05T17:00:00Z', datetime(2026, 1, 5, 14, 0)],
)
def test_start_formats_resolve_to_same_slot(provider_db, start) -> None:
    appointment = book_appointment(provider_db, _request(start=start), SUNDAY_MORNING)

    assert appointment.start_time == datetime(2026, 1, 5, 17, 0)


@pytest.mark.parametrize(
    'overrides',
    [
        {'provider_id': ''},
        {'client_name': '   '},
        {'client_email': None},
        {'session_kind': ''},
        {'requested_start': None},
        {'client_email': 'not-an-email'},
        {'session_kind': 'telepathy'},
        {'requested_start': 'next monday'},
    ],
)
def test_invalid_requests_raise_validation_error(provider_db, overrides: dict) -> None:
    with pytest.raises(ValidationError):
        book_appointment(provider_db, _request(**overrides), SUNDAY_MORNING)


def test_unknown_provider_raises_not_found(provider_db) -> None:
    with pytest.raises(NotFoundError):
        book_appointment(provider_db, _request(provider_id='unknown'), SUNDAY_MORNING)


def test_start_inside_lead_time_is_rejected(provider_db) -> None:
    with pytest.raises(LeadTimeError):
        book_appointment(provider_db, _request(), local(2026, 1, 4, 15))


@pytest.mark.parametrize('start', ['2026-01-05T17:00:00-03:00', '2026-01-05T13:30:00-03:00', '2026-01-06T14:00:00-03:00'])
def test_start_outside_window_is_rejected(provider_db, start: str) -> None:
    with pytest.raises(OutOfWindowError):
        book_appointment(provider_db, _request(start=start), SUNDAY_MORNING)


def test_overlapping_confirmed_appointment_blocks_neighbouring_starts(provider_db) -> None:
    provider_db.add(
        Appointment(
            provider_id=PROVIDER_ID,
            start_time=to_storage(local(2026, 1, 5, 14, 30)),
            end_time=to_storage(local(2026, 1, 5, 15, 30)),
            status='CONFIRMED',
            client_name='Existing',
            client_email='existing@example.com',
            session_kind='IN_PERSON',
        )
    )
    provider_db.commit()

    with pytest.raises(ConflictError):
        book_appointment(provider_db, _request(start='2026-01-05T14:00:00-03:00'), SUNDAY_MORNING)
    with pytest.raises(ConflictError):
        book_appointment(provider_db, _request(start='2026-01-05T15:00:00-03:00'), SUNDAY_MORNING)

    assert book_appointment(provider_db, _request(start='2026-01-05T16:00:00-03:00'), SUNDAY_MORNING).id


def test_cancelled_appointment_does_not_block(provider_db) -> None:
    provider_db.add(
        Appointment(
            provider_id=PROVIDER_ID,
            start_time=datetime(2026, 1, 5, 17, 0),
            end_time=datetime(2026, 1, 5, 18, 0),
            status='CANCELLED',
            client_name='Gone',
            client_email='gone@example.com',
            session_kind='ONLINE',
        )
    )
    provider_db.commit()

    assert book_appointment(provider_db, _request(), SUNDAY_MORNING).status == 'HOLD'


def test_race_past_overlap_check_is_caught_by_store(provider_db, monkeypatch: pytest.MonkeyPatch) -> None:
    book_appointment(provider_db, _request(), SUNDAY_MORNING)
    monkeypatch.setattr(
        'booking.services.booking_transaction.find_conflicting_appointment',
        lambda *args, **kwargs: None,
    )

    with pytest.raises(ConflictError):
        book_appointment(provider_db, _request(client_name='Second'), SUNDAY_MORNING)

    assert _active_count(provider_db) == 1


def test_storage_failure_rolls_back_and_is_not_a_conflict(provider_db, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_commit() -> None:
        raise OperationalError('COMMIT', {}, Exception('disk I/O error'))

    monkeypatch.setattr(provider_db, 'commit', failing_commit)

    with pytest.raises(StorageError):
        book_appointment(provider_db, _request(), SUNDAY_MORNING)

    monkeypatch.undo()
    assert provider_db.query(Appointment).count() == 0


def test_concurrent_bookings_for_same_start_admit_exactly_one(tmp_path) -> None:
    engine, factory = make_session_factory(f"sqlite:///{tmp_path / 'concurrent.db'}")
    setup_db = factory()
    seed_provider(setup_db, windows=[(0, time(13, 0), time(17, 0), None)])
    setup_db.close()

    attempts = 4
    barrier = threading.Barrier(attempts)
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()

    def attempt(index: int) -> None:
        db = factory()
        try:
            barrier.wait()
            book_appointment(db, _request(client_name=f'Client {index}'), SUNDAY_MORNING)
            outcome = 'ok'
        except Exception as exc:
            outcome = type(exc).__name__
        finally:
            db.close()
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=attempt, args=(index,)) for index in range(attempts)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    verify_db = factory()
    try:
        assert outcomes.count('ok') == 1
        assert set(outcomes) - {'ok'} <= {'ConflictError', 'StorageError'}
        assert _active_count(verify_db) == 1
    finally:
        verify_db.close()
        engine.dispose()


def test_concurrent_overlapping_starts_admit_exactly_one(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine, factory = make_session_factory(f"sqlite:///{tmp_path / 'overlap.db'}")
    setup_db = factory()
    seed_provider(
        setup_db,
        windows=[
            (0, time(13, 0), time(17, 0), None),
            (0, time(13, 30), time(17, 30), 'ONLINE'),
        ],
    )
    setup_db.close()

    real_find_conflict = booking_transaction.find_conflicting_appointment

    def slow_find_conflict(*args, **kwargs):
        found = real_find_conflict(*args, **kwargs)
        time_module.sleep(0.3)
        return found

    monkeypatch.setattr(booking_transaction, 'find_conflicting_appointment', slow_find_conflict)

    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()

    def attempt(start: str) -> None:
        db = factory()
        try:
            barrier.wait()
            book_appointment(db, _request(start=start, client_name=start), SUNDAY_MORNING)
            outcome = 'ok'
        except Exception as exc:
            outcome = type(exc).__name__
        finally:
            db.close()
        with outcomes_lock:
            outcomes.append(outcome)

    starts = ['2026-01-05T13:00:00-03:00', '2026-01-05T13:30:00-03:00']
    threads = [threading.Thread(target=attempt, args=(start,)) for start in starts]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    verify_db = factory()
    try:
        assert sorted(outcomes) == ['ConflictError', 'ok']
        assert _active_count(verify_db) == 1
    finally:
        verify_db.close()
        engine.dispose()
