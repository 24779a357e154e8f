import os
from datetime import date, datetime

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.routes.schedule_routes import (  # noqa: E402
    CreateAppointmentRequest,
    CreateAvailabilityRequest,
    CreatePractitionerRequest,
    UpdateAvailabilityRequest,
    cancel_appointment,
    create_appointment,
    create_availability,
    create_practitioner,
    delete_availability,
    get_booked_instants,
    get_practitioner_schedule,
    get_schedule_stats,
    list_availabilities,
    list_time_slots,
    update_availability,
)
from backend.database import Base  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402
from backend.models.availability import AvailabilityRule  # noqa: E402
from backend.models.practitioner import Practitioner  # noqa: E402
from backend.scheduling.rules import RepeatType  # noqa: E402

MONDAY = date(2026, 1, 5)


@pytest.fixture
def schedule_db(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('backend.routes.schedule_routes.ensure_database_ready', lambda: None)

    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    tables = [Practitioner.__table__, AvailabilityRule.__table__, Appointment.__table__]
    Base.metadata.create_all(bind=engine, tables=tables)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(tables)))


@pytest.fixture
def practitioner(schedule_db):
    return create_practitioner(
        CreatePractitionerRequest(first_name='Sarah', last_name='Johnson', specialty='Cardiology'),
        db=schedule_db,
    )


def add_rule(db, practitioner_id: str, weekday: int = 1, start: str = '09:00', end: str = '17:00'):
    return create_availability(
        CreateAvailabilityRequest(practitioner_id=practitioner_id, weekday=weekday, start=start, end=end),
        db=db,
    )


def book(
    db,
    practitioner_id: str,
    start_time: datetime,
    patient_name: str = 'Alex Doe',
    duration_minutes: int | None = None,
):
    return create_appointment(
        CreateAppointmentRequest(
            practitioner_id=practitioner_id,
            patient_name=patient_name,
            start_time=start_time,
            duration_minutes=duration_minutes,
        ),
        db=db,
    )


def test_create_availability_request_normalizes_times() -> None:
    request = CreateAvailabilityRequest(practitioner_id='prac-1', weekday=1, start=' 9:00 ', end='17:00')

    assert request.start == '09:00'
    assert request.repeat == RepeatType.WEEKLY


@pytest.mark.parametrize(
    ('payload', 'message'),
    [
        ({'weekday': 7, 'start': '09:00', 'end': '17:00'}, 'Weekday must be between 0 (Sunday) and 6 (Saturday).'),
        ({'weekday': 1, 'start': '9am', 'end': '17:00'}, 'Times must use the 24-hour HH:MM format.'),
        ({'weekday': 1, 'start': '17:00', 'end': '09:00'}, 'Availability must end after it starts.'),
        ({'weekday': 1, 'start': '09:00', 'end': '09:00'}, 'Availability must end after it starts.'),
        (
            {'weekday': 2, 'start': '09:00', 'end': '17:00', 'anchor_date': '2026-01-05'},
            'Anchor date must fall on the availability weekday.',
        ),
    ],
)
def test_create_availability_request_rejects_invalid_rules(payload: dict, message: str) -> None:
    with pytest.raises(ValidationError) as exception_info:
        CreateAvailabilityRequest(practitioner_id='prac-1', **payload)

    assert message in str(exception_info.value)


def test_create_practitioner_request_requires_names() -> None:
    with pytest.raises(ValidationError):
        CreatePractitionerRequest(first_name='  ', last_name='Johnson')


def test_create_appointment_request_normalizes_notes() -> None:
    request = CreateAppointmentRequest(
        practitioner_id='prac-1',
        patient_name=' Alex Doe ',
        start_time=datetime(2026, 1, 5, 9, 0),
        notes='   ',
    )

    assert request.patient_name == 'Alex Doe'
    assert request.notes is None


def test_create_availability_rejects_unknown_practitioner(schedule_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        add_rule(schedule_db, 'prac-missing')

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Practitioner not found.'


def test_create_availability_rejects_overlapping_rule(schedule_db, practitioner) -> None:
    existing = add_rule(schedule_db, practitioner.id, start='08:00', end='12:00')

    with pytest.raises(HTTPException) as exception_info:
        add_rule(schedule_db, practitioner.id, start='11:30', end='13:00')

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == f'Availability overlaps existing rule {existing.id}.'


def test_list_availabilities_filters_by_practitioner_and_weekday(schedule_db, practitioner) -> None:
    add_rule(schedule_db, practitioner.id, weekday=1)
    add_rule(schedule_db, practitioner.id, weekday=2)

    rules = list_availabilities(practitioner_id=practitioner.id, weekday=2, db=schedule_db)

    assert len(rules) == 1
    assert rules[0].weekday == 2
    assert rules[0].weekday_name == 'Tuesday'


def test_update_availability_changes_window(schedule_db, practitioner) -> None:
    rule = add_rule(schedule_db, practitioner.id)

    updated = update_availability(rule.id, UpdateAvailabilityRequest(end='12:00'), db=schedule_db)

    assert updated.start == '09:00'
    assert updated.end == '12:00'


def test_update_availability_rejects_inverted_window(schedule_db, practitioner) -> None:
    rule = add_rule(schedule_db, practitioner.id)

    with pytest.raises(HTTPException) as exception_info:
        update_availability(rule.id, UpdateAvailabilityRequest(start='18:00'), db=schedule_db)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Availability must end after it starts.'


def test_update_availability_does_not_conflict_with_itself(schedule_db, practitioner) -> None:
    rule = add_rule(schedule_db, practitioner.id, start='08:00', end='12:00')

    updated = update_availability(rule.id, UpdateAvailabilityRequest(start='09:00'), db=schedule_db)

    assert updated.start == '09:00'


def test_update_and_delete_missing_availability_return_not_found(schedule_db) -> None:
    with pytest.raises(HTTPException) as update_info:
        update_availability('avail-missing', UpdateAvailabilityRequest(end='12:00'), db=schedule_db)
    with pytest.raises(HTTPException) as delete_info:
        delete_availability('avail-missing', db=schedule_db)

    assert update_info.value.status_code == 404
    assert delete_info.value.status_code == 404


def test_list_time_slots_marks_booked_starts(schedule_db, practitioner) -> None:
    add_rule(schedule_db, practitioner.id)
    book(schedule_db, practitioner.id, datetime(2026, 1, 5, 9, 30))
    book(schedule_db, practitioner.id, datetime(2026, 1, 5, 14, 0))

    slots = list_time_slots(practitioner_id=practitioner.id, target_date=MONDAY, duration_minutes=30, db=schedule_db)

    assert len(slots) == 16
    assert [slot.start_at for slot in slots if not slot.available] == [
        datetime(2026, 1, 5, 9, 30),
        datetime(2026, 1, 5, 14, 0),
    ]


def test_list_time_slots_merges_split_shift(schedule_db, practitioner) -> None:
    add_rule(schedule_db, practitioner.id, start='14:00', end='18:00')
    add_rule(schedule_db, practitioner.id, start='08:00', end='12:00')

    slots = list_time_slots(practitioner_id=practitioner.id, target_date=MONDAY, duration_minutes=30, db=schedule_db)

    starts = [slot.start_at for slot in slots]
    assert len(starts) == 16
    assert starts == sorted(starts)


def test_get_schedule_stats_without_rules_is_zero(schedule_db, practitioner) -> None:
    stats = get_schedule_stats(
        practitioner_id=practitioner.id,
        target_date=date(2026, 1, 4),
        duration_minutes=30,
        db=schedule_db,
    )

    assert stats.total_slots == 0
    assert stats.available_slots == 0
    assert stats.booked_slots == 0
    assert stats.utilization_rate == 0


def test_get_practitioner_schedule_includes_rules_and_slots(schedule_db, practitioner) -> None:
    add_rule(schedule_db, practitioner.id, start='09:00', end='10:00')

    schedule = get_practitioner_schedule(practitioner.id, target_date=MONDAY, db=schedule_db)

    assert schedule.practitioner.last_name == 'Johnson'
    assert [rule.weekday_name for rule in schedule.availabilities] == ['Monday']
    assert len(schedule.time_slots) == 2


def test_get_practitioner_schedule_without_date_has_no_slots(schedule_db, practitioner) -> None:
    add_rule(schedule_db, practitioner.id)

    schedule = get_practitioner_schedule(practitioner.id, target_date=None, db=schedule_db)

    assert schedule.time_slots == []


def test_get_practitioner_schedule_returns_not_found(schedule_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_practitioner_schedule('prac-missing', target_date=None, db=schedule_db)

    assert exception_info.value.status_code == 404


def test_create_appointment_books_open_slot(schedule_db, practitioner) -> None:
    add_rule(schedule_db, practitioner.id)

    appointment = book(schedule_db, practitioner.id, datetime(2026, 1, 5, 10, 0, 45))

    assert appointment.start_time == datetime(2026, 1, 5, 10, 0)
    assert appointment.end_time == datetime(2026, 1, 5, 10, 30)
    assert appointment.status == 'booked'


def test_create_appointment_rejects_time_outside_slots(schedule_db, practitioner) -> None:
    add_rule(schedule_db, practitioner.id)

    with pytest.raises(HTTPException) as exception_info:
        book(schedule_db, practitioner.id, datetime(2026, 1, 5, 10, 15))

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Requested time is not an open slot for this practitioner.'


def test_create_appointment_rejects_double_booking(schedule_db, practitioner) -> None:
    add_rule(schedule_db, practitioner.id)
    book(schedule_db, practitioner.id, datetime(2026, 1, 5, 10, 0))

    with pytest.raises(HTTPException) as exception_info:
        book(schedule_db, practitioner.id, datetime(2026, 1, 5, 10, 0), patient_name='Sam Roe')

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'This time is already booked.'


def test_cancel_appointment_reopens_slot(schedule_db, practitioner) -> None:
    add_rule(schedule_db, practitioner.id)
    appointment = book(schedule_db, practitioner.id, datetime(2026, 1, 5, 9, 0))

    assert datetime(2026, 1, 5, 9, 0) in get_booked_instants(practitioner.id, MONDAY, schedule_db)

    cancel_appointment(appointment.id, db=schedule_db)

    assert get_booked_instants(practitioner.id, MONDAY, schedule_db) == set()
    cancelled = schedule_db.query(Appointment).filter(Appointment.id == appointment.id).first()
    assert cancelled.status == 'cancelled'


def test_cancel_appointment_returns_not_found_when_missing(schedule_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(999, db=schedule_db)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Appointment not found.'


def test_get_booked_instants_ignores_cancelled_and_other_days(schedule_db, practitioner) -> None:
    schedule_db.add_all([
        Appointment(
            practitioner_id=practitioner.id,
            patient_name='Alex Doe',
            start_time=datetime(2026, 1, 5, 9, 0),
            end_time=datetime(2026, 1, 5, 9, 30),
            status='cancelled',
        ),
        Appointment(
            practitioner_id=practitioner.id,
            patient_name='Sam Roe',
            start_time=datetime(2026, 1, 6, 9, 0),
            end_time=datetime(2026, 1, 6, 9, 30),
            status='booked',
        ),
    ])
    schedule_db.commit()

    assert get_booked_instants(practitioner.id, MONDAY, schedule_db) == set()


def test_create_appointment_rejects_overlap_with_longer_booking(schedule_db, practitioner) -> None:
    add_rule(schedule_db, practitioner.id)
    book(schedule_db, practitioner.id, datetime(2026, 1, 5, 9, 0), duration_minutes=60)

    with pytest.raises(HTTPException) as exception_info:
        book(schedule_db, practitioner.id, datetime(2026, 1, 5, 9, 30), patient_name='Sam Roe')

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'This time is already booked.'
    assert schedule_db.query(Appointment).count() == 1


def test_create_appointment_allows_adjacent_booking_after_longer_one(schedule_db, practitioner) -> None:
    add_rule(schedule_db, practitioner.id)
    book(schedule_db, practitioner.id, datetime(2026, 1, 5, 9, 0), duration_minutes=60)

    appointment = book(schedule_db, practitioner.id, datetime(2026, 1, 5, 10, 0), patient_name='Sam Roe')

    assert appointment.start_time == datetime(2026, 1, 5, 10, 0)


def test_create_appointment_ignores_cancelled_overlap(schedule_db, practitioner) -> None:
    add_rule(schedule_db, practitioner.id)
    longer = book(schedule_db, practitioner.id, datetime(2026, 1, 5, 9, 0), duration_minutes=60)
    cancel_appointment(longer.id, db=schedule_db)

    appointment = book(schedule_db, practitioner.id, datetime(2026, 1, 5, 9, 30), patient_name='Sam Roe')

    assert appointment.status == 'booked'


def test_create_appointment_ignores_other_practitioners_bookings(schedule_db, practitioner) -> None:
    colleague = create_practitioner(
        CreatePractitionerRequest(first_name='James', last_name='Williams'),
        db=schedule_db,
    )
    add_rule(schedule_db, practitioner.id)
    add_rule(schedule_db, colleague.id)
    book(schedule_db, colleague.id, datetime(2026, 1, 5, 9, 0), duration_minutes=60)

    appointment = book(schedule_db, practitioner.id, datetime(2026, 1, 5, 9, 30))

    assert appointment.practitioner_id == practitioner.id
