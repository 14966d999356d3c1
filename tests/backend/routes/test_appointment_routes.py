from datetime import datetime, time, timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from backend.auth.dependencies import StaffMember
from backend.routes.appointment_routes import (
    AppointmentResponse,
    CancelAppointmentRequest,
    CreateAppointmentRequest,
    RescheduleAppointmentRequest,
    StatusTransitionRequest,
    cancel_appointment,
    create_appointment,
    get_appointment,
    list_appointment_events,
    list_appointments,
    list_events_for_appointment,
    reschedule_appointment,
    sweep_no_shows,
    transition_appointment,
)

RECEPTIONIST = StaffMember(email='front.desk@caresync.org', role='receptionist')


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.routes.appointment_routes.ensure_database_ready', lambda: None)


def _list(db, **filters):
    params = {
        'doctor_id': None,
        'patient_id': None,
        'on_date': None,
        'date_from': None,
        'date_to': None,
        'statuses': None,
        'appointment_type': None,
    }
    params.update(filters)
    return list_appointments(db=db, **params)


@pytest.fixture
def booking_request(upcoming_monday):
    def _request(**overrides) -> CreateAppointmentRequest:
        fields = {
            'patient_id': 'patient-1',
            'doctor_id': 'dr-grey',
            'date': upcoming_monday,
            'start_time': time(9, 0),
            'duration_minutes': 30,
        }
        fields.update(overrides)
        return CreateAppointmentRequest(**fields)

    return _request


def test_create_appointment_request_normalizes_fields(upcoming_monday) -> None:
    request = CreateAppointmentRequest(
        patient_id=' patient-1 ',
        doctor_id=' dr-grey ',
        date=upcoming_monday,
        start_time=time(9, 0),
        appointment_type='virtual',
        notes='   ',
        reason_for_visit=' Annual physical ',
    )

    assert request.patient_id == 'patient-1'
    assert request.doctor_id == 'dr-grey'
    assert request.duration_minutes == 30
    assert request.appointment_type.value == 'virtual'
    assert request.notes is None
    assert request.reason_for_visit == 'Annual physical'


@pytest.mark.parametrize(
    'overrides',
    [
        {'patient_id': '   '},
        {'duration_minutes': 0},
        {'appointment_type': 'house-call'},
        {'notes': 'x' * 601},
    ],
)
def test_create_appointment_request_rejects_invalid_fields(booking_request, overrides: dict) -> None:
    with pytest.raises(ValidationError):
        booking_request(**overrides)


def test_status_transition_request_rejects_cancelled_target() -> None:
    with pytest.raises(ValidationError):
        StatusTransitionRequest(status='cancelled')


def test_create_appointment_books_slot_then_conflicts(db_session, make_doctor, booking_request) -> None:
    make_doctor()

    created = create_appointment(booking_request(), db=db_session)

    assert created.status == 'scheduled'
    assert created.end_time == time(9, 30)

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking_request(patient_id='patient-2'), db=db_session)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'This time slot is no longer available. Please select another slot.'


def test_create_appointment_outside_availability_is_400(db_session, make_doctor, booking_request) -> None:
    make_doctor()

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking_request(start_time=time(13, 0)), db=db_session)

    assert exception_info.value.status_code == 400


def test_create_appointment_for_unknown_doctor_is_404(db_session, booking_request) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking_request(doctor_id='dr-nobody'), db=db_session)

    assert exception_info.value.status_code == 404


def test_list_appointments_requires_doctor_or_patient() -> None:
    with pytest.raises(HTTPException) as exception_info:
        _list(None)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Filter by doctor_id or patient_id.'


def test_list_appointments_rejects_inverted_date_range(upcoming_monday) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _list(None, doctor_id='dr-grey', date_from=upcoming_monday, date_to=upcoming_monday - timedelta(days=1))

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'date_from must not be after date_to.'


def test_list_appointments_filters_by_patient(db_session, make_doctor, booking_request) -> None:
    make_doctor()
    create_appointment(booking_request(), db=db_session)
    create_appointment(booking_request(patient_id='patient-2', start_time=time(9, 30)), db=db_session)

    appointments = _list(db_session, patient_id='patient-2')

    assert [(item.patient_id, item.start_time) for item in appointments] == [('patient-2', time(9, 30))]


def test_get_appointment_unknown_id_is_404(db_session) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_appointment(12345, db=db_session)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Appointment 12345 not found.'


def test_reschedule_then_cancel_appointment(db_session, make_doctor, booking_request, upcoming_monday) -> None:
    make_doctor()
    created = create_appointment(booking_request(), db=db_session)

    moved = reschedule_appointment(
        created.id,
        RescheduleAppointmentRequest(date=upcoming_monday, start_time=time(9, 30), reason='Running late'),
        db=db_session,
    )

    assert moved.start_time == time(9, 30)
    assert moved.original_appointment_id == created.id
    assert moved.notes == 'Rescheduled: Running late'

    cancelled = cancel_appointment(created.id, CancelAppointmentRequest(reason='Travel'), db=db_session)

    assert cancelled.status == 'cancelled'

    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(created.id, CancelAppointmentRequest(), db=db_session)

    assert exception_info.value.status_code == 409
    assert [event.to_status for event in list_events_for_appointment(created.id, db=db_session)] == [
        'scheduled',
        'scheduled',
        'cancelled',
    ]


def test_transition_appointment_signs_note_with_staff_email(db_session, make_doctor, booking_request) -> None:
    make_doctor()
    created = create_appointment(booking_request(), db=db_session)

    checked_in = transition_appointment(
        created.id,
        StatusTransitionRequest(status='checked-in', note='Arrived early'),
        db=db_session,
        staff=RECEPTIONIST,
    )

    assert checked_in.status == 'checked-in'
    assert checked_in.notes == 'Arrived early (front.desk@caresync.org)'


def test_transition_appointment_illegal_move_is_409(db_session, make_doctor, booking_request) -> None:
    make_doctor()
    created = create_appointment(booking_request(), db=db_session)

    with pytest.raises(HTTPException) as exception_info:
        transition_appointment(
            created.id,
            StatusTransitionRequest(status='completed'),
            db=db_session,
            staff=RECEPTIONIST,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Cannot move an appointment from scheduled to completed.'


def test_event_feed_and_sweep_endpoints(db_session, make_doctor, booking_request) -> None:
    make_doctor()
    create_appointment(booking_request(), db=db_session)

    events = list_appointment_events(after_id=0, limit=100, db=db_session)

    assert [(event.event_type, event.to_status) for event in events] == [('booked', 'scheduled')]
    assert list_appointment_events(after_id=events[-1].id, limit=100, db=db_session) == []
    # Nothing has ended yet.
    assert sweep_no_shows(doctor_id=None, db=db_session).flipped == 0


@pytest.mark.parametrize('start_time', ['09:00Z', '09:00+02:00', '09:00:30'])
def test_create_appointment_with_offset_or_seconds_is_400(db_session, make_doctor, booking_request, start_time: str) -> None:
    make_doctor()

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking_request(start_time=start_time), db=db_session)

    assert exception_info.value.status_code == 400


def test_appointment_response_treats_missing_notes_as_empty(upcoming_monday) -> None:
    response = AppointmentResponse.model_validate({
        'id': 1,
        'patient_id': 'patient-1',
        'doctor_id': 'dr-grey',
        'date': upcoming_monday,
        'start_time': time(9, 0),
        'end_time': time(9, 30),
        'duration_minutes': 30,
        'appointment_type': 'in-person',
        'status': 'scheduled',
        'notes': None,
        'created_at': datetime(2026, 1, 1, 8, 0),
        'updated_at': datetime(2026, 1, 1, 8, 0),
    })

    assert response.notes == ''
