from datetime import date, datetime, time
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import StaffMember, get_current_staff
from backend.core import config
from backend.database import get_db
from backend.models.appointment import AppointmentStatus, AppointmentType
from backend.routes.common import database_unavailable, ensure_database_ready, http_error_for
from backend.services.booking import BookingTransactionManager
from backend.services.errors import SchedulingError
from backend.services.lifecycle import AppointmentFilters, AppointmentLifecycle

router = APIRouter(tags=['appointments'])

MAX_REASON_LENGTH = 255

StaffTransitionTarget = Literal['confirmed', 'checked-in', 'in-progress', 'completed', 'no-show']


def _normalize_optional_text(value: str | None, max_length: int) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'Must be {max_length} characters or fewer.')

    return normalized


class CreateAppointmentRequest(BaseModel):
    patient_id: str
    doctor_id: str
    date: date
    start_time: time
    duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES
    appointment_type: AppointmentType = AppointmentType.IN_PERSON
    notes: str | None = None
    reason_for_visit: str | None = None

    @field_validator('patient_id', 'doctor_id')
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Identifier is required.')
        return normalized

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Duration must be a positive number of minutes.')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, config.MAX_APPOINTMENT_NOTES_LENGTH)

    @field_validator('reason_for_visit')
    @classmethod
    def validate_reason_for_visit(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_REASON_LENGTH)


class RescheduleAppointmentRequest(BaseModel):
    date: date
    start_time: time
    duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES
    reason: str | None = None

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Duration must be a positive number of minutes.')
        return value

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_REASON_LENGTH)


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_REASON_LENGTH)


class StatusTransitionRequest(BaseModel):
    status: StaffTransitionTarget
    note: str | None = None

    @field_validator('note')
    @classmethod
    def validate_note(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_REASON_LENGTH)


class AppointmentResponse(BaseModel):
    id: int
    patient_id: str
    doctor_id: str
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    appointment_type: str
    status: str
    notes: str = ''
    reason_for_visit: str | None = None
    original_appointment_id: int | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator('notes', mode='before')
    @classmethod
    def default_missing_notes(cls, value: str | None) -> str:
        return value or ''

    class Config:
        from_attributes = True


class AppointmentEventResponse(BaseModel):
    id: int
    appointment_id: int
    event_type: str
    from_status: str | None = None
    to_status: str
    detail: str | None = None
    occurred_at: datetime

    class Config:
        from_attributes = True


class NoShowSweepResponse(BaseModel):
    flipped: int


def _appointment_response(appointment) -> AppointmentResponse:
    return AppointmentResponse.model_validate(appointment)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(data: CreateAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        outcome = BookingTransactionManager(db).book(
            patient_id=data.patient_id,
            doctor_id=data.doctor_id,
            day=data.date,
            start_time=data.start_time,
            duration_minutes=data.duration_minutes,
            appointment_type=data.appointment_type.value,
            notes=data.notes,
            reason_for_visit=data.reason_for_visit,
        )
        # SlotUnavailable: the client re-fetches availability rather than retrying this slot.
        return _appointment_response(outcome.unwrap())
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    doctor_id: str | None = Query(default=None),
    patient_id: str | None = Query(default=None),
    on_date: date | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    statuses: list[AppointmentStatus] | None = Query(default=None, alias='status'),
    appointment_type: AppointmentType | None = Query(default=None),
    db: Session = Depends(get_db),
):
    if not doctor_id and not patient_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Filter by doctor_id or patient_id.',
        )

    if date_from and date_to and date_from > date_to:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='date_from must not be after date_to.',
        )

    ensure_database_ready()

    try:
        filters = AppointmentFilters(
            doctor_id=doctor_id,
            patient_id=patient_id,
            on_date=on_date,
            date_from=date_from,
            date_to=date_to,
            statuses=[item.value for item in statuses or []],
            appointment_type=appointment_type.value if appointment_type else None,
        )
        appointments = AppointmentLifecycle(db).list_appointments(filters)
        return [_appointment_response(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/events', response_model=list[AppointmentEventResponse], dependencies=[Depends(get_current_staff)])
def list_appointment_events(
    after_id: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        events = AppointmentLifecycle(db).events_since(after_id=after_id, limit=limit)
        return [AppointmentEventResponse.model_validate(event) for event in events]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/no-show-sweep', response_model=NoShowSweepResponse, dependencies=[Depends(get_current_staff)])
def sweep_no_shows(
    doctor_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return NoShowSweepResponse(flipped=AppointmentLifecycle(db).sweep_no_shows(doctor_id=doctor_id))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return _appointment_response(AppointmentLifecycle(db).get_appointment(appointment_id))
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/{appointment_id}/events', response_model=list[AppointmentEventResponse])
def list_events_for_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        events = AppointmentLifecycle(db).events_for(appointment_id)
        return [AppointmentEventResponse.model_validate(event) for event in events]
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        outcome = BookingTransactionManager(db).reschedule(
            appointment_id,
            new_date=data.date,
            new_start_time=data.start_time,
            new_duration_minutes=data.duration_minutes,
            reason=data.reason,
        )
        return _appointment_response(outcome.unwrap())
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = BookingTransactionManager(db).cancel(appointment_id, reason=data.reason)
        return _appointment_response(appointment)
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{appointment_id}/status', response_model=AppointmentResponse)
def transition_appointment(
    appointment_id: int,
    data: StatusTransitionRequest,
    db: Session = Depends(get_db),
    staff: StaffMember = Depends(get_current_staff),
):
    ensure_database_ready()

    try:
        note = f'{data.note} ({staff.email})' if data.note else None
        appointment = AppointmentLifecycle(db).transition(appointment_id, data.status, note=note)
        return _appointment_response(appointment)
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
