import logging
from datetime import date, time

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import StaffMember, get_current_staff
from backend.core import config
from backend.database import get_db
from backend.routes.common import database_unavailable, ensure_database_ready, http_error_for
from backend.services.availability_query import AvailabilityQuery, get_doctor
from backend.services.availability_template import (
    WEEKDAY_NAMES,
    AvailabilityTemplate,
    TimeWindow,
    load_template,
    save_template,
)
from backend.services.errors import SchedulingError

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)

MAX_SLOT_DURATION_MINUTES = 8 * 60


class TimeWindowModel(BaseModel):
    start: time
    end: time


class TemplateResponse(BaseModel):
    doctor_id: str
    windows: dict[str, list[TimeWindowModel]]


class UpdateTemplateRequest(BaseModel):
    windows: dict[str, list[TimeWindowModel]]

    @field_validator('windows')
    @classmethod
    def validate_weekdays(cls, value: dict[str, list[TimeWindowModel]]) -> dict[str, list[TimeWindowModel]]:
        normalized: dict[str, list[TimeWindowModel]] = {}
        for weekday, windows in value.items():
            key = weekday.strip().lower()
            if key not in WEEKDAY_NAMES:
                raise ValueError(f'Unknown weekday: {weekday}.')
            normalized[key] = windows
        return normalized


class DoctorResponse(BaseModel):
    id: str
    name: str
    specialty: str | None = None
    working_days: list[str]


class AvailableSlotResponse(BaseModel):
    doctor_id: str
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    available: bool
    conflict_reason: str | None = None

    class Config:
        from_attributes = True


class DayAvailabilityResponse(BaseModel):
    doctor_id: str
    date: date
    weekday: str
    is_available: bool


def template_response(doctor_id: str, template: AvailabilityTemplate) -> TemplateResponse:
    return TemplateResponse(
        doctor_id=doctor_id,
        windows={
            weekday: [TimeWindowModel(start=window.start, end=window.end) for window in windows]
            for weekday, windows in template.as_dict().items()
        },
    )


@router.get('/doctors', response_model=list[DoctorResponse])
def list_available_doctors(db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        doctors = AvailabilityQuery(db).doctors_with_availability()
        responses = []
        for doctor in doctors:
            template = load_template(doctor)
            responses.append(
                DoctorResponse(
                    id=doctor.id,
                    name=doctor.name,
                    specialty=doctor.specialty,
                    working_days=[name for name in WEEKDAY_NAMES if template.has_availability(name)],
                )
            )
        return responses
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctors/{doctor_id}/template', response_model=TemplateResponse)
def get_availability_template(doctor_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        doctor = get_doctor(db, doctor_id)
        return template_response(doctor.id, load_template(doctor))
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/doctors/{doctor_id}/template', response_model=TemplateResponse)
def replace_availability_template(
    doctor_id: str,
    data: UpdateTemplateRequest,
    db: Session = Depends(get_db),
    staff: StaffMember = Depends(get_current_staff),
):
    ensure_database_ready()

    try:
        # Validated in full before the store is touched.
        template = AvailabilityTemplate({
            weekday: [TimeWindow(window.start, window.end) for window in windows]
            for weekday, windows in data.windows.items()
        })

        doctor = get_doctor(db, doctor_id)
        save_template(db, doctor, template)
        db.commit()
        db.refresh(doctor)
        logger.info('Availability template for doctor %s replaced by %s', doctor.id, staff.email)

        return template_response(doctor.id, load_template(doctor))
    except SchedulingError as exc:
        db.rollback()
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/doctors/{doctor_id}/slots', response_model=list[AvailableSlotResponse])
def list_doctor_slots(
    doctor_id: str,
    day: date = Query(..., alias='date'),
    duration_minutes: int = Query(default=config.DEFAULT_SLOT_DURATION_MINUTES, ge=1, le=MAX_SLOT_DURATION_MINUTES),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slots = AvailabilityQuery(db).query(doctor_id, day, duration_minutes)
        return [AvailableSlotResponse.model_validate(slot) for slot in slots]
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctors/{doctor_id}/days/{day}', response_model=DayAvailabilityResponse)
def get_day_availability(doctor_id: str, day: date, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return DayAvailabilityResponse(
            doctor_id=doctor_id,
            date=day,
            weekday=WEEKDAY_NAMES[day.weekday()],
            is_available=AvailabilityQuery(db).is_doctor_available_on(doctor_id, day),
        )
    except SchedulingError as exc:
        raise http_error_for(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
