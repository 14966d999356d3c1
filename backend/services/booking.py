"""
Appointment booking transactions.

The single write path for anything that changes which slot is occupied.
Every write runs as one transaction that:

1. Validates the request shape before touching the store
2. Takes the per-doctor write lock (a conditional UPDATE of the doctor row)
3. Re-checks the template window and overlapping appointments under the lock
4. Writes the appointment and its status event, then commits

A query result is only a hint; a slot can be taken between query and book.
Losing that race is reported as ``BookingOutcome(error=SlotUnavailable(...))``
rather than raised, so callers re-query instead of unwinding a stack. The
partial unique index on ``(doctor_id, date, start_time)`` backs the lock.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Callable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.core import config
from backend.models.appointment import Appointment, AppointmentStatus, AppointmentType
from backend.models.doctor import Doctor
from backend.services import slot_generator
from backend.services.availability_query import get_doctor
from backend.services.availability_template import load_template
from backend.services.errors import DoctorNotFound, InvalidSlot, SlotUnavailable
from backend.services.lifecycle import (
    EVENT_BOOKED,
    EVENT_RESCHEDULED,
    EVENT_STATUS_CHANGED,
    AppointmentLifecycle,
    append_note,
    ensure_mutable,
    ensure_transition,
    record_event,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingOutcome:
    appointment: Appointment | None = None
    error: SlotUnavailable | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Appointment:
        if self.error is not None:
            raise self.error
        return self.appointment


@dataclass(frozen=True)
class SlotRequest:
    date: date
    start_time: time
    end_time: time
    duration_minutes: int


def build_slot_request(day: date, start_time: time, duration_minutes: int) -> SlotRequest:
    """Shape-check a requested slot. Clinic times are naive local wall-clock times."""
    if start_time.tzinfo is not None:
        raise InvalidSlot('Start time must be a local clinic time without a UTC offset.')
    if start_time.second or start_time.microsecond:
        raise InvalidSlot('Start time must be on a whole minute.')
    end_time = slot_generator.slot_end(day, start_time, duration_minutes)
    return SlotRequest(date=day, start_time=start_time, end_time=end_time, duration_minutes=duration_minutes)


def validate_appointment_type(appointment_type: str) -> str:
    try:
        return AppointmentType(appointment_type).value
    except ValueError as exc:
        raise InvalidSlot(f'Unknown appointment type: {appointment_type!r}.') from exc


def validate_notes(notes: str | None) -> str:
    normalized = (notes or '').strip()
    if len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
        raise InvalidSlot(f'Notes must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')
    return normalized


class BookingTransactionManager:
    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock
        self.lifecycle = AppointmentLifecycle(db, clock=clock)

    def book(
        self,
        patient_id: str,
        doctor_id: str,
        day: date,
        start_time: time,
        duration_minutes: int,
        appointment_type: str = AppointmentType.IN_PERSON.value,
        notes: str | None = None,
        reason_for_visit: str | None = None,
    ) -> BookingOutcome:
        patient_id = (patient_id or '').strip()
        if not patient_id:
            raise InvalidSlot('A patient is required to book an appointment.')
        appointment_type = validate_appointment_type(appointment_type)
        notes = validate_notes(notes)
        slot = build_slot_request(day, start_time, duration_minutes)
        self._ensure_future(slot)

        try:
            self._lock_doctor(doctor_id)
            self._validate_slot(doctor_id, slot)

            if self._find_conflict(doctor_id, slot) is not None:
                return self._lost_race(doctor_id, slot)

            now = self.clock()
            appointment = Appointment(
                patient_id=patient_id,
                doctor_id=doctor_id,
                date=slot.date,
                start_time=slot.start_time,
                end_time=slot.end_time,
                duration_minutes=slot.duration_minutes,
                appointment_type=appointment_type,
                status=AppointmentStatus.SCHEDULED.value,
                notes=notes,
                reason_for_visit=reason_for_visit,
                created_at=now,
                updated_at=now,
            )
            self.db.add(appointment)
            self.db.flush()
            record_event(
                self.db,
                appointment.id,
                EVENT_BOOKED,
                None,
                AppointmentStatus.SCHEDULED.value,
                now,
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return self._lost_race(doctor_id, slot)
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info(
            'Booked appointment %s for patient %s with doctor %s on %s at %s',
            appointment.id,
            patient_id,
            doctor_id,
            slot.date,
            slot.start_time.strftime('%H:%M'),
        )
        return BookingOutcome(appointment=appointment)

    def reschedule(
        self,
        appointment_id: int,
        new_date: date,
        new_start_time: time,
        new_duration_minutes: int,
        reason: str | None = None,
    ) -> BookingOutcome:
        slot = build_slot_request(new_date, new_start_time, new_duration_minutes)
        self._ensure_future(slot)
        appointment = self.lifecycle.load(appointment_id)
        doctor_id = appointment.doctor_id

        try:
            self._lock_doctor(doctor_id)
            self.db.refresh(appointment)
            if self.lifecycle.observe(appointment):
                self.db.commit()

            ensure_mutable(appointment, AppointmentStatus.SCHEDULED.value)
            self._validate_slot(doctor_id, slot)

            if self._find_conflict(doctor_id, slot, exclude_id=appointment.id) is not None:
                return self._lost_race(doctor_id, slot)

            now = self.clock()
            previous_status = appointment.status
            previous_slot = f'{appointment.date} {appointment.start_time:%H:%M}'

            appointment.date = slot.date
            appointment.start_time = slot.start_time
            appointment.end_time = slot.end_time
            appointment.duration_minutes = slot.duration_minutes
            appointment.status = AppointmentStatus.SCHEDULED.value
            appointment.updated_at = now
            if appointment.original_appointment_id is None:
                appointment.original_appointment_id = appointment.id
            if reason:
                appointment.notes = append_note(appointment.notes, f'Rescheduled: {reason}')

            record_event(
                self.db,
                appointment.id,
                EVENT_RESCHEDULED,
                previous_status,
                AppointmentStatus.SCHEDULED.value,
                now,
                detail=f'Moved from {previous_slot} to {slot.date} {slot.start_time:%H:%M}',
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return self._lost_race(doctor_id, slot)
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info('Rescheduled appointment %s to %s at %s', appointment.id, slot.date, slot.start_time.strftime('%H:%M'))
        return BookingOutcome(appointment=appointment)

    def cancel(self, appointment_id: int, reason: str | None = None) -> Appointment:
        appointment = self.lifecycle.load(appointment_id)

        try:
            self._lock_doctor(appointment.doctor_id)
            self.db.refresh(appointment)
            if self.lifecycle.observe(appointment):
                self.db.commit()

            ensure_mutable(appointment, AppointmentStatus.CANCELLED.value)
            ensure_transition(appointment.status, AppointmentStatus.CANCELLED.value)

            now = self.clock()
            previous_status = appointment.status
            appointment.status = AppointmentStatus.CANCELLED.value
            appointment.updated_at = now
            if reason:
                appointment.notes = append_note(appointment.notes, f'Cancelled: {reason}')

            record_event(
                self.db,
                appointment.id,
                EVENT_STATUS_CHANGED,
                previous_status,
                AppointmentStatus.CANCELLED.value,
                now,
                detail=reason,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info('Cancelled appointment %s', appointment.id)
        return appointment

    def _lock_doctor(self, doctor_id: str) -> None:
        # Must be the first statement of the transaction so SQLite queues on it.
        result = self.db.execute(
            update(Doctor)
            .where(Doctor.id == doctor_id)
            .values(schedule_version=Doctor.schedule_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise DoctorNotFound(doctor_id)

    def _ensure_future(self, slot: SlotRequest) -> None:
        if datetime.combine(slot.date, slot.start_time) < self.clock():
            raise InvalidSlot('Appointments must be scheduled in the future.')

    def _validate_slot(self, doctor_id: str, slot: SlotRequest) -> None:
        template = load_template(get_doctor(self.db, doctor_id))
        if not template.contains(slot.date, slot.start_time, slot.end_time):
            raise InvalidSlot(
                f'{slot.start_time:%H:%M}-{slot.end_time:%H:%M} on {slot.date} '
                "is outside the doctor's availability."
            )

    def _find_conflict(self, doctor_id: str, slot: SlotRequest, exclude_id: int | None = None) -> Appointment | None:
        query = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.date == slot.date,
            Appointment.status != AppointmentStatus.CANCELLED.value,
            Appointment.start_time < slot.end_time,
            Appointment.end_time > slot.start_time,
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.first()

    def _lost_race(self, doctor_id: str, slot: SlotRequest) -> BookingOutcome:
        self.db.rollback()
        logger.warning(
            'Slot %s %s-%s for doctor %s is no longer available',
            slot.date,
            slot.start_time.strftime('%H:%M'),
            slot.end_time.strftime('%H:%M'),
            doctor_id,
        )
        return BookingOutcome(error=SlotUnavailable())
