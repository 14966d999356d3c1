from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Callable

from sqlalchemy.orm import Session

from backend.models.appointment import Appointment, AppointmentStatus
from backend.models.doctor import Doctor
from backend.services import slot_generator
from backend.services.availability_template import load_template, weekday_of
from backend.services.errors import DoctorNotFound

CONFLICT_BOOKED = 'booked'
CONFLICT_PAST = 'past'


def intervals_overlap(a_start: time, a_end: time, b_start: time, b_end: time) -> bool:
    """Half-open ``[a_start, a_end)`` against ``[b_start, b_end)``."""
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class AvailableSlot:
    doctor_id: str
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    available: bool
    conflict_reason: str | None = None


def active_appointments_on(db: Session, doctor_id: str, day: date) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date == day,
        Appointment.status != AppointmentStatus.CANCELLED.value,
    ).order_by(Appointment.start_time.asc()).all()


def get_doctor(db: Session, doctor_id: str) -> Doctor:
    doctor = db.get(Doctor, doctor_id)
    if doctor is None:
        raise DoctorNotFound(doctor_id)
    return doctor


class AvailabilityQuery:
    """Read-only view of bookable slots; recomputed on every call."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    def query(self, doctor_id: str, day: date, duration_minutes: int) -> list[AvailableSlot]:
        slot_generator.validate_duration(duration_minutes)
        doctor = get_doctor(self.db, doctor_id)
        candidates = slot_generator.generate(load_template(doctor), day, duration_minutes)
        if not candidates:
            return []

        booked = [
            (appointment.start_time, appointment.end_time)
            for appointment in active_appointments_on(self.db, doctor_id, day)
        ]
        now = self.clock()

        slots: list[AvailableSlot] = []
        for candidate in candidates:
            candidate_end = slot_generator.slot_end(day, candidate, duration_minutes)
            conflict_reason = None
            if any(intervals_overlap(candidate, candidate_end, start, end) for start, end in booked):
                conflict_reason = CONFLICT_BOOKED
            elif datetime.combine(day, candidate) < now:
                conflict_reason = CONFLICT_PAST

            slots.append(
                AvailableSlot(
                    doctor_id=doctor_id,
                    date=day,
                    start_time=candidate,
                    end_time=candidate_end,
                    duration_minutes=duration_minutes,
                    available=conflict_reason is None,
                    conflict_reason=conflict_reason,
                )
            )

        return slots

    def is_doctor_available_on(self, doctor_id: str, day: date) -> bool:
        doctor = get_doctor(self.db, doctor_id)
        return load_template(doctor).has_availability(weekday_of(day))

    def doctors_with_availability(self) -> list[Doctor]:
        doctors = self.db.query(Doctor).order_by(Doctor.name.asc()).all()
        return [doctor for doctor in doctors if not load_template(doctor).is_empty()]
