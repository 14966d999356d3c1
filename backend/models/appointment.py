"""Appointment model definitions."""

import enum
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Text, Time, text

from backend.database import Base


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked-in"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class AppointmentType(str, enum.Enum):
    IN_PERSON = "in-person"
    VIRTUAL = "virtual"


TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

_ACTIVE_SLOT_PREDICATE = text("status != 'cancelled'")


class Appointment(Base):
    """Represents a booked appointment."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_doctor_date", "doctor_id", "date"),
        Index("idx_appointments_status_date", "status", "date"),
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "date",
            "start_time",
            unique=True,
            sqlite_where=_ACTIVE_SLOT_PREDICATE,
            postgresql_where=_ACTIVE_SLOT_PREDICATE,
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(String(64), nullable=False, index=True)
    doctor_id = Column(String(64), ForeignKey("doctors.id"), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    appointment_type = Column(String(16), nullable=False, default=AppointmentType.IN_PERSON.value)
    status = Column(String(16), nullable=False, default=AppointmentStatus.SCHEDULED.value)
    notes = Column(Text, nullable=False, default="")
    reason_for_visit = Column(String(255))
    original_appointment_id = Column(Integer)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.date, self.end_time)

    @property
    def is_terminal(self) -> bool:
        return self.status in {status.value for status in TERMINAL_STATUSES}
