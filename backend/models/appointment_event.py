"""Appointment status-change event definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from backend.database import Base


class AppointmentEvent(Base):
    """Append-only record of a status change, read by the records sync feed."""
    __tablename__ = "appointment_events"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    event_type = Column(String(32), nullable=False)  # booked/rescheduled/status_changed
    from_status = Column(String(16))
    to_status = Column(String(16), nullable=False)
    detail = Column(Text)
    occurred_at = Column(DateTime, nullable=False)
