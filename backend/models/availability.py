"""Availability model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String, Time, UniqueConstraint
from sqlalchemy.orm import relationship

from backend.database import Base


class AvailabilityWindow(Base):
    """One recurring weekly window of a doctor's availability template."""
    __tablename__ = "availability_windows"
    __table_args__ = (
        UniqueConstraint("doctor_id", "weekday", "position", name="uq_availability_windows_slot"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String(64), ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)  # 0 = Monday
    position = Column(Integer, nullable=False, default=0)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    doctor = relationship("Doctor", back_populates="availability_windows")
