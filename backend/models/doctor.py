"""Doctor model definitions."""

from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship

from backend.database import Base


class Doctor(Base):
    """A doctor as mirrored from the staff directory."""
    __tablename__ = "doctors"

    id = Column(String(64), primary_key=True)
    name = Column(String, nullable=False)
    specialty = Column(String)
    email = Column(String)
    phone = Column(String)
    # Bumped by every booking write; the UPDATE doubles as the per-doctor lock.
    schedule_version = Column(Integer, nullable=False, default=0)

    availability_windows = relationship(
        "AvailabilityWindow",
        back_populates="doctor",
        cascade="all, delete-orphan",
        order_by="[AvailabilityWindow.weekday, AvailabilityWindow.position]",
    )
