import os
from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.database import Base, build_engine  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402,F401
from backend.models.appointment_event import AppointmentEvent  # noqa: E402,F401
from backend.models.availability import AvailabilityWindow  # noqa: E402,F401
from backend.models.doctor import Doctor  # noqa: E402
from backend.services.availability_template import AvailabilityTemplate, TimeWindow, save_template  # noqa: E402

# 2026-01-05 is a Monday.
MONDAY = date(2026, 1, 5)
TUESDAY = date(2026, 1, 6)
FIXED_NOW = datetime(2026, 1, 1, 8, 0)

DEFAULT_WINDOWS = {
    'monday': [(time(9, 0), time(10, 0))],
}


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def next_weekday(weekday: int) -> date:
    """The next date strictly after today that falls on ``weekday``."""
    today = date.today()
    days_ahead = (weekday - today.weekday()) % 7 or 7
    return today + timedelta(days=days_ahead)


def seed_doctor(db, doctor_id='dr-grey', windows=None, name='Meredith Grey', specialty='General Surgery') -> Doctor:
    doctor = Doctor(id=doctor_id, name=name, specialty=specialty, schedule_version=0)
    db.add(doctor)
    db.flush()

    spans = DEFAULT_WINDOWS if windows is None else windows
    template = AvailabilityTemplate({
        weekday: [TimeWindow(start, end) for start, end in day_spans]
        for weekday, day_spans in spans.items()
    })
    save_template(db, doctor, template)
    db.commit()
    return doctor


@pytest.fixture
def clock():
    return FrozenClock(FIXED_NOW)


@pytest.fixture
def db_session():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_doctor(db_session):
    def _make(doctor_id='dr-grey', windows=None, **fields) -> Doctor:
        return seed_doctor(db_session, doctor_id=doctor_id, windows=windows, **fields)

    return _make


@pytest.fixture
def doctor_seeder():
    return seed_doctor


@pytest.fixture
def upcoming_monday() -> date:
    return next_weekday(0)


@pytest.fixture
def file_session_factory(tmp_path):
    """Sessions on one file database, for tests that need several connections."""
    engine = build_engine(f'sqlite:///{tmp_path / "scheduling.db"}')
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()
