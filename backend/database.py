from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Writers queue on the per-doctor lock row instead of failing fast.
        connect_args = {
            "check_same_thread": False,
            "timeout": config.DATABASE_BUSY_TIMEOUT_SECONDS,
        }
    return create_engine(database_url, connect_args=connect_args, echo=config.DATABASE_ECHO)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_scheduling_schema(bind=None) -> None:
    """Bring databases created by older releases up to the current layout."""
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        inspector = inspect(bind)
        table_names = set(inspector.get_table_names())

        if 'appointments' not in table_names:
            _scheduling_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('appointment_type', "ALTER TABLE appointments ADD COLUMN appointment_type VARCHAR(16) DEFAULT 'in-person'"),
            ('notes', "ALTER TABLE appointments ADD COLUMN notes TEXT NOT NULL DEFAULT ''"),
            ('reason_for_visit', 'ALTER TABLE appointments ADD COLUMN reason_for_visit VARCHAR(255)'),
            ('original_appointment_id', 'ALTER TABLE appointments ADD COLUMN original_appointment_id INTEGER'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date ON appointments(doctor_id, date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_status_date ON appointments(status, date)')
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot '
                    "ON appointments(doctor_id, date, start_time) WHERE status != 'cancelled'"
                )
            )
            if 'availability_windows' in table_names:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_availability_windows_doctor_weekday '
                        'ON availability_windows(doctor_id, weekday)'
                    )
                )

        _scheduling_schema_checked = True
