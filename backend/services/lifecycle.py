"""Appointment status state machine and lazy no-show detection.

Reads go through :meth:`AppointmentLifecycle.observe`: an appointment whose end
time has passed while it is still ``scheduled`` or ``confirmed`` is reported as
``no-show`` and persisted that way the first time anyone looks at it.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Iterable

from sqlalchemy import update
from sqlalchemy.orm import Session

from backend.models.appointment import Appointment, AppointmentStatus, AppointmentType, TERMINAL_STATUSES
from backend.models.appointment_event import AppointmentEvent
from backend.services.errors import AppointmentNotFound, IllegalTransition, InvalidState

logger = logging.getLogger(__name__)

S = AppointmentStatus

LEGAL_TRANSITIONS: dict[str, frozenset[str]] = {
    S.SCHEDULED.value: frozenset({S.CONFIRMED.value, S.CHECKED_IN.value, S.CANCELLED.value, S.NO_SHOW.value}),
    S.CONFIRMED.value: frozenset({S.CHECKED_IN.value, S.CANCELLED.value, S.NO_SHOW.value}),
    S.CHECKED_IN.value: frozenset({S.IN_PROGRESS.value}),
    S.IN_PROGRESS.value: frozenset({S.COMPLETED.value}),
}

# Statuses a booking write (reschedule/cancel) may start from.
MUTABLE_STATUSES = frozenset({S.SCHEDULED.value, S.CONFIRMED.value})
NO_SHOW_ELIGIBLE_STATUSES = (S.SCHEDULED.value, S.CONFIRMED.value)
TERMINAL_STATUS_VALUES = frozenset(status.value for status in TERMINAL_STATUSES)

EVENT_BOOKED = 'booked'
EVENT_RESCHEDULED = 'rescheduled'
EVENT_STATUS_CHANGED = 'status_changed'


def ensure_transition(current: str, target: str) -> None:
    if target not in LEGAL_TRANSITIONS.get(current, frozenset()):
        raise IllegalTransition(current, target)


def ensure_mutable(appointment: Appointment, target: str) -> None:
    """Guard for booking writes: terminal is InvalidState, in-visit is illegal."""
    if appointment.status in TERMINAL_STATUS_VALUES:
        raise InvalidState(f'Appointment {appointment.id} is already {appointment.status}.')
    if appointment.status not in MUTABLE_STATUSES:
        raise IllegalTransition(appointment.status, target)


def append_note(notes: str | None, line: str) -> str:
    notes = notes or ''
    return f'{notes}\n\n{line}' if notes else line


def record_event(
    db: Session,
    appointment_id: int,
    event_type: str,
    from_status: str | None,
    to_status: str,
    occurred_at: datetime,
    detail: str | None = None,
) -> AppointmentEvent:
    event = AppointmentEvent(
        appointment_id=appointment_id,
        event_type=event_type,
        from_status=from_status,
        to_status=to_status,
        detail=detail,
        occurred_at=occurred_at,
    )
    db.add(event)
    return event


@dataclass
class AppointmentFilters:
    doctor_id: str | None = None
    patient_id: str | None = None
    on_date: date | None = None
    date_from: date | None = None
    date_to: date | None = None
    statuses: list[str] = field(default_factory=list)
    appointment_type: str | None = None


class AppointmentLifecycle:
    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    def load(self, appointment_id: int) -> Appointment:
        appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def is_overdue(self, appointment: Appointment, now: datetime | None = None) -> bool:
        now = now or self.clock()
        return appointment.status in NO_SHOW_ELIGIBLE_STATUSES and appointment.ends_at < now

    def observe(self, appointment: Appointment) -> bool:
        """Flip an overdue appointment to no-show. Returns True if this call flipped it.

        Does not commit; the flip joins the caller's transaction.
        """
        now = self.clock()
        if not self.is_overdue(appointment, now):
            return False

        previous_status = appointment.status
        result = self.db.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment.id,
                Appointment.status.in_(NO_SHOW_ELIGIBLE_STATUSES),
            )
            .values(status=S.NO_SHOW.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        flipped = result.rowcount == 1
        if flipped:
            record_event(
                self.db,
                appointment.id,
                EVENT_STATUS_CHANGED,
                previous_status,
                S.NO_SHOW.value,
                now,
                detail='Marked no-show after the appointment ended without check-in.',
            )
            logger.info('Appointment %s marked no-show (was %s)', appointment.id, previous_status)

        self.db.refresh(appointment)
        return flipped

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.load(appointment_id)
        if self.observe(appointment):
            self.db.commit()
            self.db.refresh(appointment)
        return appointment

    def list_appointments(self, filters: AppointmentFilters | None = None) -> list[Appointment]:
        filters = filters or AppointmentFilters()
        query = self.db.query(Appointment)

        if filters.doctor_id:
            query = query.filter(Appointment.doctor_id == filters.doctor_id)
        if filters.patient_id:
            query = query.filter(Appointment.patient_id == filters.patient_id)
        if filters.on_date:
            query = query.filter(Appointment.date == filters.on_date)
        if filters.date_from:
            query = query.filter(Appointment.date >= filters.date_from)
        if filters.date_to:
            query = query.filter(Appointment.date <= filters.date_to)
        if filters.appointment_type:
            query = query.filter(Appointment.appointment_type == AppointmentType(filters.appointment_type).value)

        appointments = query.order_by(Appointment.date.asc(), Appointment.start_time.asc()).all()
        if self._observe_all(appointments):
            self.db.commit()

        if filters.statuses:
            # Applied after observation so overdue rows are filtered by their real status.
            wanted = {AppointmentStatus(status).value for status in filters.statuses}
            appointments = [appointment for appointment in appointments if appointment.status in wanted]

        return appointments

    def _observe_all(self, appointments: Iterable[Appointment]) -> int:
        return sum(1 for appointment in appointments if self.observe(appointment))

    def transition(self, appointment_id: int, target: str, note: str | None = None) -> Appointment:
        target = AppointmentStatus(target).value
        appointment = self.load(appointment_id)

        if target == S.CANCELLED.value:
            raise IllegalTransition(
                appointment.status,
                target,
                'Cancellations must go through the booking cancel operation.',
            )

        self.db.refresh(appointment)
        if target == S.NO_SHOW.value:
            return self._mark_no_show(appointment)

        if self.observe(appointment):
            self.db.commit()

        previous_status = appointment.status
        ensure_transition(previous_status, target)

        now = self.clock()
        values = {'status': target, 'updated_at': now}
        if note:
            values['notes'] = append_note(appointment.notes, note)

        # Only applies if nobody changed the status since it was read.
        result = self.db.execute(
            update(Appointment)
            .where(Appointment.id == appointment.id, Appointment.status == previous_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            self.db.refresh(appointment)
            logger.warning(
                'Appointment %s changed to %s before %s could be applied',
                appointment.id,
                appointment.status,
                target,
            )
            raise IllegalTransition(appointment.status, target)

        record_event(self.db, appointment.id, EVENT_STATUS_CHANGED, previous_status, target, now, detail=note)
        self.db.commit()
        self.db.refresh(appointment)

        logger.info('Appointment %s moved %s -> %s', appointment.id, previous_status, target)
        return appointment

    def _mark_no_show(self, appointment: Appointment) -> Appointment:
        if appointment.status == S.NO_SHOW.value:
            return appointment

        ensure_transition(appointment.status, S.NO_SHOW.value)
        if not self.is_overdue(appointment):
            raise IllegalTransition(
                appointment.status,
                S.NO_SHOW.value,
                'An appointment can only be marked no-show after its end time has passed.',
            )

        self.observe(appointment)
        self.db.commit()
        self.db.refresh(appointment)
        if appointment.status != S.NO_SHOW.value:
            raise IllegalTransition(appointment.status, S.NO_SHOW.value)
        return appointment

    def confirm(self, appointment_id: int) -> Appointment:
        return self.transition(appointment_id, S.CONFIRMED.value)

    def check_in(self, appointment_id: int) -> Appointment:
        return self.transition(appointment_id, S.CHECKED_IN.value)

    def start(self, appointment_id: int) -> Appointment:
        return self.transition(appointment_id, S.IN_PROGRESS.value)

    def complete(self, appointment_id: int, note: str | None = None) -> Appointment:
        return self.transition(appointment_id, S.COMPLETED.value, note=note)

    def mark_no_show(self, appointment_id: int) -> Appointment:
        return self.transition(appointment_id, S.NO_SHOW.value)

    def sweep_no_shows(self, doctor_id: str | None = None) -> int:
        """Flip every overdue appointment in one pass; returns how many flipped."""
        now = self.clock()
        query = self.db.query(Appointment).filter(
            Appointment.status.in_(NO_SHOW_ELIGIBLE_STATUSES),
            Appointment.date <= now.date(),
        )
        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)

        flipped = self._observe_all(query.all())
        self.db.commit()

        if flipped:
            logger.info('No-show sweep flipped %d appointment(s)', flipped)
        return flipped

    def events_for(self, appointment_id: int) -> list[AppointmentEvent]:
        self.load(appointment_id)
        return self.db.query(AppointmentEvent).filter(
            AppointmentEvent.appointment_id == appointment_id,
        ).order_by(AppointmentEvent.id.asc()).all()

    def events_since(self, after_id: int = 0, limit: int = 100) -> list[AppointmentEvent]:
        return self.db.query(AppointmentEvent).filter(
            AppointmentEvent.id > after_id,
        ).order_by(AppointmentEvent.id.asc()).limit(limit).all()
