"""Scheduling error taxonomy.

Validation errors (``InvalidWindow``, ``OverlappingWindow``, ``InvalidSlot``)
are raised before the store is touched. ``SlotUnavailable`` is the only
recoverable one: re-query availability and offer a different slot.
"""


class SchedulingError(Exception):
    """Base exception for scheduling failures."""

    code = "scheduling_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidWindow(SchedulingError):
    """A template window whose start is not before its end."""

    code = "invalid_window"


class OverlappingWindow(SchedulingError):
    """Two template windows on the same weekday intersect."""

    code = "overlapping_window"


class InvalidSlot(SchedulingError):
    """A slot request that can never be booked as asked."""

    code = "invalid_slot"


class SlotUnavailable(SchedulingError):
    """Another booking committed first."""

    code = "slot_unavailable"

    def __init__(self, message: str = "This time slot is no longer available. Please select another slot."):
        super().__init__(message)


class NotFound(SchedulingError):
    code = "not_found"


class DoctorNotFound(NotFound):
    def __init__(self, doctor_id: str):
        self.doctor_id = doctor_id
        super().__init__(f"Doctor {doctor_id} not found.")


class AppointmentNotFound(NotFound):
    def __init__(self, appointment_id: int):
        self.appointment_id = appointment_id
        super().__init__(f"Appointment {appointment_id} not found.")


class InvalidState(SchedulingError):
    """The appointment is in a state that does not allow the mutation."""

    code = "invalid_state"


class IllegalTransition(InvalidState):
    code = "illegal_transition"

    def __init__(self, from_status: str, to_status: str, message: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message or f"Cannot move an appointment from {from_status} to {to_status}.")
