from datetime import date, datetime, time, timedelta

from backend.services.availability_template import AvailabilityTemplate, TimeWindow, weekday_of
from backend.services.errors import InvalidSlot


def validate_duration(duration_minutes: int) -> timedelta:
    if duration_minutes <= 0:
        raise InvalidSlot('Duration must be a positive number of minutes.')
    return timedelta(minutes=duration_minutes)


def slot_end(day: date, start_time: time, duration_minutes: int) -> time:
    """End of a slot on ``day``; slots may not run past midnight."""
    start = datetime.combine(day, start_time)
    end = start + validate_duration(duration_minutes)
    if end.date() != day:
        raise InvalidSlot('Appointments cannot run past midnight.')
    return end.time()


def tile_window(day: date, window: TimeWindow, duration: timedelta) -> list[time]:
    candidates: list[time] = []
    current = datetime.combine(day, window.start)
    window_end = datetime.combine(day, window.end)

    while current + duration <= window_end:
        candidates.append(current.time())
        current += duration

    return candidates


def generate(template: AvailabilityTemplate, day: date, duration_minutes: int) -> list[time]:
    """Candidate start times for ``day``, window by window in template order.

    Each window is tiled from its start in ``duration_minutes`` steps and a
    trailing partial slot is dropped. A day without windows yields ``[]``.
    """
    duration = validate_duration(duration_minutes)

    candidates: list[time] = []
    for window in template.windows_for(weekday_of(day)):
        candidates.extend(tile_window(day, window, duration))

    return candidates
