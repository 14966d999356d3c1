"""Recurring weekly availability of a doctor."""

from dataclasses import dataclass
from datetime import date, time

from sqlalchemy.orm import Session

from backend.models.availability import AvailabilityWindow
from backend.models.doctor import Doctor
from backend.services.errors import InvalidWindow, OverlappingWindow

WEEKDAY_NAMES = (
    'monday',
    'tuesday',
    'wednesday',
    'thursday',
    'friday',
    'saturday',
    'sunday',
)


def weekday_index(weekday: int | str) -> int:
    """Accept ``0``-``6`` (Monday first) or a day name."""
    if isinstance(weekday, str):
        normalized = weekday.strip().lower()
        if normalized not in WEEKDAY_NAMES:
            raise ValueError(f'Unknown weekday: {weekday!r}')
        return WEEKDAY_NAMES.index(normalized)

    if not 0 <= weekday <= 6:
        raise ValueError(f'Weekday must be between 0 and 6, got {weekday}')
    return weekday


def weekday_of(day: date) -> int:
    return day.weekday()


@dataclass(frozen=True, order=True)
class TimeWindow:
    start: time
    end: time

    def contains(self, start: time, end: time) -> bool:
        return self.start <= start and end <= self.end

    def overlaps(self, other: 'TimeWindow') -> bool:
        return self.start < other.end and other.start < self.end


class AvailabilityTemplate:
    """Per-weekday ordered, non-overlapping time windows."""

    def __init__(self, windows: dict[int | str, list[TimeWindow]] | None = None):
        self._windows: dict[int, tuple[TimeWindow, ...]] = {index: () for index in range(7)}
        for weekday, day_windows in (windows or {}).items():
            self.set_windows(weekday, day_windows)

    def set_windows(self, weekday: int | str, windows) -> None:
        index = weekday_index(weekday)
        ordered = sorted(windows, key=lambda window: (window.start, window.end))

        for window in ordered:
            if window.start >= window.end:
                raise InvalidWindow(
                    f'{WEEKDAY_NAMES[index].title()} window {window.start:%H:%M}-{window.end:%H:%M} '
                    'must start before it ends.'
                )

        for previous, current in zip(ordered, ordered[1:]):
            if previous.overlaps(current):
                raise OverlappingWindow(
                    f'{WEEKDAY_NAMES[index].title()} windows '
                    f'{previous.start:%H:%M}-{previous.end:%H:%M} and '
                    f'{current.start:%H:%M}-{current.end:%H:%M} overlap.'
                )

        self._windows[index] = tuple(ordered)

    def windows_for(self, weekday: int | str) -> tuple[TimeWindow, ...]:
        return self._windows[weekday_index(weekday)]

    def has_availability(self, weekday: int | str) -> bool:
        return bool(self.windows_for(weekday))

    def is_empty(self) -> bool:
        return not any(self._windows.values())

    def contains(self, day: date, start: time, end: time) -> bool:
        return any(window.contains(start, end) for window in self.windows_for(weekday_of(day)))

    def as_dict(self) -> dict[str, list[TimeWindow]]:
        return {WEEKDAY_NAMES[index]: list(windows) for index, windows in self._windows.items()}

    def __eq__(self, other) -> bool:
        if not isinstance(other, AvailabilityTemplate):
            return NotImplemented
        return self._windows == other._windows

    def __repr__(self) -> str:
        populated = {WEEKDAY_NAMES[index]: len(windows) for index, windows in self._windows.items() if windows}
        return f'AvailabilityTemplate({populated})'


def load_template(doctor: Doctor) -> AvailabilityTemplate:
    grouped: dict[int, list[TimeWindow]] = {}
    for row in doctor.availability_windows:
        grouped.setdefault(row.weekday, []).append(TimeWindow(row.start_time, row.end_time))
    return AvailabilityTemplate(grouped)


def save_template(db: Session, doctor: Doctor, template: AvailabilityTemplate) -> None:
    """Replace the doctor's stored windows. The caller commits."""
    doctor.availability_windows.clear()
    db.flush()

    for index in range(7):
        for position, window in enumerate(template.windows_for(index)):
            doctor.availability_windows.append(
                AvailabilityWindow(
                    weekday=index,
                    position=position,
                    start_time=window.start,
                    end_time=window.end,
                )
            )
