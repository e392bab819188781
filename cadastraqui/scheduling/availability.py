"""Bookable slot computation.

Free time is the worker's recurring weekly windows, expanded onto the
requested dates, minus every SCHEDULED appointment. What remains is cut into
fixed-length slots on a grid anchored at the start of each window.
"""

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from cadastraqui.core import config
from cadastraqui.core.clock import local_now
from cadastraqui.core.errors import ConflictError, ValidationError
from cadastraqui.models.appointment import Appointment, AppointmentStatus
from cadastraqui.models.working_hours import WorkerScheduleSettings, WorkingHoursWindow
from cadastraqui.scheduling import directory


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


@dataclass(frozen=True)
class WeeklyWindow:
    weekday: int
    start: time
    end: time


@dataclass(frozen=True)
class WorkingHours:
    slot_minutes: int
    lead_time_minutes: int
    windows: tuple[WeeklyWindow, ...]

    @property
    def step(self) -> timedelta:
        return timedelta(minutes=self.slot_minutes)

    @property
    def lead_time(self) -> timedelta:
        return timedelta(minutes=self.lead_time_minutes)


Interval = tuple[datetime, datetime]


def load_working_hours(db: Session, worker_id: int) -> WorkingHours | None:
    windows = db.query(WorkingHoursWindow).filter(
        WorkingHoursWindow.worker_id == worker_id,
    ).order_by(WorkingHoursWindow.weekday.asc(), WorkingHoursWindow.start_time.asc()).all()
    if not windows:
        return None

    settings = db.query(WorkerScheduleSettings).filter(WorkerScheduleSettings.worker_id == worker_id).first()
    return WorkingHours(
        slot_minutes=settings.slot_minutes if settings else config.DEFAULT_SLOT_MINUTES,
        lead_time_minutes=settings.lead_time_minutes if settings else config.DEFAULT_LEAD_TIME_MINUTES,
        windows=tuple(WeeklyWindow(window.weekday, window.start_time, window.end_time) for window in windows),
    )


def scheduled_overlapping(
    db: Session,
    worker_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_appointment_id: int | None = None,
):
    query = db.query(Appointment).filter(
        Appointment.worker_id == worker_id,
        Appointment.status == AppointmentStatus.SCHEDULED.value,
        Appointment.start_time < end_time,
        Appointment.end_time > start_time,
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)
    return query


def busy_intervals(
    db: Session,
    worker_id: int,
    range_start: datetime,
    range_end: datetime,
    exclude_appointment_id: int | None = None,
) -> list[Interval]:
    rows = scheduled_overlapping(db, worker_id, range_start, range_end, exclude_appointment_id).with_entities(
        Appointment.start_time,
        Appointment.end_time,
    ).order_by(Appointment.start_time.asc()).all()
    return [(start, end) for start, end in rows]


def iterate_days(range_start: datetime, range_end: datetime) -> Iterator[date]:
    current_day = range_start.date()
    while datetime.combine(current_day, time.min) < range_end:
        yield current_day
        current_day += timedelta(days=1)


def expand_windows(windows: tuple[WeeklyWindow, ...], range_start: datetime, range_end: datetime) -> list[Interval]:
    """Dated working intervals touching the range, unclipped so the slot grid keeps its anchor."""
    expanded: list[Interval] = []
    for current_day in iterate_days(range_start, range_end):
        for window in windows:
            if window.weekday != current_day.weekday():
                continue
            window_start = datetime.combine(current_day, window.start)
            window_end = datetime.combine(current_day, window.end)
            if window_end <= range_start or window_start >= range_end:
                continue
            expanded.append((window_start, window_end))

    expanded.sort()
    return expanded


def subtract_intervals(window: Interval, busy: list[Interval]) -> list[Interval]:
    """Parts of ``window`` not covered by ``busy`` (sorted by start)."""
    window_start, window_end = window
    remaining: list[Interval] = []
    cursor = window_start

    for busy_start, busy_end in busy:
        if busy_end <= cursor:
            continue
        if busy_start >= window_end:
            break
        if busy_start > cursor:
            remaining.append((cursor, busy_start))
        cursor = max(cursor, busy_end)
        if cursor >= window_end:
            break

    if cursor < window_end:
        remaining.append((cursor, window_end))

    return remaining


def align_up(value: datetime, anchor: datetime, step: timedelta) -> datetime:
    offset = (value - anchor) % step
    if not offset:
        return value
    return value + (step - offset)


def discretize(anchor: datetime, interval: Interval, step: timedelta) -> Iterator[Slot]:
    start, end = interval
    current = align_up(start, anchor, step)
    while current + step <= end:
        yield Slot(start=current, end=current + step)
        current += step


class AvailabilityCalculator:
    def __init__(self, db: Session, now: Callable[[], datetime] = local_now):
        self.db = db
        self.now = now

    def free_slots(self, worker_id: int, range_start: datetime, range_end: datetime) -> Iterator[Slot]:
        """Bookable slots of ``worker_id`` inside ``[range_start, range_end)``.

        The worker lookup happens eagerly so an unknown worker fails at call
        time; the slots themselves are produced lazily from one snapshot of
        the worker's configuration and bookings.
        """
        directory.get_worker(self.db, worker_id)

        if range_end <= range_start:
            return iter(())

        working_hours = load_working_hours(self.db, worker_id)
        if working_hours is None:
            return iter(())

        windows = expand_windows(working_hours.windows, range_start, range_end)
        if not windows:
            return iter(())

        busy = busy_intervals(self.db, worker_id, windows[0][0], windows[-1][1])
        earliest_start = max(range_start, self.now() + working_hours.lead_time)
        return self._iterate_slots(windows, busy, working_hours.step, earliest_start, range_end)

    @staticmethod
    def _iterate_slots(
        windows: list[Interval],
        busy: list[Interval],
        step: timedelta,
        earliest_start: datetime,
        range_end: datetime,
    ) -> Iterator[Slot]:
        busy_index = 0
        for window in windows:
            # Bookings that finished before this window cannot affect it or any later one.
            while busy_index < len(busy) and busy[busy_index][1] <= window[0]:
                busy_index += 1

            for free_interval in subtract_intervals(window, busy[busy_index:]):
                for slot in discretize(window[0], free_interval, step):
                    if slot.start < earliest_start:
                        continue
                    if slot.end > range_end:
                        return
                    yield slot

    def check_bookable(
        self,
        worker_id: int,
        start_time: datetime,
        duration_minutes: int,
        exclude_appointment_id: int | None = None,
    ) -> datetime:
        """Validate a requested booking and return its end time."""
        if not config.MIN_APPOINTMENT_MINUTES <= duration_minutes <= config.MAX_APPOINTMENT_MINUTES:
            raise ValidationError(
                f'Appointments must last between {config.MIN_APPOINTMENT_MINUTES} '
                f'and {config.MAX_APPOINTMENT_MINUTES} minutes.'
            )

        end_time = start_time + timedelta(minutes=duration_minutes)
        now = self.now()
        if start_time <= now:
            raise ValidationError('Appointments must be scheduled in the future.')

        working_hours = load_working_hours(self.db, worker_id)
        if working_hours is None:
            raise ValidationError('This social worker has no working hours configured.')

        if start_time < now + working_hours.lead_time:
            raise ValidationError(
                f'Appointments must be booked at least {working_hours.lead_time_minutes} minutes in advance.'
            )

        containing_window = next(
            (
                window
                for window in expand_windows(working_hours.windows, start_time, end_time)
                if window[0] <= start_time and end_time <= window[1]
            ),
            None,
        )
        if containing_window is None:
            raise ValidationError('Appointment is outside working hours.')

        if (start_time - containing_window[0]) % working_hours.step:
            raise ValidationError(f'Appointments must start on {working_hours.slot_minutes}-minute boundaries.')

        if scheduled_overlapping(self.db, worker_id, start_time, end_time, exclude_appointment_id).first():
            raise ConflictError('This time is already booked.')

        return end_time
