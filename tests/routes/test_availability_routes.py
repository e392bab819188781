from datetime import datetime, time, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import APPLICATION_ID, MONDAY, OTHER_WORKER_ID, WORKER_ID, at
from cadastraqui.core.errors import ForbiddenError, NotFoundError, ValidationError
from cadastraqui.routes.availability_routes import (
    WorkingHoursPayload,
    WorkingHoursWindowPayload,
    get_working_hours,
    list_available_slots,
    replace_working_hours,
    resolve_date_range,
)
from cadastraqui.scheduling.availability import AvailabilityCalculator, WeeklyWindow
from cadastraqui.scheduling.working_hours import WorkingHoursService, validate_working_hours


def test_resolve_date_range_defaults_to_a_single_day() -> None:
    assert resolve_date_range(MONDAY, None) == (at(0, 0), at(0, 0, MONDAY + timedelta(days=1)))


def test_resolve_date_range_is_inclusive_of_the_last_day() -> None:
    range_start, range_end = resolve_date_range(MONDAY, MONDAY + timedelta(days=2))

    assert range_start == datetime(2026, 1, 5, 0, 0)
    assert range_end == datetime(2026, 1, 8, 0, 0)


@pytest.mark.parametrize(
    ('days', 'error_detail'),
    [
        (-1, 'data_fim must not be before data.'),
        (31, 'Slots can be queried for at most 31 days at a time.'),
    ],
)
def test_resolve_date_range_rejects_invalid_ranges(days: int, error_detail: str) -> None:
    with pytest.raises(ValidationError) as exception_info:
        resolve_date_range(MONDAY, MONDAY + timedelta(days=days))

    assert exception_info.value.message == error_detail


def test_list_available_slots_for_requested_worker(db, clock, principals) -> None:
    response = list_available_slots(
        date_start=MONDAY,
        date_end=None,
        worker_id=WORKER_ID,
        principal=principals['candidate'],
        calculator=AvailabilityCalculator(db, now=clock),
    )

    assert response.worker_id == WORKER_ID
    assert response.date_end == MONDAY
    assert [slot.start_time for slot in response.slots] == [
        at(9, 0), at(9, 30), at(10, 0), at(10, 30), at(11, 0), at(11, 30),
    ]
    assert all(slot.duration_minutes == 30 for slot in response.slots)


def test_list_available_slots_defaults_to_the_calling_worker(db, clock, principals) -> None:
    response = list_available_slots(
        date_start=MONDAY,
        date_end=None,
        worker_id=None,
        principal=principals['other_worker'],
        calculator=AvailabilityCalculator(db, now=clock),
    )

    assert response.worker_id == OTHER_WORKER_ID
    assert len(response.slots) == 6


def test_list_available_slots_requires_worker_for_candidates(db, clock, principals) -> None:
    with pytest.raises(ValidationError):
        list_available_slots(
            date_start=MONDAY,
            date_end=None,
            worker_id=None,
            principal=principals['candidate'],
            calculator=AvailabilityCalculator(db, now=clock),
        )


def test_list_available_slots_rejects_roles_without_capability(db, clock, principals) -> None:
    with pytest.raises(ForbiddenError):
        list_available_slots(
            date_start=MONDAY,
            date_end=None,
            worker_id=WORKER_ID,
            principal=principals['lawyer'],
            calculator=AvailabilityCalculator(db, now=clock),
        )


def test_get_working_hours_returns_weekly_windows(db, principals) -> None:
    response = get_working_hours(worker_id=WORKER_ID, principal=principals['candidate'], service=WorkingHoursService(db))

    assert response.slot_minutes == 30
    assert response.lead_time_minutes == 60
    assert response.windows == [WorkingHoursWindowPayload(weekday=0, start_time=time(9, 0), end_time=time(12, 0))]


def test_get_working_hours_of_unknown_worker(db, principals) -> None:
    with pytest.raises(NotFoundError):
        get_working_hours(worker_id=999, principal=principals['admin'], service=WorkingHoursService(db))


def test_replace_working_hours_changes_offered_slots(db, clock, principals) -> None:
    payload = WorkingHoursPayload(
        slot_minutes=45,
        lead_time_minutes=0,
        windows=[
            WorkingHoursWindowPayload(weekday=0, start_time=time(14, 0), end_time=time(16, 0)),
            WorkingHoursWindowPayload(weekday=1, start_time=time(8, 0), end_time=time(9, 30)),
        ],
    )

    response = replace_working_hours(
        worker_id=WORKER_ID,
        data=payload,
        principal=principals['worker'],
        service=WorkingHoursService(db),
    )
    slots = list(AvailabilityCalculator(db, now=clock).free_slots(WORKER_ID, at(0, 0), at(0, 0, MONDAY + timedelta(days=2))))

    assert response.slot_minutes == 45
    assert len(response.windows) == 2
    assert [slot.start for slot in slots] == [
        at(14, 0),
        at(14, 45),
        at(8, 0, MONDAY + timedelta(days=1)),
        at(8, 45, MONDAY + timedelta(days=1)),
    ]


def test_replace_working_hours_of_another_worker_is_forbidden(db, principals) -> None:
    payload = WorkingHoursPayload(windows=[])

    with pytest.raises(ForbiddenError):
        replace_working_hours(
            worker_id=OTHER_WORKER_ID,
            data=payload,
            principal=principals['worker'],
            service=WorkingHoursService(db),
        )


def test_working_hours_window_payload_rejects_invalid_weekday() -> None:
    with pytest.raises(PydanticValidationError):
        WorkingHoursWindowPayload(weekday=7, start_time=time(9, 0), end_time=time(12, 0))


def test_working_hours_window_payload_drops_seconds() -> None:
    window = WorkingHoursWindowPayload(weekday=2, start_time=time(9, 0, 30), end_time=time(12, 0, 59))

    assert window.start_time == time(9, 0)
    assert window.end_time == time(12, 0)


@pytest.mark.parametrize(
    ('windows', 'slot_minutes', 'lead_time_minutes', 'error_detail'),
    [
        ([WeeklyWindow(0, time(9), time(12))], 5, 0, 'Slot length must be between 15 and 180 minutes.'),
        ([WeeklyWindow(0, time(9), time(12))], 240, 0, 'Slot length must be between 15 and 180 minutes.'),
        ([WeeklyWindow(0, time(9), time(12))], 30, -5, 'Lead time cannot be negative.'),
        ([WeeklyWindow(0, time(12), time(9))], 30, 0, 'Working hours must end after they start.'),
        (
            [WeeklyWindow(3, time(9), time(12)), WeeklyWindow(3, time(11), time(14))],
            30,
            0,
            'Working hours overlap on weekday 3.',
        ),
    ],
)
def test_validate_working_hours_rejects_invalid_configuration(
    windows,
    slot_minutes: int,
    lead_time_minutes: int,
    error_detail: str,
) -> None:
    with pytest.raises(ValidationError) as exception_info:
        validate_working_hours(windows, slot_minutes, lead_time_minutes)

    assert exception_info.value.message == error_detail


def test_validate_working_hours_allows_back_to_back_windows() -> None:
    validate_working_hours(
        [WeeklyWindow(0, time(13), time(17)), WeeklyWindow(0, time(9), time(13))],
        slot_minutes=30,
        lead_time_minutes=0,
    )


def test_first_advertised_slot_of_shortest_configuration_can_be_booked(db, store, clock, principals) -> None:
    replace_working_hours(
        worker_id=WORKER_ID,
        data=WorkingHoursPayload(
            slot_minutes=15,
            lead_time_minutes=0,
            windows=[WorkingHoursWindowPayload(weekday=0, start_time=time(9, 0), end_time=time(10, 0))],
        ),
        principal=principals['worker'],
        service=WorkingHoursService(db),
    )
    calculator = AvailabilityCalculator(db, now=clock)
    first = next(calculator.free_slots(WORKER_ID, at(0, 0), at(0, 0, MONDAY + timedelta(days=1))))

    appointment = store.create(principals['worker'], APPLICATION_ID, WORKER_ID, first.start)
    remaining = [slot.start for slot in calculator.free_slots(WORKER_ID, at(0, 0), at(0, 0, MONDAY + timedelta(days=1)))]

    assert appointment.end_time == first.end
    assert first.start not in remaining
    assert remaining == [at(9, 15), at(9, 30), at(9, 45)]


def test_replace_working_hours_rejects_unbookable_slot_length(db, principals) -> None:
    with pytest.raises(ValidationError):
        replace_working_hours(
            worker_id=WORKER_ID,
            data=WorkingHoursPayload(
                slot_minutes=5,
                windows=[WorkingHoursWindowPayload(weekday=0, start_time=time(9, 0), end_time=time(12, 0))],
            ),
            principal=principals['worker'],
            service=WorkingHoursService(db),
        )

    assert get_working_hours(worker_id=WORKER_ID, principal=principals['worker'], service=WorkingHoursService(db)).slot_minutes == 30
