from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator

from cadastraqui.auth.dependencies import get_current_principal
from cadastraqui.core import config
from cadastraqui.core.errors import ValidationError
from cadastraqui.routes.dependencies import get_availability_calculator, get_working_hours_service
from cadastraqui.scheduling.access_policy import AccessPolicy, Action, Principal, Role
from cadastraqui.scheduling.availability import AvailabilityCalculator, Slot, WeeklyWindow, WorkingHours
from cadastraqui.scheduling.working_hours import WorkingHoursService

router = APIRouter(tags=['availability'])

access_policy = AccessPolicy()


class SlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    duration_minutes: int

    @classmethod
    def from_slot(cls, slot: Slot) -> 'SlotResponse':
        return cls(start_time=slot.start, end_time=slot.end, duration_minutes=slot.duration_minutes)


class AvailableSlotsResponse(BaseModel):
    worker_id: int
    date_start: date
    date_end: date
    slots: list[SlotResponse]


class WorkingHoursWindowPayload(BaseModel):
    weekday: int
    start_time: time
    end_time: time

    @field_validator('weekday')
    @classmethod
    def validate_weekday(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('Weekday must be between 0 (Monday) and 6 (Sunday).')
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def drop_seconds(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0, tzinfo=None)


class WorkingHoursPayload(BaseModel):
    slot_minutes: int = config.DEFAULT_SLOT_MINUTES
    lead_time_minutes: int = config.DEFAULT_LEAD_TIME_MINUTES
    windows: list[WorkingHoursWindowPayload]


class WorkingHoursResponse(WorkingHoursPayload):
    worker_id: int

    @classmethod
    def from_working_hours(cls, worker_id: int, working_hours: WorkingHours | None) -> 'WorkingHoursResponse':
        if working_hours is None:
            return cls(worker_id=worker_id, windows=[])
        return cls(
            worker_id=worker_id,
            slot_minutes=working_hours.slot_minutes,
            lead_time_minutes=working_hours.lead_time_minutes,
            windows=[
                WorkingHoursWindowPayload(weekday=window.weekday, start_time=window.start, end_time=window.end)
                for window in working_hours.windows
            ],
        )


def resolve_date_range(date_start: date, date_end: date | None) -> tuple[datetime, datetime]:
    last_day = date_end or date_start
    if last_day < date_start:
        raise ValidationError('data_fim must not be before data.')
    if (last_day - date_start).days + 1 > config.MAX_SLOT_QUERY_DAYS:
        raise ValidationError(f'Slots can be queried for at most {config.MAX_SLOT_QUERY_DAYS} days at a time.')

    return datetime.combine(date_start, time.min), datetime.combine(last_day + timedelta(days=1), time.min)


@router.get('/agendamentos/horarios-disponiveis', response_model=AvailableSlotsResponse)
def list_available_slots(
    date_start: date = Query(..., alias='data'),
    date_end: date | None = Query(default=None, alias='data_fim'),
    worker_id: int | None = Query(default=None, alias='assistente_id'),
    principal: Principal = Depends(get_current_principal),
    calculator: AvailabilityCalculator = Depends(get_availability_calculator),
):
    access_policy.authorize(principal, Action.QUERY_SLOTS)

    if worker_id is None:
        if principal.role is not Role.SOCIAL_WORKER:
            raise ValidationError('assistente_id is required.')
        worker_id = principal.user_id

    range_start, range_end = resolve_date_range(date_start, date_end)
    slots = calculator.free_slots(worker_id, range_start, range_end)

    return AvailableSlotsResponse(
        worker_id=worker_id,
        date_start=date_start,
        date_end=date_end or date_start,
        slots=[SlotResponse.from_slot(slot) for slot in slots],
    )


@router.get('/assistentes/{worker_id}/disponibilidade', response_model=WorkingHoursResponse)
def get_working_hours(
    worker_id: int,
    principal: Principal = Depends(get_current_principal),
    service: WorkingHoursService = Depends(get_working_hours_service),
):
    return WorkingHoursResponse.from_working_hours(worker_id, service.get_config(principal, worker_id))


@router.put('/assistentes/{worker_id}/disponibilidade', response_model=WorkingHoursResponse)
def replace_working_hours(
    worker_id: int,
    data: WorkingHoursPayload,
    principal: Principal = Depends(get_current_principal),
    service: WorkingHoursService = Depends(get_working_hours_service),
):
    working_hours = service.replace_config(
        principal,
        worker_id,
        windows=[WeeklyWindow(window.weekday, window.start_time, window.end_time) for window in data.windows],
        slot_minutes=data.slot_minutes,
        lead_time_minutes=data.lead_time_minutes,
    )
    return WorkingHoursResponse.from_working_hours(worker_id, working_hours)
