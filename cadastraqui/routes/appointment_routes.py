from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator

from cadastraqui.auth.dependencies import get_current_principal, require_roles
from cadastraqui.core import config
from cadastraqui.core.clock import to_local_naive
from cadastraqui.core.errors import ValidationError
from cadastraqui.models.appointment import AppointmentStatus
from cadastraqui.routes.dependencies import get_appointment_store
from cadastraqui.scheduling.access_policy import Principal, Role
from cadastraqui.scheduling.store import AppointmentDetails, AppointmentFilters, AppointmentPage, AppointmentStore

router = APIRouter(tags=['appointments'])

MIN_TITLE_LENGTH = 3
MAX_TEXT_LENGTH = 600
MAX_NOTES_LENGTH = 2000


def _normalize_text(value: str | None, max_length: int = MAX_TEXT_LENGTH) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if len(normalized) > max_length:
        raise ValueError(f'Text must be {max_length} characters or fewer.')
    return normalized


def _normalize_title(value: str | None) -> str | None:
    normalized = _normalize_text(value)
    if normalized is not None and len(normalized) < MIN_TITLE_LENGTH:
        raise ValueError(f'Title must have at least {MIN_TITLE_LENGTH} characters.')
    return normalized


def _normalize_link(value: str | None) -> str | None:
    normalized = _normalize_text(value)
    if normalized and not normalized.startswith(('http://', 'https://')):
        raise ValueError('Online link must be an http(s) URL.')
    return normalized


def _normalize_duration(value: int | None) -> int | None:
    if value is not None and not config.MIN_APPOINTMENT_MINUTES <= value <= config.MAX_APPOINTMENT_MINUTES:
        raise ValueError(
            f'Duration must be between {config.MIN_APPOINTMENT_MINUTES} and {config.MAX_APPOINTMENT_MINUTES} minutes.'
        )
    return value


class CreateAppointmentRequest(BaseModel):
    application_id: int
    worker_id: int | None = None
    start_time: datetime
    duration_minutes: int | None = None
    title: str | None = None
    description: str | None = None
    location: str | None = None
    online_link: str | None = None

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: datetime) -> datetime:
        return to_local_naive(value)

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int | None) -> int | None:
        return _normalize_duration(value)

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str | None) -> str | None:
        return _normalize_title(value)

    @field_validator('description', 'location')
    @classmethod
    def validate_text(cls, value: str | None) -> str | None:
        return _normalize_text(value)

    @field_validator('online_link')
    @classmethod
    def validate_online_link(cls, value: str | None) -> str | None:
        return _normalize_link(value)

    def details(self) -> AppointmentDetails:
        return AppointmentDetails(
            title=self.title,
            description=self.description,
            location=self.location,
            online_link=self.online_link,
        )


class UpdateAppointmentRequest(BaseModel):
    start_time: datetime | None = None
    duration_minutes: int | None = None
    title: str | None = None
    description: str | None = None
    location: str | None = None
    online_link: str | None = None

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: datetime | None) -> datetime | None:
        return to_local_naive(value) if value is not None else None

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int | None) -> int | None:
        return _normalize_duration(value)

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str | None) -> str | None:
        return _normalize_title(value)

    @field_validator('description', 'location')
    @classmethod
    def validate_text(cls, value: str | None) -> str | None:
        return _normalize_text(value)

    @field_validator('online_link')
    @classmethod
    def validate_online_link(cls, value: str | None) -> str | None:
        return _normalize_link(value)

    def details(self) -> AppointmentDetails | None:
        fields = {
            'title': self.title,
            'description': self.description,
            'location': self.location,
            'online_link': self.online_link,
        }
        if all(value is None for value in fields.values()):
            return None
        return AppointmentDetails(**fields)


class CompleteAppointmentRequest(BaseModel):
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        normalized = _normalize_text(value, MAX_NOTES_LENGTH)
        return normalized or None


class AppointmentResponse(BaseModel):
    id: int
    worker_id: int
    application_id: int
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: AppointmentStatus
    title: str | None = None
    description: str | None = None
    location: str | None = None
    online_link: str | None = None
    notes: str | None = None
    created_by: int | None = None
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    class Config:
        from_attributes = True


class AppointmentListResponse(BaseModel):
    items: list[AppointmentResponse]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def from_page(cls, page: AppointmentPage) -> 'AppointmentListResponse':
        return cls(
            items=[AppointmentResponse.model_validate(item) for item in page.items],
            total=page.total,
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
        )


def build_filters(
    scope: str = 'all',
    status_filter: AppointmentStatus | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    limit: int = 10,
) -> AppointmentFilters:
    return AppointmentFilters(
        scope=scope,
        status=status_filter,
        date_from=to_local_naive(date_from) if date_from else None,
        date_to=to_local_naive(date_to) if date_to else None,
        page=page,
        limit=limit,
    )


@router.get('', response_model=AppointmentListResponse)
def list_worker_appointments(
    worker_id: int | None = Query(default=None, alias='assistente_id'),
    scope: str = Query(default='all'),
    status_filter: AppointmentStatus | None = Query(default=None, alias='status'),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=config.MAX_PAGE_SIZE),
    principal: Principal = Depends(require_roles(Role.SOCIAL_WORKER, Role.ADMIN)),
    store: AppointmentStore = Depends(get_appointment_store),
):
    if worker_id is None:
        if principal.role is not Role.SOCIAL_WORKER:
            raise ValidationError('assistente_id is required.')
        worker_id = principal.user_id

    filters = build_filters(scope, status_filter, date_from, date_to, page, limit)
    return AppointmentListResponse.from_page(store.list_for_worker(principal, worker_id, filters))


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    principal: Principal = Depends(require_roles(Role.SOCIAL_WORKER, Role.ADMIN)),
    store: AppointmentStore = Depends(get_appointment_store),
):
    worker_id = data.worker_id
    if worker_id is None:
        if principal.role is not Role.SOCIAL_WORKER:
            raise ValidationError('worker_id is required.')
        worker_id = principal.user_id

    return store.create(
        principal,
        application_id=data.application_id,
        worker_id=worker_id,
        start_time=data.start_time,
        duration_minutes=data.duration_minutes,
        details=data.details(),
    )


@router.get('/candidato', response_model=AppointmentListResponse)
def list_candidate_appointments(
    application_id: int | None = Query(default=None, alias='candidatura_id'),
    scope: str = Query(default='all'),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=config.MAX_PAGE_SIZE),
    principal: Principal = Depends(require_roles(Role.CANDIDATE)),
    store: AppointmentStore = Depends(get_appointment_store),
):
    filters = build_filters(scope=scope, page=page, limit=limit)
    return AppointmentListResponse.from_page(store.list_for_candidate(principal, application_id, filters))


@router.post('/candidato/{appointment_id}/cancelar', response_model=AppointmentResponse)
def cancel_my_appointment(
    appointment_id: int,
    principal: Principal = Depends(require_roles(Role.CANDIDATE)),
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.cancel(principal, appointment_id)


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_current_principal),
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.read(principal, appointment_id)


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    principal: Principal = Depends(require_roles(Role.SOCIAL_WORKER, Role.ADMIN)),
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.update(
        principal,
        appointment_id,
        new_start_time=data.start_time,
        new_duration_minutes=data.duration_minutes,
        details=data.details(),
    )


@router.delete('/{appointment_id}', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    principal: Principal = Depends(require_roles(Role.SOCIAL_WORKER, Role.ADMIN)),
    store: AppointmentStore = Depends(get_appointment_store),
):
    return store.cancel(principal, appointment_id)


@router.post('/{appointment_id}/realizado', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    data: CompleteAppointmentRequest | None = None,
    principal: Principal = Depends(require_roles(Role.SOCIAL_WORKER, Role.ADMIN)),
    store: AppointmentStore = Depends(get_appointment_store),
):
    notes = data.notes if data is not None else None
    return store.complete(principal, appointment_id, notes=notes)
