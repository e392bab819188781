"""Appointment records and the operations that change them.

Every operation checks the access policy first, so a caller without the
capability is rejected before any record is read. Mutations commit inside the
worker's ConflictGuard critical section, and notification events are handed
to the dispatcher only after that commit succeeded.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cadastraqui.core import config
from cadastraqui.core.clock import local_now
from cadastraqui.core.errors import (
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)
from cadastraqui.models.application import Application
from cadastraqui.models.appointment import Appointment, AppointmentStatus
from cadastraqui.notifications.dispatcher import NotificationDispatcher, NotificationEvent, NotificationKind
from cadastraqui.scheduling import directory
from cadastraqui.scheduling.access_policy import AccessPolicy, Action, Principal, Role, Scope
from cadastraqui.scheduling.availability import AvailabilityCalculator, load_working_hours
from cadastraqui.scheduling.conflict_guard import ConflictGuard
from cadastraqui.scheduling.state_machine import AppointmentStateMachine, Trigger

logger = logging.getLogger(__name__)

CANDIDATE_APPOINTMENTS_LINK = '/candidato/agendamentos'
WORKER_APPOINTMENTS_LINK = '/assistente-social/agendamentos'

LIST_SCOPES = ('all', 'upcoming', 'historical')


@dataclass
class AppointmentDetails:
    title: str | None = None
    description: str | None = None
    location: str | None = None
    online_link: str | None = None


@dataclass
class AppointmentFilters:
    scope: str = 'all'
    status: AppointmentStatus | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    page: int = 1
    limit: int = 10

    def __post_init__(self):
        if self.scope not in LIST_SCOPES:
            raise ValidationError(f'Scope must be one of: {", ".join(LIST_SCOPES)}.')
        if self.page < 1 or not 1 <= self.limit <= config.MAX_PAGE_SIZE:
            raise ValidationError(f'Page must be at least 1 and limit between 1 and {config.MAX_PAGE_SIZE}.')
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValidationError('date_from must not be after date_to.')


@dataclass
class AppointmentPage:
    items: list[Appointment]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit


@dataclass
class _PendingEvents:
    events: list[NotificationEvent] = field(default_factory=list)

    def add(self, recipient_id: int | None, kind: str, title: str, message: str, link: str) -> None:
        if recipient_id is not None:
            self.events.append(
                NotificationEvent(recipient_id=recipient_id, kind=kind, title=title, message=message, link=link)
            )


def format_when(value: datetime) -> str:
    return value.strftime('%d/%m/%Y %H:%M')


class AppointmentStore:
    def __init__(
        self,
        db: Session,
        dispatcher: NotificationDispatcher,
        guard: ConflictGuard,
        policy: AccessPolicy | None = None,
        state_machine: AppointmentStateMachine | None = None,
        now: Callable[[], datetime] = local_now,
        allow_early_completion: bool | None = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.guard = guard
        self.policy = policy or AccessPolicy()
        self.state_machine = state_machine or AppointmentStateMachine()
        self.now = now
        self.availability = AvailabilityCalculator(db, now)
        self.allow_early_completion = (
            config.ALLOW_EARLY_COMPLETION if allow_early_completion is None else allow_early_completion
        )

    @contextmanager
    def _unit_of_work(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SchedulingError:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            self.db.rollback()
            logger.info('Integrity conflict while trying to %s an appointment: %s', operation, exc.orig)
            raise ConflictError('This application already has an open appointment.') from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Database error while trying to %s an appointment', operation)
            raise InternalError() from exc

    def _get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment is None:
            raise NotFoundError.for_resource('Appointment')
        return appointment

    def _load_for(self, principal: Principal, action: Action, appointment_id: int) -> tuple[Appointment, int]:
        self.policy.authorize(principal, action)
        appointment = self._get_appointment(appointment_id)
        candidate_id = directory.get_application(self.db, appointment.application_id).candidate_id
        self.policy.authorize_record(principal, action, appointment.worker_id, candidate_id, appointment.tenant_id)
        return appointment, candidate_id

    def _ensure_no_open_appointment(self, application_id: int) -> None:
        query = self.db.query(Appointment.id).filter(
            Appointment.application_id == application_id,
            Appointment.status == AppointmentStatus.SCHEDULED.value,
        )
        if query.first() is not None:
            raise ConflictError(
                'This application already has an open appointment. Cancel or complete it before booking another.'
            )

    def _default_duration(self, worker_id: int) -> int:
        working_hours = load_working_hours(self.db, worker_id)
        return working_hours.slot_minutes if working_hours else config.DEFAULT_SLOT_MINUTES

    def create(
        self,
        principal: Principal,
        application_id: int,
        worker_id: int,
        start_time: datetime,
        duration_minutes: int | None = None,
        details: AppointmentDetails | None = None,
    ) -> Appointment:
        self.policy.authorize_worker(principal, Action.CREATE, worker_id)
        details = details or AppointmentDetails()
        pending = _PendingEvents()

        with self._unit_of_work('create'):
            worker = directory.get_worker(self.db, worker_id)
            application = directory.get_application(self.db, application_id)
            self._check_tenant(principal, worker.tenant_id, application)

            duration = duration_minutes or self._default_duration(worker_id)
            self.availability.check_bookable(worker_id, start_time, duration)

            with self.guard.reserve(self.db, worker_id, start_time, duration) as reservation:
                self._ensure_no_open_appointment(application_id)
                now = self.now()
                appointment = Appointment(
                    tenant_id=application.tenant_id or worker.tenant_id,
                    worker_id=worker_id,
                    application_id=application_id,
                    start_time=reservation.start_time,
                    end_time=reservation.end_time,
                    duration_minutes=duration,
                    status=AppointmentStatus.SCHEDULED.value,
                    title=details.title or 'Interview',
                    description=details.description,
                    location=details.location,
                    online_link=details.online_link or None,
                    created_by=principal.user_id,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(appointment)
                self.db.commit()

            self.db.refresh(appointment)

        logger.info(
            'Appointment %s created for worker %s and application %s at %s',
            appointment.id,
            worker_id,
            application_id,
            appointment.start_time.isoformat(),
        )

        when = format_when(appointment.start_time)
        pending.add(
            application.candidate_id,
            NotificationKind.APPOINTMENT_CREATED,
            'New appointment',
            f'You have an appointment scheduled for {when}: {appointment.title}',
            CANDIDATE_APPOINTMENTS_LINK,
        )
        pending.add(
            worker_id,
            NotificationKind.APPOINTMENT_CREATED,
            'New appointment',
            f'Appointment "{appointment.title}" scheduled for {when}.',
            WORKER_APPOINTMENTS_LINK,
        )
        self.dispatcher.emit_all(pending.events)
        return appointment

    def _check_tenant(self, principal: Principal, worker_tenant_id: str | None, application: Application) -> None:
        if worker_tenant_id and application.tenant_id and worker_tenant_id != application.tenant_id:
            raise ValidationError('The application belongs to another institution.')
        if (
            not principal.is_admin
            and principal.tenant_id
            and application.tenant_id
            and principal.tenant_id != application.tenant_id
        ):
            raise ForbiddenError('The application belongs to another institution.')

    def read(self, principal: Principal, appointment_id: int) -> Appointment:
        with self._unit_of_work('read'):
            appointment, _ = self._load_for(principal, Action.READ, appointment_id)
        return appointment

    def update(
        self,
        principal: Principal,
        appointment_id: int,
        new_start_time: datetime | None = None,
        new_duration_minutes: int | None = None,
        details: AppointmentDetails | None = None,
    ) -> Appointment:
        pending = _PendingEvents()

        with self._unit_of_work('update'):
            appointment, candidate_id = self._load_for(principal, Action.UPDATE, appointment_id)
            self.state_machine.next_status(
                appointment.status, Trigger.RESCHEDULE, principal, appointment.worker_id, candidate_id
            )

            start_time = new_start_time or appointment.start_time
            duration = new_duration_minutes or appointment.duration_minutes
            time_changed = start_time != appointment.start_time or duration != appointment.duration_minutes

            if time_changed:
                self.availability.check_bookable(appointment.worker_id, start_time, duration, appointment.id)
                critical_section = self.guard.reserve(
                    self.db, appointment.worker_id, start_time, duration, appointment.id
                )
            else:
                critical_section = self.guard.serialize(self.db, appointment.worker_id)

            with critical_section as reservation:
                self.db.refresh(appointment)
                self.state_machine.next_status(
                    appointment.status, Trigger.RESCHEDULE, principal, appointment.worker_id, candidate_id
                )
                if reservation is not None:
                    appointment.start_time = reservation.start_time
                    appointment.end_time = reservation.end_time
                    appointment.duration_minutes = duration
                if details is not None:
                    self._apply_details(appointment, details)
                appointment.updated_at = self.now()
                self.db.commit()

            self.db.refresh(appointment)

        if time_changed:
            logger.info('Appointment %s rescheduled to %s', appointment.id, appointment.start_time.isoformat())
            pending.add(
                candidate_id,
                NotificationKind.APPOINTMENT_RESCHEDULED,
                'Appointment rescheduled',
                f'Your appointment "{appointment.title}" was moved to {format_when(appointment.start_time)}.',
                CANDIDATE_APPOINTMENTS_LINK,
            )
            self.dispatcher.emit_all(pending.events)
        return appointment

    @staticmethod
    def _apply_details(appointment: Appointment, details: AppointmentDetails) -> None:
        if details.title is not None:
            appointment.title = details.title
        if details.description is not None:
            appointment.description = details.description
        if details.location is not None:
            appointment.location = details.location
        if details.online_link is not None:
            appointment.online_link = details.online_link or None

    def cancel(self, principal: Principal, appointment_id: int) -> Appointment:
        pending = _PendingEvents()

        with self._unit_of_work('cancel'):
            appointment, candidate_id = self._load_for(principal, Action.CANCEL, appointment_id)

            with self.guard.serialize(self.db, appointment.worker_id):
                self.db.refresh(appointment)
                appointment.status = self.state_machine.next_status(
                    appointment.status, Trigger.CANCEL, principal, appointment.worker_id, candidate_id
                ).value
                now = self.now()
                appointment.cancelled_at = now
                appointment.cancelled_by = principal.user_id
                appointment.updated_at = now
                self.db.commit()

            self.db.refresh(appointment)

        logger.info('Appointment %s cancelled by user %s', appointment.id, principal.user_id)

        when = format_when(appointment.start_time)
        pending.add(
            candidate_id,
            NotificationKind.APPOINTMENT_CANCELLED,
            'Appointment cancelled',
            f'Your appointment "{appointment.title}" for {when} was cancelled.',
            CANDIDATE_APPOINTMENTS_LINK,
        )
        if principal.user_id != appointment.worker_id:
            pending.add(
                appointment.worker_id,
                NotificationKind.APPOINTMENT_CANCELLED,
                'Appointment cancelled',
                f'Appointment "{appointment.title}" for {when} was cancelled.',
                WORKER_APPOINTMENTS_LINK,
            )
        self.dispatcher.emit_all(pending.events)
        return appointment

    def complete(self, principal: Principal, appointment_id: int, notes: str | None = None) -> Appointment:
        pending = _PendingEvents()

        with self._unit_of_work('complete'):
            appointment, candidate_id = self._load_for(principal, Action.COMPLETE, appointment_id)

            with self.guard.serialize(self.db, appointment.worker_id):
                self.db.refresh(appointment)
                next_status = self.state_machine.next_status(
                    appointment.status, Trigger.COMPLETE, principal, appointment.worker_id, candidate_id
                )
                now = self.now()
                if not self.allow_early_completion and appointment.start_time > now:
                    raise ValidationError('Appointments can only be marked as completed after they start.')

                appointment.status = next_status.value
                appointment.completed_at = now
                appointment.updated_at = now
                if notes is not None:
                    appointment.notes = notes
                self.db.commit()

            self.db.refresh(appointment)

        logger.info('Appointment %s completed by user %s', appointment.id, principal.user_id)

        pending.add(
            candidate_id,
            NotificationKind.APPOINTMENT_COMPLETED,
            'Appointment completed',
            f'Your appointment "{appointment.title}" on {format_when(appointment.start_time)} was marked as completed.',
            CANDIDATE_APPOINTMENTS_LINK,
        )
        self.dispatcher.emit_all(pending.events)
        return appointment

    def list_for_worker(
        self,
        principal: Principal,
        worker_id: int,
        filters: AppointmentFilters | None = None,
    ) -> AppointmentPage:
        self.policy.authorize_worker(principal, Action.LIST_FOR_WORKER, worker_id)
        with self._unit_of_work('list'):
            directory.get_worker(self.db, worker_id)
            query = self.db.query(Appointment).filter(Appointment.worker_id == worker_id)
            return self._paginate(query, filters or AppointmentFilters())

    def list_for_candidate(
        self,
        principal: Principal,
        application_id: int | None = None,
        filters: AppointmentFilters | None = None,
    ) -> AppointmentPage:
        scope = self.policy.authorize(principal, Action.LIST_FOR_CANDIDATE)

        with self._unit_of_work('list'):
            if application_id is None:
                if principal.role is not Role.CANDIDATE:
                    raise ValidationError('An application id is required.')
                application_ids = select(Application.id).where(Application.candidate_id == principal.user_id)
                query = self.db.query(Appointment).filter(Appointment.application_id.in_(application_ids))
                return self._paginate(query, filters or AppointmentFilters())

            application = directory.get_application(self.db, application_id)
            if scope is Scope.OWN_APPLICATION and application.candidate_id != principal.user_id:
                raise ForbiddenError('You can only view appointments of your own applications.')

            query = self.db.query(Appointment).filter(Appointment.application_id == application_id)
            if scope is Scope.OWN_WORKER:
                query = query.filter(Appointment.worker_id == principal.user_id)
            return self._paginate(query, filters or AppointmentFilters())

    def _paginate(self, query, filters: AppointmentFilters) -> AppointmentPage:
        if filters.status is not None:
            query = query.filter(Appointment.status == AppointmentStatus(filters.status).value)
        if filters.date_from is not None:
            query = query.filter(Appointment.start_time >= filters.date_from)
        if filters.date_to is not None:
            query = query.filter(Appointment.start_time <= filters.date_to)

        now = self.now()
        if filters.scope == 'upcoming':
            query = query.filter(Appointment.start_time >= now)
            ordering = (Appointment.start_time.asc(), Appointment.id.asc())
        elif filters.scope == 'historical':
            query = query.filter(Appointment.start_time < now)
            ordering = (Appointment.start_time.desc(), Appointment.id.desc())
        else:
            ordering = (Appointment.start_time.asc(), Appointment.id.asc())

        total = query.count()
        items = query.order_by(*ordering).offset((filters.page - 1) * filters.limit).limit(filters.limit).all()
        return AppointmentPage(items=items, total=total, page=filters.page, limit=filters.limit)
