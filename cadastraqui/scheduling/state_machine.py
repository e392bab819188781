"""Legal status transitions for appointments."""

import enum

from cadastraqui.core.errors import ForbiddenError, InvalidStateError
from cadastraqui.models.appointment import AppointmentStatus
from cadastraqui.scheduling.access_policy import Principal, Role


class Trigger(str, enum.Enum):
    COMPLETE = 'complete'
    CANCEL = 'cancel'
    RESCHEDULE = 'reschedule'


# Who may fire each trigger, relative to the appointment.
OWNING_WORKER = 'owning_worker'
OWNING_CANDIDATE = 'owning_candidate'

TRANSITIONS: dict[tuple[AppointmentStatus, Trigger], tuple[AppointmentStatus, frozenset[str]]] = {
    (AppointmentStatus.SCHEDULED, Trigger.COMPLETE): (
        AppointmentStatus.COMPLETED,
        frozenset({OWNING_WORKER}),
    ),
    (AppointmentStatus.SCHEDULED, Trigger.CANCEL): (
        AppointmentStatus.CANCELLED,
        frozenset({OWNING_WORKER, OWNING_CANDIDATE}),
    ),
    (AppointmentStatus.SCHEDULED, Trigger.RESCHEDULE): (
        AppointmentStatus.SCHEDULED,
        frozenset({OWNING_WORKER}),
    ),
}

TERMINAL_STATES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})


class AppointmentStateMachine:
    def __init__(self, transitions: dict | None = None):
        self._transitions = transitions or TRANSITIONS

    def next_status(
        self,
        current: AppointmentStatus | str,
        trigger: Trigger,
        principal: Principal,
        worker_id: int,
        candidate_id: int | None,
    ) -> AppointmentStatus:
        current = AppointmentStatus(current)
        transition = None if self.is_terminal(current) else self._transitions.get((current, trigger))
        if transition is None:
            raise InvalidStateError(
                f'Cannot {trigger.value} an appointment that is {current.value.lower()}.'
            )

        target, allowed = transition
        if principal.role is Role.ADMIN:
            return target
        if OWNING_WORKER in allowed and principal.role is Role.SOCIAL_WORKER and principal.user_id == worker_id:
            return target
        if (
            OWNING_CANDIDATE in allowed
            and principal.role is Role.CANDIDATE
            and candidate_id is not None
            and principal.user_id == candidate_id
        ):
            return target

        raise ForbiddenError(f'You cannot {trigger.value} this appointment.')

    @staticmethod
    def is_terminal(status: AppointmentStatus | str) -> bool:
        return AppointmentStatus(status) in TERMINAL_STATES
