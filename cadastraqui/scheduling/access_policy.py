"""Role-based access policy for appointment operations.

Roles arrive from the identity service as free-form strings; they are mapped
once onto a closed set of variants and every decision afterwards is a lookup
in ``CAPABILITIES``.
"""

import enum
from dataclasses import dataclass

from cadastraqui.core.errors import ForbiddenError


class Role(str, enum.Enum):
    CANDIDATE = 'CANDIDATE'
    SOCIAL_WORKER = 'SOCIAL_WORKER'
    ADMIN = 'ADMIN'
    OTHER = 'OTHER'

    @classmethod
    def from_claim(cls, value: str | None) -> 'Role':
        return ROLE_CLAIMS.get((value or '').strip().upper(), cls.OTHER)


ROLE_CLAIMS = {
    'CANDIDATO': Role.CANDIDATE,
    'CANDIDATE': Role.CANDIDATE,
    'ASSISTENTE_SOCIAL': Role.SOCIAL_WORKER,
    'SOCIAL_WORKER': Role.SOCIAL_WORKER,
    'ADMIN': Role.ADMIN,
}


class Action(str, enum.Enum):
    READ = 'read'
    CREATE = 'create'
    UPDATE = 'update'
    CANCEL = 'cancel'
    COMPLETE = 'complete'
    LIST_FOR_WORKER = 'list_for_worker'
    LIST_FOR_CANDIDATE = 'list_for_candidate'
    QUERY_SLOTS = 'query_slots'
    MANAGE_WORKING_HOURS = 'manage_working_hours'


class Scope(str, enum.Enum):
    ANY = 'any'
    OWN_WORKER = 'own_worker'
    OWN_APPLICATION = 'own_application'


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, resolved upstream from the bearer token."""
    user_id: int
    role: Role
    tenant_id: str | None = None
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


CAPABILITIES: dict[Role, dict[Action, Scope]] = {
    Role.CANDIDATE: {
        Action.READ: Scope.OWN_APPLICATION,
        Action.CANCEL: Scope.OWN_APPLICATION,
        Action.LIST_FOR_CANDIDATE: Scope.OWN_APPLICATION,
        Action.QUERY_SLOTS: Scope.ANY,
    },
    Role.SOCIAL_WORKER: {
        Action.READ: Scope.OWN_WORKER,
        Action.CREATE: Scope.OWN_WORKER,
        Action.UPDATE: Scope.OWN_WORKER,
        Action.CANCEL: Scope.OWN_WORKER,
        Action.COMPLETE: Scope.OWN_WORKER,
        Action.LIST_FOR_WORKER: Scope.OWN_WORKER,
        Action.LIST_FOR_CANDIDATE: Scope.OWN_WORKER,
        Action.QUERY_SLOTS: Scope.ANY,
        Action.MANAGE_WORKING_HOURS: Scope.OWN_WORKER,
    },
    Role.ADMIN: {action: Scope.ANY for action in Action},
    Role.OTHER: {},
}


class AccessPolicy:
    def __init__(self, capabilities: dict[Role, dict[Action, Scope]] | None = None):
        self._capabilities = capabilities or CAPABILITIES

    def scope_for(self, principal: Principal, action: Action) -> Scope | None:
        return self._capabilities.get(principal.role, {}).get(action)

    def authorize(self, principal: Principal, action: Action) -> Scope:
        """Check the operation class; runs before any record is loaded."""
        scope = self.scope_for(principal, action)
        if scope is None:
            raise ForbiddenError(f'Role {principal.role.value} cannot {action.value.replace("_", " ")} appointments.')
        return scope

    def authorize_worker(self, principal: Principal, action: Action, worker_id: int) -> None:
        scope = self.authorize(principal, action)
        if scope is Scope.OWN_WORKER and principal.user_id != worker_id:
            raise ForbiddenError('You can only act on your own schedule.')
        if scope is Scope.OWN_APPLICATION:
            raise ForbiddenError('Candidates cannot act on a worker schedule.')

    def authorize_record(
        self,
        principal: Principal,
        action: Action,
        worker_id: int,
        candidate_id: int | None,
        tenant_id: str | None = None,
    ) -> None:
        """Check one concrete appointment (or application) against the caller."""
        scope = self.authorize(principal, action)
        if scope is Scope.ANY:
            return

        if tenant_id is not None and principal.tenant_id is not None and tenant_id != principal.tenant_id:
            raise ForbiddenError('This appointment belongs to another institution.')

        if scope is Scope.OWN_WORKER and principal.user_id == worker_id:
            return
        if scope is Scope.OWN_APPLICATION and candidate_id is not None and principal.user_id == candidate_id:
            return

        raise ForbiddenError('You do not have access to this appointment.')

