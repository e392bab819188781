"""Error taxonomy for the scheduling core.

Every expected failure carries a stable ``code`` and the HTTP status the API
layer answers with, so handlers never need to inspect messages.
"""


class SchedulingError(Exception):
    status_code = 400
    code = 'SCHEDULING_ERROR'
    default_message = 'Scheduling request failed.'

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(SchedulingError):
    """Malformed or out-of-policy time, duration or configuration."""
    status_code = 400
    code = 'VALIDATION_ERROR'
    default_message = 'Invalid scheduling data.'


class ConflictError(SchedulingError):
    """The requested time range is no longer free."""
    status_code = 409
    code = 'CONFLICT'
    default_message = 'This time is already booked.'


class ForbiddenError(SchedulingError):
    status_code = 403
    code = 'FORBIDDEN'
    default_message = 'You do not have permission to perform this action.'


class NotFoundError(SchedulingError):
    status_code = 404
    code = 'NOT_FOUND'
    default_message = 'Resource not found.'

    @classmethod
    def for_resource(cls, resource: str) -> 'NotFoundError':
        return cls(f'{resource} not found.')


class InvalidStateError(SchedulingError):
    """Illegal appointment status transition."""
    status_code = 409
    code = 'INVALID_STATE'
    default_message = 'This appointment can no longer be changed.'


class InternalError(SchedulingError):
    status_code = 500
    code = 'INTERNAL_ERROR'
    default_message = 'Internal error. Please try again later.'
