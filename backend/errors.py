"""
Error taxonomy raised by the permission engine and the services.

The HTTP layer maps each kind to a status code in ``main.py``; nothing in the
core knows about HTTP.
"""


class TaskHubError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(TaskHubError):
    """Resource does not exist, or the actor cannot even view it."""

    status_code = 404


class ForbiddenError(TaskHubError):
    """Resource is visible but the action is not allowed for the actor."""

    status_code = 403


class ConflictError(TaskHubError):
    """Uniqueness violation, including a lost PRIMARY promotion race."""

    status_code = 409


class InvalidRequestError(TaskHubError):
    """Structural violation that is not about permissions."""

    status_code = 400


class TransientDatabaseError(TaskHubError):
    """Database unavailable after the pool-exhaustion retry budget."""

    status_code = 503
