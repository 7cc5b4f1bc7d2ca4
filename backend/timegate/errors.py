"""
Domain error taxonomy.

Services raise these; the API layer maps each class to one HTTP status:

- Unauthorized            403  permission resolver denied the action
- NotFound                404  missing, or hidden (expired invitations)
- InvalidStateTransition  409  e.g. approving a draft sheet
- ConflictingUniqueness   409  duplicate membership / code collision
- PolicyNotSatisfied      422  approval preconditions unmet
- InvalidRequest          400  input violates a domain rule

Unauthorized and InvalidStateTransition are never retried.
ConflictingUniqueness is recoverable by re-reading current state.
"""


class DomainError(Exception):
    code = "DOMAIN_ERROR"
    status_code = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


class Unauthorized(DomainError):
    code = "UNAUTHORIZED"
    status_code = 403


class NotFound(DomainError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidStateTransition(DomainError):
    code = "INVALID_STATE_TRANSITION"
    status_code = 409


class ConflictingUniqueness(DomainError):
    code = "CONFLICTING_UNIQUENESS"
    status_code = 409


class PolicyNotSatisfied(DomainError):
    code = "POLICY_NOT_SATISFIED"
    status_code = 422


class InvalidRequest(DomainError):
    code = "INVALID_REQUEST"
    status_code = 400


class UnknownPermission(KeyError):
    """Raised for permission keys missing from the registry. A programming error."""
