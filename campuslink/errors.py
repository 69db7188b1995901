"""Domain errors raised by the team-formation workflow.

Every precondition failure maps to its own subclass so callers (and tests)
can tell them apart.  ``main`` registers a handler that renders them as
``{"detail": ..., "code": ...}`` with the class's HTTP status.
"""

from typing import Optional


class TeamFormationError(Exception):
    """Base class for all join-request / team-formation failures."""

    status_code: int = 400
    code: str = "team_formation_error"
    default_detail: str = "Team formation error."

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFound(TeamFormationError):
    status_code = 404
    code = "not_found"
    default_detail = "Not found."


class Forbidden(TeamFormationError):
    status_code = 403
    code = "forbidden"
    default_detail = "Only the project creator can perform this action."


class CapacityExceeded(TeamFormationError):
    code = "capacity_exceeded"
    default_detail = "Team size limit reached."


class AlreadyMember(TeamFormationError):
    code = "already_member"
    default_detail = "User is already part of the project team."


class DuplicateRequest(TeamFormationError):
    code = "duplicate_request"
    default_detail = "You have already requested to join this project."


class CooldownActive(TeamFormationError):
    code = "cooldown_active"
    default_detail = "You can only request to rejoin after one hour from removal."

    def __init__(self, retry_after: int, detail: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(detail)


class InvalidTransition(TeamFormationError):
    code = "invalid_transition"
    default_detail = "The join request is not in a state that allows this action."


class InvalidArgument(TeamFormationError):
    code = "invalid_argument"
    default_detail = "Invalid argument."


class ConcurrentModification(TeamFormationError):
    status_code = 409
    code = "concurrent_modification"
    default_detail = "The project was modified concurrently. Please retry."
