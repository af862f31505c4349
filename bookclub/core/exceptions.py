"""
Reading-event exception hierarchy.

Every expected, recoverable outcome of the engine is one of these types.
Services raise them; the events blueprint registers a single handler for
``DomainError`` and turns ``code`` into an HTTP status via ``api_error``.
Only storage connectivity failures escape as something else.

Usage:
    from bookclub.core.exceptions import InvalidTransition, PermissionDenied

    raise InvalidTransition("approve", current="draft")
    raise PermissionDenied("give_flower", reason="outside_window")
"""


class DomainError(Exception):
    """Base class: stable machine-readable ``code`` plus a human message."""

    code = "ERR_DOMAIN"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(DomainError):
    """Referenced event, schedule, check-in, flower or user does not exist.

    Args:
        resource: Human-readable entity name (e.g. "ReadingEvent").
        resource_id: The key that was looked up.
    """

    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(DomainError):
    """Well-formed input that violates a business rule (missing field, bad range)."""

    code = "ERR_VALIDATION_INVALID"


class InvalidTransition(DomainError):
    """A lifecycle action attempted from a state that forbids it."""

    code = "ERR_INVALID_TRANSITION"

    def __init__(self, action: str, current: str | None = None, message: str | None = None) -> None:
        self.action = action
        self.current = current
        msg = message or f"Cannot {action} an event in stage '{current}'"
        super().__init__(msg, details={"action": action, "current": current})


class _GuardFailure(DomainError):
    """Lifecycle guard failed; ``reason`` is a stable short token."""

    verb = ""

    def __init__(self, reason: str, message: str | None = None, **context) -> None:
        self.reason = reason
        self.context = context
        msg = message or f"Cannot {self.verb} event: {reason}"
        super().__init__(msg, details={"reason": reason, **context})


class CannotStart(_GuardFailure):
    code = "ERR_CANNOT_START"
    verb = "start"


class CannotComplete(_GuardFailure):
    code = "ERR_CANNOT_COMPLETE"
    verb = "complete"


class CannotDelete(_GuardFailure):
    code = "ERR_CANNOT_DELETE"
    verb = "delete"


class PermissionDenied(DomainError):
    """The permission engine refused the action.

    ``reason`` is one of: wrong_role, outside_window, day_has_check_ins,
    event_not_in_progress, already_claimed, not_pending, event_locked,
    not_enrolling, not_enrolled, self_reward, daily_limit_reached,
    check_in_rewarded, unknown_action.
    """

    code = "ERR_FORBIDDEN"

    def __init__(self, action: str, reason: str, user_id: int | None = None) -> None:
        self.action = action
        self.reason = reason
        self.user_id = user_id
        who = f"User {user_id}" if user_id is not None else "Caller"
        super().__init__(
            f"{who} may not '{action}': {reason}",
            details={"action": action, "reason": reason},
        )


class AlreadyClaimed(DomainError):
    """A leadership claim lost the race; the day already has a leader."""

    code = "ERR_ALREADY_CLAIMED"

    def __init__(self, schedule_id: int, leader_id: int | None = None) -> None:
        self.schedule_id = schedule_id
        self.leader_id = leader_id
        super().__init__(
            f"Schedule {schedule_id} already has a daily leader",
            details={"schedule_id": schedule_id, "daily_leader_id": leader_id},
        )


class ClaimNotAllowed(DomainError):
    """Claims are not accepted for this event or this user has hit the limit."""

    code = "ERR_CLAIM_NOT_ALLOWED"

    def __init__(self, reason: str, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or f"Leadership claim not allowed: {reason}", details={"reason": reason})


class DuplicateSubmission(DomainError):
    """A uniqueness rule rejected a second check-in, flower, enrollment or leading."""

    code = "ERR_CONFLICT_DUPLICATE"

    def __init__(self, resource: str, message: str | None = None) -> None:
        self.resource = resource
        super().__init__(message or f"{resource} already exists", details={"resource": resource})


class Unauthenticated(DomainError):
    """No usable caller identity on the request."""

    code = "ERR_UNAUTHENTICATED"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)
