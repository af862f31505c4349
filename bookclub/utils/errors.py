"""Standardised API error responses.

Usage
-----
    from bookclub.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Event not found")
    return api_error(E.VALIDATION_REQUIRED, "title is required")
    return api_error(E.FORBIDDEN, "Not allowed", details={"reason": "outside_window"})
"""

from __future__ import annotations

from flask import jsonify

from bookclub.core.exceptions import DomainError


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Values match ``DomainError.code`` on the exception classes so a handler
    can pass ``exc.code`` straight through.
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / state – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    ALREADY_CLAIMED = "ERR_ALREADY_CLAIMED"

    # Guard failures – HTTP 422
    CANNOT_START = "ERR_CANNOT_START"
    CANNOT_COMPLETE = "ERR_CANNOT_COMPLETE"
    CANNOT_DELETE = "ERR_CANNOT_DELETE"
    CLAIM_NOT_ALLOWED = "ERR_CLAIM_NOT_ALLOWED"

    # Permissions – HTTP 401/403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.INVALID_TRANSITION: 409,
    E.ALREADY_CLAIMED: 409,
    E.CANNOT_START: 422,
    E.CANNOT_COMPLETE: 422,
    E.CANNOT_DELETE: 422,
    E.CLAIM_NOT_ALLOWED: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for clients.
    status : int, optional
        HTTP status override. Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (denial reason, conflicting ids).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)``
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def domain_error_response(exc: DomainError):
    """Shortcut used by blueprint error handlers."""
    return api_error(exc.code, exc.message, details=exc.details)
