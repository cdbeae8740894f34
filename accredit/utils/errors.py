"""Standardised API error responses.

Usage
-----
    from accredit.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Document not found")
    return api_error(E.VALIDATION_REQUIRED, "title is required")
    return api_error(E.CONFLICT_STATE, "Review already submitted", details={"status": "submitted"})

Domain exceptions raised by services are turned into the same envelope by
``register_error_handlers`` so blueprints do not repeat try/except blocks.
"""

from __future__ import annotations

import functools
import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from accredit.core.exceptions import (
    AuthenticationError,
    CapacityExceededError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StaleRecordError,
    TransitionError,
    ValidationError,
)
from accredit.models import db

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"
    CAPACITY_EXCEEDED = "ERR_CAPACITY_EXCEEDED"

    # Authentication – HTTP 401
    UNAUTHORIZED = "ERR_UNAUTHORIZED"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_STALE = "ERR_CONFLICT_STALE"

    # Upload – HTTP 413 / 415
    PAYLOAD_TOO_LARGE = "ERR_PAYLOAD_TOO_LARGE"
    UNSUPPORTED_MEDIA = "ERR_UNSUPPORTED_MEDIA"

    # Throttling – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 400,
    E.CAPACITY_EXCEEDED: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_STALE: 409,
    E.PAYLOAD_TOO_LARGE: 413,
    E.UNSUPPORTED_MEDIA: 415,
    E.RATE_LIMITED: 429,
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
        Human-readable explanation for the caller.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, current status, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "success": False,
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


# ── App-wide handlers ────────────────────────────────────────────────

def _discards_pending(handler):
    """Roll back uncommitted changes before building the error envelope."""

    @functools.wraps(handler)
    def wrapper(error):
        db.session.rollback()
        return handler(error)

    return wrapper


def register_error_handlers(app):
    """Map domain exceptions and HTTP errors to the standard envelope."""

    @app.errorhandler(NotFoundError)
    @_discards_pending
    def _not_found(error: NotFoundError):
        logger.info("Not found: %s", error)
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @app.errorhandler(ValidationError)
    @_discards_pending
    def _validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @app.errorhandler(CapacityExceededError)
    @_discards_pending
    def _capacity(error: CapacityExceededError):
        return api_error(
            E.CAPACITY_EXCEEDED, str(error),
            details={"current": error.current, "maximum": error.maximum},
        )

    @app.errorhandler(ForbiddenError)
    @_discards_pending
    def _forbidden(error: ForbiddenError):
        return api_error(E.FORBIDDEN, str(error))

    @app.errorhandler(AuthenticationError)
    @_discards_pending
    def _unauthorized(error: AuthenticationError):
        return api_error(E.UNAUTHORIZED, str(error))

    @app.errorhandler(ConflictError)
    @_discards_pending
    def _duplicate(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @app.errorhandler(TransitionError)
    @_discards_pending
    def _transition(error: TransitionError):
        return api_error(
            E.CONFLICT_STATE, str(error),
            details={"action": error.action, "current_status": error.current_status},
        )

    @app.errorhandler(StaleRecordError)
    @_discards_pending
    def _stale(error: StaleRecordError):
        return api_error(E.CONFLICT_STALE, str(error))

    @app.errorhandler(HTTPException)
    def _http(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        code = {
            401: E.UNAUTHORIZED,
            403: E.FORBIDDEN,
            404: E.NOT_FOUND,
            413: E.PAYLOAD_TOO_LARGE,
            415: E.UNSUPPORTED_MEDIA,
            429: E.RATE_LIMITED,
        }.get(error.code, E.VALIDATION_INVALID if (error.code or 500) < 500 else E.INTERNAL)
        return api_error(code, error.description or error.name, status=error.code)

    @app.errorhandler(Exception)
    def _unexpected(error: Exception):
        from accredit.services.activity_log import ActivityLogger

        logger.exception("Unhandled error on %s %s", request.method, request.path)
        db.session.rollback()
        ActivityLogger.record(
            "system_error",
            None,
            details={"path": request.path, "method": request.method},
            error=error,
        )
        # Stack traces stay in the operator log; callers get a generic message.
        return api_error(E.INTERNAL, "Internal server error")
