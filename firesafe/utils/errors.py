"""Standardised API error responses.

Usage
-----
    from firesafe.utils.errors import api_error, E

    return api_error(E.VALIDATION_REQUIRED, "signature_url is required")

Blueprints register the domain-exception handlers once:

    register_error_handlers(projects_bp)
"""

from __future__ import annotations

import logging

from flask import jsonify

from firesafe.core.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransactionError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400 (malformed request) / 422 (business rule)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    WORK_INCOMPLETE = "ERR_WORK_INCOMPLETE"
    WORK_UNPAID = "ERR_WORK_UNPAID"

    # Identity – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.WORK_INCOMPLETE: 409,
    E.WORK_UNPAID: 409,
    E.UNAUTHORIZED: 401,
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
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (offending work order ids, field errors).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp):
    """Map the service-layer exception taxonomy onto HTTP responses for ``bp``."""

    @bp.errorhandler(AuthenticationError)
    def _handle_unauthenticated(exc):
        return api_error(E.UNAUTHORIZED, str(exc))

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(exc):
        return api_error(E.FORBIDDEN, str(exc))

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @bp.errorhandler(ValidationError)
    def _handle_validation(exc):
        return api_error(E.VALIDATION_CONSTRAINT, str(exc), details=exc.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(exc):
        details = {}
        if exc.current_status:
            details["current_status"] = exc.current_status
        ids = getattr(exc, "work_order_ids", None)
        if ids:
            details["work_order_ids"] = ids
        return api_error(exc.code, str(exc), details=details)

    @bp.errorhandler(TransactionError)
    def _handle_transaction(exc):
        logger.error("Transaction aborted: %s", exc.cause or exc)
        return api_error(E.DATABASE, "Transaction aborted; no changes were saved")

    return bp
