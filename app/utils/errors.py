"""Standardised API responses.

Usage
-----
    from app.utils.errors import api_error, result_response, E

    return api_error(E.NOT_FOUND, "ItemDetail not found")
    return result_response(decide_item(...))
"""

from __future__ import annotations

from flask import jsonify

from app.services.approval_result import ApprovalOutcome, ApprovalResult


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation - HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found - HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict - HTTP 409
    CONFLICT_CHAIN = "ERR_CONFLICT_CHAIN"

    # Server - HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_CHAIN: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}

_OUTCOME_CODES: dict[ApprovalOutcome, str] = {
    ApprovalOutcome.NOT_FOUND: E.NOT_FOUND,
    ApprovalOutcome.VALIDATION_FAILED: E.VALIDATION_INVALID,
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
        Human-readable explanation for the tracking UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` - drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def result_response(result: ApprovalResult, *, created: bool = False):
    """Translate an ApprovalResult into a Flask response.

    OK maps to 200 (201 when ``created``), DUPLICATE_SKIPPED to 200, and the
    failure outcomes to the standard error body.
    """
    code = _OUTCOME_CODES.get(result.outcome)
    if code is not None:
        return api_error(code, result.message, details=result.details or None)

    status = 201 if created and result.outcome is ApprovalOutcome.OK else 200
    return jsonify(result.to_dict()), status
