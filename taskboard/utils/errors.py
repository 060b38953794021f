"""Uniform JSON error bodies for the REST layer.

Every error response has the shape ``{"error": <message>, "code": <E.*>}``
plus an optional ``details`` object, so clients can branch on ``code``
instead of parsing messages::

    return api_error(E.VALIDATION_REQUIRED, "user_id is required")
    return api_error(E.PARTIAL_FAILURE, "1 of 3 sources failed", details={...})
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes. The HTTP status for each lives in ``STATUS``."""

    # malformed request (400)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    # well-formed request breaking a domain invariant (422)
    INVARIANT = "ERR_INVARIANT_VIOLATION"

    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    UNSUPPORTED_MEDIA = "ERR_UNSUPPORTED_MEDIA_TYPE"

    # directory and other collaborators
    EXTERNAL_UNAVAILABLE = "ERR_EXTERNAL_UNAVAILABLE"
    PARTIAL_FAILURE = "ERR_PARTIAL_FAILURE"

    INTERNAL = "ERR_INTERNAL"


STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.INVARIANT: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.UNSUPPORTED_MEDIA: 415,
    E.EXTERNAL_UNAVAILABLE: 503,
    E.PARTIAL_FAILURE: 207,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """``(response, status)`` tuple for a Flask view.

    ``status`` overrides ``STATUS[code]``; unknown codes fall back to 400.
    """
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or STATUS.get(code, 400)


def required(field: str):
    return api_error(E.VALIDATION_REQUIRED, f"{field} is required", details={"field": field})


def must_be_integer(field: str):
    return api_error(E.VALIDATION_INVALID, f"{field} must be an integer", details={"field": field})
