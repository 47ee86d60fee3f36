"""JSON error envelope.

Every failed request answers with::

    {"error": "<message>", "code": "ERR_*", "details": {...}}   # details optional

Service exceptions map to a code and status through ``_SERVICE_ERRORS``;
werkzeug HTTP errors (404, 405, 429 ...) go through ``http_error``.
"""

from __future__ import annotations

from flask import jsonify

from connection_planner.core.exceptions import (
    ConflictError,
    ImmutableFieldError,
    NotFoundError,
    StaleVersionError,
    ValidationError,
)


class E:
    """Machine-readable error codes."""

    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"
    NOT_FOUND = "ERR_NOT_FOUND"
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    RATE_LIMITED = "ERR_RATE_LIMITED"
    INTERNAL = "ERR_INTERNAL"


# Exception class → (code, status, details builder).
_SERVICE_ERRORS = (
    (NotFoundError, E.NOT_FOUND, 404, lambda exc: None),
    (ValidationError, E.VALIDATION_INVALID, 400, lambda exc: exc.details),
    (ImmutableFieldError, E.VALIDATION_CONSTRAINT, 400, lambda exc: {exc.field: "immutable"}),
    (ConflictError, E.CONFLICT_DUPLICATE, 409, lambda exc: {exc.field: "duplicate"}),
    (StaleVersionError, E.CONFLICT_STATE, 409, lambda exc: None),
)

SERVICE_EXCEPTIONS = tuple(entry[0] for entry in _SERVICE_ERRORS)

_HTTP_CODES = {
    404: E.NOT_FOUND,
    405: E.METHOD_NOT_ALLOWED,
    429: E.RATE_LIMITED,
}


def api_error(code: str, message: str, status: int, details: dict | None = None):
    """Return ``(response, status)`` carrying the error envelope."""
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status


def service_error(exc: Exception):
    """Envelope for one of SERVICE_EXCEPTIONS."""
    for exc_type, code, status, details in _SERVICE_ERRORS:
        if isinstance(exc, exc_type):
            return api_error(code, str(exc), status, details(exc))
    raise TypeError(f"{type(exc).__name__} is not a service exception")


def http_error(exc, details: dict | None = None):
    """Envelope for a werkzeug HTTPException; unknown 4xx codes map to VALIDATION_INVALID."""
    status = exc.code or 500
    if status >= 500:
        return internal_error()
    code = _HTTP_CODES.get(status, E.VALIDATION_INVALID)
    return api_error(code, exc.description or exc.name, status, details)


def internal_error():
    """Opaque 500: nothing about the cause reaches the client."""
    return api_error(E.INTERNAL, "Internal server error", 500)
