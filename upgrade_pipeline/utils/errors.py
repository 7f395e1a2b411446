"""JSON error bodies for the Pipeline API.

Every error response has the same shape:

    {"error": "<message>", "code": "<E.* constant>", "details": {...}}

Usage
-----
    from upgrade_pipeline.utils.errors import E, api_error, exception_response

    return api_error(E.VALIDATION_REQUIRED, "ids must be a non-empty list")
    return exception_response(exc)      # code/status picked from the exception type
"""

from __future__ import annotations

from flask import jsonify

from upgrade_pipeline.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    OrchestrationError,
    ValidationError,
)


class E:
    """Machine-readable error codes.

    ``ERR_*`` for generic request problems, ``PIPELINE_*`` for audit and
    execution refusals.
    """

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"   # 400 missing field
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"     # 400 wrong type/shape
    VALIDATION_RULE = "ERR_VALIDATION_RULE"           # 422 well-formed but not allowed
    NOT_FOUND = "ERR_NOT_FOUND"                       # 404
    CONFLICT_STATE = "ERR_CONFLICT_STATE"             # 409 refused state transition
    INTERNAL = "ERR_INTERNAL"                         # 500
    PIPELINE_ORCHESTRATION = "PIPELINE_ORCHESTRATION"  # 400 audit cannot start


_STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.INTERNAL: 500,
    E.PIPELINE_ORCHESTRATION: 400,
}

# Checked in order; first isinstance match wins
_CODE_BY_EXCEPTION: tuple[tuple[type[Exception], str], ...] = (
    (NotFoundError, E.NOT_FOUND),
    (InvalidStateError, E.CONFLICT_STATE),
    (ValidationError, E.VALIDATION_RULE),
    (OrchestrationError, E.PIPELINE_ORCHESTRATION),
)


def api_error(code: str, message: str, *, status: int | None = None,
              details: dict | None = None):
    """Return ``(response, status)`` for a Flask view.

    ``status`` defaults to the code's standard status, then 400.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)


def exception_response(exc: Exception):
    """Map a pipeline exception to its error response.

    Structured context comes from ``exc.to_dict()`` (or ``exc.details``
    for ValidationError). Unknown types become an opaque 500.
    """
    for exc_type, code in _CODE_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            if isinstance(exc, ValidationError):
                details = exc.details
            else:
                details = exc.to_dict()
            return api_error(code, str(exc), details=details)
    return api_error(E.INTERNAL, "Internal server error")
