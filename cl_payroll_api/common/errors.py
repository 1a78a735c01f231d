# cl_payroll_api/common/errors.py
from flask import Blueprint, current_app
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import IntegrityError
from cl_payroll_api.common.http import fail

bp_errors = Blueprint("errors", __name__)


class APIError(Exception):
    """Base error carrying an HTTP status and a machine readable code."""
    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message, code=None, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload


class ValidationError(APIError):
    """Missing or malformed mandatory input. `fields` names the offenders."""
    status_code = 422
    code = "VALIDATION_ERROR"

    def __init__(self, message, fields=None, payload=None):
        self.fields = list(fields or [])
        detail = dict(payload or {})
        if self.fields:
            detail.setdefault("fields", self.fields)
        super().__init__(message, payload=detail or None)


class PeriodError(APIError):
    status_code = 422
    code = "PERIOD_ERROR"


class MissingPrerequisiteError(APIError):
    status_code = 409
    code = "MISSING_PREREQUISITE"


class StateTransitionError(APIError):
    status_code = 409
    code = "INVALID_TRANSITION"


class NotFoundError(APIError):
    status_code = 404
    code = "NOT_FOUND"


@bp_errors.app_errorhandler(APIError)
def _api_error(e: APIError):
    return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)

@bp_errors.app_errorhandler(HTTPException)
def _http(e: HTTPException):
    return fail(message=e.description or "HTTP error", status=e.code or 400)

@bp_errors.app_errorhandler(IntegrityError)
def _integrity(e: IntegrityError):
    # 409 for unique/FK violations
    return fail(message="Conflict / integrity error", status=409, code="CONSTRAINT_ERROR",
                detail=str(e.orig) if getattr(e, "orig", None) else str(e))

@bp_errors.app_errorhandler(Exception)
def _unhandled(e: Exception):
    current_app.logger.exception(e)
    return fail(message="Internal Server Error", status=500)
