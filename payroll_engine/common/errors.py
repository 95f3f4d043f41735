# payroll_engine/common/errors.py
from flask import Blueprint
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import IntegrityError
from payroll_engine.common.http import fail

bp_errors = Blueprint("errors", __name__)


class APIError(Exception):
    """Error carrying an API error code and HTTP status."""
    def __init__(self, code, message, status_code=400, payload=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.payload = payload


class PayrollPreconditionError(APIError):
    """Employee or attendance data needed for a calculation is missing."""
    def __init__(self, message, payload=None, status_code=422):
        super().__init__("PAYROLL_PRECONDITION", message, status_code=status_code, payload=payload)


class BatchLockedError(APIError):
    """The payroll batch is approved/frozen/complete and refuses recalculation."""
    def __init__(self, batch_number, status):
        super().__init__(
            "BATCH_LOCKED",
            f"Batch {batch_number} is {status}; recalculation requires permission",
            status_code=409,
            payload={"batch": batch_number, "status": status},
        )


@bp_errors.app_errorhandler(HTTPException)
def _http(e: HTTPException):
    return fail(message=e.description or "HTTP error", status=e.code or 400)

@bp_errors.app_errorhandler(IntegrityError)
def _integrity(e: IntegrityError):
    # 409 for unique/FK violations
    return fail(message="Conflict / integrity error", status=409, detail=str(e.orig) if getattr(e, "orig", None) else str(e))

@bp_errors.app_errorhandler(APIError)
def _api_error(e: APIError):
    return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)

@bp_errors.app_errorhandler(Exception)
def _unhandled(e: Exception):
    return fail(message="Internal Server Error", status=500, detail=str(e))
