from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class AttendanceInvariantError(ApiError):
    """Raised when a record would be persisted in a state the data model forbids.

    ``field`` names the attribute that conflicts so admin edits can be rejected
    with a targeted message instead of a generic failure.
    """

    def __init__(self, field: str, message: str):
        super().__init__(status_code=409, code="ATTENDANCE_INVARIANT_VIOLATION", message=message)
        self.field = field


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)


HTTP_ERROR_CODES = {
    401: "INVALID_TOKEN",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
}


def validation_message(errors: list[dict]) -> str:
    """Flatten pydantic errors into ``field: reason`` pairs, e.g. ``body.clock_out_utc: ...``."""
    parts = []
    for item in errors:
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg', 'invalid value')}" if location else str(item.get("msg")))
    return "; ".join(parts) or "Request validation failed."
