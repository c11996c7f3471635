import asyncio
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hr_attendance.db import engine
from hr_attendance.errors import (
    HTTP_ERROR_CODES,
    ApiError,
    AttendanceInvariantError,
    error_response,
    get_request_id,
    validation_message,
)
from hr_attendance.logging_utils import setup_json_logging
from hr_attendance.routers import admin, attendance
from hr_attendance.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from hr_attendance.settings import get_cors_origins, get_settings
from hr_attendance.worker import ReconciliationWorker

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger("hr_attendance.request")
startup_logger = logging.getLogger("hr_attendance.startup")


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    started = time.perf_counter()
    response = None
    try:
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        # actor fields are filled in by the auth dependencies, when the route has any
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code if response is not None else 500,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                "actor": getattr(request.state, "actor", None),
                "actor_id": getattr(request.state, "actor_id", None),
                "employee_id": getattr(request.state, "employee_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if isinstance(exc, AttendanceInvariantError):
        logger.warning("attendance_invariant_rejected", extra={"request_id": get_request_id(request), "field": exc.field})
    return error_response(request, status_code=exc.status_code, code=exc.code, message=exc.message)


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail or "Request failed."),
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(request, status_code=422, code="VALIDATION_ERROR", message=validation_message(exc.errors()))


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={"request_id": get_request_id(request), "method": request.method, "path": request.url.path},
    )
    return error_response(request, status_code=500, code="INTERNAL_ERROR", message="Unexpected server error.")


app.include_router(attendance.router)
app.include_router(admin.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    startup_logger.log(
        logging.INFO if result.ok else logging.ERROR,
        "schema_guard_ok" if result.ok else "schema_guard_failed",
        extra=result.to_dict(),
    )
    if not result.ok and settings.schema_guard_strict:
        raise RuntimeError("Runtime schema guard failed: " + "; ".join(result.issues))


@app.on_event("startup")
async def start_reconciliation_worker() -> None:
    if not settings.reconciliation_worker_enabled:
        return
    worker = ReconciliationWorker(settings.reconciliation_worker_interval_seconds)
    worker.start()
    app.state.reconciliation_worker = worker
    startup_logger.info(
        "reconciliation_worker_started",
        extra={
            "interval_seconds": worker.interval_seconds,
            "run_time_local": settings.reconciliation_run_time_local,
            "timezone": settings.attendance_timezone,
        },
    )


@app.on_event("shutdown")
async def stop_reconciliation_worker() -> None:
    worker: ReconciliationWorker | None = getattr(app.state, "reconciliation_worker", None)
    if worker is not None:
        await worker.stop()
    app.state.reconciliation_worker = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    worker: ReconciliationWorker | None = getattr(app.state, "reconciliation_worker", None)
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "reconciliation_worker": {
            "enabled": settings.reconciliation_worker_enabled,
            "running": worker is not None and worker.running,
            "run_time_local": settings.reconciliation_run_time_local,
        },
    }
