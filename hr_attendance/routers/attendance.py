from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from hr_attendance.audit import audit_context_from_request, client_ip, log_audit
from hr_attendance.db import get_db
from hr_attendance.errors import ApiError
from hr_attendance.models import AuditActorType
from hr_attendance.schemas import (
    AttendanceRecordRead,
    ClockInRequest,
    CorrectionRequestCreate,
    GuardRead,
    MonthlySummaryResponse,
    TodayStatusResponse,
    WorkTimeRead,
)
from hr_attendance.security import Actor, require_employee_actor
from hr_attendance.services.attendance import clock_in, clock_out, end_break, get_today_status, start_break
from hr_attendance.services.corrections import request_correction
from hr_attendance.services.monthly import get_monthly_summary
from hr_attendance.services.shift_policy import attendance_timezone

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


def _employee_id(actor: Actor, request: Request) -> int:
    if actor.employee_id is None:
        raise ApiError(status_code=403, code="EMPLOYEE_IDENTITY_REQUIRED", message="Token is not bound to an employee.")
    request.state.employee_id = actor.employee_id
    return actor.employee_id


@router.post("/clock-in", response_model=AttendanceRecordRead, status_code=status.HTTP_201_CREATED)
def employee_clock_in(
    payload: ClockInRequest,
    request: Request,
    actor: Actor = Depends(require_employee_actor),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    device_info = dict(payload.device_info or {})
    device_info.setdefault("user_agent", request.headers.get("user-agent"))
    device_info.setdefault("ip", client_ip(request))
    record = clock_in(
        db,
        employee_id=_employee_id(actor, request),
        work_mode=payload.work_mode,
        location=payload.location,
        device_info=device_info,
        actor_id=actor.subject,
    )
    return AttendanceRecordRead.model_validate(record)


@router.post("/clock-out", response_model=AttendanceRecordRead)
def employee_clock_out(
    request: Request,
    actor: Actor = Depends(require_employee_actor),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    record = clock_out(db, employee_id=_employee_id(actor, request), actor_id=actor.subject)
    return AttendanceRecordRead.model_validate(record)


@router.post("/break/start", response_model=AttendanceRecordRead)
def employee_break_start(
    request: Request,
    actor: Actor = Depends(require_employee_actor),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    record = start_break(db, employee_id=_employee_id(actor, request), actor_id=actor.subject)
    return AttendanceRecordRead.model_validate(record)


@router.post("/break/end", response_model=AttendanceRecordRead)
def employee_break_end(
    request: Request,
    actor: Actor = Depends(require_employee_actor),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    record = end_break(db, employee_id=_employee_id(actor, request), actor_id=actor.subject)
    return AttendanceRecordRead.model_validate(record)


@router.get("/today", response_model=TodayStatusResponse)
def employee_today(
    request: Request,
    actor: Actor = Depends(require_employee_actor),
    db: Session = Depends(get_db),
) -> TodayStatusResponse:
    today = get_today_status(db, employee_id=_employee_id(actor, request))
    return TodayStatusResponse(
        day_date=today.day_date,
        record=AttendanceRecordRead.model_validate(today.record) if today.record is not None else None,
        work_time=WorkTimeRead(**asdict(today.live)) if today.live is not None else None,
        can_clock_in=GuardRead(**asdict(today.can_clock_in)),
        can_clock_out=GuardRead(**asdict(today.can_clock_out)),
        can_start_break=GuardRead(**asdict(today.can_start_break)),
        can_end_break=GuardRead(**asdict(today.can_end_break)),
    )


@router.get("/monthly", response_model=MonthlySummaryResponse)
def employee_monthly(
    request: Request,
    year: int | None = Query(default=None, ge=2000, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    actor: Actor = Depends(require_employee_actor),
    db: Session = Depends(get_db),
) -> MonthlySummaryResponse:
    local_now = datetime.now(timezone.utc).astimezone(attendance_timezone())
    summary = get_monthly_summary(
        db,
        _employee_id(actor, request),
        year or local_now.year,
        month or local_now.month,
    )
    return MonthlySummaryResponse.model_validate(summary)


@router.post("/corrections", response_model=AttendanceRecordRead, status_code=status.HTTP_201_CREATED)
def employee_request_correction(
    payload: CorrectionRequestCreate,
    request: Request,
    actor: Actor = Depends(require_employee_actor),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    employee_id = _employee_id(actor, request)
    record = request_correction(
        db,
        employee_id=employee_id,
        day_date=payload.day_date,
        reason=payload.reason,
        actor_id=actor.subject,
    )
    log_audit(
        db,
        audit_context_from_request(request, AuditActorType.EMPLOYEE, actor.subject),
        action="ATTENDANCE_CORRECTION_REQUESTED",
        entity_type="attendance_record",
        entity_id=str(record.id),
        details={"employee_id": employee_id, "day_date": payload.day_date.isoformat()},
    )
    return AttendanceRecordRead.model_validate(record)
