from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from hr_attendance.audit import audit_context_from_request, log_audit
from hr_attendance.db import get_db
from hr_attendance.models import AuditActorType
from hr_attendance.schemas import (
    AdminRecordUpdateRequest,
    AttendanceRecordRead,
    AttendanceRemarkRead,
    CorrectionDecisionRequest,
    CorrectionListResponse,
    ExogenousStatusRequest,
    FinalizationStatusResponse,
    FinalizeRequest,
    FlagRecordRequest,
    MonthlySummaryResponse,
    ReconciliationResultResponse,
    RemarkCreateRequest,
)
from hr_attendance.security import Actor, Capability, require_capability
from hr_attendance.services.corrections import (
    apply_correction_decision,
    flag_for_correction,
    list_pending_corrections,
)
from hr_attendance.services.manual_overrides import (
    add_remark,
    delete_attendance_record,
    update_attendance_record,
    upsert_exogenous_status,
)
from hr_attendance.services.monthly import get_monthly_summary
from hr_attendance.services.reconciliation import (
    default_target_date,
    get_finalization_status,
    run_reconciliation,
)

router = APIRouter(prefix="/api/admin/attendance", tags=["admin"])


def _audit(
    db: Session,
    request: Request,
    actor: Actor,
    *,
    action: str,
    entity_id: str | None,
    details: dict | None = None,
    entity_type: str = "attendance_record",
) -> None:
    log_audit(
        db,
        audit_context_from_request(request, AuditActorType.ADMIN, actor.subject),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
    )


@router.post("/finalize", response_model=ReconciliationResultResponse)
def trigger_finalization(
    payload: FinalizeRequest,
    request: Request,
    actor: Actor = Depends(require_capability(Capability.FINALIZATION_TRIGGER)),
    db: Session = Depends(get_db),
) -> ReconciliationResultResponse:
    result = run_reconciliation(payload.target_date, "admin", db=db)
    _audit(
        db,
        request,
        actor,
        action="ATTENDANCE_FINALIZATION_TRIGGERED",
        entity_type="reconciliation_run",
        entity_id=result.target_date.isoformat(),
        details=result.to_dict(),
    )
    return ReconciliationResultResponse.model_validate(result)


@router.get("/finalization-status", response_model=FinalizationStatusResponse)
def finalization_status(
    target_date: date | None = Query(default=None),
    _actor: Actor = Depends(require_capability(Capability.FINALIZATION_TRIGGER)),
    db: Session = Depends(get_db),
) -> FinalizationStatusResponse:
    resolved = target_date or default_target_date(datetime.now(timezone.utc))
    return FinalizationStatusResponse.model_validate(get_finalization_status(db, resolved))


@router.get("/monthly/{employee_id}", response_model=MonthlySummaryResponse)
def employee_monthly_summary(
    employee_id: int,
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    _actor: Actor = Depends(require_capability(Capability.REPORTS_READ)),
    db: Session = Depends(get_db),
) -> MonthlySummaryResponse:
    return MonthlySummaryResponse.model_validate(get_monthly_summary(db, employee_id, year, month))


@router.patch("/records/{record_id}", response_model=AttendanceRecordRead)
def override_record(
    record_id: int,
    payload: AdminRecordUpdateRequest,
    request: Request,
    actor: Actor = Depends(require_capability(Capability.ATTENDANCE_ADMIN)),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    record = update_attendance_record(db, record_id=record_id, payload=payload, updated_by=actor.subject)
    _audit(
        db,
        request,
        actor,
        action="ATTENDANCE_RECORD_UPDATED",
        entity_id=str(record.id),
        details=payload.model_dump(mode="json", exclude_none=True),
    )
    return AttendanceRecordRead.model_validate(record)


@router.delete("/records/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_record(
    record_id: int,
    request: Request,
    actor: Actor = Depends(require_capability(Capability.ATTENDANCE_ADMIN)),
    db: Session = Depends(get_db),
) -> None:
    record = delete_attendance_record(db, record_id)
    _audit(
        db,
        request,
        actor,
        action="ATTENDANCE_RECORD_DELETED",
        entity_id=str(record_id),
        details={"employee_id": record.employee_id, "day_date": record.day_date.isoformat()},
    )


@router.post(
    "/records/{record_id}/remarks",
    response_model=AttendanceRemarkRead,
    status_code=status.HTTP_201_CREATED,
)
def create_remark(
    record_id: int,
    payload: RemarkCreateRequest,
    request: Request,
    actor: Actor = Depends(require_capability(Capability.ATTENDANCE_ADMIN)),
    db: Session = Depends(get_db),
) -> AttendanceRemarkRead:
    remark = add_remark(db, record_id=record_id, remark=payload.remark, created_by=actor.subject)
    _audit(db, request, actor, action="ATTENDANCE_REMARK_ADDED", entity_id=str(record_id))
    return AttendanceRemarkRead.model_validate(remark)


@router.get("/corrections", response_model=CorrectionListResponse)
def pending_corrections(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _actor: Actor = Depends(require_capability(Capability.CORRECTION_DECIDE)),
    db: Session = Depends(get_db),
) -> CorrectionListResponse:
    items, total = list_pending_corrections(db, limit=limit, offset=offset)
    return CorrectionListResponse(
        items=[AttendanceRecordRead.model_validate(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/corrections/{record_id}/decision", response_model=AttendanceRecordRead)
def decide_correction(
    record_id: int,
    payload: CorrectionDecisionRequest,
    request: Request,
    actor: Actor = Depends(require_capability(Capability.CORRECTION_DECIDE)),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    record = apply_correction_decision(
        db,
        record_id=record_id,
        approve=payload.approve,
        actor_id=actor.subject,
        clock_in_utc=payload.clock_in_utc,
        clock_out_utc=payload.clock_out_utc,
        break_sessions=(
            [item.model_dump() for item in payload.break_sessions] if payload.break_sessions is not None else None
        ),
        note=payload.note,
    )
    _audit(
        db,
        request,
        actor,
        action="ATTENDANCE_CORRECTION_APPROVED" if payload.approve else "ATTENDANCE_CORRECTION_REJECTED",
        entity_id=str(record.id),
        details={"status": record.status.value if record.status is not None else None},
    )
    return AttendanceRecordRead.model_validate(record)


@router.post("/records/{record_id}/flag", response_model=AttendanceRecordRead)
def flag_record(
    record_id: int,
    payload: FlagRecordRequest,
    request: Request,
    actor: Actor = Depends(require_capability(Capability.CORRECTION_DECIDE)),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    record = flag_for_correction(db, record_id=record_id, reason=payload.reason, actor_id=actor.subject)
    _audit(db, request, actor, action="ATTENDANCE_RECORD_FLAGGED", entity_id=str(record.id))
    return AttendanceRecordRead.model_validate(record)


@router.post("/exogenous", response_model=AttendanceRecordRead)
def seed_exogenous_status(
    payload: ExogenousStatusRequest,
    request: Request,
    actor: Actor = Depends(require_capability(Capability.ATTENDANCE_ADMIN)),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    record = upsert_exogenous_status(db, payload=payload, created_by=actor.subject)
    _audit(
        db,
        request,
        actor,
        action="ATTENDANCE_EXOGENOUS_STATUS_SET",
        entity_id=str(record.id),
        details={"status": payload.status.value, "day_date": payload.day_date.isoformat()},
    )
    return AttendanceRecordRead.model_validate(record)
