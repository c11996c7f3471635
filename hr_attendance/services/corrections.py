from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from hr_attendance.errors import ApiError
from hr_attendance.models import (
    OPEN_SESSION_STATUSES,
    PROTECTED_STATUSES,
    AttendanceRecord,
    AttendanceRemark,
    AttendanceStatus,
    AuditActorType,
    CorrectionStatus,
)
from hr_attendance.services.calendar import DbShiftPolicyProvider, ShiftPolicyProvider
from hr_attendance.services.events import StatusChangeEvent, emit_status_change
from hr_attendance.services.finalization import finalize_with_shift
from hr_attendance.services.invariants import ensure_record_invariants
from hr_attendance.services.shift_policy import FinalizationThresholds, as_utc, require_aware
from hr_attendance.services.work_time import parse_break_sessions, serialize_break_sessions

logger = logging.getLogger("hr_attendance.corrections")


def _get_record(db: Session, record_id: int) -> AttendanceRecord:
    record = db.get(AttendanceRecord, record_id)
    if record is None:
        raise ApiError(status_code=404, code="ATTENDANCE_RECORD_NOT_FOUND", message="Attendance record not found.")
    return record


def _has_pending_correction(record: AttendanceRecord) -> bool:
    return (
        AttendanceStatus(record.status) == AttendanceStatus.PENDING_CORRECTION
        or record.correction_status == CorrectionStatus.PENDING
    )


def _append_remark(db: Session, record: AttendanceRecord, remark: str | None, actor_id: str) -> None:
    text = (remark or "").strip()
    if not text:
        return
    db.add(AttendanceRemark(record_id=record.id, remark=text, created_by=actor_id))
    record.remarks = text


def _emit(
    db: Session,
    record: AttendanceRecord,
    previous_status: AttendanceStatus,
    *,
    source: str,
    actor_type: AuditActorType,
    actor_id: str,
) -> None:
    emit_status_change(
        db,
        StatusChangeEvent(
            record_id=record.id,
            employee_id=record.employee_id,
            day_date=record.day_date,
            previous_status=previous_status,
            new_status=AttendanceStatus(record.status),
            reason=record.status_reason,
            source=source,
            actor_type=actor_type,
            actor_id=actor_id,
        ),
    )


def request_correction(
    db: Session,
    *,
    employee_id: int,
    day_date: date,
    reason: str,
    actor_id: str,
) -> AttendanceRecord:
    record = db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.day_date == day_date,
        )
    )
    if record is None:
        raise ApiError(status_code=404, code="ATTENDANCE_RECORD_NOT_FOUND", message="Attendance record not found.")

    status = AttendanceStatus(record.status)
    if status in PROTECTED_STATUSES:
        raise ApiError(
            status_code=409,
            code="CORRECTION_NOT_ALLOWED",
            message=f"Cannot request a correction for a {status.value} day.",
        )
    if status in OPEN_SESSION_STATUSES:
        raise ApiError(
            status_code=409,
            code="CORRECTION_NOT_ALLOWED",
            message="Clock out before requesting a correction.",
        )
    if record.correction_status == CorrectionStatus.PENDING:
        raise ApiError(status_code=409, code="CORRECTION_ALREADY_PENDING", message="A correction is already pending.")

    record.correction_requested = True
    record.correction_reason = reason.strip()
    record.correction_status = CorrectionStatus.PENDING
    record.status = AttendanceStatus.PENDING_CORRECTION
    record.half_day_type = None
    record.status_reason = f"Correction requested: {record.correction_reason}"
    record.updated_by = actor_id

    ensure_record_invariants(record)
    _emit(
        db,
        record,
        status,
        source="correction_requested",
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=actor_id,
    )
    db.commit()
    db.refresh(record)
    logger.info(
        "attendance_correction_requested",
        extra={"record_id": record.id, "employee_id": employee_id, "day_date": day_date.isoformat()},
    )
    return record


def flag_for_correction(
    db: Session,
    *,
    record_id: int,
    reason: str,
    actor_id: str,
    now: datetime | None = None,
) -> AttendanceRecord:
    record = _get_record(db, record_id)
    status = AttendanceStatus(record.status)
    if status in PROTECTED_STATUSES:
        raise ApiError(
            status_code=409,
            code="CORRECTION_NOT_ALLOWED",
            message=f"Cannot flag a {status.value} day for correction.",
        )

    record.flagged_reason = reason.strip()
    record.flagged_by = actor_id
    record.flagged_at = require_aware(now) if now is not None else datetime.now(timezone.utc)
    record.correction_requested = True
    record.correction_status = CorrectionStatus.PENDING
    record.status = AttendanceStatus.PENDING_CORRECTION
    record.half_day_type = None
    record.status_reason = f"Flagged for correction: {record.flagged_reason}"
    record.totals_are_final = False
    record.updated_by = actor_id

    ensure_record_invariants(record)
    _emit(db, record, status, source="correction_flagged", actor_type=AuditActorType.ADMIN, actor_id=actor_id)
    db.commit()
    db.refresh(record)
    return record


def list_pending_corrections(
    db: Session,
    *,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AttendanceRecord], int]:
    condition = or_(
        AttendanceRecord.status == AttendanceStatus.PENDING_CORRECTION,
        AttendanceRecord.correction_status == CorrectionStatus.PENDING,
    )
    total = db.scalar(select(func.count(AttendanceRecord.id)).where(condition)) or 0
    items = db.scalars(
        select(AttendanceRecord)
        .where(condition)
        .order_by(AttendanceRecord.day_date.desc(), AttendanceRecord.id.desc())
        .offset(max(0, offset))
        .limit(max(1, min(limit, 500)))
    ).all()
    return list(items), int(total)


def apply_correction_decision(
    db: Session,
    *,
    record_id: int,
    approve: bool,
    actor_id: str,
    clock_in_utc: datetime | None = None,
    clock_out_utc: datetime | None = None,
    break_sessions: list[dict[str, Any]] | None = None,
    note: str | None = None,
    now: datetime | None = None,
    policy_provider: ShiftPolicyProvider | None = None,
    thresholds: FinalizationThresholds | None = None,
) -> AttendanceRecord:
    """Apply an approve/reject decision and re-run finalization on the corrected facts."""
    record = _get_record(db, record_id)
    if not _has_pending_correction(record):
        raise ApiError(status_code=409, code="NO_PENDING_CORRECTION", message="Record has no pending correction.")

    previous_status = AttendanceStatus(record.status)
    decided_at = require_aware(now) if now is not None else datetime.now(timezone.utc)

    if approve:
        if clock_in_utc is not None:
            record.clock_in_utc = require_aware(clock_in_utc, name="clock_in_utc")
        if clock_out_utc is not None:
            record.clock_out_utc = require_aware(clock_out_utc, name="clock_out_utc")
        if break_sessions is not None:
            try:
                record.break_sessions = serialize_break_sessions(parse_break_sessions(break_sessions))
            except (TypeError, ValueError, AttributeError) as exc:
                raise ApiError(status_code=422, code="INVALID_BREAK_SESSIONS", message=str(exc)) from exc
        if as_utc(record.clock_in_utc) is not None and as_utc(record.clock_out_utc) is None:
            raise ApiError(
                status_code=422,
                code="CORRECTION_INCOMPLETE",
                message="Approving a correction requires a clock-out time.",
            )

    record.correction_status = CorrectionStatus.APPROVED if approve else CorrectionStatus.REJECTED
    record.correction_requested = False
    record.corrected_by = actor_id
    record.corrected_at = decided_at
    record.updated_by = actor_id
    _append_remark(db, record, note, actor_id)

    if as_utc(record.clock_in_utc) is None:
        record.status = AttendanceStatus.ABSENT
        record.half_day_type = None
        record.status_reason = "No attendance recorded (correction {})".format("approved" if approve else "rejected")
    elif as_utc(record.clock_out_utc) is not None:
        provider = policy_provider or DbShiftPolicyProvider(db)
        ensure_record_invariants(record)
        finalize_with_shift(
            record,
            provider.resolve(record.employee_id, record.day_date),
            thresholds or FinalizationThresholds.from_settings(),
        )
    else:
        # Rejected with the clock-out still missing: the day stays under review.
        record.status_reason = "Correction rejected - clock-out still missing"

    ensure_record_invariants(record)
    _emit(
        db,
        record,
        previous_status,
        source="correction_decision",
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
    )
    db.commit()
    db.refresh(record)
    logger.info(
        "attendance_correction_decided",
        extra={
            "record_id": record.id,
            "approved": approve,
            "previous_status": previous_status.value,
            "new_status": AttendanceStatus(record.status).value,
        },
    )
    return record
