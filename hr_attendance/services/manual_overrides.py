from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from hr_attendance.errors import ApiError
from hr_attendance.models import (
    PROTECTED_STATUSES,
    AttendanceRecord,
    AttendanceRemark,
    AttendanceStatus,
    AuditActorType,
    Employee,
)
from hr_attendance.schemas import AdminRecordUpdateRequest, ExogenousStatusRequest
from hr_attendance.services.calendar import DbShiftPolicyProvider, ShiftPolicyProvider
from hr_attendance.services.events import StatusChangeEvent, emit_status_change
from hr_attendance.services.finalization import finalize_with_shift
from hr_attendance.services.invariants import HALF_DAY_TYPE_STATUSES, ensure_record_invariants
from hr_attendance.services.shift_policy import FinalizationThresholds, as_utc, attendance_timezone, parse_hhmm
from hr_attendance.services.work_time import calculate_final_work_time

logger = logging.getLogger("hr_attendance.manual_overrides")


def _ensure_employee_exists(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    return employee


def _get_record(db: Session, record_id: int) -> AttendanceRecord:
    record = db.get(AttendanceRecord, record_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attendance record not found")
    return record


def _parse_time(value: str) -> time:
    try:
        return parse_hhmm(value)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid time format") from exc


def _combine_utc(day_date: date, hhmm: str | None) -> datetime | None:
    if hhmm is None:
        return None
    parsed_time = _parse_time(hhmm)
    local_dt = datetime.combine(day_date, parsed_time, tzinfo=attendance_timezone())
    return local_dt.astimezone(timezone.utc)


def _emit(db: Session, record: AttendanceRecord, previous_status: AttendanceStatus | None, actor_id: str, source: str) -> None:
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
            actor_type=AuditActorType.ADMIN,
            actor_id=actor_id,
        ),
    )


def add_remark(db: Session, *, record_id: int, remark: str, created_by: str) -> AttendanceRemark:
    record = _get_record(db, record_id)
    text = remark.strip()
    if not text:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Remark must not be empty")
    entry = AttendanceRemark(record_id=record.id, remark=text, created_by=created_by)
    db.add(entry)
    record.remarks = text
    record.updated_by = created_by
    db.commit()
    db.refresh(entry)
    return entry


def update_attendance_record(
    db: Session,
    *,
    record_id: int,
    payload: AdminRecordUpdateRequest,
    updated_by: str,
    policy_provider: ShiftPolicyProvider | None = None,
    thresholds: FinalizationThresholds | None = None,
) -> AttendanceRecord:
    record = _get_record(db, record_id)
    previous_status = AttendanceStatus(record.status)

    times_changed = False
    if payload.clear_clock_out:
        record.clock_out_utc = None
        times_changed = True
    if payload.in_time is not None:
        record.clock_in_utc = _combine_utc(record.day_date, payload.in_time)
        times_changed = True
    if payload.out_time is not None:
        out_ts = _combine_utc(record.day_date, payload.out_time)
        in_ts = as_utc(record.clock_in_utc)
        if out_ts is not None and in_ts is not None and out_ts <= in_ts:
            # Out time before in time on the same local day means an overnight shift.
            out_ts = out_ts + timedelta(days=1)
        record.clock_out_utc = out_ts
        times_changed = True
    if payload.work_mode is not None:
        record.work_mode = payload.work_mode

    if payload.status is not None:
        record.status = payload.status
        record.status_reason = payload.status_reason or f"Set by admin {updated_by}"
        if payload.status not in HALF_DAY_TYPE_STATUSES:
            record.half_day_type = None
    elif payload.status_reason is not None:
        record.status_reason = payload.status_reason

    clock_in = as_utc(record.clock_in_utc)
    clock_out = as_utc(record.clock_out_utc)
    current_status = AttendanceStatus(record.status)
    if clock_in is not None and clock_out is not None and clock_out > clock_in:
        should_finalize = payload.refinalize or (
            times_changed and payload.status is None and current_status in HALF_DAY_TYPE_STATUSES
        )
        if should_finalize:
            provider = policy_provider or DbShiftPolicyProvider(db)
            ensure_record_invariants(record)
            finalize_with_shift(
                record,
                provider.resolve(record.employee_id, record.day_date),
                thresholds or FinalizationThresholds.from_settings(),
            )
        elif times_changed:
            provisional = calculate_final_work_time(clock_in, clock_out, record.break_sessions)
            record.total_worked_minutes = provisional.work_minutes
            record.total_break_minutes = provisional.break_minutes
            record.work_hours = provisional.work_hours
            record.totals_are_final = False

    if payload.remark:
        db.add(AttendanceRemark(record_id=record.id, remark=payload.remark.strip(), created_by=updated_by))
        record.remarks = payload.remark.strip()
    record.updated_by = updated_by

    try:
        ensure_record_invariants(record)
    except ApiError:
        db.rollback()
        raise
    _emit(db, record, previous_status, updated_by, "admin_override")
    db.commit()
    db.refresh(record)
    logger.info(
        "attendance_record_overridden",
        extra={
            "record_id": record.id,
            "previous_status": previous_status.value,
            "new_status": AttendanceStatus(record.status).value,
            "times_changed": times_changed,
        },
    )
    return record


def delete_attendance_record(db: Session, record_id: int) -> AttendanceRecord:
    record = _get_record(db, record_id)
    db.delete(record)
    db.commit()
    return record


def upsert_exogenous_status(
    db: Session,
    *,
    payload: ExogenousStatusRequest,
    created_by: str,
) -> AttendanceRecord:
    _ensure_employee_exists(db, payload.employee_id)
    if payload.status not in PROTECTED_STATUSES:
        raise ApiError(
            status_code=422,
            code="INVALID_EXOGENOUS_STATUS",
            message="Only leave, holiday or weekend can be pre-seeded.",
        )

    record = db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == payload.employee_id,
            AttendanceRecord.day_date == payload.day_date,
        )
    )
    previous_status: AttendanceStatus | None = None
    if record is None:
        record = AttendanceRecord(
            employee_id=payload.employee_id,
            day_date=payload.day_date,
            break_sessions=[],
            created_by=created_by,
        )
        db.add(record)
    else:
        previous_status = AttendanceStatus(record.status)
        if record.clock_in_utc is not None:
            raise ApiError(
                status_code=409,
                code="ATTENDANCE_HAS_CLOCK_IN",
                message="Day already has a clock-in; use a record override instead.",
            )

    record.status = payload.status
    record.status_reason = payload.reason or payload.status.value.capitalize()
    record.half_day_type = None
    record.updated_by = created_by

    ensure_record_invariants(record)
    db.flush()
    _emit(db, record, previous_status, created_by, "exogenous_status")
    db.commit()
    db.refresh(record)
    return record
