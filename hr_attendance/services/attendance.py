from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, NoReturn

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hr_attendance.errors import ApiError
from hr_attendance.models import (
    OPEN_SESSION_STATUSES,
    AttendanceRecord,
    AttendanceStatus,
    AuditActorType,
    Employee,
    WorkMode,
)
from hr_attendance.services.calendar import DbShiftPolicyProvider, ShiftPolicyProvider
from hr_attendance.services.events import StatusChangeEvent, emit_status_change
from hr_attendance.services.guards import (
    GuardResult,
    can_clock_in,
    can_clock_out,
    can_end_break,
    can_start_break,
)
from hr_attendance.services.invariants import ensure_record_invariants
from hr_attendance.services.shift_policy import as_utc, local_day, require_aware
from hr_attendance.services.work_time import (
    BreakSession,
    WorkTimeResult,
    calculate_early_exit,
    calculate_final_work_time,
    calculate_lateness,
    calculate_live_work_time,
    calculate_overtime_minutes,
    closed_break_minutes,
    minutes_to_hours,
    parse_break_sessions,
    serialize_break_sessions,
)

logger = logging.getLogger("hr_attendance.attendance")


@dataclass(frozen=True)
class TodayStatus:
    day_date: date
    record: AttendanceRecord | None
    live: WorkTimeResult | None
    can_clock_in: GuardResult
    can_clock_out: GuardResult
    can_start_break: GuardResult
    can_end_break: GuardResult


def _normalize_now(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return require_aware(now)


def _resolve_active_employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    if not employee.is_active:
        raise ApiError(
            status_code=403,
            code="EMPLOYEE_INACTIVE",
            message="Inactive employee cannot perform attendance actions.",
        )
    return employee


def get_record_for_day(db: Session, *, employee_id: int, day_date: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.day_date == day_date,
        )
    )


def resolve_working_record(db: Session, *, employee_id: int, now: datetime) -> AttendanceRecord | None:
    """Today's record, unless yesterday's overnight session is still open."""
    today = local_day(now)
    open_record = db.scalar(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.day_date.in_([today, today - timedelta(days=1)]),
            AttendanceRecord.clock_in_utc.is_not(None),
            AttendanceRecord.clock_out_utc.is_(None),
        )
        .order_by(AttendanceRecord.day_date.desc())
        .limit(1)
    )
    if open_record is not None:
        return open_record
    return get_record_for_day(db, employee_id=employee_id, day_date=today)


def _raise_denied(code: str, guard: GuardResult) -> NoReturn:
    raise ApiError(status_code=409, code=code, message=guard.reason or "Action not allowed.")


def _commit_record(
    db: Session,
    record: AttendanceRecord,
    *,
    previous_status: AttendanceStatus | None,
    actor_id: str,
    source: str,
) -> AttendanceRecord:
    ensure_record_invariants(record)
    try:
        db.flush()
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
                actor_type=AuditActorType.EMPLOYEE,
                actor_id=actor_id,
            ),
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="ATTENDANCE_ALREADY_EXISTS",
            message="Attendance record for this day already exists.",
        ) from exc
    db.refresh(record)
    return record


def clock_in(
    db: Session,
    *,
    employee_id: int,
    now: datetime | None = None,
    work_mode: WorkMode = WorkMode.OFFICE,
    location: dict[str, Any] | None = None,
    device_info: dict[str, Any] | None = None,
    actor_id: str | None = None,
    policy_provider: ShiftPolicyProvider | None = None,
) -> AttendanceRecord:
    now_utc = _normalize_now(now)
    _resolve_active_employee(db, employee_id)
    day_date = local_day(now_utc)
    provider = policy_provider or DbShiftPolicyProvider(db)
    policy = provider.resolve(employee_id, day_date)

    record = get_record_for_day(db, employee_id=employee_id, day_date=day_date)
    guard = can_clock_in(record, policy, now_utc)
    if not guard.allowed:
        logger.info(
            "attendance_clock_in_denied",
            extra={"employee_id": employee_id, "day_date": day_date.isoformat(), "reason": guard.reason},
        )
        _raise_denied("CLOCK_IN_DENIED", guard)

    actor = actor_id or f"employee:{employee_id}"
    previous_status = AttendanceStatus(record.status) if record is not None else None
    if record is None:
        record = AttendanceRecord(
            employee_id=employee_id,
            day_date=day_date,
            created_by=actor,
            break_sessions=[],
        )
        db.add(record)

    lateness = calculate_lateness(now_utc, policy, day_date)
    record.clock_in_utc = now_utc
    record.status = AttendanceStatus.IN_PROGRESS
    record.status_reason = None
    record.work_mode = work_mode
    record.location = location
    record.device_info = device_info
    record.is_late = lateness.is_late
    record.late_minutes = lateness.late_minutes
    record.totals_are_final = False
    record.updated_by = actor
    if policy is not None and policy.shift_id is not None:
        record.shift_id = policy.shift_id

    record = _commit_record(db, record, previous_status=previous_status, actor_id=actor, source="clock_in")
    logger.info(
        "attendance_clock_in",
        extra={
            "employee_id": employee_id,
            "record_id": record.id,
            "day_date": day_date.isoformat(),
            "is_late": record.is_late,
            "late_minutes": record.late_minutes,
            "work_mode": work_mode.value,
        },
    )
    return record


def clock_out(
    db: Session,
    *,
    employee_id: int,
    now: datetime | None = None,
    actor_id: str | None = None,
    policy_provider: ShiftPolicyProvider | None = None,
) -> AttendanceRecord:
    now_utc = _normalize_now(now)
    _resolve_active_employee(db, employee_id)
    record = resolve_working_record(db, employee_id=employee_id, now=now_utc)
    provider = policy_provider or DbShiftPolicyProvider(db)
    policy = provider.resolve(employee_id, record.day_date if record is not None else local_day(now_utc))

    guard = can_clock_out(record, policy, now_utc)
    if record is None or not guard.allowed:
        logger.info(
            "attendance_clock_out_denied",
            extra={"employee_id": employee_id, "reason": guard.reason},
        )
        _raise_denied("CLOCK_OUT_DENIED", guard)

    previous_status = AttendanceStatus(record.status)
    sessions = [
        BreakSession(break_in=session.break_in, break_out=now_utc) if session.is_open else session
        for session in parse_break_sessions(record.break_sessions)
    ]
    clock_in_utc = as_utc(record.clock_in_utc)
    provisional = calculate_final_work_time(clock_in_utc, now_utc, sessions)  # type: ignore[arg-type]
    early_exit = calculate_early_exit(now_utc, policy, record.day_date)
    overtime_minutes = calculate_overtime_minutes(provisional.work_minutes, policy)

    actor = actor_id or f"employee:{employee_id}"
    record.break_sessions = serialize_break_sessions(sessions)
    record.clock_out_utc = now_utc
    record.total_worked_minutes = provisional.work_minutes
    record.total_break_minutes = provisional.break_minutes
    record.work_hours = provisional.work_hours
    record.overtime_minutes = overtime_minutes
    record.overtime_hours = minutes_to_hours(overtime_minutes)
    record.is_early_departure = early_exit.is_early_departure
    record.early_exit_minutes = early_exit.early_exit_minutes
    record.totals_are_final = False
    record.updated_by = actor
    # A day under correction review stays there until a decision is applied.
    if previous_status != AttendanceStatus.PENDING_CORRECTION:
        record.status = AttendanceStatus.COMPLETED
        record.status_reason = None

    record = _commit_record(db, record, previous_status=previous_status, actor_id=actor, source="clock_out")
    logger.info(
        "attendance_clock_out",
        extra={
            "employee_id": employee_id,
            "record_id": record.id,
            "day_date": record.day_date.isoformat(),
            "work_minutes": record.total_worked_minutes,
            "status": AttendanceStatus(record.status).value,
        },
    )
    return record


def start_break(
    db: Session,
    *,
    employee_id: int,
    now: datetime | None = None,
    actor_id: str | None = None,
) -> AttendanceRecord:
    now_utc = _normalize_now(now)
    _resolve_active_employee(db, employee_id)
    record = resolve_working_record(db, employee_id=employee_id, now=now_utc)
    guard = can_start_break(record)
    if record is None or not guard.allowed:
        _raise_denied("BREAK_START_DENIED", guard)

    previous_status = AttendanceStatus(record.status)
    sessions = parse_break_sessions(record.break_sessions)
    sessions.append(BreakSession(break_in=now_utc))
    actor = actor_id or f"employee:{employee_id}"
    record.break_sessions = serialize_break_sessions(sessions)
    if previous_status in OPEN_SESSION_STATUSES:
        record.status = AttendanceStatus.ON_BREAK
    record.updated_by = actor

    record = _commit_record(db, record, previous_status=previous_status, actor_id=actor, source="break_start")
    logger.info(
        "attendance_break_start",
        extra={"employee_id": employee_id, "record_id": record.id, "break_count": len(sessions)},
    )
    return record


def end_break(
    db: Session,
    *,
    employee_id: int,
    now: datetime | None = None,
    actor_id: str | None = None,
) -> AttendanceRecord:
    now_utc = _normalize_now(now)
    _resolve_active_employee(db, employee_id)
    record = resolve_working_record(db, employee_id=employee_id, now=now_utc)
    guard = can_end_break(record)
    if record is None or not guard.allowed:
        _raise_denied("BREAK_END_DENIED", guard)

    previous_status = AttendanceStatus(record.status)
    sessions = [
        BreakSession(break_in=session.break_in, break_out=now_utc) if session.is_open else session
        for session in parse_break_sessions(record.break_sessions)
    ]
    actor = actor_id or f"employee:{employee_id}"
    record.break_sessions = serialize_break_sessions(sessions)
    closed_minutes = closed_break_minutes(sessions)
    record.total_break_minutes = closed_minutes
    if previous_status in OPEN_SESSION_STATUSES:
        record.status = AttendanceStatus.IN_PROGRESS
    record.updated_by = actor

    record = _commit_record(db, record, previous_status=previous_status, actor_id=actor, source="break_end")
    logger.info(
        "attendance_break_end",
        extra={"employee_id": employee_id, "record_id": record.id, "total_break_minutes": closed_minutes},
    )
    return record


def get_today_status(
    db: Session,
    *,
    employee_id: int,
    now: datetime | None = None,
    policy_provider: ShiftPolicyProvider | None = None,
) -> TodayStatus:
    now_utc = _normalize_now(now)
    _resolve_active_employee(db, employee_id)
    record = resolve_working_record(db, employee_id=employee_id, now=now_utc)
    day_date = record.day_date if record is not None else local_day(now_utc)
    provider = policy_provider or DbShiftPolicyProvider(db)
    policy = provider.resolve(employee_id, day_date)

    live: WorkTimeResult | None = None
    clock_in_utc = as_utc(record.clock_in_utc) if record is not None else None
    if record is not None and clock_in_utc is not None:
        clock_out_utc = as_utc(record.clock_out_utc)
        if clock_out_utc is None:
            live = calculate_live_work_time(clock_in_utc, now_utc, record.break_sessions)
        else:
            live = calculate_final_work_time(clock_in_utc, clock_out_utc, record.break_sessions)

    return TodayStatus(
        day_date=day_date,
        record=record,
        live=live,
        can_clock_in=can_clock_in(
            get_record_for_day(db, employee_id=employee_id, day_date=local_day(now_utc)),
            policy,
            now_utc,
        ),
        can_clock_out=can_clock_out(record, policy, now_utc),
        can_start_break=can_start_break(record),
        can_end_break=can_end_break(record),
    )
