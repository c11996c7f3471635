from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hr_attendance.db import SessionLocal
from hr_attendance.errors import ApiError, AttendanceInvariantError
from hr_attendance.models import (
    LIVE_STATUSES,
    PROTECTED_STATUSES,
    AttendanceRecord,
    AttendanceStatus,
    CorrectionStatus,
    Employee,
    ReconciliationRun,
    ReconciliationRunStatus,
)
from hr_attendance.services.calendar import (
    AttendanceCalendar,
    DbAttendanceCalendar,
    DbShiftPolicyProvider,
    ShiftPolicyProvider,
)
from hr_attendance.services.events import StatusChangeEvent, emit_status_change, emit_status_changes
from hr_attendance.services.finalization import finalize_with_shift
from hr_attendance.services.invariants import ensure_record_invariants
from hr_attendance.services.shift_policy import (
    DEFAULT_SHIFT_POLICY,
    FinalizationThresholds,
    as_utc,
    attendance_timezone,
    parse_hhmm,
)
from hr_attendance.settings import get_settings

logger = logging.getLogger("hr_attendance.reconciliation")

NO_ATTENDANCE_REASON = "No attendance recorded"
MISSED_CLOCK_OUT_REASON = "Missed clock-out - requires correction"
LEAVE_REASON = "Approved leave"
HOLIDAY_REASON = "Company holiday"
WEEKEND_REASON = "Weekly off"

PHASE_SEED = "seed_missing_day_records"
PHASE_ABSENT = "mark_absent_for_no_clock_in"
PHASE_MISSED_CLOCK_OUT = "mark_missed_clock_outs"
PHASE_FINALIZE = "finalize_completed_records"

MAX_NIGHTLY_ATTEMPTS = 3


@dataclass
class ReconciliationResult:
    target_date: date
    trigger: str
    status: str
    seeded: int = 0
    marked_absent: int = 0
    marked_pending_correction: int = 0
    finalized: int = 0
    fallback_used: int = 0
    skipped_records: int = 0
    deferred_records: int = 0
    retry_after: datetime | None = None
    phase_errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_date": self.target_date.isoformat(),
            "trigger": self.trigger,
            "status": self.status,
            "seeded": self.seeded,
            "marked_absent": self.marked_absent,
            "marked_pending_correction": self.marked_pending_correction,
            "finalized": self.finalized,
            "fallback_used": self.fallback_used,
            "skipped_records": self.skipped_records,
            "deferred_records": self.deferred_records,
            "retry_after": self.retry_after.isoformat() if self.retry_after is not None else None,
            "phase_errors": dict(self.phase_errors),
        }


@dataclass(frozen=True)
class FinalizationStatus:
    target_date: date
    live_records: int
    missing_clock_outs: int
    pending_corrections: int
    counts_by_status: dict[str, int]
    last_run: ReconciliationRun | None


def default_target_date(now_utc: datetime | None = None) -> date:
    reference = now_utc or datetime.now(timezone.utc)
    return reference.astimezone(attendance_timezone()).date() - timedelta(days=1)


def _ensure_closed_day(target_date: date, now_utc: datetime) -> None:
    local_today = now_utc.astimezone(attendance_timezone()).date()
    if target_date >= local_today:
        raise ApiError(
            status_code=422,
            code="FINALIZATION_DATE_NOT_CLOSED",
            message="Only past days can be finalized.",
        )


def _acquire_run_lock(
    db: Session,
    *,
    target_date: date,
    trigger: str,
    now_utc: datetime,
) -> ReconciliationRun | None:
    lock_timeout = timedelta(minutes=max(1, int(get_settings().reconciliation_lock_timeout_minutes)))
    run = db.scalar(
        select(ReconciliationRun).where(ReconciliationRun.target_date == target_date).with_for_update()
    )
    if run is None:
        run = ReconciliationRun(
            target_date=target_date,
            status=ReconciliationRunStatus.RUNNING,
            trigger=trigger,
            attempts=1,
            started_at=now_utc,
            stats={},
        )
        db.add(run)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return None
        return run

    started_at = as_utc(run.started_at)
    if run.status == ReconciliationRunStatus.RUNNING and started_at is not None and now_utc - started_at < lock_timeout:
        db.rollback()
        return None

    run.status = ReconciliationRunStatus.RUNNING
    run.trigger = trigger
    run.attempts = int(run.attempts or 0) + 1
    run.started_at = now_utc
    run.finished_at = None
    run.last_error = None
    db.commit()
    return run


def _seed_status_for(
    employee_id: int,
    target_date: date,
    *,
    calendar: AttendanceCalendar,
    policy_provider: ShiftPolicyProvider,
) -> tuple[AttendanceStatus, str]:
    if calendar.is_on_approved_leave(employee_id, target_date):
        return AttendanceStatus.LEAVE, LEAVE_REASON
    if calendar.is_company_holiday(target_date):
        return AttendanceStatus.HOLIDAY, HOLIDAY_REASON
    policy = policy_provider.resolve(employee_id, target_date) or DEFAULT_SHIFT_POLICY
    if policy.is_weekly_off(target_date):
        return AttendanceStatus.WEEKEND, WEEKEND_REASON
    return AttendanceStatus.ABSENT, NO_ATTENDANCE_REASON


def seed_missing_day_records(
    db: Session,
    target_date: date,
    *,
    calendar: AttendanceCalendar,
    policy_provider: ShiftPolicyProvider,
) -> int:
    """Insert one record for every active employee that has none for the day."""
    existing = set(
        db.scalars(select(AttendanceRecord.employee_id).where(AttendanceRecord.day_date == target_date)).all()
    )
    employee_ids = db.scalars(
        select(Employee.id).where(Employee.is_active.is_(True)).order_by(Employee.id.asc())
    ).all()

    seeded: list[AttendanceRecord] = []
    for employee_id in employee_ids:
        if employee_id in existing:
            continue
        status, reason = _seed_status_for(
            employee_id,
            target_date,
            calendar=calendar,
            policy_provider=policy_provider,
        )
        record = AttendanceRecord(
            employee_id=employee_id,
            day_date=target_date,
            status=status,
            status_reason=reason,
            break_sessions=[],
            created_by="system",
            updated_by="system",
        )
        db.add(record)
        seeded.append(record)

    if not seeded:
        return 0
    db.flush()
    for record in seeded:
        emit_status_change(
            db,
            StatusChangeEvent(
                record_id=record.id,
                employee_id=record.employee_id,
                day_date=target_date,
                previous_status=None,
                new_status=AttendanceStatus(record.status),
                reason=record.status_reason,
                source=PHASE_SEED,
            ),
        )
    return len(seeded)


def _bulk_transition(
    db: Session,
    *,
    conditions: list[Any],
    values: dict[str, Any],
    new_status: AttendanceStatus,
    reason: str,
    source: str,
) -> int:
    rows = db.execute(
        select(AttendanceRecord.id, AttendanceRecord.employee_id, AttendanceRecord.day_date, AttendanceRecord.status)
        .where(*conditions)
        .order_by(AttendanceRecord.id.asc())
    ).all()
    if not rows:
        return 0

    ids = [row.id for row in rows]
    db.execute(
        update(AttendanceRecord)
        .where(AttendanceRecord.id.in_(ids), *conditions)
        .values(status=new_status, status_reason=reason, half_day_type=None, updated_by="system", **values)
        .execution_options(synchronize_session=False)
    )
    emit_status_changes(
        db,
        [
            StatusChangeEvent(
                record_id=row.id,
                employee_id=row.employee_id,
                day_date=row.day_date,
                previous_status=AttendanceStatus(row.status),
                new_status=new_status,
                reason=reason,
                source=source,
            )
            for row in rows
        ],
    )
    return len(rows)


def mark_absent_for_no_clock_in(db: Session, target_date: date) -> int:
    return _bulk_transition(
        db,
        conditions=[
            AttendanceRecord.day_date == target_date,
            AttendanceRecord.clock_in_utc.is_(None),
            AttendanceRecord.status.not_in([*PROTECTED_STATUSES, AttendanceStatus.ABSENT]),
        ],
        values={},
        new_status=AttendanceStatus.ABSENT,
        reason=NO_ATTENDANCE_REASON,
        source=PHASE_ABSENT,
    )


def mark_missed_clock_outs(
    db: Session,
    target_date: date,
    *,
    policy_provider: ShiftPolicyProvider,
    now_utc: datetime,
    result: ReconciliationResult | None = None,
) -> int:
    """Move open sessions whose clock-out window has closed to pending_correction.

    Sessions still inside shift end plus grace are left live and counted as deferred.
    """
    conditions = [
        AttendanceRecord.day_date == target_date,
        AttendanceRecord.clock_in_utc.is_not(None),
        AttendanceRecord.clock_out_utc.is_(None),
        AttendanceRecord.status.not_in([*PROTECTED_STATUSES, AttendanceStatus.PENDING_CORRECTION]),
    ]
    overdue_ids: list[int] = []
    for record_id, employee_id in db.execute(
        select(AttendanceRecord.id, AttendanceRecord.employee_id).where(*conditions)
    ).all():
        policy = policy_provider.resolve(employee_id, target_date) or DEFAULT_SHIFT_POLICY
        deadline = policy.clock_out_deadline_on(target_date)
        if now_utc > deadline:
            overdue_ids.append(record_id)
            continue
        logger.info(
            "reconciliation_clock_out_window_open",
            extra={"record_id": record_id, "employee_id": employee_id, "deadline_utc": deadline.isoformat()},
        )
        if result is not None:
            result.deferred_records += 1
            result.retry_after = deadline if result.retry_after is None else min(result.retry_after, deadline)
    if not overdue_ids:
        return 0

    return _bulk_transition(
        db,
        conditions=[AttendanceRecord.id.in_(overdue_ids), *conditions],
        values={
            "correction_requested": True,
            "correction_status": CorrectionStatus.PENDING,
            "totals_are_final": False,
        },
        new_status=AttendanceStatus.PENDING_CORRECTION,
        reason=MISSED_CLOCK_OUT_REASON,
        source=PHASE_MISSED_CLOCK_OUT,
    )


def finalize_completed_records(
    db: Session,
    target_date: date,
    *,
    policy_provider: ShiftPolicyProvider,
    thresholds: FinalizationThresholds,
    result: ReconciliationResult | None = None,
) -> int:
    records = db.scalars(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.day_date == target_date,
            AttendanceRecord.status == AttendanceStatus.COMPLETED,
        )
        .order_by(AttendanceRecord.id.asc())
    ).all()

    finalized = 0
    for record in records:
        try:
            ensure_record_invariants(record)
        except AttendanceInvariantError as exc:
            logger.warning(
                "reconciliation_record_skipped",
                extra={"record_id": record.id, "field": exc.field, "reason": exc.message},
            )
            if result is not None:
                result.skipped_records += 1
            continue

        outcome = finalize_with_shift(record, policy_provider.resolve(record.employee_id, target_date), thresholds)
        if outcome is None:
            continue
        finalized += 1
        if result is not None and outcome.used_fallback:
            result.fallback_used += 1
        emit_status_change(
            db,
            StatusChangeEvent(
                record_id=record.id,
                employee_id=record.employee_id,
                day_date=target_date,
                previous_status=outcome.previous_status,
                new_status=outcome.new_status,
                reason=outcome.reason,
                source=PHASE_FINALIZE,
            ),
        )
    db.flush()
    return finalized


def _run_phase(db: Session, result: ReconciliationResult, phase: str, action: Callable[[], int]) -> int:
    try:
        count = action()
        db.commit()
    except Exception as exc:
        db.rollback()
        result.phase_errors[phase] = str(exc) or exc.__class__.__name__
        logger.exception(
            "reconciliation_phase_failed",
            extra={"phase": phase, "target_date": result.target_date.isoformat(), "trigger": result.trigger},
        )
        return 0
    logger.info(
        "reconciliation_phase_complete",
        extra={"phase": phase, "target_date": result.target_date.isoformat(), "affected": count},
    )
    return count


def run_reconciliation(
    target_date: date | None = None,
    trigger: str = "nightly",
    *,
    db: Session | None = None,
    now: datetime | None = None,
    policy_provider: ShiftPolicyProvider | None = None,
    calendar: AttendanceCalendar | None = None,
    thresholds: FinalizationThresholds | None = None,
) -> ReconciliationResult:
    if db is None:
        with SessionLocal() as managed_db:
            return run_reconciliation(
                target_date,
                trigger,
                db=managed_db,
                now=now,
                policy_provider=policy_provider,
                calendar=calendar,
                thresholds=thresholds,
            )

    now_utc = as_utc(now) or datetime.now(timezone.utc)
    resolved_date = target_date or default_target_date(now_utc)
    _ensure_closed_day(resolved_date, now_utc)

    result = ReconciliationResult(target_date=resolved_date, trigger=trigger, status="running")
    run = _acquire_run_lock(db, target_date=resolved_date, trigger=trigger, now_utc=now_utc)
    if run is None:
        result.status = "skipped"
        logger.info(
            "reconciliation_run_skipped",
            extra={"target_date": resolved_date.isoformat(), "trigger": trigger, "reason": "lock_held"},
        )
        return result

    provider = policy_provider or DbShiftPolicyProvider(db)
    resolved_calendar = calendar or DbAttendanceCalendar(db)
    resolved_thresholds = thresholds or FinalizationThresholds.from_settings()

    result.seeded = _run_phase(
        db,
        result,
        PHASE_SEED,
        lambda: seed_missing_day_records(db, resolved_date, calendar=resolved_calendar, policy_provider=provider),
    )
    result.marked_absent = _run_phase(db, result, PHASE_ABSENT, lambda: mark_absent_for_no_clock_in(db, resolved_date))
    result.marked_pending_correction = _run_phase(
        db,
        result,
        PHASE_MISSED_CLOCK_OUT,
        lambda: mark_missed_clock_outs(
            db,
            resolved_date,
            policy_provider=provider,
            now_utc=now_utc,
            result=result,
        ),
    )
    result.finalized = _run_phase(
        db,
        result,
        PHASE_FINALIZE,
        lambda: finalize_completed_records(
            db,
            resolved_date,
            policy_provider=provider,
            thresholds=resolved_thresholds,
            result=result,
        ),
    )

    if result.phase_errors:
        run.status = ReconciliationRunStatus.PARTIAL
    elif result.deferred_records:
        run.status = ReconciliationRunStatus.DEFERRED
    else:
        run.status = ReconciliationRunStatus.COMPLETED
    result.status = run.status.value.lower()
    run.finished_at = datetime.now(timezone.utc)
    run.stats = result.to_dict()
    run.last_error = "; ".join(f"{phase}: {error}" for phase, error in result.phase_errors.items()) or None
    db.add(run)
    db.commit()

    log_method = logger.warning if result.phase_errors else logger.info
    log_method("reconciliation_run_complete", extra=result.to_dict())
    return result


def get_finalization_status(db: Session, target_date: date) -> FinalizationStatus:
    counts = {
        AttendanceStatus(status).value: int(count)
        for status, count in db.execute(
            select(AttendanceRecord.status, func.count(AttendanceRecord.id))
            .where(AttendanceRecord.day_date == target_date)
            .group_by(AttendanceRecord.status)
        ).all()
    }
    missing_clock_outs = db.scalar(
        select(func.count(AttendanceRecord.id)).where(
            AttendanceRecord.day_date == target_date,
            AttendanceRecord.clock_in_utc.is_not(None),
            AttendanceRecord.clock_out_utc.is_(None),
        )
    )
    last_run = db.scalar(select(ReconciliationRun).where(ReconciliationRun.target_date == target_date))
    return FinalizationStatus(
        target_date=target_date,
        live_records=sum(counts.get(status.value, 0) for status in LIVE_STATUSES),
        missing_clock_outs=int(missing_clock_outs or 0),
        pending_corrections=counts.get(AttendanceStatus.PENDING_CORRECTION.value, 0),
        counts_by_status=counts,
        last_run=last_run,
    )


def is_reconciliation_due(db: Session, now_utc: datetime) -> date | None:
    """Return the target date when the nightly run is due and has not completed yet."""
    settings = get_settings()
    local_now = now_utc.astimezone(attendance_timezone())
    if local_now.time() < parse_hhmm(settings.reconciliation_run_time_local):
        return None
    target_date = local_now.date() - timedelta(days=1)
    run = db.scalar(select(ReconciliationRun).where(ReconciliationRun.target_date == target_date))
    if run is None:
        return target_date
    if run.status == ReconciliationRunStatus.COMPLETED:
        return None
    if run.status == ReconciliationRunStatus.DEFERRED:
        retry_after = (run.stats or {}).get("retry_after")
        if retry_after and now_utc <= datetime.fromisoformat(retry_after):
            return None
        return target_date
    if run.status != ReconciliationRunStatus.RUNNING and int(run.attempts or 0) >= MAX_NIGHTLY_ATTEMPTS:
        return None
    return target_date


def run_due_reconciliation(now_utc: datetime, db: Session | None = None) -> ReconciliationResult | None:
    if db is None:
        with SessionLocal() as managed_db:
            return run_due_reconciliation(now_utc, db=managed_db)

    target_date = is_reconciliation_due(db, now_utc)
    if target_date is None:
        return None
    return run_reconciliation(target_date, "nightly", db=db, now=now_utc)
