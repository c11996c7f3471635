from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from hr_attendance.models import AttendanceRecord, AttendanceStatus, HalfDayType
from hr_attendance.services.shift_policy import (
    FinalizationThresholds,
    ShiftPolicy,
    as_utc,
    attendance_timezone,
    resolve_day_thresholds,
)
from hr_attendance.services.work_time import (
    break_limit_exceeded,
    calculate_early_exit,
    calculate_final_work_time,
    calculate_lateness,
    calculate_overtime_minutes,
    minutes_to_hours,
)

logger = logging.getLogger("hr_attendance.finalization")


@dataclass(frozen=True)
class FinalizationOutcome:
    record_id: int | None
    previous_status: AttendanceStatus | None
    new_status: AttendanceStatus
    half_day_type: HalfDayType
    work_hours: float
    used_fallback: bool
    reason: str
    data_quality_notes: tuple[str, ...] = field(default_factory=tuple)


def _fmt(value: float) -> str:
    return f"{value:g}"


def classify_day(
    work_hours: float,
    *,
    full_day_hours: float,
    half_day_hours: float,
    clock_in_local_hour: int,
) -> tuple[AttendanceStatus, HalfDayType, str]:
    """Band worked hours against the thresholds; never yields ``absent``."""
    if work_hours >= full_day_hours:
        return (
            AttendanceStatus.PRESENT,
            HalfDayType.FULL_DAY,
            f"Worked {_fmt(work_hours)} hours (≥ {_fmt(full_day_hours)} required for full day)",
        )
    if work_hours >= half_day_hours:
        half = HalfDayType.FIRST_HALF if clock_in_local_hour < 12 else HalfDayType.SECOND_HALF
        return (
            AttendanceStatus.HALF_DAY,
            half,
            f"Worked {_fmt(work_hours)} hours (≥ {_fmt(half_day_hours)} for half day, "
            f"< {_fmt(full_day_hours)} for full day)",
        )
    return (
        AttendanceStatus.HALF_DAY,
        HalfDayType.FIRST_HALF,
        f"Worked {_fmt(work_hours)} hours (< {_fmt(half_day_hours)} required for half day)",
    )


def finalize_with_shift(
    record: AttendanceRecord,
    policy: ShiftPolicy | None,
    thresholds: FinalizationThresholds,
    now: datetime | None = None,
) -> FinalizationOutcome | None:
    """Write final totals and the FINAL status onto ``record`` (not committed).

    Returns ``None`` and leaves the record untouched unless both clock-in and
    clock-out are present. The result depends only on the record's time facts,
    the policy and the thresholds, so re-running it is a no-op.
    """
    del now  # finalization never reads the wall clock
    clock_in = as_utc(record.clock_in_utc)
    clock_out = as_utc(record.clock_out_utc)
    if clock_in is None or clock_out is None:
        return None

    previous_status = AttendanceStatus(record.status) if record.status is not None else None
    result = calculate_final_work_time(clock_in, clock_out, record.break_sessions)

    overtime_minutes = calculate_overtime_minutes(result.work_minutes, policy)
    lateness = calculate_lateness(clock_in, policy, record.day_date)
    early_exit = calculate_early_exit(clock_out, policy, record.day_date)

    full_day_hours, half_day_hours, used_fallback = resolve_day_thresholds(policy, thresholds)
    clock_in_local_hour = clock_in.astimezone(attendance_timezone()).hour
    new_status, half_day_type, reason = classify_day(
        result.work_hours,
        full_day_hours=full_day_hours,
        half_day_hours=half_day_hours,
        clock_in_local_hour=clock_in_local_hour,
    )

    notes: list[str] = []
    if used_fallback:
        notes.append("fallback thresholds used: shift has no full/half-day hours configured")
    if result.open_break_count:
        notes.append(f"{result.open_break_count} open break(s) ignored")
    if break_limit_exceeded(result.break_minutes, policy):
        notes.append(f"break limit exceeded ({result.break_minutes} > {policy.max_break_minutes} minutes)")
    if notes:
        reason = f"{reason}; " + "; ".join(notes)

    record.total_worked_minutes = result.work_minutes
    record.total_break_minutes = result.break_minutes
    record.work_hours = result.work_hours
    record.overtime_minutes = overtime_minutes
    record.overtime_hours = minutes_to_hours(overtime_minutes)
    record.is_late = lateness.is_late
    record.late_minutes = lateness.late_minutes
    record.is_early_departure = early_exit.is_early_departure
    record.early_exit_minutes = early_exit.early_exit_minutes
    record.status = new_status
    record.half_day_type = half_day_type
    record.status_reason = reason
    record.totals_are_final = True
    if policy is not None and policy.shift_id is not None:
        record.shift_id = policy.shift_id

    if used_fallback:
        logger.warning(
            "finalization_fallback_thresholds_used",
            extra={
                "record_id": record.id,
                "employee_id": record.employee_id,
                "day_date": record.day_date.isoformat(),
                "full_day_hours": full_day_hours,
                "half_day_hours": half_day_hours,
                "work_hours": result.work_hours,
            },
        )

    return FinalizationOutcome(
        record_id=record.id,
        previous_status=previous_status,
        new_status=new_status,
        half_day_type=half_day_type,
        work_hours=result.work_hours,
        used_fallback=used_fallback,
        reason=reason,
        data_quality_notes=tuple(notes),
    )
