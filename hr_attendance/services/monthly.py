from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from hr_attendance.errors import ApiError
from hr_attendance.models import OPEN_SESSION_STATUSES, AttendanceRecord, AttendanceStatus, Employee
from hr_attendance.services.shift_policy import as_utc, require_aware
from hr_attendance.services.work_time import calculate_live_work_time, minutes_to_hours


@dataclass(frozen=True)
class MonthlySummary:
    employee_id: int
    year: int
    month: int
    total_days: int
    present_days: int
    absent_days: int
    half_days: int
    leave_days: int
    holiday_days: int
    weekend_days: int
    pending_correction_days: int
    unfinalized_days: int
    incomplete_days: int
    total_work_hours: float
    total_overtime_hours: float
    late_days: int
    early_departures: int
    total_late_minutes: int
    total_early_exit_minutes: int
    total_worked_minutes: int
    total_break_minutes: int
    live_worked_minutes: int
    average_work_hours: float
    includes_live_session: bool


def month_bounds(year: int, month: int) -> tuple[date, date]:
    if month < 1 or month > 12:
        raise ApiError(status_code=422, code="INVALID_MONTH", message="Month must be between 1 and 12.")
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])


def summarize_records(
    records: list[AttendanceRecord],
    *,
    employee_id: int,
    year: int,
    month: int,
    now: datetime,
) -> MonthlySummary:
    """Aggregate stored totals; open sessions contribute live time up to ``now``."""
    now_utc = require_aware(now)
    status_counts: dict[AttendanceStatus, int] = {status: 0 for status in AttendanceStatus}
    worked_minutes = 0
    break_minutes = 0
    overtime_minutes = 0
    live_minutes = 0
    incomplete_days = 0
    worked_days = 0

    for record in records:
        status = AttendanceStatus(record.status)
        status_counts[status] += 1
        clock_in = as_utc(record.clock_in_utc)
        if clock_in is not None:
            worked_days += 1
        if clock_in is not None and record.clock_out_utc is None:
            incomplete_days += 1

        if status in OPEN_SESSION_STATUSES and clock_in is not None and record.clock_out_utc is None:
            live = calculate_live_work_time(clock_in, max(now_utc, clock_in), record.break_sessions)
            live_minutes += live.work_minutes
            worked_minutes += live.work_minutes
            break_minutes += live.break_minutes
            continue

        worked_minutes += int(record.total_worked_minutes or 0)
        break_minutes += int(record.total_break_minutes or 0)
        overtime_minutes += int(record.overtime_minutes or 0)

    total_work_hours = minutes_to_hours(worked_minutes)
    return MonthlySummary(
        employee_id=employee_id,
        year=year,
        month=month,
        total_days=len(records),
        present_days=status_counts[AttendanceStatus.PRESENT],
        absent_days=status_counts[AttendanceStatus.ABSENT],
        half_days=status_counts[AttendanceStatus.HALF_DAY],
        leave_days=status_counts[AttendanceStatus.LEAVE],
        holiday_days=status_counts[AttendanceStatus.HOLIDAY],
        weekend_days=status_counts[AttendanceStatus.WEEKEND],
        pending_correction_days=status_counts[AttendanceStatus.PENDING_CORRECTION],
        unfinalized_days=status_counts[AttendanceStatus.COMPLETED],
        incomplete_days=incomplete_days,
        total_work_hours=total_work_hours,
        total_overtime_hours=minutes_to_hours(overtime_minutes),
        late_days=sum(1 for record in records if record.is_late),
        early_departures=sum(1 for record in records if record.is_early_departure),
        total_late_minutes=sum(int(record.late_minutes or 0) for record in records),
        total_early_exit_minutes=sum(int(record.early_exit_minutes or 0) for record in records),
        total_worked_minutes=worked_minutes,
        total_break_minutes=break_minutes,
        live_worked_minutes=live_minutes,
        average_work_hours=round(total_work_hours / worked_days, 2) if worked_days else 0.0,
        includes_live_session=any(AttendanceStatus(record.status) in OPEN_SESSION_STATUSES for record in records),
    )


def get_monthly_summary(
    db: Session,
    employee_id: int,
    year: int,
    month: int,
    now: datetime | None = None,
) -> MonthlySummary:
    if db.get(Employee, employee_id) is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")

    start_date, end_date = month_bounds(year, month)
    records = list(
        db.scalars(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.day_date >= start_date,
                AttendanceRecord.day_date <= end_date,
            )
            .order_by(AttendanceRecord.day_date.asc())
        ).all()
    )
    return summarize_records(
        records,
        employee_id=employee_id,
        year=year,
        month=month,
        now=now or datetime.now(timezone.utc),
    )
