from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from hr_attendance.models import PROTECTED_STATUSES, AttendanceRecord, AttendanceStatus
from hr_attendance.services.shift_policy import ShiftPolicy, attendance_timezone, local_day, require_aware
from hr_attendance.services.work_time import parse_break_sessions


@dataclass(frozen=True)
class GuardResult:
    allowed: bool
    reason: str | None = None


ALLOWED = GuardResult(allowed=True)


def _deny(reason: str) -> GuardResult:
    return GuardResult(allowed=False, reason=reason)


def _status(record: AttendanceRecord | None) -> AttendanceStatus | None:
    if record is None or record.status is None:
        return None
    return AttendanceStatus(record.status)


def _has_open_break(record: AttendanceRecord) -> bool:
    return any(session.is_open for session in parse_break_sessions(record.break_sessions))


def nearest_shift_end(policy: ShiftPolicy, now: datetime) -> datetime:
    """Today's shift end, or tomorrow's when that occurrence is closer to ``now``."""
    tz = attendance_timezone()
    today = local_day(now, tz)
    today_end = datetime.combine(today, policy.end_time, tzinfo=tz)
    tomorrow_end = datetime.combine(today + timedelta(days=1), policy.end_time, tzinfo=tz)
    if abs((tomorrow_end - now).total_seconds()) < abs((today_end - now).total_seconds()):
        return tomorrow_end
    return today_end


def clock_out_deadline(record: AttendanceRecord, policy: ShiftPolicy) -> datetime:
    return policy.clock_out_deadline_on(record.day_date)


def can_clock_in(record: AttendanceRecord | None, policy: ShiftPolicy | None, now: datetime) -> GuardResult:
    now_utc = require_aware(now)
    status = _status(record)

    if status in PROTECTED_STATUSES:
        return _deny(f"Cannot clock in - you are on {status.value} today")
    if record is not None and record.clock_in_utc is not None:
        return _deny("Already clocked in today")
    # half_day is left out on purpose; a test pins the current behaviour.
    if status in {AttendanceStatus.ABSENT, AttendanceStatus.PRESENT}:
        return _deny("Attendance already finalized for today")
    if status == AttendanceStatus.PENDING_CORRECTION:
        return _deny("Attendance correction pending - contact HR")
    if policy is not None and now_utc > nearest_shift_end(policy, now_utc):
        return _deny("Shift time has already ended")
    return ALLOWED


def can_clock_out(record: AttendanceRecord | None, policy: ShiftPolicy | None, now: datetime) -> GuardResult:
    now_utc = require_aware(now)
    status = _status(record)

    if record is None or record.clock_in_utc is None:
        return _deny("Must clock in first")
    if record.clock_out_utc is not None:
        return _deny("Already clocked out today")
    if status in PROTECTED_STATUSES:
        return _deny(f"Cannot clock out - you are on {status.value} today")
    if status == AttendanceStatus.ABSENT:
        return _deny("Attendance marked as absent - contact HR for correction")
    if policy is not None and now_utc > clock_out_deadline(record, policy):
        return _deny("Clock-out window has closed - submit a correction request")
    return ALLOWED


def can_start_break(record: AttendanceRecord | None) -> GuardResult:
    if record is None or record.clock_in_utc is None or record.clock_out_utc is not None:
        return _deny("Must be clocked in to take break")
    status = _status(record)
    if status in PROTECTED_STATUSES or status == AttendanceStatus.ABSENT:
        return _deny(f"Cannot take break - status is {status.value}")
    if _has_open_break(record):
        return _deny("Already on break - end current break first")
    return ALLOWED


def can_end_break(record: AttendanceRecord | None) -> GuardResult:
    if record is None or record.clock_in_utc is None or record.clock_out_utc is not None:
        return _deny("Must be clocked in to end break")
    if not _has_open_break(record):
        return _deny("Not currently on break")
    return ALLOWED
