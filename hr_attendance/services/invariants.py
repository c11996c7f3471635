from __future__ import annotations

from sqlalchemy import event

from hr_attendance.errors import AttendanceInvariantError
from hr_attendance.models import AttendanceRecord, AttendanceStatus
from hr_attendance.services.shift_policy import as_utc
from hr_attendance.services.work_time import parse_break_sessions

ABSENT_WITH_CLOCK_IN_MESSAGE = "Invalid state: cannot mark absent when clock-in exists"
HALF_DAY_TYPE_STATUSES = frozenset({AttendanceStatus.PRESENT, AttendanceStatus.HALF_DAY})


def ensure_record_invariants(record: AttendanceRecord) -> None:
    """Raise ``AttendanceInvariantError`` for a record that must never be persisted."""
    clock_in = as_utc(record.clock_in_utc)
    clock_out = as_utc(record.clock_out_utc)
    status = AttendanceStatus(record.status) if record.status is not None else None

    if status == AttendanceStatus.ABSENT and clock_in is not None:
        raise AttendanceInvariantError("status", ABSENT_WITH_CLOCK_IN_MESSAGE)

    if clock_out is not None and clock_in is None:
        raise AttendanceInvariantError("clock_out_utc", "Invalid state: clock-out requires a clock-in")

    if clock_in is not None and clock_out is not None and clock_out < clock_in:
        raise AttendanceInvariantError("clock_out_utc", "Invalid state: clock-out precedes clock-in")

    if record.half_day_type is not None and status not in HALF_DAY_TYPE_STATUSES:
        raise AttendanceInvariantError(
            "half_day_type",
            f"Invalid state: half_day_type is only valid for present or half_day, not {status.value if status else None}",
        )

    try:
        sessions = parse_break_sessions(record.break_sessions)
    except (TypeError, ValueError, AttributeError) as exc:
        raise AttendanceInvariantError("break_sessions", f"Invalid state: malformed break session ({exc})") from exc

    previous_end = None
    for index, session in enumerate(sessions):
        if clock_in is not None and session.break_in < clock_in:
            raise AttendanceInvariantError("break_sessions", "Invalid state: break starts before clock-in")
        if session.break_out is not None and session.break_out < session.break_in:
            raise AttendanceInvariantError("break_sessions", "Invalid state: break ends before it starts")
        if session.break_out is None and index != len(sessions) - 1:
            raise AttendanceInvariantError("break_sessions", "Invalid state: only the latest break may be open")
        if previous_end is not None and session.break_in < previous_end:
            raise AttendanceInvariantError("break_sessions", "Invalid state: break sessions overlap")
        previous_end = session.break_out


@event.listens_for(AttendanceRecord, "before_insert")
def _check_before_insert(mapper, connection, target: AttendanceRecord) -> None:  # noqa: ARG001
    ensure_record_invariants(target)


@event.listens_for(AttendanceRecord, "before_update")
def _check_before_update(mapper, connection, target: AttendanceRecord) -> None:  # noqa: ARG001
    ensure_record_invariants(target)
