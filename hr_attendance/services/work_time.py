from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Literal

from hr_attendance.services.shift_policy import ShiftPolicy, as_utc, require_aware


@dataclass(frozen=True)
class BreakSession:
    break_in: datetime
    break_out: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.break_out is None

    def to_json(self) -> dict[str, Any]:
        return {
            "break_in": self.break_in.isoformat(),
            "break_out": self.break_out.isoformat() if self.break_out is not None else None,
        }


@dataclass(frozen=True)
class WorkTimeResult:
    mode: Literal["live", "final"]
    work_minutes: int
    break_minutes: int
    work_hours: float
    open_break_count: int = 0


@dataclass(frozen=True)
class LatenessResult:
    is_late: bool
    late_minutes: int


@dataclass(frozen=True)
class EarlyExitResult:
    is_early_departure: bool
    early_exit_minutes: int


def _parse_ts(raw: Any) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return as_utc(raw)
    return as_utc(datetime.fromisoformat(str(raw)))


def parse_break_sessions(raw: Iterable[Any] | None) -> list[BreakSession]:
    sessions: list[BreakSession] = []
    for item in raw or []:
        if isinstance(item, BreakSession):
            sessions.append(item)
            continue
        break_in = _parse_ts(item.get("break_in"))
        if break_in is None:
            raise ValueError("break session is missing break_in")
        sessions.append(BreakSession(break_in=break_in, break_out=_parse_ts(item.get("break_out"))))
    return sessions


def serialize_break_sessions(sessions: Iterable[BreakSession]) -> list[dict[str, Any]]:
    return [session.to_json() for session in sessions]


def minutes_to_hours(minutes: int | float) -> float:
    return round(minutes / 60, 2)


def _floor_minutes(seconds: float) -> int:
    return int(max(0.0, seconds) // 60)


def _closed_break_seconds(sessions: list[BreakSession]) -> float:
    total = 0.0
    for session in sessions:
        if session.break_out is None:
            continue
        total += max(0.0, (session.break_out - session.break_in).total_seconds())
    return total


def closed_break_minutes(breaks: Iterable[Any] | None) -> int:
    return _floor_minutes(_closed_break_seconds(parse_break_sessions(breaks)))


def calculate_live_work_time(
    clock_in: datetime,
    now: datetime,
    breaks: Iterable[Any] | None,
) -> WorkTimeResult:
    """Work time for a session still running; an open break counts up to ``now``."""
    start = require_aware(clock_in, name="clock_in")
    end = require_aware(now)
    sessions = parse_break_sessions(breaks)
    break_seconds = _closed_break_seconds(sessions)
    open_count = 0
    for session in sessions:
        if session.break_out is None:
            open_count += 1
            break_seconds += max(0.0, (end - session.break_in).total_seconds())

    break_minutes = _floor_minutes(break_seconds)
    work_minutes = _floor_minutes((end - start).total_seconds() - break_seconds)
    return WorkTimeResult(
        mode="live",
        work_minutes=work_minutes,
        break_minutes=break_minutes,
        work_hours=minutes_to_hours(work_minutes),
        open_break_count=open_count,
    )


def calculate_final_work_time(
    clock_in: datetime,
    clock_out: datetime,
    breaks: Iterable[Any] | None,
) -> WorkTimeResult:
    """Work time for a closed session; an open break counts zero and is reported."""
    start = require_aware(clock_in, name="clock_in")
    end = require_aware(clock_out, name="clock_out")
    sessions = parse_break_sessions(breaks)
    break_seconds = _closed_break_seconds(sessions)
    open_count = sum(1 for session in sessions if session.break_out is None)

    break_minutes = _floor_minutes(break_seconds)
    work_minutes = _floor_minutes((end - start).total_seconds() - break_seconds)
    return WorkTimeResult(
        mode="final",
        work_minutes=work_minutes,
        break_minutes=break_minutes,
        work_hours=minutes_to_hours(work_minutes),
        open_break_count=open_count,
    )


def calculate_overtime_minutes(work_minutes: int, policy: ShiftPolicy | None) -> int:
    if policy is None or not policy.overtime_enabled or policy.full_day_hours is None:
        return 0
    full_day_minutes = int(round(policy.full_day_hours * 60))
    return max(0, work_minutes - full_day_minutes - int(policy.overtime_threshold_minutes))


def break_limit_exceeded(break_minutes: int, policy: ShiftPolicy | None) -> bool:
    if policy is None or policy.max_break_minutes is None:
        return False
    return break_minutes > policy.max_break_minutes


def calculate_lateness(clock_in: datetime, policy: ShiftPolicy | None, day: date) -> LatenessResult:
    if policy is None:
        return LatenessResult(is_late=False, late_minutes=0)
    start = require_aware(clock_in, name="clock_in")
    late_after = policy.shift_start_on(day) + timedelta(minutes=int(policy.grace_period_minutes))
    late_minutes = _floor_minutes((start - late_after).total_seconds())
    is_late = late_minutes > 0 and late_minutes >= int(policy.late_threshold_minutes)
    return LatenessResult(is_late=is_late, late_minutes=late_minutes)


def calculate_early_exit(clock_out: datetime, policy: ShiftPolicy | None, day: date) -> EarlyExitResult:
    if policy is None:
        return EarlyExitResult(is_early_departure=False, early_exit_minutes=0)
    end = require_aware(clock_out, name="clock_out")
    shift_end = policy.shift_end_on(day)
    early_minutes = _floor_minutes((shift_end - end).total_seconds())
    is_early = early_minutes > 0 and early_minutes >= int(policy.early_departure_threshold_minutes)
    return EarlyExitResult(is_early_departure=is_early, early_exit_minutes=early_minutes)
