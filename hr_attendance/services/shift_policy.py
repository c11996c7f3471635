from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from hr_attendance.models import ShiftPolicyRow
from hr_attendance.settings import Settings, get_settings

DEFAULT_TIMEZONE = "Asia/Kolkata"


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except Exception:
        return ZoneInfo(DEFAULT_TIMEZONE)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a stored timestamp; naive values are treated as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def require_aware(value: datetime, *, name: str = "now") -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware")
    return value.astimezone(timezone.utc)


def local_day(ts: datetime, tz: ZoneInfo | None = None) -> date:
    return require_aware(ts, name="ts").astimezone(tz or attendance_timezone()).date()


def parse_hhmm(value: str) -> time:
    raw = (value or "").strip()
    parts = raw.split(":")
    if len(parts) != 2 or not all(part.isdigit() for part in parts):
        raise ValueError(f"Invalid HH:MM value: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid HH:MM value: {value!r}")
    return time(hour=hour, minute=minute)


@dataclass(frozen=True)
class ShiftPolicy:
    name: str
    start_time: time
    end_time: time
    full_day_hours: float | None = None
    half_day_hours: float | None = None
    grace_period_minutes: int = 15
    late_threshold_minutes: int = 0
    early_departure_threshold_minutes: int = 0
    default_break_minutes: int = 60
    max_break_minutes: int | None = None
    overtime_enabled: bool = False
    overtime_threshold_minutes: int = 0
    weekly_off_days: frozenset[int] = field(default_factory=frozenset)
    shift_id: int | None = None

    @property
    def crosses_midnight(self) -> bool:
        return self.end_time <= self.start_time

    @property
    def has_thresholds(self) -> bool:
        return self.full_day_hours is not None and self.half_day_hours is not None

    def is_weekly_off(self, day: date) -> bool:
        return day.weekday() in self.weekly_off_days

    def shift_start_on(self, day: date, tz: ZoneInfo | None = None) -> datetime:
        zone = tz or attendance_timezone()
        return datetime.combine(day, self.start_time, tzinfo=zone).astimezone(timezone.utc)

    def shift_end_on(self, day: date, tz: ZoneInfo | None = None) -> datetime:
        """End instant of the shift that starts on ``day``."""
        zone = tz or attendance_timezone()
        end_day = day + timedelta(days=1) if self.crosses_midnight else day
        return datetime.combine(end_day, self.end_time, tzinfo=zone).astimezone(timezone.utc)

    def clock_out_deadline_on(self, day: date, tz: ZoneInfo | None = None) -> datetime:
        return self.shift_end_on(day, tz) + timedelta(minutes=int(self.grace_period_minutes))


@dataclass(frozen=True)
class FinalizationThresholds:
    fallback_full_day_hours: float = 6.0
    fallback_half_day_hours: float = 4.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> FinalizationThresholds:
        resolved = settings or get_settings()
        return cls(
            fallback_full_day_hours=float(resolved.fallback_full_day_hours),
            fallback_half_day_hours=float(resolved.fallback_half_day_hours),
        )


def resolve_day_thresholds(
    policy: ShiftPolicy | None,
    thresholds: FinalizationThresholds,
) -> tuple[float, float, bool]:
    """Return (full_day_hours, half_day_hours, used_fallback)."""
    if policy is not None and policy.has_thresholds:
        return float(policy.full_day_hours), float(policy.half_day_hours), False  # type: ignore[arg-type]
    return thresholds.fallback_full_day_hours, thresholds.fallback_half_day_hours, True


def policy_from_row(row: ShiftPolicyRow) -> ShiftPolicy:
    grace = row.grace_period_minutes
    if grace is None:
        grace = get_settings().clock_out_grace_minutes_default
    return ShiftPolicy(
        name=row.name,
        start_time=row.start_time_local,
        end_time=row.end_time_local,
        full_day_hours=row.full_day_hours,
        half_day_hours=row.half_day_hours,
        grace_period_minutes=int(grace),
        late_threshold_minutes=int(row.late_threshold_minutes or 0),
        early_departure_threshold_minutes=int(row.early_departure_threshold_minutes or 0),
        default_break_minutes=int(row.default_break_minutes or 0),
        max_break_minutes=row.max_break_minutes,
        overtime_enabled=bool(row.overtime_enabled),
        overtime_threshold_minutes=int(row.overtime_threshold_minutes or 0),
        weekly_off_days=frozenset(int(day) for day in (row.weekly_off_days or [])),
        shift_id=row.id,
    )


DEFAULT_SHIFT_POLICY = ShiftPolicy(
    name="General Shift",
    start_time=time(9, 0),
    end_time=time(17, 0),
    full_day_hours=8.0,
    half_day_hours=4.0,
    grace_period_minutes=10,
    late_threshold_minutes=15,
    early_departure_threshold_minutes=15,
    default_break_minutes=60,
    max_break_minutes=120,
    overtime_enabled=True,
    overtime_threshold_minutes=30,
    weekly_off_days=frozenset({5, 6}),
)
