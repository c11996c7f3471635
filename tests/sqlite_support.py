from __future__ import annotations

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import hr_attendance.services.invariants  # noqa: F401
from hr_attendance.db import Base
from hr_attendance.models import Employee
from hr_attendance.services.shift_policy import ShiftPolicy

IST = ZoneInfo("Asia/Kolkata")


def make_session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


def add_employee(db: Session, employee_id: int, *, is_active: bool = True) -> Employee:
    employee = Employee(id=employee_id, full_name=f"Employee {employee_id}", is_active=is_active)
    db.add(employee)
    db.commit()
    return employee


def local(day: date, hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute, second), tzinfo=IST)


def general_shift(**overrides) -> ShiftPolicy:  # type: ignore[no-untyped-def]
    values = {
        "name": "General",
        "start_time": time(9, 0),
        "end_time": time(17, 0),
        "full_day_hours": 8.0,
        "half_day_hours": 4.0,
        "grace_period_minutes": 15,
        "weekly_off_days": frozenset({5, 6}),
    }
    values.update(overrides)
    return ShiftPolicy(**values)


class StaticPolicyProvider:
    def __init__(self, policy: ShiftPolicy | None):
        self.policy = policy

    def resolve(self, _employee_id: int, _day: date) -> ShiftPolicy | None:
        return self.policy


class StaticCalendar:
    def __init__(self, *, leave: set[tuple[int, date]] | None = None, holidays: set[date] | None = None):
        self.leave = leave or set()
        self.holidays = holidays or set()

    def is_on_approved_leave(self, employee_id: int, day: date) -> bool:
        return (employee_id, day) in self.leave

    def is_company_holiday(self, day: date) -> bool:
        return day in self.holidays
