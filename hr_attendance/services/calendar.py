from __future__ import annotations

from datetime import date
from typing import Protocol

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from hr_attendance.models import EmployeeShiftAssignment, Holiday, Leave
from hr_attendance.services.shift_policy import ShiftPolicy, policy_from_row


class ShiftPolicyProvider(Protocol):
    def resolve(self, employee_id: int, day: date) -> ShiftPolicy | None: ...


class AttendanceCalendar(Protocol):
    def is_on_approved_leave(self, employee_id: int, day: date) -> bool: ...

    def is_company_holiday(self, day: date) -> bool: ...


class DbShiftPolicyProvider:
    def __init__(self, db: Session) -> None:
        self.db = db
        self._cache: dict[tuple[int, date], ShiftPolicy | None] = {}

    def resolve(self, employee_id: int, day: date) -> ShiftPolicy | None:
        key = (employee_id, day)
        if key not in self._cache:
            self._cache[key] = self._load(employee_id, day)
        return self._cache[key]

    def _load(self, employee_id: int, day: date) -> ShiftPolicy | None:
        assignment = self.db.scalar(
            select(EmployeeShiftAssignment)
            .options(selectinload(EmployeeShiftAssignment.shift))
            .where(
                EmployeeShiftAssignment.employee_id == employee_id,
                EmployeeShiftAssignment.is_active.is_(True),
                EmployeeShiftAssignment.effective_from <= day,
                or_(
                    EmployeeShiftAssignment.effective_to.is_(None),
                    EmployeeShiftAssignment.effective_to >= day,
                ),
            )
            .order_by(EmployeeShiftAssignment.effective_from.desc(), EmployeeShiftAssignment.id.desc())
            .limit(1)
        )
        if assignment is None or assignment.shift is None or not assignment.shift.is_active:
            return None
        return policy_from_row(assignment.shift)


class DbAttendanceCalendar:
    def __init__(self, db: Session) -> None:
        self.db = db

    def is_on_approved_leave(self, employee_id: int, day: date) -> bool:
        leave_id = self.db.scalar(
            select(Leave.id)
            .where(
                Leave.employee_id == employee_id,
                Leave.is_approved.is_(True),
                Leave.start_date <= day,
                Leave.end_date >= day,
            )
            .limit(1)
        )
        return leave_id is not None

    def is_company_holiday(self, day: date) -> bool:
        return self.db.scalar(select(Holiday.id).where(Holiday.day_date == day).limit(1)) is not None
