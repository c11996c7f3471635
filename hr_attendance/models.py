from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_attendance.db import Base

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class AttendanceStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    ON_BREAK = "on_break"
    COMPLETED = "completed"
    PRESENT = "present"
    HALF_DAY = "half_day"
    ABSENT = "absent"
    LEAVE = "leave"
    HOLIDAY = "holiday"
    WEEKEND = "weekend"
    PENDING_CORRECTION = "pending_correction"


LIVE_STATUSES = frozenset(
    {AttendanceStatus.IN_PROGRESS, AttendanceStatus.ON_BREAK, AttendanceStatus.COMPLETED}
)
OPEN_SESSION_STATUSES = frozenset({AttendanceStatus.IN_PROGRESS, AttendanceStatus.ON_BREAK})
FINAL_STATUSES = frozenset(set(AttendanceStatus) - LIVE_STATUSES)
# Exogenous states written by the leave/holiday collaborators; employees cannot leave them.
PROTECTED_STATUSES = frozenset(
    {AttendanceStatus.LEAVE, AttendanceStatus.HOLIDAY, AttendanceStatus.WEEKEND}
)
TERMINAL_STATUSES = FINAL_STATUSES - {AttendanceStatus.PENDING_CORRECTION}


class HalfDayType(str, enum.Enum):
    FIRST_HALF = "first_half"
    SECOND_HALF = "second_half"
    FULL_DAY = "full_day"


class WorkMode(str, enum.Enum):
    OFFICE = "office"
    WFH = "wfh"
    HYBRID = "hybrid"
    FIELD = "field"


class CorrectionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"
    SYSTEM = "SYSTEM"


class ReconciliationRunStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"
    DEFERRED = "DEFERRED"


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    shift_assignments: Mapped[list[EmployeeShiftAssignment]] = relationship(back_populates="employee")
    leaves: Mapped[list[Leave]] = relationship(back_populates="employee")
    attendance_records: Mapped[list[AttendanceRecord]] = relationship(back_populates="employee")


class ShiftPolicyRow(Base):
    __tablename__ = "shift_policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    start_time_local: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)
    end_time_local: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)
    full_day_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    half_day_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    grace_period_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=15, server_default=text("15"))
    late_threshold_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    early_departure_threshold_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    default_break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60, server_default=text("60"))
    max_break_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    overtime_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    overtime_threshold_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    weekly_off_days: Mapped[list[int]] = mapped_column(
        JSONVariant,
        nullable=False,
        default=list,
        server_default=text("'[]'"),
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assignments: Mapped[list[EmployeeShiftAssignment]] = relationship(back_populates="shift")


class EmployeeShiftAssignment(Base):
    __tablename__ = "employee_shift_assignments"
    __table_args__ = (
        UniqueConstraint(
            "employee_id",
            "effective_from",
            name="uq_employee_shift_assignments_employee_from",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shift_id: Mapped[int] = mapped_column(
        ForeignKey("shift_policies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    employee: Mapped[Employee] = relationship(back_populates="shift_assignments")
    shift: Mapped[ShiftPolicyRow] = relationship(back_populates="assignments")


class Leave(Base):
    __tablename__ = "leaves"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    employee: Mapped[Employee] = relationship(back_populates="leaves")


class Holiday(Base):
    __tablename__ = "holidays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    day_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("employee_id", "day_date", name="uq_attendance_records_employee_day"),
        CheckConstraint(
            "NOT (status = 'absent' AND clock_in_utc IS NOT NULL)",
            name="ck_attendance_records_absent_without_clock_in",
        ),
        Index(
            "uq_attendance_records_pending_correction",
            "employee_id",
            "day_date",
            unique=True,
            postgresql_where=text("status = 'pending_correction'"),
            sqlite_where=text("status = 'pending_correction'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    shift_id: Mapped[int | None] = mapped_column(
        ForeignKey("shift_policies.id", ondelete="SET NULL"),
        nullable=True,
    )
    clock_in_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clock_out_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    break_sessions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONVariant,
        nullable=False,
        default=list,
        server_default=text("'[]'"),
    )
    total_break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    total_worked_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    work_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default=text("0"))
    totals_are_final: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    is_late: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    late_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    is_early_departure: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    early_exit_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    overtime_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    overtime_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default=text("0"))
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus, name="attendance_status", values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    status_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    half_day_type: Mapped[HalfDayType | None] = mapped_column(
        Enum(HalfDayType, name="attendance_half_day_type", values_callable=_enum_values),
        nullable=True,
    )
    work_mode: Mapped[WorkMode] = mapped_column(
        Enum(WorkMode, name="attendance_work_mode", values_callable=_enum_values),
        nullable=False,
        default=WorkMode.OFFICE,
        server_default=text("'office'"),
    )
    location: Mapped[dict[str, Any] | None] = mapped_column(JSONVariant, nullable=True)
    device_info: Mapped[dict[str, Any] | None] = mapped_column(JSONVariant, nullable=True)
    correction_requested: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    correction_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    correction_status: Mapped[CorrectionStatus | None] = mapped_column(
        Enum(CorrectionStatus, name="attendance_correction_status", values_callable=_enum_values),
        nullable=True,
        index=True,
    )
    corrected_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    corrected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    flagged_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    flagged_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    flagged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="attendance_records")
    remark_history: Mapped[list[AttendanceRemark]] = relationship(
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="AttendanceRemark.id",
    )


class AttendanceRemark(Base):
    __tablename__ = "attendance_remarks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    record_id: Mapped[int] = mapped_column(
        ForeignKey("attendance_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    remark: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    record: Mapped[AttendanceRecord] = relationship(back_populates="remark_history")


class ReconciliationRun(Base):
    __tablename__ = "reconciliation_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    target_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    status: Mapped[ReconciliationRunStatus] = mapped_column(
        Enum(ReconciliationRunStatus, name="reconciliation_run_status"),
        nullable=False,
    )
    trigger: Mapped[str] = mapped_column(String(50), nullable=False, default="nightly")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stats: Mapped[dict[str, Any]] = mapped_column(
        JSONVariant,
        nullable=False,
        default=dict,
        server_default=text("'{}'"),
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONVariant,
        nullable=False,
        default=dict,
        server_default=text("'{}'"),
    )
