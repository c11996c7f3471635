from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hr_attendance.models import (
    AttendanceStatus,
    CorrectionStatus,
    HalfDayType,
    ReconciliationRunStatus,
    WorkMode,
)


class BreakSessionRead(BaseModel):
    break_in: datetime
    break_out: datetime | None = None


class AttendanceRecordRead(BaseModel):
    id: int
    employee_id: int
    day_date: date
    shift_id: int | None = None
    clock_in_utc: datetime | None = None
    clock_out_utc: datetime | None = None
    break_sessions: list[BreakSessionRead] = Field(default_factory=list)
    total_break_minutes: int
    total_worked_minutes: int
    work_hours: float
    totals_are_final: bool
    is_late: bool
    late_minutes: int
    is_early_departure: bool
    early_exit_minutes: int
    overtime_minutes: int
    overtime_hours: float
    status: AttendanceStatus
    status_reason: str | None = None
    half_day_type: HalfDayType | None = None
    work_mode: WorkMode
    location: dict[str, Any] | None = None
    device_info: dict[str, Any] | None = None
    correction_requested: bool
    correction_reason: str | None = None
    correction_status: CorrectionStatus | None = None
    corrected_by: str | None = None
    corrected_at: datetime | None = None
    flagged_reason: str | None = None
    flagged_by: str | None = None
    flagged_at: datetime | None = None
    remarks: str | None = None
    created_by: str | None = None
    updated_by: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceRemarkRead(BaseModel):
    id: int
    record_id: int
    remark: str
    created_by: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClockInRequest(BaseModel):
    work_mode: WorkMode = WorkMode.OFFICE
    location: dict[str, Any] | None = None
    device_info: dict[str, Any] | None = None


class GuardRead(BaseModel):
    allowed: bool
    reason: str | None = None


class WorkTimeRead(BaseModel):
    mode: Literal["live", "final"]
    work_minutes: int
    break_minutes: int
    work_hours: float
    open_break_count: int = 0


class TodayStatusResponse(BaseModel):
    day_date: date
    record: AttendanceRecordRead | None = None
    work_time: WorkTimeRead | None = None
    can_clock_in: GuardRead
    can_clock_out: GuardRead
    can_start_break: GuardRead
    can_end_break: GuardRead


class MonthlySummaryResponse(BaseModel):
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

    model_config = ConfigDict(from_attributes=True)


class CorrectionRequestCreate(BaseModel):
    day_date: date
    reason: str = Field(min_length=3, max_length=2000)


class CorrectionDecisionRequest(BaseModel):
    approve: bool
    clock_in_utc: datetime | None = None
    clock_out_utc: datetime | None = None
    break_sessions: list[BreakSessionRead] | None = None
    note: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _validate_times(self) -> "CorrectionDecisionRequest":
        for value in (self.clock_in_utc, self.clock_out_utc):
            if value is not None and value.tzinfo is None:
                raise ValueError("Correction timestamps must include a timezone offset.")
        if (
            self.clock_in_utc is not None
            and self.clock_out_utc is not None
            and self.clock_out_utc <= self.clock_in_utc
        ):
            raise ValueError("clock_out_utc must be after clock_in_utc.")
        if not self.approve and (self.clock_in_utc or self.clock_out_utc or self.break_sessions):
            raise ValueError("A rejected correction cannot carry corrected times.")
        return self


class CorrectionListResponse(BaseModel):
    items: list[AttendanceRecordRead]
    total: int
    limit: int
    offset: int


class FlagRecordRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=2000)


class RemarkCreateRequest(BaseModel):
    remark: str = Field(min_length=1, max_length=2000)


class AdminRecordUpdateRequest(BaseModel):
    status: AttendanceStatus | None = None
    status_reason: str | None = Field(default=None, max_length=500)
    in_time: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    out_time: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    clear_clock_out: bool = False
    work_mode: WorkMode | None = None
    remark: str | None = Field(default=None, max_length=2000)
    refinalize: bool = False

    @model_validator(mode="after")
    def _validate_clock_out(self) -> "AdminRecordUpdateRequest":
        if self.clear_clock_out and self.out_time is not None:
            raise ValueError("Provide out_time or clear_clock_out, not both.")
        return self


class ExogenousStatusRequest(BaseModel):
    employee_id: int = Field(ge=1)
    day_date: date
    status: AttendanceStatus
    reason: str | None = Field(default=None, max_length=500)


class FinalizeRequest(BaseModel):
    target_date: date | None = None


class ReconciliationResultResponse(BaseModel):
    target_date: date
    trigger: str
    status: str
    seeded: int
    marked_absent: int
    marked_pending_correction: int
    finalized: int
    fallback_used: int
    skipped_records: int
    deferred_records: int = 0
    retry_after: datetime | None = None
    phase_errors: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class ReconciliationRunRead(BaseModel):
    id: int
    target_date: date
    status: ReconciliationRunStatus
    trigger: str
    attempts: int
    started_at: datetime
    finished_at: datetime | None = None
    stats: dict[str, Any] = Field(default_factory=dict)
    last_error: str | None = None

    model_config = ConfigDict(from_attributes=True)


class FinalizationStatusResponse(BaseModel):
    target_date: date
    live_records: int
    missing_clock_outs: int
    pending_corrections: int
    counts_by_status: dict[str, int]
    last_run: ReconciliationRunRead | None = None

    model_config = ConfigDict(from_attributes=True)
