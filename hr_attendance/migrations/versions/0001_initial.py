"""Initial attendance schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

attendance_status = postgresql.ENUM(
    "in_progress",
    "on_break",
    "completed",
    "present",
    "half_day",
    "absent",
    "leave",
    "holiday",
    "weekend",
    "pending_correction",
    name="attendance_status",
    create_type=False,
)
attendance_half_day_type = postgresql.ENUM(
    "first_half",
    "second_half",
    "full_day",
    name="attendance_half_day_type",
    create_type=False,
)
attendance_work_mode = postgresql.ENUM(
    "office",
    "wfh",
    "hybrid",
    "field",
    name="attendance_work_mode",
    create_type=False,
)
attendance_correction_status = postgresql.ENUM(
    "pending",
    "approved",
    "rejected",
    name="attendance_correction_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "ADMIN",
    "EMPLOYEE",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)
reconciliation_run_status = postgresql.ENUM(
    "RUNNING",
    "COMPLETED",
    "PARTIAL",
    "FAILED",
    "DEFERRED",
    name="reconciliation_run_status",
    create_type=False,
)

ALL_ENUMS = (
    attendance_status,
    attendance_half_day_type,
    attendance_work_mode,
    attendance_correction_status,
    audit_actor_type,
    reconciliation_run_status,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "shift_policies",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("start_time_local", sa.Time(timezone=False), nullable=False),
        sa.Column("end_time_local", sa.Time(timezone=False), nullable=False),
        sa.Column("full_day_hours", sa.Float(), nullable=True),
        sa.Column("half_day_hours", sa.Float(), nullable=True),
        sa.Column("grace_period_minutes", sa.Integer(), nullable=False, server_default=sa.text("15")),
        sa.Column("late_threshold_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("early_departure_threshold_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("default_break_minutes", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column("max_break_minutes", sa.Integer(), nullable=True),
        sa.Column("overtime_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("overtime_threshold_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "weekly_off_days",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("name", name="uq_shift_policies_name"),
    )

    op.create_table(
        "employee_shift_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shift_policies.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "employee_id",
            "effective_from",
            name="uq_employee_shift_assignments_employee_from",
        ),
    )
    op.create_index(
        "ix_employee_shift_assignments_employee_id",
        "employee_shift_assignments",
        ["employee_id"],
        unique=False,
    )
    op.create_index(
        "ix_employee_shift_assignments_shift_id",
        "employee_shift_assignments",
        ["shift_id"],
        unique=False,
    )

    op.create_table(
        "leaves",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("is_approved", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("note", sa.String(length=1000), nullable=True),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_leaves_employee_id", "leaves", ["employee_id"], unique=False)

    op.create_table(
        "holidays",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.UniqueConstraint("day_date", name="uq_holidays_day_date"),
    )

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("clock_in_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clock_out_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "break_sessions",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("total_break_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_worked_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("work_hours", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("totals_are_final", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_late", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("late_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_early_departure", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("early_exit_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("overtime_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("overtime_hours", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", attendance_status, nullable=False),
        sa.Column("status_reason", sa.String(length=500), nullable=True),
        sa.Column("half_day_type", attendance_half_day_type, nullable=True),
        sa.Column("work_mode", attendance_work_mode, nullable=False, server_default=sa.text("'office'")),
        sa.Column("location", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("device_info", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("correction_requested", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("correction_reason", sa.Text(), nullable=True),
        sa.Column("correction_status", attendance_correction_status, nullable=True),
        sa.Column("corrected_by", sa.String(length=255), nullable=True),
        sa.Column("corrected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("flagged_reason", sa.Text(), nullable=True),
        sa.Column("flagged_by", sa.String(length=255), nullable=True),
        sa.Column("flagged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("updated_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shift_policies.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("employee_id", "day_date", name="uq_attendance_records_employee_day"),
        sa.CheckConstraint(
            "NOT (status = 'absent' AND clock_in_utc IS NOT NULL)",
            name="ck_attendance_records_absent_without_clock_in",
        ),
    )
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"], unique=False)
    op.create_index("ix_attendance_records_day_date", "attendance_records", ["day_date"], unique=False)
    op.create_index("ix_attendance_records_status", "attendance_records", ["status"], unique=False)
    op.create_index(
        "ix_attendance_records_correction_status",
        "attendance_records",
        ["correction_status"],
        unique=False,
    )
    op.create_index(
        "uq_attendance_records_pending_correction",
        "attendance_records",
        ["employee_id", "day_date"],
        unique=True,
        postgresql_where=sa.text("status = 'pending_correction'"),
    )

    op.create_table(
        "attendance_remarks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("remark", sa.Text(), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["record_id"], ["attendance_records.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_attendance_remarks_record_id", "attendance_remarks", ["record_id"], unique=False)

    op.create_table(
        "reconciliation_runs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("status", reconciliation_run_status, nullable=False),
        sa.Column("trigger", sa.String(length=50), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "stats",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.UniqueConstraint("target_date", name="uq_reconciliation_runs_target_date"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("reconciliation_runs")
    op.drop_index("ix_attendance_remarks_record_id", table_name="attendance_remarks")
    op.drop_table("attendance_remarks")
    op.drop_index("uq_attendance_records_pending_correction", table_name="attendance_records")
    op.drop_index("ix_attendance_records_correction_status", table_name="attendance_records")
    op.drop_index("ix_attendance_records_status", table_name="attendance_records")
    op.drop_index("ix_attendance_records_day_date", table_name="attendance_records")
    op.drop_index("ix_attendance_records_employee_id", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_table("holidays")
    op.drop_index("ix_leaves_employee_id", table_name="leaves")
    op.drop_table("leaves")
    op.drop_index("ix_employee_shift_assignments_shift_id", table_name="employee_shift_assignments")
    op.drop_index("ix_employee_shift_assignments_employee_id", table_name="employee_shift_assignments")
    op.drop_table("employee_shift_assignments")
    op.drop_table("shift_policies")
    op.drop_table("employees")

    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
