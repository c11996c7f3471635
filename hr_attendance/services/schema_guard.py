from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from hr_attendance.models import AttendanceStatus


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "employees": {"id", "is_active"},
    "attendance_records": {
        "id",
        "employee_id",
        "day_date",
        "clock_in_utc",
        "clock_out_utc",
        "break_sessions",
        "status",
        "status_reason",
        "totals_are_final",
        "correction_status",
    },
    "shift_policies": {"id", "start_time_local", "end_time_local", "full_day_hours", "half_day_hours"},
    "reconciliation_runs": {"id", "target_date", "status", "started_at"},
    "alembic_version": {"version_num"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "attendance_status": {item.value for item in AttendanceStatus},
}

REQUIRED_CHECK_CONSTRAINTS: dict[str, set[str]] = {
    "attendance_records": {"ck_attendance_records_absent_without_clock_in"},
}

REQUIRED_INDEXES: dict[str, set[str]] = {
    "attendance_records": {"uq_attendance_records_pending_correction"},
}


def _names(rows: list[dict[str, Any]]) -> set[str]:
    return {str(row.get("name")) for row in rows}


def _enum_labels(inspector: Any) -> dict[str, set[str]]:
    labels_by_name: dict[str, set[str]] = {}
    for enum_item in inspector.get_enums() or []:
        name = str(enum_item.get("name") or "").strip()
        labels = enum_item.get("labels")
        if name and isinstance(labels, list):
            labels_by_name[name] = {str(label) for label in labels}
    return labels_by_name


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    """Compare the live database with the tables, enums and constraints the app relies on.

    Missing columns, enum labels and CHECK constraints are issues; missing indexes are warnings.
    """
    issues: list[str] = []
    warnings: list[str] = []
    inspector = inspect(engine)

    def required_names(
        missing_code: str,
        failure_code: str,
        requirements: dict[str, set[str]],
        reader: Callable[[str], list[dict[str, Any]]],
        missing_sink: list[str],
    ) -> None:
        for table_name, required in requirements.items():
            try:
                present = _names(reader(table_name))
            except Exception as exc:  # pragma: no cover - backend specific
                warnings.append(f"{failure_code}:{table_name}:{exc.__class__.__name__}")
                continue
            missing = sorted(required - present)
            if missing:
                missing_sink.append(f"{missing_code}:{table_name}:{','.join(missing)}")

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = _names(inspector.get_columns(table_name))
        except Exception as exc:  # pragma: no cover - backend specific
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue
        missing_columns = sorted(required_columns - column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    required_names(
        "MISSING_CHECK_CONSTRAINTS",
        "CHECK_CONSTRAINT_INSPECTION_FAILED",
        REQUIRED_CHECK_CONSTRAINTS, inspector.get_check_constraints, issues)
    required_names("MISSING_INDEXES", "INDEX_INSPECTION_FAILED", REQUIRED_INDEXES, inspector.get_indexes, warnings)

    try:
        enum_labels = _enum_labels(inspector)
    except Exception as exc:  # pragma: no cover - backend specific
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        enum_labels = {}

    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in enum_labels:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing_values = sorted(required_values - enum_labels[enum_name])
        if missing_values:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    try:
        with engine.connect() as connection:
            version = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
        if not str(version or "").strip():
            issues.append("ALEMBIC_VERSION_EMPTY")
    except Exception as exc:  # pragma: no cover - backend specific
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=not issues,
        checked_at_utc=datetime.now(timezone.utc),
        issues=issues,
        warnings=warnings,
    )
