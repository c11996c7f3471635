from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from hr_attendance.audit import AuditContext, build_audit_row
from hr_attendance.models import AttendanceStatus, AuditActorType

logger = logging.getLogger("hr_attendance.events")

STATUS_CHANGE_ACTION = "ATTENDANCE_STATUS_CHANGED"


@dataclass(frozen=True)
class StatusChangeEvent:
    record_id: int | None
    employee_id: int
    day_date: date
    previous_status: AttendanceStatus | None
    new_status: AttendanceStatus
    reason: str | None
    source: str
    actor_type: AuditActorType = AuditActorType.SYSTEM
    actor_id: str = "system"

    def to_details(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["day_date"] = self.day_date.isoformat()
        payload["previous_status"] = self.previous_status.value if self.previous_status else None
        payload["new_status"] = self.new_status.value
        payload["actor_type"] = self.actor_type.value
        return payload


def emit_status_change(db: Session, event: StatusChangeEvent) -> None:
    """Stage the audit row in the caller's transaction and publish to the events logger."""
    if event.previous_status == event.new_status:
        return
    db.add(
        build_audit_row(
            AuditContext(actor_type=event.actor_type, actor_id=event.actor_id),
            action=STATUS_CHANGE_ACTION,
            entity_type="attendance_record",
            entity_id=str(event.record_id) if event.record_id is not None else None,
            details=event.to_details(),
        )
    )
    logger.info("attendance_status_changed", extra=event.to_details())


def emit_status_changes(db: Session, events: list[StatusChangeEvent]) -> int:
    emitted = 0
    for item in events:
        if item.previous_status == item.new_status:
            continue
        emit_status_change(db, item)
        emitted += 1
    return emitted
