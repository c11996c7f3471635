from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.orm import Session

from hr_attendance.models import AuditActorType, AuditLog

logger = logging.getLogger("hr_attendance.audit")


@dataclass(frozen=True)
class AuditContext:
    """Who performed an action and from where."""

    actor_type: AuditActorType
    actor_id: str
    ip: str | None = None
    user_agent: str | None = None
    request_id: str | None = None


SYSTEM_CONTEXT = AuditContext(actor_type=AuditActorType.SYSTEM, actor_id="system")


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def audit_context_from_request(request: Request, actor_type: AuditActorType, actor_id: str) -> AuditContext:
    return AuditContext(
        actor_type=actor_type,
        actor_id=actor_id,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        request_id=getattr(request.state, "request_id", None),
    )


def build_audit_row(
    context: AuditContext,
    *,
    action: str,
    success: bool = True,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    return AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=context.actor_type,
        actor_id=context.actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=context.ip,
        user_agent=context.user_agent,
        success=success,
        details=details or {},
    )


def log_audit(
    db: Session,
    context: AuditContext,
    *,
    action: str,
    success: bool = True,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Persist an audit row in its own commit; write failures are logged, never raised."""
    db.add(
        build_audit_row(
            context,
            action=action,
            success=success,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
        )
    )
    fields = {
        "request_id": context.request_id,
        "action": action,
        "actor_type": context.actor_type.value,
        "actor_id": context.actor_id,
        "success": success,
    }
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("audit_log_write_failed", extra=fields)
        return

    logger.info(
        "audit_event",
        extra={
            **fields,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "ip": context.ip,
            "details": details or {},
        },
    )
