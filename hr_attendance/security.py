from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from hr_attendance.errors import ApiError
from hr_attendance.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


class Capability(str, enum.Enum):
    ATTENDANCE_SELF = "attendance:self"
    ATTENDANCE_ADMIN = "attendance:admin"
    CORRECTION_DECIDE = "correction:decide"
    FINALIZATION_TRIGGER = "finalization:trigger"
    REPORTS_READ = "reports:read"


ROLE_CAPABILITIES: dict[str, frozenset[Capability]] = {
    "employee": frozenset({Capability.ATTENDANCE_SELF}),
    "manager": frozenset({Capability.ATTENDANCE_SELF, Capability.REPORTS_READ}),
    "hr": frozenset(
        {
            Capability.ATTENDANCE_SELF,
            Capability.ATTENDANCE_ADMIN,
            Capability.CORRECTION_DECIDE,
            Capability.REPORTS_READ,
        }
    ),
    "admin": frozenset(Capability),
}


@dataclass(frozen=True)
class Actor:
    subject: str
    role: str
    capabilities: frozenset[Capability]
    employee_id: int | None = None

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_capabilities(raw: Any, role: str) -> frozenset[Capability]:
    # Explicit claim wins; otherwise derive from the role. Unknown values are dropped.
    if raw is None:
        return ROLE_CAPABILITIES.get(role, frozenset())
    if not isinstance(raw, (list, tuple)):
        return frozenset()
    parsed: set[Capability] = set()
    for value in raw:
        try:
            parsed.add(Capability(value))
        except ValueError:
            continue
    return frozenset(parsed)


def create_access_token(
    *,
    sub: str,
    role: str,
    employee_id: int | None = None,
    capabilities: Iterable[Capability] | None = None,
) -> tuple[str, int, dict[str, Any]]:
    settings = get_settings()
    now = _utcnow()
    exp = now + timedelta(minutes=settings.access_token_minutes)
    claims: dict[str, Any] = {
        "sub": sub,
        "role": role,
        "employee_id": employee_id,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    if capabilities is not None:
        claims["capabilities"] = sorted(item.value for item in capabilities)
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.access_token_minutes * 60, claims


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    return payload


def actor_from_claims(claims: dict[str, Any]) -> Actor:
    role = str(claims.get("role") or "")
    raw_employee_id = claims.get("employee_id")
    employee_id: int | None
    try:
        employee_id = int(raw_employee_id) if raw_employee_id is not None else None
    except (TypeError, ValueError):
        employee_id = None
    return Actor(
        subject=str(claims["sub"]),
        role=role,
        capabilities=_parse_capabilities(claims.get("capabilities"), role),
        employee_id=employee_id,
    )


def get_current_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    actor = actor_from_claims(decode_token(credentials.credentials))
    request.state.actor = actor.role or "unknown"
    request.state.actor_id = actor.subject
    if actor.employee_id is not None:
        request.state.employee_id = actor.employee_id
    return actor


def require_capability(capability: Capability) -> Callable[..., Actor]:
    if not isinstance(capability, Capability):
        raise ValueError(f"Unknown capability: {capability}")

    def _dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.can(capability):
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
        return actor

    return _dependency


def require_employee_actor(actor: Actor = Depends(require_capability(Capability.ATTENDANCE_SELF))) -> Actor:
    if actor.employee_id is None:
        raise ApiError(
            status_code=403,
            code="EMPLOYEE_IDENTITY_REQUIRED",
            message="Token is not bound to an employee.",
        )
    return actor
