from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from jose import jwt

from hr_attendance.errors import ApiError
from hr_attendance.security import (
    Capability,
    actor_from_claims,
    create_access_token,
    decode_token,
    require_capability,
)
from hr_attendance.settings import get_settings


class SecurityFeatureTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()
        self._env = patch.dict(os.environ, {"JWT_SECRET": "jwt-test-secret"}, clear=False)
        self._env.start()
        get_settings.cache_clear()

    def tearDown(self) -> None:
        self._env.stop()
        get_settings.cache_clear()

    def test_access_token_roundtrip_carries_employee_and_role(self) -> None:
        token, expires_in, _claims = create_access_token(sub="employee:7", role="employee", employee_id=7)
        claims = decode_token(token)
        actor = actor_from_claims(claims)

        self.assertEqual(expires_in, get_settings().access_token_minutes * 60)
        self.assertEqual(actor.subject, "employee:7")
        self.assertEqual(actor.employee_id, 7)
        self.assertTrue(actor.can(Capability.ATTENDANCE_SELF))
        self.assertFalse(actor.can(Capability.FINALIZATION_TRIGGER))

    def test_explicit_capability_claim_overrides_role(self) -> None:
        token, _, _ = create_access_token(
            sub="ops",
            role="employee",
            capabilities=[Capability.FINALIZATION_TRIGGER],
        )
        actor = actor_from_claims(decode_token(token))
        self.assertEqual(actor.capabilities, frozenset({Capability.FINALIZATION_TRIGGER}))

    def test_unknown_capabilities_are_dropped(self) -> None:
        actor = actor_from_claims({"sub": "x", "role": "admin", "capabilities": ["attendance:self", "root"]})
        self.assertEqual(actor.capabilities, frozenset({Capability.ATTENDANCE_SELF}))

    def test_admin_role_has_every_capability(self) -> None:
        actor = actor_from_claims({"sub": "boss", "role": "admin"})
        self.assertTrue(all(actor.can(item) for item in Capability))

    def test_tampered_or_foreign_token_is_rejected(self) -> None:
        token, _, _ = create_access_token(sub="employee:7", role="employee", employee_id=7)
        with self.assertRaises(ApiError) as ctx:
            decode_token(token + "x")
        self.assertEqual(ctx.exception.status_code, 401)

        forged = jwt.encode({"sub": "employee:7", "typ": "access"}, "other-secret", algorithm="HS256")
        with self.assertRaises(ApiError):
            decode_token(forged)

    def test_require_capability_rejects_unknown_values(self) -> None:
        with self.assertRaises(ValueError):
            require_capability("attendance:everything")  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
