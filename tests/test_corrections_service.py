from __future__ import annotations

import unittest
from datetime import date

from sqlalchemy import select

from hr_attendance.errors import ApiError
from hr_attendance.models import (
    AttendanceRecord,
    AttendanceRemark,
    AttendanceStatus,
    CorrectionStatus,
    HalfDayType,
)
from hr_attendance.services.corrections import (
    apply_correction_decision,
    flag_for_correction,
    list_pending_corrections,
    request_correction,
)
from hr_attendance.services.shift_policy import FinalizationThresholds
from sqlite_support import StaticPolicyProvider, add_employee, general_shift, local, make_session

DAY = date(2026, 3, 2)


class CorrectionServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        add_employee(self.db, 1)
        self.provider = StaticPolicyProvider(general_shift())
        self.thresholds = FinalizationThresholds()

    def tearDown(self) -> None:
        self.db.close()

    def _add(self, status: AttendanceStatus, **fields) -> AttendanceRecord:  # type: ignore[no-untyped-def]
        record = AttendanceRecord(employee_id=1, day_date=DAY, status=status, break_sessions=[], **fields)
        self.db.add(record)
        self.db.commit()
        return record

    def _decide(self, record_id: int, approve: bool, **kwargs) -> AttendanceRecord:  # type: ignore[no-untyped-def]
        return apply_correction_decision(
            self.db,
            record_id=record_id,
            approve=approve,
            actor_id="hr:1",
            policy_provider=self.provider,
            thresholds=self.thresholds,
            **kwargs,
        )

    def test_employee_request_moves_day_to_pending_correction(self) -> None:
        self._add(
            AttendanceStatus.HALF_DAY,
            clock_in_utc=local(DAY, 9),
            clock_out_utc=local(DAY, 13),
            half_day_type=HalfDayType.FIRST_HALF,
        )
        record = request_correction(self.db, employee_id=1, day_date=DAY, reason="Forgot to clock out", actor_id="emp")

        self.assertEqual(record.status, AttendanceStatus.PENDING_CORRECTION)
        self.assertEqual(record.correction_status, CorrectionStatus.PENDING)
        self.assertIsNone(record.half_day_type)
        self.assertEqual(record.status_reason, "Correction requested: Forgot to clock out")

        with self.assertRaises(ApiError) as ctx:
            request_correction(self.db, employee_id=1, day_date=DAY, reason="again", actor_id="emp")
        self.assertEqual(ctx.exception.code, "CORRECTION_ALREADY_PENDING")

    def test_protected_or_open_days_cannot_be_corrected(self) -> None:
        record = self._add(AttendanceStatus.LEAVE)
        with self.assertRaises(ApiError) as ctx:
            request_correction(self.db, employee_id=1, day_date=DAY, reason="wrong", actor_id="emp")
        self.assertEqual(ctx.exception.code, "CORRECTION_NOT_ALLOWED")

        record.status = AttendanceStatus.IN_PROGRESS
        record.clock_in_utc = local(DAY, 9)
        self.db.commit()
        with self.assertRaises(ApiError):
            request_correction(self.db, employee_id=1, day_date=DAY, reason="wrong", actor_id="emp")

    def test_missing_day_returns_not_found(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            request_correction(self.db, employee_id=1, day_date=DAY, reason="nothing", actor_id="emp")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_approval_with_clock_out_finalizes_the_day(self) -> None:
        record = self._add(
            AttendanceStatus.PENDING_CORRECTION,
            clock_in_utc=local(DAY, 9),
            correction_requested=True,
            correction_status=CorrectionStatus.PENDING,
        )
        decided = self._decide(record.id, True, clock_out_utc=local(DAY, 17, 30), note="Confirmed with manager")

        self.assertEqual(decided.status, AttendanceStatus.PRESENT)
        self.assertEqual(decided.half_day_type, HalfDayType.FULL_DAY)
        self.assertEqual(decided.correction_status, CorrectionStatus.APPROVED)
        self.assertTrue(decided.totals_are_final)
        self.assertEqual(decided.corrected_by, "hr:1")
        remarks = self.db.scalars(select(AttendanceRemark.remark)).all()
        self.assertEqual(remarks, ["Confirmed with manager"])

    def test_approval_without_clock_out_is_incomplete(self) -> None:
        record = self._add(
            AttendanceStatus.PENDING_CORRECTION,
            clock_in_utc=local(DAY, 9),
            correction_status=CorrectionStatus.PENDING,
        )
        with self.assertRaises(ApiError) as ctx:
            self._decide(record.id, True)
        self.assertEqual(ctx.exception.code, "CORRECTION_INCOMPLETE")

    def test_rejection_with_missing_clock_out_keeps_day_under_review(self) -> None:
        record = self._add(
            AttendanceStatus.PENDING_CORRECTION,
            clock_in_utc=local(DAY, 9),
            correction_status=CorrectionStatus.PENDING,
        )
        decided = self._decide(record.id, False)
        self.assertEqual(decided.status, AttendanceStatus.PENDING_CORRECTION)
        self.assertEqual(decided.correction_status, CorrectionStatus.REJECTED)

    def test_rejection_refinalizes_on_original_facts(self) -> None:
        self._add(
            AttendanceStatus.PRESENT,
            clock_in_utc=local(DAY, 9),
            clock_out_utc=local(DAY, 13, 30),
            half_day_type=HalfDayType.FULL_DAY,
        )
        record = request_correction(self.db, employee_id=1, day_date=DAY, reason="Manual check", actor_id="emp")
        decided = self._decide(record.id, False)
        self.assertEqual(decided.status, AttendanceStatus.HALF_DAY)
        self.assertEqual(decided.half_day_type, HalfDayType.FIRST_HALF)

    def test_day_without_clock_in_resolves_to_absent(self) -> None:
        record = self._add(AttendanceStatus.PENDING_CORRECTION, correction_status=CorrectionStatus.PENDING)
        decided = self._decide(record.id, True)
        self.assertEqual(decided.status, AttendanceStatus.ABSENT)

    def test_decision_requires_pending_correction(self) -> None:
        record = self._add(AttendanceStatus.ABSENT)
        with self.assertRaises(ApiError) as ctx:
            self._decide(record.id, True)
        self.assertEqual(ctx.exception.code, "NO_PENDING_CORRECTION")

    def test_flag_and_list_pending(self) -> None:
        record = self._add(
            AttendanceStatus.PRESENT,
            clock_in_utc=local(DAY, 9),
            clock_out_utc=local(DAY, 17),
            half_day_type=HalfDayType.FULL_DAY,
        )
        flagged = flag_for_correction(self.db, record_id=record.id, reason="Badge mismatch", actor_id="hr:1")
        self.assertEqual(flagged.status, AttendanceStatus.PENDING_CORRECTION)
        self.assertEqual(flagged.flagged_by, "hr:1")

        items, total = list_pending_corrections(self.db, limit=10, offset=0)
        self.assertEqual(total, 1)
        self.assertEqual([item.id for item in items], [record.id])


if __name__ == "__main__":
    unittest.main()
