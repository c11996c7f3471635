from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo
import unittest
from unittest.mock import patch

from fastapi import HTTPException

from hr_attendance.errors import ApiError, AttendanceInvariantError
from hr_attendance.models import AttendanceRecord, AttendanceStatus, HalfDayType
from hr_attendance.schemas import AdminRecordUpdateRequest, ExogenousStatusRequest
from hr_attendance.services.manual_overrides import (
    _combine_utc,
    add_remark,
    update_attendance_record,
    upsert_exogenous_status,
)
from hr_attendance.services.shift_policy import FinalizationThresholds
from sqlite_support import StaticPolicyProvider, add_employee, general_shift, local, make_session

DAY = date(2026, 3, 2)


class ManualOverridesServiceTests(unittest.TestCase):
    def test_combine_utc_uses_attendance_timezone(self) -> None:
        with patch(
            "hr_attendance.services.manual_overrides.attendance_timezone",
            return_value=ZoneInfo("Europe/Istanbul"),
        ):
            value = _combine_utc(date(2026, 2, 23), "08:30")
        self.assertEqual(value, datetime(2026, 2, 23, 5, 30, tzinfo=timezone.utc))

    def test_combine_utc_none_when_hhmm_missing(self) -> None:
        self.assertIsNone(_combine_utc(date(2026, 2, 23), None))

    def test_combine_utc_rejects_bad_time(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            _combine_utc(date(2026, 2, 23), "25:00")
        self.assertEqual(ctx.exception.status_code, 422)


class RecordOverrideTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        add_employee(self.db, 1)
        self.record = AttendanceRecord(
            employee_id=1,
            day_date=DAY,
            status=AttendanceStatus.HALF_DAY,
            clock_in_utc=local(DAY, 9),
            clock_out_utc=local(DAY, 13),
            half_day_type=HalfDayType.FIRST_HALF,
            break_sessions=[],
        )
        self.db.add(self.record)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _update(self, **fields) -> AttendanceRecord:  # type: ignore[no-untyped-def]
        return update_attendance_record(
            self.db,
            record_id=self.record.id,
            payload=AdminRecordUpdateRequest(**fields),
            updated_by="admin",
            policy_provider=StaticPolicyProvider(general_shift()),
            thresholds=FinalizationThresholds(),
        )

    def test_time_change_refinalizes_final_day(self) -> None:
        record = self._update(out_time="17:30", remark="Badge reader outage")
        self.assertEqual(record.status, AttendanceStatus.PRESENT)
        self.assertEqual(record.half_day_type, HalfDayType.FULL_DAY)
        self.assertEqual(record.work_hours, 8.5)
        self.assertEqual(record.remarks, "Badge reader outage")

    def test_out_time_before_in_time_rolls_to_next_day(self) -> None:
        record = self._update(in_time="22:00", out_time="06:00")
        self.assertEqual(record.total_worked_minutes, 480)

    def test_absent_override_with_clock_in_is_rejected(self) -> None:
        with self.assertRaises(AttendanceInvariantError):
            self._update(status=AttendanceStatus.ABSENT)
        self.db.expire_all()
        self.assertEqual(self.db.get(AttendanceRecord, self.record.id).status, AttendanceStatus.HALF_DAY)  # type: ignore[union-attr]

    def test_status_override_clears_half_day_type(self) -> None:
        record = self._update(status=AttendanceStatus.PENDING_CORRECTION, status_reason="Audit")
        self.assertEqual(record.status, AttendanceStatus.PENDING_CORRECTION)
        self.assertIsNone(record.half_day_type)
        self.assertEqual(record.status_reason, "Audit")

    def test_remark_is_recorded(self) -> None:
        entry = add_remark(self.db, record_id=self.record.id, remark="  Checked  ", created_by="admin")
        self.assertEqual(entry.remark, "Checked")
        with self.assertRaises(HTTPException):
            add_remark(self.db, record_id=999, remark="x", created_by="admin")


class ExogenousStatusTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        add_employee(self.db, 1)

    def tearDown(self) -> None:
        self.db.close()

    def test_leave_is_seeded_for_future_day(self) -> None:
        record = upsert_exogenous_status(
            self.db,
            payload=ExogenousStatusRequest(employee_id=1, day_date=DAY, status=AttendanceStatus.LEAVE),
            created_by="hr",
        )
        self.assertEqual(record.status, AttendanceStatus.LEAVE)
        self.assertEqual(record.status_reason, "Leave")

    def test_only_protected_statuses_are_accepted(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            upsert_exogenous_status(
                self.db,
                payload=ExogenousStatusRequest(employee_id=1, day_date=DAY, status=AttendanceStatus.PRESENT),
                created_by="hr",
            )
        self.assertEqual(ctx.exception.code, "INVALID_EXOGENOUS_STATUS")

    def test_day_with_clock_in_is_not_overwritten(self) -> None:
        self.db.add(
            AttendanceRecord(
                employee_id=1,
                day_date=DAY,
                status=AttendanceStatus.IN_PROGRESS,
                clock_in_utc=local(DAY, 9),
                break_sessions=[],
            )
        )
        self.db.commit()
        with self.assertRaises(ApiError) as ctx:
            upsert_exogenous_status(
                self.db,
                payload=ExogenousStatusRequest(employee_id=1, day_date=DAY, status=AttendanceStatus.HOLIDAY),
                created_by="hr",
            )
        self.assertEqual(ctx.exception.code, "ATTENDANCE_HAS_CLOCK_IN")


if __name__ == "__main__":
    unittest.main()
