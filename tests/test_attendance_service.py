from __future__ import annotations

import unittest
from datetime import date, timedelta

from sqlalchemy import select

from hr_attendance.errors import ApiError
from hr_attendance.models import AttendanceRecord, AttendanceStatus, AuditLog, WorkMode
from hr_attendance.services.attendance import clock_in, clock_out, end_break, get_today_status, start_break
from sqlite_support import StaticPolicyProvider, add_employee, general_shift, local, make_session

DAY = date(2026, 3, 2)


class AttendanceServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        add_employee(self.db, 1)
        self.provider = StaticPolicyProvider(general_shift(grace_period_minutes=10, late_threshold_minutes=15))

    def tearDown(self) -> None:
        self.db.close()

    def test_full_day_sequence(self) -> None:
        record = clock_in(
            self.db,
            employee_id=1,
            now=local(DAY, 9, 5),
            work_mode=WorkMode.WFH,
            policy_provider=self.provider,
        )
        self.assertEqual(record.status, AttendanceStatus.IN_PROGRESS)
        self.assertEqual(record.day_date, DAY)
        self.assertFalse(record.is_late)

        record = start_break(self.db, employee_id=1, now=local(DAY, 13))
        self.assertEqual(record.status, AttendanceStatus.ON_BREAK)

        record = end_break(self.db, employee_id=1, now=local(DAY, 13, 30))
        self.assertEqual(record.status, AttendanceStatus.IN_PROGRESS)
        self.assertEqual(record.total_break_minutes, 30)

        record = clock_out(self.db, employee_id=1, now=local(DAY, 17, 5), policy_provider=self.provider)
        self.assertEqual(record.status, AttendanceStatus.COMPLETED)
        self.assertFalse(record.totals_are_final)
        self.assertEqual(record.total_worked_minutes, 450)
        self.assertIsNone(record.half_day_type)

        actions = self.db.scalars(select(AuditLog.action)).all()
        self.assertEqual(actions.count("ATTENDANCE_STATUS_CHANGED"), 4)

    def test_late_clock_in_is_flagged(self) -> None:
        record = clock_in(self.db, employee_id=1, now=local(DAY, 9, 40), policy_provider=self.provider)
        self.assertTrue(record.is_late)
        self.assertEqual(record.late_minutes, 30)

    def test_second_clock_in_is_denied(self) -> None:
        clock_in(self.db, employee_id=1, now=local(DAY, 9), policy_provider=self.provider)
        with self.assertRaises(ApiError) as ctx:
            clock_in(self.db, employee_id=1, now=local(DAY, 10), policy_provider=self.provider)
        self.assertEqual(ctx.exception.code, "CLOCK_IN_DENIED")
        self.assertEqual(ctx.exception.message, "Already clocked in today")

    def test_clock_in_on_leave_is_denied_without_changes(self) -> None:
        self.db.add(
            AttendanceRecord(
                employee_id=1,
                day_date=DAY,
                status=AttendanceStatus.LEAVE,
                status_reason="Approved leave",
                break_sessions=[],
            )
        )
        self.db.commit()

        with self.assertRaises(ApiError) as ctx:
            clock_in(self.db, employee_id=1, now=local(DAY, 9), policy_provider=self.provider)
        self.assertEqual(ctx.exception.message, "Cannot clock in - you are on leave today")

        self.db.expire_all()
        record = self.db.scalar(select(AttendanceRecord))
        self.assertEqual(record.status, AttendanceStatus.LEAVE)  # type: ignore[union-attr]
        self.assertIsNone(record.clock_in_utc)  # type: ignore[union-attr]

    def test_clock_out_after_grace_window_is_denied(self) -> None:
        clock_in(self.db, employee_id=1, now=local(DAY, 9), policy_provider=self.provider)
        with self.assertRaises(ApiError) as ctx:
            clock_out(self.db, employee_id=1, now=local(DAY, 17, 11), policy_provider=self.provider)
        self.assertEqual(ctx.exception.code, "CLOCK_OUT_DENIED")

    def test_break_total_matches_clock_out_total_for_sub_minute_breaks(self) -> None:
        clock_in(self.db, employee_id=1, now=local(DAY, 9), policy_provider=self.provider)
        start_break(self.db, employee_id=1, now=local(DAY, 11))
        end_break(self.db, employee_id=1, now=local(DAY, 11, 0, 40))
        start_break(self.db, employee_id=1, now=local(DAY, 15))
        record = end_break(self.db, employee_id=1, now=local(DAY, 15, 0, 40))
        self.assertEqual(record.total_break_minutes, 1)

        record = clock_out(self.db, employee_id=1, now=local(DAY, 17), policy_provider=self.provider)
        self.assertEqual(record.total_break_minutes, 1)
        self.assertEqual(record.total_worked_minutes, 478)

    def test_clock_out_closes_open_break(self) -> None:
        clock_in(self.db, employee_id=1, now=local(DAY, 9), policy_provider=self.provider)
        start_break(self.db, employee_id=1, now=local(DAY, 16, 30))
        record = clock_out(self.db, employee_id=1, now=local(DAY, 17), policy_provider=self.provider)
        self.assertIsNotNone(record.break_sessions[0]["break_out"])
        self.assertEqual(record.total_break_minutes, 30)
        self.assertEqual(record.total_worked_minutes, 450)

    def test_overnight_session_clocks_out_on_next_calendar_day(self) -> None:
        night = general_shift(start_time=local(DAY, 22).time(), end_time=local(DAY, 6).time())
        provider = StaticPolicyProvider(night)
        clock_in(self.db, employee_id=1, now=local(DAY, 22), policy_provider=provider)
        record = clock_out(
            self.db,
            employee_id=1,
            now=local(DAY + timedelta(days=1), 6),
            policy_provider=provider,
        )
        self.assertEqual(record.day_date, DAY)
        self.assertEqual(record.total_worked_minutes, 480)

    def test_break_without_session_is_denied(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            start_break(self.db, employee_id=1, now=local(DAY, 12))
        self.assertEqual(ctx.exception.code, "BREAK_START_DENIED")
        with self.assertRaises(ApiError) as ctx:
            end_break(self.db, employee_id=1, now=local(DAY, 12))
        self.assertEqual(ctx.exception.code, "BREAK_END_DENIED")

    def test_actions_without_a_record_are_denied(self) -> None:
        cases = [
            ("CLOCK_OUT_DENIED", lambda: clock_out(self.db, employee_id=1, now=local(DAY, 17), policy_provider=self.provider)),
            ("BREAK_START_DENIED", lambda: start_break(self.db, employee_id=1, now=local(DAY, 12))),
            ("BREAK_END_DENIED", lambda: end_break(self.db, employee_id=1, now=local(DAY, 12))),
        ]
        for code, action in cases:
            with self.subTest(code=code):
                with self.assertRaises(ApiError) as ctx:
                    action()
                self.assertEqual(ctx.exception.code, code)
        self.assertIsNone(self.db.scalar(select(AttendanceRecord)))

    def test_inactive_employee_is_rejected(self) -> None:
        add_employee(self.db, 2, is_active=False)
        with self.assertRaises(ApiError) as ctx:
            clock_in(self.db, employee_id=2, now=local(DAY, 9), policy_provider=self.provider)
        self.assertEqual(ctx.exception.code, "EMPLOYEE_INACTIVE")

        with self.assertRaises(ApiError) as ctx:
            clock_in(self.db, employee_id=99, now=local(DAY, 9), policy_provider=self.provider)
        self.assertEqual(ctx.exception.code, "EMPLOYEE_NOT_FOUND")

    def test_today_status_reports_live_work_time(self) -> None:
        clock_in(self.db, employee_id=1, now=local(DAY, 9), policy_provider=self.provider)
        start_break(self.db, employee_id=1, now=local(DAY, 12))

        today = get_today_status(self.db, employee_id=1, now=local(DAY, 12, 20), policy_provider=self.provider)

        self.assertEqual(today.live.mode, "live")  # type: ignore[union-attr]
        self.assertEqual(today.live.break_minutes, 20)  # type: ignore[union-attr]
        self.assertEqual(today.live.work_minutes, 180)  # type: ignore[union-attr]
        self.assertFalse(today.can_clock_in.allowed)
        self.assertTrue(today.can_end_break.allowed)
        self.assertFalse(today.can_start_break.allowed)

    def test_naive_now_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            clock_in(self.db, employee_id=1, now=local(DAY, 9).replace(tzinfo=None), policy_provider=self.provider)


if __name__ == "__main__":
    unittest.main()
