from datetime import date, datetime, timedelta, timezone
import unittest

from hr_attendance.errors import ApiError
from hr_attendance.models import AttendanceRecord, AttendanceStatus, HalfDayType
from hr_attendance.services.monthly import get_monthly_summary, month_bounds, summarize_records
from sqlite_support import add_employee, local, make_session


def _record(day: int, status: AttendanceStatus, **fields) -> AttendanceRecord:  # type: ignore[no-untyped-def]
    fields.setdefault("break_sessions", [])
    fields.setdefault("total_worked_minutes", 0)
    fields.setdefault("total_break_minutes", 0)
    fields.setdefault("overtime_minutes", 0)
    fields.setdefault("late_minutes", 0)
    fields.setdefault("early_exit_minutes", 0)
    fields.setdefault("is_late", False)
    fields.setdefault("is_early_departure", False)
    return AttendanceRecord(employee_id=1, day_date=date(2026, 3, day), status=status, **fields)


class MonthlyServiceTests(unittest.TestCase):
    def test_summary_counts_final_statuses(self) -> None:
        records = [
            _record(
                2,
                AttendanceStatus.PRESENT,
                clock_in_utc=local(date(2026, 3, 2), 9),
                clock_out_utc=local(date(2026, 3, 2), 18),
                total_worked_minutes=480,
                total_break_minutes=60,
                overtime_minutes=30,
                half_day_type=HalfDayType.FULL_DAY,
            ),
            _record(
                3,
                AttendanceStatus.HALF_DAY,
                clock_in_utc=local(date(2026, 3, 3), 9, 20),
                clock_out_utc=local(date(2026, 3, 3), 14),
                total_worked_minutes=280,
                is_late=True,
                late_minutes=10,
            ),
            _record(4, AttendanceStatus.ABSENT),
            _record(5, AttendanceStatus.LEAVE),
            _record(7, AttendanceStatus.WEEKEND),
        ]
        summary = summarize_records(
            records,
            employee_id=1,
            year=2026,
            month=3,
            now=datetime(2026, 3, 10, tzinfo=timezone.utc),
        )

        self.assertEqual(summary.total_days, 5)
        self.assertEqual(summary.present_days, 1)
        self.assertEqual(summary.half_days, 1)
        self.assertEqual(summary.absent_days, 1)
        self.assertEqual(summary.leave_days, 1)
        self.assertEqual(summary.weekend_days, 1)
        self.assertEqual(summary.total_worked_minutes, 760)
        self.assertEqual(summary.total_overtime_hours, 0.5)
        self.assertEqual(summary.late_days, 1)
        self.assertEqual(summary.total_late_minutes, 10)
        self.assertEqual(summary.average_work_hours, round(12.67 / 2, 2))
        self.assertFalse(summary.includes_live_session)

    def test_open_session_contributes_live_time(self) -> None:
        now = local(date(2026, 3, 9), 12, 0)
        records = [
            _record(
                6,
                AttendanceStatus.PRESENT,
                clock_in_utc=local(date(2026, 3, 6), 9),
                clock_out_utc=local(date(2026, 3, 6), 17),
                total_worked_minutes=480,
            ),
            _record(
                9,
                AttendanceStatus.ON_BREAK,
                clock_in_utc=now - timedelta(hours=3),
                break_sessions=[{"break_in": (now - timedelta(minutes=30)).isoformat(), "break_out": None}],
            ),
        ]
        summary = summarize_records(records, employee_id=1, year=2026, month=3, now=now)

        self.assertTrue(summary.includes_live_session)
        self.assertEqual(summary.live_worked_minutes, 150)
        self.assertEqual(summary.total_worked_minutes, 630)
        self.assertEqual(summary.total_break_minutes, 30)
        self.assertEqual(summary.incomplete_days, 1)

    def test_completed_but_unfinalized_days_are_reported(self) -> None:
        records = [
            _record(
                2,
                AttendanceStatus.COMPLETED,
                clock_in_utc=local(date(2026, 3, 2), 9),
                clock_out_utc=local(date(2026, 3, 2), 17),
                total_worked_minutes=480,
            )
        ]
        summary = summarize_records(records, employee_id=1, year=2026, month=3, now=local(date(2026, 3, 2), 18))
        self.assertEqual(summary.unfinalized_days, 1)
        self.assertEqual(summary.total_worked_minutes, 480)
        self.assertFalse(summary.includes_live_session)

    def test_month_bounds(self) -> None:
        self.assertEqual(month_bounds(2024, 2), (date(2024, 2, 1), date(2024, 2, 29)))
        with self.assertRaises(ApiError):
            month_bounds(2026, 13)

    def test_summary_reads_only_requested_month(self) -> None:
        db = make_session()
        try:
            add_employee(db, 1)
            db.add(_record(31, AttendanceStatus.ABSENT))
            db.add(
                AttendanceRecord(
                    employee_id=1,
                    day_date=date(2026, 4, 1),
                    status=AttendanceStatus.ABSENT,
                    break_sessions=[],
                )
            )
            db.commit()
            summary = get_monthly_summary(db, 1, 2026, 3, now=datetime(2026, 4, 2, tzinfo=timezone.utc))
            self.assertEqual(summary.total_days, 1)

            with self.assertRaises(ApiError) as ctx:
                get_monthly_summary(db, 42, 2026, 3)
            self.assertEqual(ctx.exception.code, "EMPLOYEE_NOT_FOUND")
        finally:
            db.close()


if __name__ == "__main__":
    unittest.main()
