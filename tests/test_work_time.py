from __future__ import annotations

import unittest
from datetime import date, datetime, time, timedelta, timezone

from hr_attendance.services.shift_policy import ShiftPolicy, parse_hhmm, require_aware
from hr_attendance.services.work_time import (
    break_limit_exceeded,
    calculate_early_exit,
    calculate_final_work_time,
    calculate_lateness,
    calculate_live_work_time,
    calculate_overtime_minutes,
)
from sqlite_support import general_shift, local

DAY = date(2026, 3, 2)


def _break(start: datetime, end: datetime | None) -> dict[str, str | None]:
    return {"break_in": start.isoformat(), "break_out": end.isoformat() if end is not None else None}


class WorkTimeTests(unittest.TestCase):
    def test_final_work_time_subtracts_closed_breaks(self) -> None:
        result = calculate_final_work_time(
            local(DAY, 9),
            local(DAY, 17, 30),
            [_break(local(DAY, 13), local(DAY, 13, 30))],
        )
        self.assertEqual(result.mode, "final")
        self.assertEqual(result.work_minutes, 480)
        self.assertEqual(result.break_minutes, 30)
        self.assertEqual(result.work_hours, 8.0)

    def test_final_work_time_ignores_open_break_and_reports_it(self) -> None:
        result = calculate_final_work_time(
            local(DAY, 9),
            local(DAY, 17),
            [_break(local(DAY, 12), local(DAY, 12, 15)), _break(local(DAY, 16), None)],
        )
        self.assertEqual(result.break_minutes, 15)
        self.assertEqual(result.work_minutes, 465)
        self.assertEqual(result.open_break_count, 1)

    def test_live_work_time_counts_open_break_until_now(self) -> None:
        result = calculate_live_work_time(
            local(DAY, 9),
            local(DAY, 12, 30),
            [_break(local(DAY, 12), None)],
        )
        self.assertEqual(result.mode, "live")
        self.assertEqual(result.break_minutes, 30)
        self.assertEqual(result.work_minutes, 180)
        self.assertEqual(result.open_break_count, 1)

    def test_overnight_session_spans_midnight(self) -> None:
        result = calculate_final_work_time(local(DAY, 22), local(DAY + timedelta(days=1), 6), [])
        self.assertEqual(result.work_minutes, 480)

    def test_naive_timestamps_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            calculate_live_work_time(datetime(2026, 3, 2, 9, 0), local(DAY, 10), [])
        with self.assertRaises(ValueError):
            require_aware(datetime(2026, 3, 2, 9, 0))

    def test_require_aware_normalizes_to_utc(self) -> None:
        self.assertEqual(require_aware(local(DAY, 9)), datetime(2026, 3, 2, 3, 30, tzinfo=timezone.utc))


class ShiftRuleTests(unittest.TestCase):
    def test_clock_in_at_grace_boundary_is_not_late(self) -> None:
        policy = general_shift(grace_period_minutes=10)
        result = calculate_lateness(local(DAY, 9, 10), policy, DAY)
        self.assertFalse(result.is_late)
        self.assertEqual(result.late_minutes, 0)

    def test_clock_in_one_minute_past_grace_is_late(self) -> None:
        policy = general_shift(grace_period_minutes=10)
        result = calculate_lateness(local(DAY, 9, 11), policy, DAY)
        self.assertTrue(result.is_late)
        self.assertEqual(result.late_minutes, 1)

    def test_late_threshold_suppresses_small_lateness(self) -> None:
        policy = general_shift(grace_period_minutes=0, late_threshold_minutes=15)
        self.assertFalse(calculate_lateness(local(DAY, 9, 10), policy, DAY).is_late)
        self.assertTrue(calculate_lateness(local(DAY, 9, 20), policy, DAY).is_late)

    def test_no_policy_means_no_lateness(self) -> None:
        result = calculate_lateness(local(DAY, 11), None, DAY)
        self.assertFalse(result.is_late)

    def test_early_exit_against_shift_end(self) -> None:
        policy = general_shift(early_departure_threshold_minutes=30)
        self.assertFalse(calculate_early_exit(local(DAY, 16, 45), policy, DAY).is_early_departure)
        result = calculate_early_exit(local(DAY, 16), policy, DAY)
        self.assertTrue(result.is_early_departure)
        self.assertEqual(result.early_exit_minutes, 60)

    def test_overnight_shift_end_is_next_day(self) -> None:
        policy = ShiftPolicy(name="Night", start_time=time(22, 0), end_time=time(6, 0))
        self.assertTrue(policy.crosses_midnight)
        self.assertEqual(policy.shift_end_on(DAY), local(DAY + timedelta(days=1), 6).astimezone(timezone.utc))

    def test_overtime_counts_minutes_beyond_full_day_and_threshold(self) -> None:
        policy = general_shift(overtime_enabled=True, overtime_threshold_minutes=30)
        self.assertEqual(calculate_overtime_minutes(540, policy), 30)
        self.assertEqual(calculate_overtime_minutes(500, policy), 0)
        self.assertEqual(calculate_overtime_minutes(540, general_shift()), 0)

    def test_break_limit(self) -> None:
        policy = general_shift(max_break_minutes=60)
        self.assertTrue(break_limit_exceeded(61, policy))
        self.assertFalse(break_limit_exceeded(60, policy))
        self.assertFalse(break_limit_exceeded(600, general_shift()))

    def test_parse_hhmm(self) -> None:
        self.assertEqual(parse_hhmm("08:30"), time(8, 30))
        for raw in ("8", "24:00", "aa:bb", ""):
            with self.assertRaises(ValueError):
                parse_hhmm(raw)


if __name__ == "__main__":
    unittest.main()
