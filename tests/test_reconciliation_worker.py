from __future__ import annotations

import asyncio
import threading
import unittest
from datetime import date, datetime, timezone

from hr_attendance.services.reconciliation import ReconciliationResult
from hr_attendance.worker import MIN_INTERVAL_SECONDS, ReconciliationWorker

NOW = datetime(2026, 3, 2, 20, 0, tzinfo=timezone.utc)


class ReconciliationWorkerTests(unittest.IsolatedAsyncioTestCase):
    async def test_run_once_passes_moment_to_tick(self) -> None:
        seen: list[datetime] = []
        expected = ReconciliationResult(target_date=date(2026, 3, 2), trigger="nightly", status="completed")

        def tick(now_utc: datetime) -> ReconciliationResult:
            seen.append(now_utc)
            return expected

        worker = ReconciliationWorker(60, tick=tick)
        result = await worker.run_once(NOW)

        self.assertIs(result, expected)
        self.assertEqual(seen, [NOW])

    async def test_run_once_logs_and_swallows_tick_failure(self) -> None:
        def tick(now_utc: datetime) -> ReconciliationResult:
            raise RuntimeError("database unavailable")

        worker = ReconciliationWorker(60, tick=tick)
        with self.assertLogs("hr_attendance.reconciliation_worker", level="ERROR") as captured:
            result = await worker.run_once(NOW)

        self.assertIsNone(result)
        self.assertIn("reconciliation_worker_tick_failed", captured.output[0])

    async def test_start_and_stop(self) -> None:
        ticked = threading.Event()

        def tick(now_utc: datetime) -> None:
            ticked.set()
            return None

        worker = ReconciliationWorker(60, tick=tick)
        worker.start()
        self.assertTrue(worker.running)
        self.assertTrue(await asyncio.to_thread(ticked.wait, 5))

        await worker.stop()
        self.assertFalse(worker.running)

    def test_interval_has_floor(self) -> None:
        self.assertEqual(ReconciliationWorker(1).interval_seconds, MIN_INTERVAL_SECONDS)
        self.assertEqual(ReconciliationWorker(120).interval_seconds, 120)


if __name__ == "__main__":
    unittest.main()
