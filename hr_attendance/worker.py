from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import datetime, timezone
from typing import Callable

from hr_attendance.services.reconciliation import ReconciliationResult, run_due_reconciliation

logger = logging.getLogger("hr_attendance.reconciliation_worker")

MIN_INTERVAL_SECONDS = 15

Tick = Callable[[datetime], ReconciliationResult | None]


class ReconciliationWorker:
    """Polls for a due nightly reconciliation and runs it off the event loop."""

    def __init__(self, interval_seconds: int, tick: Tick = run_due_reconciliation) -> None:
        self.interval_seconds = max(MIN_INTERVAL_SECONDS, int(interval_seconds))
        self._tick = tick
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now_utc: datetime | None = None) -> ReconciliationResult | None:
        moment = now_utc or datetime.now(timezone.utc)
        try:
            result = await asyncio.to_thread(self._tick, moment)
        except Exception:
            logger.exception("reconciliation_worker_tick_failed")
            return None
        if result is not None:
            logger.info("reconciliation_worker_tick", extra=result.to_dict())
        return result

    async def _loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event))

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        self._stop_event = None
        self._task = None
