"""
sweeper.py — Periodic missed check-in sweep.

Pending check-ins whose expected arrival has passed are only moved to
``missed`` when somebody asks. In production that somebody is this
runner: it calls ``SafetyService.sweep_missed_check_ins`` every
CHECK_IN_SWEEP_INTERVAL_SECONDS from inside the API process.

    runner = MissedCheckInSweeper(service, interval_seconds=60)
    await runner.start()
    ...
    await runner.stop()

The sweep itself is idempotent, so overlapping runs across several API
workers are harmless: the losers of each status swap are skipped.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from backend.app.safety.service import SafetyService, SweepReport

logger = logging.getLogger(__name__)


class MissedCheckInSweeper:
    """Runs the missed check-in sweep on a fixed interval."""

    def __init__(self, service: SafetyService, interval_seconds: float = 60):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._service = service
        self._interval = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.last_report: Optional[SweepReport] = None
        self.last_error: Optional[str] = None
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the sweep loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Missed check-in sweeper started (every %ss)", self._interval)

    async def stop(self) -> None:
        """Stop the sweep loop and wait for it to exit."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Missed check-in sweeper stopped")

    async def run_once(self, now: Optional[datetime] = None) -> SweepReport:
        """One sweep, outside the loop. Errors propagate to the caller."""
        report = await self._service.sweep_missed_check_ins(now)
        self.runs += 1
        self.last_report = report
        self.last_error = None
        return report

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.last_error = str(e)
                logger.exception("Missed check-in sweep failed: %s", e)
            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "interval_seconds": self._interval,
            "runs": self.runs,
            "last_report": self.last_report.to_dict() if self.last_report else None,
            "last_error": self.last_error,
        }
