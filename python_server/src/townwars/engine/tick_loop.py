"""Tick loop — runs the orchestrator on a fixed interval.

Used by the long-running (watch) mode.  In cron mode ``main --once``
calls ``TickOrchestrator.run_tick`` directly instead.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from townwars.engine.tick_orchestrator import TickOrchestrator, TickReport

log = logging.getLogger(__name__)


class TickLoop:
    """Periodic driver for the tick orchestrator.

    Args:
        orchestrator: Pipeline to run once per interval.
        interval_seconds: Pause between the end of one run and the next.
    """

    def __init__(self, orchestrator: TickOrchestrator, interval_seconds: float = 10.0) -> None:
        self._orchestrator = orchestrator
        self._interval = interval_seconds
        self._running = False

        # --- Debug / monitoring counters ---
        self.tick_count: int = 0
        self.failed_count: int = 0
        self.started_at: float = 0.0
        self.last_report: Optional[TickReport] = None
        self.last_tick_duration_ms: float = 0.0
        self.avg_tick_duration_ms: float = 0.0
        self._tick_duration_sum: float = 0.0

    async def run(self) -> None:
        """Start the loop. Runs until stop() is called."""
        self._running = True
        self.started_at = time.monotonic()
        log.info("Tick loop started (interval %.1fs)", self._interval)
        while self._running:
            await self.run_once()
            if self._running:
                await asyncio.sleep(self._interval)
        log.info("Tick loop stopped after %d ticks", self.tick_count)

    async def run_once(self) -> Optional[TickReport]:
        """Run a single tick and update the counters. A failed run is logged."""
        t0 = time.monotonic()
        try:
            report = await self._orchestrator.run_tick()
        except Exception:
            self.failed_count += 1
            log.exception("Tick run failed")
            return None
        elapsed_ms = (time.monotonic() - t0) * 1000

        self.tick_count += 1
        self.last_report = report
        self.last_tick_duration_ms = elapsed_ms
        self._tick_duration_sum += elapsed_ms
        self.avg_tick_duration_ms = self._tick_duration_sum / self.tick_count
        return report

    @property
    def uptime_seconds(self) -> float:
        """Seconds since the loop started."""
        if self.started_at == 0.0:
            return 0.0
        return time.monotonic() - self.started_at

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Signal the loop to stop after the current run."""
        self._running = False
