"""Periodic re-evaluation of open positions."""

import asyncio
import logging

from settlement.services.settlement_engine import EvaluationResult, SettlementEngine

logger = logging.getLogger(__name__)


class PositionMonitor:
    """Run ``evaluate_open_positions`` every ``interval`` seconds."""

    def __init__(self, engine: SettlementEngine, interval: float = 300.0):
        self.engine = engine
        self.interval = interval
        self._task: asyncio.Task | None = None
        self._run_lock = asyncio.Lock()

        # Metrics
        self.runs = 0
        self.last_results: list[EvaluationResult] = []

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> list[EvaluationResult]:
        """One batch pass; overlapping calls wait for the pass in progress."""
        async with self._run_lock:
            results = await self.engine.evaluate_open_positions()
            self.runs += 1
            self.last_results = results
            return results

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"Position monitor error: {e}")

    def start(self) -> None:
        if self.running or self.interval <= 0:
            return
        self._task = asyncio.create_task(self._loop(), name="position-monitor")
        logger.info(f"Position monitor started (every {self.interval:.0f}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Position monitor stopped")
