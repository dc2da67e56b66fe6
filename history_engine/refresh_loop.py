"""
History Engine - Scheduled refresh loop.

Runs refresh_all on a fixed cadence as a background asyncio task.
One cycle runs immediately on start. Cycle errors are logged and
never stop the loop.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from history_engine.config import HistoryConfig
from history_engine.orchestrator import HistoryOrchestrator


logger = logging.getLogger(__name__)


class HistoryRefreshLoop:
    """Periodic trailing-window refresh for every configured symbol."""

    def __init__(
        self,
        orchestrator: HistoryOrchestrator,
        interval_seconds: float = 15.0,
        days: int = 7,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if days < 1:
            raise ValueError("days must be at least 1")

        self._orchestrator = orchestrator
        self._interval = interval_seconds
        self._days = days

        self._task: Optional[asyncio.Task] = None
        self._running = False

        self._last_refresh: Optional[datetime] = None
        self._last_result = {"success": 0, "failed": 0}

    @classmethod
    def from_config(
        cls,
        orchestrator: HistoryOrchestrator,
        config: Optional[HistoryConfig] = None,
    ) -> "HistoryRefreshLoop":
        config = config or orchestrator.config
        return cls(
            orchestrator,
            interval_seconds=config.refresh_interval_seconds,
            days=config.refresh_days,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        """Start the loop; a no-op when already running."""
        if self._running:
            logger.debug("Refresh loop already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Refresh loop started | interval={self._interval}s days={self._days}")

    async def stop(self) -> None:
        """Stop the loop and wait for the background task to finish."""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Refresh loop stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Refresh cycle error: {e}", exc_info=True)

            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break

    # --------------------------------------------------------
    # CYCLE
    # --------------------------------------------------------

    async def run_cycle(self) -> dict[str, int]:
        """Refresh every symbol once and record the outcome counts."""
        results = await self._orchestrator.refresh_all(self._days)

        success = sum(1 for r in results if r.ok)
        failed = len(results) - success

        self._last_refresh = datetime.now(timezone.utc)
        self._last_result = {"success": success, "failed": failed}

        if failed:
            failed_symbols = [r.symbol for r in results if not r.ok]
            logger.warning(f"Refresh cycle: {success} ok, {failed} failed {failed_symbols}")
        else:
            logger.info(f"Refresh cycle: {success} symbols refreshed")

        return dict(self._last_result)

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "interval_seconds": self._interval,
            "days": self._days,
            "last_refresh": self._last_refresh.isoformat() if self._last_refresh else None,
            "last_result": dict(self._last_result),
        }
