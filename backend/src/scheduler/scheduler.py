from __future__ import annotations

import asyncio

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from backend.src.contracts.models import PassResult
from backend.src.pipeline.alert_pass import AlertPass

logger = structlog.get_logger(__name__)


class AlertScheduler:
    """Runs alert passes on a fixed interval and on demand.

    Passes never overlap: a trigger that arrives while a pass is running is
    dropped, not queued.
    """

    def __init__(self, alert_pass: AlertPass, interval_minutes: int) -> None:
        self._scheduler = AsyncIOScheduler()
        self._alert_pass = alert_pass
        self._interval_minutes = interval_minutes
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def start(self) -> None:
        self._scheduler.add_job(
            self._run_scheduled,
            trigger=IntervalTrigger(minutes=self._interval_minutes),
            id="alert_pass",
            name="Detect course changes and send alerts",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(
            "scheduler_configured",
            interval_minutes=self._interval_minutes,
        )

    def stop(self) -> None:
        self._scheduler.shutdown(wait=False)
        logger.info("scheduler_shutdown")

    async def trigger_now(self) -> PassResult | None:
        """Run a pass immediately. Returns None if one is already running."""
        return await self._run_exclusive()

    async def _run_exclusive(self) -> PassResult | None:
        if self._lock.locked():
            logger.warning("alert_pass_skipped", reason="pass_in_progress")
            return None

        async with self._lock:
            return await self._alert_pass.run()

    async def _run_scheduled(self) -> None:
        try:
            await self._run_exclusive()
        except Exception:
            # Already logged by the pass; the next interval starts from current truth.
            logger.error("scheduled_alert_pass_failed", exc_info=True)
