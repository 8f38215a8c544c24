"""
Periodic update scheduler.

Runs update cycles on a fixed interval. A single asyncio.Lock guarantees
that only one cycle runs at a time; the HTTP trigger shares the same lock
through run_cycle() and waits for it, while a scheduled tick that finds a
cycle running is skipped. Every cycle is recorded in UpdateMetrics and, when
a notifier is configured, reported to the notification targets.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Optional

from notifications import ReportNotifier
from runtime.client import RuntimeClient
from updates.cleanup import cleanup_images
from updates.metrics import UpdateMetrics
from updates.session import update
from updates.types import CancelToken, UpdateParams, UpdateSessionResult

logger = logging.getLogger(__name__)


class UpdateScheduler:
    """
    Drives update cycles.

    Usage:
        scheduler = UpdateScheduler(client, params, poll_interval=86400)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        client: RuntimeClient,
        params: UpdateParams,
        poll_interval: float,
        run_once: bool = False,
        run_on_start: bool = True,
        metrics: Optional[UpdateMetrics] = None,
        notifier: Optional[ReportNotifier] = None
    ):
        self.client = client
        self.params = params
        self.poll_interval = poll_interval
        self.run_once = run_once
        self.run_on_start = run_on_start
        self.metrics = metrics or UpdateMetrics()
        self.notifier = notifier
        self.lock = asyncio.Lock()
        self.last_result: Optional[UpdateSessionResult] = None
        self._current_cancel: Optional[CancelToken] = None
        self._task: Optional[asyncio.Task] = None
        self.running = False

    async def run_cycle(self, params: Optional[UpdateParams] = None) -> UpdateSessionResult:
        """
        Run one cycle, waiting for any cycle already in progress.

        Images of replaced containers are removed afterwards when cleanup is on.
        """
        params = params or self.params
        async with self.lock:
            cancel = CancelToken()
            self._current_cancel = cancel
            try:
                result = await update(self.client, params, cancel)
                if params.cleanup and result.cleanup_image_ids:
                    await cleanup_images(self.client, result.cleanup_image_ids, cancel)
            finally:
                self._current_cancel = None

        if result.error is not None:
            logger.error(f"Update cycle failed: {result.error}")
        self.last_result = result
        self.metrics.record_cycle(result)
        await self._notify(result)
        return result

    async def _notify(self, result: UpdateSessionResult):
        if self.notifier is None:
            return
        try:
            await self.notifier.send_report(result)
        except Exception as e:
            logger.error(f"Failed to send update notification: {e}", exc_info=True)

    async def run_filtered_cycle(self, **overrides) -> UpdateSessionResult:
        """Run a cycle with some parameters replaced (e.g. a narrower filter)."""
        return await self.run_cycle(replace(self.params, **overrides))

    async def _loop(self):
        if self.run_on_start or self.run_once:
            await self._run_safely()
            if self.run_once:
                logger.info("Single update cycle finished, scheduler stopped")
                self.running = False
                return

        while self.running:
            await asyncio.sleep(self.poll_interval)
            await self._run_safely()

    async def _run_safely(self):
        if self.lock.locked():
            logger.info("Skipping scheduled update cycle, another cycle is still running")
            self.metrics.record_skipped()
            return
        try:
            await self.run_cycle()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in update cycle: {e}", exc_info=True)

    def start(self) -> asyncio.Task:
        """Start the background loop."""
        if self._task is not None:
            return self._task
        logger.info(f"Starting update scheduler (interval {self.poll_interval:.0f}s)")
        self.running = True
        self._task = asyncio.create_task(self._loop())
        return self._task

    async def stop(self):
        """Cancel the in-flight cycle (if any) and stop the loop."""
        logger.info("Stopping update scheduler")
        self.running = False
        if self._current_cancel is not None:
            self._current_cancel.cancel("update canceled: scheduler stopping")

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.debug("Update scheduler task cancelled")
            self._task = None
