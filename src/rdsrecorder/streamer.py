"""Periodic log streaming for windows that reach into the future."""

import asyncio
from collections.abc import AsyncIterator
from datetime import datetime, timedelta
from typing import Optional

import structlog

from rdsrecorder.downloader import IntervalDownloader
from rdsrecorder.exceptions import RecorderError
from rdsrecorder.run import RunHandle
from rdsrecorder.timeutils import current_time
from utils.logging import get_logger

DEFAULT_INTERVAL = timedelta(hours=1)

# Slack so the interval of the first tick has produced its log file
START_SLACK = timedelta(seconds=1)
END_SLACK = timedelta(seconds=2)


async def every(start_at: datetime, period: timedelta, run: RunHandle) -> AsyncIterator[datetime]:
    """Yield ``start_at`` and then every ``period`` after it until ``run`` is cancelled.

    Sleeps until each tick is due; a tick already in the past is yielded
    immediately.
    """
    tick = start_at
    while not run.cancelled:
        delay = (tick - current_time()).total_seconds()
        if delay > 0 and await run.wait(delay):
            return
        if run.cancelled:
            return
        yield tick
        tick += period


class PeriodicStreamer:
    """Archives each elapsed interval on a fixed schedule until a deadline."""

    def __init__(
        self,
        downloader: IntervalDownloader,
        run: RunHandle,
        interval: timedelta = DEFAULT_INTERVAL,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize streamer.

        Args:
            downloader: Downloader run on every tick
            run: Run handle; cancelling it stops the schedule
            interval: Period between ticks
            logger: Optional logger instance
        """
        self.downloader = downloader
        self.run = run
        self.interval = interval
        self.logger = logger or get_logger("streamer")

    async def stream_log_files(
        self, db_identifier: str, start_at: datetime, end_at: datetime
    ) -> None:
        """Tick from ``start_at`` to ``end_at``, archiving the previous interval on each tick.

        Returns once the schedule is cancelled and every tick worker finished.
        """
        start_at, end_at = start_at + START_SLACK, end_at + END_SLACK
        scope = self.run.child()
        watchdog = asyncio.create_task(self._watchdog(scope, end_at))
        workers: list[asyncio.Task] = []

        try:
            async for tick in every(start_at, self.interval, scope):
                workers.append(
                    asyncio.create_task(self._sync_tick(db_identifier, tick, end_at, scope))
                )
        finally:
            watchdog.cancel()
            results = await asyncio.gather(*workers, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    self.logger.error("sync tick failed", error=str(result))

        self.logger.debug("streaming finished", ticks=len(workers))

    async def _watchdog(self, scope: RunHandle, end_at: datetime) -> None:
        if not await scope.wait((end_at - current_time()).total_seconds()):
            scope.cancel()

    async def _sync_tick(
        self, db_identifier: str, tick: datetime, end_at: datetime, scope: RunHandle
    ) -> None:
        self.logger.debug("new sync process started", time=tick.isoformat())
        try:
            await self.downloader.download_logs_interval(
                db_identifier, True, tick - self.interval, tick
            )
        except RecorderError as e:
            self.logger.error("the sync of the interval failed", time=tick.isoformat(), error=str(e))

        if tick > end_at:
            scope.cancel()
            return
        self.logger.info("waiting to the next sync", time=(tick + self.interval).isoformat())
