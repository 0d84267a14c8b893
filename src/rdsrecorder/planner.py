"""Window planner: turns a sync or snapshot request into pipeline runs."""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

import structlog

from rdsrecorder.config import RecorderConfig
from rdsrecorder.dblog import DBLogClient
from rdsrecorder.downloader import IntervalDownloader
from rdsrecorder.exceptions import ConfigurationError, RecorderError, ValidationError
from rdsrecorder.interfaces import ObjectStoreApi, RDSApi
from rdsrecorder.metrics import RecorderMetrics
from rdsrecorder.run import RunHandle
from rdsrecorder.s3_client import S3Client
from rdsrecorder.snapshot import SnapshotInitiator
from rdsrecorder.streamer import PeriodicStreamer
from rdsrecorder.timeutils import (
    current_time,
    format_timestamp,
    parse_timestamp,
    validate_7_days,
    validate_interval,
    validate_utc,
)
from utils.logging import get_logger

SNAPSHOT_DEFAULT_DELAY = timedelta(seconds=3)


class WindowPlanner:
    """Classifies a time window and runs the matching pipelines.

    A window entirely in the future is streamed, one entirely in the past is
    downloaded in one go, and one straddling now does both at once.
    """

    def __init__(
        self,
        run: RunHandle,
        rds_api: RDSApi,
        s3_api: ObjectStoreApi,
        config: Optional[RecorderConfig] = None,
        metrics: Optional[RecorderMetrics] = None,
        interval: Optional[timedelta] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize planner.

        Args:
            run: Run handle of this process
            rds_api: RDS capability
            s3_api: Object store capability
            config: Recorder configuration (defaults when None)
            metrics: Optional metrics
            interval: Streaming period, overrides ``config.sync.interval_seconds``
            logger: Optional logger instance
        """
        self.run = run
        self.rds_api = rds_api
        self.s3_api = s3_api
        self.config = config or RecorderConfig()
        self.metrics = metrics
        self.interval = interval or timedelta(seconds=self.config.sync.interval_seconds)
        self.logger = logger or get_logger("planner")

    @staticmethod
    def _require_db_identifier(db_identifier: Optional[str]) -> str:
        if not db_identifier:
            raise ValidationError("you must provide the db identifier")
        return db_identifier

    def _parse_window(
        self, start_str: Optional[str], finish_str: Optional[str]
    ) -> tuple[datetime, datetime]:
        start = parse_timestamp(start_str)
        if start is None:
            raise ValidationError("invalid input for --start flag: a start time is required")
        finish = parse_timestamp(finish_str)
        if finish is None:
            raise ValidationError("invalid input for --finish flag: a finish time is required")

        validate_interval(start, finish)
        validate_7_days(start, self.config.sync.retention_days)
        validate_utc(start, finish)
        return start, finish

    async def sync(
        self,
        db_identifier: Optional[str],
        start_str: Optional[str],
        finish_str: Optional[str],
        bucket: Optional[str] = None,
    ) -> None:
        """Archive the logs of a window and snapshot the database at its start.

        Raises:
            ValidationError: Bad window or missing db identifier
            ConfigurationError: Missing or unknown bucket
            RecorderError: Failure of the log branch
        """
        bucket_name = self.config.resolve_bucket(bucket)
        db_identifier = self._require_db_identifier(db_identifier)
        start, finish = self._parse_window(start_str, finish_str)

        log_client = DBLogClient(
            self.rds_api,
            self.run,
            lines_per_portion=self.config.sync.log_lines_per_portion,
            tmp_dir=self.config.sync.tmp_dir,
            logger=self.logger,
        )
        s3_client = S3Client(
            self.s3_api,
            bucket_name,
            self.run,
            part_size=self.config.sync.multipart_part_size_mb * 1024 * 1024,
            logger=self.logger,
        )

        if not await asyncio.to_thread(s3_client.verify_bucket):
            raise ConfigurationError(f"no bucket found with name: {bucket_name}")

        downloader = IntervalDownloader(
            log_client,
            s3_client,
            metrics=self.metrics,
            max_parallel=self.config.sync.max_parallel_downloads,
            logger=self.logger,
        )
        streamer = PeriodicStreamer(downloader, self.run, interval=self.interval, logger=self.logger)

        snapshot_result, log_result = await asyncio.gather(
            self._snapshot_branch(db_identifier, start),
            self._log_branch(downloader, streamer, db_identifier, start, finish),
            return_exceptions=True,
        )
        self.logger.info("all processes were finished")

        if isinstance(snapshot_result, Exception):
            self.logger.error("snapshot process failed", error=str(snapshot_result))
        if isinstance(log_result, BaseException):
            raise log_result

    async def _snapshot_branch(self, db_identifier: str, start: datetime) -> None:
        if self.run.is_recovery:
            self.logger.info("recovery run, skipping the snapshot")
            return

        initiator = SnapshotInitiator(self.rds_api, self.run, logger=self.logger)
        try:
            await initiator.create_db_snapshot(db_identifier, start)
        except RecorderError as e:
            self.logger.error("unable to create the snapshot", error=str(e))
        self.logger.info("snapshot process is finished")

    async def _log_branch(
        self,
        downloader: IntervalDownloader,
        streamer: PeriodicStreamer,
        db_identifier: str,
        start: datetime,
        finish: datetime,
    ) -> None:
        if self.run.is_recovery:
            # TODO: decide whether sync should reject recovery runs instead of skipping the logs
            self.logger.warning("recovery run, the log sync is not performed")
            return

        now = current_time()
        sub_start, sub_finish = start - now, finish - now

        if sub_start >= timedelta(0):
            self.logger.debug("starting process: Wait & Sync")
            await streamer.stream_log_files(db_identifier, start, finish)
        elif sub_finish <= timedelta(0):
            self.logger.debug("starting process: Download Interval")
            await downloader.download_logs_interval(db_identifier, True, start, finish)
        else:
            self.logger.debug("starting process: Download Interval & Sync")
            await self._download_and_stream(downloader, streamer, db_identifier, start, finish, now)

        self.logger.info("log sync process is finished")

    async def _download_and_stream(
        self,
        downloader: IntervalDownloader,
        streamer: PeriodicStreamer,
        db_identifier: str,
        start: datetime,
        finish: datetime,
        now: datetime,
    ) -> None:
        # The non strict start is rounded down to the hour, which may fetch one
        # extra hour but leaves no gap before the first streamer tick.
        download_result, stream_result = await asyncio.gather(
            downloader.download_logs_interval(
                db_identifier, False, start - self.interval, now - self.interval
            ),
            streamer.stream_log_files(db_identifier, now, finish),
            return_exceptions=True,
        )
        if isinstance(download_result, BaseException):
            self.logger.error(
                "the download log interval function finished with an error",
                error=str(download_result),
            )
            raise download_result
        self.logger.info("the download log interval function is finished")
        if isinstance(stream_result, BaseException):
            raise stream_result

    async def snapshot(self, db_identifier: Optional[str], start_str: Optional[str]) -> Optional[str]:
        """Take a snapshot at ``start_str``, or a few seconds from now.

        Returns:
            The snapshot ARN, or None if the run was cancelled before it

        Raises:
            ValidationError: Bad start time or missing db identifier
            SnapshotError: If the snapshot call fails
        """
        db_identifier = self._require_db_identifier(db_identifier)
        start = parse_timestamp(start_str) or current_time(SNAPSHOT_DEFAULT_DELAY)
        validate_utc(start)

        self.logger.info("taking a snapshot", start=format_timestamp(start))
        initiator = SnapshotInitiator(self.rds_api, self.run, logger=self.logger)
        return await initiator.create_db_snapshot(db_identifier, start)
