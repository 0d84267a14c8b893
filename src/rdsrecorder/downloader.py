"""Download the log files of a time interval and push them to S3."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from rdsrecorder.dblog import DBLogClient
from rdsrecorder.exceptions import InvalidLogFileError, LogDownloadError, S3Error
from rdsrecorder.metrics import RecorderMetrics
from rdsrecorder.s3_client import S3Client
from rdsrecorder.timeutils import (
    clean_tmp_file,
    find_datetime_from_log,
    format_file_name_for_s3,
    time_between,
    truncate_to_hour,
)
from utils.logging import get_logger


class IntervalDownloader:
    """Copies every log file of a closed window, a few files at a time."""

    def __init__(
        self,
        log_client: DBLogClient,
        s3_client: S3Client,
        metrics: Optional[RecorderMetrics] = None,
        max_parallel: int = 5,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize downloader.

        Args:
            log_client: Source of log files
            s3_client: Destination bucket client
            metrics: Optional metrics, counted per file
            max_parallel: Maximum concurrent download+upload pipelines
            logger: Optional logger instance
        """
        self.log_client = log_client
        self.s3_client = s3_client
        self.metrics = metrics
        self.max_parallel = max_parallel
        self.logger = logger or get_logger("downloader")

    def filter_log_files(
        self, log_files: list[str], start: datetime, finish: datetime
    ) -> list[str]:
        """Keep the files whose name instant lies within [start, finish]."""
        selected = []
        for file_name in log_files:
            try:
                file_date = find_datetime_from_log(file_name)
            except InvalidLogFileError as e:
                self.logger.warning("skipping log file without a date", file=file_name, error=str(e))
                continue

            if time_between(file_date, start, finish):
                selected.append(file_name)
        return selected

    async def download_logs_interval(
        self,
        db_identifier: str,
        strict_interval: bool,
        start: datetime,
        finish: datetime,
    ) -> int:
        """Archive the log files of [start, finish].

        With ``strict_interval`` False the start is rounded down to the hour.
        Failures of single files are logged and do not stop the others.

        Returns:
            Number of files selected for the interval

        Raises:
            RDSError: If the log files cannot be listed
        """
        log_files = await asyncio.to_thread(self.log_client.describe_log_files, db_identifier)

        if not strict_interval:
            start = truncate_to_hour(start)

        selected = self.filter_log_files(log_files, start, finish)
        total = len(selected)
        if total == 0:
            self.logger.info(
                "no files found for the provided interval",
                start=start.isoformat(),
                finish=finish.isoformat(),
            )
            return 0

        self.logger.debug(
            "downloading logs by an interval",
            start=start.isoformat(),
            finish=finish.isoformat(),
            files=total,
        )

        semaphore = asyncio.Semaphore(self.max_parallel)

        async def sync_with_semaphore(index: int, file_name: str) -> None:
            async with semaphore:
                await asyncio.to_thread(self.sync_log_file, db_identifier, file_name)
                self.logger.info("file sync completed", file_number=f"{index}/{total}")

        tasks = [sync_with_semaphore(i, name) for i, name in enumerate(selected, start=1)]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for file_name, result in zip(selected, results):
            if isinstance(result, Exception):
                self.logger.error("file sync failed", file=file_name, error=str(result))
        return total

    def sync_log_file(self, db_identifier: str, log_file_name: str) -> bool:
        """Download one log file and push it to the bucket.

        Errors are logged, never raised. The temp file is always removed.
        Nothing is downloaded once the run is cancelled.

        Returns:
            True if the file reached the bucket
        """
        try:
            s3_file_name = format_file_name_for_s3(self.log_client.run.pid, log_file_name)
        except InvalidLogFileError as e:
            self.logger.error("unable to format file name", file=log_file_name, error=str(e))
            return False

        run = self.log_client.run
        if run.cancelled:
            self.logger.info("run cancelled, log file skipped", file=log_file_name)
            return False

        tmp_file: Optional[Path] = None
        try:
            self.logger.debug("downloading a RDS log file", file=log_file_name)
            try:
                tmp_file = self.log_client.download_log_portion(db_identifier, log_file_name)
            except LogDownloadError as e:
                tmp_file = e.partial_file
                if run.cancelled:
                    self.logger.info("log file download cancelled", file=log_file_name)
                else:
                    self.logger.error(
                        "unable to download log file", file=log_file_name, error=str(e)
                    )
                return False

            size = tmp_file.stat().st_size
            if self.metrics:
                self.metrics.increment_downloaded_logs()
                self.metrics.increment_size_uploaded_logs(size)
            self.logger.debug("file downloaded", file=log_file_name, tmp=str(tmp_file), size=size)

            try:
                key = self.s3_client.push_log_to_bucket(tmp_file, s3_file_name, db_identifier)
            except S3Error as e:
                self.logger.error("unable to push to the bucket", file=log_file_name, error=str(e))
                return False

            if self.metrics:
                self.metrics.increment_uploaded_logs()
            self.logger.debug("upload to S3 done", file=log_file_name, key=key)
            return True
        finally:
            clean_tmp_file(tmp_file)
