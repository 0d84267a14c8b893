"""Paginated listing and download of RDS PostgreSQL log files."""

import os
import re
import tempfile
from pathlib import Path
from typing import Optional

import structlog

from rdsrecorder.exceptions import LogDownloadError
from rdsrecorder.interfaces import RDSApi
from rdsrecorder.run import RunHandle
from utils.logging import get_logger

START_MARKER = "0"

_CSV_LOG_RE = re.compile(r"^.+\.csv")


class DBLogClient:
    """Enumerates and downloads the log files of an RDS instance."""

    def __init__(
        self,
        api: RDSApi,
        run: RunHandle,
        lines_per_portion: int = 1450,
        tmp_dir: Optional[str] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize log client.

        Args:
            api: RDS capability
            run: Run handle; its PID names the temp files
            lines_per_portion: Lines requested per portion
            tmp_dir: Directory for temp files (system default when None)
            logger: Optional logger instance
        """
        self.api = api
        self.run = run
        self.lines_per_portion = lines_per_portion
        self.tmp_dir = tmp_dir
        self.logger = logger or get_logger("dblog")

    def describe_log_files(self, db_identifier: str) -> list[str]:
        """List every CSV log file of the instance, in provider order.

        Raises:
            RDSError: If any listing page fails
        """
        marker, files = START_MARKER, []
        while True:
            page = self.api.describe_db_log_files(db_identifier, marker)
            files.extend(name for name in page.file_names if _CSV_LOG_RE.match(name))

            if page.marker is None or page.marker == marker:
                break
            marker = page.marker

        self.logger.debug("Log files listed", db_identifier=db_identifier, count=len(files))
        return files

    def _create_tmp_file(self) -> Path:
        if self.tmp_dir:
            os.makedirs(self.tmp_dir, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=f"rds-log-{self.run.pid}-", dir=self.tmp_dir)
        os.close(fd)
        return Path(name)

    def download_log_portion(self, db_identifier: str, log_file_name: str) -> Path:
        """Download a log file, portion by portion, into a new temp file.

        Portions are appended in marker order. The caller owns the returned
        file and must remove it.

        Raises:
            LogDownloadError: On any failure or cancellation; ``partial_file``
                holds the temp file when it was already created
        """
        try:
            tmp_file = self._create_tmp_file()
        except OSError as e:
            raise LogDownloadError(
                f"unable to create a temp file for: {log_file_name}",
                correlation_id=self.run.pid,
                context={"error": str(e)},
            ) from e

        marker = START_MARKER
        try:
            with open(tmp_file, "w", encoding="utf-8") as writer:
                while True:
                    if self.run.cancelled:
                        raise LogDownloadError(
                            f"download cancelled: {log_file_name}",
                            partial_file=tmp_file,
                            correlation_id=self.run.pid,
                        )

                    portion = self.api.download_db_log_file_portion(
                        db_identifier, log_file_name, marker, self.lines_per_portion
                    )
                    writer.write(portion.data)

                    if portion.marker is None or portion.marker == marker:
                        break
                    marker = portion.marker
        except LogDownloadError:
            raise
        except Exception as e:
            raise LogDownloadError(
                f"unable to download log file: {log_file_name}",
                partial_file=tmp_file,
                correlation_id=self.run.pid,
                context={"db_identifier": db_identifier, "marker": marker, "error": str(e)},
            ) from e

        return tmp_file
