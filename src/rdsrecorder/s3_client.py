"""S3 client for uploading downloaded log files under the run folder."""

import threading
from pathlib import Path
from typing import Optional

from structlog import BoundLogger

from rdsrecorder.exceptions import S3Error
from rdsrecorder.interfaces import ObjectStoreApi
from rdsrecorder.run import RunHandle
from rdsrecorder.timeutils import format_file_path
from utils.logging import get_logger

DEFAULT_PART_SIZE = 10 * 1024 * 1024


class S3Client:
    """Bucket-scoped object store client for one run."""

    def __init__(
        self,
        api: ObjectStoreApi,
        bucket: str,
        run: RunHandle,
        part_size: int = DEFAULT_PART_SIZE,
        logger: Optional[BoundLogger] = None,
    ) -> None:
        """Initialize S3 client.

        Args:
            api: Object store capability
            bucket: Target bucket name
            run: Run handle; its PID is the folder of every object
            part_size: Multipart upload part size in bytes
            logger: Optional logger instance
        """
        self.api = api
        self.bucket = bucket
        self.run = run
        self.part_size = part_size
        self.logger = logger or get_logger("s3")
        self._folder_lock = threading.Lock()
        # Only flips to True, once the run folder is known to exist
        self.folder_exists = False

    def list_buckets(self) -> list[str]:
        return self.api.list_buckets()

    def verify_bucket(self) -> bool:
        """Return True if the configured bucket is among the caller's buckets."""
        try:
            buckets = self.list_buckets()
        except S3Error as e:
            self.logger.error("unable to get buckets", error=str(e))
            return False
        return self.bucket in buckets

    def list_objects(self, prefix: str, max_keys: int = 1) -> list[str]:
        return self.api.list_objects(self.bucket, prefix, max_keys)

    def put_object(self, key: str, metadata: dict[str, str]) -> None:
        self.api.put_object(self.bucket, key, metadata)

    def upload_large_file(self, file_path: Path, key: str) -> None:
        """Multipart upload of a local file to ``key``."""
        self.logger.debug("Starting file upload", bucket=self.bucket, key=key)
        try:
            self.api.upload_large_file(file_path, self.bucket, key, self.part_size)
        except S3Error as e:
            self.logger.error(
                "Upload failed",
                bucket=self.bucket,
                key=key,
                file=str(file_path),
                error=str(e),
            )
            raise

    def verify_bucket_folder(self, folder: str) -> bool:
        """Check whether ``folder/`` holds at least one object.

        A positive answer is cached for the rest of the run and skips the
        network call; listing errors are logged and count as missing.
        """
        if self.folder_exists:
            return True

        try:
            objects = self.list_objects(f"{folder}/", max_keys=1)
        except S3Error as e:
            self.logger.error("couldn't get the folder", folder=folder, error=str(e))
            return False

        self.folder_exists = len(objects) > 0
        return self.folder_exists

    def create_bucket_folder(self, folder: str, db_identifier: str) -> None:
        """Create the zero-byte folder marker carrying the db identifier."""
        self.put_object(f"{folder}/", {"db-identifier": db_identifier})

    def push_log_to_bucket(self, file_path: Path, file_name: str, db_identifier: str) -> str:
        """Upload a downloaded log file under the run folder.

        Returns:
            The object key written

        Raises:
            S3Error: If the folder marker or the upload fails
        """
        folder = self.run.pid

        # Concurrent uploads of one run must not each create the marker
        with self._folder_lock:
            if not self.verify_bucket_folder(folder):
                self.create_bucket_folder(folder, db_identifier)
                self.folder_exists = True
                self.logger.info(
                    "the S3 bucket folder is created", bucket=self.bucket, folder=folder
                )

        key = format_file_path(folder, file_name)
        self.upload_large_file(file_path, key)
        return key
