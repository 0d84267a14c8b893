"""Capability interfaces for the database log source and the object store.

The core only talks to these narrow types; ``aws_clients`` implements them
over boto3 and the tests implement them with in-memory fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class LogFilesPage:
    """One page of DescribeDBLogFiles."""

    file_names: list[str] = field(default_factory=list)
    marker: Optional[str] = None


@dataclass
class LogPortion:
    """One page of DownloadDBLogFilePortion."""

    data: str = ""
    marker: Optional[str] = None
    additional_data_pending: bool = False


@dataclass
class DBInstance:
    identifier: str
    cluster_identifier: Optional[str] = None


class RDSApi(ABC):
    """Database log source and snapshot capability."""

    @abstractmethod
    def describe_db_log_files(self, db_identifier: str, marker: str) -> LogFilesPage:
        """Return one page of log files, starting after ``marker``."""

    @abstractmethod
    def download_db_log_file_portion(
        self,
        db_identifier: str,
        log_file_name: str,
        marker: str,
        number_of_lines: int,
    ) -> LogPortion:
        """Return one portion of a log file, starting at ``marker``."""

    @abstractmethod
    def describe_db_instances(self, db_identifier: str) -> list[DBInstance]:
        """Describe the instance with the given identifier."""

    @abstractmethod
    def create_db_snapshot(
        self, db_identifier: str, snapshot_identifier: str, tags: dict[str, str]
    ) -> str:
        """Snapshot a standalone instance; returns the snapshot ARN."""

    @abstractmethod
    def create_db_cluster_snapshot(
        self, cluster_identifier: str, snapshot_identifier: str, tags: dict[str, str]
    ) -> str:
        """Snapshot a cluster; returns the cluster snapshot ARN."""


class ObjectStoreApi(ABC):
    """Object storage capability."""

    @abstractmethod
    def list_buckets(self) -> list[str]:
        """Names of the caller's buckets."""

    @abstractmethod
    def list_objects(self, bucket: str, prefix: str, max_keys: int) -> list[str]:
        """Keys under ``prefix``, at most ``max_keys``."""

    @abstractmethod
    def put_object(self, bucket: str, key: str, metadata: dict[str, str]) -> None:
        """Create an empty object carrying ``metadata``."""

    @abstractmethod
    def upload_large_file(self, file_path: Path, bucket: str, key: str, part_size: int) -> None:
        """Multipart upload of a local file."""
