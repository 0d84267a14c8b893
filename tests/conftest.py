"""Pytest configuration and shared fixtures."""

import threading
import time
from pathlib import Path
from typing import Optional

import pytest
from prometheus_client import CollectorRegistry

from rdsrecorder.config import RecorderConfig, SyncConfig
from rdsrecorder.interfaces import DBInstance, LogFilesPage, LogPortion, ObjectStoreApi, RDSApi
from rdsrecorder.metrics import RecorderMetrics
from rdsrecorder.run import RunHandle

TEST_PID = "A1234ASDF"


class FakeRDSApi(RDSApi):
    """In-memory RDS: log listing pages keyed by marker, file portions, snapshots."""

    def __init__(self) -> None:
        self.pages: dict[str, LogFilesPage] = {"0": LogFilesPage([], None)}
        self.contents: dict[str, list[str]] = {}
        self.instances: list[DBInstance] = []
        self.describe_error: Optional[Exception] = None
        self.download_errors: dict[str, Exception] = {}
        self.instances_error: Optional[Exception] = None
        self.snapshot_error: Optional[Exception] = None
        self.download_delay = 0.0
        self.calls: list[str] = []
        self.snapshots: list[tuple[str, str, dict[str, str]]] = []
        self.cluster_snapshots: list[tuple[str, str, dict[str, str]]] = []
        self._lock = threading.Lock()
        self.active_downloads = 0
        self.max_active_downloads = 0

    def set_log_files(self, names: list[str], content: str = "Hello World!") -> None:
        self.pages = {"0": LogFilesPage(list(names), None)}
        for name in names:
            self.contents.setdefault(name, [content])

    def describe_db_log_files(self, db_identifier: str, marker: str) -> LogFilesPage:
        self.calls.append("describe_db_log_files")
        if self.describe_error:
            raise self.describe_error
        return self.pages[marker]

    def download_db_log_file_portion(
        self, db_identifier: str, log_file_name: str, marker: str, number_of_lines: int
    ) -> LogPortion:
        self.calls.append("download_db_log_file_portion")
        with self._lock:
            self.active_downloads += 1
            self.max_active_downloads = max(self.max_active_downloads, self.active_downloads)
        try:
            if self.download_delay:
                time.sleep(self.download_delay)
            if log_file_name in self.download_errors:
                raise self.download_errors[log_file_name]

            chunks = self.contents.get(log_file_name, [""])
            index = int(marker)
            next_marker = str(index + 1) if index + 1 < len(chunks) else None
            return LogPortion(data=chunks[index], marker=next_marker)
        finally:
            with self._lock:
                self.active_downloads -= 1

    def describe_db_instances(self, db_identifier: str) -> list[DBInstance]:
        self.calls.append("describe_db_instances")
        if self.instances_error:
            raise self.instances_error
        return list(self.instances)

    def create_db_snapshot(
        self, db_identifier: str, snapshot_identifier: str, tags: dict[str, str]
    ) -> str:
        self.calls.append("create_db_snapshot")
        if self.snapshot_error:
            raise self.snapshot_error
        self.snapshots.append((db_identifier, snapshot_identifier, tags))
        return f"arn:aws:rds:sa-east-1:123456789012:snapshot:{snapshot_identifier}"

    def create_db_cluster_snapshot(
        self, cluster_identifier: str, snapshot_identifier: str, tags: dict[str, str]
    ) -> str:
        self.calls.append("create_db_cluster_snapshot")
        if self.snapshot_error:
            raise self.snapshot_error
        self.cluster_snapshots.append((cluster_identifier, snapshot_identifier, tags))
        return f"arn:aws:rds:sa-east-1:123456789012:cluster-snapshot:{snapshot_identifier}"

    def count(self, method: str) -> int:
        return self.calls.count(method)


class FakeObjectStoreApi(ObjectStoreApi):
    """In-memory S3 holding object bodies and metadata."""

    def __init__(self, buckets: Optional[list[str]] = None) -> None:
        self.buckets = buckets if buckets is not None else ["test-bucket"]
        self.objects: dict[str, bytes] = {}
        self.metadata: dict[str, dict[str, str]] = {}
        self.list_buckets_error: Optional[Exception] = None
        self.list_error: Optional[Exception] = None
        self.put_error: Optional[Exception] = None
        self.upload_error: Optional[Exception] = None
        self.calls: list[str] = []
        self.part_sizes: list[int] = []

    def list_buckets(self) -> list[str]:
        self.calls.append("list_buckets")
        if self.list_buckets_error:
            raise self.list_buckets_error
        return list(self.buckets)

    def list_objects(self, bucket: str, prefix: str, max_keys: int) -> list[str]:
        self.calls.append("list_objects")
        if self.list_error:
            raise self.list_error
        return sorted(k for k in self.objects if k.startswith(prefix))[:max_keys]

    def put_object(self, bucket: str, key: str, metadata: dict[str, str]) -> None:
        self.calls.append("put_object")
        if self.put_error:
            raise self.put_error
        self.objects[key] = b""
        self.metadata[key] = dict(metadata)

    def upload_large_file(self, file_path: Path, bucket: str, key: str, part_size: int) -> None:
        self.calls.append("upload_large_file")
        if self.upload_error:
            raise self.upload_error
        self.part_sizes.append(part_size)
        self.objects[key] = Path(file_path).read_bytes()

    def count(self, method: str) -> int:
        return self.calls.count(method)

    def uploaded_keys(self) -> list[str]:
        return sorted(k for k in self.objects if not k.endswith("/"))


@pytest.fixture
def run_handle() -> RunHandle:
    """Run handle with a fixed PID."""
    return RunHandle(TEST_PID)


@pytest.fixture
def fake_rds() -> FakeRDSApi:
    return FakeRDSApi()


@pytest.fixture
def fake_s3() -> FakeObjectStoreApi:
    return FakeObjectStoreApi()


@pytest.fixture
def metrics() -> RecorderMetrics:
    """Metrics on a private registry."""
    return RecorderMetrics(registry=CollectorRegistry())


@pytest.fixture
def recorder_config(tmp_path: Path) -> RecorderConfig:
    """Configuration writing temp files under the test directory."""
    return RecorderConfig(
        bucket="test-bucket",
        db_identifier="test-db",
        sync=SyncConfig(tmp_dir=str(tmp_path / "tmp")),
    )

