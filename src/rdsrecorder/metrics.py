"""Prometheus metrics for monitoring log archival."""

from typing import Optional

import structlog
from prometheus_client import REGISTRY, CollectorRegistry, Counter, generate_latest

from utils.logging import get_logger

MEGABYTE = 1024 * 1024


class RecorderMetrics:
    """Prometheus counters for the recorder."""

    def __init__(
        self,
        logger: Optional[structlog.BoundLogger] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        """Initialize metrics.

        Args:
            logger: Optional logger instance
            registry: Optional Prometheus registry (defaults to global REGISTRY)
        """
        self.logger = logger or get_logger("metrics")
        self.registry = registry or REGISTRY

        self.downloaded_logs_total = Counter(
            "rdsrecorder_downloaded_logs_total",
            "Total amount of log files downloaded from RDS",
            registry=self.registry,
        )

        self.uploaded_s3_logs_total = Counter(
            "rdsrecorder_uploaded_s3_logs_total",
            "Total amount of log files uploaded to S3 Bucket",
            registry=self.registry,
        )

        # Counted in megabytes despite the "size" name
        self.uploaded_s3_size_logs_total = Counter(
            "rdsrecorder_uploaded_s3_size_logs_total",
            "Total amount of MB uploaded to the S3 Bucket",
            registry=self.registry,
        )

    def increment_downloaded_logs(self) -> None:
        self.downloaded_logs_total.inc()

    def increment_uploaded_logs(self) -> None:
        self.uploaded_s3_logs_total.inc()

    def increment_size_uploaded_logs(self, size_bytes: float) -> None:
        """Add a file size, given in bytes, to the megabyte counter."""
        self.uploaded_s3_size_logs_total.inc(size_bytes / MEGABYTE)

    def get_metrics(self) -> bytes:
        """Get Prometheus metrics in text format.

        Returns:
            Metrics in Prometheus text format
        """
        return generate_latest(self.registry)
