"""rdsrecorder - Archive RDS PostgreSQL log files to S3 and snapshot the database."""

__version__ = "0.1.0"

__all__ = [
    "WindowPlanner",
    "IntervalDownloader",
    "PeriodicStreamer",
    "SnapshotInitiator",
    "DBLogClient",
    "S3Client",
    "RunHandle",
    "RecorderMetrics",
]
