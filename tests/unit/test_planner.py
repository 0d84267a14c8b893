"""Unit tests for the window planner."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from rdsrecorder.exceptions import ConfigurationError, RDSError, ValidationError
from rdsrecorder.interfaces import DBInstance
from rdsrecorder.planner import WindowPlanner
from rdsrecorder.run import RunHandle
from rdsrecorder.timeutils import current_time, format_timestamp


def _name(moment: datetime) -> str:
    return f"error/postgresql.log.{moment:%Y-%m-%d-%H%M}.csv"


@pytest.fixture
def planner(run_handle, fake_rds, fake_s3, recorder_config, metrics) -> WindowPlanner:
    return WindowPlanner(run_handle, fake_rds, fake_s3, config=recorder_config, metrics=metrics)


class TestSyncValidation:
    """Input checks done before any provider call."""

    @pytest.mark.asyncio
    async def test_missing_db_identifier(self, planner, fake_rds):
        """Test the db identifier is required."""
        with pytest.raises(ValidationError, match="db identifier"):
            await planner.sync(None, "2024-02-01 00:00:00.000 UTC", "2024-02-01 03:00:00.000 UTC")
        assert fake_rds.calls == []

    @pytest.mark.asyncio
    async def test_missing_start(self, planner):
        """Test start and finish are required."""
        with pytest.raises(ValidationError, match="--start"):
            await planner.sync("test-db", "", format_timestamp(current_time()))
        with pytest.raises(ValidationError, match="--finish"):
            await planner.sync("test-db", format_timestamp(current_time()), "")

    @pytest.mark.asyncio
    async def test_start_after_finish(self, planner):
        """Test an inverted window is rejected."""
        now = current_time()
        with pytest.raises(ValidationError, match="start is after finish"):
            await planner.sync(
                "test-db",
                format_timestamp(now + timedelta(hours=2)),
                format_timestamp(now + timedelta(hours=1)),
            )

    @pytest.mark.asyncio
    async def test_start_outside_retention(self, planner, fake_rds):
        """Test windows older than the log retention are rejected."""
        now = current_time()
        with pytest.raises(ValidationError, match="retention"):
            await planner.sync(
                "test-db",
                format_timestamp(now - timedelta(days=8)),
                format_timestamp(now - timedelta(days=7, hours=20)),
            )
        assert fake_rds.calls == []

    @pytest.mark.asyncio
    async def test_missing_bucket(self, run_handle, fake_rds, fake_s3, recorder_config, monkeypatch):
        """Test a bucket must come from somewhere."""
        monkeypatch.delenv("AWS_S3_BUCKET_NAME", raising=False)
        recorder_config.bucket = None
        planner = WindowPlanner(run_handle, fake_rds, fake_s3, config=recorder_config)

        with pytest.raises(ConfigurationError, match="bucket identifier"):
            await planner.sync("test-db", "2024-02-01 00:00:00.000 UTC", "2024-02-01 03:00:00.000 UTC")

    @pytest.mark.asyncio
    async def test_unknown_bucket(self, run_handle, fake_rds, fake_s3, recorder_config):
        """Test an unknown bucket stops the run before downloads and snapshots."""
        planner = WindowPlanner(run_handle, fake_rds, fake_s3, config=recorder_config)
        now = current_time()

        with pytest.raises(ConfigurationError, match="no bucket found with name: other-bucket"):
            await planner.sync(
                "test-db",
                format_timestamp(now - timedelta(hours=3)),
                format_timestamp(now - timedelta(hours=1)),
                bucket="other-bucket",
            )

        assert fake_rds.calls == []
        assert fake_s3.calls == ["list_buckets"]


class TestSyncWindows:
    """Classification of the window relative to now."""

    @pytest.mark.asyncio
    async def test_past_window(self, planner, fake_rds, fake_s3, metrics, recorder_config):
        """Test a closed window is downloaded once and the snapshot taken."""
        recorder_config.sync.retention_days = 100000
        fake_rds.instances = [DBInstance("test-db")]
        file_time = datetime(2024, 2, 1, 1, 30, tzinfo=timezone.utc)
        fake_rds.set_log_files([_name(file_time), _name(datetime(2024, 2, 1, 5, 0, tzinfo=timezone.utc))])

        result = await planner.sync(
            "test-db", "2024-02-01 00:00:00.000 UTC", "2024-02-01 03:00:00.000 UTC"
        )

        assert result is None
        assert fake_rds.count("download_db_log_file_portion") == 1
        assert fake_s3.uploaded_keys() == ["A1234ASDF/rds_log_A1234ASDF_1706751000"]
        assert metrics.registry.get_sample_value("rdsrecorder_downloaded_logs_total") == 1
        assert metrics.registry.get_sample_value("rdsrecorder_uploaded_s3_logs_total") == 1
        assert fake_rds.snapshots == [("test-db", "pgreplay-A1234ASDF", {"app": "rdsrecorder"})]

    @pytest.mark.asyncio
    async def test_future_window_streams(self, run_handle, fake_rds, fake_s3, recorder_config):
        """Test a future window ticks until its finish."""
        planner = WindowPlanner(
            run_handle,
            fake_rds,
            fake_s3,
            config=recorder_config,
            interval=timedelta(milliseconds=100),
        )
        now = current_time()

        await planner.sync(
            "test-db",
            format_timestamp(now + timedelta(milliseconds=100)),
            format_timestamp(now + timedelta(milliseconds=500)),
        )

        assert fake_rds.count("describe_db_log_files") >= 4
        assert fake_rds.count("create_db_snapshot") == 1

    @pytest.mark.asyncio
    async def test_straddling_window(self, planner, fake_rds):
        """Test a window around now downloads the past and streams the rest."""
        now = current_time()
        start = now - timedelta(hours=2)
        finish = now + timedelta(hours=2)

        with patch("rdsrecorder.planner.IntervalDownloader") as downloader_class, patch(
            "rdsrecorder.planner.PeriodicStreamer"
        ) as streamer_class:
            downloader = downloader_class.return_value
            downloader.download_logs_interval = AsyncMock(return_value=2)
            streamer = streamer_class.return_value
            streamer.stream_log_files = AsyncMock(return_value=None)

            await planner.sync("test-db", format_timestamp(start), format_timestamp(finish))

        downloader.download_logs_interval.assert_awaited_once()
        db, strict, d_start, d_finish = downloader.download_logs_interval.await_args.args
        assert (db, strict) == ("test-db", False)
        assert d_start == start.replace(microsecond=start.microsecond // 1000 * 1000) - timedelta(hours=1)
        assert abs(d_finish - (now - timedelta(hours=1))) < timedelta(seconds=5)

        streamer.stream_log_files.assert_awaited_once()
        s_db, s_start, s_finish = streamer.stream_log_files.await_args.args
        assert s_db == "test-db"
        assert s_start == d_finish + timedelta(hours=1)
        assert s_finish == finish.replace(microsecond=finish.microsecond // 1000 * 1000)
        assert fake_rds.count("create_db_snapshot") == 1

    @pytest.mark.asyncio
    async def test_straddling_download_error(self, planner):
        """Test a failed catch-up download fails the sync."""
        now = current_time()

        with patch("rdsrecorder.planner.IntervalDownloader") as downloader_class, patch(
            "rdsrecorder.planner.PeriodicStreamer"
        ) as streamer_class:
            downloader_class.return_value.download_logs_interval = AsyncMock(
                side_effect=RDSError("DescribeDBLogFiles failed")
            )
            streamer_class.return_value.stream_log_files = AsyncMock(return_value=None)

            with pytest.raises(RDSError):
                await planner.sync(
                    "test-db",
                    format_timestamp(now - timedelta(hours=2)),
                    format_timestamp(now + timedelta(hours=2)),
                )

    @pytest.mark.asyncio
    async def test_listing_error_fails_sync_but_snapshot_runs(self, planner, fake_rds):
        """Test log branch errors surface while the snapshot still completes."""
        fake_rds.describe_error = RDSError("DescribeDBLogFiles failed: AccessDenied")
        now = current_time()

        with pytest.raises(RDSError, match="AccessDenied"):
            await planner.sync(
                "test-db",
                format_timestamp(now - timedelta(hours=3)),
                format_timestamp(now - timedelta(hours=1)),
            )

        assert fake_rds.count("create_db_snapshot") == 1

    @pytest.mark.asyncio
    async def test_snapshot_failure_does_not_fail_sync(self, planner, fake_rds, fake_s3):
        """Test snapshot errors are logged and the logs still archived."""
        fake_rds.snapshot_error = RDSError("CreateDBSnapshot failed: SnapshotQuotaExceeded")
        now = current_time()
        fake_rds.set_log_files([_name(now - timedelta(hours=2))])

        await planner.sync(
            "test-db",
            format_timestamp(now - timedelta(hours=3)),
            format_timestamp(now - timedelta(hours=1)),
        )

        assert len(fake_s3.uploaded_keys()) == 1

    @pytest.mark.asyncio
    async def test_recovery_run(self, fake_rds, fake_s3, recorder_config):
        """Test a recovery run neither snapshots nor syncs logs."""
        run = RunHandle("A1234ASDF", recovery=True)
        planner = WindowPlanner(run, fake_rds, fake_s3, config=recorder_config)
        now = current_time()
        fake_rds.set_log_files([_name(now - timedelta(hours=2))])

        await planner.sync(
            "test-db",
            format_timestamp(now - timedelta(hours=3)),
            format_timestamp(now - timedelta(hours=1)),
        )

        assert fake_rds.calls == []
        assert fake_s3.uploaded_keys() == []


class TestSnapshot:
    """Tests for WindowPlanner.snapshot."""

    @pytest.mark.asyncio
    async def test_snapshot_at_start(self, planner, fake_rds):
        """Test an explicit start is honoured."""
        arn = await planner.snapshot("test-db", format_timestamp(current_time()))
        assert arn.endswith("pgreplay-A1234ASDF")
        assert fake_rds.count("create_db_snapshot") == 1

    @pytest.mark.asyncio
    async def test_snapshot_default_start(self, planner, fake_rds, monkeypatch):
        """Test the start defaults to a moment from now."""
        monkeypatch.setattr("rdsrecorder.planner.SNAPSHOT_DEFAULT_DELAY", timedelta(0))
        arn = await planner.snapshot("test-db", "")
        assert arn is not None
        assert fake_rds.count("create_db_snapshot") == 1

    @pytest.mark.asyncio
    async def test_snapshot_requires_db_identifier(self, planner, fake_rds):
        """Test the db identifier is required."""
        with pytest.raises(ValidationError):
            await planner.snapshot("", "")
        assert fake_rds.calls == []

    @pytest.mark.asyncio
    async def test_snapshot_invalid_start(self, planner):
        """Test a malformed start is rejected."""
        with pytest.raises(ValidationError):
            await planner.snapshot("test-db", "tomorrow")
