"""boto3 implementations of the RDS and object store capabilities."""

import threading
from pathlib import Path
from typing import Any, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from structlog import BoundLogger

from rdsrecorder.config import AWSConfig
from rdsrecorder.exceptions import ConfigurationError, RDSError, S3Error
from rdsrecorder.interfaces import DBInstance, LogFilesPage, LogPortion, ObjectStoreApi, RDSApi
from utils.logging import get_logger


def build_boto_config(config: AWSConfig) -> Config:
    """botocore client config with the throttle-aware retry policy."""
    return Config(
        region_name=config.region,
        retries={"max_attempts": config.max_attempts, "mode": config.retry_mode},
    )


def verify_aws_credentials(config: AWSConfig, logger: Optional[BoundLogger] = None) -> str:
    """Check the default credential chain with STS GetCallerIdentity.

    Returns:
        The caller ARN

    Raises:
        ConfigurationError: If credentials are missing or rejected
    """
    logger = logger or get_logger("aws")
    try:
        sts = boto3.Session(region_name=config.region).client(
            "sts", config=build_boto_config(config)
        )
        identity = sts.get_caller_identity()
    except (ClientError, BotoCoreError) as e:
        raise ConfigurationError(
            f"the aws credentials are not valid: {e}",
            context={"region": config.region},
        ) from e

    logger.debug("AWS credentials verified", arn=identity.get("Arn"), region=config.region)
    return identity.get("Arn", "")


def _error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "Unknown")
    return type(error).__name__


class _BotoClient:
    """Lazily created boto3 client shared across worker threads."""

    service_name = ""

    def __init__(self, config: AWSConfig, logger: Optional[BoundLogger] = None) -> None:
        self.config = config
        self.logger = logger or get_logger(self.service_name)
        self._client: Optional[Any] = None
        self._lock = threading.Lock()

    @property
    def client(self) -> Any:
        """Get or create the boto3 client."""
        with self._lock:
            if self._client is None:
                kwargs: dict[str, Any] = {
                    "service_name": self.service_name,
                    "config": build_boto_config(self.config),
                }
                if self.config.endpoint_url:
                    kwargs["endpoint_url"] = self.config.endpoint_url
                self._client = boto3.Session(region_name=self.config.region).client(**kwargs)
                self.logger.debug(
                    "AWS client initialized",
                    service=self.service_name,
                    region=self.config.region,
                    endpoint=self.config.endpoint_url or "AWS",
                )
        return self._client


class BotoRDSApi(_BotoClient, RDSApi):
    """RDS capability over boto3."""

    service_name = "rds"

    def _fail(self, action: str, error: Exception, **context: Any) -> RDSError:
        return RDSError(
            f"{action} failed: {_error_code(error)}",
            context={**context, "error": str(error)},
        )

    def describe_db_log_files(self, db_identifier: str, marker: str) -> LogFilesPage:
        try:
            response = self.client.describe_db_log_files(
                DBInstanceIdentifier=db_identifier,
                Marker=marker,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._fail("DescribeDBLogFiles", e, db_identifier=db_identifier) from e

        return LogFilesPage(
            file_names=[f["LogFileName"] for f in response.get("DescribeDBLogFiles", [])],
            marker=response.get("Marker"),
        )

    def download_db_log_file_portion(
        self,
        db_identifier: str,
        log_file_name: str,
        marker: str,
        number_of_lines: int,
    ) -> LogPortion:
        try:
            response = self.client.download_db_log_file_portion(
                DBInstanceIdentifier=db_identifier,
                LogFileName=log_file_name,
                Marker=marker,
                NumberOfLines=number_of_lines,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._fail(
                "DownloadDBLogFilePortion", e, db_identifier=db_identifier, file=log_file_name
            ) from e

        return LogPortion(
            data=response.get("LogFileData") or "",
            marker=response.get("Marker"),
            additional_data_pending=response.get("AdditionalDataPending", False),
        )

    def describe_db_instances(self, db_identifier: str) -> list[DBInstance]:
        try:
            response = self.client.describe_db_instances(DBInstanceIdentifier=db_identifier)
        except (ClientError, BotoCoreError) as e:
            raise self._fail("DescribeDBInstances", e, db_identifier=db_identifier) from e

        return [
            DBInstance(
                identifier=instance.get("DBInstanceIdentifier", db_identifier),
                cluster_identifier=instance.get("DBClusterIdentifier"),
            )
            for instance in response.get("DBInstances", [])
        ]

    def create_db_snapshot(
        self, db_identifier: str, snapshot_identifier: str, tags: dict[str, str]
    ) -> str:
        try:
            response = self.client.create_db_snapshot(
                DBInstanceIdentifier=db_identifier,
                DBSnapshotIdentifier=snapshot_identifier,
                Tags=[{"Key": k, "Value": v} for k, v in tags.items()],
            )
        except (ClientError, BotoCoreError) as e:
            raise self._fail("CreateDBSnapshot", e, db_identifier=db_identifier) from e
        return response["DBSnapshot"]["DBSnapshotArn"]

    def create_db_cluster_snapshot(
        self, cluster_identifier: str, snapshot_identifier: str, tags: dict[str, str]
    ) -> str:
        try:
            response = self.client.create_db_cluster_snapshot(
                DBClusterIdentifier=cluster_identifier,
                DBClusterSnapshotIdentifier=snapshot_identifier,
                Tags=[{"Key": k, "Value": v} for k, v in tags.items()],
            )
        except (ClientError, BotoCoreError) as e:
            raise self._fail(
                "CreateDBClusterSnapshot", e, cluster_identifier=cluster_identifier
            ) from e
        return response["DBClusterSnapshot"]["DBClusterSnapshotArn"]


class BotoObjectStoreApi(_BotoClient, ObjectStoreApi):
    """S3 capability over boto3."""

    service_name = "s3"

    def list_buckets(self) -> list[str]:
        try:
            response = self.client.list_buckets()
        except (ClientError, BotoCoreError) as e:
            raise S3Error(f"Failed to list buckets: {_error_code(e)}") from e
        return [b["Name"] for b in response.get("Buckets", [])]

    def list_objects(self, bucket: str, prefix: str, max_keys: int) -> list[str]:
        try:
            response = self.client.list_objects_v2(Bucket=bucket, Prefix=prefix, MaxKeys=max_keys)
        except (ClientError, BotoCoreError) as e:
            raise S3Error(
                f"Failed to list objects in S3: {_error_code(e)}",
                context={"bucket": bucket, "prefix": prefix},
            ) from e
        return [obj["Key"] for obj in response.get("Contents", [])]

    def put_object(self, bucket: str, key: str, metadata: dict[str, str]) -> None:
        try:
            self.client.put_object(Bucket=bucket, Key=key, Body=b"", Metadata=metadata)
        except (ClientError, BotoCoreError) as e:
            raise S3Error(
                f"Failed to put object: {_error_code(e)}",
                context={"bucket": bucket, "key": key},
            ) from e

    def upload_large_file(self, file_path: Path, bucket: str, key: str, part_size: int) -> None:
        transfer_config = TransferConfig(
            multipart_threshold=part_size,
            multipart_chunksize=part_size,
        )
        try:
            self.client.upload_file(
                Filename=str(file_path),
                Bucket=bucket,
                Key=key,
                Config=transfer_config,
            )
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise S3Error(
                f"couldn't upload file: {file_path}, to {bucket}:{key}",
                context={"error": str(e)},
            ) from e
