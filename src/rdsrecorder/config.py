"""Configuration management using YAML and Pydantic."""

import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from rdsrecorder.exceptions import ConfigurationError

REGION_ENV_VAR = "AWS_REGION"
BUCKET_ENV_VAR = "AWS_S3_BUCKET_NAME"
DEFAULT_REGION = "sa-east-1"


def _substitute_env_vars(value: str) -> str:
    """Substitute environment variables in string.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: String potentially containing env var references

    Returns:
        String with environment variables substituted
    """
    pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2) if match.group(2) is not None else None
        env_value = os.getenv(var_name)
        if env_value is not None:
            return env_value
        if default is not None:
            return default
        raise ValueError(f"Environment variable {var_name} not set and no default provided")

    return re.sub(pattern, replacer, value)


def _substitute_env_in_dict(data: Any) -> Any:
    """Recursively substitute environment variables in dictionary.

    Args:
        data: Dictionary or nested structure

    Returns:
        Dictionary with environment variables substituted
    """
    if isinstance(data, dict):
        return {key: _substitute_env_in_dict(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_in_dict(item) for item in data]
    elif isinstance(data, str):
        return _substitute_env_vars(data)
    return data


def default_region() -> str:
    """Region from AWS_REGION, falling back to sa-east-1 when unset or empty."""
    return os.getenv(REGION_ENV_VAR) or DEFAULT_REGION


class AWSConfig(BaseModel):
    """AWS provider configuration shared by the RDS and S3 clients."""

    region: str = Field(
        default_factory=default_region,
        description="AWS region (AWS_REGION env var, defaults to sa-east-1)",
    )
    max_attempts: int = Field(
        default=200,
        description="Maximum attempts per API call, throttling included",
        ge=1,
    )
    retry_mode: str = Field(
        default="standard",
        description="botocore retry mode (legacy, standard, adaptive)",
    )
    endpoint_url: Optional[str] = Field(
        default=None,
        description="Custom endpoint URL (localstack and similar); null for AWS",
    )

    @field_validator("retry_mode")
    @classmethod
    def validate_retry_mode(cls, v: str) -> str:
        """Validate retry mode."""
        if v not in ("legacy", "standard", "adaptive"):
            raise ValueError("retry_mode must be 'legacy', 'standard', or 'adaptive'")
        return v


class SyncConfig(BaseModel):
    """Log synchronization tuning."""

    interval_seconds: float = Field(
        default=3600,
        description="Period between streaming ticks; each tick archives the prior interval",
        gt=0,
    )
    max_parallel_downloads: int = Field(
        default=5,
        description="Concurrent download+upload pipelines per interval",
        gt=0,
        le=50,
    )
    log_lines_per_portion: int = Field(
        default=1450,
        description="Lines requested per log portion, kept below the RDS truncation limit",
        gt=0,
    )
    tmp_dir: str = Field(
        default="/var/tmp",
        description="Directory for temporary log files",
    )
    multipart_part_size_mb: int = Field(
        default=10,
        description="Part size (MB) for multipart uploads",
        ge=5,
    )
    retention_days: int = Field(
        default=7,
        description="RDS log retention; sync windows may not start earlier than this",
        gt=0,
    )


class MetricsConfig(BaseModel):
    """Prometheus metrics endpoint configuration."""

    enabled: bool = Field(default=True, description="Serve the /metrics endpoint")
    address: str = Field(default="0.0.0.0", description="Address to bind the metrics listener")
    port: int = Field(default=9445, description="Port for the metrics listener", gt=0, lt=65536)
    shutdown_grace_seconds: float = Field(
        default=1.0,
        description="Time left for a final scrape before the server closes",
        ge=0,
    )


class RecorderConfig(BaseModel):
    """Root configuration model."""

    bucket: Optional[str] = Field(
        default_factory=lambda: os.getenv(BUCKET_ENV_VAR) or None,
        description="S3 bucket name (AWS_S3_BUCKET_NAME env var when not set)",
    )
    db_identifier: Optional[str] = Field(default=None, description="RDS instance identifier")
    aws: AWSConfig = Field(default_factory=AWSConfig, description="AWS provider configuration")
    sync: SyncConfig = Field(default_factory=SyncConfig, description="Log sync tuning")
    metrics: MetricsConfig = Field(default_factory=MetricsConfig, description="Metrics endpoint")

    def resolve_bucket(self, bucket: Optional[str] = None) -> str:
        """Pick the bucket from the argument, the config, then the environment.

        Raises:
            ConfigurationError: If no bucket name is available
        """
        name = bucket or self.bucket or os.getenv(BUCKET_ENV_VAR)
        if not name:
            raise ConfigurationError("you must provide the bucket identifier")
        return name


def load_config(config_path: Optional[Path] = None) -> RecorderConfig:
    """Load and validate configuration from a YAML file.

    Without a path the defaults (plus environment) are returned.

    Args:
        config_path: Optional path to YAML configuration file

    Returns:
        Validated configuration object

    Raises:
        ConfigurationError: If configuration is invalid
    """
    if config_path is None:
        return RecorderConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)

        if not raw_config:
            return RecorderConfig()

        config_data = _substitute_env_in_dict(raw_config)
        return RecorderConfig.model_validate(config_data)

    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}") from None
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e
    except Exception as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e
