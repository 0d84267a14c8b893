"""Custom exception hierarchy for the recorder."""

from pathlib import Path
from typing import Any, Optional


class RecorderError(Exception):
    """Base exception for all recorder errors."""

    def __init__(
        self,
        message: str,
        *,
        correlation_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Initialize recorder error.

        Args:
            message: Error message
            correlation_id: Optional correlation ID for tracing (the run PID)
            context: Optional context dictionary with additional details
        """
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message."""
        parts = [self.message]
        if self.correlation_id:
            parts.append(f"[correlation_id={self.correlation_id}]")
        if self.context:
            parts.append(f"[context={self.context}]")
        return " ".join(parts)


class ConfigurationError(RecorderError):
    """Configuration-related errors (bucket, credentials, config file)."""

    pass


class ValidationError(RecorderError):
    """Invalid user input: timestamps, time zones, intervals."""

    pass


class InvalidLogFileError(ValidationError):
    """A log file name does not carry a usable date time."""

    pass


class RDSError(RecorderError):
    """RDS API errors."""

    pass


class LogDownloadError(RDSError):
    """Failure while downloading a log file.

    The temp file created for the download, if any, is kept in
    ``partial_file`` so the caller can inspect it and must remove it.
    """

    def __init__(
        self,
        message: str,
        *,
        partial_file: Optional[Path] = None,
        correlation_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, correlation_id=correlation_id, context=context)
        self.partial_file = partial_file


class S3Error(RecorderError):
    """S3-related errors."""

    pass


class SnapshotError(RDSError):
    """Snapshot creation errors."""

    pass
