"""Timestamp parsing, log file name dating and window validation helpers."""

import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from rdsrecorder.exceptions import InvalidLogFileError, ValidationError

# Human readable form of the accepted layout, used in flags and messages
TIMESTAMP_FORMAT = "2006-01-02 15:04:05.000 UTC"

DAYS_LOG_RETENTION = 7

_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3} UTC$")
_STRPTIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f UTC"
_LOG_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}-\d{2,4}")


def current_time(*deltas: timedelta) -> datetime:
    """Return the current UTC time shifted by the given deltas."""
    now = datetime.now(timezone.utc)
    for delta in deltas:
        now += delta
    return now


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a ``YYYY-MM-DD HH:MM:SS.mmm UTC`` timestamp.

    Args:
        value: Timestamp string; empty means "not provided"

    Returns:
        Aware UTC datetime, or None for empty input

    Raises:
        ValidationError: If the value does not follow the format
    """
    if not value:
        return None

    if not _TIMESTAMP_RE.match(value):
        raise ValidationError(
            f"must be a valid timestamp ({TIMESTAMP_FORMAT}), got: {value!r}"
        )
    try:
        parsed = datetime.strptime(value, _STRPTIME_FORMAT)
    except ValueError as e:
        raise ValidationError(
            f"must be a valid timestamp ({TIMESTAMP_FORMAT}), error: {e}"
        ) from e

    return parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime with the same layout ``parse_timestamp`` accepts."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S.") + f"{value.microsecond // 1000:03d} UTC"


def find_datetime_from_log(file_name: str) -> datetime:
    """Extract the UTC instant embedded in an RDS log file name.

    ``error/postgresql.log.2024-02-23-0830.csv`` gives 2024-02-23 08:30 UTC and
    ``error/postgresql.log.2024-02-23-08.csv`` gives 2024-02-23 08:00 UTC.

    Raises:
        InvalidLogFileError: If the name holds no date, more than one, or an
            impossible calendar value
    """
    matches = _LOG_DATE_RE.findall(file_name)
    if len(matches) != 1:
        raise InvalidLogFileError(
            f"unable to find the date time for: {file_name}",
            context={"matches": len(matches)},
        )

    year, month, day, clock = matches[0].split("-")
    hour, minute = clock[:2], clock[2:]
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute or 0), tzinfo=timezone.utc
        )
    except ValueError as e:
        raise InvalidLogFileError(
            f"unable to find the date time for: {file_name}", context={"error": str(e)}
        ) from e


def time_between(t: datetime, start: datetime, finish: datetime) -> bool:
    """Inclusive range check; the bounds may come in either order."""
    if start > finish:
        start, finish = finish, start
    return start <= t <= finish


def truncate_to_hour(value: datetime) -> datetime:
    """Drop minutes, seconds and microseconds."""
    return value.replace(minute=0, second=0, microsecond=0)


def validate_interval(start: datetime, finish: datetime) -> None:
    """Reject a window whose start is after its finish."""
    if start > finish:
        raise ValidationError(
            f"start is after finish, start: {format_timestamp(start)}, "
            f"finish: {format_timestamp(finish)}"
        )


def validate_7_days(start: datetime, days: int = DAYS_LOG_RETENTION) -> None:
    """Reject a start older than the RDS log retention."""
    limit = current_time(timedelta(days=-days))
    if start < limit:
        raise ValidationError(
            f"start is not within the {days} day retention interval, "
            f"start: {format_timestamp(start)}, interval: {format_timestamp(limit)}"
        )


def validate_utc(*instants: datetime) -> None:
    """Reject the first instant that is naive or not at UTC offset zero."""
    for instant in instants:
        offset = instant.utcoffset()
        if offset is None or offset != timedelta(0):
            raise ValidationError(
                f"the date provided is not in UTC timezone, date: {instant.isoformat()}"
            )


def format_file_name_for_s3(pid: str, log_file_name: str) -> str:
    """Object name for a log file: ``rds_log_{pid}_{unix_seconds}``."""
    file_date = find_datetime_from_log(log_file_name)
    return f"rds_log_{pid}_{int(file_date.timestamp())}"


def format_file_path(folder: str, file_name: str) -> str:
    return f"{folder}/{file_name}"


def clean_tmp_file(path: Optional[Path]) -> None:
    """Remove a temp file; a missing file or None is fine."""
    if path is not None:
        Path(path).unlink(missing_ok=True)
