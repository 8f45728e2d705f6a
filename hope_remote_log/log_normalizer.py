#!/usr/bin/env python3
"""
Timestamp Normalizer for Hope Remote Log
Turns the syslog-style prefix of a device log line into a UTC instant

Device logs carry a local "MMM DD HH:MM:SS" prefix with no year and no
sub-second precision. The normalizer resolves the year, removes the fixed
source timezone offset and stores the caller's sequence hint in the
millisecond field so that same-second lines keep their arrival order.
"""

import re
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger(__name__)

# Devices log in Asia/Bangkok local time (UTC+7, no DST)
SOURCE_UTC_OFFSET_HOURS = 7

_TIMESTAMP_PREFIX_RE = re.compile(r'^([A-Za-z]{3})\s+(\d{1,2})\s+(\d{2}):(\d{2}):(\d{2})')

_MONTHS = {
    'Jan': 1, 'Feb': 2, 'Mar': 3, 'Apr': 4, 'May': 5, 'Jun': 6,
    'Jul': 7, 'Aug': 8, 'Sep': 9, 'Oct': 10, 'Nov': 11, 'Dec': 12,
}


class TimestampParseError(ValueError):
    """
    Raised when a log line has no usable embedded timestamp.

    Never surfaced to ingestion callers: the ingest path substitutes the
    current wall-clock time so that no line is dropped.
    """
    pass


def parse_log_timestamp(line: str, sequence: int = 0, year: Optional[int] = None,
                        utc_offset_hours: float = SOURCE_UTC_OFFSET_HOURS) -> datetime:
    """
    Parse the embedded timestamp of a log line into an aware UTC datetime.

    The millisecond field is the sequence hint, not real sub-second
    precision. Hints of 1000 or more carry into the seconds field.

    Args:
        line: Raw log line, e.g. "Sep 04 12:53:01 unit-a boot"
        sequence: Sub-second index of the line within its second
        year: Calendar year of the entry (default: current UTC year)
        utc_offset_hours: Offset of the device clock from UTC

    Returns:
        datetime: Timezone-aware UTC datetime

    Raises:
        TimestampParseError: Missing prefix, unknown month or impossible date

    Examples:
        >>> parse_log_timestamp("Sep 04 12:53:01 boot", 1, year=2025)
        datetime.datetime(2025, 9, 4, 5, 53, 1, 1000, tzinfo=datetime.timezone.utc)
    """
    match = _TIMESTAMP_PREFIX_RE.match(line)
    if not match:
        raise TimestampParseError("Invalid log format: timestamp not found")

    month_str, day_str, hour_str, minute_str, second_str = match.groups()

    month = _MONTHS.get(month_str)
    if month is None:
        raise TimestampParseError(f"Unknown month abbreviation: {month_str}")

    if year is None:
        year = datetime.now(timezone.utc).year

    try:
        local_time = datetime(
            year, month, int(day_str),
            int(hour_str), int(minute_str), int(second_str),
            tzinfo=timezone.utc
        )
    except ValueError as e:
        raise TimestampParseError(f"Invalid timestamp: {e}") from e

    return local_time - timedelta(hours=utc_offset_hours) + timedelta(milliseconds=sequence)


def format_log_timestamp(timestamp: datetime) -> str:
    """Format as ISO-8601 with millisecond precision and Z suffix."""
    timestamp = timestamp.astimezone(timezone.utc)
    return timestamp.strftime('%Y-%m-%dT%H:%M:%S.') + f"{timestamp.microsecond // 1000:03d}Z"


def parse_iso_timestamp(value: str) -> datetime:
    """Inverse of format_log_timestamp()."""
    return datetime.strptime(value, '%Y-%m-%dT%H:%M:%S.%fZ').replace(tzinfo=timezone.utc)


def second_key(timestamp: datetime) -> str:
    """Sequencing key: UTC time truncated to the second (YYYY-MM-DDTHH:MM:SSZ)."""
    return timestamp.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def hour_key(timestamp: datetime) -> str:
    """Bucket key: UTC hour (YYYY-MM-DD-HH)."""
    return timestamp.astimezone(timezone.utc).strftime('%Y-%m-%d-%H')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
