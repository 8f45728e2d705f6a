#!/usr/bin/env python3
"""
Bucket Writer for Hope Remote Log
Appends normalized log entries to hourly bucket files

Each bucket file is named after the UTC hour of its entries' event time
(YYYY-MM-DD-HH.log) and holds one JSON object per line.
"""

import os
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from hope_remote_log.log_normalizer import hour_key, parse_iso_timestamp

logger = logging.getLogger(__name__)

LOCK_STRIPES = 16


@dataclass(frozen=True)
class LogEntry:
    """
    One accepted device log line.

    Record format (compact, field order is stable):
        {"device_id":"unit-a","log_timestamp":"2025-09-04T05:53:01.000Z","message":"..."}
    """
    device_id: str
    log_timestamp: str
    message: str

    @property
    def bucket_key(self) -> str:
        return hour_key(parse_iso_timestamp(self.log_timestamp))

    def to_json(self) -> str:
        return json.dumps({
            'device_id': self.device_id,
            'log_timestamp': self.log_timestamp,
            'message': self.message,
        }, ensure_ascii=False, separators=(',', ':'))

    @classmethod
    def from_json(cls, record: str) -> 'LogEntry':
        data = json.loads(record)
        return cls(data['device_id'], data['log_timestamp'], data['message'])


class BucketWriter:
    """
    Appends grouped log entries to bucket files in the incoming directory.

    Each group is written with a single O_APPEND write followed by fsync,
    under the bucket's lock, so concurrent submissions never interleave
    partial records and a returning call means the data is on disk.

    Locks are striped: a fixed pool shared by filename hash, so memory does
    not grow with the number of hours the process has seen.

    Example:
        >>> writer = BucketWriter('/data/logs/incoming')
        >>> lines, files = writer.write_entries(entries)
    """

    def __init__(self, incoming_dir: str):
        self.incoming_dir = Path(incoming_dir)
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _bucket_lock(self, filename: str) -> threading.Lock:
        return self._locks[hash(filename) % LOCK_STRIPES]

    @staticmethod
    def group_by_bucket(entries: Iterable[LogEntry]) -> Dict[str, List[LogEntry]]:
        """Group entries by bucket filename, preserving input order."""
        groups: Dict[str, List[LogEntry]] = {}
        for entry in entries:
            groups.setdefault(f"{entry.bucket_key}.log", []).append(entry)
        return groups

    def append_records(self, filename: str, entries: List[LogEntry]):
        """
        Append one record group to a bucket file (created if absent).

        Raises:
            OSError: If the file cannot be opened, written or synced
        """
        payload = ''.join(entry.to_json() + '\n' for entry in entries).encode('utf-8')
        file_path = self.incoming_dir / filename

        with self._bucket_lock(filename):
            fd = os.open(file_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
            try:
                written = os.write(fd, payload)
                if written != len(payload):
                    raise OSError(f"Short write to {filename}: {written}/{len(payload)} bytes")
                os.fsync(fd)
            finally:
                os.close(fd)

        logger.debug(f"Appended {len(entries)} records to {filename}")

    def write_entries(self, entries: List[LogEntry]) -> Tuple[int, int]:
        """
        Write a submission's entries to their bucket files.

        Returns:
            Tuple[int, int]: (lines_processed, files_written)

        Raises:
            OSError: On the first failed append
        """
        groups = self.group_by_bucket(entries)
        for filename, group in groups.items():
            self.append_records(filename, group)
        return len(entries), len(groups)
