#!/usr/bin/env python3
"""
Log Processor for Hope Remote Log
Ingestion entry point used by the HTTP layer

Splits a device submission into lines, resolves each line's timestamp with
the deployment's sequencing strategy and hands the entries to the bucket
writer. A submission either lands completely on disk or fails as a whole.
"""

import time
import logging
import threading
from collections import deque
from typing import Callable, Dict, List

from hope_remote_log.bucket_writer import BucketWriter, LogEntry
from hope_remote_log.log_normalizer import (
    SOURCE_UTC_OFFSET_HOURS,
    TimestampParseError,
    format_log_timestamp,
    utcnow,
)
from hope_remote_log.sequencer import (
    SEQUENCING_BATCH,
    SEQUENCING_LIFETIME,
    SEQUENCING_MODES,
    BatchSequencer,
    LifetimeSequencer,
)

logger = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 5 * 60
RATE_WINDOW_MINUTES = RATE_WINDOW_SECONDS / 60


class IngestError(Exception):
    """
    Raised when a submission could not be durably written.

    The caller should report the submission as failed; none of its lines
    are acknowledged.
    """
    pass


class IngestService:
    """
    Turns raw device submissions into bucket file records.

    Features:
    - Per-submission sequencing (default) or legacy process-lifetime sequencing
    - Wall-clock fallback for lines without a parsable timestamp
    - Ingestion rate over the last 5 minutes

    Example:
        >>> service = IngestService(BucketWriter('/data/logs/incoming'))
        >>> service.process_log_content('unit-a', "Sep 04 12:53:01 unit-a boot\\n")
        {'lines_processed': 1, 'files_written': 1}

    Attributes:
        writer (BucketWriter): Destination for normalized entries
        sequencing (str): 'batch' or 'lifetime'
    """

    def __init__(self, writer: BucketWriter, sequencing: str = SEQUENCING_BATCH,
                 utc_offset_hours: float = SOURCE_UTC_OFFSET_HOURS,
                 clock: Callable = time.time):
        if sequencing not in SEQUENCING_MODES:
            raise ValueError(f"Unknown sequencing mode: {sequencing}")

        self.writer = writer
        self.sequencing = sequencing
        self.utc_offset_hours = utc_offset_hours
        self._clock = clock

        # Only populated for the legacy strategy
        self._lifetime_sequencer = None
        if sequencing == SEQUENCING_LIFETIME:
            self._lifetime_sequencer = LifetimeSequencer(utc_offset_hours=utc_offset_hours)
            logger.warning("Using legacy process-lifetime sequencing")

        self._recent_requests = deque()
        self._requests_lock = threading.Lock()

        logger.info(f"Ingest service ready (sequencing={sequencing}, "
                    f"source offset=UTC{utc_offset_hours:+g})")

    def _sequencer(self) -> BatchSequencer:
        if self._lifetime_sequencer is not None:
            return self._lifetime_sequencer
        return BatchSequencer(utc_offset_hours=self.utc_offset_hours)

    def build_entries(self, device_id: str, lines: List[str]) -> List[LogEntry]:
        """Normalize lines (in order) into log entries."""
        sequencer = self._sequencer()
        entries = []
        for line in lines:
            try:
                timestamp = sequencer.next_timestamp(line)
            except TimestampParseError as e:
                logger.debug(f"Using current time for line from {device_id}: {e}")
                timestamp = utcnow()
            entries.append(LogEntry(device_id, format_log_timestamp(timestamp), line))
        return entries

    def process_log_content(self, device_id: str, log_content: str) -> Dict[str, int]:
        """
        Ingest one submission of newline-separated log lines.

        Empty lines are ignored. Returns only after every bucket file
        touched by the submission has been fsynced.

        Args:
            device_id: Identifier of the submitting device
            log_content: One or more newline-separated raw lines

        Returns:
            dict: {'lines_processed': int, 'files_written': int}

        Raises:
            IngestError: If any bucket append fails
        """
        self.track_request()

        lines = [line for line in log_content.split('\n') if line]
        if not lines:
            return {'lines_processed': 0, 'files_written': 0}

        entries = self.build_entries(device_id, lines)

        try:
            lines_processed, files_written = self.writer.write_entries(entries)
        except OSError as e:
            logger.error(f"Failed to buffer {len(entries)} lines from {device_id}: {e}")
            raise IngestError(f"Failed to write log buffer: {e}") from e

        logger.debug(f"Buffered {lines_processed} lines from {device_id} "
                     f"into {files_written} files")
        return {'lines_processed': lines_processed, 'files_written': files_written}

    def track_request(self):
        """Record one ingestion call for rate calculation."""
        now = self._clock()
        with self._requests_lock:
            self._recent_requests.append(now)
            self._expire_requests(now)

    def _expire_requests(self, now: float):
        cutoff = now - RATE_WINDOW_SECONDS
        while self._recent_requests and self._recent_requests[0] <= cutoff:
            self._recent_requests.popleft()

    def get_ingestion_rate(self) -> float:
        """Ingestion calls per minute over the last 5 minutes (1 decimal)."""
        with self._requests_lock:
            self._expire_requests(self._clock())
            return round(len(self._recent_requests) / RATE_WINDOW_MINUTES, 1)
