#!/usr/bin/env python3
"""
Run Status Recorder for Hope Remote Log
Persists the lifecycle of the latest batch cycle

status/last_run.json always describes the most recent cycle only and is
rewritten atomically on every transition (running -> success | failed).
"""

import time
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from hope_remote_log.buffer_manager import BufferManager
from hope_remote_log.log_normalizer import format_log_timestamp, utcnow

logger = logging.getLogger(__name__)

STATUS_RUNNING = 'running'
STATUS_SUCCESS = 'success'
STATUS_FAILED = 'failed'


class RunStatusRecorder:
    """
    Records batch cycle transitions to the status file.

    Example:
        >>> recorder = RunStatusRecorder(BufferManager('/data/logs'))
        >>> recorder.mark_running()
        >>> recorder.mark_finished(STATUS_SUCCESS, files_processed=3)
    """

    def __init__(self, buffer: BufferManager):
        self.buffer = buffer
        self._started_at: Optional[datetime] = None
        self._started_monotonic: Optional[float] = None

    def _write(self, record: Dict[str, Any]):
        try:
            self.buffer.write_json_file(self.buffer.last_run_path, record)
        except OSError as e:
            logger.error(f"Failed to write run status: {e}")

    def mark_running(self) -> Dict[str, Any]:
        """Record the start of a cycle."""
        self._started_at = utcnow()
        self._started_monotonic = time.monotonic()
        record = {
            'status': STATUS_RUNNING,
            'started_at': format_log_timestamp(self._started_at),
            'finished_at': None,
            'duration_seconds': None,
            'files_processed': 0,
            'error_message': None,
        }
        self._write(record)
        return record

    def mark_finished(self, status: str, files_processed: int = 0,
                      error_message: Optional[str] = None) -> Dict[str, Any]:
        """
        Record the end of a cycle.

        Args:
            status: STATUS_SUCCESS or STATUS_FAILED
            files_processed: Files uploaded during the cycle
            error_message: Failure summary, if any
        """
        if status not in (STATUS_SUCCESS, STATUS_FAILED):
            raise ValueError(f"Invalid terminal status: {status}")

        duration = None
        if self._started_monotonic is not None:
            duration = round(time.monotonic() - self._started_monotonic, 1)

        record = {
            'status': status,
            'started_at': format_log_timestamp(self._started_at) if self._started_at else None,
            'finished_at': format_log_timestamp(utcnow()),
            'duration_seconds': duration,
            'files_processed': files_processed,
            'error_message': error_message,
        }
        self._write(record)
        return record
