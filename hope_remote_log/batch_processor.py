#!/usr/bin/env python3
"""
Batch Processor for Hope Remote Log
Runs the periodic sweep -> compress -> upload -> cleanup/quarantine cycle

Per file the cycle ends in one of two terminal states:
    Uploaded     object stored in S3, local artifacts deleted
    Quarantined  original moved to failed/ with a .meta sidecar

Only one cycle runs at a time. The guard is an in-process lock, so it is
only correct for a single-process deployment; running several processes
against the same base path requires a distributed lock instead.
"""

import time
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from hope_remote_log.buffer_manager import BUCKET_SUFFIX, META_SUFFIX, BufferManager
from hope_remote_log.cloudwatch_manager import CloudWatchManager
from hope_remote_log.log_normalizer import format_log_timestamp, utcnow
from hope_remote_log.status_recorder import (
    STATUS_FAILED,
    STATUS_SUCCESS,
    RunStatusRecorder,
)
from hope_remote_log.sweeper import Sweeper
from hope_remote_log.upload_manager import UploadManager
from hope_remote_log.utils import format_bytes

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Summary of one completed batch cycle."""
    status: str
    files_processed: int = 0
    failed_files: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    error_message: Optional[str] = None


class BatchProcessor:
    """
    Orchestrates batch cycles over the filesystem buffer.

    Example:
        >>> processor = BatchProcessor(buffer, uploader)
        >>> result = processor.run()
        >>> if result is None:
        ...     print("Another cycle was already running")

    Attributes:
        buffer (BufferManager): Buffer directories and file primitives
        upload_manager (UploadManager): Compression and S3 upload
        sweeper (Sweeper): Incoming -> processing relocation
        status_recorder (RunStatusRecorder): last_run.json writer
        cloudwatch (CloudWatchManager): Optional metrics publisher
    """

    def __init__(self, buffer: BufferManager, upload_manager: UploadManager,
                 status_recorder: RunStatusRecorder = None,
                 cloudwatch: CloudWatchManager = None):
        self.buffer = buffer
        self.upload_manager = upload_manager
        self.sweeper = Sweeper(buffer)
        self.status_recorder = status_recorder or RunStatusRecorder(buffer)
        self.cloudwatch = cloudwatch
        self._cycle_lock = threading.Lock()

    @property
    def is_processing(self) -> bool:
        return self._cycle_lock.locked()

    def run(self, now: Optional[datetime] = None) -> Optional[CycleResult]:
        """
        Run one batch cycle unless one is already active.

        Never raises: cycle failures are reported through the status file.

        Args:
            now: Reference time for the sweep (default: current UTC time)

        Returns:
            CycleResult, or None if the cycle was skipped
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Batch processing already in progress, skipping...")
            return None

        try:
            return self._run_cycle(now)
        finally:
            self._cycle_lock.release()

    def _run_cycle(self, now: Optional[datetime]) -> CycleResult:
        started = time.monotonic()
        files_processed = 0
        failed_files = []

        self.status_recorder.mark_running()

        try:
            swept = self.sweeper.sweep_completed_files(now)

            # Files left behind by an interrupted cycle are picked up again
            pending = sorted(set(swept) | set(self.buffer.list_files(
                self.buffer.processing, lambda name: name.endswith(BUCKET_SUFFIX)
            )))
            if len(pending) > len(swept):
                logger.warning(f"Resuming {len(pending) - len(swept)} files left in processing")

            for filename in pending:
                if self.process_file(filename):
                    files_processed += 1
                else:
                    failed_files.append(filename)

        except Exception as e:
            logger.error(f"Critical error in batch processing: {e}")
            self.status_recorder.mark_finished(STATUS_FAILED, files_processed, str(e))
            self._publish_metrics()
            return CycleResult(STATUS_FAILED, files_processed, failed_files,
                               round(time.monotonic() - started, 1), str(e))

        if failed_files:
            status = STATUS_FAILED
            error_message = (f"{len(failed_files)} file(s) quarantined: "
                             f"{', '.join(failed_files)}")
        else:
            status = STATUS_SUCCESS
            error_message = None

        record = self.status_recorder.mark_finished(status, files_processed, error_message)
        self._publish_metrics()

        logger.info(
            f"Batch processing completed. Status: {status}, Files: {files_processed}, "
            f"Failed: {len(failed_files)}, Duration: {record['duration_seconds']}s"
        )
        return CycleResult(status, files_processed, failed_files,
                           record['duration_seconds'], error_message)

    def process_file(self, filename: str) -> bool:
        """
        Upload one file from processing/, quarantining it on any terminal error.

        Returns:
            bool: True if uploaded, False if quarantined
        """
        source = self.buffer.processing / filename

        try:
            file_size = source.stat().st_size
        except OSError:
            file_size = 0

        try:
            s3_key = self.upload_manager.upload_bucket_file(source)
        except Exception as e:
            retry_attempts = getattr(e, 'retry_attempts', 0)
            logger.error(f"Failed to process file {filename}: {e}")
            self.quarantine_file(filename, e, retry_attempts)
            if self.cloudwatch:
                self.cloudwatch.record_upload_failure()
            return False

        logger.info(f"Successfully processed: {filename} ({format_bytes(file_size)}) -> {s3_key}")
        if self.cloudwatch:
            self.cloudwatch.record_upload_success(file_size)
        return True

    def quarantine_file(self, filename: str, error: Exception, retry_attempts: int):
        """
        Move a file to failed/ and write its FailureRecord sidecar.

        Best-effort: errors are logged and never propagate.
        """
        source = self.buffer.processing / filename
        destination = self.buffer.failed / filename
        meta_file = self.buffer.failed / f"{filename}{META_SUFFIX}"

        metadata = {
            'failed_at': format_log_timestamp(utcnow()),
            'error_message': str(error),
            'retry_attempts': retry_attempts,
        }

        try:
            self.buffer.move_file(source, destination)
            self.buffer.write_json_file(meta_file, metadata)
        except OSError as e:
            logger.error(f"Failed to handle failed file {filename}: {e}")
            return

        logger.error(f"QUARANTINED: {filename} after {retry_attempts} retries ({error})")

    def _publish_metrics(self):
        if self.cloudwatch is None:
            return
        self.cloudwatch.publish_metrics(disk_usage_percent=self.buffer.get_disk_usage())
