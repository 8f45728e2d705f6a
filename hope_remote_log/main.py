#!/usr/bin/env python3
"""
Hope Remote Log - Main Application
Wires the ingestion path and the batch pipeline together

The HTTP layer (not part of this package) calls ingest_service for uploads
and reads ingestion rate / buffer state for monitoring. This module builds
those services once, runs the batch scheduler thread and provides a CLI for
operations.
"""

import sys
import json
import time
import signal
import logging
import threading
from datetime import datetime
from typing import Optional

from hope_remote_log import __version__
from hope_remote_log.batch_processor import BatchProcessor, CycleResult
from hope_remote_log.bucket_writer import BucketWriter
from hope_remote_log.buffer_manager import BufferManager
from hope_remote_log.cloudwatch_manager import CloudWatchManager
from hope_remote_log.config_manager import ConfigManager
from hope_remote_log.log_normalizer import SOURCE_UTC_OFFSET_HOURS, utcnow
from hope_remote_log.log_processor import IngestError, IngestService
from hope_remote_log.sequencer import SEQUENCING_BATCH
from hope_remote_log.status_recorder import STATUS_SUCCESS, RunStatusRecorder
from hope_remote_log.upload_manager import (
    DEFAULT_KEY_PREFIX,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_BASE_DELAY,
    UploadManager,
)

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE_MINUTES = [5, 35]  # cron "5,35 * * * *"
SCHEDULE_CHECK_SECONDS = 30


class HopeRemoteLogSystem:
    """
    Main system coordinator for Hope Remote Log.

    Coordinates:
    - Configuration management (config_manager)
    - Filesystem buffer (buffer_manager)
    - Ingestion (log_processor + bucket_writer)
    - Batch cycles (batch_processor + upload_manager)
    - Optional CloudWatch metrics (cloudwatch_manager)

    Architecture:
    1. HTTP layer calls ingest_service.process_log_content() per upload
    2. Lines are appended to incoming/<YYYY-MM-DD-HH>.log
    3. Scheduler thread triggers a batch cycle at the configured minutes
    4. Completed buckets are swept, compressed and uploaded to S3
    5. Files that cannot be uploaded are quarantined in failed/

    Example:
        >>> system = HopeRemoteLogSystem('/etc/hope-remote-log/config.yaml')
        >>> system.start()
        >>> system.ingest_service.process_log_content('unit-a', body)
        >>> system.stop()
    """

    def __init__(self, config_path: str):
        """
        Initialize the system and all services.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigValidationError: If config is invalid
            OSError: If buffer directories cannot be created
        """
        logger.info(f"Initializing Hope Remote Log v{__version__}...")

        self.config = ConfigManager(config_path)

        self.buffer = BufferManager(self.config.get('storage.base_path'))
        self.buffer.initialize_directories()

        self.ingest_service = IngestService(
            BucketWriter(self.buffer.incoming),
            sequencing=self.config.get('ingest.sequencing', SEQUENCING_BATCH),
            utc_offset_hours=self.config.get('ingest.source_utc_offset_hours',
                                             SOURCE_UTC_OFFSET_HOURS)
        )

        self.upload_manager = UploadManager(
            bucket=self.config.get('s3.bucket'),
            region=self.config.get('s3.region'),
            key_prefix=self.config.get('s3.key_prefix', DEFAULT_KEY_PREFIX),
            max_retries=self.config.get('processing.max_retries', DEFAULT_MAX_RETRIES),
            retry_base_delay=self.config.get('processing.retry_base_delay_seconds',
                                             DEFAULT_RETRY_BASE_DELAY),
            profile_name=self.config.get('s3.profile')
        )

        self.cloudwatch = CloudWatchManager(
            region=self.config.get('s3.region'),
            service_name=self.config.get('monitoring.service_name', 'hope-remote-log'),
            enabled=self.config.get('monitoring.cloudwatch_enabled', False),
            profile_name=self.config.get('s3.profile')
        )

        self.batch_processor = BatchProcessor(
            self.buffer,
            self.upload_manager,
            status_recorder=RunStatusRecorder(self.buffer),
            cloudwatch=self.cloudwatch
        )

        self.schedule_minutes = sorted(set(
            self.config.get('processing.schedule_minutes', DEFAULT_SCHEDULE_MINUTES)
        ))

        self._running = False
        self._stop_event = threading.Event()
        self._schedule_thread = None

        logger.info("Initialization complete")

    def start(self):
        """
        Start the batch scheduler thread.

        Note:
            Safe to call multiple times - will not start if already running
        """
        if self._running:
            logger.warning("Already running")
            return

        logger.info("Starting Hope Remote Log...")
        self._running = True
        self._stop_event.clear()
        self._schedule_thread = threading.Thread(target=self._schedule_loop, daemon=True)
        self._schedule_thread.start()

        logger.info(f"Batch schedule: minutes {self.schedule_minutes} of every hour")

    def stop(self):
        """
        Stop the scheduler.

        An in-flight cycle is not cancelled; the wait is bounded so shutdown
        can proceed while it finishes in the daemon thread.
        """
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._stop_event.set()

        if self._schedule_thread:
            self._schedule_thread.join(timeout=5)
            if self._schedule_thread.is_alive():
                logger.warning("Batch cycle still in progress at shutdown")

        logger.info("Shutdown complete")

    def run_cycle(self) -> Optional[CycleResult]:
        """Run one batch cycle now (no-op if one is already running)."""
        return self.batch_processor.run()

    def _is_schedule_due(self, now: datetime, last_slot) -> bool:
        slot = now.strftime('%Y-%m-%d-%H-%M')
        return now.minute in self.schedule_minutes and slot != last_slot

    def _schedule_loop(self):
        """
        Background thread for scheduled batch cycles.

        Note:
            Runs in daemon thread, logs errors but continues running
        """
        logger.info("Schedule loop started")
        last_slot = None

        while self._running:
            try:
                now = utcnow()
                if self._is_schedule_due(now, last_slot):
                    last_slot = now.strftime('%Y-%m-%d-%H-%M')
                    logger.info("Starting scheduled batch processing...")
                    self.run_cycle()
            except Exception as e:
                logger.error(f"Error in schedule loop: {e}")
                logger.debug("Schedule loop traceback", exc_info=True)

            self._stop_event.wait(SCHEDULE_CHECK_SECONDS)

        logger.info("Schedule loop stopped")

    def get_statistics(self) -> dict:
        """Snapshot used by the monitoring endpoints."""
        return {
            'ingestion_rate_5min': self.ingest_service.get_ingestion_rate(),
            'last_batch_run': self.buffer.read_last_run(),
            'disk_usage_percent': self.buffer.get_disk_usage(),
            'buffer': self.buffer.get_buffer_state(),
            'failures': self.buffer.list_failures(),
        }


def signal_handler(signum, frame):
    """
    Handle shutdown signals (SIGTERM, SIGINT).

    SIGHUP is handled by ConfigManager (validation only).
    """
    logger.info(f"Received signal {signum}")
    if system is not None:
        system.stop()
    sys.exit(0)


system = None


def main():
    """
    Main entry point for Hope Remote Log.

    Command-line arguments:
        --config: Path to configuration file
        --test-config: Test configuration and exit
        --run-once: Run a single batch cycle and exit
        --ingest DEVICE_ID: Ingest stdin as one submission and exit
        --show-status: Print last run, buffer state and failures as JSON
        --log-level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    global system
    import argparse

    parser = argparse.ArgumentParser(description=f'Hope Remote Log v{__version__}')
    parser.add_argument(
        '--config',
        default='/etc/hope-remote-log/config.yaml',
        help='Path to configuration file'
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        '--test-config',
        action='store_true',
        help='Test configuration and exit'
    )
    mode.add_argument(
        '--run-once',
        action='store_true',
        help='Run a single batch cycle and exit'
    )
    mode.add_argument(
        '--ingest',
        metavar='DEVICE_ID',
        help='Ingest log lines from stdin for DEVICE_ID and exit'
    )
    mode.add_argument(
        '--show-status',
        action='store_true',
        help='Print last run, buffer state and failures as JSON'
    )
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level'
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s [%(name)s] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if args.test_config:
        try:
            config = ConfigManager(args.config)
            logger.info("Configuration valid!")
            logger.info(f"Base path: {config.get('storage.base_path')}")
            logger.info(f"S3 Bucket: {config.get('s3.bucket')} ({config.get('s3.region')})")
            logger.info(f"Schedule minutes: "
                        f"{config.get('processing.schedule_minutes', DEFAULT_SCHEDULE_MINUTES)}")
            logger.info(f"Sequencing: {config.get('ingest.sequencing', SEQUENCING_BATCH)}")
            sys.exit(0)
        except Exception as e:
            logger.error(f"Configuration error: {e}")
            sys.exit(1)

    try:
        system = HopeRemoteLogSystem(args.config)
    except Exception as e:
        logger.error(f"FATAL ERROR: {e}")
        sys.exit(1)

    if args.run_once:
        result = system.run_cycle()
        sys.exit(0 if result is not None and result.status == STATUS_SUCCESS else 1)

    if args.ingest:
        try:
            result = system.ingest_service.process_log_content(args.ingest, sys.stdin.read())
        except IngestError as e:
            logger.error(f"Ingestion failed: {e}")
            sys.exit(1)
        print(json.dumps(result))
        sys.exit(0)

    if args.show_status:
        print(json.dumps(system.get_statistics(), indent=2))
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        system.start()

        # Keep running
        logger.info("Running... Press Ctrl+C to stop")
        while True:
            time.sleep(1)

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        system.stop()


if __name__ == '__main__':
    main()
