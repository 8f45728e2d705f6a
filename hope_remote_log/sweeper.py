#!/usr/bin/env python3
"""
Sweep Stage for Hope Remote Log
Moves completed hourly buckets from incoming/ to processing/

The bucket of the current UTC hour is never swept: it may still receive
writes, and this rule is the only thing keeping the sweep from racing
ingestion.
"""

import logging
from datetime import datetime
from typing import List, Optional

from hope_remote_log.buffer_manager import BUCKET_SUFFIX, BufferManager
from hope_remote_log.log_normalizer import hour_key, utcnow

logger = logging.getLogger(__name__)


class Sweeper:
    """
    Relocates every non-current-hour bucket file into the processing area.

    Example:
        >>> sweeper = Sweeper(BufferManager('/data/logs'))
        >>> swept = sweeper.sweep_completed_files()
    """

    def __init__(self, buffer: BufferManager):
        self.buffer = buffer

    def select_completed_files(self, now: Optional[datetime] = None) -> List[str]:
        """Bucket files in incoming/ that do not belong to the current hour."""
        current_file = f"{hour_key(now or utcnow())}{BUCKET_SUFFIX}"
        return self.buffer.list_files(
            self.buffer.incoming,
            lambda name: name.endswith(BUCKET_SUFFIX) and name != current_file
        )

    def sweep_completed_files(self, now: Optional[datetime] = None) -> List[str]:
        """
        Move completed bucket files to processing/.

        Files that cannot be moved stay in incoming/ for the next cycle.

        Args:
            now: Reference wall-clock time (default: current UTC time)

        Returns:
            List[str]: Names of the files that were moved
        """
        swept = []
        for filename in self.select_completed_files(now):
            source = self.buffer.incoming / filename
            destination = self.buffer.processing / filename
            try:
                self.buffer.move_file(source, destination)
            except OSError as e:
                logger.error(f"Failed to move {filename} to processing: {e}")
                continue
            swept.append(filename)

        logger.info(f"Swept {len(swept)} files to processing directory")
        return swept
