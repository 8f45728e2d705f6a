#!/usr/bin/env python3
"""
Sequencer for Hope Remote Log
Assigns per-second sequence hints to log lines

Two strategies exist and a deployment uses exactly one of them:

- BatchSequencer (canonical): counters live for one submission. Lines that
  share a second inside one request get hints 0, 1, 2... in input order.
- LifetimeSequencer (legacy): counters live as long as the ingest service
  and are pruned of keys older than one hour on every parse. Kept only for
  deployments that still submit one line per request.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict

from hope_remote_log.log_normalizer import (
    SOURCE_UTC_OFFSET_HOURS,
    parse_log_timestamp,
    second_key,
    utcnow,
)

logger = logging.getLogger(__name__)

SEQUENCING_BATCH = 'batch'
SEQUENCING_LIFETIME = 'lifetime'
SEQUENCING_MODES = (SEQUENCING_BATCH, SEQUENCING_LIFETIME)

COUNTER_RETENTION = timedelta(hours=1)


class BatchSequencer:
    """
    Sequence counter scoped to a single submission.

    Example:
        >>> seq = BatchSequencer(year=2025)
        >>> seq.next_timestamp("Sep 04 12:53:01 a").microsecond
        0
        >>> seq.next_timestamp("Sep 04 12:53:01 b").microsecond
        1000
    """

    def __init__(self, year: int = None, utc_offset_hours: float = SOURCE_UTC_OFFSET_HOURS):
        self.year = year
        self.utc_offset_hours = utc_offset_hours
        self.counters: Dict[str, int] = {}

    def _claim(self, key: str) -> int:
        current = self.counters.get(key, 0)
        self.counters[key] = current + 1
        return current

    def next_timestamp(self, line: str) -> datetime:
        """
        Resolve the final timestamp of the next line in the submission.

        Raises:
            TimestampParseError: If the line has no parsable timestamp.
                No counter is consumed in that case.
        """
        base = parse_log_timestamp(line, 0, self.year, self.utc_offset_hours)
        sequence = self._claim(second_key(base))
        return parse_log_timestamp(line, sequence, self.year, self.utc_offset_hours)


class LifetimeSequencer(BatchSequencer):
    """
    Sequence counter shared by every submission of the process (legacy).

    Thread-safe. Keys older than one hour (relative to wall-clock time) are
    evicted on every parse, so lines whose event time is more than an hour
    old restart their count at 0.
    """

    def __init__(self, year: int = None, utc_offset_hours: float = SOURCE_UTC_OFFSET_HOURS,
                 clock: Callable[[], datetime] = utcnow):
        super().__init__(year, utc_offset_hours)
        self._clock = clock
        self._lock = threading.Lock()

    def next_timestamp(self, line: str) -> datetime:
        base = parse_log_timestamp(line, 0, self.year, self.utc_offset_hours)
        with self._lock:
            sequence = self._claim(second_key(base))
            self._prune_counters()
        return parse_log_timestamp(line, sequence, self.year, self.utc_offset_hours)

    def _prune_counters(self):
        cutoff = second_key(self._clock() - COUNTER_RETENTION)
        stale = [key for key in self.counters if key < cutoff]
        for key in stale:
            del self.counters[key]
        if stale:
            logger.debug(f"Pruned {len(stale)} sequence counters older than {cutoff}")
