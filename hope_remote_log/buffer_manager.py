#!/usr/bin/env python3
"""
Buffer Manager for Hope Remote Log
Owns the on-disk buffer layout and its filesystem primitives

Layout under the configured base path:
    incoming/    bucket files still receiving writes
    processing/  bucket files swept for compression and upload
    failed/      quarantined bucket files plus their .meta sidecars
    status/      last_run.json for the latest batch cycle
"""

import json
import shutil
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from hope_remote_log.utils import bytes_to_mb

logger = logging.getLogger(__name__)

INCOMING_DIR = 'incoming'
PROCESSING_DIR = 'processing'
FAILED_DIR = 'failed'
STATUS_DIR = 'status'

LAST_RUN_FILE = 'last_run.json'
META_SUFFIX = '.meta'
BUCKET_SUFFIX = '.log'


class BufferManager:
    """
    Manages the filesystem buffer used between ingestion and upload.

    Example:
        >>> buffer = BufferManager('/data/logs')
        >>> buffer.initialize_directories()
        >>> buffer.move_file(buffer.incoming / 'a.log', buffer.processing / 'a.log')

    Attributes:
        base_path (Path): Root of the buffer
        incoming (Path): Write-active bucket files
        processing (Path): Files being compressed and uploaded
        failed (Path): Quarantined files
        status (Path): Run status records
    """

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        self.incoming = self.base_path / INCOMING_DIR
        self.processing = self.base_path / PROCESSING_DIR
        self.failed = self.base_path / FAILED_DIR
        self.status = self.base_path / STATUS_DIR

    @property
    def last_run_path(self) -> Path:
        return self.status / LAST_RUN_FILE

    def initialize_directories(self):
        """
        Create the buffer directory structure.

        Raises:
            OSError: If a directory cannot be created
        """
        for directory in (self.base_path, self.incoming, self.processing,
                          self.failed, self.status):
            try:
                directory.mkdir(parents=True, exist_ok=True)
                logger.debug(f"Directory ensured: {directory}")
            except OSError as e:
                logger.error(f"Failed to create directory {directory}: {e}")
                raise
        logger.info(f"Buffer directories ready under {self.base_path}")

    def list_files(self, directory: Path,
                   filter_func: Optional[Callable[[str], bool]] = None) -> List[str]:
        """
        List regular file names in a directory (sorted).

        Returns an empty list if the directory cannot be read.
        """
        try:
            names = sorted(p.name for p in Path(directory).iterdir() if p.is_file())
        except OSError as e:
            logger.error(f"Error listing files in {directory}: {e}")
            return []
        return [n for n in names if filter_func(n)] if filter_func else names

    def move_file(self, source: Path, destination: Path):
        """
        Move a file, falling back to copy + delete across filesystems.

        Raises:
            OSError: If neither rename nor copy + delete succeeds
        """
        source, destination = Path(source), Path(destination)
        try:
            source.rename(destination)
        except OSError as e:
            logger.debug(f"Rename failed for {source.name} ({e}), copying instead")
            shutil.copy2(source, destination)
            source.unlink()

    def read_json_file(self, file_path: Path) -> Optional[Any]:
        """Read a JSON file, returning None if it does not exist."""
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            return None

    def write_json_file(self, file_path: Path, data: Any):
        """
        Write JSON atomically (temp file + rename).

        Raises:
            OSError: If the write or rename fails (temp file is removed)
        """
        file_path = Path(file_path)
        temp_file = file_path.with_name(file_path.name + '.tmp')
        try:
            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            temp_file.replace(file_path)
        except OSError:
            temp_file.unlink(missing_ok=True)
            raise

    def get_directory_stats(self, directory: Path) -> Dict[str, Any]:
        """Get file count and total size (MB, 2 decimals) of a directory."""
        file_count = 0
        total_size = 0
        try:
            entries = list(Path(directory).iterdir())
        except OSError as e:
            logger.error(f"Error reading directory {directory}: {e}")
            return {'file_count': 0, 'total_size_mb': 0.0}

        for entry in entries:
            try:
                if entry.is_file():
                    total_size += entry.stat().st_size
                    file_count += 1
            except OSError as e:
                logger.warning(f"Could not stat file {entry}: {e}")

        return {
            'file_count': file_count,
            'total_size_mb': round(bytes_to_mb(total_size), 2),
        }

    def get_buffer_state(self) -> Dict[str, Dict[str, Any]]:
        """Directory statistics for every pipeline stage."""
        return {
            'incoming': self.get_directory_stats(self.incoming),
            'processing': self.get_directory_stats(self.processing),
            'failed': self.get_directory_stats(self.failed),
        }

    def get_disk_usage(self) -> float:
        """Disk usage percent of the filesystem holding the buffer."""
        try:
            stat = shutil.disk_usage(self.base_path)
        except OSError as e:
            logger.error(f"Error getting disk usage: {e}")
            return 0.0
        return round(stat.used / stat.total * 100, 1)

    def list_failures(self) -> List[Dict[str, Any]]:
        """Describe every quarantined bucket file using its sidecar."""
        failures = []
        for name in self.list_files(self.failed, lambda n: n.endswith(BUCKET_SUFFIX)):
            try:
                meta = self.read_json_file(self.failed / f"{name}{META_SUFFIX}")
            except (OSError, ValueError) as e:
                logger.warning(f"Unreadable metadata for {name}: {e}")
                meta = None

            if meta:
                failures.append({
                    'file_name': name,
                    'failed_at': meta.get('failed_at'),
                    'error_message': meta.get('error_message'),
                    'retry_attempts': meta.get('retry_attempts', 0),
                })
            else:
                failures.append({
                    'file_name': name,
                    'failed_at': None,
                    'error_message': 'No metadata available',
                    'retry_attempts': 0,
                })
        return failures

    def read_last_run(self) -> Optional[Dict[str, Any]]:
        """Latest batch cycle status, or None before the first cycle."""
        return self.read_json_file(self.last_run_path)
