# tests/conftest.py
"""
Common fixtures for all test types
These are shared across unit, integration, and e2e tests
"""

import pytest
import tempfile
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock, patch

# Add project root to Python path so 'hope_remote_log' can be imported
# This allows tests to run without installing the package
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from hope_remote_log.buffer_manager import BufferManager


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def buffer(temp_dir):
    """Initialized buffer layout under a temporary base path"""
    buffer = BufferManager(str(temp_dir / 'logs'))
    buffer.initialize_directories()
    return buffer


@pytest.fixture
def sweep_time():
    """Fixed wall-clock time inside the 2025-09-04-05 UTC bucket"""
    return datetime(2025, 9, 4, 5, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_s3(monkeypatch):
    """
    Mock S3 client returned by every boto3 session created in upload_manager
    """
    monkeypatch.delenv('AWS_ENDPOINT_URL', raising=False)

    with patch('hope_remote_log.upload_manager.boto3.session.Session') as mock_Session:
        mock_client = Mock()
        mock_client.upload_file.return_value = None
        mock_Session.return_value.client.return_value = mock_client
        mock_client.session_class = mock_Session
        yield mock_client


@pytest.fixture
def make_bucket():
    """Factory creating a bucket file with N JSON records"""
    def _make_bucket(directory: Path, name: str, lines: int = 3) -> Path:
        path = directory / name
        with open(path, 'w', encoding='utf-8') as f:
            for i in range(lines):
                f.write('{"device_id":"unit-a","log_timestamp":"2025-09-04T04:00:00.%03dZ",'
                        '"message":"Sep 04 11:00:00 unit-a line %d"}\n' % (i, i))
        return path
    return _make_bucket
