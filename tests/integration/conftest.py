# tests/integration/conftest.py
"""
Fixtures for integration tests (mocked AWS)
These tests verify components work together with mocked external services
"""

import pytest

from hope_remote_log.main import HopeRemoteLogSystem


@pytest.fixture
def temp_config_file(temp_dir):
    """Create temporary config file for system tests"""
    config_content = f"""
storage:
  base_path: {temp_dir / 'logs'}

s3:
  bucket: test-bucket
  region: us-east-1
  key_prefix: logs

processing:
  schedule_minutes: [5, 35]
  max_retries: 3
  retry_base_delay_seconds: 0

ingest:
  sequencing: batch
  source_utc_offset_hours: 7

monitoring:
  cloudwatch_enabled: false
"""

    config_file = temp_dir / "config.yaml"
    config_file.write_text(config_content)

    yield str(config_file)


@pytest.fixture
def system(temp_config_file, mock_s3):
    """Fully wired system with S3 mocked"""
    system = HopeRemoteLogSystem(temp_config_file)
    yield system
    system.stop()
