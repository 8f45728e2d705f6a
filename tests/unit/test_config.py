#!/usr/bin/env python3
"""
Tests for Config Manager
"""

import copy
import tempfile
from pathlib import Path

import pytest
import yaml

from hope_remote_log.config_manager import ConfigManager, ConfigValidationError

VALID_CONFIG = {
    'storage': {'base_path': '/data/logs'},
    's3': {'bucket': 'hope-remote-logs', 'region': 'us-east-1', 'key_prefix': 'logs'},
    'processing': {
        'schedule_minutes': [5, 35],
        'max_retries': 3,
        'retry_base_delay_seconds': 1,
    },
    'ingest': {'sequencing': 'batch', 'source_utc_offset_hours': 7},
    'monitoring': {'cloudwatch_enabled': False, 'service_name': 'hope-remote-log'},
}


@pytest.fixture
def temp_config_file():
    """Create config with known values for testing"""
    config_content = """
storage:
  base_path: /data/logs
s3:
  bucket: hope-remote-logs
  region: ap-southeast-1
processing:
  schedule_minutes: [5, 35]
  max_retries: 3
ingest:
  sequencing: batch
monitoring:
  cloudwatch_enabled: false
"""

    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write(config_content)
        temp_path = f.name

    yield temp_path
    Path(temp_path).unlink()


@pytest.fixture
def config_manager(temp_config_file):
    return ConfigManager(temp_config_file)


def with_override(section, key, value):
    config = copy.deepcopy(VALID_CONFIG)
    config[section][key] = value
    return config


def test_load_valid_config(config_manager):
    """Test loading a valid configuration file"""
    assert config_manager.config['storage']['base_path'] == '/data/logs'
    assert config_manager.config['s3']['bucket'] == 'hope-remote-logs'
    assert config_manager.config['processing']['schedule_minutes'] == [5, 35]


def test_load_nonexistent_file():
    """Test loading a file that doesn't exist"""
    with pytest.raises(FileNotFoundError):
        ConfigManager('/nonexistent/path/config.yaml')


def test_empty_file(temp_dir):
    """Test empty config files are rejected"""
    path = temp_dir / 'config.yaml'
    path.write_text('\n')

    with pytest.raises(ConfigValidationError, match="empty"):
        ConfigManager(str(path))


def test_non_mapping_file(temp_dir):
    """Test top-level lists are rejected"""
    path = temp_dir / 'config.yaml'
    path.write_text('- a\n- b\n')

    with pytest.raises(ConfigValidationError, match="mapping"):
        ConfigManager(str(path))


def test_get_dot_notation(config_manager):
    """Test nested lookups with defaults"""
    assert config_manager.get('s3.region') == 'ap-southeast-1'
    assert config_manager.get('s3.key_prefix', 'logs') == 'logs'
    assert config_manager.get('missing.key', 'default') == 'default'
    assert config_manager.get('s3.bucket.name') is None


def test_env_var_expansion(temp_dir, monkeypatch):
    """Test ${VAR} in values is expanded"""
    monkeypatch.setenv('LOG_BASE_PATH', '/srv/hope')
    path = temp_dir / 'config.yaml'
    config = copy.deepcopy(VALID_CONFIG)
    config['storage']['base_path'] = '${LOG_BASE_PATH}/buffer'
    path.write_text(yaml.safe_dump(config))

    cm = ConfigManager(str(path))

    assert cm.get('storage.base_path') == '/srv/hope/buffer'


def test_valid_config_passes(config_manager):
    """Test the full schema validates"""
    assert config_manager.validate_config(copy.deepcopy(VALID_CONFIG)) is True


def test_optional_sections(config_manager):
    """Test only storage and s3 are required"""
    config = {'storage': VALID_CONFIG['storage'], 's3': VALID_CONFIG['s3']}
    assert config_manager.validate_config(config) is True


@pytest.mark.parametrize('missing', ['storage', 's3'])
def test_missing_required_key(config_manager, missing):
    """Test validation fails when required key is missing"""
    config = copy.deepcopy(VALID_CONFIG)
    del config[missing]

    with pytest.raises(ConfigValidationError, match=f"Missing required key: {missing}"):
        config_manager.validate_config(config)


@pytest.mark.parametrize('section, key, value', [
    ('storage', 'base_path', ''),
    ('s3', 'bucket', ''),
    ('s3', 'region', None),
    ('s3', 'key_prefix', '/'),
    ('processing', 'schedule_minutes', []),
    ('processing', 'schedule_minutes', [5, 60]),
    ('processing', 'schedule_minutes', [True]),
    ('processing', 'schedule_minutes', '5,35'),
    ('processing', 'max_retries', -1),
    ('processing', 'max_retries', 2.5),
    ('processing', 'retry_base_delay_seconds', -0.5),
    ('ingest', 'sequencing', 'global'),
    ('ingest', 'source_utc_offset_hours', 15),
    ('monitoring', 'cloudwatch_enabled', 'yes'),
])
def test_invalid_values(config_manager, section, key, value):
    """Test out-of-range or mistyped values are rejected"""
    with pytest.raises(ConfigValidationError):
        config_manager.validate_config(with_override(section, key, value))


@pytest.mark.parametrize('section', ['storage', 's3', 'processing', 'ingest', 'monitoring'])
def test_section_must_be_mapping(config_manager, section):
    """Test sections given as scalars are rejected"""
    config = copy.deepcopy(VALID_CONFIG)
    config[section] = 'oops'

    with pytest.raises(ConfigValidationError, match="must be a mapping"):
        config_manager.validate_config(config)


def test_failed_load_keeps_previous_config(config_manager, temp_config_file):
    """Test an invalid file does not replace the loaded config"""
    Path(temp_config_file).write_text(yaml.safe_dump({'storage': {'base_path': '/x'}}))

    with pytest.raises(ConfigValidationError):
        config_manager.load_config()

    assert config_manager.get('s3.bucket') == 'hope-remote-logs'


def test_reload_keeps_config_on_error(config_manager, temp_config_file):
    """Test SIGHUP reload falls back to the existing config"""
    Path(temp_config_file).write_text('storage: [unclosed')

    result = config_manager.reload_config()

    assert result['s3']['bucket'] == 'hope-remote-logs'


def test_reload_picks_up_valid_changes(config_manager, temp_config_file):
    """Test reload validates and stores a changed file"""
    config = copy.deepcopy(VALID_CONFIG)
    config['s3']['bucket'] = 'other-bucket'
    Path(temp_config_file).write_text(yaml.safe_dump(config))

    result = config_manager.reload_config()

    assert result['s3']['bucket'] == 'other-bucket'
