#!/usr/bin/env python3
"""
Configuration Manager for Hope Remote Log
Loads, validates, and manages YAML configuration

Provides dot-notation access to the configuration and re-validates the file
on SIGHUP. Changes only take effect after a service restart.
"""

import logging
import os
import signal
import threading
from pathlib import Path
from typing import Any, Dict

import yaml

from hope_remote_log.sequencer import SEQUENCING_MODES

logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    This exception is raised when the configuration file is malformed,
    missing required fields, or contains invalid values.
    """

    pass


class ConfigManager:
    """
    Manages system configuration from YAML file.

    Features:
    - Load and validate YAML config
    - Environment variable and ~ expansion
    - Re-validation on SIGHUP signal
    - Dot-notation access to nested values

    Example:
        >>> config = ConfigManager('/etc/hope-remote-log/config.yaml')
        >>> bucket = config.get('s3.bucket')
        >>> minutes = config.get('processing.schedule_minutes', [5, 35])

    Attributes:
        config_path (Path): Path to the configuration file
        config (dict): Loaded configuration dictionary
    """

    def __init__(self, config_path: str):
        """
        Initialize config manager and load configuration.

        Args:
            config_path: Path to YAML config file

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML syntax is invalid
            ConfigValidationError: If validation fails
        """
        self.config_path = Path(config_path)
        self.config = {}
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGHUP, self._handle_reload_signal)
        self.load_config()

    def load_config(self) -> Dict[str, Any]:
        """Load and validate configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, "r") as f:
            config = yaml.safe_load(f)

        if config is None:
            raise ConfigValidationError("Config file is empty or contains only whitespace")

        if not isinstance(config, dict):
            raise ConfigValidationError("Config file must contain a mapping")

        # Expand environment variables in paths
        config = self._expand_env_vars(config)

        self.validate_config(config)
        self.config = config
        logger.info(f"Loaded config from {self.config_path}")
        return self.config

    def reload_config(self) -> Dict[str, Any]:
        """
        Reload configuration from disk (SIGHUP handler).

        NOTE: Config changes require service restart - SIGHUP only validates.
        """
        logger.info("Reloading configuration...")
        logger.warning(
            "Config reload detected (SIGHUP). "
            "Config changes require SERVICE RESTART to take effect. "
            "Only validation is performed on reload."
        )

        try:
            old_config = self.config.copy()
            new_config = self.load_config()

            critical_changes = [
                section for section in ("storage", "s3", "processing", "ingest")
                if old_config.get(section) != new_config.get(section)
            ]

            if critical_changes:
                logger.warning(f"CONFIG CHANGES DETECTED: {', '.join(critical_changes)}")
                logger.warning("These changes will NOT take effect until service restart!")

            logger.info("Config validation successful (changes require restart)")
            return new_config

        except Exception as e:
            logger.error(f"Failed to reload config: {e}")
            logger.info("Keeping existing configuration")
            return self.config

    def _expand_env_vars(self, config: Any) -> Any:
        """
        Recursively expand environment variables in configuration values.

        Supports ${VAR_NAME}, $VAR_NAME and ~ expansion.

        Examples:
            "${LOG_BASE_PATH}/buffer" -> "/data/logs/buffer"
            "~/buffer" -> "/home/ABC/buffer"
        """
        if isinstance(config, dict):
            return {key: self._expand_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._expand_env_vars(item) for item in config]
        elif isinstance(config, str):
            expanded = os.path.expanduser(config)
            expanded = os.path.expandvars(expanded)
            return expanded
        else:
            return config

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """Validate configuration schema and values."""
        required_keys = ["storage", "s3"]
        for key in required_keys:
            if key not in config:
                raise ConfigValidationError(f"Missing required key: {key}")

        self._validate_storage_config(config["storage"])
        self._validate_s3_config(config["s3"])

        if "processing" in config:
            self._validate_processing_config(config["processing"])

        if "ingest" in config:
            self._validate_ingest_config(config["ingest"])

        if "monitoring" in config:
            self._validate_monitoring_config(config["monitoring"])

        logger.info("Configuration validated successfully")
        return True

    def _validate_storage_config(self, storage_config: Dict[str, Any]) -> None:
        """Validate storage configuration section."""
        if not isinstance(storage_config, dict):
            raise ConfigValidationError("storage must be a mapping")

        base_path = storage_config.get("base_path")
        if not isinstance(base_path, str) or not base_path:
            raise ConfigValidationError("storage.base_path must be a non-empty string")

    def _validate_s3_config(self, s3_config: Dict[str, Any]) -> None:
        """Validate S3 configuration section."""
        if not isinstance(s3_config, dict):
            raise ConfigValidationError("s3 must be a mapping")

        for key in ["bucket", "region"]:
            if key not in s3_config:
                raise ConfigValidationError(f"Missing s3.{key}")
            if not isinstance(s3_config[key], str) or not s3_config[key]:
                raise ConfigValidationError(f"s3.{key} cannot be empty")

        if "key_prefix" in s3_config:
            prefix = s3_config["key_prefix"]
            if not isinstance(prefix, str) or not prefix.strip("/"):
                raise ConfigValidationError("s3.key_prefix must be a non-empty string")

    def _validate_processing_config(self, processing_config: Dict[str, Any]) -> None:
        """Validate processing (batch cycle) configuration section."""
        if not isinstance(processing_config, dict):
            raise ConfigValidationError("processing must be a mapping")

        if "schedule_minutes" in processing_config:
            minutes = processing_config["schedule_minutes"]
            if not isinstance(minutes, list) or not minutes:
                raise ConfigValidationError("processing.schedule_minutes must be a non-empty list")
            for minute in minutes:
                if isinstance(minute, bool) or not isinstance(minute, int) or not 0 <= minute <= 59:
                    raise ConfigValidationError(
                        f"processing.schedule_minutes entries must be integers 0-59, got: {minute}"
                    )

        if "max_retries" in processing_config:
            retries = processing_config["max_retries"]
            if isinstance(retries, bool) or not isinstance(retries, int) or retries < 0:
                raise ConfigValidationError("processing.max_retries must be an integer >= 0")

        if "retry_base_delay_seconds" in processing_config:
            delay = processing_config["retry_base_delay_seconds"]
            if isinstance(delay, bool) or not isinstance(delay, (int, float)) or delay < 0:
                raise ConfigValidationError(
                    "processing.retry_base_delay_seconds must be a non-negative number"
                )

    def _validate_ingest_config(self, ingest_config: Dict[str, Any]) -> None:
        """Validate ingest configuration section."""
        if not isinstance(ingest_config, dict):
            raise ConfigValidationError("ingest must be a mapping")

        if "sequencing" in ingest_config:
            mode = ingest_config["sequencing"]
            if mode not in SEQUENCING_MODES:
                raise ConfigValidationError(
                    f"ingest.sequencing must be one of {list(SEQUENCING_MODES)}, got: {mode}"
                )

        if "source_utc_offset_hours" in ingest_config:
            offset = ingest_config["source_utc_offset_hours"]
            if isinstance(offset, bool) or not isinstance(offset, (int, float)) \
                    or not -12 <= offset <= 14:
                raise ConfigValidationError(
                    "ingest.source_utc_offset_hours must be a number between -12 and 14"
                )

    def _validate_monitoring_config(self, monitoring_config: Dict[str, Any]) -> None:
        """Validate monitoring configuration section."""
        if not isinstance(monitoring_config, dict):
            raise ConfigValidationError("monitoring must be a mapping")

        if "cloudwatch_enabled" in monitoring_config:
            if not isinstance(monitoring_config["cloudwatch_enabled"], bool):
                raise ConfigValidationError("monitoring.cloudwatch_enabled must be boolean")

    def _handle_reload_signal(self, signum, frame):
        """Signal handler for SIGHUP."""
        self.reload_config()

    def get(self, key: str, default=None) -> Any:
        """
        Get configuration value by dot-separated key path.

        Examples:
            >>> config.get('storage.base_path')  # '/data/logs'
            >>> config.get('s3.key_prefix', 'logs')  # 'logs'
            >>> config.get('missing.key', 'default')  # 'default'
        """
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value
