#!/usr/bin/env python3
"""
Configuration Manager for RackSentry

Loads snitch properties from a YAML or JSON file, merges them over the
defaults and validates the result against a JSON schema.
"""

import json
import logging
import yaml
import jsonschema
from pathlib import Path
from typing import Dict, List, Optional, Any, Union, Tuple

from racksentry.common.exceptions import ConfigurationError

logger = logging.getLogger("ConfigManager")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

DEFAULT_CONFIG = {
    "dc_suffix": "",
    "broadcast_address": "127.0.0.1:7000",
    "metadata_timeout": 5.0,   # seconds
    "redis_enabled": True,
    "redis_host": "localhost",
    "redis_port": 6379,
    "redis_password": None,
    "redis_db": 0,
    "redis_namespace": "racksentry",
    "topology_file": "data/topology/peers.json",
    "log_level": "INFO",
    "log_file": None
}

CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "dc_suffix": {"type": "string"},
        "broadcast_address": {"type": "string", "minLength": 1},
        "metadata_timeout": {"type": "number", "exclusiveMinimum": 0},
        "redis_enabled": {"type": "boolean"},
        "redis_host": {"type": "string"},
        "redis_port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "redis_password": {"type": ["string", "null"]},
        "redis_db": {"type": "integer", "minimum": 0},
        "redis_namespace": {"type": "string", "minLength": 1},
        "topology_file": {"type": ["string", "null"]},
        "log_level": {"enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
        "log_file": {"type": ["string", "null"]}
    }
}


def configure_logging(level: str = "INFO", log_file: Optional[str] = None):
    """
    Install the RackSentry log format on the root logger

    Args:
        level: Log level name
        log_file: Optional file to log to in addition to stderr
    """
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )


def validate_configuration(config: Dict[str, Any], schema: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """
    Validate configuration against a JSON schema

    Args:
        config: Configuration to validate
        schema: JSON Schema for validation

    Returns:
        Tuple of (is_valid, error_messages)
    """
    validator = jsonschema.Draft7Validator(schema)
    errors = sorted(validator.iter_errors(config), key=lambda e: list(e.path))

    if not errors:
        return True, []

    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        error_messages.append(f"At {path}: {error.message}")

    return False, error_messages


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from file, merged over the defaults

    A missing or unreadable file falls back to the defaults. A file that parses
    but violates the schema raises ConfigurationError.
    """
    config = DEFAULT_CONFIG.copy()

    if not config_path:
        logger.warning("No configuration path provided, using defaults")
        return config

    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Configuration file not found: {path}, using defaults")
        return config

    try:
        with open(path, 'r') as f:
            if path.suffix.lower() in ('.yaml', '.yml'):
                loaded = yaml.safe_load(f)
            else:
                loaded = json.load(f)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        logger.error(f"Error loading configuration: {e}")
        return config

    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Configuration in {path} must be a mapping")

    config.update(loaded)

    valid, errors = validate_configuration(config, CONFIG_SCHEMA)
    if not valid:
        raise ConfigurationError(f"Invalid configuration in {path}: " + "; ".join(errors))

    logger.info(f"Loaded configuration from {path}")
    return config


class SnitchProperties:
    """Read-only view over the snitch configuration"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        merged = DEFAULT_CONFIG.copy()
        if config:
            merged.update(config)

        valid, errors = validate_configuration(merged, CONFIG_SCHEMA)
        if not valid:
            raise ConfigurationError("Invalid snitch properties: " + "; ".join(errors))

        self.config = merged

    @classmethod
    def from_file(cls, config_path: Optional[Union[str, Path]] = None) -> 'SnitchProperties':
        return cls(load_config(config_path))

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value
        """
        value = self.config.get(key)
        return default if value is None else value

    def get_all(self) -> Dict[str, Any]:
        return self.config.copy()


def create_default_config(output_path: Union[str, Path]):
    """
    Create a default configuration file

    Args:
        output_path: Path to write the configuration file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w') as f:
        if output_path.suffix.lower() in ('.yaml', '.yml'):
            yaml.safe_dump(DEFAULT_CONFIG, f, default_flow_style=False)
        else:
            json.dump(DEFAULT_CONFIG, f, indent=2)

    logger.info(f"Created default snitch configuration at {output_path}")
