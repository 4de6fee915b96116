"""
Configuration loading and management for User Reconcile.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

from user_reconcile.field_mapping import DEFAULT_FIELD_MAPPINGS, DEFAULT_SEARCH_BY, unresolved_fields
from user_reconcile.sources import SUPPORTED_FORMATS, detect_format

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'target.bind_password': 'LDAP_BIND_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        source_config = self.config.get('source') or {}
        if not source_config.get('path'):
            errors.append("Missing required source field: path")
        else:
            source_format = source_config.get('format') or detect_format(source_config['path'])
            if source_format.lower() not in SUPPORTED_FORMATS:
                errors.append(f"Unsupported source format '{source_format}', "
                              f"expected one of: {', '.join(SUPPORTED_FORMATS)}")

        columns = source_config.get('columns')
        if columns is not None and not isinstance(columns, dict):
            errors.append("source.columns must be a mapping of column name to user field")

        target_config = self.config.get('target') or {}
        for field in ['server_url', 'bind_dn', 'bind_password']:
            if not target_config.get(field):
                errors.append(f"Missing required target field: {field}")

        reconcile_config = self.config.get('reconcile') or {}
        field_mappings = reconcile_config.get('field_mappings')
        if field_mappings is not None:
            if not isinstance(field_mappings, dict) or not all(
                    isinstance(k, str) and isinstance(v, str) for k, v in field_mappings.items()):
                errors.append("reconcile.field_mappings must map attribute names to user field names")
                field_mappings = None

        search_by = reconcile_config.get('search_by')
        if search_by is not None and not isinstance(search_by, str):
            errors.append("reconcile.search_by must be a user field name")
            search_by = None

        if reconcile_config.get('strict_mappings', False):
            mapped_fields = list((field_mappings or DEFAULT_FIELD_MAPPINGS).values())
            for field_name in unresolved_fields(mapped_fields):
                errors.append(f"reconcile.field_mappings refers to unknown user field: {field_name}")
            for field_name in unresolved_fields([search_by or DEFAULT_SEARCH_BY]):
                errors.append(f"reconcile.search_by refers to unknown user field: {field_name}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        source_config = self._section('source')
        source_config.setdefault('format', detect_format(source_config['path']))
        source_config.setdefault('columns', {})

        target_defaults = {
            'user_base_dn': '',
            'user_filter': '(objectClass=person)',
            'identifier_attribute': 'sAMAccountName',
            'connection_timeout': 10,
            'receive_timeout': 10,
            'verify_ssl': True
        }
        target_config = self._section('target')
        for key, value in target_defaults.items():
            target_config.setdefault(key, value)

        reconcile_defaults = {
            'field_mappings': dict(DEFAULT_FIELD_MAPPINGS),
            'search_by': DEFAULT_SEARCH_BY,
            'dry_run': True,
            'strict_mappings': False
        }
        reconcile_config = self._section('reconcile')
        for key, value in reconcile_defaults.items():
            reconcile_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self._section('logging')
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5,
            'isolate_record_errors': False
        }
        error_config = self._section('error_handling')
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

    def _section(self, name: str) -> Dict[str, Any]:
        """Return a top-level section, replacing an empty one with a dict."""
        section = self.config.get(name)
        if not isinstance(section, dict):
            section = self.config[name] = {}
        return section


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
