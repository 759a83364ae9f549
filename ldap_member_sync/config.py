"""
Configuration loading and management for LDAP Member Sync.

This module handles loading configuration from YAML files and environment
variables, with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

from ldap_member_sync.policy import DEFAULT_FIELD_MAPPINGS, DEFAULT_THUMBNAIL_PATH

logger = logging.getLogger(__name__)

POLICY_SWITCHES = [
    'update_ldap_from_local',
    'create_users_in_ldap',
    'delete_users_in_ldap',
    'allow_update_failure_during_login',
    'update_local_from_ldap',
]


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.bind_password': 'LDAP_BIND_PASSWORD',
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
            raise ConfigurationError("Configuration file must contain a mapping at the top level")

        # Empty YAML sections load as None
        for section in ('ldap', 'member_sync', 'logging', 'error_handling'):
            if section in self.config and self.config[section] is None:
                self.config[section] = {}

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
            if key not in current or current[key] is None:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        ldap_config = self.config.get('ldap') or {}
        if ldap_config.get('enabled', True):
            for field in ['server_url', 'bind_dn', 'bind_password']:
                if not ldap_config.get(field):
                    errors.append(f"Missing required LDAP field: {field}")

        sync_config = self.config.get('member_sync') or {}
        for switch in POLICY_SWITCHES:
            if switch in sync_config and not isinstance(sync_config[switch], bool):
                errors.append(f"member_sync.{switch} must be true or false")

        field_mappings = sync_config.get('field_mappings')
        if field_mappings is not None:
            if not isinstance(field_mappings, dict) or not field_mappings:
                errors.append("member_sync.field_mappings must be a non-empty mapping")
            else:
                lowered = [str(name).lower() for name in field_mappings]
                if len(set(lowered)) != len(lowered):
                    errors.append("member_sync.field_mappings has duplicate directory attributes")
                for name, field in field_mappings.items():
                    if not field or not isinstance(field, str):
                        errors.append(f"member_sync.field_mappings.{name} must name a local field")

        group_mappings = sync_config.get('group_mappings')
        if group_mappings is not None and not isinstance(group_mappings, dict):
            errors.append("member_sync.group_mappings must be a mapping of group DN to local group")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        ldap_defaults = {
            'enabled': True,
            'base_dn': '',
            'guid_attribute': 'objectGUID',
            'connection_timeout': 10,
            'receive_timeout': 10
        }
        ldap_config = self.config.setdefault('ldap', {})
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        sync_defaults = {
            'update_ldap_from_local': False,
            'create_users_in_ldap': False,
            'delete_users_in_ldap': False,
            'allow_update_failure_during_login': False,
            'update_local_from_ldap': True,
            'field_mappings': dict(DEFAULT_FIELD_MAPPINGS),
            'thumbnail_path': DEFAULT_THUMBNAIL_PATH,
            'group_mappings': {}
        }
        sync_config = self.config.setdefault('member_sync', {})
        for key, value in sync_defaults.items():
            sync_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5
        }
        error_config = self.config.setdefault('error_handling', {})
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        # The directory client reads its retry settings from its own section
        ldap_config.setdefault('error_handling', dict(error_config))


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
