"""
Configuration loading and management for LDAP Auth Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


def require_options(config: Dict[str, Any], required: Dict[str, type], section: str) -> None:
    """
    Check that required options are present and of the expected type.

    Raises:
        ConfigurationError: Listing every missing or mistyped option
    """
    errors = []
    for key, expected_type in required.items():
        value = config.get(key)
        if value is None or value == '':
            errors.append(f"Missing required {section} option: {key}")
        elif expected_type is int and (isinstance(value, bool) or not isinstance(value, int)):
            errors.append(f"Option {section}.{key} must be an integer, got {value!r}")
        elif not isinstance(value, expected_type):
            errors.append(f"Option {section}.{key} must be of type {expected_type.__name__}, got {value!r}")
    if errors:
        raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.search_password': 'LDAP_SEARCH_PASSWORD',
        'identity_store.auth.password': 'IDENTITY_STORE_PASSWORD',
        'identity_store.auth.token': 'IDENTITY_STORE_TOKEN',
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
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

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
        for field in ['server_url', 'base_dn']:
            if not ldap_config.get(field):
                errors.append(f"Missing required LDAP field: {field}")

        search_filter = ldap_config.get('filter')
        if search_filter is not None and '{username}' not in search_filter:
            errors.append("LDAP filter must contain the {username} placeholder")

        converter_config = self.config.get('converter') or {}
        if not converter_config.get('email_attr'):
            errors.append("Missing required converter field: email_attr")
        for field in ['admin_user_id', 'user_group_id']:
            value = converter_config.get(field)
            if value is None:
                errors.append(f"Missing required converter field: {field}")
            elif isinstance(value, bool) or not isinstance(value, int):
                errors.append(f"Converter field {field} must be an integer")

        attributes_map = converter_config.get('attributes')
        if attributes_map is not None and not isinstance(attributes_map, dict):
            errors.append("Converter field attributes must be a mapping of field to LDAP attribute")

        store_config = self.config.get('identity_store')
        if store_config:
            if not store_config.get('base_url'):
                errors.append("Missing required identity_store field: base_url")
            auth = store_config.get('auth') or {}
            if auth and not auth.get('method'):
                errors.append("Missing auth method for identity_store")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        ldap_defaults = {
            'search_dn': None,
            'search_password': None,
            'default_roles': [],
            'uid_key': 'sAMAccountName',
            'filter': '({uid_key}={username})',
            'password_attribute': None,
            'attributes': ['*'],
        }
        ldap_config = self.config.setdefault('ldap', {})
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        converter_defaults = {
            'attributes': {},
            'user_group_attr': None,
            'group_name_attr': None,
        }
        converter_config = self.config.setdefault('converter', {})
        for key, value in converter_defaults.items():
            converter_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        store_config = self.config.get('identity_store')
        if store_config:
            store_config.setdefault('verify_ssl', True)
            store_config.setdefault('timeout', 30)


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
