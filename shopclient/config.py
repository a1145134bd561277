"""
Configuration Management for the Storefront API Client.

This module handles client configuration including the API base URL, request
and renewal timeouts, the endpoints excluded from credential refresh, and
logging settings, with support for configuration files and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List
from configparser import ConfigParser

from shopshared.exceptions import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_ENDPOINTS = [
    '/auth/login',
    '/auth/register',
    '/auth/refresh',
    '/auth/forgot-password',
    '/auth/reset-password',
    '/auth/account/recover',
]


class ClientConfiguration:
    """
    Configuration manager for the Storefront API Client.

    Supports configuration from:
    1. Overrides set by the embedding application or CLI (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path."""
        return str(Path.home() / '.storefront-client' / 'client.conf')

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            try:
                self._load_from_file()
                logger.info(f"Configuration loaded from: {self._config_file}")
            except Exception as e:
                logger.warning(f"Failed to load configuration file: {e}")
        else:
            logger.debug(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        config.read(self._config_file)

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Complex values are stored as JSON
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        env_mappings = {
            'STOREFRONT_API_BASE_URL': ('server', 'base_url'),
            'STOREFRONT_API_TIMEOUT': ('server', 'timeout'),
            'STOREFRONT_REFRESH_TIMEOUT': ('server', 'refresh_timeout'),
            'STOREFRONT_VERIFY_SSL': ('server', 'verify_ssl'),
            'STOREFRONT_EXCLUDED_ENDPOINTS': ('auth', 'excluded_endpoints'),
            'STOREFRONT_PERSIST_CREDENTIAL': ('auth', 'persist_credential'),
            'STOREFRONT_LOG_LEVEL': ('logging', 'level'),
            'STOREFRONT_LOG_FORMAT': ('logging', 'format'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is None:
                continue

            if section not in self._config_data:
                self._config_data[section] = {}

            if key == 'excluded_endpoints':
                self._config_data[section][key] = [part.strip() for part in value.split(',') if part.strip()]
            elif value.lower() in ('true', 'false'):
                self._config_data[section][key] = value.lower() == 'true'
            else:
                try:
                    self._config_data[section][key] = float(value) if '.' in value else int(value)
                except ValueError:
                    self._config_data[section][key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'server': {
                'base_url': 'http://localhost:3000',
                'timeout': 30.0,
                'refresh_path': '/auth/refresh',
                'refresh_timeout': 10.0,
                'verify_ssl': True
            },
            'auth': {
                'excluded_endpoints': list(DEFAULT_EXCLUDED_ENDPOINTS),
                'persist_credential': True,
                'storage_service': 'storefront-client'
            },
            'logging': {
                'level': 'INFO',
                'format': 'standard',
                'file': None
            }
        }

        for section, section_defaults in defaults.items():
            if section not in self._config_data:
                self._config_data[section] = {}

            for key, default_value in section_defaults.items():
                if key not in self._config_data[section]:
                    self._config_data[section][key] = default_value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if key in self._overrides:
            return self._overrides[key]

        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def set_config(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            value: Value to set
        """
        if '.' not in key:
            self._config_data[key] = value
            return

        section, config_key = key.split('.', 1)
        self._config_data.setdefault(section, {})[config_key] = value

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key in format 'section.key'
            value: Override value
        """
        self._overrides[key] = value

    def save_configuration(self) -> None:
        """Save current configuration to file."""
        config = ConfigParser()

        for section_name, section_data in self._config_data.items():
            config.add_section(section_name)
            for key, value in section_data.items():
                if value is None:
                    continue
                if isinstance(value, (dict, list, bool)):
                    config.set(section_name, key, json.dumps(value))
                else:
                    config.set(section_name, key, str(value))

        config_path = Path(self._config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self._config_file, 'w') as f:
            config.write(f)

        logger.info(f"Configuration saved to: {self._config_file}")

    def get_config_file_path(self) -> str:
        """Get configuration file path."""
        return self._config_file

    def reload_configuration(self) -> None:
        """Reload configuration from file and environment."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    # Convenience methods for common configuration values

    def get_base_url(self) -> str:
        """Get the API base URL."""
        base_url = self.get_config('server.base_url')
        if not isinstance(base_url, str) or not base_url.startswith(('http://', 'https://')):
            raise ConfigurationError(f"Invalid API base URL: {base_url!r}",
                                     error_code=ErrorCode.CONFIG_INVALID_VALUE, config_key='server.base_url')
        return base_url.rstrip('/')

    def get_timeout(self) -> float:
        """Get request timeout in seconds."""
        return self._get_positive_float('server.timeout')

    def get_refresh_timeout(self) -> float:
        """Get the upper bound for a credential renewal call in seconds."""
        return self._get_positive_float('server.refresh_timeout')

    def get_refresh_path(self) -> str:
        """Get the renewal endpoint path."""
        return self.get_config('server.refresh_path', '/auth/refresh')

    def get_verify_ssl(self) -> bool:
        return bool(self.get_config('server.verify_ssl', True))

    def get_excluded_endpoints(self) -> List[str]:
        """Get URL fragments that never trigger or await a credential refresh."""
        endpoints = self.get_config('auth.excluded_endpoints', DEFAULT_EXCLUDED_ENDPOINTS)
        if isinstance(endpoints, str):
            endpoints = [part.strip() for part in endpoints.split(',') if part.strip()]
        return list(endpoints)

    def should_persist_credential(self) -> bool:
        return bool(self.get_config('auth.persist_credential', True))

    def get_storage_service(self) -> str:
        return self.get_config('auth.storage_service', 'storefront-client')

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.get_config('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        return str(self.get_config('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        """Get log file path."""
        return self.get_config('logging.file')

    def _get_positive_float(self, key: str) -> float:
        value = self.get_config(key)
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid value for {key}: {value!r}",
                                     error_code=ErrorCode.CONFIG_INVALID_VALUE, config_key=key)
        if value <= 0:
            raise ConfigurationError(f"{key} must be positive, got {value}",
                                     error_code=ErrorCode.CONFIG_INVALID_VALUE, config_key=key)
        return value
