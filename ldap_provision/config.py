"""
Configuration loading and management for LDAP Provision.

This module builds the run configuration from the required AD_* environment
variables and an optional YAML settings file, with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.yaml'
DEFAULT_USER_DN_FORMAT = 'cn=%s,CN=Users,DC=global,DC=domain,DC=net'
DEFAULT_SEARCH_BASE = 'DC=global,DC=domain,DC=net'


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Required environment variables and where they land in the config
    REQUIRED_ENV_VARS = {
        'AD_HOST': 'ldap.host',
        'AD_PORT': 'ldap.port',
        'AD_DN': 'ldap.bind_dn',
        'AD_PWD': 'ldap.bind_password',
    }

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to settings file. If None, uses CONFIG_PATH env var or 'config.yaml'
            environ: Environment mapping to read from (defaults to os.environ)
        """
        self.environ = os.environ if environ is None else environ
        self.explicit_path = config_path is not None or bool(self.environ.get('CONFIG_PATH'))
        self.config_path = config_path or self.environ.get('CONFIG_PATH', DEFAULT_CONFIG_PATH)
        self.config = {}

    def load(self, require_ldap: bool = True) -> Dict[str, Any]:
        """
        Load configuration from file and environment.

        Args:
            require_ldap: If False, missing AD_* variables are not an error

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If a required variable is missing or the file is invalid
        """
        self.config = self._read_settings_file()

        self._apply_env_values()

        if require_ldap:
            self._validate()

        self._apply_defaults()

        logger.debug(f"Configuration loaded (settings file: {self.config_path})")
        return self.config

    def _read_settings_file(self) -> Dict[str, Any]:
        """Read the optional YAML settings file."""
        try:
            with open(self.config_path, 'r') as f:
                settings = yaml.safe_load(f)
        except FileNotFoundError:
            if self.explicit_path:
                raise ConfigurationError(f"Configuration file not found: {self.config_path}")
            logger.debug(f"No settings file at {self.config_path}, using defaults")
            return {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if settings is None:
            return {}
        if not isinstance(settings, dict):
            raise ConfigurationError(f"Config file {self.config_path} must contain a mapping")
        return settings

    def _apply_env_values(self):
        """Copy the AD_* environment variables into the configuration."""
        for env_var, config_key in self.REQUIRED_ENV_VARS.items():
            env_value = self.environ.get(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment value for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if key not in current or current[key] is None:
                current[key] = {}
            elif not isinstance(current[key], dict):
                raise ConfigurationError(f"Config section '{key}' must be a mapping")
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        ldap_config = self.config.get('ldap') or {}
        for env_var in self.REQUIRED_ENV_VARS:
            if not self.environ.get(env_var):
                errors.append(f"Environment variable {env_var} is not set")

        port = ldap_config.get('port')
        if port:
            try:
                port_number = int(port)
            except (TypeError, ValueError):
                errors.append(f"AD_PORT must be an integer, got {port!r}")
            else:
                if not 0 < port_number < 65536:
                    errors.append(f"AD_PORT out of range: {port_number}")
                else:
                    ldap_config['port'] = port_number

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        ldap_defaults = {
            'use_ssl': False,
            'start_tls': False,
            'verify_ssl': True,
            'ca_cert_file': None,
        }
        ldap_config = self._section('ldap')
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        provisioning_defaults = {
            'user_dn_format': DEFAULT_USER_DN_FORMAT,
            'tree_file': 'tree.json',
            'user_file': 'users.json',
            'search_base': DEFAULT_SEARCH_BASE,
        }
        provisioning_config = self._section('provisioning')
        for key, value in provisioning_defaults.items():
            provisioning_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': None,
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'INFO',
        }
        logging_config = self._section('logging')
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.config.get(name)
        if section is None:
            section = self.config[name] = {}
        elif not isinstance(section, dict):
            raise ConfigurationError(f"Config section '{name}' must be a mapping")
        return section


def load_config(config_path: Optional[str] = None, require_ldap: bool = True,
                environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to settings file
        require_ldap: Whether the AD_* connection variables must be present
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path, environ=environ)
    return loader.load(require_ldap=require_ldap)
