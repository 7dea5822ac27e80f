"""
Configuration Management for the ARSnova Client
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ValidationError, field_validator, model_validator

from .errors import ConfigurationError

logger = logging.getLogger('arsnova.core.config_manager')

DEFAULT_API_URL = "https://ars.particify.de/api"


class Environment(Enum):
    """Supported deployment environments"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class ClientConfiguration(BaseModel):
    """Client configuration model with Pydantic validation"""

    # API Configuration
    api_url: str = DEFAULT_API_URL
    user_agent: str = "arsnova-py-client/0.1.0"
    request_timeout: float = 10.0

    # Logging Configuration
    log_level: str = "INFO"
    log_file_path: Optional[str] = None
    log_max_bytes: int = 32 * 1024 * 1024  # 32MB
    log_backup_count: int = 5

    # Push Channel Configuration
    heartbeat_interval: float = 15.0
    max_reconnect_attempts: int = 3
    reconnect_backoff_base: float = 1.0
    reconnect_backoff_max: float = 30.0
    reconnect_reset_after: float = 60.0
    shutdown_grace_period: float = 2.0
    outbound_buffer_size: int = 100

    # Dispatch Configuration
    channel_capacity: int = 10
    delivery_timeout: float = 0.25

    @field_validator('api_url')
    @classmethod
    def validate_api_url(cls, v):
        v = v.strip().rstrip('/')
        if not (v.startswith('http://') or v.startswith('https://')):
            raise ValueError('api_url must start with http:// or https://')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of {valid_levels}')
        return v.upper()

    @field_validator('max_reconnect_attempts', 'channel_capacity', 'outbound_buffer_size')
    @classmethod
    def validate_positive_int(cls, v):
        if v < 1:
            raise ValueError('must be at least 1')
        return v

    @field_validator('heartbeat_interval', 'reconnect_backoff_base', 'delivery_timeout', 'request_timeout')
    @classmethod
    def validate_positive_float(cls, v):
        if v <= 0:
            raise ValueError('must be greater than 0')
        return v

    @model_validator(mode='after')
    def validate_backoff_bounds(self):
        if self.reconnect_backoff_max < self.reconnect_backoff_base:
            raise ValueError('reconnect_backoff_max must not be lower than reconnect_backoff_base')
        return self

    @property
    def websocket_url(self) -> str:
        """STOMP WebSocket endpoint derived from the API URL"""
        return f"{self.api_url.replace('http', 'ws', 1)}/ws/websocket"

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect ``attempt`` (1-based)"""
        return min(self.reconnect_backoff_base * (2 ** (attempt - 1)), self.reconnect_backoff_max)


class ConfigurationManager:
    """
    Loads the client configuration from layered sources.

    Later sources override earlier ones:
    ``config/default.yaml``, ``config/<environment>.yaml``, ``ARSNOVA_*``
    environment variables, then explicit overrides.
    """

    ENV_MAPPINGS = {
        'ARSNOVA_API_URL': 'api_url',
        'ARSNOVA_USER_AGENT': 'user_agent',
        'ARSNOVA_REQUEST_TIMEOUT': 'request_timeout',
        'ARSNOVA_LOG_LEVEL': 'log_level',
        'ARSNOVA_LOG_FILE_PATH': 'log_file_path',
        'ARSNOVA_HEARTBEAT_INTERVAL': 'heartbeat_interval',
        'ARSNOVA_MAX_RECONNECT_ATTEMPTS': 'max_reconnect_attempts',
        'ARSNOVA_RECONNECT_BACKOFF_BASE': 'reconnect_backoff_base',
        'ARSNOVA_RECONNECT_BACKOFF_MAX': 'reconnect_backoff_max',
        'ARSNOVA_CHANNEL_CAPACITY': 'channel_capacity',
        'ARSNOVA_DELIVERY_TIMEOUT': 'delivery_timeout',
    }

    def __init__(self, base_path: Optional[Path] = None):
        self.base_path = base_path or Path.cwd()
        self.config_dir = self.base_path / "config"
        self.environment = self._detect_environment()
        self._configuration: Optional[ClientConfiguration] = None

        logger.debug(f"ConfigurationManager initialized for environment: {self.environment.value}")

    def load_configuration(self, **overrides: Any) -> ClientConfiguration:
        """
        Load and validate configuration from all sources.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        config_data = self._load_yaml_file(self.config_dir / "default.yaml")
        config_data = self._deep_merge(
            config_data, self._load_yaml_file(self.config_dir / f"{self.environment.value}.yaml")
        )
        config_data = self._apply_environment_variables(config_data)
        config_data.update(overrides)

        try:
            self._configuration = ClientConfiguration(**config_data)
        except ValidationError as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}") from e

        logger.info("Configuration loaded successfully")
        return self._configuration

    def get_configuration(self) -> ClientConfiguration:
        """Get current configuration, loading if necessary"""
        if self._configuration is None:
            return self.load_configuration()
        return self._configuration

    def reload_configuration(self) -> ClientConfiguration:
        self._configuration = None
        return self.load_configuration()

    def _detect_environment(self) -> Environment:
        env_var = os.getenv('ARSNOVA_ENVIRONMENT', '').lower()
        if env_var:
            try:
                return Environment(env_var)
            except ValueError:
                logger.warning(f"Unknown ARSNOVA_ENVIRONMENT '{env_var}', using development")
        return Environment.DEVELOPMENT

    def _apply_environment_variables(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        # Values stay strings here; pydantic coerces them to the field types
        for env_var, config_key in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                config_data[config_key] = env_value
                logger.debug(f"Applied environment variable {env_var} -> {config_key}")
        return config_data

    def _load_yaml_file(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load YAML file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"YAML file {path} must contain a mapping")
        logger.debug(f"Loaded configuration from {path}")
        return data

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result


# Global configuration manager instance
_global_config_manager: Optional[ConfigurationManager] = None


def get_config_manager() -> ConfigurationManager:
    """Get the global configuration manager instance"""
    global _global_config_manager
    if _global_config_manager is None:
        _global_config_manager = ConfigurationManager()
    return _global_config_manager


def get_config() -> ClientConfiguration:
    """Get the current client configuration"""
    return get_config_manager().get_configuration()
