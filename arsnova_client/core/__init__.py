"""
Core Infrastructure for the ARSnova Client

- ConfigurationManager: layered configuration with pydantic validation
- EventBus: lifecycle events of push channels and handler registrations
- errors: exception taxonomy shared by every layer
"""

from .config_manager import ClientConfiguration, ConfigurationManager, Environment, get_config, get_config_manager
from .errors import (
    ApiConnectionError, ApiError, ArsnovaError, ConfigurationError, ConnectionError, ConnectionExhausted,
    DecodeError, HandlerDeliveryError, LoginError, ParserError, RegistrationError, RoomNotFoundError, StompError,
)
from .event_bus import Event, EventBus
from .logging_setup import setup_logging

__all__ = [
    'ClientConfiguration',
    'ConfigurationManager',
    'Environment',
    'get_config',
    'get_config_manager',
    'Event',
    'EventBus',
    'setup_logging',
    'ArsnovaError',
    'ConfigurationError',
    'ConnectionError',
    'ConnectionExhausted',
    'DecodeError',
    'StompError',
    'RegistrationError',
    'HandlerDeliveryError',
    'ApiError',
    'ApiConnectionError',
    'LoginError',
    'RoomNotFoundError',
    'ParserError',
]
