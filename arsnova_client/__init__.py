"""
ARSnova live feedback client

Join a live feedback session, follow its aggregate feedback over a push
channel and submit feedback of your own.
"""

from .client import FeedbackClient, create_client
from .core import (
    ArsnovaError, ClientConfiguration, ConfigurationError, ConnectionExhausted, EventBus,
    RegistrationError, RoomNotFoundError, setup_logging,
)
from .feedback import (
    CallbackHandler, ChannelClosed, Feedback, FeedbackValue, ReceiverHandler, RoomInfo, RoomStats,
    SenderHandler, SenderReceiverHandler, channel,
)
from .transport import ConnectionState

__version__ = "0.1.0"

__all__ = [
    'FeedbackClient',
    'create_client',
    'ArsnovaError',
    'ClientConfiguration',
    'ConfigurationError',
    'ConnectionExhausted',
    'EventBus',
    'RegistrationError',
    'RoomNotFoundError',
    'setup_logging',
    'CallbackHandler',
    'ChannelClosed',
    'Feedback',
    'FeedbackValue',
    'ReceiverHandler',
    'RoomInfo',
    'RoomStats',
    'SenderHandler',
    'SenderReceiverHandler',
    'channel',
    'ConnectionState',
]
