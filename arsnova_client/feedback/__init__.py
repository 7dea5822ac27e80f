"""
Feedback model, channels, handlers and aggregation
"""

from .aggregator import FeedbackAggregator, RoomFeedbackState
from .channels import ChannelClosed, ChannelReceiver, ChannelSender, channel
from .handlers import (
    CallbackHandler, FeedbackHandler, ReceiverHandler, SenderHandler, SenderReceiverHandler, as_handler,
)
from .models import Feedback, FeedbackValue, RoomInfo, RoomStats, SessionContext

__all__ = [
    'FeedbackAggregator',
    'RoomFeedbackState',
    'ChannelClosed',
    'ChannelReceiver',
    'ChannelSender',
    'channel',
    'CallbackHandler',
    'FeedbackHandler',
    'ReceiverHandler',
    'SenderHandler',
    'SenderReceiverHandler',
    'as_handler',
    'Feedback',
    'FeedbackValue',
    'RoomInfo',
    'RoomStats',
    'SessionContext',
]
