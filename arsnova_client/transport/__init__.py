"""
Transport layer: REST API, STOMP codec and per-room push channels
"""

from .api import ArsnovaApi
from .push_channel import ConnectionState, FeedbackListener, PushChannelManager, RoomConnection

__all__ = [
    'ArsnovaApi',
    'ConnectionState',
    'FeedbackListener',
    'PushChannelManager',
    'RoomConnection',
]
