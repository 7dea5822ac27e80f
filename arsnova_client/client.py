"""
ARSnova Feedback Client

Entry point for applications: resolves rooms over the REST API and keeps
live feedback in sync over one push channel per room.

Usage:
    async with await create_client() as client:
        room = await client.get_room_info("12345678")
        feedback_tx, feedback_rx = client.feedback_channel()
        client.register_feedback_handler(room.id, feedback_tx)
        async for feedback in feedback_rx:
            print(feedback.values)
"""

import logging
from typing import Any, Optional, Tuple

from pydantic import ValidationError

from .core.config_manager import ClientConfiguration, get_config
from .core.errors import ArsnovaError, ConfigurationError
from .core.event_bus import EventBus
from .feedback.aggregator import FeedbackAggregator
from .feedback.channels import ChannelReceiver, ChannelSender, channel
from .feedback.dispatcher import FeedbackDispatcher
from .feedback.handlers import ReceiverHandler
from .feedback.models import Feedback, FeedbackValue, RoomInfo, RoomStats
from .transport.api import ArsnovaApi
from .transport.push_channel import ConnectionState, PushChannelManager, WebSocketOpener

logger = logging.getLogger('arsnova.client')


class FeedbackClient:
    """
    Live feedback client for a logged-in session.

    All registration methods must be called from a running event loop.
    """

    def __init__(
        self,
        api: ArsnovaApi,
        config: Optional[ClientConfiguration] = None,
        event_bus: Optional[EventBus] = None,
        opener: Optional[WebSocketOpener] = None,
    ):
        if api.context is None:
            raise ArsnovaError("FeedbackClient requires a logged-in API client")

        self.api = api
        self.config = config or api.config
        self.event_bus = event_bus or EventBus()
        self.aggregator = FeedbackAggregator()
        self.push_channels = PushChannelManager(
            opener=opener or api.open_websocket,
            context=api.context,
            aggregator=self.aggregator,
            event_bus=self.event_bus,
            config=self.config,
        )
        self.dispatcher = FeedbackDispatcher(self.push_channels, self.event_bus, self.config)
        self._closed = False

        logger.debug("FeedbackClient initialized")

    @property
    def user_id(self) -> str:
        return self.api.context.user_id  # type: ignore[union-attr]

    # Room lookup

    async def get_room_info(self, short_id: str) -> RoomInfo:
        """Resolve an 8-digit room code to its RoomInfo"""
        return await self.api.fetch_room_info(short_id)

    async def get_room_stats(self, room_id: str) -> RoomStats:
        return await self.api.fetch_room_stats(room_id)

    # Feedback

    async def get_feedback(self, room_id: str) -> Feedback:
        """
        Get the current Feedback of a room.

        Answers from the live aggregate when the room's push channel is
        open and has seen data; polls the REST API otherwise. A poll result
        seeds the aggregate of a connected room that has no data yet and
        is delivered to the room's handlers.
        """
        if self.push_channels.state(room_id) == ConnectionState.OPEN and self.aggregator.has_state(room_id):
            return self.aggregator.current_snapshot(room_id)

        feedback = await self.api.fetch_feedback(room_id)
        if self.push_channels.get_connection(room_id) is None:
            return feedback
        if self.aggregator.has_state(room_id):
            # A push arrived while polling and is more recent
            return self.aggregator.current_snapshot(room_id)

        feedback = self.aggregator.on_snapshot(room_id, feedback)
        await self.dispatcher.dispatch(room_id, feedback)
        return feedback

    def register_feedback_handler(self, room_id: str, handler: Any) -> str:
        """
        Register a handler for feedback changes of a room.

        Args:
            room_id: Internal room ID
            handler: A callable, a ChannelSender of Feedback, a
                (ChannelSender, ChannelReceiver of FeedbackValue) pair, or
                a FeedbackHandler

        Returns:
            Registration ID

        Raises:
            RegistrationError: If the registration was refused
        """
        return self.dispatcher.register(room_id, handler)

    def register_feedback_receiver(self, room_id: str, receiver: ChannelReceiver[FeedbackValue]) -> str:
        """
        Forward every FeedbackValue read from ``receiver`` to the room.

        Returns:
            Registration ID
        """
        return self.dispatcher.register(room_id, ReceiverHandler(receiver))

    def deregister(self, registration_id: str) -> bool:
        return self.dispatcher.deregister(registration_id)

    def connection_state(self, room_id: str) -> ConnectionState:
        return self.push_channels.state(room_id)

    def feedback_channel(self) -> Tuple[ChannelSender, ChannelReceiver]:
        """Create a channel with the configured ``channel_capacity``"""
        return channel(self.config.channel_capacity)

    # Lifecycle

    async def close(self) -> None:
        """Remove all handlers, close all push channels and the HTTP session"""
        if self._closed:
            return
        self._closed = True
        await self.dispatcher.close()
        await self.event_bus.drain()
        await self.api.close()
        logger.info("FeedbackClient closed")

    async def __aenter__(self) -> 'FeedbackClient':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def create_client(config: Optional[ClientConfiguration] = None, **overrides: Any) -> FeedbackClient:
    """
    Log in as guest and return a ready FeedbackClient.

    Args:
        config: Client configuration (loaded from the default sources if None)
        **overrides: Configuration fields to override

    Raises:
        ConfigurationError: If an override is invalid
    """
    config = config or get_config()
    if overrides:
        try:
            config = ClientConfiguration(**{**config.model_dump(), **overrides})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration override: {e}") from e
    api = ArsnovaApi(config)
    try:
        await api.guest_login()
    except ArsnovaError:
        await api.close()
        raise
    return FeedbackClient(api, config)
