"""
Tests for the FeedbackClient facade
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest

from arsnova_client import ArsnovaError, ConnectionState, Feedback, FeedbackClient, FeedbackValue, channel
from arsnova_client.client import create_client
from arsnova_client.core import ConfigurationError, LoginError
from arsnova_client.transport.stomp import parse_frame

from conftest import ROOM_ID, make_config, snapshot_frame, wait_until


def make_api(session_context, config):
    api = Mock()
    api.context = session_context
    api.config = config
    api.fetch_feedback = AsyncMock(return_value=Feedback.from_values([2, 0, 1, 0], room_id=ROOM_ID))
    api.fetch_room_info = AsyncMock()
    api.fetch_room_stats = AsyncMock()
    api.close = AsyncMock()
    return api


@pytest.fixture
def api(session_context, config):
    return make_api(session_context, config)


class TestFeedbackClient:
    """Room lookup, polling and live feedback through one facade"""

    def test_requires_login(self, config):
        api = Mock()
        api.context = None

        with pytest.raises(ArsnovaError):
            FeedbackClient(api, config)

    @pytest.mark.asyncio
    async def test_room_lookup_is_delegated(self, api, config, server):
        client = FeedbackClient(api, config, opener=server.open)

        await client.get_room_info("12345678")
        await client.get_room_stats(ROOM_ID)

        api.fetch_room_info.assert_awaited_once_with("12345678")
        api.fetch_room_stats.assert_awaited_once_with(ROOM_ID)
        assert client.user_id == "user-1"
        await client.close()

    @pytest.mark.asyncio
    async def test_get_feedback_polls_without_connection(self, api, config, server):
        client = FeedbackClient(api, config, opener=server.open)

        feedback = await client.get_feedback(ROOM_ID)

        assert feedback.values == (2, 0, 1, 0)
        api.fetch_feedback.assert_awaited_once_with(ROOM_ID)
        assert server.connect_attempts == 0
        assert not client.aggregator.has_state(ROOM_ID)
        await client.close()

    @pytest.mark.asyncio
    async def test_get_feedback_uses_live_aggregate(self, api, config, server):
        client = FeedbackClient(api, config, opener=server.open)
        tx, rx = channel()
        client.register_feedback_handler(ROOM_ID, tx)
        await wait_until(lambda: client.connection_state(ROOM_ID) == ConnectionState.OPEN)

        server.latest.push_text(snapshot_frame([5, 5, 0, 0]))
        await rx.receive()
        feedback = await client.get_feedback(ROOM_ID)

        assert feedback.values == (5, 5, 0, 0)
        api.fetch_feedback.assert_not_awaited()
        await client.close()

    @pytest.mark.asyncio
    async def test_get_feedback_seeds_aggregate_before_first_push(self, api, config, server):
        client = FeedbackClient(api, config, opener=server.open)
        callback = Mock()
        client.register_feedback_handler(ROOM_ID, callback)
        await wait_until(lambda: client.connection_state(ROOM_ID) == ConnectionState.OPEN)

        assert (await client.get_feedback(ROOM_ID)).values == (2, 0, 1, 0)
        assert client.aggregator.has_state(ROOM_ID)
        callback.assert_called_once()
        assert callback.call_args.args[0].values == (2, 0, 1, 0)

        api.fetch_feedback.reset_mock()
        assert (await client.get_feedback(ROOM_ID)).values == (2, 0, 1, 0)
        api.fetch_feedback.assert_not_awaited()
        await client.close()

    @pytest.mark.asyncio
    async def test_push_during_poll_wins(self, api, config, server):
        client = FeedbackClient(api, config, opener=server.open)
        callback = Mock()
        client.register_feedback_handler(ROOM_ID, callback)
        await wait_until(lambda: client.connection_state(ROOM_ID) == ConnectionState.OPEN)

        async def slow_poll(room_id):
            server.latest.push_text(snapshot_frame([9, 9, 9, 9]))
            await wait_until(lambda: callback.call_count == 1)
            return Feedback.from_values([1, 0, 0, 0], room_id=room_id)

        api.fetch_feedback.side_effect = slow_poll

        assert (await client.get_feedback(ROOM_ID)).values == (9, 9, 9, 9)
        assert client.aggregator.current_snapshot(ROOM_ID).values == (9, 9, 9, 9)
        assert callback.call_count == 1
        await client.close()

    def test_feedback_channel_uses_configured_capacity(self, session_context):
        config = make_config(channel_capacity=3)
        client = FeedbackClient(make_api(session_context, config), config)

        tx, rx = client.feedback_channel()

        assert tx.capacity == 3
        assert rx.try_receive() is None

    @pytest.mark.asyncio
    async def test_register_feedback_receiver(self, api, config, server):
        client = FeedbackClient(api, config, opener=server.open)
        value_tx, value_rx = channel()
        client.register_feedback_receiver(ROOM_ID, value_rx)
        await wait_until(lambda: client.connection_state(ROOM_ID) == ConnectionState.OPEN)

        await value_tx.send(FeedbackValue.VERY_GOOD)
        await wait_until(lambda: server.latest.frames("SEND"))

        assert parse_frame(server.latest.frames("SEND")[0]).headers["destination"] == "/queue/feedback.command"
        await client.close()

    @pytest.mark.asyncio
    async def test_deregister(self, api, config, server):
        client = FeedbackClient(api, config, opener=server.open)
        registration_id = client.register_feedback_handler(ROOM_ID, Mock())

        assert client.deregister(registration_id) is True
        await wait_until(lambda: client.connection_state(ROOM_ID) == ConnectionState.IDLE)
        await client.close()

    @pytest.mark.asyncio
    async def test_close_shuts_everything_down(self, api, config, server):
        async with FeedbackClient(api, config, opener=server.open) as client:
            client.register_feedback_handler(ROOM_ID, Mock())
            await wait_until(lambda: client.connection_state(ROOM_ID) == ConnectionState.OPEN)

        assert server.open_sockets() == []
        api.close.assert_awaited_once()

        await client.close()
        api.close.assert_awaited_once()


class TestCreateClient:
    """Guest login on construction"""

    @pytest.mark.asyncio
    async def test_logs_in_with_overrides(self, session_context):
        async def login(self):
            self._context = session_context
            return session_context

        with patch('arsnova_client.client.ArsnovaApi.guest_login', login):
            client = await create_client(make_config(), channel_capacity=3)

        try:
            assert client.config.channel_capacity == 3
            assert client.user_id == session_context.user_id
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_failed_login_closes_the_session(self):
        with patch('arsnova_client.client.ArsnovaApi.guest_login', AsyncMock(side_effect=LoginError())), \
                patch('arsnova_client.client.ArsnovaApi.close', AsyncMock()) as close:
            with pytest.raises(LoginError):
                await create_client(make_config())

        close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_override_raises_configuration_error(self):
        with patch('arsnova_client.client.ArsnovaApi.guest_login', AsyncMock()) as login:
            with pytest.raises(ConfigurationError):
                await create_client(make_config(), channel_capacity=0)

        login.assert_not_awaited()
