"""
Tests for the lifecycle EventBus
"""

from unittest.mock import Mock

import pytest

from arsnova_client.core import Event, EventBus
from arsnova_client.core.event_bus import CONNECTION_FAILED, CONNECTION_STATE_CHANGED


class TestEventBus:
    """Subscription, filtering and error isolation"""

    def test_subscribed_handler_receives_event(self, event_bus):
        handler = Mock()
        event_bus.subscribe(CONNECTION_FAILED, handler)

        assert event_bus.emit(CONNECTION_FAILED, room_id="r", attempts=3) == 1

        event = handler.call_args[0][0]
        assert event.event_type == CONNECTION_FAILED
        assert event.room_id == "r"
        assert event.get('attempts') == 3

    def test_other_event_types_are_filtered(self, event_bus):
        handler = Mock()
        event_bus.subscribe(CONNECTION_FAILED, handler)

        assert event_bus.emit(CONNECTION_STATE_CHANGED, room_id="r") == 0
        handler.assert_not_called()

    def test_wildcard_and_room_filter(self, event_bus):
        handler = Mock()
        event_bus.subscribe('*', handler, room_id="a")

        event_bus.emit(CONNECTION_FAILED, room_id="a")
        event_bus.emit(CONNECTION_FAILED, room_id="b")

        assert handler.call_count == 1

    def test_failing_handler_is_isolated(self, event_bus):
        failing = Mock(side_effect=RuntimeError("boom"))
        working = Mock()
        event_bus.subscribe(CONNECTION_FAILED, failing, handler_id="failing")
        event_bus.subscribe(CONNECTION_FAILED, working, handler_id="working")

        event_bus.emit(CONNECTION_FAILED)

        working.assert_called_once()
        assert event_bus.get_stats()['handler_errors'] == 1

    def test_unsubscribe(self, event_bus):
        handler = Mock()
        handler_id = event_bus.subscribe(CONNECTION_FAILED, handler)

        assert event_bus.unsubscribe(handler_id) is True
        assert event_bus.unsubscribe(handler_id) is False
        event_bus.emit(CONNECTION_FAILED)
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_async_handlers_run_as_tasks(self, event_bus):
        received = []

        async def handler(event):
            received.append(event.event_type)

        event_bus.subscribe(CONNECTION_FAILED, handler)
        event_bus.emit(CONNECTION_FAILED)
        await event_bus.drain()

        assert received == [CONNECTION_FAILED]

    @pytest.mark.asyncio
    async def test_async_handler_errors_are_counted(self, event_bus):
        async def handler(event):
            raise RuntimeError("boom")

        event_bus.subscribe(CONNECTION_FAILED, handler)
        event_bus.emit(CONNECTION_FAILED)
        await event_bus.drain()

        assert event_bus.get_stats()['handler_errors'] == 1

    def test_history_is_bounded(self):
        bus = EventBus(max_history=3)
        for i in range(5):
            bus.publish(Event(event_type=CONNECTION_STATE_CHANGED, data={'i': i}))

        history = bus.get_event_history()
        assert [e.get('i') for e in history] == [2, 3, 4]
        assert len(bus.get_event_history(limit=1)) == 1
        assert bus.get_event_history(event_type=CONNECTION_FAILED) == []
        assert history[-1].to_dict()['data'] == {'i': 4}
