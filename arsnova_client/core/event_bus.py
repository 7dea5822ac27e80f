"""
Event Bus for Client Lifecycle Events
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger('arsnova.core.event_bus')

# Lifecycle event types
CONNECTION_STATE_CHANGED = 'connection_state_changed'
CONNECTION_FAILED = 'connection_failed'
FRAME_DROPPED = 'frame_dropped'
HANDLER_REGISTERED = 'handler_registered'
HANDLER_REMOVED = 'handler_removed'


@dataclass
class Event:
    """
    A lifecycle notification.

    ``room_id`` is set for every event that concerns a single room.
    """

    event_type: str
    room_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type,
            'room_id': self.room_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass
class EventSubscription:
    """Subscription registration information"""

    handler_id: str
    handler_func: Callable
    event_types: List[str]
    room_id: Optional[str] = None
    async_handler: bool = False

    def __post_init__(self):
        self.async_handler = asyncio.iscoroutinefunction(self.handler_func)

    def can_handle(self, event: Event) -> bool:
        if event.event_type not in self.event_types and '*' not in self.event_types:
            return False
        if self.room_id is not None and event.room_id != self.room_id:
            return False
        return True


class EventBus:
    """
    Pub/sub for connection and registry lifecycle events.

    Handler failures are logged and isolated; they never reach the publisher.
    Async handlers are scheduled as tasks, so ``publish`` never suspends.
    """

    def __init__(self, max_history: int = 200):
        self._subscriptions: Dict[str, EventSubscription] = {}
        self._history: List[Event] = []
        self._max_history = max_history
        self._pending: set = set()
        self._stats = {
            'events_published': 0,
            'events_handled': 0,
            'handler_errors': 0,
        }

        logger.debug("EventBus initialized")

    def subscribe(
        self,
        event_types: Union[str, List[str]],
        handler: Callable,
        handler_id: Optional[str] = None,
        room_id: Optional[str] = None,
    ) -> str:
        """
        Subscribe to events with a handler function.

        Args:
            event_types: Event type(s) to subscribe to ('*' for all)
            handler: Handler function (sync or async)
            handler_id: Unique handler ID (auto-generated if None)
            room_id: Only receive events for this room

        Returns:
            Handler ID for later unsubscription
        """
        if isinstance(event_types, str):
            event_types = [event_types]

        if handler_id is None:
            handler_id = f"{getattr(handler, '__name__', 'handler')}_{id(handler)}"

        self._subscriptions[handler_id] = EventSubscription(
            handler_id=handler_id,
            handler_func=handler,
            event_types=event_types,
            room_id=room_id,
        )

        logger.debug(f"Subscribed handler {handler_id} to events: {event_types}")
        return handler_id

    def unsubscribe(self, handler_id: str) -> bool:
        if handler_id in self._subscriptions:
            del self._subscriptions[handler_id]
            logger.debug(f"Unsubscribed handler {handler_id}")
            return True
        return False

    def publish(self, event: Event) -> int:
        """
        Publish an event to all applicable handlers.

        Returns:
            Number of handlers that received the event
        """
        self._stats['events_published'] += 1
        self._add_to_history(event)

        handled_count = 0
        for subscription in list(self._subscriptions.values()):
            if not subscription.can_handle(event):
                continue
            try:
                if subscription.async_handler:
                    task = asyncio.get_running_loop().create_task(self._handle_async(subscription, event))
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
                else:
                    subscription.handler_func(event)
                handled_count += 1
                self._stats['events_handled'] += 1
            except Exception as e:
                self._stats['handler_errors'] += 1
                logger.error(f"Error in handler {subscription.handler_id}: {e}")

        return handled_count

    def emit(self, event_type: str, room_id: Optional[str] = None, **data) -> int:
        """Create and publish an event"""
        return self.publish(Event(event_type=event_type, room_id=room_id, data=data))

    async def drain(self) -> None:
        """Wait for async handlers that are still running"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            'active_handlers': len(self._subscriptions),
            'history_size': len(self._history),
        }

    def get_event_history(self, limit: Optional[int] = None, event_type: Optional[str] = None) -> List[Event]:
        events = self._history
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        if limit:
            return events[-limit:]
        return list(events)

    async def _handle_async(self, subscription: EventSubscription, event: Event):
        try:
            await subscription.handler_func(event)
        except Exception as e:
            self._stats['handler_errors'] += 1
            logger.error(f"Error in async handler {subscription.handler_id}: {e}")

    def _add_to_history(self, event: Event):
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]
