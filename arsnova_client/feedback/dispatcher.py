"""
Handler Registry & Dispatcher

Keeps the handlers registered per room, delivers every new aggregate to
all of them and forwards what producer handlers submit to the room's push
channel.
"""

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from ..core.config_manager import ClientConfiguration
from ..core.errors import ConnectionError, ConnectionExhausted, HandlerDeliveryError, RegistrationError
from ..core.event_bus import HANDLER_REGISTERED, HANDLER_REMOVED, EventBus
from ..transport.push_channel import FeedbackListener, PushChannelManager
from .channels import ChannelClosed
from .handlers import (
    CallbackHandler, FeedbackHandler, ReceiverHandler, SenderHandler, SenderReceiverHandler,
    as_handler, consumer_sender, producer_receiver,
)
from .models import Feedback, FeedbackValue

logger = logging.getLogger('arsnova.feedback.dispatcher')


@dataclass
class Registration:
    """A handler registered for a room"""

    registration_id: str
    room_id: str
    handler: FeedbackHandler
    producer_task: Optional[asyncio.Task] = None
    deliveries: int = 0
    dropped: int = 0
    submissions: int = 0

    @property
    def kind(self) -> str:
        return type(self.handler).__name__


class FeedbackDispatcher(FeedbackListener):
    """
    Registry of feedback handlers and fan-out of room updates.

    Delivery to each handler is independent: a failing callback or a full
    or closed channel never delays or breaks delivery to the others.
    Handlers whose channel is gone are removed on the next delivery, and a
    room's connection is torn down once its last handler is removed.
    """

    def __init__(self, connections: PushChannelManager, event_bus: EventBus, config: ClientConfiguration):
        self._connections = connections
        self._event_bus = event_bus
        self._config = config

        self._registrations: Dict[str, Registration] = {}
        self._rooms: Dict[str, Set[str]] = {}  # room_id -> registration ids
        self._teardown_tasks: Set[asyncio.Task] = set()
        self._closed = False

        connections.set_listener(self)
        logger.debug("FeedbackDispatcher initialized")

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, room_id: str, handler: Any) -> str:
        """
        Register a handler for a room.

        Records the handler and requests the room's connection without
        waiting for it to open.

        Args:
            room_id: Internal room ID
            handler: A FeedbackHandler, a callable, a ChannelSender or a
                (ChannelSender, ChannelReceiver) pair

        Returns:
            Registration ID for ``deregister``

        Raises:
            RegistrationError: If the registration was refused
        """
        if self._closed:
            raise RegistrationError("Dispatcher is closed")
        if not room_id:
            raise RegistrationError("room_id must not be empty")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise RegistrationError("Registering a handler requires a running event loop") from e
        try:
            handler = as_handler(handler)
        except TypeError as e:
            raise RegistrationError(str(e)) from e

        sender = consumer_sender(handler)
        if sender is not None and sender.is_closed:
            raise RegistrationError("Feedback channel is already closed")
        receiver = producer_receiver(handler)
        if receiver is not None and receiver.is_closed:
            raise RegistrationError("Submission channel is already closed")

        registration = Registration(
            registration_id=uuid.uuid4().hex,
            room_id=room_id,
            handler=handler,
        )
        self._registrations[registration.registration_id] = registration
        self._rooms.setdefault(room_id, set()).add(registration.registration_id)

        self._connections.connect(room_id)

        if receiver is not None:
            registration.producer_task = loop.create_task(
                self._forward_submissions(registration),
                name=f"arsnova-producer-{registration.registration_id}",
            )

        logger.info(f"[{room_id}]: Registered {registration.kind} {registration.registration_id}")
        self._event_bus.emit(
            HANDLER_REGISTERED, room_id=room_id,
            registration_id=registration.registration_id, kind=registration.kind,
        )
        return registration.registration_id

    def deregister(self, registration_id: str) -> bool:
        """
        Remove a registration immediately.

        Returns:
            True if the registration existed
        """
        return self._remove(registration_id, reason="deregistered")

    def get_registration(self, registration_id: str) -> Optional[Registration]:
        return self._registrations.get(registration_id)

    def get_registrations(self, room_id: str) -> List[Registration]:
        return [self._registrations[r] for r in self._rooms.get(room_id, ()) if r in self._registrations]

    def handler_count(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, ()))

    def get_rooms(self) -> List[str]:
        return list(self._rooms.keys())

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, room_id: str, feedback: Feedback) -> None:
        """Deliver a new aggregate to every handler of the room"""
        registrations = self.get_registrations(room_id)
        if not registrations:
            return
        await asyncio.gather(*(self._deliver(registration, feedback) for registration in registrations))

    async def fail_room(self, room_id: str, error: ConnectionExhausted) -> None:
        """
        Notify every handler of the room once, then remove them.

        Callbacks get ``on_failure(error)``. Channel handlers have their
        channels closed with ``error``: the consumer's receiver and the
        producer's sender each raise it once. A callback registered without
        ``on_failure`` has no way to be told and is removed with a warning.
        """
        for registration in self.get_registrations(room_id):
            handler = registration.handler
            if isinstance(handler, CallbackHandler):
                if handler.on_failure is None:
                    logger.warning(
                        f"[{room_id}]: Removing callback {registration.registration_id} without failure "
                        f"callback: {error}"
                    )
                else:
                    try:
                        result = handler.on_failure(error)
                        if inspect.isawaitable(result):
                            await result
                    except Exception as e:
                        logger.error(f"Error in failure callback {registration.registration_id}: {e}")
            self._remove(registration.registration_id, reason="connection failed", error=error, teardown=False)

    async def _deliver(self, registration: Registration, feedback: Feedback) -> None:
        handler = registration.handler
        timeout = self._config.delivery_timeout

        if isinstance(handler, CallbackHandler):
            try:
                result = handler.fn(feedback)
                if inspect.isawaitable(result):
                    await asyncio.wait_for(result, timeout=timeout)
                registration.deliveries += 1
            except asyncio.TimeoutError:
                registration.dropped += 1
                logger.warning(f"Feedback callback {registration.registration_id} timed out after {timeout}s")
            except Exception as e:
                logger.error(f"Error in feedback callback {registration.registration_id}: {e}")

        elif isinstance(handler, (SenderHandler, SenderReceiverHandler)):
            try:
                await handler.sender.send(feedback, timeout=timeout)
                registration.deliveries += 1
            except asyncio.TimeoutError:
                registration.dropped += 1
                logger.warning(
                    f"[{registration.room_id}]: Channel of {registration.registration_id} is full, "
                    f"dropping update"
                )
            except ChannelClosed:
                error = HandlerDeliveryError(registration.registration_id, "feedback channel closed")
                logger.info(f"[{registration.room_id}]: {error}")
                self._remove(registration.registration_id, reason="channel closed")

        elif isinstance(handler, ReceiverHandler):
            # Producer only
            pass

        else:
            logger.error(f"Unknown handler type {type(handler).__name__} in {registration.registration_id}")

    async def _forward_submissions(self, registration: Registration) -> None:
        receiver = producer_receiver(registration.handler)
        assert receiver is not None
        registration_id = registration.registration_id

        try:
            while registration_id in self._registrations:
                raw = await receiver.receive()
                try:
                    value = FeedbackValue.parse(raw)
                except ValueError as e:
                    logger.warning(f"[{registration.room_id}]: Ignoring submission from {registration_id}: {e}")
                    continue
                if registration_id not in self._registrations:
                    break
                connection = self._connections.connect(registration.room_id)
                await connection.submit(value)
                registration.submissions += 1
        except asyncio.CancelledError:
            raise
        except ChannelClosed:
            logger.debug(f"[{registration.room_id}]: Submission channel of {registration_id} closed")
        except ConnectionError as e:
            logger.warning(f"[{registration.room_id}]: Cannot forward submissions of {registration_id}: {e}")
        except Exception as e:
            logger.warning(f"[{registration.room_id}]: Submission channel of {registration_id} failed: {e}")

        if isinstance(registration.handler, ReceiverHandler):
            self._remove(registration_id, reason="submission channel closed")

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def _remove(
        self,
        registration_id: str,
        reason: str,
        error: Optional[BaseException] = None,
        teardown: bool = True,
    ) -> bool:
        registration = self._registrations.pop(registration_id, None)
        if registration is None:
            return False

        room_id = registration.room_id
        room = self._rooms.get(room_id)
        if room is not None:
            room.discard(registration_id)
            if not room:
                del self._rooms[room_id]
                if teardown:
                    self._schedule_teardown(room_id)

        task = registration.producer_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        sender = consumer_sender(registration.handler)
        if sender is not None:
            sender.close(error)
        receiver = producer_receiver(registration.handler)
        if receiver is not None:
            receiver.close(error)

        logger.info(f"[{room_id}]: Removed {registration.kind} {registration_id} ({reason})")
        self._event_bus.emit(HANDLER_REMOVED, room_id=room_id, registration_id=registration_id, reason=reason)
        return True

    def _schedule_teardown(self, room_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"[{room_id}]: No running event loop, cannot close the push channel")
            return
        task = loop.create_task(self._teardown_room(room_id), name=f"arsnova-teardown-{room_id}")
        self._teardown_tasks.add(task)
        task.add_done_callback(self._teardown_tasks.discard)

    async def _teardown_room(self, room_id: str) -> None:
        # A new handler may have arrived since the last one left
        if self._rooms.get(room_id):
            return
        await self._connections.disconnect(room_id)

    async def close(self) -> None:
        """Remove every registration and close all push channels"""
        self._closed = True
        producer_tasks = [r.producer_task for r in self._registrations.values() if r.producer_task is not None]
        for registration_id in list(self._registrations.keys()):
            self._remove(registration_id, reason="client closed", teardown=False)
        if producer_tasks:
            await asyncio.gather(*producer_tasks, return_exceptions=True)
        if self._teardown_tasks:
            await asyncio.gather(*list(self._teardown_tasks), return_exceptions=True)
        await self._connections.close_all()
        logger.debug("FeedbackDispatcher closed")

    def get_stats(self) -> Dict[str, Any]:
        return {
            'rooms': len(self._rooms),
            'registrations': len(self._registrations),
            'deliveries': sum(r.deliveries for r in self._registrations.values()),
            'dropped': sum(r.dropped for r in self._registrations.values()),
            'teardowns_pending': len(self._teardown_tasks),
        }
