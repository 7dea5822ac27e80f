"""
Push Channel Management for ARSnova Rooms

One STOMP WebSocket per room, shared by every handler registered for that
room. Each connection runs as a single task:

    IDLE -> CONNECTING -> OPEN -> CLOSED   (graceful disconnect)
                                -> FAILED   (reconnect attempts exhausted)

A transient drop while OPEN reconnects with exponential backoff and stays
OPEN (with ``reconnecting`` set). CLOSED and FAILED are terminal; the next
``connect()`` for the room starts a fresh connection.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from ..core.config_manager import ClientConfiguration
from ..core.errors import ConnectionError, ConnectionExhausted, DecodeError
from ..core.event_bus import CONNECTION_FAILED, CONNECTION_STATE_CHANGED, FRAME_DROPPED, EventBus
from ..feedback.aggregator import FeedbackAggregator
from ..feedback.models import Feedback, FeedbackValue, SessionContext
from .stomp import (
    HEARTBEAT_FRAME, SnapshotEvent, connect_frame, create_feedback_frame, decode_event, subscribe_frame,
)

logger = logging.getLogger('arsnova.transport.push_channel')

WebSocketOpener = Callable[[], Awaitable[Any]]

_CLOSE_TYPES = (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED)


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionState.CLOSED, ConnectionState.FAILED)


class FeedbackListener(ABC):
    """Receiver of everything a room connection produces"""

    @abstractmethod
    async def dispatch(self, room_id: str, feedback: Feedback) -> None:
        """Deliver a new aggregate to the room's handlers"""
        pass

    @abstractmethod
    async def fail_room(self, room_id: str, error: ConnectionExhausted) -> None:
        """Notify the room's handlers that the connection is gone for good"""
        pass


class RoomConnection:
    """
    Connection handle for one room.

    Only the connection's own task changes ``state``. Submissions are queued
    in an outbox and written in FIFO order while the socket is open.
    """

    def __init__(
        self,
        room_id: str,
        opener: WebSocketOpener,
        context: SessionContext,
        aggregator: FeedbackAggregator,
        event_bus: EventBus,
        config: ClientConfiguration,
        listener: Optional[FeedbackListener] = None,
        on_exhausted: Optional[Callable[['RoomConnection', ConnectionExhausted], Awaitable[None]]] = None,
    ):
        self.room_id = room_id
        self._opener = opener
        self._context = context
        self._aggregator = aggregator
        self._event_bus = event_bus
        self._config = config
        self._listener = listener
        self._on_exhausted = on_exhausted

        self.state = ConnectionState.IDLE
        self.reconnecting = False
        self.failures = 0
        self.last_error: Optional[BaseException] = None

        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=config.outbound_buffer_size)
        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._closing = asyncio.Event()

        self._stats = {
            'sessions_opened': 0,
            'frames_received': 0,
            'frames_dropped': 0,
            'submissions_sent': 0,
        }

    @property
    def is_live(self) -> bool:
        """True while the connection is CONNECTING or OPEN"""
        return self.state in (ConnectionState.CONNECTING, ConnectionState.OPEN)

    def start(self) -> None:
        """Start the connection task (requires a running event loop)"""
        if self._task is not None:
            return
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"arsnova-room-{self.room_id}")

    async def submit(self, value: FeedbackValue) -> None:
        """
        Queue a submission to be sent upstream.

        Waits while the outbox is full.

        Raises:
            ConnectionError: If the connection is closed or failed
        """
        if self.state.is_terminal or self._closing.is_set():
            raise ConnectionError(f"Connection for room {self.room_id} is {self.state.value}")
        await self._outbox.put(FeedbackValue.parse(value))

    async def close(self, grace: Optional[float] = None) -> None:
        """
        Close the connection gracefully.

        Queued submissions get up to ``grace`` seconds to be written, then
        the socket is closed and the task is given the rest of the grace
        period before it is cancelled.
        """
        if grace is None:
            grace = self._config.shutdown_grace_period
        self._closing.set()

        task = self._task
        if task is None:
            if not self.state.is_terminal:
                self._set_state(ConnectionState.CLOSED)
            return
        if task is asyncio.current_task():
            # Called from inside the connection, the run loop exits by itself
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + grace

        if self.state == ConnectionState.OPEN:
            # join() also covers a submission the writer took but has not written yet
            try:
                await asyncio.wait_for(self._outbox.join(), timeout=grace)
            except asyncio.TimeoutError:
                logger.debug(f"[{self.room_id}]: Discarding {self._outbox.qsize()} unsent submissions")

        await self._close_socket()

        if not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=max(deadline - loop.time(), 0.01))
            except asyncio.TimeoutError:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            except Exception:
                # Failures were already reported by the task
                pass

        if not self.state.is_terminal:
            self._set_state(ConnectionState.CLOSED)

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            'room_id': self.room_id,
            'state': self.state.value,
            'reconnecting': self.reconnecting,
            'failures': self.failures,
            'queued_submissions': self._outbox.qsize(),
        }

    # ------------------------------------------------------------------
    # Connection task
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while not self._closing.is_set():
            opened_at: Optional[float] = None
            try:
                self._ws = await self._opener()
                if self._closing.is_set():
                    continue
                await self._ws.send_str(connect_frame(self._context.token))
                await self._ws.send_str(subscribe_frame(self.room_id))

                opened_at = loop.time()
                self._stats['sessions_opened'] += 1
                if self.reconnecting:
                    logger.info(f"[{self.room_id}]: Reconnected after {self.failures} failed attempts")
                self.reconnecting = False
                self._set_state(ConnectionState.OPEN)

                await self._serve(self._ws)
            except asyncio.CancelledError:
                raise
            except ConnectionError as e:
                self.last_error = e
                logger.warning(f"[{self.room_id}]: Connection dropped: {e}")
            except Exception as e:
                self.last_error = e
                logger.warning(f"[{self.room_id}]: Connection error: {type(e).__name__}: {e}")
            finally:
                await self._close_socket()

            if self._closing.is_set():
                break

            if opened_at is not None and loop.time() - opened_at >= self._config.reconnect_reset_after:
                self.failures = 0
            self.failures += 1

            if self.failures >= self._config.max_reconnect_attempts:
                await self._fail()
                return

            delay = self._config.backoff_delay(self.failures)
            self.reconnecting = True
            logger.info(
                f"[{self.room_id}]: Reconnecting in {delay:.2f}s "
                f"(attempt {self.failures + 1}/{self._config.max_reconnect_attempts})"
            )
            try:
                await asyncio.wait_for(self._closing.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        self._set_state(ConnectionState.CLOSED)

    async def _serve(self, ws: Any) -> None:
        reader = asyncio.ensure_future(self._read_loop(ws))
        writer = asyncio.ensure_future(self._write_loop(ws))
        try:
            done, _ = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (reader, writer):
                if not task.done():
                    task.cancel()
            await asyncio.gather(reader, writer, return_exceptions=True)

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]
        if not self._closing.is_set():
            raise ConnectionError("Stream ended unexpectedly")

    async def _read_loop(self, ws: Any) -> None:
        while True:
            msg = await ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                await self._handle_text(msg.data)
            elif msg.type in _CLOSE_TYPES:
                if self._closing.is_set():
                    return
                raise ConnectionError(f"Stream closed by remote (code {getattr(ws, 'close_code', None)})")
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError(f"Stream error: {ws.exception()}")

    async def _write_loop(self, ws: Any) -> None:
        while True:
            try:
                value = await asyncio.wait_for(self._outbox.get(), timeout=self._config.heartbeat_interval)
            except asyncio.TimeoutError:
                await ws.send_str(HEARTBEAT_FRAME)
                continue
            try:
                await ws.send_str(create_feedback_frame(self.room_id, self._context.user_id, value))
                self._stats['submissions_sent'] += 1
                logger.debug(f"[{self.room_id}]: Sent submission {value.name}")
            finally:
                self._outbox.task_done()

    async def _handle_text(self, text: str) -> None:
        self._stats['frames_received'] += 1
        try:
            event = decode_event(text)
        except DecodeError as e:
            self._stats['frames_dropped'] += 1
            logger.warning(f"[{self.room_id}]: Dropping malformed frame: {e}")
            self._event_bus.emit(FRAME_DROPPED, room_id=self.room_id, reason=str(e))
            return
        if event is None:
            return

        if isinstance(event, SnapshotEvent):
            feedback = self._aggregator.on_snapshot(self.room_id, event.to_feedback(self.room_id))
        else:
            feedback = self._aggregator.on_submission(self.room_id, event.value)

        if self._listener is not None:
            await self._listener.dispatch(self.room_id, feedback)

    async def _fail(self) -> None:
        error = ConnectionExhausted(self.room_id, self.failures, self.last_error)
        self.reconnecting = False
        self._set_state(ConnectionState.FAILED)
        logger.error(f"[{self.room_id}]: {error}")
        self._event_bus.emit(CONNECTION_FAILED, room_id=self.room_id, attempts=self.failures, error=str(error))
        if self._on_exhausted is not None:
            await self._on_exhausted(self, error)

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None or ws.closed:
            return
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"[{self.room_id}]: Error while closing socket: {e}")

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        old_state, self.state = self.state, state
        logger.debug(f"[{self.room_id}]: {old_state.value} -> {state.value}")
        self._event_bus.emit(
            CONNECTION_STATE_CHANGED, room_id=self.room_id, old_state=old_state.value, new_state=state.value
        )


class PushChannelManager:
    """
    Arena of room connections keyed by room ID.

    ``connect`` is idempotent per room while a connection is live;
    ``disconnect`` is safe to call for rooms without a connection.
    """

    def __init__(
        self,
        opener: WebSocketOpener,
        context: SessionContext,
        aggregator: FeedbackAggregator,
        event_bus: EventBus,
        config: ClientConfiguration,
    ):
        self._opener = opener
        self._context = context
        self._aggregator = aggregator
        self._event_bus = event_bus
        self._config = config
        self._listener: Optional[FeedbackListener] = None
        self._connections: Dict[str, RoomConnection] = {}

        logger.debug("PushChannelManager initialized")

    def set_listener(self, listener: FeedbackListener) -> None:
        self._listener = listener

    def connect(self, room_id: str) -> RoomConnection:
        """
        Get the live connection for a room, opening one if needed.

        Returns immediately; the socket is opened by the connection task.
        """
        connection = self._connections.get(room_id)
        if connection is not None and connection.is_live:
            return connection

        connection = RoomConnection(
            room_id,
            opener=self._opener,
            context=self._context,
            aggregator=self._aggregator,
            event_bus=self._event_bus,
            config=self._config,
            listener=self._listener,
            on_exhausted=self._on_exhausted,
        )
        self._connections[room_id] = connection
        connection.start()
        logger.info(f"[{room_id}]: Opening push channel")
        return connection

    async def disconnect(self, room_id: str, grace: Optional[float] = None) -> bool:
        """
        Close a room's connection.

        Returns:
            True if there was a connection to close
        """
        connection = self._connections.pop(room_id, None)
        if connection is None:
            return False
        await connection.close(grace)
        # A new connection for the room may have been opened during the grace period
        if room_id not in self._connections:
            self._aggregator.clear_room(room_id)
        logger.info(f"[{room_id}]: Push channel closed")
        return True

    async def close_all(self, grace: Optional[float] = None) -> None:
        room_ids = list(self._connections.keys())
        await asyncio.gather(*(self.disconnect(room_id, grace) for room_id in room_ids))

    def get_connection(self, room_id: str) -> Optional[RoomConnection]:
        return self._connections.get(room_id)

    def state(self, room_id: str) -> ConnectionState:
        connection = self._connections.get(room_id)
        return connection.state if connection is not None else ConnectionState.IDLE

    def get_rooms(self):
        return list(self._connections.keys())

    async def _on_exhausted(self, connection: RoomConnection, error: ConnectionExhausted) -> None:
        if self._connections.get(connection.room_id) is connection:
            del self._connections[connection.room_id]
        if connection.room_id not in self._connections:
            self._aggregator.clear_room(connection.room_id)
        if self._listener is not None:
            await self._listener.fail_room(connection.room_id, error)
