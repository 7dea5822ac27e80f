"""
Bounded Async Channels

A sender/receiver pair on top of a bounded buffer. Closing an end, or losing
the last reference to it, closes the channel for the other side:

- Senders fail with ChannelClosed once the receiver is gone (after raising
  the terminal error the receiver closed with once, if it had one).
- The receiver drains what is buffered, then raises the close reason once
  (ChannelClosed, or the terminal error a sender closed with) and
  ChannelClosed on every later call.

Handlers use this as their cancellation signal: dropping your end of a
channel is enough to unregister.
"""

import asyncio
import logging
import weakref
from collections import deque
from typing import Any, Deque, Generic, Optional, Tuple, TypeVar

logger = logging.getLogger('arsnova.feedback.channels')

T = TypeVar('T')


class ChannelClosed(Exception):
    """Raised when the other end of a channel is closed"""
    pass


class _ChannelState:
    """Buffer and bookkeeping shared by both ends of one channel"""

    def __init__(self, capacity: int):
        self.capacity = capacity
        self.buffer: Deque[Any] = deque()
        self.senders = 0
        self.receiver_open = True
        self.close_reason: Optional[BaseException] = None
        self.reason_delivered = False
        self.receiver_close_reason: Optional[BaseException] = None
        self.receiver_reason_delivered = False
        self.not_empty = asyncio.Event()
        self.not_full = asyncio.Event()
        self.not_full.set()

    def release_sender(self, reason: Optional[BaseException] = None) -> None:
        self.senders -= 1
        if reason is not None and self.close_reason is None:
            self.close_reason = reason
        if self.senders <= 0:
            # Wake a receiver parked on an empty buffer
            self.not_empty.set()

    def release_receiver(self, reason: Optional[BaseException] = None) -> None:
        if reason is not None and self.receiver_open:
            self.receiver_close_reason = reason
        self.receiver_open = False
        self.buffer.clear()
        self.not_full.set()

    @property
    def senders_closed(self) -> bool:
        return self.senders <= 0


class ChannelSender(Generic[T]):
    """Sending end of a channel"""

    def __init__(self, state: _ChannelState):
        self._state = state
        self._closed = False
        state.senders += 1
        self._finalizer = weakref.finalize(self, state.release_sender)

    @property
    def is_closed(self) -> bool:
        """True if this end was closed or nobody is receiving anymore"""
        return self._closed or not self._state.receiver_open

    @property
    def capacity(self) -> int:
        return self._state.capacity

    def clone(self) -> 'ChannelSender[T]':
        """Create another sending end for the same channel"""
        if self._closed:
            raise ChannelClosed("Cannot clone a closed sender")
        return ChannelSender(self._state)

    async def send(self, item: T, timeout: Optional[float] = None) -> None:
        """
        Send an item, waiting while the buffer is full.

        Args:
            item: Item to enqueue
            timeout: Maximum seconds to wait for free space (None waits forever)

        Raises:
            ChannelClosed: If this sender or the receiver is closed
            Exception: The terminal error the receiver closed with, exactly once
            asyncio.TimeoutError: If no space became free within ``timeout``
        """
        if timeout is None:
            await self._send(item)
        else:
            await asyncio.wait_for(self._send(item), timeout)

    async def _send(self, item: T) -> None:
        state = self._state
        while True:
            if self.is_closed:
                self._raise_closed()
            if len(state.buffer) < state.capacity:
                state.buffer.append(item)
                state.not_empty.set()
                return
            state.not_full.clear()
            await state.not_full.wait()

    def try_send(self, item: T) -> bool:
        """
        Send without waiting.

        Returns:
            False if the buffer is full

        Raises:
            ChannelClosed: If this sender or the receiver is closed
            Exception: The terminal error the receiver closed with, exactly once
        """
        state = self._state
        if self.is_closed:
            self._raise_closed()
        if len(state.buffer) >= state.capacity:
            return False
        state.buffer.append(item)
        state.not_empty.set()
        return True

    def close(self, error: Optional[BaseException] = None) -> None:
        """
        Close this sending end.

        Args:
            error: Terminal error the receiver raises after draining the buffer
        """
        if self._closed:
            return
        self._closed = True
        self._finalizer.detach()
        self._state.release_sender(error)

    def _raise_closed(self) -> None:
        state = self._state
        if self._closed:
            raise ChannelClosed("Channel sender is closed")
        if state.receiver_close_reason is not None and not state.receiver_reason_delivered:
            state.receiver_reason_delivered = True
            raise state.receiver_close_reason
        raise ChannelClosed("Channel receiver is closed")


class ChannelReceiver(Generic[T]):
    """Receiving end of a channel"""

    def __init__(self, state: _ChannelState):
        self._state = state
        self._finalizer = weakref.finalize(self, state.release_receiver)

    @property
    def is_closed(self) -> bool:
        """True if this end was closed or every sender is gone"""
        return not self._state.receiver_open or self._state.senders_closed

    def __len__(self) -> int:
        return len(self._state.buffer)

    async def receive(self) -> T:
        """
        Receive the next item, waiting while the buffer is empty.

        Raises:
            ChannelClosed: Once all senders are closed and the buffer is drained
            Exception: The terminal error a sender closed with, exactly once
        """
        state = self._state
        while True:
            if state.buffer:
                item = state.buffer.popleft()
                state.not_full.set()
                if not state.buffer:
                    state.not_empty.clear()
                return item
            if not state.receiver_open:
                raise ChannelClosed("Channel receiver is closed")
            if state.senders_closed:
                if state.close_reason is not None and not state.reason_delivered:
                    state.reason_delivered = True
                    raise state.close_reason
                raise ChannelClosed("All channel senders are closed")
            state.not_empty.clear()
            await state.not_empty.wait()

    def try_receive(self) -> Optional[T]:
        """Return the next buffered item, or None if the buffer is empty"""
        state = self._state
        if not state.buffer:
            return None
        item = state.buffer.popleft()
        state.not_full.set()
        return item

    def close(self, error: Optional[BaseException] = None) -> None:
        """
        Close the receiving end and discard buffered items.

        Args:
            error: Terminal error the next send on this channel raises
        """
        if not self._finalizer.alive:
            return
        self._finalizer.detach()
        self._state.release_receiver(error)

    def __aiter__(self) -> 'ChannelReceiver[T]':
        return self

    async def __anext__(self) -> T:
        try:
            return await self.receive()
        except ChannelClosed:
            raise StopAsyncIteration


def channel(capacity: int = 10) -> Tuple[ChannelSender[Any], ChannelReceiver[Any]]:
    """
    Create a bounded channel.

    Args:
        capacity: Maximum number of buffered items

    Returns:
        Tuple of (sender, receiver)
    """
    if capacity < 1:
        raise ValueError("Channel capacity must be at least 1")
    state = _ChannelState(capacity)
    return ChannelSender(state), ChannelReceiver(state)
