"""
Feedback Handlers

A handler is what a caller registers for a room. It is one of:

- CallbackHandler: a function called with every new Feedback
- SenderHandler: a channel the dispatcher pushes every new Feedback into
- SenderReceiverHandler: a SenderHandler plus an inbound channel of
  FeedbackValue that is forwarded to the room
- ReceiverHandler: an inbound channel of FeedbackValue only

The dispatcher switches over these cases; the handlers themselves carry no
behaviour.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from .channels import ChannelReceiver, ChannelSender
from .models import Feedback, FeedbackValue

FeedbackCallback = Callable[[Feedback], Union[None, Awaitable[None]]]
FailureCallback = Callable[[BaseException], Any]


@dataclass(frozen=True)
class CallbackHandler:
    """Handle incoming Feedback using a function (sync or async)"""
    fn: FeedbackCallback
    on_failure: Optional[FailureCallback] = None


@dataclass(frozen=True)
class SenderHandler:
    """Handle incoming Feedback by sending it into a channel"""
    sender: ChannelSender[Feedback]


@dataclass(frozen=True)
class SenderReceiverHandler:
    """Bidirectional handler for incoming Feedback and outgoing FeedbackValue"""
    sender: ChannelSender[Feedback]
    receiver: ChannelReceiver[FeedbackValue]


@dataclass(frozen=True)
class ReceiverHandler:
    """Producer-only handler forwarding FeedbackValue to the room"""
    receiver: ChannelReceiver[FeedbackValue]


FeedbackHandler = Union[CallbackHandler, SenderHandler, SenderReceiverHandler, ReceiverHandler]


def as_handler(target: Any) -> FeedbackHandler:
    """
    Coerce a registration argument into a FeedbackHandler.

    Accepts a handler instance, a callable, a ChannelSender, or a
    (ChannelSender, ChannelReceiver) pair.

    Raises:
        TypeError: If the argument matches none of the above
    """
    if isinstance(target, (CallbackHandler, SenderHandler, SenderReceiverHandler, ReceiverHandler)):
        return target
    if isinstance(target, ChannelSender):
        return SenderHandler(target)
    if isinstance(target, tuple) and len(target) == 2:
        sender, receiver = target
        if isinstance(sender, ChannelSender) and isinstance(receiver, ChannelReceiver):
            return SenderReceiverHandler(sender, receiver)
    if callable(target):
        return CallbackHandler(target)
    raise TypeError(f"Unsupported feedback handler: {type(target).__name__}")


def consumer_sender(handler: FeedbackHandler) -> Optional[ChannelSender[Feedback]]:
    """Outbound Feedback channel of a handler, if it has one"""
    if isinstance(handler, (SenderHandler, SenderReceiverHandler)):
        return handler.sender
    return None


def producer_receiver(handler: FeedbackHandler) -> Optional[ChannelReceiver[FeedbackValue]]:
    """Inbound FeedbackValue channel of a handler, if it has one"""
    if isinstance(handler, (SenderReceiverHandler, ReceiverHandler)):
        return handler.receiver
    return None
