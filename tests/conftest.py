"""
Shared fakes for push channel, dispatcher and client tests
"""

import asyncio
import base64
import json
from collections import namedtuple
from typing import List, Optional

import aiohttp
import pytest

from arsnova_client.core import ApiConnectionError, ClientConfiguration, EventBus
from arsnova_client.feedback import FeedbackAggregator, SessionContext

FakeMessage = namedtuple('FakeMessage', ['type', 'data', 'extra'])

ROOM_ID = "room-1"


def make_config(**overrides) -> ClientConfiguration:
    settings = dict(
        heartbeat_interval=5.0,
        reconnect_backoff_base=0.001,
        reconnect_backoff_max=0.01,
        reconnect_reset_after=60.0,
        shutdown_grace_period=0.2,
        delivery_timeout=0.05,
    )
    settings.update(overrides)
    return ClientConfiguration(**settings)


def make_token(sub: str = "user-1") -> str:
    def encode(data: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip('=')
    return f"{encode({'alg': 'HS256'})}.{encode({'sub': sub})}.signature"


def message_frame(event_type: str, payload: dict, room_id: str = ROOM_ID) -> str:
    body = json.dumps({"type": event_type, "payload": payload})
    return (
        f"MESSAGE\ndestination:/topic/{room_id}.feedback.stream\n"
        f"subscription:sub-6\ncontent-type:application/json\n\n{body}\0"
    )


def snapshot_frame(values, room_id: str = ROOM_ID) -> str:
    return message_frame("FeedbackChanged", {"values": list(values)}, room_id)


def submission_frame(value: int, room_id: str = ROOM_ID) -> str:
    return message_frame("FeedbackCreated", {"value": value}, room_id)


class FakeWebSocket:
    """In-memory stand-in for aiohttp.ClientWebSocketResponse"""

    def __init__(self):
        self.sent: List[str] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_delay = 0.0
        self.send_delay = 0.0

    async def send_str(self, data: str) -> None:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.closed:
            raise ConnectionResetError("socket is closed")
        self.sent.append(data)

    async def receive(self):
        if self.closed and self.incoming.empty():
            return FakeMessage(aiohttp.WSMsgType.CLOSED, None, None)
        return await self.incoming.get()

    async def close(self) -> bool:
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        if not self.closed:
            self.closed = True
            self.close_code = 1000
            self.incoming.put_nowait(FakeMessage(aiohttp.WSMsgType.CLOSED, None, None))
        return True

    def exception(self):
        return None

    def push_text(self, text: str) -> None:
        self.incoming.put_nowait(FakeMessage(aiohttp.WSMsgType.TEXT, text, None))

    def drop(self) -> None:
        """Simulate the remote closing the connection"""
        self.close_code = 1006
        self.incoming.put_nowait(FakeMessage(aiohttp.WSMsgType.CLOSE, 1006, ""))

    def frames(self, command: str) -> List[str]:
        return [frame for frame in self.sent if frame.startswith(command)]


class FakeServer:
    """WebSocket opener handing out FakeWebSockets"""

    def __init__(self):
        self.sockets: List[FakeWebSocket] = []
        self.refuse_connects = 0
        self.drop_on_connect = False
        self.connect_attempts = 0

    async def open(self) -> FakeWebSocket:
        self.connect_attempts += 1
        if self.refuse_connects > 0:
            self.refuse_connects -= 1
            raise ApiConnectionError("Connection refused")
        ws = FakeWebSocket()
        if self.drop_on_connect:
            ws.drop()
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]

    def open_sockets(self) -> List[FakeWebSocket]:
        return [ws for ws in self.sockets if not ws.closed]


async def wait_until(predicate, timeout: float = 1.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def aggregator():
    return FeedbackAggregator()


@pytest.fixture
def session_context():
    return SessionContext(token=make_token("user-1"), user_id="user-1")
