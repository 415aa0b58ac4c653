import asyncio
import json

import pytest

from backend import RoomRegistry
from connection import Connection
from constants import Settings
from dispatcher import MessageDispatcher

STATIC_TOKEN = "test-static-token"
JWT_SECRET = "test-jwt-secret"


class FakeWebSocket:
    """Records what the relay writes to a peer."""

    def __init__(self, fail_sends: bool = False):
        self.sent = []
        self.closed = False
        self.close_code = None
        self.close_reason = None
        self.fail_sends = fail_sends

    async def send_text(self, text: str) -> None:
        if self.fail_sends or self.closed:
            raise RuntimeError("socket closed")
        self.sent.append(text)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    def messages(self):
        return [json.loads(t) for t in self.sent]


def make_connection(identity: str = "alice", **kwargs) -> Connection:
    """Create and start a connection. Must be called with a running loop."""
    connection = Connection(FakeWebSocket(**kwargs), identity)
    connection.start()
    return connection


async def received(connection: Connection):
    await connection.drain()
    return connection.websocket.messages()


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def settings() -> Settings:
    return Settings(static_token=STATIC_TOKEN, jwt_secret=JWT_SECRET, heartbeat_interval_s=3600, cleanup_interval_s=3600)


@pytest.fixture
def registry() -> RoomRegistry:
    return RoomRegistry(capacity=2)


@pytest.fixture
def dispatcher(registry) -> MessageDispatcher:
    return MessageDispatcher(registry, rate_limit=5, max_chat_length=10)
