"""Pytest configuration and fixtures for testing.

This module provides in-process stand-ins for the Redis connections a
listener owns:
- FakePubSub: a pub/sub connection with subscribe confirmations and glob matching
- FakeRedis: a client whose XREAD replies are scripted per test
- fakeredis for the cursor cache, which only needs GET/SET/DEL
"""

import asyncio
from collections.abc import Awaitable, Callable
from fnmatch import fnmatchcase
from typing import Any

import fakeredis
import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

_END = object()


class FakePubSub:
    """Pub/sub connection that behaves like redis.asyncio.client.PubSub.listen()."""

    def __init__(self, confirm: bool = True) -> None:
        self.confirm = confirm
        self.channels: set[str] = set()
        self.patterns: set[str] = set()
        self.commands: list[tuple[str, str]] = []
        self.closed = False
        self._replies: asyncio.Queue[Any] = asyncio.Queue()

    async def subscribe(self, channel: str) -> None:
        self.commands.append(("subscribe", channel))
        self.channels.add(channel)
        if self.confirm:
            self._put("subscribe", channel, len(self.channels) + len(self.patterns))

    async def psubscribe(self, pattern: str) -> None:
        self.commands.append(("psubscribe", pattern))
        self.patterns.add(pattern)
        if self.confirm:
            self._put("psubscribe", pattern, len(self.channels) + len(self.patterns))

    async def unsubscribe(self, channel: str) -> None:
        self.commands.append(("unsubscribe", channel))
        self.channels.discard(channel)
        self._put("unsubscribe", channel, len(self.channels) + len(self.patterns))
        self._end_if_idle()

    async def punsubscribe(self, pattern: str) -> None:
        self.commands.append(("punsubscribe", pattern))
        self.patterns.discard(pattern)
        self._put("punsubscribe", pattern, len(self.channels) + len(self.patterns))
        self._end_if_idle()

    def publish(self, channel: str, data: Any) -> int:
        """Deliver a message the way the server would fan it out."""
        receivers = 0
        if channel in self.channels:
            self._replies.put_nowait(
                {"type": "message", "pattern": None, "channel": channel, "data": data}
            )
            receivers += 1
        for pattern in self.patterns:
            if fnmatchcase(channel, pattern):
                self._replies.put_nowait(
                    {"type": "pmessage", "pattern": pattern, "channel": channel, "data": data}
                )
                receivers += 1
        return receivers

    def fail(self, error: BaseException) -> None:
        """Make the next read raise ``error``."""
        self._replies.put_nowait(error)

    async def listen(self):  # type: ignore[no-untyped-def]
        while True:
            reply = await self._replies.get()
            if reply is _END:
                return
            if isinstance(reply, BaseException):
                raise reply
            yield reply

    async def aclose(self) -> None:
        self.closed = True
        self._replies.put_nowait(RedisConnectionError("Connection closed by client"))

    def confirm_subscription(self, kind: str, channel: str) -> None:
        """Deliver a subscribe or psubscribe confirmation by hand."""
        self._put(kind, channel, len(self.channels) + len(self.patterns))

    def _put(self, kind: str, channel: str, count: int) -> None:
        self._replies.put_nowait({"type": kind, "pattern": None, "channel": channel, "data": count})

    def _end_if_idle(self) -> None:
        if not self.channels and not self.patterns:
            self._replies.put_nowait(_END)


class FakeRedis:
    """Client stand-in with scripted XREAD replies.

    Each XREAD pops the next scripted reply (raising it if it is an
    exception). With no replies left, XREAD blocks until the client is closed
    and then fails, as a real blocked read does when its connection is dropped.
    """

    def __init__(self, replies: list[Any] | None = None) -> None:
        self.replies: list[Any] = list(replies or [])
        self.xread_calls: list[tuple[dict[str, str], int | None]] = []
        self.closed = False
        self.pubsub_connection = FakePubSub()
        self._closed_event = asyncio.Event()

    def pubsub(self) -> FakePubSub:
        return self.pubsub_connection

    async def xread(self, streams: dict[str, str], block: int | None = None) -> Any:
        self.xread_calls.append((dict(streams), block))
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, BaseException):
                raise reply
            return reply
        await self._closed_event.wait()
        raise RedisConnectionError("Connection closed by client")

    async def aclose(self) -> None:
        self.closed = True
        self._closed_event.set()


@pytest.fixture
def fake_pubsub() -> FakePubSub:
    """Provide a fresh fake pub/sub connection."""
    return FakePubSub()


@pytest.fixture
def make_fake_pubsub() -> Callable[..., FakePubSub]:
    """Provide a factory for fake pub/sub connections."""

    def make(confirm: bool = True) -> FakePubSub:
        return FakePubSub(confirm=confirm)

    return make


@pytest.fixture
def make_fake_redis() -> Callable[..., FakeRedis]:
    """Provide a factory for fake clients with scripted XREAD replies."""

    def make(replies: list[Any] | None = None) -> FakeRedis:
        return FakeRedis(replies)

    return make


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Provide a helper that polls a condition while letting tasks run."""

    async def wait(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return wait


@pytest_asyncio.fixture
async def redis_client():
    """Provide an in-process Redis (fakeredis) with decoded responses.

    The server is flushed and the client closed after the test completes.
    """
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def fake_server_clients():
    """Provide a factory for fakeredis clients that share one in-process server.

    Clients behave like ``redis.asyncio.Redis``, including pub/sub and XREAD,
    and see each other's publishes and stream entries. All clients created
    through the factory are closed after the test.
    """
    server = fakeredis.FakeServer()
    clients: list[fakeredis.FakeAsyncRedis] = []

    def make(*args: Any) -> fakeredis.FakeAsyncRedis:
        client = fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
        clients.append(client)
        return client

    yield make
    for client in clients:
        await client.aclose()
