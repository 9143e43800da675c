import asyncio
import contextlib
from types import SimpleNamespace

import pytest
from websockets.protocol import State

from wsrelay.config import RelayConfig
from wsrelay.registry import ChannelRegistry
from wsrelay.shutdown import ShutdownState
from wsrelay.ws_server import RelayServer


class FakeConnection:
    """Stands in for a ServerConnection: open state, ping and close only."""

    def __init__(self, name: str, state: State = State.OPEN, auto_pong: bool = True):
        self.name = name
        self.protocol = SimpleNamespace(state=state)
        self.auto_pong = auto_pong
        self.pings = 0
        self.closed_with = None

    async def ping(self):
        self.pings += 1
        pong_waiter = asyncio.get_running_loop().create_future()
        if self.auto_pong:
            pong_waiter.set_result(0.0)
        return pong_waiter

    async def close(self, code: int = 1000, reason: str = ""):
        self.closed_with = (code, reason)
        self.protocol.state = State.CLOSED

    def __repr__(self):
        return f"FakeConnection({self.name!r})"


class Outbox:
    """Recording replacement for websockets' broadcast()."""

    def __init__(self):
        self.sent = []

    def __call__(self, connections, payload):
        for connection in connections:
            self.sent.append((connection, payload))

    def to(self, connection):
        return [payload for c, payload in self.sent if c is connection]


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def registry(outbox):
    return ChannelRegistry(deliver=outbox)


@pytest.fixture
def conn():
    return FakeConnection


def relay_config(**overrides) -> RelayConfig:
    config = RelayConfig(host="127.0.0.1", port=0, ws_port=0)
    config.shutdown.grace_period = 0.2
    config.shutdown.hard_timeout = 2.0
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


@contextlib.asynccontextmanager
async def running_relay(config=None):
    relay = RelayServer(config or relay_config())
    await relay.start(serve_http=False)
    try:
        yield relay
    finally:
        if relay.shutdown.state is ShutdownState.RUNNING:
            await relay.close_listeners()


def ws_url(relay: RelayServer, path: str) -> str:
    return f"ws://127.0.0.1:{relay.bound_port(relay.ws_servers[0])}{path}"


async def wait_until(predicate, timeout: float = 2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
