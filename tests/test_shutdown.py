import asyncio
import json

from websockets.protocol import State

from wsrelay.heartbeat import HeartbeatMonitor
from wsrelay.shutdown import GOING_AWAY_CODE, ShutdownCoordinator, ShutdownState


class FakeListener:
    def __init__(self, hang: bool = False):
        self.hang = hang
        self.closed = False

    def close(self):
        self.closed = True

    async def wait_closed(self):
        if self.hang:
            await asyncio.Event().wait()


def test_shutdown_announces_then_closes(registry, outbox, conn):
    async def scenario():
        a, b = conn("a"), conn("b")
        registry.join("room1", a)
        registry.join("room2", b)
        listener = FakeListener()
        coordinator = ShutdownCoordinator(registry, [listener], grace_period=0.05, hard_timeout=1)

        task = asyncio.create_task(coordinator.run())
        await asyncio.sleep(0)
        assert coordinator.state is ShutdownState.ANNOUNCING
        assert a.closed_with is None

        exit_code = await task
        return a, b, listener, coordinator, exit_code

    a, b, listener, coordinator, exit_code = asyncio.run(scenario())

    for connection in (a, b):
        notices = [json.loads(payload) for payload in outbox.to(connection)]
        assert [n["action"] for n in notices] == ["websocket_close", "broadcast_close"]
        assert notices[0]["from"]["uuid"] == notices[1]["from"]["uuid"]
        assert connection.closed_with == (GOING_AWAY_CODE, "Server is shutting down")
    assert listener.closed
    assert exit_code == 0
    assert coordinator.state is ShutdownState.TERMINATED


def test_shutdown_skips_closed_connections(registry, outbox, conn):
    closed = conn("closed", state=State.CLOSED)
    registry.join("room1", closed)
    coordinator = ShutdownCoordinator(registry, [], grace_period=0, hard_timeout=1)

    assert asyncio.run(coordinator.run()) == 0
    assert outbox.to(closed) == []
    assert closed.closed_with is None


def test_hung_listener_hits_hard_timeout(registry, conn):
    registry.join("room1", conn("a"))
    coordinator = ShutdownCoordinator(registry, [FakeListener(hang=True)], grace_period=0, hard_timeout=0.05)

    assert asyncio.run(coordinator.run()) == 1
    assert coordinator.state is ShutdownState.TERMINATED


def test_trigger_is_ignored_while_shutting_down(registry):
    async def scenario():
        coordinator = ShutdownCoordinator(registry, [], grace_period=0.05, hard_timeout=1)
        first = coordinator.trigger()
        second = coordinator.trigger()
        assert first is not None
        assert second is None
        return await coordinator.wait()

    assert asyncio.run(scenario()) == 0


def test_drain_stops_heartbeats(registry, conn):
    async def scenario():
        a = conn("a")
        registry.join("room1", a)
        heartbeat = HeartbeatMonitor(interval=10)
        heartbeat.start(a)
        coordinator = ShutdownCoordinator(registry, [], grace_period=0, hard_timeout=1, heartbeat=heartbeat)
        await coordinator.run()
        return heartbeat

    assert len(asyncio.run(scenario())) == 0
