"""Per-connection heartbeat: ping every connection on a fixed interval."""

import asyncio
import functools
import logging
from typing import Dict

from websockets import ConnectionClosed
from websockets.asyncio.server import ServerConnection

from .registry import is_open


logger = logging.getLogger(__name__)

KEEPALIVE_TIMEOUT_CODE = 1011


class HeartbeatMonitor:
    """Owns one ping task per connection.

    `start` is called when a connection joins and `stop` when it closes.
    With ``max_missed`` > 0 a connection whose last ``max_missed`` pings all
    went unanswered is closed; with 0 (the default) unanswered pings are
    only tolerated.
    """

    def __init__(self, interval: float = 30.0, max_missed: int = 0):
        self.interval = interval
        self.max_missed = max_missed
        self._tasks: Dict[ServerConnection, asyncio.Task] = {}

    def start(self, connection: ServerConnection, channel_name: str = "") -> None:
        self.stop(connection)
        self._tasks[connection] = asyncio.create_task(self._run(connection, channel_name))

    def stop(self, connection: ServerConnection) -> bool:
        task = self._tasks.pop(connection, None)
        if task is None:
            return False
        task.cancel()
        return True

    def stop_all(self) -> None:
        for connection in list(self._tasks):
            self.stop(connection)

    def __contains__(self, connection: ServerConnection) -> bool:
        return connection in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    async def _run(self, connection: ServerConnection, channel_name: str) -> None:
        missed = 0
        pong_waiter = None
        try:
            while True:
                await asyncio.sleep(self.interval)
                if not is_open(connection):
                    break

                if pong_waiter is not None and not pong_waiter.done():
                    missed += 1
                else:
                    missed = 0
                if self.max_missed and missed >= self.max_missed:
                    logger.warning("No pong for %d pings, closing connection, channel: %s",
                                   missed, channel_name)
                    # closing must not be cancelled by our own stop()
                    self._tasks.pop(connection, None)
                    await connection.close(KEEPALIVE_TIMEOUT_CODE, "keepalive ping timeout")
                    break

                try:
                    pong_waiter = await connection.ping()
                except ConnectionClosed:
                    break
                pong_waiter.add_done_callback(functools.partial(_log_pong, channel_name))
        finally:
            if self._tasks.get(connection) is asyncio.current_task():
                del self._tasks[connection]


def _log_pong(channel_name: str, pong_waiter: asyncio.Future) -> None:
    if pong_waiter.cancelled() or pong_waiter.exception() is not None:
        return
    logger.debug("Pong received, channel: %s", channel_name)
