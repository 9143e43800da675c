"""
Orderly shutdown.

On a termination signal every peer is told the server is going away, gets a
grace period to react, and is then disconnected before the listeners close.
A hard timeout bounds the whole drain so a hung socket can't keep the
process alive.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from .envelope import dump_envelope, make_close_notices
from .heartbeat import HeartbeatMonitor
from .registry import ChannelRegistry, is_open


logger = logging.getLogger(__name__)

GOING_AWAY_CODE = 1001
GOING_AWAY_REASON = "Server is shutting down"


class ShutdownState(Enum):
    RUNNING = "running"
    ANNOUNCING = "announcing"
    DRAINING = "draining"
    TERMINATED = "terminated"


class ShutdownCoordinator:
    """Drives RUNNING -> ANNOUNCING -> DRAINING -> TERMINATED.

    ``listeners`` are objects with ``close()`` and ``await wait_closed()``,
    like `websockets.asyncio.server.Server`. The list is read when draining,
    so listeners bound after construction can be appended to it.
    """

    def __init__(self, registry: ChannelRegistry, listeners: Optional[list] = None,
                 grace_period: float = 3.0, hard_timeout: float = 5.0,
                 heartbeat: Optional[HeartbeatMonitor] = None):
        self.registry = registry
        self.listeners = listeners if listeners is not None else []
        self.grace_period = grace_period
        self.hard_timeout = hard_timeout
        self.heartbeat = heartbeat
        self.state = ShutdownState.RUNNING
        self.exit_code: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._triggered = asyncio.Event()

    def trigger(self) -> Optional[asyncio.Task]:
        """Start shutting down in the background. Meant for signal handlers."""
        if self.state is not ShutdownState.RUNNING:
            logger.info("Shutdown already in progress (%s)", self.state.value)
            return None
        self._task = asyncio.create_task(self.run())
        self._triggered.set()
        return self._task

    async def wait(self) -> int:
        """Wait for a triggered shutdown to finish and return the exit code."""
        await self._triggered.wait()
        return await self._task

    async def run(self) -> int:
        if self.state is not ShutdownState.RUNNING:
            raise RuntimeError(f"Shutdown already {self.state.value}")

        self.state = ShutdownState.ANNOUNCING
        logger.info("Server is shutting down...")
        notified = self.announce()
        logger.debug("Close notices sent to %d connections", notified)

        await asyncio.sleep(self.grace_period)

        self.state = ShutdownState.DRAINING
        try:
            await asyncio.wait_for(self._drain(), self.hard_timeout)
        except asyncio.TimeoutError:
            logger.error("Forcing server termination (timeout)")
            self.exit_code = 1
        else:
            logger.info("All servers closed")
            self.exit_code = 0

        self.state = ShutdownState.TERMINATED
        return self.exit_code

    def announce(self) -> int:
        """Send the close notices to every open connection. Returns the recipient count."""
        recipients = 0
        for notice in make_close_notices():
            recipients = self.registry.broadcast_global(dump_envelope(notice))
        return recipients

    async def _drain(self) -> None:
        if self.heartbeat is not None:
            self.heartbeat.stop_all()

        closing = [
            asyncio.create_task(connection.close(GOING_AWAY_CODE, GOING_AWAY_REASON))
            for connection in self.registry.connections()
            if is_open(connection)
        ]
        for listener in self.listeners:
            listener.close()

        await asyncio.gather(*closing, return_exceptions=True)
        await asyncio.gather(*(listener.wait_closed() for listener in self.listeners))
