"""
Channel based WebSocket relay

Connections subscribe to a channel through the URL path and every message
is rebroadcast to the other members of that channel, or to every channel
for members of the reserved ``global`` channel.
"""

from .registry import GLOBAL_CHANNEL, ChannelRegistry
from .router import MessageRouter
from .heartbeat import HeartbeatMonitor
from .shutdown import ShutdownCoordinator, ShutdownState
from .ws_server import RelayServer, run_relay

__version__ = '0.1.0'
__all__ = [
    'GLOBAL_CHANNEL',
    'ChannelRegistry',
    'MessageRouter',
    'HeartbeatMonitor',
    'ShutdownCoordinator',
    'ShutdownState',
    'RelayServer',
    'run_relay',
]
