"""
WebSocket side of the relay.

Connections are accepted on ``<base path>`` (the global channel) or
``<base path>/<channel>``; any other path is answered with 404 before a
connection ever reaches the registry. Each accepted connection joins its
channel, gets a heartbeat, and has every frame it sends routed to the rest
of the channel until it closes.
"""

import asyncio
import ipaddress
import logging
import signal
import socket
from http import HTTPStatus
from typing import Optional
from urllib.parse import urlsplit

import psutil
from websockets import ConnectionClosedError
from websockets.asyncio.server import Server, ServerConnection, serve as ws_serve
from websockets.http11 import Request, Response

from .config import RelayConfig
from .heartbeat import HeartbeatMonitor
from .http_server import HTTPListener, make_http_server
from .registry import GLOBAL_CHANNEL, ChannelRegistry
from .router import MessageRouter
from .shutdown import ShutdownCoordinator


logger = logging.getLogger(__name__)


def channel_from_path(base_path: str, request_path: str) -> Optional[str]:
    """Channel name for an upgrade request, or None if the path is not accepted.

    ``base_path`` must not end with a slash."""
    path = urlsplit(request_path).path
    if path.endswith("/"):
        path = path[:-1]

    if path == base_path:
        return GLOBAL_CHANNEL

    prefix = base_path + "/"
    if path.startswith(prefix):
        channel_name = path[len(prefix):]
        if channel_name and "/" not in channel_name:
            return channel_name
    return None


def local_addresses() -> list[str]:
    """IPv4 and IPv6 addresses of every non-loopback interface, for the startup banner."""
    addresses = []
    for interface_addresses in psutil.net_if_addrs().values():
        for snic in interface_addresses:
            if snic.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            # link-local IPv6 comes with a "%iface" zone suffix
            address = snic.address.split("%", 1)[0]
            if ipaddress.ip_address(address).is_loopback or address in addresses:
                continue
            addresses.append(address)
    return addresses


def format_host(host: str) -> str:
    return f"[{host}]" if ":" in host else host


class RelayServer:
    def __init__(self, config: RelayConfig, registry: Optional[ChannelRegistry] = None):
        self.config = config
        self.ws_path = config.ws_path.rstrip("/")
        self.registry = registry if registry is not None else ChannelRegistry()
        self.router = MessageRouter(self.registry)
        self.heartbeat = HeartbeatMonitor(config.heartbeat.interval, config.heartbeat.max_missed)
        self.listeners: list = []
        self.ws_servers: list[Server] = []
        self.shutdown = ShutdownCoordinator(
            self.registry,
            self.listeners,
            grace_period=config.shutdown.grace_period,
            hard_timeout=config.shutdown.hard_timeout,
            heartbeat=self.heartbeat,
        )

    def process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        if channel_from_path(self.ws_path, request.path) is None:
            logger.warning("Rejected WebSocket connection: invalid path %s", request.path)
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    async def handler(self, connection: ServerConnection) -> None:
        channel_name = channel_from_path(self.ws_path, connection.request.path)
        logger.info("New WebSocket connection, client address: %s, channel: %s",
                    connection.remote_address, channel_name)

        self.registry.join(channel_name, connection)
        self.heartbeat.start(connection, channel_name)
        try:
            async for message in connection:
                try:
                    self.router.route(connection, message)
                except Exception:
                    logger.exception("Error while handling WebSocket message, channel: %s, message: %s",
                                     channel_name, message)
        except ConnectionClosedError as e:
            logger.warning("WebSocket error, channel: %s: %s", channel_name, e)
        finally:
            self.heartbeat.stop(connection)
            self.registry.leave(connection)
            logger.info("WebSocket client disconnected, channel: %s", channel_name)

    async def resolve_hosts(self) -> list[str]:
        """Addresses to listen on. Raises `socket.gaierror` if the host can't be resolved."""
        if self.config.host.lower() == "localhost":
            hosts = ["0.0.0.0"]
            if self.config.ipv6_support:
                hosts.append("::")
            return hosts

        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(self.config.host, None, type=socket.SOCK_STREAM)
        hosts = []
        for info in infos:
            address = info[4][0]
            if address in hosts:
                continue
            if ":" in address and not self.config.ipv6_support:
                continue
            hosts.append(address)
        return hosts

    async def start(self, serve_http: bool = True) -> int:
        """Bind every address. Returns the number of WebSocket listeners bound."""
        for host in await self.resolve_hosts():
            try:
                server = await ws_serve(
                    self.handler,
                    host,
                    self.config.ws_port,
                    process_request=self.process_request,
                    ping_interval=None,
                    max_size=self.config.max_payload,
                )
            except OSError as e:
                logger.error("Could not listen on %s (WebSocket): %s", host, e)
            else:
                self.ws_servers.append(server)
                self.listeners.append(server)
                logger.info("WebSocket listening on %s port %d", host, self.bound_port(server))

            if not serve_http:
                continue
            try:
                http_listener = HTTPListener(make_http_server(self.config, host))
            except OSError as e:
                logger.error("Could not listen on %s (HTTP): %s", host, e)
            else:
                http_listener.start()
                self.listeners.append(http_listener)
                logger.info("HTTP listening on %s port %d", host, http_listener.address[1])

        return len(self.ws_servers)

    @staticmethod
    def bound_port(server: Server) -> int:
        return server.sockets[0].getsockname()[1]

    def log_addresses(self) -> None:
        logger.info("Static file root: %s", self.config.root)
        if self.config.host.lower() == "localhost":
            hosts = local_addresses() or ["localhost"]
        else:
            hosts = [self.config.host]

        for host in hosts:
            host = format_host(host)
            logger.info("Address: http://%s:%d/", host, self.config.port)
            logger.info("Save API: http://%s:%d%s", host, self.config.port, self.config.save_endpoint)
            logger.info("WebSocket: ws://%s:%d%s", host, self.config.ws_port, self.config.ws_path)

    async def close_listeners(self) -> None:
        for listener in self.listeners:
            listener.close()
        await asyncio.gather(*(listener.wait_closed() for listener in self.listeners))

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.shutdown.trigger)
            except NotImplementedError:
                # Windows
                pass


async def run_relay(config: RelayConfig) -> int:
    """Serve until a termination signal has been handled. Returns the exit code."""
    relay = RelayServer(config)
    try:
        bound = await relay.start()
    except socket.gaierror as e:
        logger.error("DNS resolution error for %s: %s", config.host, e)
        return 1

    if not bound:
        logger.error("No address available to listen on")
        await relay.close_listeners()
        return 1

    relay.log_addresses()
    relay.install_signal_handlers()
    return await relay.shutdown.wait()
