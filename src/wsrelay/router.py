import logging

from websockets.asyncio.server import ServerConnection

from .envelope import (
    KNOWN_SENDER_TYPES,
    MalformedMessage,
    MessageKind,
    classify,
    dump_envelope,
    parse_envelope,
    sender_type,
    sender_uuid,
)
from .registry import GLOBAL_CHANNEL, ChannelRegistry


logger = logging.getLogger(__name__)

_KIND_LOG_LINES = {
    MessageKind.LIVE_HELLO: "Live view joined, UUID: %s, channel: %s",
    MessageKind.LIVE_CLOSE: "Live view left, UUID: %s, channel: %s",
    MessageKind.HISTORY_HELLO: "History browser joined, UUID: %s, channel: %s",
    MessageKind.HISTORY_CLOSE: "History browser left, UUID: %s, channel: %s",
    MessageKind.SERVER_PING: "Editor joined, UUID: %s, channel: %s",
}


class MessageRouter:
    """Parses inbound frames and fans them out through the registry."""

    def __init__(self, registry: ChannelRegistry):
        self.registry = registry

    def route(self, connection: ServerConnection, raw_message: str | bytes) -> int:
        """Relay one frame from ``connection``. Returns the number of recipients."""
        channel_name = self.registry.channel_of(connection)
        if channel_name is None:
            logger.debug("Dropping message from a connection that already left")
            return 0

        logger.debug("Received message, channel: %s, message: %s", channel_name, raw_message)
        try:
            envelope = parse_envelope(raw_message)
        except MalformedMessage as e:
            logger.warning("Dropping malformed message (%s): %s", e, raw_message)
            return 0

        self.log_kind(envelope, channel_name, raw_message)

        payload = dump_envelope(envelope)
        if channel_name == GLOBAL_CHANNEL:
            return self.registry.broadcast_global(payload, exclude=connection)
        return self.registry.broadcast(channel_name, payload, exclude=connection)

    @staticmethod
    def log_kind(envelope: dict, channel_name: str, raw_message) -> MessageKind:
        kind = classify(envelope)
        from_type = sender_type(envelope)
        if kind is not MessageKind.UNCLASSIFIED:
            logger.info(_KIND_LOG_LINES[kind], sender_uuid(envelope), channel_name)
        elif isinstance(from_type, str) and from_type in KNOWN_SENDER_TYPES:
            logger.debug("Unclassified %s message, action: %s, channel: %s",
                         from_type, envelope.get("action"), channel_name)
        else:
            logger.warning("Message of undefined type: %s, channel: %s, raw: %s",
                           from_type, channel_name, raw_message)
        return kind
