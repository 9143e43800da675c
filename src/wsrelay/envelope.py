import json
import math
import time
import uuid
from enum import Enum


SERVER_NAME = "@__ws_server"
SERVER_TYPE = "server"

ACTION_WEBSOCKET_CLOSE = "websocket_close"
ACTION_BROADCAST_CLOSE = "broadcast_close"

KNOWN_SENDER_TYPES = {"live", "history", "server"}


class MalformedMessage(Exception): ...


class MessageKind(Enum):
    """Known (sender type, action) pairs. Only used for logging."""
    LIVE_HELLO = "live.hello"
    LIVE_CLOSE = "live.close"
    HISTORY_HELLO = "history.hello"
    HISTORY_CLOSE = "history.close"
    SERVER_PING = "server.ping"
    UNCLASSIFIED = "unclassified"


_KINDS = {
    ("live", "hello"): MessageKind.LIVE_HELLO,
    ("live", "close"): MessageKind.LIVE_CLOSE,
    ("history", "hello"): MessageKind.HISTORY_HELLO,
    ("history", "close"): MessageKind.HISTORY_CLOSE,
    ("server", "ping"): MessageKind.SERVER_PING,
}


def parse_envelope(raw: str | bytes) -> dict:
    """Parse a received frame into an envelope dict.

    Raises `MalformedMessage` if the frame is not a JSON object or lacks
    ``from`` or ``data`` (absent, null, false, zero or empty string). Any
    other field, known or not, is kept as is."""
    try:
        envelope = json.loads(raw)
    except ValueError as e:
        raise MalformedMessage(f"not valid JSON ({e})") from e

    if not isinstance(envelope, dict):
        raise MalformedMessage("not a JSON object")
    if _missing(envelope.get("from")):
        raise MalformedMessage("missing 'from'")
    if _missing(envelope.get("data")):
        raise MalformedMessage("missing 'data'")
    return envelope


def _missing(value) -> bool:
    """Empty scalars count as missing; containers, even empty ones, do not."""
    if isinstance(value, (dict, list)):
        return False
    if isinstance(value, float) and math.isnan(value):
        return True
    return not value


def dump_envelope(envelope: dict) -> str:
    return json.dumps(envelope, ensure_ascii=False, separators=(",", ":"))


def sender_type(envelope: dict):
    sender = envelope.get("from")
    if isinstance(sender, dict):
        return sender.get("type")
    return None


def sender_uuid(envelope: dict):
    sender = envelope.get("from")
    if isinstance(sender, dict):
        return sender.get("uuid")
    return None


def classify(envelope: dict) -> MessageKind:
    # only untargeted messages announce a join/leave
    if "target" in envelope:
        return MessageKind.UNCLASSIFIED
    key = (sender_type(envelope), envelope.get("action"))
    try:
        return _KINDS.get(key, MessageKind.UNCLASSIFIED)
    except TypeError:  # unhashable type/action values
        return MessageKind.UNCLASSIFIED


def new_session_id() -> str:
    return "server-" + str(uuid.uuid4())


def make_server_envelope(action: str, session_id: str) -> dict:
    return {
        "action": action,
        "from": {
            "name": SERVER_NAME,
            "uuid": session_id,
            "type": SERVER_TYPE,
            "timestamp": int(time.time() * 1000),
        },
        "data": {},
    }


def make_close_notices(session_id: str | None = None) -> list[dict]:
    """The two envelopes announced to every peer when the server shuts down."""
    if session_id is None:
        session_id = new_session_id()
    return [
        make_server_envelope(ACTION_WEBSOCKET_CLOSE, session_id),
        make_server_envelope(ACTION_BROADCAST_CLOSE, session_id),
    ]
