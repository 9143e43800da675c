"""Configuration loading for the relay.

The on-disk format is the JSON ``server_config.json`` used by the web
frontend, so keys stay camelCase there and are mapped onto snake_case
dataclass fields here.
"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path


DEFAULT_CONFIG_FILE = "server_config.json"


class ConfigError(Exception): ...


@dataclass
class LoggingConfig:
    level: str = "info"
    console_output: bool = True
    file_output: bool = False
    file_path: str = "server.log"


@dataclass
class HeartbeatConfig:
    interval: float = 30.0
    # 0 disables reclamation of connections that stop answering pings
    max_missed: int = 0


@dataclass
class ShutdownConfig:
    grace_period: float = 3.0
    hard_timeout: float = 5.0


@dataclass
class RelayConfig:
    host: str = "localhost"
    port: int = 8000
    ws_port: int = 8982
    ipv6_support: bool = False
    ws_path: str = "/ws"
    root: str = "static"
    index: str = "index.html"
    save_endpoint: str = "/api/save"
    origin: bool = True
    # largest accepted WebSocket message, in bytes
    max_payload: int = 100 * 1024 * 1024
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)
    shutdown: ShutdownConfig = field(default_factory=ShutdownConfig)


# on-disk key -> dataclass field
_KEY_MAP = {
    "wsPort": "ws_port",
    "ipv6Support": "ipv6_support",
    "WebSocket": "ws_path",
    "saveEndpoint": "save_endpoint",
    "maxPayload": "max_payload",
    "consoleOutput": "console_output",
    "fileOutput": "file_output",
    "filePath": "file_path",
    "maxMissed": "max_missed",
    "gracePeriod": "grace_period",
    "hardTimeout": "hard_timeout",
}

_SECTIONS = {
    "logging": LoggingConfig,
    "heartbeat": HeartbeatConfig,
    "shutdown": ShutdownConfig,
}


def _build(cls, data: dict, where: str):
    """Instantiate dataclass ``cls`` from ``data``, checking value types
    against the field defaults. Unknown keys are ignored."""
    if not isinstance(data, dict):
        raise ConfigError(f"'{where}' should be a JSON object")

    defaults = cls()
    kwargs = {}
    valid = {f.name for f in fields(cls)}
    for key, value in data.items():
        name = _KEY_MAP.get(key, key)
        if name not in valid or name in _SECTIONS:
            continue

        expected = type(getattr(defaults, name))
        if expected is float and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        elif expected is int and isinstance(value, bool):
            raise ConfigError(f"'{where}.{key}' should be a number")
        if not isinstance(value, expected):
            raise ConfigError(f"'{where}.{key}' should be of type {expected.__name__}")
        kwargs[name] = value

    return cls(**kwargs)


def config_from_dict(data: dict, base_dir: str | Path = ".") -> RelayConfig:
    """Build a RelayConfig from parsed JSON. Relative ``root`` paths are
    resolved against ``base_dir``."""
    config = _build(RelayConfig, data, "config")
    for section, cls in _SECTIONS.items():
        if section in data:
            setattr(config, section, _build(cls, data[section], section))

    if not os.path.isabs(config.root):
        config.root = os.path.join(os.path.abspath(base_dir), config.root)

    if config.heartbeat.interval <= 0:
        raise ConfigError("'heartbeat.interval' should be positive")
    if config.heartbeat.max_missed < 0:
        raise ConfigError("'heartbeat.maxMissed' should not be negative")
    if not config.ws_path.startswith("/"):
        raise ConfigError("'WebSocket' should start with '/'")
    if config.max_payload <= 0:
        raise ConfigError("'maxPayload' should be positive")

    return config


def load_config(path: str | Path = DEFAULT_CONFIG_FILE) -> RelayConfig:
    """Load a RelayConfig from a JSON file. A missing file gives the defaults."""
    path = Path(path)
    try:
        with open(path, 'r') as file:
            data = json.load(file)
    except FileNotFoundError:
        data = {}
    except ValueError as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Could not read {path}: {e}") from e

    return config_from_dict(data, base_dir=path.parent)


def ensure_root(config: RelayConfig) -> bool:
    """Create the static root directory if missing. Returns True if it was created."""
    if os.path.isdir(config.root):
        return False
    os.makedirs(config.root, exist_ok=True)
    return True
