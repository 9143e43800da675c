#!/usr/bin/python
"""Entry point: ``wsrelay [--config server_config.json]``."""

import argparse
import asyncio
import logging
import sys

from .config import DEFAULT_CONFIG_FILE, ConfigError, ensure_root, load_config
from .log_setup import setup_logging
from .ws_server import run_relay


logger = logging.getLogger("wsrelay")


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Channel based WebSocket relay with a static file server")
    parser.add_argument(
        "--config", type=str, default=DEFAULT_CONFIG_FILE,
        help=f"Path to the JSON config file (default: {DEFAULT_CONFIG_FILE})",
    )
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config.logging)
    logger.debug("Static file root: %s", config.root)
    if ensure_root(config):
        logger.warning("Directory did not exist, created: %s", config.root)

    sys.exit(asyncio.run(run_relay(config)))


if __name__ == "__main__":
    main()
