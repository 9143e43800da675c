import logging

from rich.logging import RichHandler

from .config import LoggingConfig


LOG_FORMAT = "%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# handshake failures and rejected upgrades are logged by the library
LOGGER_NAMES = ("wsrelay", "websockets")


def setup_logging(config: LoggingConfig) -> logging.Logger:
    """Configure the relay and websockets loggers from the logging section of the config."""
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = []
    if config.console_output:
        # colored level names on the console, plain lines in the file
        console = RichHandler(show_path=False, log_time_format=DATE_FORMAT)
        console.setFormatter(logging.Formatter("%(message)s"))
        handlers.append(console)
    if config.file_output:
        file_handler = logging.FileHandler(config.file_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        handlers.append(file_handler)
    if not handlers:
        handlers.append(logging.NullHandler())

    for name in LOGGER_NAMES:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.propagate = False
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            if handler not in handlers:
                handler.close()
        for handler in handlers:
            logger.addHandler(handler)

    return logging.getLogger("wsrelay")
