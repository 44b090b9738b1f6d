"""
Logging for the forwarders and the control API.

Each forwarder module logs under its own name so `logging.debug_modules`
can raise a single relay to DEBUG. Datagram payloads are previewed as hex.
"""

import logging
import sys
from typing import Optional


def format_hex(data: bytes, limit: int = 32) -> str:
    """Format the head of a payload as hex for debug logging."""
    head = " ".join(f"{b:02x}" for b in data[:limit])
    if len(data) > limit:
        head += " ..."
    return head


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__ or module name)
        level: Optional log level override

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if level is not None:
        logger.setLevel(level)

    return logger


def setup_logging(level: int = logging.INFO, debug_modules: Optional[list[str]] = None) -> None:
    """
    Configure root logging for the application.

    Args:
        level: Default log level for the application
        debug_modules: List of module names to set to DEBUG level
    """
    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    if debug_modules:
        for module in debug_modules:
            logging.getLogger(module).setLevel(logging.DEBUG)


def parse_level(name: str) -> int:
    """Map a level name such as "debug" to its logging constant, INFO if unknown."""
    return getattr(logging, name.upper(), logging.INFO)

