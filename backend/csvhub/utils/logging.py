"""
Logging helpers shared by every csvhub module.

Modules grab a named logger with ``get_logger(__name__)``; the application entry points
(FastAPI lifespan, CLI) call ``setup_logging`` once to install handlers.
"""

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_ROOT_LOGGER_NAME = "csvhub"
_configured = False


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger namespaced under the ``csvhub`` root logger.

    Args:
        name: Module or component name (``__name__`` or a short label)

    Returns:
        Configured logger instance
    """
    if name == _ROOT_LOGGER_NAME or name.startswith(f"{_ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_LOGGER_NAME}.{name}")


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Install console (and optional file) handlers on the ``csvhub`` root logger.

    Safe to call more than once; only the level is updated on later calls.
    """
    global _configured

    root = logging.getLogger(_ROOT_LOGGER_NAME)
    root.setLevel(level.upper())

    if _configured:
        return

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.propagate = False
    _configured = True
