"""
FLEETWATCH Logging Configuration

Centralized logging setup for the alert engine:
- Console output on stdout
- Optional rotating file handler with size limits
- Per-service log level configuration

Usage:
    from fleetwatch.logging_config import setup_logging, get_logger

    setup_logging(log_level="INFO", log_file="fleetwatch.log")

    logger = get_logger(__name__)
    logger.info("Modem token refreshed")
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

# Module loggers created with logging.getLogger("FLEETWATCH.<Area>") share
# handlers with this namespace as well.
ROOT_NAMESPACES = ("fleetwatch", "FLEETWATCH")

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _resolve_level(level: str) -> int:
    return LOG_LEVELS.get(level.upper(), logging.INFO)


def setup_logging(
    log_level: str = DEFAULT_LOG_LEVEL,
    log_file: Optional[str | Path] = None,
) -> None:
    """Configure logging for the FLEETWATCH application.

    Should be called once at startup; calling it again replaces the
    handlers, which is how the CLI applies the level from the config file
    after the command-line defaults.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a log file; enables size-based rotation.
    """
    level = _resolve_level(log_level)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT, DEFAULT_DATE_FORMAT)

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        file_path = Path(log_file)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=DEFAULT_MAX_BYTES,
            backupCount=DEFAULT_BACKUP_COUNT,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for namespace in ROOT_NAMESPACES:
        root_logger = logging.getLogger(namespace)
        root_logger.setLevel(level)
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        for handler in handlers:
            root_logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the fleetwatch namespace.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured logger instance
    """
    if not name.startswith("fleetwatch"):
        name = f"fleetwatch.{name}"
    return logging.getLogger(name)


def set_service_level(service_name: str, level: str) -> None:
    """Set log level for a specific service.

    Example:
        set_service_level("sms", "DEBUG")  # Verbose modem traffic
    """
    logger = logging.getLogger(f"fleetwatch.services.{service_name}")
    logger.setLevel(_resolve_level(level))
