"""
Logging Configuration Module.

This module provides centralized logging configuration for robit.
It sets up console (and optionally file) logging with per-module levels.

Features:
- Configurable log levels per module
- Console and file logging
- Simple, detailed and JSON-shaped line formats
- Quiet defaults for noisy third-party libraries

``setup_logging`` is called by the command line entry point. Library users
embedding the engine keep control of their own logging configuration.
"""

import logging
from pathlib import Path
from typing import Optional

from robit.core.config import settings

LOG_LEVEL = settings.log_level.upper()
LOG_FORMAT = settings.log_format
LOG_FILE_DIR = settings.log_file_dir
ENABLE_FILE_LOGGING = settings.enable_file_logging


# Define log formats
SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s"

JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"module": "%(filename)s", "function": "%(funcName)s", "line": %(lineno)d, '
    '"message": "%(message)s"}'
)


# Module-specific log levels
MODULE_LOG_LEVELS = {
    # Core modules
    "robit.agent_core": "DEBUG",
    "robit.agent_core.runtime": "DEBUG",
    "robit.agent_core.policy": "DEBUG",
    "robit.agent_core.approvals": "DEBUG",
    "robit.agent_core.actions": "DEBUG",
    "robit.agent_core.repos": "INFO",
    "robit.agent_core.service": "DEBUG",
    # Adapters
    "robit.adapters": "INFO",
    # Third-party libraries (reduce noise)
    "sqlalchemy": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "sqlalchemy.pool": "WARNING",
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "asyncio": "WARNING",
    "aiosqlite": "WARNING",
}


def _format_for(name: str) -> str:
    if name == "json":
        return JSON_FORMAT
    if name == "simple":
        return SIMPLE_FORMAT
    return DETAILED_FORMAT


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    enable_file: Optional[bool] = None,
) -> None:
    """
    Configure logging for the process.

    Args:
        log_level: Override default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Override default format (simple, detailed, json)
        enable_file: Whether to enable file logging (defaults to ROBIT_ENABLE_FILE_LOGGING)
    """
    level = (log_level or LOG_LEVEL).upper()
    fmt = log_format or LOG_FORMAT
    file_logging = ENABLE_FILE_LOGGING if enable_file is None else enable_file

    formatter = logging.Formatter(_format_for(fmt), datefmt="%Y-%m-%d %H:%M:%S")

    # Capture all levels, filter at handler level
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if file_logging:
        Path(LOG_FILE_DIR).mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(Path(LOG_FILE_DIR) / "robit.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for module_name, module_level in MODULE_LOG_LEVELS.items():
        logging.getLogger(module_name).setLevel(module_level)

    root_logger.info(f"Logging configured: level={level}, format={fmt}, file_logging={file_logging}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The module name (typically __name__)

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)
