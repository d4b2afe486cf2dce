"""
Logging configuration for the Mantis MCP server.

Everything logs through the ``mantis_mcp`` package logger. Console output goes
to stderr because stdout carries the STDIO transport. API keys and
Authorization headers are never logged.
"""

import logging
import os
from datetime import datetime

from .config import Settings

PACKAGE_LOGGER = "mantis_mcp"

# Format: 2024-01-27 10:30:45 - mantis_mcp.gateway - INFO - Message here
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _dated_log_path(log_dir: str, base_name: str) -> str:
    # mantis-mcp-server.2024-01-27.log
    log_date = datetime.now().strftime("%Y-%m-%d")
    return os.path.join(log_dir, f"{base_name}.{log_date}.log")


def setup_logging(settings: Settings) -> logging.Logger:
    """
    Configure the package logger from settings.

    Safe to call more than once: previously attached handlers are replaced.

    Returns:
        logging.Logger: the configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, settings.log_level, logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    log_formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(log_formatter)
    logger.addHandler(console_handler)

    if settings.enable_file_logging:
        try:
            os.makedirs(settings.log_dir, exist_ok=True)
        except OSError as e:
            logger.warning(f"Unable to create log directory {settings.log_dir}, file logging disabled: {e}")
        else:
            combined_handler = logging.FileHandler(_dated_log_path(settings.log_dir, "mantis-mcp-server"))
            combined_handler.setLevel(logging.DEBUG)
            combined_handler.setFormatter(log_formatter)
            logger.addHandler(combined_handler)

            # Errors also go to their own file
            error_handler = logging.FileHandler(_dated_log_path(settings.log_dir, "mantis-mcp-server-error"))
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(log_formatter)
            logger.addHandler(error_handler)
            logger.info(f"File logging enabled: {settings.log_dir}")

    # The requests library logs full request details at DEBUG level,
    # including the Authorization header
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logger.info(f"Logging initialized at {settings.log_level} level")
    return logger
