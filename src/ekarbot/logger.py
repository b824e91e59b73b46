"""
Centralized logging configuration for ekarbot.

All modules log through loguru's global ``logger``; this module only
installs the handlers.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} [{level}] {name}: {message}"

_handler_ids: list = []


def setup_logging(level: str = "INFO", audit_file: Optional[Path] = None) -> None:
    """
    Setup logging configuration for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        audit_file: Optional file that receives only security events
    """
    logger.remove()
    _handler_ids.clear()

    _handler_ids.append(logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT))

    if audit_file is not None:
        _handler_ids.append(
            logger.add(
                audit_file,
                level="INFO",
                format="{time:YYYY-MM-DDTHH:mm:ss.SSSZ} {message}",
                filter=lambda record: record["extra"].get("security_event", False),
                enqueue=True,
            )
        )


def set_log_level(level: str) -> None:
    """
    Change the console log level at runtime.

    Args:
        level: New logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    if _handler_ids:
        logger.remove(_handler_ids[0])
        _handler_ids[0] = logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
    else:
        setup_logging(level)
