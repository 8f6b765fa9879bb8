"""
Logging configuration for Pulse command line consumers.

Message bodies go to stdout; log records go to stderr so the two can be
separated in a shell pipeline.
"""

import logging
import sys
from typing import Optional


def setup_logging(
    level: int = logging.INFO,
    app_name: Optional[str] = None,
    force_setup: bool = False,
) -> None:
    """
    Setup console logging for a Pulse consumer process.

    Args:
        level: Logging level (default: INFO)
        app_name: Application name included in every record
        force_setup: Whether to force reconfiguration even if already setup
    """
    # Check if logging has already been configured
    root_logger = logging.getLogger()
    if root_logger.handlers and not force_setup:
        # Logging already configured, just ensure our level is set
        root_logger.setLevel(level)
        return

    # Clear any existing handlers if we're forcing setup
    if force_setup:
        root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(create_formatter(app_name=app_name))
    root_logger.addHandler(console_handler)
    root_logger.setLevel(level)

    # Reduce noise from the AMQP library
    logging.getLogger("amqpstorm").setLevel(max(level, logging.WARNING))


def create_formatter(app_name: Optional[str] = None) -> logging.Formatter:
    """
    Create a standardized formatter, prefixed with the app name when given.

    Args:
        app_name: Application name

    Returns:
        Configured logging formatter
    """
    context_prefix = f"[{app_name}] " if app_name else ""
    return logging.Formatter(
        f"%(asctime)s - {context_prefix}%(name)s - %(levelname)s - %(message)s"
    )
