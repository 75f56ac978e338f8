"""Logging configuration for devkb.

Usage in other modules:
    import logging
    log = logging.getLogger(__name__)

The log level can be configured via the DEVKB_LOG_LEVEL environment variable
(DEBUG, INFO, WARNING, ERROR, CRITICAL). INFO is the default.
"""

import logging
import os
import sys


def configure_logging(level_name: str | None = None) -> None:
    """Configure logging for the devkb package.

    Call this once at application startup (cli.py or the webapp entry point).
    Subsequent calls only adjust the level.

    Args:
        level_name: Explicit level name. Falls back to DEVKB_LOG_LEVEL, then INFO.
    """
    root_logger = logging.getLogger("devkb")

    level_name = (level_name or os.environ.get("DEVKB_LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    if root_logger.handlers:
        root_logger.setLevel(level)
        for handler in root_logger.handlers:
            handler.setLevel(level)
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    formatter = logging.Formatter(
        fmt="[%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Prevent propagation to root logger (avoids duplicate messages)
    root_logger.propagate = False
