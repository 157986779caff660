"""
Package logging.

Usage:
    import calibundle.logger
    logger = calibundle.logger.get(__name__)
"""

import logging
import os

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"
ROOT_NAME = "calibundle"


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_NAME)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(os.environ.get("CALIBUNDLE_LOG_LEVEL", "INFO").upper())
    return root


def get(name: str) -> logging.Logger:
    """Get a logger under the calibundle package logger."""
    _configure_root()
    return logging.getLogger(name)
