"""Process-wide logging setup."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_HANDLER_NAME = "bizdash-stream"


def configure_logging(level: str = "INFO") -> None:
    """Attach one stdout handler to the ``bizdash`` logger tree.

    Safe to call repeatedly (the app factory runs once per test client).
    """

    numeric = getattr(logging, level.upper(), logging.INFO)
    package_logger = logging.getLogger("bizdash")
    package_logger.setLevel(numeric)

    if any(handler.get_name() == _HANDLER_NAME for handler in package_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    package_logger.addHandler(handler)
