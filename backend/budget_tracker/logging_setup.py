"""Package-wide logging.

Modules log through ``get_logger(__name__)``; only entry points (the app
factory, operator scripts) call ``configure_logging``.
"""

import logging
import sys

PACKAGE_LOGGER = "budget_tracker"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logging.getLogger(PACKAGE_LOGGER).addHandler(logging.NullHandler())


def configure_logging(level: str = "INFO") -> None:
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    resolved = logging.getLevelName(level.strip().upper())
    package_logger.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
    if any(isinstance(h, logging.StreamHandler) for h in package_logger.handlers):
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
    package_logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
