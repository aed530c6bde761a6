"""Logging setup for the Feedloop API.

Call ``configure_logging()`` once at startup; every module then does::

    import logging
    logger = logging.getLogger(__name__)
"""

import logging
import sys

from feedloop.core.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    global _configured

    root = logging.getLogger()
    root.setLevel(level or LOG_LEVEL)

    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    # uvicorn access logs are noisy at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    _configured = True
