# dispatch/core/logging.py
from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


def configure_logging(level: str | int = "INFO") -> None:
    """Install one stream handler on the ``dispatch`` logger. Safe to call twice."""
    global _configured

    root = logging.getLogger("dispatch")
    root.setLevel(level if isinstance(level, int) else level.upper())
    if _configured:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _configured = True
