"""Logging setup for the backend process."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_HANDLER_NAME = "finance_tracker"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a single stream handler to the ``finance_tracker`` logger.

    Safe to call more than once; the level is updated and the handler is not
    duplicated.
    """
    root = logging.getLogger("finance_tracker")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)
    if not any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    return root
