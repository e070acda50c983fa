# secretchat/core/logging.py

import logging
import sys
from typing import Optional


DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Per-message timers fire constantly under load
CHATTY_LOGGERS = ("secretchat.services.scheduler",)


def setup_logging(level_name: Optional[str] = None) -> None:
    """
    Configure application-wide logging for the relay.

    - Root level comes from `level_name` (Settings.LOG_LEVEL), default INFO
    - Logs go to stdout so container runtimes pick them up
    - Uvicorn access logs are kept at WARNING: each server-push action is
      its own POST and would otherwise drown the room events
    """
    level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)

    # If logging is already configured (e.g. by Uvicorn), don't re-add handlers
    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level)
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Module logger; call setup_logging() once before use."""
    return logging.getLogger(name)
