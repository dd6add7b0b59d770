"""Logging setup for the session core (one format, configured once)."""

import logging
import os

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Chatty third-party loggers
_QUIET_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "httpx")

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once; later calls only adjust the level."""
    global _configured
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    resolved = getattr(logging, level_name, logging.INFO)

    if _configured:
        logging.getLogger().setLevel(resolved)
        return

    logging.basicConfig(level=resolved, format=_FORMAT)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
