"""Logging configuration for the ``bank_ingest`` package.

Entry points (the CLI, a worker process) call :func:`configure_logging` once at
startup; library modules only ever call ``get_logger("bank_ingest.<module>")``.
Until configuration runs, the package logger carries a ``NullHandler`` so
embedding applications see nothing unless they opt in.

Log lines use a compact ``event key=value`` shape, e.g.::

    ingest:record_failed account_id=3 external_id=tx_00009 error=IntegrityError
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PKG_LOGGER_NAME = "bank_ingest"
LEVEL_ENV_VAR = "BANK_INGEST_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_handler: logging.Handler | None = None


def resolve_level(level: int | str | None) -> int:
    """Translate ``level`` (int, numeric string or level name) to a logging level.

    ``None`` falls back to ``$BANK_INGEST_LOG_LEVEL`` and then ``INFO``. Unknown
    names also resolve to ``INFO`` rather than failing process startup.
    """

    if level is None:
        level = os.getenv(LEVEL_ENV_VAR) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    numeric = logging.getLevelName(name)
    return numeric if isinstance(numeric, int) else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> logging.Logger:
    """Attach a single ``StreamHandler`` to the package logger.

    Calling again replaces the handler (and level) instead of stacking a second
    one, so repeated CLI invocations inside one interpreter stay quiet.
    """

    global _handler
    logger = logging.getLogger(PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler) or h is _handler:
            logger.removeHandler(h)

    numeric = resolve_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(numeric)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))

    logger.setLevel(numeric)
    logger.addHandler(handler)
    logger.propagate = False
    _handler = handler
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return ``name``'s logger, giving the package logger a ``NullHandler`` if unconfigured."""

    pkg_logger = logging.getLogger(PKG_LOGGER_NAME)
    if _handler is None and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level"]
