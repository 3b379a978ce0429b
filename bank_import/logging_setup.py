"""Logging for the ``bank_import`` package.

Library modules only ever call ``get_logger("bank_import.<module>")``; they
never attach handlers. Entry points (the CLI, a host application's startup)
call ``configure_logging`` once to install a single stderr handler on the
``bank_import`` logger.

Messages use a flat ``area:event key=value`` form, e.g.
``csv:skip_row line=7 reason=shape fields=3 expected=4``, so that warnings
about skipped rows and accounts can be grepped out of a batch run.

The level comes from the ``level`` argument, else ``BANK_IMPORT_LOG_LEVEL``,
else ``INFO``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "bank_import"
_LEVEL_ENV = "BANK_IMPORT_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_handler: logging.Handler | None = None


def resolve_level(level: int | str | None = None) -> int:
    """Return a numeric level for ``level`` (name, digits or int).

    Unknown names fall through to the environment and then to ``INFO``.
    """

    if isinstance(level, int):
        return level
    if level is not None:
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = logging.getLevelName(name)
        if isinstance(numeric, int):
            return numeric
    env_val = os.getenv(_LEVEL_ENV)
    if env_val and env_val != level:
        return resolve_level(env_val)
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Install the package handler, or adjust its level when already installed."""

    global _handler
    logger = logging.getLogger(_PKG_LOGGER_NAME)
    numeric = resolve_level(level)

    if _handler is None:
        for h in list(logger.handlers):
            if isinstance(h, logging.NullHandler):
                logger.removeHandler(h)
        _handler = logging.StreamHandler(stream)
        _handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
        logger.addHandler(_handler)
        logger.propagate = False

    _handler.setLevel(numeric)
    logger.setLevel(numeric)


def get_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(name)``.

    Until ``configure_logging`` runs, the package logger carries a
    ``NullHandler`` so library use stays silent.
    """

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if _handler is None and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level"]
