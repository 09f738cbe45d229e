"""
Mnemo - Logging
================
Logger factory shared by every Mnemo module.

Each subsystem prefixes its messages with a bracketed tag so a mixed
stream can be grepped per component:

  ``[POOL]`` worker pool   ``[EMBED]`` generator   ``[STORE]`` LanceDB
  ``[QUEUE]`` vectorization queue   ``[CONTEXT]`` enhancer   ``[ENGINE]`` facade

The default level comes from ``settings.log_level``: ``LOG_LEVEL`` when
set, otherwise DEBUG in ``dev`` and WARNING in ``prod`` (degradations
and errors only).  ``set_level`` re-levels every logger handed out so
far, which is how ``setup_db --verbose`` turns on debug output after the
modules have been imported.

Usage:
    from mnemo.src.utils.logger import get_logger
    logger = get_logger(__name__)
    logger.info("[QUEUE] Drained %d job(s)", n)
"""

import logging
import sys

from mnemo.config.settings import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_loggers: dict[str, logging.Logger] = {}
_level_override: int | None = None


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """
    Return the named logger, configuring it on first request.

    Args:
        name:  Typically ``__name__`` of the calling module.
        level: Explicit level; defaults to the ``set_level`` override,
               then ``settings.log_level``.

    Returns:
        A ``logging.Logger`` with one stdout handler and propagation off.
    """
    logger = logging.getLogger(name)
    if level is not None:
        resolved_level = level
    elif _level_override is not None:
        resolved_level = _level_override
    else:
        resolved_level = settings.log_level

    if not logger.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(console_handler)
        logger.propagate = False
        _apply_level(logger, resolved_level)

    _loggers[name] = logger
    return logger


def set_level(level: int) -> None:
    """Re-level every logger returned by ``get_logger``, now and later."""
    global _level_override
    _level_override = level
    for logger in _loggers.values():
        _apply_level(logger, level)


def _apply_level(logger: logging.Logger, level: int) -> None:
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
