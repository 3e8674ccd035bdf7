# === FILE: site_snapshot/logger.py ===
"""Project-wide logging configuration for **SiteSnapshot**.

Highlights
----------
* One importable instance :data:`logger`::

      from site_snapshot.logger import logger
      logger.info("Crawl started")
* aiohttp's own loggers (client, server, access) share the project handlers,
  so connection errors and a booted app's tracebacks land in the same log
  file as the crawl.
* :func:`configure` is called twice by the CLI: once with the command-line
  flags, then again with ``log_file`` taken from the loaded
  :class:`~site_snapshot.config.SnapshotConfig` when ``--log-file`` is absent.
"""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Final, List, Optional, Tuple, Union

_DEFAULT_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOGGER_NAME: Final[str] = "SiteSnapshot"

#: third-party loggers that share the project handlers
LIBRARY_LOGGERS: Final[Tuple[str, ...]] = ("aiohttp.client", "aiohttp.server", "aiohttp.access")

_ROTATE_BYTES: Final[int] = 5 * 1024 * 1024
_ROTATE_BACKUPS: Final[int] = 3

_LevelT = Union[int, str]


def _stdout_handler(fmt: str) -> logging.StreamHandler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _file_handler(file: Union[Path, str], fmt: str) -> RotatingFileHandler:
    path = Path(file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(path),
        maxBytes=_ROTATE_BYTES,
        backupCount=_ROTATE_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _install(lg: logging.Logger, handlers: List[logging.Handler], level: _LevelT) -> None:
    for old in list(lg.handlers):
        lg.removeHandler(old)
        old.close()
    for handler in handlers:
        lg.addHandler(handler)
    lg.setLevel(level)
    lg.propagate = False


def configure(
    *,
    level: _LevelT = "INFO",
    log_file: Union[str, Path, None] = None,
    log_format: str = _DEFAULT_FORMAT,
    library_level: _LevelT = logging.WARNING,
) -> logging.Logger:
    """(Re)configure the project logger and the aiohttp loggers.

    Parameters
    ----------
    level
        Level of the ``SiteSnapshot`` logger (e.g. ``"DEBUG"``).
    log_file
        Rotating log file (5 MiB, 3 backups). *None* means console only.
    log_format
        Format string for :class:`logging.Formatter`.
    library_level
        Level for :data:`LIBRARY_LOGGERS`; aiohttp is chatty at DEBUG.
    """
    handlers: List[logging.Handler] = [_stdout_handler(log_format)]
    if log_file is not None:
        handlers.append(_file_handler(log_file, log_format))

    lg = logging.getLogger(LOGGER_NAME)
    _install(lg, handlers, level)
    for name in LIBRARY_LOGGERS:
        _install(logging.getLogger(name), handlers, library_level)
    return lg


def init_logging(level: _LevelT = "INFO", log_file: Union[str, Path, None] = None) -> logging.Logger:
    """Short alias used by the CLI."""
    return configure(level=level, log_file=log_file)


def current_log_file() -> Optional[str]:
    """Path of the active rotating log file, if any."""
    for handler in logging.getLogger(LOGGER_NAME).handlers:
        if isinstance(handler, RotatingFileHandler):
            return handler.baseFilename
    return None


logger: logging.Logger = init_logging()

__all__ = [
    "LIBRARY_LOGGERS",
    "LOGGER_NAME",
    "configure",
    "current_log_file",
    "init_logging",
    "logger",
]
