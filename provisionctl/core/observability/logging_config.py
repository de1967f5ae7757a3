"""
Logging configuration — console and optional file output for a run.

Called once by the CLI group before any command runs. Modules log
through ``logging.getLogger(__name__)``; nothing else configures
handlers.

Console level, first match wins:
    --debug  >  --verbose  >  --quiet  >  PROVISIONCTL_LOG_LEVEL  >  WARNING

At WARNING the console shows bare messages (failed attempts, aborts,
cancellation). INFO adds a timestamp and the worker thread, so units
converging in parallel (``converge_0``, ``converge_1`` ...) can be told
apart. DEBUG adds the logger and line, which includes every command the
process runner launches.

PROVISIONCTL_LOG_FILE keeps a full-detail transcript of the run at
PROVISIONCTL_LOG_FILE_LEVEL (default DEBUG), independent of the console.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

LOG_LEVEL_ENV = "PROVISIONCTL_LOG_LEVEL"
LOG_FILE_ENV = "PROVISIONCTL_LOG_FILE"
LOG_FILE_LEVEL_ENV = "PROVISIONCTL_LOG_FILE_LEVEL"

_FMT_DEBUG = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d  %(message)s"
_FMT_INFO = "%(asctime)s [%(threadName)s] %(message)s"
_CONSOLE_DATEFMT = "%H:%M:%S"
_FILE_FORMAT = _FMT_DEBUG
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Stdlib loggers the engine's worker pool pulls in
_QUIET_LOGGERS = ("concurrent.futures",)


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Install the console handler and, optionally, a file handler.

    Replaces any handlers already on the root logger, so calling it
    twice does not duplicate output.
    """
    console_level = _parse_level(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_console_handler(console_level))
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level, default=logging.DEBUG)
        root.addHandler(_file_handler(Path(log_file).expanduser(), file_level))
        root_level = min(root_level, file_level)

    root.setLevel(root_level)

    if quiet_third_party:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(max(console_level, logging.WARNING))

    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    if level <= logging.DEBUG:
        formatter = logging.Formatter(_FMT_DEBUG, datefmt=_CONSOLE_DATEFMT)
    elif level <= logging.INFO:
        formatter = logging.Formatter(_FMT_INFO, datefmt=_CONSOLE_DATEFMT)
    else:
        formatter = logging.Formatter("%(message)s")
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _file_handler(path: Path, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def _parse_level(level: str | None, default: int = logging.WARNING) -> int:
    """Level name → numeric level; unknown names fall back to ``default``."""
    if not level:
        return default
    numeric = logging.getLevelName(level.upper())
    return numeric if isinstance(numeric, int) else default


def level_from_flags(verbose: bool = False, quiet: bool = False, debug: bool = False) -> str:
    """Console level for the global CLI flags, falling back to the env var."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get(LOG_LEVEL_ENV, "WARNING")


def setup_logging_from_env(level: str, debug: bool = False) -> None:
    """``setup_logging`` with the log file taken from the environment."""
    setup_logging(
        level=level,
        log_file=os.environ.get(LOG_FILE_ENV),
        log_file_level=os.environ.get(LOG_FILE_LEVEL_ENV),
        quiet_third_party=not debug,
    )
