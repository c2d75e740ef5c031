"""Logging configuration for agentgalaxy.

Uses Python's standard logging module with support for:
- File logging via config or the AG_LOG environment variable
- Verbosity levels: error(0), warning(1), info(2), verbose(3), trace(4)
- Stderr output when attached to a real console, or when the CLI asks for it
- A component tag per line (relay, model, bridge...) since the relay, the
  watcher and the bridge all log from the same process
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentgalaxy.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("agentgalaxy")

# --verbose=N (0=errors only, 4=everything)
_VERBOSITY_MAP = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: VERBOSE,
    4: TRACE,
}

# Chatty at INFO/DEBUG; only shown at trace verbosity
_LIBRARY_LOGGERS = ("websockets", "watchdog", "httpx", "httpcore")

# Handlers installed by setup_logging, replaced on the next call
_handlers: list[logging.Handler] = []


class _ComponentFormatter(logging.Formatter):
    """Lowercase level names plus the component part of the logger name."""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        name = record.name
        if name.startswith(logger.name + "."):
            record.component = name[len(logger.name) + 1 :]
        else:
            record.component = name
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Translate a logging config into a numeric level.

    ``verbose`` wins over ``level`` when both are set. Unknown level names
    fall back to INFO.
    """
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY_MAP.get(config.verbose, TRACE)
    if config.level:
        return logging.getLevelNamesMapping().get(config.level.upper(), logging.INFO)
    return logging.INFO


def reset_logging() -> None:
    """Remove and close the handlers installed by setup_logging."""
    while _handlers:
        handler = _handlers.pop()
        logger.removeHandler(handler)
        handler.close()


def setup_logging(config: LoggingConfig | None = None, force_stderr: bool = False) -> None:
    """(Re)configure the agentgalaxy logger.

    Each call replaces the handlers of the previous one, so a process that
    runs several commands, or a test session, always logs to the current
    destination.

    Args:
        config: Optional LoggingConfig with level, verbose, and file settings.
        force_stderr: Log to stderr even when it is not a TTY (CLI use).
    """
    reset_logging()

    log_level = resolve_level(config)
    logger.setLevel(log_level)
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(log_level if log_level <= TRACE else logging.WARNING)

    formatter = _ComponentFormatter(
        "%(asctime)s %(levelname)s %(component)s: %(message)s", datefmt="%H:%M:%S"
    )
    to_stderr = force_stderr or sys.stderr.isatty()

    log_path = config.file if config and config.file else os.environ.get("AG_LOG")
    if log_path:
        log_path = os.path.expanduser(log_path)
        try:
            _install(logging.FileHandler(log_path, mode="a", encoding="utf-8"), formatter, log_level)
            return
        except OSError as e:
            if not to_stderr:
                return
            print(f"[agentgalaxy] Failed to open log file: {e}", file=sys.stderr)

    if to_stderr:
        _install(logging.StreamHandler(sys.stderr), formatter, log_level)


def _install(handler: logging.Handler, formatter: logging.Formatter, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    _handlers.append(handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Optional name for a child logger (e.g., "relay", "model").
              If None, returns the root agentgalaxy logger.
    """
    if name:
        return logger.getChild(name)
    return logger
