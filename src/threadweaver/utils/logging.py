"""Logging setup for the threadweaver CLI.

Output goes to a rotating file under ``~/.threadweaver/logs`` (or
``THREADWEAVER_LOG_DIR``) so that streamed replies on the terminal stay clean.
The level follows the ``debug_logging`` setting: ``THREADWEAVER_DEBUG_LOGGING``
decides it at startup, before settings are loaded, and
:func:`set_debug_logging` applies the loaded value afterwards.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["LOG_FILE_NAME", "setup_logging", "set_debug_logging", "get_log_path"]

LOG_FILE_NAME = "threadweaver.log"
DEBUG_ENV_VAR = "THREADWEAVER_DEBUG_LOGGING"
LOG_DIR_ENV_VAR = "THREADWEAVER_LOG_DIR"

_DEFAULT_LOG_DIR = Path.home() / ".threadweaver" / "logs"
# transport chatter; each streamed chunk would otherwise log a line
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_LOG_PATH: Path | None = None


def setup_logging(
    *,
    debug: bool | None = None,
    log_dir: Path | str | None = None,
    console: bool = False,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the rotating file handler (plus an optional stderr handler).

    ``debug=None`` reads ``THREADWEAVER_DEBUG_LOGGING``. Calling again without
    ``force`` keeps the existing handlers and returns the current log path.
    """

    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    level = _level_for(_env_debug() if debug is None else debug)
    target_dir = Path(log_dir or os.environ.get(LOG_DIR_ENV_VAR) or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / LOG_FILE_NAME

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    ]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _apply_level(level)

    _LOG_PATH = log_path
    logging.getLogger(__name__).debug("Logging to %s", log_path)
    return log_path


def set_debug_logging(enabled: bool) -> None:
    """Switch the installed handlers between DEBUG and INFO."""

    _apply_level(_level_for(enabled))


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging`."""

    return _LOG_PATH


def _env_debug() -> bool:
    return os.environ.get(DEBUG_ENV_VAR, "").strip().lower() in _TRUE_VALUES


def _level_for(debug: bool) -> int:
    return logging.DEBUG if debug else logging.INFO


def _apply_level(level: int) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        handler.setLevel(level)
    quiet_level = max(level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
