"""
File-based logging for the intent governance layer.

The governance hooks run inside a host that owns stdout (tool results,
hook responses). Writing diagnostics there corrupts the host protocol, so
this module logs to a rotating file instead:
- Never writes to stdout
- Rotates logs to prevent disk bloat
- Is thread-safe for concurrent access
- Includes timestamps and levels

Log location: ~/.intent_governance/logs/governance.log
Override with ORCHESTRATION_LOG_DIR.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAME = "intent_governance"
LOG_DIR_ENV = "ORCHESTRATION_LOG_DIR"

DEFAULT_LOG_DIR = Path.home() / ".intent_governance" / "logs"
LOG_FILE_NAME = "governance.log"

MAX_LOG_BYTES = 5 * 1024 * 1024  # 5MB
LOG_BACKUP_COUNT = 3

# Module-level logger
_logger: Optional[logging.Logger] = None
_initialized = False


def get_log_dir() -> Path:
    """Resolve the log directory (env override first)."""
    env_dir = os.environ.get(LOG_DIR_ENV, "").strip()
    if env_dir:
        return Path(env_dir).expanduser()
    return DEFAULT_LOG_DIR


def get_logger() -> logging.Logger:
    """
    Get the governance file logger.

    Lazy-initializes on first call. If the log directory cannot be created
    the logger gets a NullHandler: logging must never break a tool call.
    """
    global _logger, _initialized

    if _initialized and _logger is not None:
        return _logger

    _logger = logging.getLogger(LOGGER_NAME)
    _logger.setLevel(logging.DEBUG)
    _logger.propagate = False

    # Remove any existing handlers (prevents duplicates on reload)
    _logger.handlers.clear()

    try:
        log_dir = get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError:
        handler = logging.NullHandler()

    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    _logger.addHandler(handler)
    _initialized = True

    return _logger


def reset_logger() -> None:
    """Drop the cached logger so the next call re-reads ORCHESTRATION_LOG_DIR."""
    global _logger, _initialized
    if _logger is not None:
        for handler in list(_logger.handlers):
            handler.close()
        _logger.handlers.clear()
    _logger = None
    _initialized = False


def log_info(msg: str):
    """Log info message to file."""
    get_logger().info(msg)


def log_warn(msg: str):
    """Log warning message to file."""
    get_logger().warning(msg)


def log_error(msg: str):
    """Log error message to file."""
    get_logger().error(msg)


def log_debug(msg: str):
    """Log debug message to file."""
    get_logger().debug(msg)
