"""Pipeline logging configuration with file and console handlers."""

import logging
import sys
from datetime import datetime
from pathlib import Path

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_LOG_DATE_FORMAT = "%H:%M:%S"
_LOGGERS_CACHE: dict[str, logging.Logger] = {}

LIBRARY_LOGGER = "src.etl"
"""Parent of the module loggers created with logging.getLogger(__name__)."""


def setup_logger(
    name: str,
    level: int | str | None = None,
    log_dir: Path | None = None,
) -> logging.Logger:
    """Configure and return a logger with file and console handlers.

    Args:
        name: Logger name (e.g., 'etl.pipeline').
        level: Logging level; defaults to LOG_LEVEL from settings.
        log_dir: Directory for log files; defaults to the settings logs dir.

    Returns:
        Configured logger instance.
    """
    if name in _LOGGERS_CACHE:
        return _LOGGERS_CACHE[name]

    resolved_level = _resolve_level(level)

    logger = logging.getLogger(name)
    logger.setLevel(resolved_level)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(_LOG_FORMAT, _LOG_DATE_FORMAT)
    logger.addHandler(_create_console_handler(formatter, resolved_level))

    file_handler = _create_file_handler(name, formatter, resolved_level, log_dir)
    if file_handler:
        logger.addHandler(file_handler)

    _LOGGERS_CACHE[name] = logger
    return logger


def set_level(level: int | str) -> None:
    """Change the level of every logger created by setup_logger.

    Args:
        level: New logging level.
    """
    resolved = _resolve_level(level)
    for logger in _LOGGERS_CACHE.values():
        logger.setLevel(resolved)
        for handler in logger.handlers:
            handler.setLevel(resolved)


def _resolve_level(level: int | str | None) -> int:
    """Resolve a level name or number, falling back to settings."""
    if level is None:
        from src.settings import settings

        level = settings.logging.level
    if isinstance(level, str):
        return logging.getLevelName(level.upper())
    return level


def _create_console_handler(
    formatter: logging.Formatter,
    level: int,
) -> logging.StreamHandler:
    """Create console stream handler."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _create_file_handler(
    name: str,
    formatter: logging.Formatter,
    level: int,
    log_dir: Path | None,
) -> logging.FileHandler | None:
    """Create dated file handler.

    Args:
        name: Logger name for filename.
        formatter: Log formatter.
        level: Logging level.
        log_dir: Directory for log files.

    Returns:
        Configured FileHandler or None on failure.
    """
    try:
        log_path = _get_log_file_path(name, log_dir)
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler
    except OSError as e:
        print(f"Warning: Could not create log file: {e}", file=sys.stderr)
        return None


def _get_log_file_path(name: str, log_dir: Path | None) -> Path:
    """Build log file path with date suffix."""
    if log_dir is None:
        from src.settings import settings

        log_dir = settings.paths.logs_dir

    log_dir.mkdir(parents=True, exist_ok=True)

    safe_name = name.replace(".", "_").replace("/", "_")
    date_suffix = datetime.now().strftime("%Y%m%d")
    return log_dir / f"{safe_name}_{date_suffix}.log"
