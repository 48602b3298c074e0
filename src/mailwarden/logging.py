"""Logging setup: per-account rotating logs plus a shared error log.

Files written under the log directory:
- mailwarden-error.log: ERROR+ records from every account
- mailwarden-{account}.log: activity of one account

Usage:
    from mailwarden.logging import setup_logging, get_account_logger

    setup_logging(log_dir=settings.log_dir, console=True)

    logger = get_account_logger("work")
    logger.info("Moved 42 to Newsletters")
    logger.error("Fetch failed")  # also lands in mailwarden-error.log
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.logging import RichHandler

DEFAULT_LOG_DIR = Path.home() / ".local" / "state" / "mailwarden" / "logs"

DEFAULT_MAX_BYTES = 5 * 1024 * 1024  # 5MB
DEFAULT_BACKUP_COUNT = 3

ROOT_LOGGER = "mailwarden"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

_loggers: dict[str, logging.Logger] = {}
_error_logger: logging.Logger | None = None
_log_dir: Path = DEFAULT_LOG_DIR
_level: int = logging.INFO
_max_bytes: int = DEFAULT_MAX_BYTES
_backup_count: int = DEFAULT_BACKUP_COUNT
_console_handler: logging.Handler | None = None
_initialized: bool = False


class ErrorPropagatingHandler(logging.Handler):
    """Forwards ERROR+ records of an account logger to the shared error log."""

    def __init__(self, account: str) -> None:
        super().__init__(level=logging.ERROR)
        self.account = account

    def emit(self, record: logging.LogRecord) -> None:
        prefixed = logging.LogRecord(
            name=record.name,
            level=record.levelno,
            pathname=record.pathname,
            lineno=record.lineno,
            msg=f"[{self.account}] {record.getMessage()}",
            args=(),
            exc_info=record.exc_info,
        )
        get_error_logger().handle(prefixed)


_OWN_HANDLERS = (RotatingFileHandler, ErrorPropagatingHandler)


def _has_own_handlers(logger: logging.Logger) -> bool:
    # Other code (pytest capture, embedding apps) may attach handlers too
    return any(isinstance(h, _OWN_HANDLERS) for h in logger.handlers)


def _file_handler(path: Path, level: int = logging.NOTSET) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=_max_bytes, backupCount=_backup_count)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logging(
    log_dir: Path | None = None,
    log_level: str = "INFO",
    max_bytes: int | None = None,
    backup_count: int | None = None,
    console: bool = False,
) -> None:
    """Initialize the logging system.

    Args:
        log_dir: Directory for log files.
        log_level: Minimum log level (default: INFO).
        max_bytes: Max size per log file before rotation (default: 5MB).
        backup_count: Number of backup files to keep (default: 3).
        console: Also render records on the terminal via rich.
    """
    global _log_dir, _level, _max_bytes, _backup_count, _console_handler, _initialized

    _log_dir = log_dir or DEFAULT_LOG_DIR
    _level = getattr(logging, log_level.upper(), logging.INFO)
    _max_bytes = max_bytes or DEFAULT_MAX_BYTES
    _backup_count = backup_count if backup_count is not None else DEFAULT_BACKUP_COUNT

    _log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(_level)

    if console and _console_handler is None:
        _console_handler = RichHandler(show_path=False, rich_tracebacks=True)
        _console_handler.setLevel(_level)
        root_logger.addHandler(_console_handler)

    _initialized = True


def get_error_logger() -> logging.Logger:
    """Get the shared error logger (ERROR+ level, all accounts)."""
    global _error_logger

    if _error_logger is not None:
        return _error_logger

    if not _initialized:
        setup_logging()

    logger = logging.getLogger(f"{ROOT_LOGGER}.errors")
    logger.setLevel(logging.ERROR)
    logger.propagate = False

    if not _has_own_handlers(logger):
        logger.addHandler(_file_handler(_log_dir / "mailwarden-error.log", logging.ERROR))

    _error_logger = logger
    return logger


def get_account_logger(account: str) -> logging.Logger:
    """Get or create the logger for one account.

    Records go to the account's file and, when enabled, the console; ERROR+
    records are copied to the shared error log.
    """
    if account in _loggers:
        return _loggers[account]

    if not _initialized:
        setup_logging()

    safe_name = "".join(c if c.isalnum() else "-" for c in account)

    logger = logging.getLogger(f"{ROOT_LOGGER}.account.{safe_name}")
    logger.setLevel(_level)
    # Errors reach the error log through ErrorPropagatingHandler, not the root
    logger.propagate = False

    if not _has_own_handlers(logger):
        logger.addHandler(_file_handler(_log_dir / f"mailwarden-{safe_name}.log"))
        logger.addHandler(ErrorPropagatingHandler(account))
        if _console_handler is not None:
            logger.addHandler(_console_handler)

    _loggers[account] = logger
    return logger


def reset_logging() -> None:
    """Reset logging state (primarily for testing)."""
    global _loggers, _error_logger, _console_handler, _initialized

    for logger in list(_loggers.values()) + ([_error_logger] if _error_logger else []):
        for handler in logger.handlers[:]:
            if handler is _console_handler:
                logger.removeHandler(handler)
            elif isinstance(handler, _OWN_HANDLERS):
                handler.close()
                logger.removeHandler(handler)

    if _console_handler is not None:
        logging.getLogger(ROOT_LOGGER).removeHandler(_console_handler)

    _loggers = {}
    _error_logger = None
    _console_handler = None
    _initialized = False
