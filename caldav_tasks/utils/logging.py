"""Centralized logging utilities."""
from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Mapping

from rich.logging import RichHandler

from caldav_tasks.core.config import AppConfig

_LEVEL_MAP: Mapping[str, int] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

# Chatty third-party loggers capped at WARNING
_NOISY_LOGGERS = ("caldav", "httpx", "httpcore", "urllib3", "apscheduler")

_current_levelno = logging.INFO
_current_levelname = "INFO"


def _parse_level(value: str | int) -> tuple[int, str]:
    if isinstance(value, int):
        return value, logging.getLevelName(value)
    level_name = str(value).upper()
    if level_name not in _LEVEL_MAP:
        raise ValueError(f"Unsupported log level: {value}")
    return _LEVEL_MAP[level_name], level_name


def build_console_handler(level_name: str) -> logging.Handler:
    levelno, _ = _parse_level(level_name)
    handler = RichHandler(rich_tracebacks=True, show_time=False)
    handler.setLevel(levelno)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def build_file_handler(config: AppConfig) -> logging.Handler:
    config.log_dir.mkdir(parents=True, exist_ok=True)
    file_path = config.log_dir / config.general.log_file_name
    handler = logging.handlers.RotatingFileHandler(
        file_path,
        maxBytes=config.general.log_file_max_bytes,
        backupCount=config.general.log_file_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    return handler


def setup_logging(config: AppConfig, *, level_name: str | None = None) -> Path:
    """Configure root logging handlers.

    Returns the path to the primary log file.
    """

    effective_level = (level_name or config.general.log_level).upper()
    levelno, levelname = _parse_level(effective_level)
    global _current_levelno, _current_levelname
    _current_levelno = levelno
    _current_levelname = levelname
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(levelno)

    root.addHandler(build_console_handler(effective_level))
    root.addHandler(build_file_handler(config))

    logging.captureWarnings(True)

    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(max(levelno, logging.WARNING))

    return config.log_dir / config.general.log_file_name


def set_logging_level(level_name: str) -> None:
    """Change logging level for all handlers at runtime."""

    levelno, levelname = _parse_level(level_name)
    global _current_levelno, _current_levelname
    _current_levelno = levelno
    _current_levelname = levelname

    root = logging.getLogger()
    root.setLevel(levelno)
    for handler in root.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            continue
        handler.setLevel(levelno)


def get_current_log_level() -> str:
    """Return the currently active logging level."""

    return _current_levelname
