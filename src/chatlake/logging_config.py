"""
Logging configuration for ChatLake.

Configures the root logger from settings: console output split between
stdout (DEBUG/INFO) and stderr (WARNING and above), plus a size-rotated
log file per context (cli, api).
"""

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

from chatlake.config import settings

STANDARD_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Handlers installed by setup_logging, so repeated calls replace them
_installed_handlers: list[logging.Handler] = []


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self.max_level


def _build_formatter() -> logging.Formatter:
    if settings.log_format == "json":
        return JsonFormatter()
    return logging.Formatter(STANDARD_FORMAT)


def setup_logging(context: str = "app", level: Optional[str] = None) -> None:
    """
    Configure application logging.

    Safe to call more than once: handlers from a previous call are removed
    before new ones are installed.

    Args:
        context: Name of the running surface ("cli", "api"); used for the log file name
        level: Override for settings.log_level
    """
    root = logging.getLogger()
    for handler in _installed_handlers:
        root.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    root.setLevel(log_level)
    formatter = _build_formatter()

    if settings.log_console_enabled:
        if settings.log_to_stdout:
            stdout_handler = logging.StreamHandler(sys.stdout)
            stdout_handler.setLevel(logging.DEBUG)
            stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))
            stdout_handler.setFormatter(formatter)
            _installed_handlers.append(stdout_handler)
        if settings.log_to_stderr:
            stderr_handler = logging.StreamHandler(sys.stderr)
            stderr_handler.setLevel(logging.WARNING)
            stderr_handler.setFormatter(formatter)
            _installed_handlers.append(stderr_handler)

    if settings.log_file_enabled:
        log_dir = settings.log_directory
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_dir / f"chatlake-{context}.log",
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            _installed_handlers.append(file_handler)
        except OSError as e:
            # Console logging still works without a writable log directory
            print(f"Warning: file logging disabled ({e})", file=sys.stderr)

    for handler in _installed_handlers:
        root.addHandler(handler)

    # Third-party libraries are noisy at INFO
    for noisy in ("httpx", "httpcore", "openai", "numba", "umap"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        f"Logging configured (context={context}, level={logging.getLevelName(log_level)})"
    )
