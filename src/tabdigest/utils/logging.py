"""Logging setup shared by the CLI and the background executor."""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["setup_logging", "get_logger", "get_log_path"]

LOG_FILENAME = "tabdigest.log"
_LOG_DIR_ENV = "TABDIGEST_LOG_DIR"
_DEFAULT_LOG_DIR = Path.home() / ".tabdigest" / "logs"
_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"
# Third-party loggers that would otherwise echo every HTTP round trip.
_CHATTY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")

_log_path: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 512_000,
    backup_count: int = 5,
    force: bool = False,
) -> Path:
    """Send records to ``<log_dir>/tabdigest.log`` and, optionally, stderr.

    The first call wins unless *force* is set. Console output goes to stderr
    so command output on stdout stays machine-readable.
    """

    global _log_path
    if _log_path is not None and not force:
        return _log_path

    directory = Path(log_dir or os.environ.get(_LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / LOG_FILENAME

    handlers: list[logging.Handler] = [_rotating_handler(path, level, max_bytes, backup_count)]
    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(level)
        stream_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        handlers.append(stream_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)

    third_party_level = max(level, logging.WARNING)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    _log_path = path
    return path


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging`."""

    return _log_path


def _rotating_handler(path: Path, level: int, max_bytes: int, backup_count: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler
