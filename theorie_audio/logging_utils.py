"""Logging setup for the ``theorie_audio`` package logger.

Console records are rendered by rich; a size-rotated file under the log
directory keeps the DEBUG history. Handlers installed here are tagged so a
reconfiguration replaces them without touching handlers the host added.
"""

from __future__ import annotations

import logging
import os
import traceback
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "theorie_audio"
LOG_DIR_ENV = "THEORIE_AUDIO_LOG_DIR"
DEBUG_ENV = "THEORIE_AUDIO_DEBUG"
LOG_FILE_NAME = "theorie_audio.log"
MAX_LOG_BYTES = 1_000_000
LOG_BACKUPS = 3

_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s | %(message)s"
_OWNED_MARK = "_theorie_audio_owned"
_LOGGER = logging.getLogger("theorie_audio.logging")
_configured = False

LogLevel = int | str | None


def get_log_dir(override: str | Path | None = None) -> Path:
    if override is not None:
        return Path(override).expanduser()
    from_env = os.environ.get(LOG_DIR_ENV)
    if from_env:
        return Path(from_env).expanduser()
    return Path.home() / ".cache" / "theorie_audio" / "logs"


def get_log_path(override: str | Path | None = None) -> Path:
    return get_log_dir(override) / LOG_FILE_NAME


def resolve_level(level: LogLevel = None) -> int:
    """Console level: explicit value, else DEBUG when ``THEORIE_AUDIO_DEBUG`` is set."""
    if level is None:
        return logging.DEBUG if os.environ.get(DEBUG_ENV) else logging.INFO
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def _owned_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [handler for handler in logger.handlers if getattr(handler, _OWNED_MARK, False)]


def _mark(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _OWNED_MARK, True)
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
        delay=True,
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT))
    return handler


def configure_logging(
    *,
    level: LogLevel = None,
    log_dir: str | Path | None = None,
    force: bool = False,
) -> Path | None:
    """Install the console and rotating-file handlers on the package logger.

    Runs once unless ``force`` is set; a forced call swaps out only the
    handlers this module installed. Returns the log file path, or ``None``
    when the log directory cannot be created.
    """
    global _configured
    if _configured and not force:
        return None

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG)
    for handler in _owned_handlers(logger):
        logger.removeHandler(handler)
        handler.close()

    # A host that configured the root logger already decides console output.
    if not logging.getLogger().handlers:
        console = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        console.setLevel(resolve_level(level))
        logger.addHandler(_mark(console))

    path: Path | None = get_log_path(log_dir)
    try:
        logger.addHandler(_mark(_file_handler(path)))
    except OSError as exc:
        _LOGGER.warning("File logging disabled, cannot use %s: %s", path, exc)
        path = None

    logger.propagate = True
    _configured = True
    return path


def log_exception(
    context: str,
    exc: BaseException,
    *,
    log_dir: str | Path | None = None,
) -> Path | None:
    """Append ``exc`` with its traceback to the log file; returns the file written."""
    path = get_log_path(log_dir)
    stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"{stamp} {context} failed: {type(exc).__name__}: {exc}\n{trace}\n")
    except OSError as write_exc:
        _LOGGER.warning("Could not append to %s: %s", path, write_exc)
        return None
    return path
