from __future__ import annotations

import logging
from collections.abc import Iterator
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest
from rich.logging import RichHandler

from theorie_audio.logging_utils import (
    DEBUG_ENV,
    LOG_DIR_ENV,
    PACKAGE_LOGGER,
    configure_logging,
    get_log_dir,
    get_log_path,
    log_exception,
    resolve_level,
)


@pytest.fixture
def package_logger() -> Iterator[logging.Logger]:
    logger = logging.getLogger(PACKAGE_LOGGER)
    previous = list(logger.handlers)
    yield logger
    for handler in list(logger.handlers):
        if handler not in previous:
            logger.removeHandler(handler)
            handler.close()


def test_log_path_uses_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(LOG_DIR_ENV, str(tmp_path))
    assert get_log_dir() == tmp_path
    assert get_log_path() == tmp_path / "theorie_audio.log"
    assert get_log_path(tmp_path / "explicit") == tmp_path / "explicit" / "theorie_audio.log"


def test_log_dir_defaults_to_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(LOG_DIR_ENV, raising=False)
    assert get_log_dir().parts[-3:] == (".cache", "theorie_audio", "logs")


def test_resolve_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(DEBUG_ENV, raising=False)
    assert resolve_level() == logging.INFO
    monkeypatch.setenv(DEBUG_ENV, "1")
    assert resolve_level() == logging.DEBUG
    assert resolve_level("warning") == logging.WARNING
    assert resolve_level(logging.ERROR) == logging.ERROR
    with pytest.raises(ValueError):
        resolve_level("chatty")


def test_log_exception_appends_traceback(tmp_path: Path) -> None:
    try:
        raise ValueError("bad pitch")
    except ValueError as exc:
        path = log_exception("render note", exc, log_dir=tmp_path)
    assert path == tmp_path / "theorie_audio.log"
    text = path.read_text(encoding="utf-8")
    assert "render note failed: ValueError: bad pitch" in text
    assert "Traceback" in text


def test_configure_logging_installs_rotating_file(
    tmp_path: Path,
    package_logger: logging.Logger,
) -> None:
    path = configure_logging(log_dir=tmp_path, force=True)
    assert path == tmp_path / "theorie_audio.log"
    rotating = [h for h in package_logger.handlers if isinstance(h, RotatingFileHandler)]
    assert [Path(h.baseFilename) for h in rotating] == [path]

    logging.getLogger("theorie_audio.services.synth").debug("voice started")
    for handler in rotating:
        handler.flush()
    assert "theorie_audio.services.synth | voice started" in path.read_text(encoding="utf-8")


def test_reconfigure_keeps_foreign_handlers(
    tmp_path: Path,
    package_logger: logging.Logger,
) -> None:
    foreign = logging.NullHandler()
    package_logger.addHandler(foreign)
    configure_logging(log_dir=tmp_path / "first", force=True)
    configure_logging(log_dir=tmp_path / "second", force=True)

    rotating = [h for h in package_logger.handlers if isinstance(h, RotatingFileHandler)]
    assert [Path(h.baseFilename).parent for h in rotating] == [tmp_path / "second"]
    assert foreign in package_logger.handlers


def test_console_level_follows_argument(
    tmp_path: Path,
    package_logger: logging.Logger,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    configure_logging(level="WARNING", log_dir=tmp_path, force=True)
    consoles = [h for h in package_logger.handlers if isinstance(h, RichHandler)]
    assert [h.level for h in consoles] == [logging.WARNING]
