from __future__ import annotations

from pathlib import Path

import pytest

from theorie_audio.logging_utils import LOG_DIR_ENV


@pytest.fixture(autouse=True)
def _isolated_log_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    log_dir = tmp_path / "logs"
    monkeypatch.setenv(LOG_DIR_ENV, str(log_dir))
    return log_dir
