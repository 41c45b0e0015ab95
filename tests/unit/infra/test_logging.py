from __future__ import annotations

import logging
from pathlib import Path

import pytest

from src.infra.observability import otel


def test_configure_logging_writes_rotating_files(
    tmp_path: Path, settings_factory, monkeypatch: pytest.MonkeyPatch
) -> None:
    settings = settings_factory(log_dir=(tmp_path / "logs").as_posix(), log_level="debug")
    monkeypatch.setattr(otel, "get_settings", lambda: settings)

    otel.configure_logging()

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert (tmp_path / "logs" / "app.log").exists()
    assert (tmp_path / "logs" / "error.log").exists()
    assert len(root.handlers) == 3


def test_unknown_level_falls_back_to_info(settings_factory, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(otel, "get_settings", lambda: settings_factory(log_level="chatty"))

    otel.configure_logging()

    assert logging.getLogger().level == logging.INFO
