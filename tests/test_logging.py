from __future__ import annotations

import logging
from pathlib import Path

import pytest

from preorder_sync.logging import PACKAGE_LOGGER, _coerce_level, configure_logging, get_logger


@pytest.fixture(autouse=True)
def restore_logging(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_FILE", raising=False)
    yield
    configure_logging()


def test_module_loggers_share_package_handlers() -> None:
    first = get_logger("form-sync")
    second = get_logger("form-sync")
    package = logging.getLogger(PACKAGE_LOGGER)
    assert first is second
    assert first.name == "preorder_sync.form-sync"
    assert first.handlers == []
    assert len(package.handlers) == 1
    assert package.propagate is False


@pytest.mark.parametrize(
    "value, expected",
    [("debug", logging.DEBUG), (" Warn ", logging.WARNING), ("bogus", logging.INFO), (None, logging.INFO), (40, 40)],
)
def test_level_coercion(value, expected) -> None:
    assert _coerce_level(value) == expected


def test_log_file_receives_child_records(tmp_path: Path) -> None:
    log_path = tmp_path / "sync.log"
    configure_logging(level="DEBUG", log_file=str(log_path))
    get_logger("test-child").debug("pass finished")
    text = log_path.read_text(encoding="utf-8")
    assert "[preorder_sync.test-child] DEBUG: pass finished" in text


def test_unopenable_log_file_falls_back_to_console(tmp_path: Path) -> None:
    package = configure_logging(log_file=str(tmp_path / "missing" / "sync.log"))
    assert [type(h) for h in package.handlers] == [logging.StreamHandler]


def test_reconfiguring_replaces_handlers(monkeypatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    configure_logging()
    package = configure_logging()
    assert len(package.handlers) == 1
    assert package.level == logging.ERROR
