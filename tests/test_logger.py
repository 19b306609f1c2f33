from __future__ import annotations

import logging

import pytest

from sticker_core.logger import get_logger, setup_logger


def test_setup_logger_and_get_logger_are_idempotent() -> None:
    log = setup_logger(level=logging.DEBUG)
    assert log.name == "sticker_core"
    assert log.level == logging.DEBUG
    assert log.propagate is False

    log2 = setup_logger(level="INFO")
    assert log2 is log
    assert len(log.handlers) == 1
    assert get_logger() is log


def test_setup_logger_writes_log_file(tmp_path) -> None:
    log_file = tmp_path / "logs" / "sticker.log"
    log = setup_logger(level="INFO", log_file=log_file)
    try:
        log.info("ledger entry written")
        for handler in log.handlers:
            handler.flush()

        assert "ledger entry written" in log_file.read_text(encoding="utf-8")
        assert len(log.handlers) == 2
    finally:
        setup_logger(level=logging.INFO)


def test_unknown_level_name_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown log level"):
        setup_logger(level="chatty")
