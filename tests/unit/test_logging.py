from __future__ import annotations

import logging
from pathlib import Path

import pytest

from postbox.config import ConfigError, LoggingConfig
from postbox.logging import ConsoleFormatter, OutcomeFilter, configure_logging, level_from_string


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        handler.close()
    root.handlers = handlers
    root.setLevel(level)


def _record(message: str, *, outcome: str | None = None, level: int = logging.INFO):
    record = logging.LogRecord("postbox.test", level, __file__, 1, message, None, None)
    if outcome is not None:
        record.outcome = outcome
    return record


def test_outcome_filter_adds_default_tag() -> None:
    record = _record("hello")

    assert OutcomeFilter().filter(record) is True
    assert record.outcome == "-"


def test_outcome_filter_only_passes_selected_outcome() -> None:
    only_failed = OutcomeFilter("failed")

    assert only_failed.filter(_record("x", outcome="failed"))
    assert not only_failed.filter(_record("x", outcome="bounced"))
    assert not only_failed.filter(_record("x"))


def test_console_formatter_shows_outcome() -> None:
    formatter = ConsoleFormatter(use_color=False)

    assert formatter.format(_record("Bounced <m>", outcome="bounced")) == "I [bounced] Bounced <m>"
    assert formatter.format(_record("plain", outcome="-")) == "I plain"


def test_level_from_string() -> None:
    assert level_from_string("warn") == logging.WARNING
    assert level_from_string(" Debug ") == logging.DEBUG
    with pytest.raises(ConfigError):
        level_from_string("chatty")


def test_configure_logging_separates_failures(tmp_path: Path, restore_root_logger) -> None:
    configure_logging(LoggingConfig(level="info"), tmp_path)
    logger = logging.getLogger("postbox.processor")

    logger.info("Bounced <m1>", extra={"outcome": "bounced"})
    logger.error("Failed <m2>", extra={"outcome": "failed"})
    for handler in logging.getLogger().handlers:
        handler.flush()

    main_log = (tmp_path / "logs" / "postbox.log").read_text(encoding="utf-8")
    failed_log = (tmp_path / "logs" / "failed.log").read_text(encoding="utf-8")
    assert "[bounced]: Bounced <m1>" in main_log
    assert "[failed]: Failed <m2>" in main_log
    assert "Failed <m2>" in failed_log
    assert "Bounced <m1>" not in failed_log


def test_configure_logging_debug_file(tmp_path: Path, restore_root_logger) -> None:
    configure_logging(LoggingConfig(level="debug", debug_file=True), tmp_path)

    logging.getLogger("postbox.routing").debug("routing detail")
    for handler in logging.getLogger().handlers:
        handler.flush()

    debug_log = (tmp_path / "logs" / "debug.log").read_text(encoding="utf-8")
    assert "routing detail" in debug_log
