from __future__ import annotations

import logging

from studio_sync.logging.init import (
    SUMMARY_LEVEL,
    LabeledFormatter,
    get_logger,
    log_summary,
    setup_logging,
)


def test_setup_logging_creates_logger_with_labeled_formatter():
    logger = setup_logging()
    assert logger.name == "studio_sync"
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, LabeledFormatter)
    assert logger.propagate is False


def test_setup_logging_is_idempotent():
    first = setup_logging()
    second = setup_logging()
    assert first is second
    assert len(second.handlers) == 1


def test_debug_mode_lowers_levels():
    logger = setup_logging(debug=True)
    assert logger.level == logging.DEBUG
    assert all(h.level == logging.DEBUG for h in logger.handlers)


def test_labeled_prefixes(capsys):
    logger = setup_logging()
    logger.info("fetched 3 orders")
    logger.warning("odd date")
    logger.error("insert failed")
    log_summary("orders=3")
    out = capsys.readouterr().out.splitlines()
    assert out == ["INFO fetched 3 orders", "WARN odd date", "ERROR insert failed", "SUMMARY orders=3"]


def test_module_loggers_propagate_into_app_logger(capsys):
    setup_logging()
    logging.getLogger("studio_sync.services.projector").warning("from module")
    assert "WARN from module" in capsys.readouterr().out


def test_formatter_unknown_level_uses_level_name():
    record = logging.LogRecord("x", 35, __file__, 1, "custom", None, None)
    record.levelname = "NOTICE"
    assert LabeledFormatter().format(record) == "NOTICE custom"


def test_get_logger_initializes_once():
    assert get_logger() is get_logger()
    assert SUMMARY_LEVEL == 25
