from __future__ import annotations

import logging

from component_import.logging.init import (
    LOGGER_NAME,
    SUMMARY_LEVEL,
    LabeledFormatter,
    get_logger,
    log_summary,
    set_debug,
    setup_logging,
)


def _record(level: int, msg: str) -> logging.LogRecord:
    return logging.LogRecord("component_import.test", level, __file__, 1, msg, None, None)


def test_setup_logging_is_idempotent(clean_logging):
    logger = setup_logging()
    assert logger.name == LOGGER_NAME
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, LabeledFormatter)
    assert logger.propagate is False
    assert setup_logging() is logger
    assert len(logger.handlers) == 1


def test_labels():
    fmt = LabeledFormatter()
    assert fmt.format(_record(logging.INFO, "hello")) == "INFO hello"
    assert fmt.format(_record(logging.WARNING, "careful")) == "WARN careful"
    assert fmt.format(_record(logging.ERROR, "broken")) == "ERROR broken"
    assert fmt.format(_record(SUMMARY_LEVEL, "rows=1")) == "SUMMARY rows=1"
    assert fmt.format(_record(logging.DEBUG, "detail")) == "DEBUG detail"


def test_module_loggers_share_the_handler(clean_logging, capsys):
    setup_logging()
    logging.getLogger("component_import.services.validation").info("validated")
    logging.getLogger("component_import.services.validation").debug("hidden")
    log_summary("rows=3 outcome=FULLY_IMPORTED")
    out = capsys.readouterr().out.splitlines()
    assert out == ["INFO validated", "SUMMARY rows=3 outcome=FULLY_IMPORTED"]


def test_set_debug_lowers_threshold(clean_logging, capsys):
    set_debug()
    assert get_logger().level == logging.DEBUG
    logging.getLogger("component_import.db").debug("sql issued")
    assert "DEBUG sql issued" in capsys.readouterr().out
    set_debug(False)
    assert get_logger().level == logging.INFO
