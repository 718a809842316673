import logging

from backend.logger import PACKAGE_LOGGER, LabeledFormatter, reset_logging, setup_logging


def test_setup_is_idempotent():
    reset_logging()
    first = setup_logging("INFO")
    second = setup_logging("debug")

    assert first is second
    assert first.name == PACKAGE_LOGGER
    assert len(first.handlers) == 1
    assert first.level == logging.DEBUG
    assert first.propagate is False


def test_reset_detaches_handlers():
    logger = setup_logging()
    reset_logging()

    assert logger.handlers == []
    assert logger.propagate is True


def test_formatter_labels_warnings():
    record = logging.LogRecord("backend.layouts", logging.WARNING, __file__, 1, "Probe %s failed", ("x",), None)
    line = LabeledFormatter().format(record)

    assert line.endswith("WARN [backend.layouts] Probe x failed")
