"""Unit tests for functions defined in log.py."""

import logging

from rich.logging import RichHandler

from askman.log import configure_logging, get_logger


def test_get_logger():
    """Check the function to retrieve logger."""
    logger_name = "foo"
    logger = get_logger(logger_name)
    assert logger is not None
    assert logger.name == logger_name

    # at least one handler needs to be set
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], RichHandler)
    assert logger.propagate is False


def test_get_logger_twice_keeps_one_handler():
    get_logger("bar")
    logger = get_logger("bar")
    assert len(logger.handlers) == 1


def test_configure_logging_levels():
    assert configure_logging().level == logging.WARNING
    assert configure_logging(verbose=True).level == logging.INFO
    assert configure_logging(debug=True).level == logging.DEBUG
    assert configure_logging(verbose=True).name == "askman"
