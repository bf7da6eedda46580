"""Log utilities."""

import logging

from rich.console import Console
from rich.logging import RichHandler

# Diagnostics go to stderr so stdout stays clean for the command.
stderr_console = Console(stderr=True)


def get_logger(name: str) -> logging.Logger:
    """Retrieve logger with the provided name."""
    logger = logging.getLogger(name)
    logger.handlers = [RichHandler(console=stderr_console, show_path=False)]
    logger.propagate = False
    return logger


def configure_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Set the package log level from the CLI verbosity flags."""
    logger = get_logger("askman")
    if debug:
        logger.setLevel(logging.DEBUG)
    elif verbose:
        logger.setLevel(logging.INFO)
    else:
        logger.setLevel(logging.WARNING)
    return logger
