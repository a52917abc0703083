"""Logging configuration for scenario-grader."""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

NOISY_LOGGERS = ("httpx", "openai", "httpcore", "urllib3", "watchfiles")

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    verbose: bool = False,
    log_file: str | None = None,
    console: Console | None = None,
) -> logging.Logger:
    """
    Configure dual-handler logging (rich console + file).

    Args:
        verbose: Enable DEBUG level on console (default WARNING, so the
            run summary is not interleaved with progress logs)
        log_file: Path to log file (None for no file logging)
        console: Console for the rich handler (default: stderr)

    Returns:
        The package logger
    """
    console_handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
    )
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)

    file_handler = None
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))

    logger = logging.getLogger("scenario_grader")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.addHandler(console_handler)
    if file_handler:
        logger.addHandler(file_handler)
    logger.propagate = False

    # Suppress noisy 3rd party loggers
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger
