"""Logging setup for applications embedding the coordinator."""
import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: int | str = logging.INFO, console: Optional[Console] = None) -> None:
    """
    Route ``afk_notifier`` log records through a rich handler.

    Only the package logger is configured; the host's root logger is left
    alone.
    """
    logger = logging.getLogger("afk_notifier")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    logger.addHandler(RichHandler(console=console, show_path=False, rich_tracebacks=True))
    logger.propagate = False
