"""Logging setup for the command line."""

import logging

from rich.console import Console
from rich.logging import RichHandler

# Libraries that are noisy at DEBUG level
QUIET_LOGGERS = ("urllib3", "keyring")


def setup_logging(log_level: str = "WARNING") -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                rich_tracebacks=True,
                show_path=False,
            )
        ],
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
