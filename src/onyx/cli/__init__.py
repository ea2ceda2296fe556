"""Command line interface for onyx."""

from onyx.cli.commands import main

__all__ = ["main"]
