"""Command-line entry points for ifitsync."""

from ._main import main

__all__ = ["main"]
