"""Command line interface for consuming Pulse messages."""

from pulse.cli.main import app

__all__ = ["app"]
