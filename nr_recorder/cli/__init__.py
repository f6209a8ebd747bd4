"""Command line interface for NR Recorder."""

from .commands import app

__all__ = ["app"]
