"""Command line interface for SmartTime."""

from .app import app

__all__ = ["app"]
